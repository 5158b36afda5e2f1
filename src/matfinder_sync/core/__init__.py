"""Execution helpers shared by the store adapters and the sync engine."""

from .async_utils import SingleWriter, run_sync

__all__ = ["SingleWriter", "run_sync"]
