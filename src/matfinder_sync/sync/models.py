"""Pydantic models for sync run reports.

Defines the data contracts produced by a reconciliation pass:

- ``SyncAction``: Enum of per-record operations.
- ``SyncResult``: Outcome of one record operation.
- ``CollectionReport``: Results and counts for one collection pass.
- ``SyncReport``: Aggregate results for a full run over all collections.

All models are frozen (immutable).
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from .notifications import SyncNotification


class SyncAction(str, Enum):
    """Operations the engine performs on a single record."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    SKIP = "skip"
    DELETE_LOCAL = "delete_local"
    LINK = "link"


class SyncResult(BaseModel):
    """Result of one record operation.

    Attributes:
        collection: Remote collection name.
        record_id: Id as stored on the side it was read from.
        action: Operation that was attempted.
        success: Whether the operation succeeded.
        error: Error message if the operation failed.
    """

    collection: str
    record_id: str
    action: SyncAction
    success: bool
    error: str | None = None

    model_config = {"frozen": True}


class CollectionReport(BaseModel):
    """Outcome of reconciling one collection.

    Attributes:
        collection: Logical collection key.
        remote_name: Remote collection name.
        started_at: ISO 8601 timestamp when the pass started.
        completed_at: ISO 8601 timestamp when the pass ended.
        remote_count: Remote document count at the start of the pass.
        local_count: Local record count after the pass.
        results: Per-record results.
        skipped_reason: Set when the pass did nothing (offline, remote
            unavailable).
        notification: Final notification posted for the pass.
    """

    collection: str
    remote_name: str
    started_at: str
    completed_at: str | None = None
    remote_count: int = 0
    local_count: int = 0
    results: list[SyncResult] = []
    skipped_reason: str | None = None
    notification: SyncNotification | None = None

    model_config = {"frozen": True}

    @property
    def uploaded(self) -> list[SyncResult]:
        return [
            r
            for r in self.results
            if r.action == SyncAction.UPLOAD and r.success
        ]

    @property
    def downloaded(self) -> list[SyncResult]:
        return [
            r
            for r in self.results
            if r.action == SyncAction.DOWNLOAD and r.success
        ]

    @property
    def linked(self) -> list[SyncResult]:
        return [
            r for r in self.results if r.action == SyncAction.LINK and r.success
        ]

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    @property
    def work_performed(self) -> bool:
        """True when anything was uploaded, downloaded or linked."""
        return bool(self.uploaded or self.downloaded or self.linked)

    @property
    def in_sync(self) -> bool:
        """Local count matches the remote count plus this pass's uploads."""
        if self.skipped:
            return False
        return self.local_count == self.remote_count + len(self.uploaded)


class SyncReport(BaseModel):
    """Aggregate report for a full sync run.

    Attributes:
        run_id: Short id that prefixes every log line of the run.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
        collections: Per-collection reports in sync order.
        failed: Collections whose pass raised unexpectedly.
    """

    run_id: str
    started_at: str
    completed_at: str | None = None
    collections: list[CollectionReport] = []
    failed: dict[str, str] = {}

    model_config = {"frozen": True}

    @property
    def uploaded(self) -> int:
        return sum(len(c.uploaded) for c in self.collections)

    @property
    def downloaded(self) -> int:
        return sum(len(c.downloaded) for c in self.collections)

    @property
    def errors(self) -> int:
        return sum(len(c.errors) for c in self.collections) + len(self.failed)

    @property
    def skipped(self) -> list[str]:
        """Remote names of collections whose pass was skipped."""
        return [c.remote_name for c in self.collections if c.skipped]

    @property
    def in_sync(self) -> bool:
        return not self.failed and all(c.in_sync for c in self.collections)
