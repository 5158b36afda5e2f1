"""Local and remote store adapters."""

from .base import (
    AlwaysConnected,
    ChangeEvent,
    ChangeType,
    ConnectivityCheck,
    LocalStore,
    RemoteStore,
    SubscriptionHandle,
)

__all__ = [
    "AlwaysConnected",
    "ChangeEvent",
    "ChangeType",
    "ConnectivityCheck",
    "LocalStore",
    "RemoteStore",
    "SubscriptionHandle",
]
