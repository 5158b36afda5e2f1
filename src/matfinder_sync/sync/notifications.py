"""User-facing sync notifications.

A ``SyncNotification`` is the only contract the engine exposes to a
presentation layer (toast, snackbar, CLI output).  ``Notifier.post``
never blocks and never raises: subscriber callbacks are scheduled on
the running event loop and their exceptions are logged.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from matfinder_sync.sync.records import utcnow

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "Offline mode, skipping {collection} sync."
UPLOAD_FAILED_MESSAGE = "Failed to upload {collection} record {record_id}."
DOWNLOAD_FAILED_MESSAGE = "Failed to download {collection} record {record_id}."
DOWNLOAD_STARTED_MESSAGE = "Downloading {count} {collection} from cloud..."
DOWNLOADED_MESSAGE = "Successfully downloaded {count} {collection} records."
DOWNLOAD_PARTIAL_MESSAGE = "Downloaded {count} {collection} records, {failed} failed."
DOWNLOAD_NONE_MESSAGE = "Failed to download any {collection} records. Check logs."
NEEDS_SYNC_MESSAGE = "You need to sync your records."
SYNCED_MESSAGE = "Synced successfully."
ALREADY_SYNCED_MESSAGE = "Already synced."


class Severity(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


class SyncNotification(BaseModel):
    """One toast-style event.

    Attributes:
        collection: Remote collection name the event concerns.
        action: Short machine-readable action (``offline``, ``upload``,
            ``download``, ``needs_sync``, ``synced``, ``already_synced``).
        severity: success, info or error.
        persistent: Whether the presenter should keep it until dismissed.
        message: Human-readable text.
    """

    collection: str
    action: str
    severity: Severity
    persistent: bool = False
    message: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


NotificationCallback = Callable[[SyncNotification], None]


class Notifier:
    """Fan-out of notifications to subscribers, with a bounded history."""

    def __init__(self, history_size: int = 100) -> None:
        self._subscribers: list[NotificationCallback] = []
        self._history: deque[SyncNotification] = deque(maxlen=history_size)

    def subscribe(self, callback: NotificationCallback) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def history(self) -> list[SyncNotification]:
        return list(self._history)

    def clear(self) -> None:
        self._history.clear()

    def post(
        self,
        collection: str,
        action: str,
        severity: Severity,
        message: str,
        persistent: bool = False,
    ) -> SyncNotification:
        note = SyncNotification(
            collection=collection,
            action=action,
            severity=severity,
            persistent=persistent,
            message=message,
        )
        self._history.append(note)
        logger.debug(
            "Notification [%s] %s: %s", severity.value, collection, message
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        for callback in list(self._subscribers):
            if loop is not None:
                loop.call_soon(self._deliver, callback, note)
            else:
                self._deliver(callback, note)
        return note

    @staticmethod
    def _deliver(callback: NotificationCallback, note: SyncNotification) -> None:
        try:
            callback(note)
        except Exception:
            logger.exception("Notification subscriber failed")
