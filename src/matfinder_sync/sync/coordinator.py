"""Single-flight entry point for a full sync run."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone

from matfinder_sync.sync.listener import ChangeListenerDispatcher
from matfinder_sync.sync.models import CollectionReport, SyncReport
from matfinder_sync.sync.reconciler import CollectionReconciler
from matfinder_sync.sync.registry import CollectionRegistry

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    return uuid.uuid4().hex[:8]


class SyncCoordinator:
    """Run every collection pass in dependency order, then start listeners.

    Only one run may be in flight.  The flag is read and written only
    while holding ``_lock``, so two near-simultaneous triggers cannot both
    start a run.

    Args:
        reconciler: Per-collection pass.
        dispatcher: Live listeners, started after the first run.
        registry: Collections to sync, iterated in sync order.
        start_listeners: Whether a run starts the listeners.
    """

    def __init__(
        self,
        reconciler: CollectionReconciler,
        dispatcher: ChangeListenerDispatcher,
        registry: CollectionRegistry,
        start_listeners: bool = True,
    ) -> None:
        self.reconciler = reconciler
        self.dispatcher = dispatcher
        self.registry = registry
        self.start_listeners = start_listeners
        self._lock = asyncio.Lock()
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def _acquire(self) -> bool:
        async with self._lock:
            if self._in_flight:
                return False
            self._in_flight = True
            return True

    async def _release(self) -> None:
        async with self._lock:
            self._in_flight = False

    async def start_app_sync(self) -> SyncReport | None:
        """Run a full sync unless one is already running.

        Never raises for sync failures: a failing collection is logged and
        recorded in ``SyncReport.failed`` while its siblings still run.

        Returns:
            The run's report, or ``None`` when the call was skipped.
        """
        if not await self._acquire():
            logger.info("Sync already in progress; skipped")
            return None

        run_id = new_run_id()
        tag = f"[sync:{run_id}]"
        started_at = datetime.now(timezone.utc).isoformat()
        collections: list[CollectionReport] = []
        failed: dict[str, str] = {}
        try:
            logger.info("%s Starting sync of %d collections", tag, len(self.registry))
            for spec in self.registry:
                try:
                    report = await self.reconciler.reconcile(spec.key, run_id)
                except Exception as exc:
                    logger.exception(
                        "%s Sync of %s failed", tag, spec.remote_name
                    )
                    failed[spec.remote_name] = str(exc)
                    continue
                collections.append(report)

            if self.start_listeners:
                try:
                    await self.dispatcher.start_listeners()
                except Exception:
                    logger.exception("%s Starting listeners failed", tag)
        finally:
            await self._release()

        report = SyncReport(
            run_id=run_id,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
            collections=collections,
            failed=failed,
        )
        logger.info(
            "%s Sync finished: %d uploaded, %d downloaded, %d errors",
            tag,
            report.uploaded,
            report.downloaded,
            report.errors,
        )
        return report
