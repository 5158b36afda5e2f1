"""Bidirectional Firestore / local-cache sync engine.

Keeps four interdependent collections (locations, day schedules, time
slots, reviews) converged between a remote document store and a local
relational cache.

Architecture
------------
A full pass reconciles each collection in dependency order by diffing id
sets: local-only records are uploaded, remote-only documents are
downloaded and upserted.  The pass is additive only; deletions arrive
exclusively through the live change listeners started after the pass.

Modules:

- ``coordinator`` -- ``SyncCoordinator``: single-flight entry point.
- ``reconciler``  -- ``CollectionReconciler``: one collection pass.
- ``listener``    -- ``ChangeListenerDispatcher``: live remote changes.
- ``apply``       -- ``RecordApplier``: shared map/upsert/link step.
- ``links``       -- ``PendingLinks``: children waiting for parents.
- ``mapper``      -- Entity mappers between documents and records.
- ``registry``    -- ``CollectionRegistry``: names and mappers.
- ``ids``         -- Id normalization and diffing.
- ``records``     -- Typed records and remote documents.
- ``models``      -- ``SyncAction``, ``SyncResult``, ``CollectionReport``,
  ``SyncReport``: report data contracts.
- ``notifications`` -- ``Notifier`` and ``SyncNotification``.
- ``reporter``    -- Human-readable and JSON report formatting.

The engine classes depend on ``matfinder_sync.store`` and are imported
from their modules directly; this package exports only the data
contracts.

Usage example
-------------
::

    from matfinder_sync.app import app_lifespan
    from matfinder_sync.sync import format_sync_report

    async with app_lifespan({"project": "my-project"}) as ctx:
        report = await ctx.coordinator.start_app_sync()
        print(format_sync_report(report))
"""

from .models import (
    CollectionReport,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .notifications import Notifier, Severity, SyncNotification
from .records import (
    SYNC_ORDER,
    Collection,
    DayScheduleRecord,
    LocationRecord,
    RemoteDocument,
    ReviewRecord,
    TimeSlotRecord,
)
from .reporter import format_status, format_sync_report, report_to_json

__all__ = [
    "SYNC_ORDER",
    "Collection",
    "CollectionReport",
    "DayScheduleRecord",
    "LocationRecord",
    "Notifier",
    "RemoteDocument",
    "ReviewRecord",
    "Severity",
    "SyncAction",
    "SyncNotification",
    "SyncReport",
    "SyncResult",
    "TimeSlotRecord",
    "format_status",
    "format_sync_report",
    "report_to_json",
]
