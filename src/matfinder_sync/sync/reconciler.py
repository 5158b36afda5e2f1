"""Collection reconciler: one additive sync pass over one collection.

Steps, in order:

0. Retry pending parent links of the collection.
1. Check connectivity; offline skips the pass with an info notification.
2. List remote ids (a failure aborts the pass) and local ids.
3. Diff the id sets with hyphen/case normalization.
4. Upload local-only records, one at a time.
5. Download remote-only documents, saving every ``batch_size`` applied
   records plus once at the end.  A start and a summary notification
   bracket the phase; links resolved by a batch whose save fails are
   queued again.
6. Compare the local count with the remote count plus uploads and post
   the final notification.

The pass never deletes.  Per-record failures are counted and reported;
they never abort the batch.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from matfinder_sync.core.async_utils import SingleWriter
from matfinder_sync.errors import LocalSaveError, RecordError, RemoteFetchError
from matfinder_sync.store.base import (
    AlwaysConnected,
    ConnectivityCheck,
    LocalStore,
    RemoteStore,
)
from matfinder_sync.sync.apply import ApplyOutcome, RecordApplier
from matfinder_sync.sync.ids import diff_ids, parse_uuid
from matfinder_sync.sync.links import PendingLinks
from matfinder_sync.sync.models import CollectionReport, SyncAction, SyncResult
from matfinder_sync.sync.notifications import (
    ALREADY_SYNCED_MESSAGE,
    DOWNLOAD_FAILED_MESSAGE,
    DOWNLOAD_NONE_MESSAGE,
    DOWNLOAD_PARTIAL_MESSAGE,
    DOWNLOAD_STARTED_MESSAGE,
    DOWNLOADED_MESSAGE,
    NEEDS_SYNC_MESSAGE,
    OFFLINE_MESSAGE,
    SYNCED_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
    Notifier,
    Severity,
    SyncNotification,
)
from matfinder_sync.sync.records import Collection
from matfinder_sync.sync.registry import CollectionRegistry, CollectionSpec

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CollectionReconciler:
    """Reconcile one collection between the local and remote stores.

    Args:
        local: Local cache; every call goes through *writer*.
        remote: Remote document store.
        registry: Collection names and mappers.
        notifier: Receives the user-facing notifications.
        writer: Single writer thread for local-store calls.
        links: Pending parent-link queue, shared with the listener.
        connectivity: Connectivity check; defaults to always online.
        batch_size: Applied downloads between intermediate saves.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        registry: CollectionRegistry,
        notifier: Notifier,
        writer: SingleWriter,
        links: PendingLinks,
        connectivity: ConnectivityCheck | None = None,
        batch_size: int = 10,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.local = local
        self.remote = remote
        self.registry = registry
        self.notifier = notifier
        self.writer = writer
        self.links = links
        self.connectivity = connectivity or AlwaysConnected()
        self.batch_size = batch_size
        self.applier = RecordApplier(local, registry, links, writer)

    async def reconcile(
        self, collection: Collection | str, run_id: str = "-"
    ) -> CollectionReport:
        """Run one pass over *collection* (logical key or remote name).

        Raises:
            UnknownCollectionError: If *collection* is not registered.
        """
        spec = self.registry.get(collection)
        name = spec.remote_name
        tag = f"[sync:{run_id}]"
        started_at = _now()
        logger.info("%s Reconciling %s", tag, name)

        linked = await self._retry_links(spec, tag)

        # 1. Connectivity
        if not await self.connectivity.is_connected():
            logger.warning("%s Offline, skipping %s", tag, name)
            note = self.notifier.post(
                name,
                "offline",
                Severity.INFO,
                OFFLINE_MESSAGE.format(collection=name),
                persistent=True,
            )
            return CollectionReport(
                collection=spec.key.value,
                remote_name=name,
                started_at=started_at,
                completed_at=_now(),
                results=linked,
                skipped_reason="offline",
                notification=note,
            )

        # 2. Id lists
        try:
            remote_ids = await self.remote.list_document_ids(name)
        except RemoteFetchError as exc:
            logger.error("%s %s", tag, exc)
            return CollectionReport(
                collection=spec.key.value,
                remote_name=name,
                started_at=started_at,
                completed_at=_now(),
                results=linked,
                skipped_reason=f"remote unavailable: {exc.reason}",
            )
        local_ids = await self.writer.run(self.local.list_ids, spec.key)
        if local_ids is None:
            logger.warning(
                "%s Local store does not know %s; treating as empty", tag, name
            )
            local_ids = []
        logger.info(
            "%s %s: %d remote, %d local",
            tag,
            name,
            len(remote_ids),
            len(local_ids),
        )

        # 3. Diff
        diff = diff_ids(local_ids, remote_ids)
        logger.info(
            "%s %s: %d to upload, %d to download",
            tag,
            name,
            len(diff.local_only),
            len(diff.remote_only),
        )

        # 4-5. Upload then download
        results = list(linked)
        for record_id in diff.local_only:
            results.append(await self._upload(spec, record_id, tag))
        results.extend(await self._download(spec, diff.remote_only, tag))

        # 6. Integrity check
        local_count = await self.writer.run(self.local.count, spec.key)
        report = CollectionReport(
            collection=spec.key.value,
            remote_name=name,
            started_at=started_at,
            remote_count=len(remote_ids),
            local_count=local_count,
            results=results,
        )
        note = self._post_outcome(report, tag)
        return report.model_copy(
            update={"completed_at": _now(), "notification": note}
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _retry_links(
        self, spec: CollectionSpec, tag: str
    ) -> list[SyncResult]:
        if spec.parent_key is None:
            return []
        async with self.writer.transaction():
            resolved = await self.applier.retry_pending(spec.key)
            if not resolved:
                return []
            try:
                await self.writer.run(self.local.save_batch)
            except LocalSaveError as exc:
                logger.error(
                    "%s Saving resolved links for %s failed: %s",
                    tag,
                    spec.remote_name,
                    exc,
                )
                self.applier.restore_links(resolved)
                return []
        logger.info(
            "%s Linked %d waiting %s records",
            tag,
            len(resolved),
            spec.remote_name,
        )
        return [
            SyncResult(
                collection=spec.remote_name,
                record_id=str(link.child_id),
                action=SyncAction.LINK,
                success=True,
            )
            for link in resolved
        ]

    async def _upload(
        self, spec: CollectionSpec, record_id: str, tag: str
    ) -> SyncResult:
        name = spec.remote_name
        try:
            uuid = parse_uuid(record_id, spec.key.value)
            record = await self.writer.run(
                self.local.fetch_record, spec.key, uuid
            )
            if record is None:
                raise RecordError(name, record_id, "local record not found")
            fields = spec.mapper.to_remote(record)
            await self.remote.write_document(name, record_id, fields)
        except Exception as exc:
            logger.error(
                "%s Upload of %s record %s failed: %s", tag, name, record_id, exc
            )
            self.notifier.post(
                name,
                "upload",
                Severity.ERROR,
                UPLOAD_FAILED_MESSAGE.format(collection=name, record_id=record_id),
                persistent=True,
            )
            return SyncResult(
                collection=name,
                record_id=record_id,
                action=SyncAction.UPLOAD,
                success=False,
                error=str(exc),
            )
        logger.debug("%s Uploaded %s record %s", tag, name, record_id)
        return SyncResult(
            collection=name,
            record_id=record_id,
            action=SyncAction.UPLOAD,
            success=True,
        )

    async def _download(
        self, spec: CollectionSpec, doc_ids: list[str], tag: str
    ) -> list[SyncResult]:
        name = spec.remote_name
        results: list[SyncResult] = []
        if not doc_ids:
            return results
        self.notifier.post(
            name,
            "download_started",
            Severity.INFO,
            DOWNLOAD_STARTED_MESSAGE.format(count=len(doc_ids), collection=name),
        )
        # Applied since the last save; marked failed if that save fails
        pending: list[tuple[str, ApplyOutcome]] = []

        # Listener events wait for the last save of the pass
        async with self.writer.transaction():
            for doc_id in doc_ids:
                try:
                    fields = await self.remote.fetch_document(name, doc_id)
                    if fields is None:
                        raise RecordError(name, doc_id, "remote document not found")
                    outcome = await self.applier.apply_document(spec, doc_id, fields)
                except Exception as exc:
                    results.append(self._download_failed(spec, doc_id, exc, tag))
                    continue
                if outcome.dangling is not None:
                    logger.info(
                        "%s %s record %s waits for %s %s",
                        tag,
                        name,
                        doc_id,
                        outcome.dangling.parent_collection.value,
                        outcome.dangling.parent_id,
                    )
                pending.append((doc_id, outcome))
                if len(pending) >= self.batch_size:
                    results.extend(await self._save(spec, pending, tag))
                    pending = []

            if pending:
                results.extend(await self._save(spec, pending, tag))

        self._post_download_summary(name, results)
        return results

    def _download_failed(
        self, spec: CollectionSpec, doc_id: str, exc: Exception, tag: str
    ) -> SyncResult:
        name = spec.remote_name
        if getattr(exc, "kind", None) == "mapping":
            # Malformed documents are skipped quietly
            logger.warning("%s Skipping %s record %s: %s", tag, name, doc_id, exc)
        else:
            logger.error(
                "%s Download of %s record %s failed: %s", tag, name, doc_id, exc
            )
            self.notifier.post(
                name,
                "download",
                Severity.ERROR,
                DOWNLOAD_FAILED_MESSAGE.format(collection=name, record_id=doc_id),
                persistent=True,
            )
        return SyncResult(
            collection=name,
            record_id=doc_id,
            action=SyncAction.DOWNLOAD,
            success=False,
            error=str(exc),
        )

    async def _save(
        self,
        spec: CollectionSpec,
        applied: list[tuple[str, ApplyOutcome]],
        tag: str,
    ) -> list[SyncResult]:
        name = spec.remote_name
        doc_ids = [doc_id for doc_id, _ in applied]
        try:
            await self.writer.run(self.local.save_batch)
        except LocalSaveError as exc:
            logger.error(
                "%s Save of %d %s records failed, rolled back: %s",
                tag,
                len(doc_ids),
                name,
                exc,
            )
            self.applier.restore_links(
                link for _, outcome in applied for link in outcome.links_to_restore
            )
            return [
                SyncResult(
                    collection=name,
                    record_id=doc_id,
                    action=SyncAction.DOWNLOAD,
                    success=False,
                    error=f"save failed: {exc}",
                )
                for doc_id in doc_ids
            ]
        logger.debug("%s Saved %d %s records", tag, len(doc_ids), name)
        return [
            SyncResult(
                collection=name,
                record_id=doc_id,
                action=SyncAction.DOWNLOAD,
                success=True,
            )
            for doc_id in doc_ids
        ]

    def _post_download_summary(
        self, name: str, results: list[SyncResult]
    ) -> SyncNotification:
        downloaded = sum(1 for r in results if r.success)
        failed = len(results) - downloaded
        if failed == 0:
            severity = Severity.SUCCESS
            message = DOWNLOADED_MESSAGE.format(count=downloaded, collection=name)
        elif downloaded:
            severity = Severity.INFO
            message = DOWNLOAD_PARTIAL_MESSAGE.format(
                count=downloaded, collection=name, failed=failed
            )
        else:
            severity = Severity.ERROR
            message = DOWNLOAD_NONE_MESSAGE.format(collection=name)
        return self.notifier.post(name, "download_summary", severity, message)

    def _post_outcome(
        self, report: CollectionReport, tag: str
    ) -> SyncNotification:
        name = report.remote_name
        if not report.in_sync:
            logger.info(
                "%s %s out of sync: local %d, remote %d (+%d uploaded)",
                tag,
                name,
                report.local_count,
                report.remote_count,
                len(report.uploaded),
            )
            return self.notifier.post(
                name, "needs_sync", Severity.INFO, NEEDS_SYNC_MESSAGE
            )
        if report.work_performed:
            logger.info("%s %s synced", tag, name)
            return self.notifier.post(
                name, "synced", Severity.SUCCESS, SYNCED_MESSAGE
            )
        logger.info("%s %s already in sync", tag, name)
        return self.notifier.post(
            name, "already_synced", Severity.SUCCESS, ALREADY_SYNCED_MESSAGE
        )
