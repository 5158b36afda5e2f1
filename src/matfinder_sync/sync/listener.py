"""Live change-listener dispatcher.

One remote subscription and one consumer task per collection.  Remote
callbacks may fire on a foreign thread (Firestore's watch thread); they
only hand the event to the loop with ``call_soon_threadsafe``.  Each
consumer applies its collection's events strictly in delivery order and
saves after every event.  Cross-collection ordering is not guaranteed.
Applying and saving an event holds the writer's transaction lock, so an
event that arrives during a reconcile batch waits for that batch's save.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter

from matfinder_sync.core.async_utils import SingleWriter
from matfinder_sync.errors import LocalSaveError, RecordMappingError
from matfinder_sync.store.base import (
    ChangeEvent,
    ChangeType,
    LocalStore,
    RemoteStore,
    SubscriptionHandle,
)
from matfinder_sync.sync.apply import RecordApplier
from matfinder_sync.sync.links import PendingLinks
from matfinder_sync.sync.registry import CollectionRegistry, CollectionSpec

logger = logging.getLogger(__name__)


class ChangeListenerDispatcher:
    """Apply live remote changes to the local store.

    Args:
        local: Local cache; every call goes through *writer*.
        remote: Remote store providing ``subscribe``.
        registry: Collection names and mappers.
        writer: Single writer thread, shared with the reconciler.
        links: Pending parent-link queue, shared with the reconciler.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        registry: CollectionRegistry,
        writer: SingleWriter,
        links: PendingLinks,
    ) -> None:
        self.local = local
        self.remote = remote
        self.registry = registry
        self.writer = writer
        self.applier = RecordApplier(local, registry, links, writer)
        self.stats: Counter[str] = Counter()
        self._handles: dict[str, SubscriptionHandle] = {}
        self._queues: dict[str, asyncio.Queue[ChangeEvent]] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    async def start_listeners(self) -> bool:
        """Subscribe to every collection.

        A no-op while already running.

        Returns:
            True if listeners were started by this call.
        """
        if self.is_running:
            logger.debug("Listeners already running; not starting again")
            return False
        loop = asyncio.get_running_loop()
        for spec in self.registry:
            name = spec.remote_name
            queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
            self._queues[name] = queue
            self._tasks[name] = loop.create_task(
                self._consume(spec, queue), name=f"listener:{name}"
            )
            try:
                self._handles[name] = self.remote.subscribe(
                    name, self._enqueue_from(loop, queue)
                )
            except Exception:
                logger.exception("Failed to subscribe to %s", name)
        logger.info(
            "Started %d of %d listeners", len(self._handles), len(self._tasks)
        )
        return True

    async def stop_listeners(self) -> None:
        """Unsubscribe everything and cancel the consumers.

        Events already queued but not yet applied are dropped.
        """
        for name, handle in self._handles.items():
            try:
                handle.unsubscribe()
            except Exception:
                logger.exception("Failed to unsubscribe from %s", name)
        self._handles.clear()

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._queues.clear()
        if tasks:
            logger.info("Stopped %d listeners", len(tasks))

    async def drain(self) -> None:
        """Wait until every event queued so far has been applied."""
        await asyncio.gather(*(q.join() for q in self._queues.values()))

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    @staticmethod
    def _enqueue_from(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue):
        def _on_change(event: ChangeEvent) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, event)
            except RuntimeError:
                # Loop already closed during shutdown
                logger.debug("Dropping %s event for %s", event.change_type, event.doc_id)

        return _on_change

    async def _consume(
        self, spec: CollectionSpec, queue: asyncio.Queue[ChangeEvent]
    ) -> None:
        while True:
            event = await queue.get()
            try:
                await self.apply_event(spec, event)
            except Exception:
                self.stats["failed"] += 1
                logger.exception(
                    "Unexpected error applying %s event for %s %s",
                    event.change_type.value,
                    spec.remote_name,
                    event.doc_id,
                )
            finally:
                queue.task_done()

    async def apply_event(self, spec: CollectionSpec, event: ChangeEvent) -> None:
        """Apply one change and save it.

        Mapping and save failures are logged and counted; they never
        propagate.
        """
        name = spec.remote_name
        removed = event.change_type is ChangeType.REMOVED
        try:
            async with self.writer.transaction():
                if removed:
                    outcome = await self.applier.delete_document(spec, event.doc_id)
                    if outcome is None:
                        logger.debug(
                            "Removed %s %s not present locally", name, event.doc_id
                        )
                        self.stats["ignored"] += 1
                        return
                else:
                    outcome = await self.applier.apply_document(
                        spec, event.doc_id, event.fields
                    )
                try:
                    await self.writer.run(self.local.save_batch)
                except LocalSaveError:
                    self.applier.restore_links(outcome.links_to_restore)
                    raise
        except RecordMappingError as exc:
            self.stats["failed"] += 1
            logger.warning("Skipping %s event: %s", event.change_type.value, exc)
            return
        except LocalSaveError as exc:
            self.stats["failed"] += 1
            logger.error(
                "Save after %s event for %s %s failed: %s",
                event.change_type.value,
                name,
                event.doc_id,
                exc,
            )
            return

        if removed:
            self.stats["removed"] += 1
            logger.info("Deleted local %s %s", name, event.doc_id)
            return
        self.stats["applied"] += 1
        logger.info(
            "%s local %s %s",
            "Created" if outcome.created else "Updated",
            name,
            event.doc_id,
        )
