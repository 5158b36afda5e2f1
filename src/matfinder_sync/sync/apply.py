"""Applying remote documents to the local store.

Shared by the reconciler's download phase and the live listener so both
paths map, upsert and link records the same way.  Local calls run on the
``SingleWriter`` thread; the pending-link queue is only touched from the
event loop.  Nothing here saves: callers decide when to ``save_batch``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable
from uuid import UUID

from matfinder_sync.core.async_utils import SingleWriter
from matfinder_sync.store.base import LocalStore
from matfinder_sync.sync.ids import parse_uuid
from matfinder_sync.sync.links import PendingLink, PendingLinks
from matfinder_sync.sync.mapper import MappedRecord
from matfinder_sync.sync.records import Collection
from matfinder_sync.sync.registry import CollectionRegistry, CollectionSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyOutcome:
    """What applying one remote document did locally.

    Attributes:
        record_id: Id of the upserted record.
        created: True when the record did not exist before.
        dangling: Link queued because the parent is not local yet.
        released: Link this record was waiting on, dropped because the
            document now names a parent that is already local.
        resolved: Links waiting on this record that are now satisfied.
    """

    record_id: UUID
    created: bool
    dangling: PendingLink | None = None
    released: PendingLink | None = None
    resolved: tuple[PendingLink, ...] = ()

    @property
    def links_to_restore(self) -> list[PendingLink]:
        """Links lost from the queue if the save of this change fails."""
        restored = list(self.resolved)
        if self.released is not None:
            restored.append(self.released)
        return restored


class RecordApplier:
    def __init__(
        self,
        local: LocalStore,
        registry: CollectionRegistry,
        links: PendingLinks,
        writer: SingleWriter,
    ) -> None:
        self.local = local
        self.registry = registry
        self.links = links
        self.writer = writer

    async def apply_document(
        self,
        spec: CollectionSpec,
        doc_id: str,
        fields: dict[str, Any] | None,
    ) -> ApplyOutcome:
        """Map and upsert one remote document.

        Upsert is idempotent by id: applying the same document twice
        leaves one record with the same field values.

        Raises:
            RecordMappingError: If the document cannot be mapped.
        """
        doc = spec.mapper.document(doc_id, fields)
        mapped = spec.mapper.to_local(doc)
        created, dangling = await self.writer.run(self._upsert, spec, mapped)

        record_id = mapped.record.id
        released = None
        if dangling is not None:
            self.links.add(dangling)
        else:
            released = self.links.discard_child(spec.key, record_id)
        resolved = await self.resolve_for_parent(spec.key, record_id)
        return ApplyOutcome(
            record_id=record_id,
            created=created,
            dangling=dangling,
            released=released,
            resolved=tuple(resolved),
        )

    def restore_links(self, links: Iterable[PendingLink]) -> None:
        """Queue links again after the save that would have linked them
        was rolled back."""
        restored = 0
        for link in links:
            self.links.add(link)
            restored += 1
        if restored:
            logger.info("Re-queued %d parent links after a failed save", restored)

    async def delete_document(
        self, spec: CollectionSpec, doc_id: str
    ) -> ApplyOutcome | None:
        """Delete the local record for a removed document.

        Returns:
            None if the record was not present locally.

        Raises:
            RecordMappingError: If *doc_id* is not a UUID.
        """
        record_id = parse_uuid(doc_id, spec.key.value)
        deleted = await self.writer.run(
            self.local.delete_record, spec.key, record_id
        )
        if not deleted:
            return None
        released = self.links.discard_child(spec.key, record_id)
        return ApplyOutcome(record_id=record_id, created=False, released=released)

    async def resolve_for_parent(
        self, collection: Collection, parent_id: UUID
    ) -> list[PendingLink]:
        """Link every queued child waiting on one parent."""
        waiting = self.links.for_parent(collection, parent_id)
        if not waiting:
            return []
        return await self._retry(waiting)

    async def retry_pending(self, child_collection: Collection) -> list[PendingLink]:
        """Retry every queued link of one child collection."""
        waiting = self.links.for_child_collection(child_collection)
        if not waiting:
            return []
        return await self._retry(waiting)

    async def _retry(self, waiting: list[PendingLink]) -> list[PendingLink]:
        outcomes = await self.writer.run(self._try_links, waiting)
        resolved = []
        for link, outcome in zip(waiting, outcomes):
            if outcome == "linked":
                self.links.remove(link)
                resolved.append(link)
            elif outcome == "gone":
                logger.debug(
                    "Dropping link for missing %s %s",
                    link.child_collection.value,
                    link.child_id,
                )
                self.links.remove(link)
        if resolved:
            logger.info("Resolved %d pending parent links", len(resolved))
        return resolved

    # ------------------------------------------------------------------
    # Writer-thread helpers
    # ------------------------------------------------------------------

    def _upsert(
        self, spec: CollectionSpec, mapped: MappedRecord
    ) -> tuple[bool, PendingLink | None]:
        record = mapped.record
        dangling = None
        parent = mapped.parent
        attr = spec.mapper.parent_attr
        if parent is not None and attr is not None:
            if not self.local.exists(parent.collection, parent.parent_id):
                # Keep whatever the record already points at until the
                # parent arrives
                existing = self.local.fetch_record(spec.key, record.id)
                current = getattr(existing, attr) if existing else None
                record = record.model_copy(update={attr: current})
                dangling = PendingLink(
                    child_collection=spec.key,
                    child_id=record.id,
                    parent_collection=parent.collection,
                    parent_id=parent.parent_id,
                )

        created = self.local.upsert_record(spec.key, record)

        for child_spec in self.registry.children_of(spec.key):
            for child_id in mapped.children:
                if self.local.link_parent(child_spec.key, child_id, record.id):
                    logger.debug(
                        "Linked %s %s to %s %s",
                        child_spec.key.value,
                        child_id,
                        spec.key.value,
                        record.id,
                    )
        return created, dangling

    def _try_links(self, waiting: list[PendingLink]) -> list[str]:
        outcomes = []
        for link in waiting:
            if not self.local.exists(link.child_collection, link.child_id):
                outcomes.append("gone")
            elif self.local.link_parent(
                link.child_collection, link.child_id, link.parent_id
            ):
                outcomes.append("linked")
            else:
                outcomes.append("waiting")
        return outcomes

