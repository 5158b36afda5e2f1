"""Adapter interfaces consumed by the sync engine.

The engine never touches SQLAlchemy or Firestore directly; it talks to a
``LocalStore`` (the relational cache) and a ``RemoteStore`` (the document
database) through these protocols.  Concrete adapters live in
``store.local`` and ``store.firestore``; tests use in-memory doubles.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from matfinder_sync.sync.records import Collection, Record

FieldMap = dict[str, Any]


class ChangeType(str, Enum):
    """Kind of a live remote change."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    """One incremental change delivered by a remote subscription.

    ``collection`` is the remote collection name as subscribed.
    """

    collection: str
    change_type: ChangeType
    doc_id: str
    fields: FieldMap = field(default_factory=dict)


ChangeCallback = Callable[[ChangeEvent], None]


@runtime_checkable
class SubscriptionHandle(Protocol):
    def unsubscribe(self) -> None: ...


@runtime_checkable
class LocalStore(Protocol):
    """Local relational cache.

    All methods are blocking and must be called from the single writer
    context (see ``core.async_utils.SingleWriter``).  Changes stay pending
    until ``save_batch()``.
    """

    def list_ids(self, collection: Collection) -> list[str] | None:
        """Ids of every record, or ``None`` for an unknown collection."""
        ...

    def fetch_record(
        self, collection: Collection, record_id: UUID
    ) -> Record | None: ...

    def upsert_record(self, collection: Collection, record: Record) -> bool:
        """Create or update by id; return True when a record was created."""
        ...

    def delete_record(self, collection: Collection, record_id: UUID) -> bool:
        """Delete by id; return True when something was deleted."""
        ...

    def link_parent(
        self, collection: Collection, child_id: UUID, parent_id: UUID
    ) -> bool:
        """Point a child at its parent; False if either side is absent."""
        ...

    def exists(self, collection: Collection, record_id: UUID) -> bool: ...

    def count(self, collection: Collection) -> int: ...

    def save_batch(self) -> None:
        """Persist pending changes.

        Raises:
            LocalSaveError: After rolling back, if persisting failed.
        """
        ...

    def rollback(self) -> None: ...


@runtime_checkable
class RemoteStore(Protocol):
    """Remote document database.  Collection arguments are remote names."""

    async def list_document_ids(self, collection: str) -> list[str]:
        """Ids of every document.

        Raises:
            RemoteFetchError: If the collection cannot be listed at all.
        """
        ...

    async def fetch_document(
        self, collection: str, doc_id: str
    ) -> FieldMap | None: ...

    async def write_document(
        self, collection: str, doc_id: str, fields: FieldMap
    ) -> None: ...

    async def delete_document(self, collection: str, doc_id: str) -> None: ...

    def subscribe(
        self, collection: str, on_change: ChangeCallback
    ) -> SubscriptionHandle:
        """Register a persistent listener.

        *on_change* may be invoked from a foreign thread.
        """
        ...


@runtime_checkable
class ConnectivityCheck(Protocol):
    async def is_connected(self) -> bool: ...


class AlwaysConnected:
    """Check for environments where reachability is not checked."""

    async def is_connected(self) -> bool:
        return True
