"""Dangling parent-reference queue.

When a child record (a time slot, a day schedule, a review) is
downloaded before the parent it points at exists locally, the child is
stored unlinked and a ``PendingLink`` is recorded here.  The queue is
retried at the start of every collection pass and whenever the listener
upserts a parent.

The queue is persisted in ``<state_dir>/pending_links.json`` so links
survive restarts:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Idempotent adds** -- a child has at most one pending link; adding
  again replaces the target parent.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID

from matfinder_sync.sync.records import Collection

logger = logging.getLogger(__name__)

STATE_FILE = "pending_links.json"


@dataclass(frozen=True)
class PendingLink:
    """A child waiting for its parent to arrive."""

    child_collection: Collection
    child_id: UUID
    parent_collection: Collection
    parent_id: UUID

    def to_dict(self) -> dict:
        return {
            "child_collection": self.child_collection.value,
            "child_id": str(self.child_id),
            "parent_collection": self.parent_collection.value,
            "parent_id": str(self.parent_id),
        }

    @classmethod
    def from_dict(cls, data: dict) -> PendingLink:
        return cls(
            child_collection=Collection(data["child_collection"]),
            child_id=UUID(data["child_id"]),
            parent_collection=Collection(data["parent_collection"]),
            parent_id=UUID(data["parent_id"]),
        )


class PendingLinks:
    """Load, save, and query the pending-link queue.

    Args:
        state_dir: Directory holding ``pending_links.json``.  ``None``
            keeps the queue in memory only.
    """

    def __init__(self, state_dir: Path | str | None = None) -> None:
        self._state_dir = Path(state_dir) if state_dir is not None else None
        self._links: dict[tuple[Collection, UUID], PendingLink] = {}

    def __len__(self) -> int:
        return len(self._links)

    def __contains__(self, link: object) -> bool:
        if not isinstance(link, PendingLink):
            return False
        return self._links.get((link.child_collection, link.child_id)) == link

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def add(self, link: PendingLink) -> None:
        key = (link.child_collection, link.child_id)
        if self._links.get(key) != link:
            logger.debug(
                "Queued link %s %s -> %s %s",
                link.child_collection.value,
                link.child_id,
                link.parent_collection.value,
                link.parent_id,
            )
        self._links[key] = link

    def remove(self, link: PendingLink) -> None:
        """Drop *link*; no-op if absent or superseded."""
        key = (link.child_collection, link.child_id)
        if self._links.get(key) == link:
            del self._links[key]

    def discard_child(
        self, collection: Collection, child_id: UUID
    ) -> PendingLink | None:
        """Drop the link of one child; returns it, if there was one."""
        return self._links.pop((collection, child_id), None)

    def for_parent(
        self, collection: Collection, parent_id: UUID
    ) -> list[PendingLink]:
        """Links waiting on one parent."""
        return [
            link
            for link in self._links.values()
            if link.parent_collection == collection
            and link.parent_id == parent_id
        ]

    def for_child_collection(self, collection: Collection) -> list[PendingLink]:
        return [
            link
            for link in self._links.values()
            if link.child_collection == collection
        ]

    def all(self) -> list[PendingLink]:
        return list(self._links.values())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path | None:
        if self._state_dir is None:
            return None
        return self._state_dir / STATE_FILE

    def load(self) -> None:
        """Replace the in-memory queue with the persisted one.

        A missing file yields an empty queue; unreadable entries are
        logged and dropped.
        """
        self._links.clear()
        path = self.path
        if path is None or not path.exists():
            return
        with open(path, encoding="utf-8") as fh:
            state = json.load(fh)
        for entry in state.get("links", []):
            try:
                self.add(PendingLink.from_dict(entry))
            except (KeyError, ValueError) as exc:
                logger.warning("Dropping unreadable pending link %r: %s", entry, exc)
        logger.debug("Loaded %d pending links from %s", len(self), path)

    def save(self) -> None:
        """Persist the queue atomically.

        Writes to a temporary file in the same directory then atomically
        replaces the target.  Creates ``state_dir`` if it does not exist.
        """
        path = self.path
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        state = {
            "version": 1,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "links": [link.to_dict() for link in self._links.values()],
        }
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
