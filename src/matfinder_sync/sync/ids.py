"""Record identifier normalization and diffing.

Remote document ids and local record ids are the same UUID, but the two
sides do not agree on its spelling: some writers strip the hyphens, and
the iOS writers produced upper-case hex.  Ids are therefore compared in a
normalized form (no hyphens, lower case) while the original strings are
kept for every fetch and write.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

from matfinder_sync.errors import RecordMappingError


def normalize_id(value: str | uuid.UUID) -> str:
    """Return the comparison form of an id: hyphens removed, lower case."""
    return str(value).replace("-", "").strip().lower()


def parse_uuid(value: str | uuid.UUID, collection: str = "") -> uuid.UUID:
    """Parse a hyphenated or hyphen-less UUID string.

    Raises:
        RecordMappingError: If *value* is not a UUID in either form.
    """
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(hex=normalize_id(value))
    except (ValueError, AttributeError, TypeError):
        raise RecordMappingError(
            collection, str(value), "invalid UUID"
        ) from None


@dataclass(frozen=True)
class IdDiff:
    """Ids present on only one side, in their original spelling."""

    local_only: list[str] = field(default_factory=list)
    remote_only: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.local_only and not self.remote_only


def _unique(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for record_id in ids:
        key = normalize_id(record_id)
        if key in seen:
            continue
        seen.add(key)
        result.append(record_id)
    return result


def diff_ids(local_ids: Iterable[str], remote_ids: Iterable[str]) -> IdDiff:
    """Compute ids missing on each side, comparing normalized forms.

    Input order is preserved and ids that normalize to the same value are
    reported once (first spelling wins).
    """
    local = _unique(local_ids)
    remote = _unique(remote_ids)
    local_keys = {normalize_id(i) for i in local}
    remote_keys = {normalize_id(i) for i in remote}
    return IdDiff(
        local_only=[i for i in local if normalize_id(i) not in remote_keys],
        remote_only=[i for i in remote if normalize_id(i) not in local_keys],
    )
