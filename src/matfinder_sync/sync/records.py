"""Typed local records and remote documents.

One Pydantic model per synchronized entity.  Relationships are plain id
pointers (``location_id``, ``day_schedule_id``) that may be ``None`` while
the parent has not arrived yet.

Remote documents keep their known fields and an explicit ``extra``
bucket of keys this engine does not understand, so uploads never drop
fields written by newer clients.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Collection(str, Enum):
    """Logical collections, in sync (dependency) order."""

    LOCATIONS = "locations"
    DAY_SCHEDULES = "day_schedules"
    TIME_SLOTS = "time_slots"
    REVIEWS = "reviews"


SYNC_ORDER: tuple[Collection, ...] = (
    Collection.LOCATIONS,
    Collection.DAY_SCHEDULES,
    Collection.TIME_SLOTS,
    Collection.REVIEWS,
)


class _Record(BaseModel):
    id: UUID
    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class LocationRecord(_Record):
    """A gym (Mat_Finder) or team (TravelBallRating)."""

    name: str = ""
    location: str = ""
    country: str = ""
    created_by_user_id: str = ""
    created_timestamp: datetime = Field(default_factory=utcnow)
    last_modified_by_user_id: str = ""
    last_modified_timestamp: datetime = Field(default_factory=utcnow)
    latitude: float = 0.0
    longitude: float = 0.0
    website: str | None = None


class DayScheduleRecord(_Record):
    """Schedule for one day of the week at a location."""

    day: str = ""
    name: str | None = None
    created_timestamp: datetime = Field(default_factory=utcnow)
    location_id: UUID | None = None


class TimeSlotRecord(_Record):
    """One class or open-mat slot within a day schedule."""

    type: str = ""
    time: str = ""
    gi: bool = False
    no_gi: bool = False
    open_mat: bool = False
    restrictions: bool = False
    restriction_description: str = ""
    good_for_beginners: bool = False
    kids: bool = False
    created_timestamp: datetime = Field(default_factory=utcnow)
    day_schedule_id: UUID | None = None


class ReviewRecord(_Record):
    """A star rating and comment about a location."""

    stars: int = 0
    review: str = ""
    user_name: str = "Anonymous"
    created_timestamp: datetime = Field(default_factory=utcnow)
    location_id: UUID | None = None

    @field_validator("stars")
    @classmethod
    def _clamp_stars(cls, value: int) -> int:
        return max(0, min(5, value))


Record = Union[
    LocationRecord, DayScheduleRecord, TimeSlotRecord, ReviewRecord
]


class RemoteDocument(BaseModel):
    """A remote document split into known fields and passthrough extras.

    Attributes:
        collection: Logical collection the document belongs to.
        doc_id: Document id exactly as the remote store spells it.
        fields: Keys the collection's mapper understands.
        extra: Every other key, carried through untouched.
    """

    collection: Collection
    doc_id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @classmethod
    def split(
        cls,
        collection: Collection,
        doc_id: str,
        data: dict[str, Any] | None,
        known: frozenset[str],
    ) -> RemoteDocument:
        """Build a document from a raw field map, bucketing unknown keys."""
        data = data or {}
        return cls(
            collection=collection,
            doc_id=doc_id,
            fields={k: v for k, v in data.items() if k in known},
            extra={k: v for k, v in data.items() if k not in known},
        )

    def get(self, *names: str) -> Any:
        """Return the first present field among *names*.

        ``None`` and blank strings count as absent, so an empty primary
        field falls through to its aliases.  Dotted names
        (``pIsland.islandID``) descend into nested maps.
        """
        for name in names:
            head, _, rest = name.partition(".")
            value = self.fields.get(head)
            if rest:
                value = value.get(rest) if isinstance(value, dict) else None
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            return value
        return None
