"""Entity mappers between remote documents and local records.

One mapper per synchronized entity.  Every mapper is pure: it reads a
``RemoteDocument`` and returns a typed record (plus the parent reference
the document points at), or reads a record and returns a flat field map.
Looking up and linking parents is left to the caller.

Mapping rules shared by all mappers:

1. **Aliases** -- older writers used different field names for the same
   value (``name``/``islandName``/``teamName``).  The primary name is
   checked first, then each alias in order.
2. **Defaults** -- a missing optional field becomes ``""``, ``False``,
   ``0`` or the current UTC time; it never fails the record.
3. **Required pairs** -- each mapper names two required fields.  Only
   when *both* are missing is the document rejected with
   ``RecordMappingError``; a record missing one of them is still created.
4. **Flat relationships** -- on upload a parent is written as its id
   string (``""`` when unset), never as an embedded object.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar
from uuid import UUID

from matfinder_sync.errors import RecordMappingError
from matfinder_sync.sync.ids import parse_uuid
from matfinder_sync.sync.records import (
    Collection,
    DayScheduleRecord,
    LocationRecord,
    Record,
    RemoteDocument,
    ReviewRecord,
    TimeSlotRecord,
    utcnow,
)

logger = logging.getLogger(__name__)

# Seconds since the epoch stay below this until the year 5138
_MILLIS_THRESHOLD = 1e11


@dataclass(frozen=True)
class ParentRef:
    """A child-to-parent pointer found in a remote document."""

    collection: Collection
    parent_id: UUID


@dataclass(frozen=True)
class MappedRecord:
    """Result of mapping one remote document.

    Attributes:
        record: The local record; its parent pointer is already set to
            ``parent.parent_id`` when the document names a parent.
        parent: Parent named by the document, if any.
        children: Child ids the document lists (day schedules list their
            time slots), linked opportunistically by the caller.
    """

    record: Record
    parent: ParentRef | None = None
    children: tuple[UUID, ...] = ()


# ------------------------------------------------------------------
# Field coercion
# ------------------------------------------------------------------


def as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def as_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def as_datetime(value: Any) -> datetime:
    """Coerce a Firestore timestamp, ISO string or epoch number to UTC.

    Epoch numbers above ``1e11`` are taken as milliseconds (JavaScript
    writers).  Anything unparseable or out of range falls back to the
    current time.
    """
    if isinstance(value, datetime):
        # Firestore returns DatetimeWithNanoseconds, a datetime subclass
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if abs(value) > _MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.debug("Timestamp %r out of range; using now", value)
            return utcnow()
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return utcnow()
        return as_datetime(parsed)
    return utcnow()


def reference_id(value: Any) -> str | None:
    """Extract a document id from an id string, a ``Coll/id`` path or a
    Firestore ``DocumentReference``."""
    if value is None:
        return None
    ref_id = getattr(value, "id", None)
    if isinstance(ref_id, str):
        return ref_id
    text = as_str(value).strip()
    if not text:
        return None
    return text.rsplit("/", 1)[-1]


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


# ------------------------------------------------------------------
# Base mapper
# ------------------------------------------------------------------


class EntityMapper:
    """Shared behaviour of the four entity mappers.

    Subclasses declare their field names and implement ``_build`` and
    ``_fields``.
    """

    collection: ClassVar[Collection]
    record_type: ClassVar[type]
    known_fields: ClassVar[frozenset[str]]
    # Two alias groups; the document is rejected only when both are absent
    required: ClassVar[tuple[tuple[str, ...], tuple[str, ...]]]
    parent_collection: ClassVar[Collection | None] = None
    # Record attribute holding the parent id
    parent_attr: ClassVar[str | None] = None
    parent_fields: ClassVar[tuple[str, ...]] = ()

    def document(self, doc_id: str, data: dict[str, Any] | None) -> RemoteDocument:
        """Split a raw field map into a ``RemoteDocument``."""
        return RemoteDocument.split(
            self.collection, doc_id, data, self.known_fields
        )

    def to_local(self, doc: RemoteDocument) -> MappedRecord:
        """Map a remote document to a local record.

        Raises:
            RecordMappingError: If the document id is not a UUID or both
                required fields are missing.
        """
        record_id = parse_uuid(doc.doc_id, self.collection.value)
        first, second = self.required
        if not _present(doc.get(*first)) and not _present(doc.get(*second)):
            raise RecordMappingError(
                self.collection.value,
                doc.doc_id,
                f"missing required fields '{first[0]}' and '{second[0]}'",
            )
        parent = self._parent_ref(doc)
        record = self._build(record_id, doc, parent)
        return MappedRecord(
            record=record, parent=parent, children=self._children(doc)
        )

    def to_remote(self, record: Record) -> dict[str, Any]:
        """Map a local record to a flat remote field map.

        Passthrough extras are written first so known fields always win.
        """
        if not isinstance(record, self.record_type):
            raise TypeError(
                f"{type(self).__name__} cannot map {type(record).__name__}"
            )
        return {**record.extra, "id": str(record.id), **self._fields(record)}

    # -- hooks -------------------------------------------------------

    def _build(
        self, record_id: UUID, doc: RemoteDocument, parent: ParentRef | None
    ) -> Record:
        raise NotImplementedError

    def _fields(self, record: Any) -> dict[str, Any]:
        raise NotImplementedError

    def _children(self, doc: RemoteDocument) -> tuple[UUID, ...]:
        return ()

    # -- helpers -----------------------------------------------------

    def _parent_ref(self, doc: RemoteDocument) -> ParentRef | None:
        if self.parent_collection is None:
            return None
        raw = reference_id(doc.get(*self.parent_fields))
        if raw is None:
            return None
        try:
            parent_id = parse_uuid(raw, self.parent_collection.value)
        except RecordMappingError:
            logger.warning(
                "Ignoring invalid parent id %r on %s record %s",
                raw,
                self.collection.value,
                doc.doc_id,
            )
            return None
        return ParentRef(self.parent_collection, parent_id)


def _parent_str(value: UUID | None) -> str:
    return str(value) if value is not None else ""


# ------------------------------------------------------------------
# Concrete mappers
# ------------------------------------------------------------------


class LocationMapper(EntityMapper):
    """Gym / team documents (``pirateIslands`` or ``teams``)."""

    collection = Collection.LOCATIONS
    record_type = LocationRecord
    NAME = ("name", "islandName", "teamName")
    ADDRESS = ("location", "islandLocation", "teamLocation")
    WEBSITE = ("gymWebsite", "website")
    known_fields = frozenset(
        (
            "id",
            *NAME,
            *ADDRESS,
            *WEBSITE,
            "country",
            "createdByUserId",
            "createdTimestamp",
            "lastModifiedByUserId",
            "lastModifiedTimestamp",
            "latitude",
            "longitude",
        )
    )
    required = (NAME, ADDRESS)

    def _build(self, record_id, doc, parent):
        website = as_str(doc.get(*self.WEBSITE)).strip()
        return LocationRecord(
            id=record_id,
            name=as_str(doc.get(*self.NAME)),
            location=as_str(doc.get(*self.ADDRESS)),
            country=as_str(doc.get("country")),
            created_by_user_id=as_str(doc.get("createdByUserId")),
            created_timestamp=as_datetime(doc.get("createdTimestamp")),
            last_modified_by_user_id=as_str(doc.get("lastModifiedByUserId")),
            last_modified_timestamp=as_datetime(
                doc.get("lastModifiedTimestamp")
            ),
            latitude=as_float(doc.get("latitude")),
            longitude=as_float(doc.get("longitude")),
            website=website or None,
            extra=doc.extra,
        )

    def _fields(self, record: LocationRecord) -> dict[str, Any]:
        return {
            "name": record.name,
            "location": record.location,
            "country": record.country,
            "createdByUserId": record.created_by_user_id,
            "createdTimestamp": record.created_timestamp,
            "gymWebsite": record.website or "",
            "latitude": record.latitude,
            "longitude": record.longitude,
            "lastModifiedByUserId": record.last_modified_by_user_id,
            "lastModifiedTimestamp": record.last_modified_timestamp,
        }


class DayScheduleMapper(EntityMapper):
    """Day-of-week schedule documents (``AppDayOfWeek``)."""

    collection = Collection.DAY_SCHEDULES
    record_type = DayScheduleRecord
    parent_collection = Collection.LOCATIONS
    parent_attr = "location_id"
    # Older clients embedded the whole island under ``pIsland``
    parent_fields = ("islandID", "pIsland.islandID", "teamID")
    known_fields = frozenset(
        (
            "id",
            "day",
            "name",
            "createdTimestamp",
            "islandID",
            "pIsland",
            "teamID",
            "matTimes",
        )
    )
    required = (("day",), parent_fields)

    def _build(self, record_id, doc, parent):
        name = doc.get("name")
        return DayScheduleRecord(
            id=record_id,
            day=as_str(doc.get("day")),
            name=as_str(name) if name is not None else None,
            created_timestamp=as_datetime(doc.get("createdTimestamp")),
            location_id=parent.parent_id if parent else None,
            extra=doc.extra,
        )

    def _children(self, doc: RemoteDocument) -> tuple[UUID, ...]:
        listed = doc.get("matTimes")
        if not isinstance(listed, list):
            return ()
        children = []
        for item in listed:
            raw = reference_id(item)
            try:
                children.append(parse_uuid(raw or "", "time_slots"))
            except RecordMappingError:
                logger.debug("Ignoring invalid time slot id %r", item)
        return tuple(children)

    def _fields(self, record: DayScheduleRecord) -> dict[str, Any]:
        return {
            "day": record.day,
            "name": record.name or "",
            "createdTimestamp": record.created_timestamp,
            "islandID": _parent_str(record.location_id),
        }


class TimeSlotMapper(EntityMapper):
    """Mat time documents (``MatTime``)."""

    collection = Collection.TIME_SLOTS
    record_type = TimeSlotRecord
    parent_collection = Collection.DAY_SCHEDULES
    parent_attr = "day_schedule_id"
    parent_fields = ("appDayOfWeekID", "appDayOfWeek")
    FLAGS = {
        "gi": "gi",
        "noGi": "no_gi",
        "openMat": "open_mat",
        "restrictions": "restrictions",
        "goodForBeginners": "good_for_beginners",
        "kids": "kids",
    }
    known_fields = frozenset(
        (
            "id",
            "type",
            "time",
            "restrictionDescription",
            "createdTimestamp",
            *FLAGS,
            *parent_fields,
        )
    )
    required = (("time",), ("type",))

    def _build(self, record_id, doc, parent):
        flags = {attr: as_bool(doc.get(key)) for key, attr in self.FLAGS.items()}
        return TimeSlotRecord(
            id=record_id,
            type=as_str(doc.get("type")),
            time=as_str(doc.get("time")),
            restriction_description=as_str(doc.get("restrictionDescription")),
            created_timestamp=as_datetime(doc.get("createdTimestamp")),
            day_schedule_id=parent.parent_id if parent else None,
            extra=doc.extra,
            **flags,
        )

    def _fields(self, record: TimeSlotRecord) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "type": record.type,
            "time": record.time,
            "restrictionDescription": record.restriction_description,
            "createdTimestamp": record.created_timestamp,
            "appDayOfWeekID": _parent_str(record.day_schedule_id),
        }
        for key, attr in self.FLAGS.items():
            fields[key] = getattr(record, attr)
        return fields


class ReviewMapper(EntityMapper):
    """Review documents (``reviews``)."""

    collection = Collection.REVIEWS
    record_type = ReviewRecord
    parent_collection = Collection.LOCATIONS
    parent_attr = "location_id"
    parent_fields = ("islandID", "teamID")
    USER_NAME = ("userName", "name")
    known_fields = frozenset(
        ("id", "stars", "review", "createdTimestamp", *USER_NAME, *parent_fields)
    )
    required = (("review",), ("stars",))

    def _build(self, record_id, doc, parent):
        return ReviewRecord(
            id=record_id,
            stars=as_int(doc.get("stars")),
            review=as_str(doc.get("review")),
            user_name=as_str(doc.get(*self.USER_NAME)) or "Anonymous",
            created_timestamp=as_datetime(doc.get("createdTimestamp")),
            location_id=parent.parent_id if parent else None,
            extra=doc.extra,
        )

    def _fields(self, record: ReviewRecord) -> dict[str, Any]:
        return {
            "stars": record.stars,
            "review": record.review,
            "userName": record.user_name,
            "createdTimestamp": record.created_timestamp,
            "islandID": _parent_str(record.location_id),
        }


MAPPERS: dict[Collection, EntityMapper] = {
    m.collection: m
    for m in (
        LocationMapper(),
        DayScheduleMapper(),
        TimeSlotMapper(),
        ReviewMapper(),
    )
}
