"""SQLAlchemy implementation of the local relational cache.

Schema: ``Location`` owns its ``DaySchedule`` and ``Review`` rows and each
``DaySchedule`` owns its ``TimeSlot`` rows (``delete-orphan`` cascades).
Parent foreign keys are nullable so a child downloaded before its parent
can be stored and linked later.

Ids are stored as canonical hyphenated lower-case UUID strings.  One
session serves as the single write context; changes accumulate in it
until ``save_batch()`` commits them.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from matfinder_sync.errors import LocalSaveError
from matfinder_sync.sync.records import (
    Collection,
    DayScheduleRecord,
    LocationRecord,
    Record,
    ReviewRecord,
    TimeSlotRecord,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class Location(Base):
    """A gym or team."""

    __tablename__ = "locations"

    id = Column(String(36), primary_key=True)
    name = Column(String, nullable=False, default="")
    location = Column(String, nullable=False, default="")
    country = Column(String, nullable=False, default="")
    created_by_user_id = Column(String, nullable=False, default="")
    created_timestamp = Column(DateTime(timezone=True))
    last_modified_by_user_id = Column(String, nullable=False, default="")
    last_modified_timestamp = Column(DateTime(timezone=True))
    latitude = Column(Float, nullable=False, default=0.0)
    longitude = Column(Float, nullable=False, default=0.0)
    website = Column(String, nullable=True)
    extra = Column(JSON, nullable=True)

    day_schedules = relationship(
        "DaySchedule", back_populates="location", cascade="all, delete-orphan"
    )
    reviews = relationship(
        "Review", back_populates="location", cascade="all, delete-orphan"
    )


class DaySchedule(Base):
    """Schedule for one day of the week at a location."""

    __tablename__ = "day_schedules"

    id = Column(String(36), primary_key=True)
    day = Column(String, nullable=False, default="")
    name = Column(String, nullable=True)
    created_timestamp = Column(DateTime(timezone=True))
    location_id = Column(
        String(36),
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    extra = Column(JSON, nullable=True)

    location = relationship("Location", back_populates="day_schedules")
    time_slots = relationship(
        "TimeSlot",
        back_populates="day_schedule",
        cascade="all, delete-orphan",
        order_by="TimeSlot.created_timestamp",
    )


class TimeSlot(Base):
    """One class or open mat within a day schedule."""

    __tablename__ = "time_slots"

    id = Column(String(36), primary_key=True)
    type = Column(String, nullable=False, default="")
    time = Column(String, nullable=False, default="")
    gi = Column(Boolean, nullable=False, default=False)
    no_gi = Column(Boolean, nullable=False, default=False)
    open_mat = Column(Boolean, nullable=False, default=False)
    restrictions = Column(Boolean, nullable=False, default=False)
    restriction_description = Column(String, nullable=False, default="")
    good_for_beginners = Column(Boolean, nullable=False, default=False)
    kids = Column(Boolean, nullable=False, default=False)
    created_timestamp = Column(DateTime(timezone=True))
    day_schedule_id = Column(
        String(36),
        ForeignKey("day_schedules.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    extra = Column(JSON, nullable=True)

    day_schedule = relationship("DaySchedule", back_populates="time_slots")


class Review(Base):
    """A rating of a location."""

    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True)
    stars = Column(Integer, nullable=False, default=0)
    review = Column(String, nullable=False, default="")
    user_name = Column(String, nullable=False, default="Anonymous")
    created_timestamp = Column(DateTime(timezone=True))
    location_id = Column(
        String(36),
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    extra = Column(JSON, nullable=True)

    location = relationship("Location", back_populates="reviews")


# Collection -> (ORM model, record model, parent FK column, parent collection)
_TABLES: dict[Collection, tuple[Any, type, str | None, Collection | None]] = {
    Collection.LOCATIONS: (Location, LocationRecord, None, None),
    Collection.DAY_SCHEDULES: (
        DaySchedule,
        DayScheduleRecord,
        "location_id",
        Collection.LOCATIONS,
    ),
    Collection.TIME_SLOTS: (
        TimeSlot,
        TimeSlotRecord,
        "day_schedule_id",
        Collection.DAY_SCHEDULES,
    ),
    Collection.REVIEWS: (
        Review,
        ReviewRecord,
        "location_id",
        Collection.LOCATIONS,
    ),
}

_ID_COLUMNS = frozenset(("location_id", "day_schedule_id"))


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _json_safe(value: dict[str, Any]) -> dict[str, Any]:
    """Passthrough fields may hold Firestore types (GeoPoint, references,
    timestamps); they are stored as their string form."""
    return json.loads(json.dumps(value, default=str))


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine usable from the single writer thread.

    SQLite connections are created on one thread and used on another, so
    ``check_same_thread`` is disabled; in-memory databases share a single
    connection so every session sees the same data.  Foreign keys are
    enforced on SQLite.
    """
    kwargs: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


class SqlAlchemyLocalStore:
    """``LocalStore`` backed by a SQLAlchemy session.

    Args:
        engine: Engine from ``create_db_engine``.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine, expire_on_commit=False
        )
        self._session: Session = self._session_factory()

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> SqlAlchemyLocalStore:
        store = cls(create_db_engine(url, echo=echo))
        store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self._session.close()
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_ids(self, collection: Collection) -> list[str] | None:
        table = _TABLES.get(collection)
        if table is None:
            logger.warning("Unknown local collection: %s", collection)
            return None
        model = table[0]
        return list(self._session.scalars(select(model.id).order_by(model.id)))

    def fetch_record(
        self, collection: Collection, record_id: UUID
    ) -> Record | None:
        model, record_type, _, _ = _TABLES[collection]
        row = self._get(model, record_id)
        if row is None:
            return None
        return self._to_record(row, record_type)

    def exists(self, collection: Collection, record_id: UUID) -> bool:
        model = _TABLES[collection][0]
        return self._get(model, record_id) is not None

    def count(self, collection: Collection) -> int:
        model = _TABLES[collection][0]
        return self._session.scalar(select(func.count()).select_from(model)) or 0

    # ------------------------------------------------------------------
    # Writes (pending until save_batch)
    # ------------------------------------------------------------------

    def upsert_record(self, collection: Collection, record: Record) -> bool:
        model, record_type, _, _ = _TABLES[collection]
        if not isinstance(record, record_type):
            raise TypeError(
                f"Expected {record_type.__name__} for {collection.value}, "
                f"got {type(record).__name__}"
            )
        row = self._get(model, record.id)
        created = row is None
        if created:
            row = model(id=str(record.id))
            self._session.add(row)

        for key, value in record.model_dump(exclude={"id"}).items():
            if key in _ID_COLUMNS and value is not None:
                value = str(value)
            elif key == "extra":
                value = _json_safe(value) if value else None
            setattr(row, key, value)
        logger.debug(
            "%s %s record %s",
            "Created" if created else "Updated",
            collection.value,
            record.id,
        )
        return created

    def delete_record(self, collection: Collection, record_id: UUID) -> bool:
        model = _TABLES[collection][0]
        row = self._get(model, record_id)
        if row is None:
            return False
        if row in self._session.new:
            self._session.expunge(row)
        else:
            self._session.delete(row)
        return True

    def link_parent(
        self, collection: Collection, child_id: UUID, parent_id: UUID
    ) -> bool:
        model, _, fk_column, parent_collection = _TABLES[collection]
        if fk_column is None or parent_collection is None:
            return False
        child = self._get(model, child_id)
        if child is None or not self.exists(parent_collection, parent_id):
            return False
        setattr(child, fk_column, str(parent_id))
        return True

    def save_batch(self) -> None:
        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.error("Local save failed, rolled back: %s", exc)
            raise LocalSaveError(str(exc)) from exc

    def rollback(self) -> None:
        self._session.rollback()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, model: Any, record_id: UUID) -> Any:
        # Sees pending adds and deletes without flushing the batch
        key = str(record_id)
        with self._session.no_autoflush:
            row = self._session.get(model, key)
        if row is None:
            for obj in self._session.new:
                if isinstance(obj, model) and obj.id == key:
                    return obj
            return None
        if row in self._session.deleted:
            return None
        return row

    @staticmethod
    def _to_record(row: Any, record_type: type) -> Record:
        data: dict[str, Any] = {}
        for column in row.__table__.columns:
            value = getattr(row, column.name)
            if isinstance(value, datetime):
                value = _utc(value)
            data[column.name] = value
        data["extra"] = data.get("extra") or {}
        # Unset timestamps fall back to the record default
        return record_type(**{k: v for k, v in data.items() if v is not None})
