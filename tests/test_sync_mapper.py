"""Tests for the entity mappers (remote document <-> local record)."""

from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

from matfinder_sync.errors import RecordMappingError
from matfinder_sync.sync.mapper import (
    MAPPERS,
    DayScheduleMapper,
    LocationMapper,
    ReviewMapper,
    TimeSlotMapper,
    as_bool,
    as_datetime,
    reference_id,
)
from matfinder_sync.sync.records import (
    Collection,
    LocationRecord,
    ReviewRecord,
    TimeSlotRecord,
)


def _map(mapper, doc_id, fields):
    return mapper.to_local(mapper.document(doc_id, fields))


# -------------------------------------------------------------------------
# Coercion helpers
# -------------------------------------------------------------------------


class TestCoercion:
    def test_as_datetime_iso_z(self):
        assert as_datetime("2024-01-02T03:04:05Z") == datetime(
            2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc
        )

    def test_as_datetime_epoch(self):
        assert as_datetime(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_as_datetime_epoch_millis(self):
        assert as_datetime(1717171717000) == datetime(
            2024, 5, 31, 16, 8, 37, tzinfo=timezone.utc
        )

    def test_as_datetime_out_of_range_is_now(self):
        before = datetime.now(timezone.utc)
        assert as_datetime(1e300) >= before
        assert as_datetime(float("nan")) >= before

    def test_as_datetime_naive_treated_as_utc(self):
        assert as_datetime(datetime(2024, 5, 1)).tzinfo is timezone.utc

    def test_as_datetime_garbage_is_now(self):
        before = datetime.now(timezone.utc)
        assert as_datetime("yesterday-ish") >= before

    @pytest.mark.parametrize(
        "value,expected",
        [(True, True), (0, False), (1, True), ("true", True), ("no", False), (None, False)],
    )
    def test_as_bool(self, value, expected):
        assert as_bool(value) is expected

    def test_reference_id_from_path_and_reference(self):
        assert reference_id("AppDayOfWeek/abc") == "abc"
        assert reference_id(SimpleNamespace(id="xyz")) == "xyz"
        assert reference_id("  ") is None
        assert reference_id(None) is None


# -------------------------------------------------------------------------
# Location
# -------------------------------------------------------------------------


class TestLocationMapper:
    mapper = LocationMapper()

    def test_primary_fields(self, location_doc):
        doc_id = str(uuid4())
        mapped = _map(self.mapper, doc_id, location_doc(gymWebsite="https://gym.example"))

        record = mapped.record
        assert isinstance(record, LocationRecord)
        assert record.id == UUID(doc_id)
        assert record.name == "Gym A"
        assert record.location == "1 Main St, Springfield"
        assert record.latitude == 40.0
        assert record.website == "https://gym.example"
        assert record.created_timestamp.year == 2024
        assert mapped.parent is None

    def test_millisecond_timestamp_does_not_fail_record(self, location_doc):
        mapped = _map(
            self.mapper, str(uuid4()), location_doc(createdTimestamp=1717171717000)
        )
        assert mapped.record.created_timestamp.year == 2024

    @pytest.mark.parametrize(
        "name_key,loc_key",
        [("islandName", "islandLocation"), ("teamName", "teamLocation")],
    )
    def test_aliases(self, name_key, loc_key):
        mapped = _map(
            self.mapper, str(uuid4()), {name_key: "Old Gym", loc_key: "Somewhere"}
        )
        assert mapped.record.name == "Old Gym"
        assert mapped.record.location == "Somewhere"

    def test_primary_checked_before_alias(self):
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {"name": "New", "islandName": "Old", "location": "x"},
        )
        assert mapped.record.name == "New"

    def test_blank_primary_falls_through_to_alias(self):
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {"name": "", "islandName": "Old", "location": "x"},
        )
        assert mapped.record.name == "Old"

    def test_one_required_field_is_enough(self):
        mapped = _map(self.mapper, str(uuid4()), {"name": "Only a name"})
        assert mapped.record.location == ""
        assert mapped.record.country == ""
        assert mapped.record.latitude == 0.0
        assert mapped.record.website is None

    def test_both_required_missing_rejected(self):
        with pytest.raises(RecordMappingError, match="missing required"):
            _map(self.mapper, str(uuid4()), {"country": "US"})

    def test_invalid_id_rejected(self, location_doc):
        with pytest.raises(RecordMappingError, match="invalid UUID"):
            _map(self.mapper, "not-a-uuid", location_doc())

    def test_hyphenless_id_accepted(self, location_doc):
        uid = uuid4()
        mapped = _map(self.mapper, uid.hex.upper(), location_doc())
        assert mapped.record.id == uid

    def test_unknown_fields_pass_through(self, location_doc):
        doc_id = str(uuid4())
        mapped = _map(self.mapper, doc_id, location_doc(drinksMenu="kombucha"))

        assert mapped.record.extra == {"drinksMenu": "kombucha"}
        remote = self.mapper.to_remote(mapped.record)
        assert remote["drinksMenu"] == "kombucha"

    def test_to_remote_flat(self):
        record = LocationRecord(id=uuid4(), name="Gym", location="Addr")
        remote = self.mapper.to_remote(record)

        assert remote["id"] == str(record.id)
        assert remote["name"] == "Gym"
        assert remote["gymWebsite"] == ""
        assert isinstance(remote["createdTimestamp"], datetime)

    def test_known_fields_beat_extras(self):
        record = LocationRecord(
            id=uuid4(), name="Real", location="x", extra={"name": "stale"}
        )
        assert self.mapper.to_remote(record)["name"] == "Real"

    def test_wrong_record_type(self):
        with pytest.raises(TypeError):
            self.mapper.to_remote(ReviewRecord(id=uuid4()))


# -------------------------------------------------------------------------
# DaySchedule
# -------------------------------------------------------------------------


class TestDayScheduleMapper:
    mapper = DayScheduleMapper()

    def test_parent_from_island_id(self):
        parent = uuid4()
        mapped = _map(
            self.mapper, str(uuid4()), {"day": "Monday", "islandID": str(parent)}
        )
        assert mapped.record.location_id == parent
        assert mapped.parent.collection is Collection.LOCATIONS
        assert mapped.parent.parent_id == parent

    def test_parent_from_nested_island(self):
        parent = uuid4()
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {"day": "Tuesday", "pIsland": {"islandID": parent.hex}},
        )
        assert mapped.record.location_id == parent
        # The embedded map is a known field, not an extra
        assert "pIsland" not in mapped.record.extra

    def test_parent_from_team_id(self):
        parent = uuid4()
        mapped = _map(self.mapper, str(uuid4()), {"teamID": str(parent)})
        assert mapped.record.location_id == parent
        assert mapped.record.day == ""

    def test_invalid_parent_ignored(self):
        mapped = _map(
            self.mapper, str(uuid4()), {"day": "Friday", "islandID": "garbage"}
        )
        assert mapped.parent is None
        assert mapped.record.location_id is None

    def test_day_and_parent_missing_rejected(self):
        with pytest.raises(RecordMappingError):
            _map(self.mapper, str(uuid4()), {"name": "Open mat"})

    def test_listed_time_slots_become_children(self):
        a, b = uuid4(), uuid4()
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {
                "day": "Sunday",
                "matTimes": [str(a), SimpleNamespace(id=b.hex), "bogus"],
            },
        )
        assert mapped.children == (a, b)

    def test_to_remote_flattens_parent(self):
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {"day": "Monday", "pIsland": {"islandID": str(uuid4())}},
        )
        remote = self.mapper.to_remote(mapped.record)
        assert remote["islandID"] == str(mapped.record.location_id)
        assert "pIsland" not in remote

    def test_to_remote_unset_parent_is_empty_string(self):
        mapped = _map(self.mapper, str(uuid4()), {"day": "Monday"})
        assert self.mapper.to_remote(mapped.record)["islandID"] == ""


# -------------------------------------------------------------------------
# TimeSlot
# -------------------------------------------------------------------------


class TestTimeSlotMapper:
    mapper = TimeSlotMapper()

    def test_flags_and_defaults(self):
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {"time": "18:00", "type": "class", "gi": True, "openMat": 1},
        )
        record = mapped.record
        assert isinstance(record, TimeSlotRecord)
        assert record.gi is True
        assert record.open_mat is True
        assert record.no_gi is False
        assert record.kids is False
        assert record.restriction_description == ""

    def test_parent_from_reference(self):
        parent = uuid4()
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {"time": "7:00", "appDayOfWeek": f"AppDayOfWeek/{parent}"},
        )
        assert mapped.record.day_schedule_id == parent
        assert mapped.parent.collection is Collection.DAY_SCHEDULES

    def test_parent_id_field_preferred(self):
        first, second = uuid4(), uuid4()
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {
                "type": "open mat",
                "appDayOfWeekID": str(first),
                "appDayOfWeek": SimpleNamespace(id=str(second)),
            },
        )
        assert mapped.record.day_schedule_id == first

    def test_time_and_type_missing_rejected(self):
        with pytest.raises(RecordMappingError):
            _map(self.mapper, str(uuid4()), {"gi": True})

    def test_to_remote_uses_camel_case_flags(self):
        record = TimeSlotRecord(id=uuid4(), time="6pm", no_gi=True, good_for_beginners=True)
        remote = self.mapper.to_remote(record)
        assert remote["noGi"] is True
        assert remote["goodForBeginners"] is True
        assert remote["appDayOfWeekID"] == ""


# -------------------------------------------------------------------------
# Review
# -------------------------------------------------------------------------


class TestReviewMapper:
    mapper = ReviewMapper()

    def test_name_used_when_user_name_missing(self):
        """A review written with ``name`` instead of ``userName``."""
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {"review": "Great mats", "stars": 5, "name": "Sam"},
        )
        assert mapped.record.user_name == "Sam"

    def test_user_name_preferred(self):
        mapped = _map(
            self.mapper,
            str(uuid4()),
            {"review": "ok", "userName": "Alex", "name": "Sam"},
        )
        assert mapped.record.user_name == "Alex"

    def test_anonymous_default(self):
        mapped = _map(self.mapper, str(uuid4()), {"stars": 3})
        assert mapped.record.user_name == "Anonymous"
        assert mapped.record.review == ""

    def test_stars_clamped(self):
        mapped = _map(self.mapper, str(uuid4()), {"stars": "9", "review": "x"})
        assert mapped.record.stars == 5

    def test_parent_from_team_id(self):
        parent = uuid4()
        mapped = _map(
            self.mapper, str(uuid4()), {"review": "x", "teamID": str(parent)}
        )
        assert mapped.record.location_id == parent

    def test_review_and_stars_missing_rejected(self):
        with pytest.raises(RecordMappingError):
            _map(self.mapper, str(uuid4()), {"userName": "Sam"})

    def test_to_remote(self):
        parent = uuid4()
        record = ReviewRecord(
            id=uuid4(), stars=4, review="Nice", user_name="Kim", location_id=parent
        )
        remote = self.mapper.to_remote(record)
        assert remote["userName"] == "Kim"
        assert remote["islandID"] == str(parent)
        assert remote["stars"] == 4


def test_one_mapper_per_collection():
    assert set(MAPPERS) == set(Collection)
    for key, mapper in MAPPERS.items():
        assert mapper.collection is key
