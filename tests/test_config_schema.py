"""Tests for matfinder_sync.config_schema -- Pydantic config models."""

import pytest
from pydantic import ValidationError

from matfinder_sync.config_schema import (
    COLLECTION_PRESETS,
    TRAVELBALL_COLLECTIONS,
    CollectionNames,
    FirestoreConfig,
    SyncConfig,
    UnifiedConfig,
    build_config,
)


class TestSectionDefaults:
    def test_zero_config_valid(self):
        cfg = UnifiedConfig()
        assert cfg.firestore.project_id is None
        assert cfg.local.url == "sqlite:///matfinder.db"
        assert cfg.sync.batch_size == 10
        assert cfg.sync.start_listeners is True
        assert cfg.logging.level == "INFO"

    def test_default_collections_are_matfinder(self):
        names = SyncConfig().collections
        assert (
            names.locations,
            names.day_schedules,
            names.time_slots,
            names.reviews,
        ) == ("pirateIslands", "AppDayOfWeek", "MatTime", "reviews")

    def test_models_are_frozen(self):
        cfg = FirestoreConfig(project_id="p")
        with pytest.raises(ValidationError):
            cfg.project_id = "other"


class TestValidation:
    @pytest.mark.parametrize("size", [0, -1, 1001])
    def test_batch_size_range(self, size):
        with pytest.raises(ValidationError):
            SyncConfig(batch_size=size)

    def test_request_timeout_positive(self):
        with pytest.raises(ValidationError):
            FirestoreConfig(request_timeout=0)

    def test_collection_names_unique(self):
        with pytest.raises(ValidationError, match="unique"):
            CollectionNames(locations="reviews")

    def test_collection_names_not_blank(self):
        with pytest.raises(ValidationError, match="empty"):
            CollectionNames(time_slots="  ")


class TestBuildConfig:
    @pytest.mark.parametrize("raw", [None, {}])
    def test_empty_gives_defaults(self, raw):
        assert build_config(raw) == UnifiedConfig()

    def test_sections_parsed(self):
        cfg = build_config(
            {
                "firestore": {"project_id": "demo", "request_timeout": 12},
                "local": {"url": "sqlite://"},
                "sync": {"batch_size": 50, "state_dir": "/var/lib/mf"},
                "logging": {"level": "DEBUG", "file": "/tmp/mf.log"},
            }
        )
        assert cfg.firestore.project_id == "demo"
        assert cfg.firestore.request_timeout == 12.0
        assert cfg.local.url == "sqlite://"
        assert cfg.sync.batch_size == 50
        assert cfg.sync.state_dir == "/var/lib/mf"
        assert cfg.logging.file == "/tmp/mf.log"

    def test_app_preset_selects_collections(self):
        cfg = build_config({"sync": {"app": "TravelBall"}})
        assert cfg.sync.collections == TRAVELBALL_COLLECTIONS

    def test_explicit_collections_beat_preset(self):
        cfg = build_config(
            {
                "sync": {
                    "app": "travelball",
                    "collections": {"locations": "gyms"},
                }
            }
        )
        assert cfg.sync.collections.locations == "gyms"
        assert cfg.sync.collections.time_slots == "MatTime"

    def test_unknown_preset_rejected(self):
        with pytest.raises(ValueError, match="Unknown app preset"):
            build_config({"sync": {"app": "chess"}})

    def test_presets_registered(self):
        assert set(COLLECTION_PRESETS) == {"matfinder", "travelball"}
        assert COLLECTION_PRESETS["travelball"].locations == "teams"
