"""Unified configuration schema for matfinder_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the Firestore connection, the local store, the sync engine
and logging.

Usage:
    from matfinder_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class FirestoreConfig(BaseModel):
    """Firestore connection settings.

    All fields are optional to support zero-config: environment variables
    (and Application Default Credentials) can supply them at runtime.
    """

    project_id: str | None = Field(
        default=None, description="Google Cloud project id"
    )
    credentials_file: str | None = Field(
        default=None, description="Service account JSON key file"
    )
    database: str | None = Field(
        default=None, description="Firestore database id (default db if unset)"
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout in seconds",
    )

    model_config = {"frozen": True}


class LocalStoreConfig(BaseModel):
    """Local relational cache settings."""

    url: str = Field(
        default="sqlite:///matfinder.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(default=False, description="Echo SQL statements")

    model_config = {"frozen": True}


class CollectionNames(BaseModel):
    """Remote collection names for each logical collection.

    Defaults are the Mat_Finder names; the TravelBallRating app uses
    ``teams``, ``appDayOfWeeks`` and ``matTimes``.
    """

    locations: str = "pirateIslands"
    day_schedules: str = "AppDayOfWeek"
    time_slots: str = "MatTime"
    reviews: str = "reviews"

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_names(self) -> CollectionNames:
        names = [
            self.locations,
            self.day_schedules,
            self.time_slots,
            self.reviews,
        ]
        if any(not n.strip() for n in names):
            raise ValueError("collection names must not be empty")
        if len(set(names)) != len(names):
            raise ValueError(
                f"collection names must be unique, got {names}"
            )
        return self


MATFINDER_COLLECTIONS = CollectionNames()
TRAVELBALL_COLLECTIONS = CollectionNames(
    locations="teams",
    day_schedules="appDayOfWeeks",
    time_slots="matTimes",
    reviews="reviews",
)

COLLECTION_PRESETS: dict[str, CollectionNames] = {
    "matfinder": MATFINDER_COLLECTIONS,
    "travelball": TRAVELBALL_COLLECTIONS,
}


class SyncConfig(BaseModel):
    """Sync engine behaviour.

    Attributes:
        batch_size: Downloads applied between intermediate local saves.
        state_dir: Directory for the pending-link queue file.
        connectivity_url: URL checked before each collection pass.
        connectivity_timeout: Connectivity check timeout in seconds.
        start_listeners: Start live change listeners after the initial sync.
        collections: Remote collection names.
    """

    batch_size: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Applied downloads per intermediate save (1-1000)",
    )
    state_dir: str = Field(
        default=".matfinder_sync",
        description="Directory holding sync state files",
    )
    connectivity_url: str = Field(
        default="https://firestore.googleapis.com/",
        description="URL used to check network reachability",
    )
    connectivity_timeout: float = Field(default=5.0, gt=0)
    start_listeners: bool = True
    collections: CollectionNames = Field(default_factory=CollectionNames)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    firestore: FirestoreConfig = Field(default_factory=FirestoreConfig)
    local: LocalStoreConfig = Field(default_factory=LocalStoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict | None) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.
    A ``sync.app`` key naming a preset (``matfinder`` or ``travelball``)
    selects the remote collection names unless ``sync.collections`` is
    also given.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.

    Raises:
        ValueError: If ``sync.app`` names an unknown preset.
    """
    if not raw_data:
        return UnifiedConfig()

    data = dict(raw_data)
    sync_section = dict(data.get("sync") or {})
    app = sync_section.pop("app", None)
    if app is not None:
        preset = COLLECTION_PRESETS.get(str(app).lower())
        if preset is None:
            raise ValueError(
                f"Unknown app preset '{app}': expected one of "
                f"{', '.join(sorted(COLLECTION_PRESETS))}"
            )
        sync_section.setdefault("collections", preset.model_dump())
        logger.debug("Using '%s' collection preset", app)
    if sync_section or "sync" in data:
        data["sync"] = sync_section

    return UnifiedConfig(**data)
