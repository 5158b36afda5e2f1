"""Runtime settings for the sync engine.

Reads Firestore and local store settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    MATFINDER_FIRESTORE_PROJECT: Google Cloud project id (optional, ADC default)
    GOOGLE_APPLICATION_CREDENTIALS: Service account key file (optional)
    MATFINDER_FIRESTORE_DATABASE: Firestore database id (optional)
    MATFINDER_LOCAL_DB_URL: SQLAlchemy URL of the local cache
    MATFINDER_SYNC_BATCH_SIZE: Downloads per intermediate save (1-1000)
    MATFINDER_SYNC_STATE_DIR: Directory for sync state files
    MATFINDER_CONNECTIVITY_URL: URL checked for network reachability
    MATFINDER_DEBUG: Enable debug logging
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from .config_schema import CollectionNames, UnifiedConfig

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    firestore_project: str | None = None
    credentials_file: str | None = None
    firestore_database: str | None = None
    request_timeout: float = 30.0
    local_db_url: str = "sqlite:///matfinder.db"
    local_db_echo: bool = False
    batch_size: int = 10
    state_dir: str = ".matfinder_sync"
    connectivity_url: str = "https://firestore.googleapis.com/"
    connectivity_timeout: float = 5.0
    start_listeners: bool = True
    debug: bool = False
    collections: CollectionNames = field(default_factory=CollectionNames)


def validate_settings(settings: Settings) -> None:
    """Validate settings values and raise ValueError if invalid.

    Raises:
        ValueError: If the batch size is out of range, the local store URL
            is empty, or the connectivity URL is not http(s).
    """
    if not 1 <= settings.batch_size <= 1000:
        raise ValueError(
            f"Invalid batch size {settings.batch_size}: must be between 1 and 1000"
        )

    settings.local_db_url = settings.local_db_url.strip()
    if not settings.local_db_url:
        raise ValueError(
            "Local store URL cannot be empty. Set MATFINDER_LOCAL_DB_URL."
        )

    url = settings.connectivity_url.strip()
    if not url.startswith(("http://", "https://")) or not urlparse(
        url
    ).hostname:
        raise ValueError(
            f"Invalid connectivity URL '{settings.connectivity_url}': "
            "must be an http:// or https:// URL with a hostname"
        )
    settings.connectivity_url = url


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str) -> int | None:
    val = os.getenv(key)
    if val is None:
        return None
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid {key} '{val}': must be a number") from None


def load_settings(
    overrides: dict | None = None,
    unified: UnifiedConfig | None = None,
) -> Settings:
    """Resolve runtime settings with unified precedence.

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        overrides: CLI values (``project``, ``credentials``, ``db_url``,
            ``debug``, ``collections``).  ``None`` values are ignored.
        unified: Config built from YAML files; defaults when omitted.

    Returns:
        Validated Settings instance.

    Raises:
        ValueError: If any resolved value is invalid.
    """
    cli = {k: v for k, v in (overrides or {}).items() if v is not None}
    fb = unified or UnifiedConfig()

    batch_size = _get_int_env("MATFINDER_SYNC_BATCH_SIZE")
    env_debug = _get_bool_env("MATFINDER_DEBUG")

    settings = Settings(
        firestore_project=cli.get("project")
        or os.getenv("MATFINDER_FIRESTORE_PROJECT")
        or fb.firestore.project_id,
        credentials_file=cli.get("credentials")
        or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
        or fb.firestore.credentials_file,
        firestore_database=os.getenv("MATFINDER_FIRESTORE_DATABASE")
        or fb.firestore.database,
        request_timeout=fb.firestore.request_timeout,
        local_db_url=cli.get("db_url")
        or os.getenv("MATFINDER_LOCAL_DB_URL")
        or fb.local.url,
        local_db_echo=fb.local.echo,
        batch_size=batch_size
        if batch_size is not None
        else fb.sync.batch_size,
        state_dir=os.getenv("MATFINDER_SYNC_STATE_DIR")
        or fb.sync.state_dir,
        connectivity_url=os.getenv("MATFINDER_CONNECTIVITY_URL")
        or fb.sync.connectivity_url,
        connectivity_timeout=fb.sync.connectivity_timeout,
        start_listeners=fb.sync.start_listeners,
        debug=bool(cli.get("debug"))
        or (env_debug if env_debug is not None else False),
        collections=cli.get("collections") or fb.sync.collections,
    )

    validate_settings(settings)
    return settings
