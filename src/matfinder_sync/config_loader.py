"""
Config file discovery and loading for matfinder-sync.

Up to three files are read, lowest precedence first:

* ``~/.config/matfinder_sync/config.yml``: per-user defaults, usually the
  Firestore project and key file.
* ``.matfinder_sync/config.yml`` (or ``.yaml``) in the working directory:
  per-checkout settings such as the local database and the app preset.
* The file named by ``MATFINDER_SYNC_CONFIG``.

Files merge section by section: a later file overrides single keys of
``firestore``, ``local``, ``sync`` and ``logging`` and keeps the rest of
an earlier file's section.  String values may reference the environment
as ``${VAR}`` or ``${VAR:-default}``.

Usage:
    from matfinder_sync.config_loader import load_hierarchical_config

    config = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .config_schema import COLLECTION_PRESETS

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MATFINDER_SYNC_CONFIG"
PROJECT_DIR = ".matfinder_sync"
SECTIONS = ("firestore", "local", "sync", "logging")

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand environment references in one string.

    An unset or empty variable expands to its default, or to ``""`` when
    there is none.  A ``${`` without a closing brace is kept as is.
    """
    return _ENV_REF.sub(
        lambda m: os.environ.get(m.group(1)) or m.group(2) or "", value
    )


def expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return interpolate_env_vars(value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first."""
    candidates: list[Path] = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    project = Path.cwd() / PROJECT_DIR
    candidates += [project / "config.yml", project / "config.yaml"]
    candidates.append(Path.home() / ".config" / "matfinder_sync" / "config.yml")
    return [p for p in candidates if p.exists()]


def read_config_file(path: Path) -> dict[str, dict[str, Any]]:
    """Parse one config file into its known sections.

    Environment references are expanded first.  Unknown top-level keys
    and a non-mapping root are logged and ignored.

    Raises:
        ValueError: If a section is not a mapping, or ``sync.app`` names
            no known preset.  The message names *path*.
        yaml.YAMLError: If the file is not valid YAML.
        OSError: If the file cannot be read.
    """
    with open(path, encoding="utf-8") as fh:
        data = expand_env(yaml.safe_load(fh))
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Config file %s has a %s root, not sections; ignoring it",
            path,
            type(data).__name__,
        )
        return {}

    sections: dict[str, dict[str, Any]] = {}
    for key, value in data.items():
        if key not in SECTIONS:
            logger.warning("%s: ignoring unknown section '%s'", path, key)
        elif value is not None:
            if not isinstance(value, dict):
                raise ValueError(f"{path}: section '{key}' must be a mapping")
            sections[key] = value

    app = sections.get("sync", {}).get("app")
    if app is not None and str(app).lower() not in COLLECTION_PRESETS:
        raise ValueError(
            f"{path}: unknown app preset '{app}', expected one of "
            f"{', '.join(sorted(COLLECTION_PRESETS))}"
        )
    return sections


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file.

    A file whose ``sync`` section sets ``app`` or ``collections`` replaces
    both keys from lower-precedence files, so the collection names always
    come from a single file.

    Returns an empty dict when no config files exist.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, dict[str, Any]] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        for section, values in read_config_file(path).items():
            target = merged.setdefault(section, {})
            if section == "sync" and ("app" in values or "collections" in values):
                target.pop("app", None)
                target.pop("collections", None)
            target.update(values)
    return merged


# ---------------------------------------------------------------------------
# Starter file for ``matfinder-sync init``
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# matfinder-sync configuration
#
# Connection settings can also be set via environment variables:
#   MATFINDER_FIRESTORE_PROJECT, GOOGLE_APPLICATION_CREDENTIALS,
#   MATFINDER_LOCAL_DB_URL
#
# firestore:
#   project_id: my-project
#   credentials_file: ${GOOGLE_APPLICATION_CREDENTIALS}
#   request_timeout: 30
#
# local:
#   url: sqlite:///matfinder.db
#
# sync:
#   app: matfinder          # or travelball
#   batch_size: 10
#   state_dir: .matfinder_sync
#   start_listeners: true
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """The highest-precedence existing file, else the project-level path."""
    existing = discover_config_files()
    return existing[0] if existing else Path.cwd() / PROJECT_DIR / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Write the commented starter file unless a config file exists.

    Args:
        target: Where to write; defaults to ``resolve_config_path()``.

    Returns:
        The existing or newly written config file.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path
