"""Lifespan management for sync engine startup and shutdown."""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import yaml
from dotenv import load_dotenv

from .config import Settings, load_settings
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .core.async_utils import SingleWriter, run_sync
from .errors import StartupError
from .store.firestore import FirestoreRemoteStore, create_firestore_client
from .store.local import SqlAlchemyLocalStore
from .store.network import HttpConnectivityCheck
from .sync.coordinator import SyncCoordinator
from .sync.links import PendingLinks
from .sync.listener import ChangeListenerDispatcher
from .sync.notifications import Notifier
from .sync.reconciler import CollectionReconciler
from .sync.registry import CollectionRegistry

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


@dataclass
class AppContext:
    """Everything a running sync engine is made of."""

    settings: Settings
    registry: CollectionRegistry
    local: SqlAlchemyLocalStore
    remote: FirestoreRemoteStore
    writer: SingleWriter
    notifier: Notifier
    links: PendingLinks
    reconciler: CollectionReconciler
    dispatcher: ChangeListenerDispatcher
    coordinator: SyncCoordinator


def resolve_settings(overrides: dict[str, Any] | None = None) -> Settings:
    """Load ``.env``, YAML config and environment into ``Settings``.

    Raises:
        ValueError: If any source holds an invalid value.
        OSError, yaml.YAMLError: If a config file cannot be read.
    """
    # .env first so ${VAR} interpolation in YAML can use its values
    load_dotenv()

    unified: UnifiedConfig | None = None
    sources = []
    config_files = discover_config_files()
    if config_files:
        unified = build_config(load_hierarchical_config())
        sources.append(f"config file: {config_files[0]}")

    settings = load_settings(overrides, unified)

    if overrides:
        sources.append("CLI arguments")
    sources.append("environment variables")
    logger.info("Configuration loaded from: %s", ", ".join(sources))
    return settings


@asynccontextmanager
async def app_lifespan(
    overrides: dict[str, Any] | None = None,
) -> AsyncIterator[AppContext]:
    """
    Manage sync engine startup and shutdown.

    On startup:
    - Resolve settings: CLI > env vars (.env loaded first) > YAML > defaults
    - Open the local store and create its schema
    - Create the Firestore client
    - Load the pending-link queue
    - Wire reconciler, listener dispatcher and coordinator

    On shutdown:
    - Stop listeners
    - Persist the pending-link queue
    - Shut down the writer thread and close the local store

    Args:
        overrides: Optional dict with values from CLI (project, credentials,
            db_url, debug, collections)

    Yields:
        The wired ``AppContext``.

    Raises:
        StartupError: If configuration is invalid or a store cannot be
            opened.
    """
    try:
        settings = resolve_settings(overrides)
    except (ValueError, OSError, yaml.YAMLError) as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise StartupError(f"Configuration error: {e}") from e

    registry = CollectionRegistry(settings.collections)
    writer = SingleWriter()
    try:
        local = await writer.run(
            SqlAlchemyLocalStore.from_url,
            settings.local_db_url,
            settings.local_db_echo,
        )
    except Exception as e:
        writer.shutdown()
        logger.error("Failed to open local store: %s", e)
        _stderr_print(f"ERROR: Cannot open local store {settings.local_db_url}")
        raise StartupError(f"Local store initialization failed: {e}") from e

    try:
        client = await run_sync(create_firestore_client, settings)
    except Exception as e:
        await writer.run(local.close)
        writer.shutdown()
        logger.error("Failed to create Firestore client: %s", e)
        _stderr_print("ERROR: Firestore client could not be created.")
        _stderr_print(
            "  Check MATFINDER_FIRESTORE_PROJECT and GOOGLE_APPLICATION_CREDENTIALS."
        )
        raise StartupError(f"Firestore client creation failed: {e}") from e

    remote = FirestoreRemoteStore(client, timeout=settings.request_timeout)
    notifier = Notifier()
    links = PendingLinks(settings.state_dir)
    try:
        links.load()
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable pending link state: %s", e)

    reconciler = CollectionReconciler(
        local,
        remote,
        registry,
        notifier,
        writer,
        links,
        connectivity=HttpConnectivityCheck(
            settings.connectivity_url, settings.connectivity_timeout
        ),
        batch_size=settings.batch_size,
    )
    dispatcher = ChangeListenerDispatcher(local, remote, registry, writer, links)
    coordinator = SyncCoordinator(
        reconciler,
        dispatcher,
        registry,
        start_listeners=settings.start_listeners,
    )
    logger.info(
        "Sync engine ready: project=%s, local=%s, collections=%s",
        settings.firestore_project or "(default)",
        settings.local_db_url,
        ", ".join(spec.remote_name for spec in registry),
    )

    try:
        yield AppContext(
            settings=settings,
            registry=registry,
            local=local,
            remote=remote,
            writer=writer,
            notifier=notifier,
            links=links,
            reconciler=reconciler,
            dispatcher=dispatcher,
            coordinator=coordinator,
        )
    finally:
        logger.info("Sync engine shutting down")
        await dispatcher.stop_listeners()
        try:
            links.save()
        except OSError as e:
            logger.error("Failed to persist pending links: %s", e)
        await writer.run(local.close)
        writer.shutdown()
