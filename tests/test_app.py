"""Tests for matfinder_sync.app -- engine startup/shutdown lifecycle.

Tests the app_lifespan() async context manager which:
- Resolves settings (with optional CLI overrides)
- Opens the local store and creates the Firestore client
- Loads the pending-link queue and wires the engine
- Fails fast on config errors or store failures
- Stops listeners and persists state on exit
"""

import json
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from matfinder_sync.app import app_lifespan
from matfinder_sync.config import Settings
from matfinder_sync.config_schema import TRAVELBALL_COLLECTIONS
from matfinder_sync.errors import StartupError
from matfinder_sync.store.local import SqlAlchemyLocalStore
from matfinder_sync.sync.links import STATE_FILE, PendingLink
from matfinder_sync.sync.records import Collection


@pytest.fixture
def settings(tmp_path):
    return Settings(local_db_url="sqlite://", state_dir=str(tmp_path / "state"))


def _patched(settings, client=None):
    """Patch settings resolution, the Firestore client and stderr output."""
    return (
        patch("matfinder_sync.app.resolve_settings", return_value=settings),
        patch(
            "matfinder_sync.app.create_firestore_client",
            return_value=client or MagicMock(),
        ),
        patch("matfinder_sync.app._stderr_print"),
    )


# -------------------------------------------------------------------------
# app_lifespan() -- successful startup
# -------------------------------------------------------------------------


class TestAppLifespanSuccess:
    async def test_wires_engine(self, settings):
        client = MagicMock()
        p_settings, p_client, p_print = _patched(settings, client)

        with p_settings, p_client as mock_create, p_print:
            async with app_lifespan({"db_url": "sqlite://"}) as ctx:
                assert isinstance(ctx.local, SqlAlchemyLocalStore)
                assert ctx.remote.client is client
                assert ctx.reconciler.batch_size == settings.batch_size
                assert ctx.coordinator.dispatcher is ctx.dispatcher
                assert ctx.reconciler.links is ctx.links
                assert ctx.dispatcher.applier.links is ctx.links
                assert ctx.reconciler.writer is ctx.dispatcher.writer

        mock_create.assert_called_once_with(settings)

    async def test_collection_names_from_settings(self, tmp_path):
        settings = Settings(
            local_db_url="sqlite://",
            state_dir=str(tmp_path),
            collections=TRAVELBALL_COLLECTIONS,
        )
        p_settings, p_client, p_print = _patched(settings)

        with p_settings, p_client, p_print:
            async with app_lifespan() as ctx:
                assert ctx.registry.get(Collection.LOCATIONS).remote_name == "teams"

    async def test_shutdown_persists_links_and_closes_writer(self, settings):
        p_settings, p_client, p_print = _patched(settings)
        link = PendingLink(
            Collection.REVIEWS, uuid4(), Collection.LOCATIONS, uuid4()
        )

        with p_settings, p_client, p_print:
            async with app_lifespan() as ctx:
                ctx.links.add(link)
                await ctx.dispatcher.start_listeners()
                writer = ctx.writer
                dispatcher = ctx.dispatcher

        assert writer.closed
        assert not dispatcher.is_running
        state_file = ctx.links.path
        assert state_file.name == STATE_FILE
        assert json.loads(state_file.read_text())["links"] == [link.to_dict()]

    async def test_pending_links_loaded(self, settings):
        link = PendingLink(
            Collection.TIME_SLOTS, uuid4(), Collection.DAY_SCHEDULES, uuid4()
        )
        p_settings, p_client, p_print = _patched(settings)

        with p_settings, p_client, p_print:
            async with app_lifespan() as ctx:
                ctx.links.add(link)
            async with app_lifespan() as ctx:
                assert ctx.links.all() == [link]


# -------------------------------------------------------------------------
# app_lifespan() -- failures
# -------------------------------------------------------------------------


class TestAppLifespanFailures:
    async def test_config_error(self):
        with (
            patch(
                "matfinder_sync.app.resolve_settings",
                side_effect=ValueError("Invalid batch size 0"),
            ),
            patch("matfinder_sync.app._stderr_print") as mock_print,
        ):
            with pytest.raises(StartupError, match="Configuration error"):
                async with app_lifespan():
                    pass

        assert "Invalid batch size 0" in mock_print.call_args.args[0]

    async def test_local_store_error(self, settings):
        with (
            patch("matfinder_sync.app.resolve_settings", return_value=settings),
            patch(
                "matfinder_sync.app.SqlAlchemyLocalStore.from_url",
                side_effect=OSError("read-only filesystem"),
            ),
            patch("matfinder_sync.app._stderr_print"),
        ):
            with pytest.raises(StartupError, match="Local store initialization"):
                async with app_lifespan():
                    pass

    async def test_firestore_client_error(self, settings):
        with (
            patch("matfinder_sync.app.resolve_settings", return_value=settings),
            patch(
                "matfinder_sync.app.create_firestore_client",
                side_effect=ValueError("no default project"),
            ),
            patch("matfinder_sync.app._stderr_print") as mock_print,
        ):
            with pytest.raises(StartupError, match="Firestore client creation"):
                async with app_lifespan():
                    pass

        printed = " ".join(c.args[0] for c in mock_print.call_args_list)
        assert "GOOGLE_APPLICATION_CREDENTIALS" in printed
