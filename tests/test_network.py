"""Tests for the HTTP connectivity check."""

from unittest.mock import MagicMock, patch

import requests

from matfinder_sync.store.base import AlwaysConnected
from matfinder_sync.store.network import HttpConnectivityCheck


class TestHttpConnectivityCheck:
    async def test_any_status_is_online(self):
        connectivity = HttpConnectivityCheck("https://example.com/", timeout=2.0)
        response = MagicMock(status_code=404)

        with patch(
            "matfinder_sync.store.network.requests.head", return_value=response
        ) as head:
            assert await connectivity.is_connected() is True

        head.assert_called_once_with(
            "https://example.com/", timeout=2.0, allow_redirects=False
        )

    async def test_connection_error_is_offline(self):
        connectivity = HttpConnectivityCheck("https://example.com/")

        with patch(
            "matfinder_sync.store.network.requests.head",
            side_effect=requests.ConnectionError("no route"),
        ):
            assert await connectivity.is_connected() is False

    async def test_timeout_is_offline(self):
        connectivity = HttpConnectivityCheck("https://example.com/")

        with patch(
            "matfinder_sync.store.network.requests.head",
            side_effect=requests.Timeout(),
        ):
            assert await connectivity.is_connected() is False


async def test_always_connected():
    assert await AlwaysConnected().is_connected() is True
