"""Network reachability check run before each collection pass."""

import logging

import requests

from matfinder_sync.core.async_utils import run_sync

logger = logging.getLogger(__name__)


class HttpConnectivityCheck:
    """Treat the network as up when *url* answers a HEAD request.

    Any HTTP status counts as reachable; only transport failures
    (DNS, refused connection, timeout) mean offline.
    """

    def __init__(self, url: str, timeout: float = 5.0) -> None:
        self.url = url
        self.timeout = timeout

    def _head(self) -> bool:
        try:
            response = requests.head(
                self.url, timeout=self.timeout, allow_redirects=False
            )
        except requests.RequestException as exc:
            logger.debug("Connectivity check to %s failed: %s", self.url, exc)
            return False
        logger.debug(
            "Connectivity check to %s answered %s",
            self.url,
            response.status_code,
        )
        return True

    async def is_connected(self) -> bool:
        return await run_sync(self._head)
