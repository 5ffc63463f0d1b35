"""
Speedtest.net server directory client.

Handles server discovery.  All HTTP work goes through a single
``aiohttp.ClientSession`` managed via async-context-manager protocol
(``async with ServerDirectory() as directory: ...``).
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import aiohttp

from .constants import COMMON_HEADERS, SERVERS_URL
from .errors import DirectoryUnavailable
from .models import ServerCandidate

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=15, connect=5)


def parse_servers(term: str, data: object) -> List[ServerCandidate]:
    """
    Turn a decoded directory response into viable, de-duplicated candidates.

    Records that are not https-functional are dropped; duplicates (same
    host, sponsor and name) keep their first position.
    """
    if not isinstance(data, list):
        raise DirectoryUnavailable(term, f"expected a list, got {type(data).__name__}")

    seen = set()
    servers: List[ServerCandidate] = []

    for record in data:
        if not isinstance(record, dict):
            raise DirectoryUnavailable(term, "malformed server record")
        try:
            server = ServerCandidate.from_dict(record)
        except (KeyError, TypeError, ValueError) as exc:
            raise DirectoryUnavailable(term, f"malformed server record: {exc}") from exc

        if not server.https_functional or server.key in seen:
            continue

        server.term = term
        seen.add(server.key)
        servers.append(server)

    return servers


class ServerDirectory:
    """Async context-manager wrapping the server search endpoint."""

    def __init__(self, url: str = SERVERS_URL) -> None:
        self.url = url
        self._session: Optional[aiohttp.ClientSession] = None

    # -- Context manager ----------------------------------------------------

    async def __aenter__(self) -> ServerDirectory:
        self._session = aiohttp.ClientSession(headers=COMMON_HEADERS, timeout=_REQUEST_TIMEOUT)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    # -- Internal helpers ---------------------------------------------------

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "ServerDirectory must be used as an async context manager "
                "(async with ServerDirectory() as directory: ...)"
            )
        return self._session

    # -- Public methods -----------------------------------------------------

    async def fetch(self, search_term: str, limit: int) -> List[ServerCandidate]:
        """Return viable servers matching *search_term*, directory order kept."""
        session = self._ensure_session()

        params = {
            "engine": "js",
            "search": search_term,
            "https_functional": "1",
            "limit": str(limit),
        }

        logger.debug("Fetching servers: search=%r limit=%d", search_term, limit)
        try:
            async with session.get(self.url, params=params) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise DirectoryUnavailable(search_term, str(exc) or type(exc).__name__) from exc

        servers = parse_servers(search_term, data)
        logger.debug("Server search %r: %d viable of %d", search_term, len(servers), len(data))
        return servers
