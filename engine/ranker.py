"""
Candidate ranking.

Runs a coarse latency probe over the first few directory results, drops
hosts that answer pings but cannot serve a download, and orders the rest
by ascending latency.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

import aiohttp

from .constants import CANDIDATE_TIME_BUDGET_MS, COMMON_HEADERS, MAX_CONCURRENT_PROBES
from .latency import LatencyProbe
from .models import UNREACHABLE, ServerCandidate, download_url

logger = logging.getLogger(__name__)

_VERIFY_TIMEOUT = aiohttp.ClientTimeout(total=None, connect=5, sock_read=5)


class ConnectivityVerifier:
    """Checks that a host answers a download request (headers only)."""

    def __init__(self, session: aiohttp.ClientSession) -> None:
        self._session = session

    async def verify(self, host: str) -> bool:
        url = download_url(host)
        try:
            async with self._session.get(url, timeout=_VERIFY_TIMEOUT) as resp:
                resp.raise_for_status()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.debug("Connectivity check failed for %s: %s", host, exc)
            return False
        return True


def create_verify_session() -> aiohttp.ClientSession:
    headers = {**COMMON_HEADERS, "Accept-Encoding": "identity"}
    return aiohttp.ClientSession(headers=headers)


class CandidateRanker:
    """Order directory candidates by measured latency, best first."""

    def __init__(self, probe: LatencyProbe, verifier: Optional[ConnectivityVerifier] = None) -> None:
        self.probe = probe
        self.verifier = verifier

    async def _evaluate(self, server: ServerCandidate, probe_count: int, time_budget_ms: float) -> None:
        result = await self.probe.measure(server.host, probe_count, time_budget_ms)
        latency = result.latency_ms

        if result.reachable and self.verifier is not None:
            if not await self.verifier.verify(server.host):
                latency = UNREACHABLE

        server.latency_ms = latency

    async def rank(
        self,
        candidates: Sequence[ServerCandidate],
        probe_count: int,
        candidate_cap: int,
        time_budget_ms: float = CANDIDATE_TIME_BUDGET_MS,
        concurrent: int = 1,
    ) -> List[ServerCandidate]:
        """Probe the first *candidate_cap* candidates; return reachable ones by latency."""
        subset = list(candidates[:max(0, candidate_cap)])
        concurrent = max(1, min(concurrent, MAX_CONCURRENT_PROBES))

        if concurrent == 1:
            for server in subset:
                await self._evaluate(server, probe_count, time_budget_ms)
        else:
            sem = asyncio.Semaphore(concurrent)

            async def _guarded(srv: ServerCandidate) -> None:
                async with sem:
                    await self._evaluate(srv, probe_count, time_budget_ms)

            await asyncio.gather(*[_guarded(s) for s in subset])

        ranked = sorted((s for s in subset if s.reachable), key=lambda s: s.latency_ms)

        for server in ranked:
            logger.info("%s", server)
        dropped = len(subset) - len(ranked)
        if dropped:
            logger.debug("%d of %d candidates unreachable", dropped, len(subset))

        return ranked

    @staticmethod
    def select(ranked: Sequence[ServerCandidate], count: int) -> List[ServerCandidate]:
        """The first *count* ranked candidates."""
        return list(ranked[:max(0, count)])
