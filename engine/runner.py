"""
Measurement pipeline.

``MeasurementOrchestrator.run`` resolves the hosts to test (explicit list,
or directory search + ranking per term), then measures each host in turn:
full latency probe first, download throughput second.  Each host is
independent; a failed host is recorded and the run moves on.

Progress is reported through a ``MeasurementEvents`` instance so the
engine never writes to the console itself.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional, Sequence

import aiohttp

from .config import Settings
from .constants import CANDIDATE_TIME_BUDGET_MS, DIRECTORY_EXTRA_RESULTS, FULL_TIME_BUDGET_MS
from .directory import ServerDirectory
from .download import HttpStreamTransport, ThroughputMeasurer
from .errors import DirectoryUnavailable, SpeedprobeError
from .latency import LatencyProbe, create_pinger
from .models import (
    LatencyResult,
    MeasurementResult,
    RunOutcome,
    RunState,
    ServerCandidate,
)
from .ranker import CandidateRanker, ConnectivityVerifier, create_verify_session

logger = logging.getLogger(__name__)


class MeasurementEvents:
    """Observer hooks for presentation; every method is a no-op here."""

    def on_state(self, state: RunState) -> None:
        pass

    def on_candidates(self, term: str, ranked: Sequence[ServerCandidate]) -> None:
        pass

    def on_term_failed(self, term: str, reason: str) -> None:
        pass

    def on_host_start(self, server: ServerCandidate) -> None:
        pass

    def on_latency(self, server: ServerCandidate, latency: LatencyResult) -> None:
        pass

    def on_progress(self, server: ServerCandidate, fraction: float, kbps: int) -> None:
        pass

    def on_result(self, result: MeasurementResult) -> None:
        pass


class MeasurementOrchestrator:
    """Drives one measurement pass: resolve hosts, then probe and measure each."""

    def __init__(
        self,
        settings: Settings,
        probe: LatencyProbe,
        measurer: ThroughputMeasurer,
        ranker: Optional[CandidateRanker] = None,
        directory_factory: Callable[[], ServerDirectory] = ServerDirectory,
        events: Optional[MeasurementEvents] = None,
    ) -> None:
        self.settings = settings
        self.probe = probe
        self.measurer = measurer
        self.ranker = ranker or CandidateRanker(probe)
        self.directory_factory = directory_factory
        self.events = events or MeasurementEvents()

    # -- Pipeline -----------------------------------------------------------

    async def run(self) -> RunOutcome:
        outcome = RunOutcome()
        self._enter(outcome, RunState.RESOLVE_HOSTS)

        outcome.hosts = await self.resolve_hosts()
        if not outcome.hosts:
            logger.error("No usable servers found")
            self._enter(outcome, RunState.FAILED)
            return outcome

        self._enter(outcome, RunState.MEASURING)
        results: List[MeasurementResult] = []
        for server in outcome.hosts:
            results.append(await self.measure_host(server))

        outcome.results = tuple(results)
        self._enter(outcome, RunState.COMPLETED)
        return outcome

    def _enter(self, outcome: RunOutcome, state: RunState) -> None:
        outcome.state = state
        logger.debug("Run state: %s", state.value)
        self.events.on_state(state)

    # -- Host resolution ----------------------------------------------------

    async def resolve_hosts(self) -> List[ServerCandidate]:
        settings = self.settings
        if settings.servers:
            return [ServerCandidate.explicit(h) for h in settings.servers]

        hosts: List[ServerCandidate] = []
        async with self.directory_factory() as directory:
            for term in settings.search_terms:
                selected = await self._resolve_term(directory, term)
                hosts.extend(selected)
        return hosts

    async def _resolve_term(self, directory: ServerDirectory, term: str) -> List[ServerCandidate]:
        settings = self.settings
        try:
            servers = await directory.fetch(term, settings.candidate_count + DIRECTORY_EXTRA_RESULTS)
        except DirectoryUnavailable as exc:
            logger.error("%s", exc)
            self.events.on_term_failed(term, str(exc))
            return []

        ranked = await self.ranker.rank(
            servers,
            probe_count=settings.candidate_ping_max,
            candidate_cap=settings.candidate_count,
            time_budget_ms=CANDIDATE_TIME_BUDGET_MS,
        )
        self.events.on_candidates(term, ranked)

        selected = self.ranker.select(ranked, settings.candidate_tests)
        if not selected:
            logger.error("Could not find server: %s", term)
            self.events.on_term_failed(term, "no reachable server")
            return []

        logger.debug("Auto server(s) for %r: %s", term, ", ".join(s.sponsor or s.host for s in selected))
        return selected

    # -- Per-host measurement -----------------------------------------------

    async def measure_host(self, server: ServerCandidate) -> MeasurementResult:
        settings = self.settings
        self.events.on_host_start(server)

        try:
            latency = await self.probe.measure(server.host, settings.ping_count, FULL_TIME_BUDGET_MS)
            self.events.on_latency(server, latency)

            if not latency.reachable:
                result = MeasurementResult(
                    host=server.host,
                    search=server.label,
                    error=latency.error or "Host unreachable",
                )
            else:
                self.measurer.on_progress = lambda fraction, kbps: self.events.on_progress(
                    server, fraction, kbps
                )
                throughput = await self.measurer.measure(
                    server.host,
                    settings.download_connections,
                    settings.buffer_size,
                    settings.download_time,
                )
                result = MeasurementResult(
                    host=server.host,
                    latency_ms=latency.latency_ms,
                    kbps=throughput.kbps if throughput.success else None,
                    search=server.label,
                    error=throughput.error,
                )
        except (SpeedprobeError, aiohttp.ClientError, OSError) as exc:
            logger.error("%s: measurement failed: %s", server.host, exc, exc_info=settings.debug)
            result = MeasurementResult(host=server.host, search=server.label, error=str(exc))
        finally:
            self.measurer.on_progress = None

        self.events.on_result(result)
        return result


@asynccontextmanager
async def create_orchestrator(
    settings: Settings,
    events: Optional[MeasurementEvents] = None,
) -> AsyncIterator[MeasurementOrchestrator]:
    """Wire the real network transports; all sessions close on exit."""
    pinger = create_pinger(settings.probe_transport)
    download_session = HttpStreamTransport.create_session(settings.download_connections)

    async with pinger, download_session, create_verify_session() as verify_session:
        probe = LatencyProbe(pinger)
        verifier = ConnectivityVerifier(verify_session) if settings.verify_candidates else None
        yield MeasurementOrchestrator(
            settings,
            probe=probe,
            measurer=ThroughputMeasurer(HttpStreamTransport(download_session)),
            ranker=CandidateRanker(probe, verifier),
            events=events,
        )
