"""
Latency probing.

A ``LatencyProbe`` sends one reachability probe, sizes the rest of the run
to a time budget based on the observed round trip, then averages the
samples after dropping upper outliers.

Two transports are available:

``IcmpPinger``
    ICMP echo through the system ``ping`` binary (no raw-socket privileges
    needed).  The default.

``WebSocketPinger``
    The Ookla Speedtest protocol::

        1. Connect to  wss://{host}/ws
        2. Receive  HELLO / YOURIP / CAPABILITIES
        3. Send     PING {timestamp_ms}
        4. Receive  PONG {server_timestamp}
"""
from __future__ import annotations

import asyncio
import logging
import math
import platform
import re
import time
from typing import Dict, Optional

import websockets
import websockets.exceptions

from .constants import COMMON_HEADERS, PROBE_TIMEOUT_MS, REACHABILITY_TIMEOUT_MS
from .models import LatencyResult, strip_port
from .stats import filtered_mean, remove_upper_outliers, summarize

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

_WS_CONNECT_TIMEOUT = 5.0   # seconds to establish the WS connection
_HANDSHAKE_TIMEOUT = 2.0     # max wait for HELLO/YOURIP/CAPABILITIES
_MSG_TIMEOUT = 0.5           # per-message timeout during handshake

_LESS_THAN = re.compile(r"time<(\d+(?:\.\d+)?)", re.IGNORECASE)
_ROUND_TRIP = re.compile(r"time\s*=\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)


def parse_ping_latency_ms(output: str) -> Optional[float]:
    """
    Extract the round trip from ``ping`` output.

    Handles ``time=12.3 ms`` (Linux/macOS), ``time=12ms`` and ``time<1ms``
    (Windows).  ``time<N`` is read as ``N / 2``.
    """
    if not output:
        return None

    match = _LESS_THAN.search(output)
    if match:
        return float(match.group(1)) / 2.0

    match = _ROUND_TRIP.search(output)
    if match:
        return float(match.group(1))

    return None


def adaptive_probe_count(max_probe_count: int, time_budget_ms: float, round_trip_ms: float) -> int:
    """
    Number of samples to collect so probing fits in *time_budget_ms*.

    ``min(max_probe_count, floor(time_budget_ms / round_trip_ms))``, never
    less than one.  Sub-millisecond round trips count as one millisecond.
    """
    per_probe = max(round_trip_ms, 1.0)
    return max(1, min(max_probe_count, math.floor(time_budget_ms / per_probe)))


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

class Pinger:
    """Sends one probe and returns the round trip in ms, or ``None``."""

    async def ping(self, host: str, timeout_ms: float) -> Optional[float]:
        raise NotImplementedError

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> Pinger:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.close()


class IcmpPinger(Pinger):
    """ICMP echo via the operating system's ``ping`` command."""

    def __init__(self, executable: str = "ping") -> None:
        self.executable = executable
        self.system = platform.system()

    def build_command(self, host: str, timeout_ms: float) -> list:
        if self.system == "Windows":
            return [self.executable, "-n", "1", "-w", str(int(timeout_ms)), host]
        if self.system == "Linux":
            return [self.executable, "-c", "1", "-W", str(max(1, math.ceil(timeout_ms / 1000))), host]
        # macOS/BSD -W semantics differ; rely on the subprocess timeout
        return [self.executable, "-c", "1", host]

    async def ping(self, host: str, timeout_ms: float) -> Optional[float]:
        target = strip_port(host)
        if not target or target.startswith("-"):
            logger.warning("Refusing to ping invalid host %r", host)
            return None
        cmd = self.build_command(target, timeout_ms)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            logger.warning("Cannot run %s: %s", self.executable, exc)
            return None

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout_ms / 1000 + 0.5)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass  # exited on its own
            await proc.wait()
            logger.debug("ping timeout: %s", target)
            return None

        if proc.returncode != 0:
            logger.debug("ping error (exit %s): %s", proc.returncode, target)
            return None

        output = stdout.decode(errors="replace")
        latency = parse_ping_latency_ms(output)
        if latency is None:
            logger.debug("ping output not understood for %s: %s", target, output[:100])
        return latency


class WebSocketPinger(Pinger):
    """PING/PONG round trips over the Ookla WebSocket endpoint."""

    def __init__(self) -> None:
        self._connections: Dict[str, object] = {}

    @staticmethod
    def ws_url(host: str) -> str:
        return f"wss://{host}/ws?"

    async def _connect(self, host: str):  # noqa: ANN202
        ws = self._connections.get(host)
        if ws is not None:
            return ws

        ws = await websockets.connect(
            self.ws_url(host),
            additional_headers=COMMON_HEADERS,
            ping_interval=None,
            close_timeout=2,
            open_timeout=_WS_CONNECT_TIMEOUT,
        )
        await self._read_handshake(ws)
        self._connections[host] = ws
        return ws

    async def _drop(self, host: str) -> None:
        ws = self._connections.pop(host, None)
        if ws is not None:
            await ws.close()

    @staticmethod
    async def _read_handshake(ws) -> None:  # noqa: ANN001
        """Consume HELLO / YOURIP / CAPABILITIES messages."""
        start = time.perf_counter()
        received = 0

        while time.perf_counter() - start < _HANDSHAKE_TIMEOUT and received < 3:
            try:
                await asyncio.wait_for(ws.recv(), timeout=_MSG_TIMEOUT)
            except asyncio.TimeoutError:
                break
            received += 1

    async def ping(self, host: str, timeout_ms: float) -> Optional[float]:
        try:
            ws = await self._connect(host)
            send_time = time.perf_counter() * 1000
            await ws.send(f"PING {int(send_time)}")
            msg = await asyncio.wait_for(ws.recv(), timeout=timeout_ms / 1000)
            recv_time = time.perf_counter() * 1000
        except asyncio.TimeoutError:
            logger.debug("ws ping timeout: %s", host)
            await self._drop(host)
            return None
        except (websockets.exceptions.WebSocketException, ConnectionError, OSError) as exc:
            logger.debug("ws ping error: %s: %s", host, exc)
            await self._drop(host)
            return None

        if not str(msg).startswith("PONG"):
            logger.debug("Unexpected ws response from %s: %s", host, str(msg)[:50])
            return None
        return recv_time - send_time

    async def close(self) -> None:
        for host in list(self._connections):
            await self._drop(host)


def create_pinger(transport: str) -> Pinger:
    if transport == "ws":
        return WebSocketPinger()
    if transport == "icmp":
        return IcmpPinger()
    raise ValueError(f"Unknown probe transport: {transport!r}")


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------

class LatencyProbe:
    """Measure the best-case round trip to a single host."""

    def __init__(
        self,
        pinger: Pinger,
        probe_timeout_ms: float = PROBE_TIMEOUT_MS,
        reachability_timeout_ms: float = REACHABILITY_TIMEOUT_MS,
    ) -> None:
        self.pinger = pinger
        self.probe_timeout_ms = probe_timeout_ms
        self.reachability_timeout_ms = reachability_timeout_ms

    async def measure(self, host: str, max_probe_count: int, time_budget_ms: float) -> LatencyResult:
        result = LatencyResult(host=host)

        initial = await self.pinger.ping(host, self.reachability_timeout_ms)
        result.probes_sent = 1
        if initial is None:
            logger.debug("ping error: %s unreachable", host)
            result.error = "Host unreachable"
            return result

        count = adaptive_probe_count(max_probe_count, time_budget_ms, initial)
        samples = [initial]

        # the reachability probe is the first sample
        for _ in range(count - 1):
            rtt = await self.pinger.ping(host, self.probe_timeout_ms)
            result.probes_sent += 1
            samples.append(rtt if rtt is not None else 0.0)

        result.samples = samples
        result.filtered = remove_upper_outliers(samples)
        result.latency_ms = filtered_mean(samples)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("%s raw      %s", host, summarize(samples).describe())
            logger.debug("%s filtered %s", host, summarize(result.filtered).describe())

        if not result.reachable:
            result.error = "No valid latency samples"
        return result
