"""
Download throughput measurement.

Opens a fixed number of parallel HTTPS GET streams against one server and
keeps every slot busy for the whole test window: when a stream is
exhausted or errors it is closed and replaced with a fresh request (new
cache-busting token).  Throughput is total bytes over elapsed time, in
kbit/s.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

import aiohttp

from .constants import (
    COMMON_HEADERS,
    MAX_CONNECTIONS,
    MIN_CONNECTIONS,
    OPEN_TIMEOUT,
    SAMPLE_INTERVAL,
)
from .errors import TransferFailed
from .models import SlotStats, ThroughputResult, download_url

logger = logging.getLogger(__name__)

_STREAM_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class DownloadStream:
    """An open download response body."""

    async def read(self, n: int) -> bytes:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class StreamTransport:
    """Opens download streams; replaced by fakes in tests."""

    async def open(self, url: str) -> DownloadStream:
        raise NotImplementedError


class _ResponseStream(DownloadStream):
    def __init__(self, resp: aiohttp.ClientResponse) -> None:
        self._resp = resp

    async def read(self, n: int) -> bytes:
        return await self._resp.content.read(n)

    def close(self) -> None:
        self._resp.close()


class HttpStreamTransport(StreamTransport):
    """Streams served by an ``aiohttp.ClientSession``."""

    def __init__(self, session: aiohttp.ClientSession) -> None:
        self._session = session

    @staticmethod
    def create_session(connections: int) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(
            limit=connections * 2,
            limit_per_host=connections * 2,
            enable_cleanup_closed=True,
        )
        # no read timeout: stalled streams are reclaimed when the test ends
        timeout = aiohttp.ClientTimeout(total=None, connect=OPEN_TIMEOUT, sock_read=None)
        headers = {**COMMON_HEADERS, "Accept-Encoding": "identity"}
        return aiohttp.ClientSession(headers=headers, connector=connector, timeout=timeout)

    async def open(self, url: str) -> DownloadStream:
        resp = await self._session.get(url)
        try:
            resp.raise_for_status()
        except aiohttp.ClientResponseError:
            resp.close()
            raise
        return _ResponseStream(resp)


# ---------------------------------------------------------------------------
# Measurer
# ---------------------------------------------------------------------------

class ThroughputMeasurer:
    """
    Parallel download throughput sampler.

    Each slot runs an explicit read loop until the stop event is set.  A
    sampler coroutine reports the running bitrate every
    ``sample_interval`` seconds through ``on_progress(fraction, kbps)``;
    it never affects the measurement itself.

    The test window starts once every initial stream is open.
    """

    def __init__(self, transport: StreamTransport, sample_interval: float = SAMPLE_INTERVAL) -> None:
        self.transport = transport
        self.sample_interval = sample_interval
        self.on_progress: Optional[Callable[[float, int], None]] = None

    async def _open(self, host: str) -> DownloadStream:
        return await self.transport.open(download_url(host))

    async def _open_all(self, host: str, connections: int) -> List[DownloadStream]:
        opened = await asyncio.gather(
            *[self._open(host) for _ in range(connections)],
            return_exceptions=True,
        )
        errors = [o for o in opened if isinstance(o, BaseException)]
        if errors:
            for stream in opened:
                if isinstance(stream, DownloadStream):
                    stream.close()
            first = errors[0]
            raise TransferFailed(f"Could not open download stream: {str(first) or type(first).__name__}")
        return list(opened)

    async def measure(
        self,
        host: str,
        connections: int,
        buffer_size: int,
        duration_ms: int,
    ) -> ThroughputResult:
        connections = max(MIN_CONNECTIONS, min(connections, MAX_CONNECTIONS))
        result = ThroughputResult(host=host, slots=[SlotStats(id=i) for i in range(connections)])

        try:
            streams = await self._open_all(host, connections)
        except TransferFailed as exc:
            logger.warning("%s: %s", host, exc)
            result.success = False
            result.error = str(exc)
            return result

        stop = asyncio.Event()
        start_time = time.perf_counter()

        # -- Slot loop ------------------------------------------------------

        async def _slot(slot: SlotStats, stream: Optional[DownloadStream]) -> None:
            try:
                while not stop.is_set():
                    try:
                        chunk = await stream.read(buffer_size)
                    except _STREAM_ERRORS as exc:
                        logger.debug("%s slot %d read error: %s", host, slot.id, exc)
                        chunk = b""

                    if stop.is_set():
                        break
                    if chunk:
                        slot.bytes_read += len(chunk)
                        continue

                    # exhausted or broken: replace the stream
                    stream.close()
                    stream = None
                    try:
                        stream = await self._open(host)
                    except _STREAM_ERRORS as exc:
                        slot.error = str(exc) or type(exc).__name__
                        logger.debug("%s slot %d reopen failed: %s", host, slot.id, slot.error)
                        return
                    slot.reopens += 1
            finally:
                if stream is not None:
                    stream.close()

        # -- Sampler --------------------------------------------------------

        async def _sampler() -> None:
            while not stop.is_set():
                await asyncio.sleep(self.sample_interval)
                elapsed_ms = (time.perf_counter() - start_time) * 1000
                if elapsed_ms <= 0 or self.on_progress is None:
                    continue
                total = sum(s.bytes_read for s in result.slots)
                self.on_progress(min(elapsed_ms / duration_ms, 1.0), int(total * 8 // elapsed_ms))

        # -- Orchestration --------------------------------------------------

        workers = [
            asyncio.create_task(_slot(slot, stream))
            for slot, stream in zip(result.slots, streams)
        ]
        sampler = asyncio.create_task(_sampler())

        try:
            # returns early only if every slot has died
            await asyncio.wait(workers, timeout=duration_ms / 1000)
            stop.set()
            result.elapsed_ms = max(1, int((time.perf_counter() - start_time) * 1000))
            result.bytes_total = sum(s.bytes_read for s in result.slots)
        finally:
            stop.set()
            for task in workers:
                task.cancel()
            sampler.cancel()
            outcomes = await asyncio.gather(*workers, sampler, return_exceptions=True)

        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.error("%s: download worker crashed", host, exc_info=outcome)
                result.success = False
                result.error = f"Download worker crashed: {outcome}"
                return result

        result.calculate()

        if all(s.error for s in result.slots):
            result.success = False
            result.error = "All download streams failed"
        elif result.bytes_total == 0:
            result.success = False
            result.error = "No data received"

        logger.debug(
            "%s: %d bytes in %d ms over %d slots (%d reopens) -> %d kbit",
            host,
            result.bytes_total,
            result.elapsed_ms,
            connections,
            sum(s.reopens for s in result.slots),
            result.kbps,
        )
        return result
