"""Tests for engine.latency -- probe sizing, outlier handling, ping transports."""

import asyncio
import unittest
from unittest import mock

from engine.latency import (
    IcmpPinger,
    LatencyProbe,
    WebSocketPinger,
    adaptive_probe_count,
    create_pinger,
    parse_ping_latency_ms,
)
from tests.fakes import FakePinger


def run(coro):
    return asyncio.run(coro)


class TestAdaptiveProbeCount(unittest.TestCase):
    def test_budget_limits_count(self):
        self.assertEqual(adaptive_probe_count(20, 2000, 500), 4)

    def test_max_limits_count(self):
        self.assertEqual(adaptive_probe_count(20, 2000, 10), 20)

    def test_never_below_one(self):
        self.assertEqual(adaptive_probe_count(20, 2000, 5000), 1)

    def test_sub_millisecond_round_trip(self):
        self.assertEqual(adaptive_probe_count(20, 2000, 0.2), 20)
        self.assertEqual(adaptive_probe_count(5000, 2000, 0.2), 2000)


class TestLatencyProbe(unittest.TestCase):
    def test_unreachable_sends_single_probe(self):
        pinger = FakePinger({"dead": None})
        result = run(LatencyProbe(pinger).measure("dead", 20, 2000))
        self.assertEqual(pinger.calls, ["dead"])
        self.assertFalse(result.reachable)
        self.assertEqual(result.probes_sent, 1)
        self.assertEqual(result.error, "Host unreachable")

    def test_slow_host_probe_count_fits_budget(self):
        pinger = FakePinger({"slow": 500.0})
        result = run(LatencyProbe(pinger).measure("slow", 20, 2000))
        self.assertEqual(len(pinger.calls), 4)
        self.assertEqual(result.probes_sent, 4)
        self.assertAlmostEqual(result.latency_ms, 500.0)

    def test_spike_filtered(self):
        pinger = FakePinger({"h": [10.0, 10.0, 10.0, 10.0, 100.0]})
        result = run(LatencyProbe(pinger).measure("h", 5, 2000))
        self.assertEqual(result.samples, [10.0, 10.0, 10.0, 10.0, 100.0])
        self.assertEqual(result.filtered, [10.0, 10.0, 10.0, 10.0])
        self.assertAlmostEqual(result.latency_ms, 10.0)

    def test_failed_probes_recorded_as_zero(self):
        pinger = FakePinger({"h": [10.0, None, 12.0]})
        result = run(LatencyProbe(pinger).measure("h", 3, 2000))
        self.assertEqual(result.samples, [10.0, 0.0, 12.0])
        self.assertAlmostEqual(result.latency_ms, 11.0)
        self.assertIsNone(result.error)

    def test_single_sample(self):
        pinger = FakePinger({"h": 42.0})
        result = run(LatencyProbe(pinger).measure("h", 1, 2000))
        self.assertEqual(pinger.calls, ["h"])
        self.assertAlmostEqual(result.latency_ms, 42.0)


class TestParsePing(unittest.TestCase):
    def test_linux(self):
        out = "64 bytes from 1.1.1.1: icmp_seq=1 ttl=57 time=12.3 ms"
        self.assertAlmostEqual(parse_ping_latency_ms(out), 12.3)

    def test_windows(self):
        out = "Reply from 1.1.1.1: bytes=32 time=14ms TTL=57"
        self.assertAlmostEqual(parse_ping_latency_ms(out), 14.0)

    def test_windows_less_than(self):
        out = "Reply from 192.168.1.1: bytes=32 time<1ms TTL=64"
        self.assertAlmostEqual(parse_ping_latency_ms(out), 0.5)

    def test_no_match(self):
        self.assertIsNone(parse_ping_latency_ms("Request timed out."))
        self.assertIsNone(parse_ping_latency_ms(""))


class TestPingers(unittest.TestCase):
    def test_linux_command(self):
        pinger = IcmpPinger()
        pinger.system = "Linux"
        self.assertEqual(pinger.build_command("h", 1000), ["ping", "-c", "1", "-W", "1", "h"])

    def test_windows_command(self):
        pinger = IcmpPinger()
        pinger.system = "Windows"
        self.assertEqual(pinger.build_command("h", 750), ["ping", "-n", "1", "-w", "750", "h"])

    def test_create_pinger(self):
        self.assertIsInstance(create_pinger("icmp"), IcmpPinger)
        self.assertIsInstance(create_pinger("ws"), WebSocketPinger)
        with self.assertRaises(ValueError):
            create_pinger("udp")

    def test_ws_url(self):
        self.assertEqual(WebSocketPinger.ws_url("h:8080"), "wss://h:8080/ws?")


class FakeProcess:
    """Stand-in for the ``ping`` child process."""

    def __init__(self, output=b"", returncode=0, hang=False, already_exited=False):
        self.output = output
        self.returncode = returncode
        self.hang = hang
        self.already_exited = already_exited
        self.killed = False

    async def communicate(self):
        if self.hang:
            await asyncio.Event().wait()
        return self.output, None

    def kill(self):
        if self.already_exited:
            raise ProcessLookupError
        self.killed = True

    async def wait(self):
        return self.returncode


class TestIcmpPinger(unittest.IsolatedAsyncioTestCase):
    def spawn(self, process):
        self.commands = []

        async def fake_exec(*cmd, **kwargs):
            self.commands.append(list(cmd))
            return process

        return mock.patch("asyncio.create_subprocess_exec", new=fake_exec)

    async def test_round_trip_parsed(self):
        proc = FakeProcess(b"64 bytes from 1.1.1.1: icmp_seq=1 ttl=57 time=12.3 ms\n")
        with self.spawn(proc):
            rtt = await IcmpPinger().ping("speed.example.net:8080", 1000)
        self.assertAlmostEqual(rtt, 12.3)
        self.assertEqual(self.commands[0][-1], "speed.example.net")

    async def test_non_zero_exit_is_unreachable(self):
        with self.spawn(FakeProcess(b"Request timed out.\n", returncode=1)):
            self.assertIsNone(await IcmpPinger().ping("h", 1000))

    async def test_unparseable_output_is_unreachable(self):
        with self.spawn(FakeProcess(b"something unexpected\n")):
            self.assertIsNone(await IcmpPinger().ping("h", 1000))

    async def test_timeout_kills_child(self):
        proc = FakeProcess(hang=True)
        with self.spawn(proc):
            self.assertIsNone(await IcmpPinger().ping("h", 0))
        self.assertTrue(proc.killed)

    async def test_child_gone_before_kill(self):
        with self.spawn(FakeProcess(hang=True, already_exited=True)):
            self.assertIsNone(await IcmpPinger().ping("h", 0))

    async def test_missing_binary_is_unreachable(self):
        pinger = IcmpPinger(executable="/nonexistent/speedprobe-ping")
        self.assertIsNone(await pinger.ping("h", 1000))

    async def test_option_like_host_rejected(self):
        with self.spawn(FakeProcess(b"time=1 ms")):
            self.assertIsNone(await IcmpPinger().ping("-f", 1000))
            self.assertIsNone(await IcmpPinger().ping("", 1000))
        self.assertEqual(self.commands, [])


class FakeWebSocket:
    """Answers the handshake, then replies to PING with *reply* (or stays silent)."""

    def __init__(self, reply="PONG 1"):
        self.reply = reply
        self.inbox = asyncio.Queue()
        for msg in ("HELLO", "YOURIP 192.0.2.1", "CAPABILITIES SERVER_HOST_AUTH"):
            self.inbox.put_nowait(msg)
        self.sent = []
        self.closed = False

    async def recv(self):
        return await self.inbox.get()

    async def send(self, msg):
        self.sent.append(msg)
        if self.reply is not None:
            self.inbox.put_nowait(self.reply)

    async def close(self):
        self.closed = True


class TestWebSocketPinger(unittest.IsolatedAsyncioTestCase):
    def serve(self, ws=None, error=None):
        self.connects = []

        async def fake_connect(url, **kwargs):
            self.connects.append(url)
            if error is not None:
                raise error
            return ws

        return mock.patch("websockets.connect", new=fake_connect)

    async def test_pong_round_trip(self):
        ws = FakeWebSocket()
        pinger = WebSocketPinger()
        with self.serve(ws):
            first = await pinger.ping("h:8080", 1000)
            second = await pinger.ping("h:8080", 1000)
        self.assertGreaterEqual(first, 0.0)
        self.assertGreaterEqual(second, 0.0)
        self.assertTrue(ws.sent[0].startswith("PING "))
        # one connection per host
        self.assertEqual(self.connects, ["wss://h:8080/ws?"])
        await pinger.close()
        self.assertTrue(ws.closed)

    async def test_connect_failure_is_unreachable(self):
        with self.serve(error=ConnectionRefusedError("refused")):
            self.assertIsNone(await WebSocketPinger().ping("h", 1000))

    async def test_silent_server_times_out(self):
        ws = FakeWebSocket(reply=None)
        with self.serve(ws):
            self.assertIsNone(await WebSocketPinger().ping("h", 50))
        self.assertTrue(ws.closed)

    async def test_unexpected_reply(self):
        with self.serve(FakeWebSocket(reply="ERROR bad request")):
            self.assertIsNone(await WebSocketPinger().ping("h", 1000))


if __name__ == "__main__":
    unittest.main()
