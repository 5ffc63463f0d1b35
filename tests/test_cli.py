"""Tests for the command line entry point -- flag overlay, exit codes, sinks."""

import asyncio
import os
import tempfile
import unittest
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest import mock

import speedprobe
from engine.config import Settings
from engine.models import MeasurementResult, RunOutcome, RunState
from engine.store import ResultStore


def parse(*argv):
    return speedprobe.create_parser().parse_args(list(argv))


class TestBuildSettings(unittest.TestCase):
    def build(self, *argv, config=None):
        with mock.patch("speedprobe.load_config", return_value=config or Settings()):
            return speedprobe.build_settings(parse(*argv))

    def test_no_flags_keeps_config(self):
        config = Settings(download_time=9000, search="Berlin", verify_candidates=False)
        self.assertEqual(self.build(config=config), config)

    def test_flags_override_config(self):
        s = self.build(
            "--download-time", "3000", "--connections", "8", "--search", "Paris",
            "--server", "a:8080", "--server", "b:8080", "--transport", "ws",
            config=Settings(download_time=9000, search="Berlin"),
        )
        self.assertEqual(s.download_time, 3000)
        self.assertEqual(s.download_connections, 8)
        self.assertEqual(s.search, "Paris")
        self.assertEqual(s.servers, ("a:8080", "b:8080"))
        self.assertEqual(s.probe_transport, "ws")

    def test_negative_flags(self):
        s = self.build("--no-verify", "--no-history", "--non-interactive")
        self.assertFalse(s.verify_candidates)
        self.assertFalse(s.history)
        self.assertFalse(s.interactive)

    def test_json_disables_interactive(self):
        self.assertFalse(self.build("--json").interactive)

    def test_invalid_value_rejected(self):
        with self.assertRaises(ValueError):
            self.build("--connections", "0")


class TestMain(unittest.TestCase):
    def test_invalid_config_exit_code(self):
        with mock.patch("speedprobe.load_config", return_value=Settings()):
            self.assertEqual(speedprobe.main(["--ping-count", "0"]), 1)

    def test_history_from_db(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db = os.path.join(tmpdir, "results.db")
            with mock.patch("speedprobe.load_config", return_value=Settings()), \
                    mock.patch("speedprobe.print_history") as printed:
                self.assertEqual(speedprobe.main(["--history", "--db", db]), 0)
            printed.assert_called_once_with([])


class StubOrchestrator:
    def __init__(self, outcome):
        self.outcome = outcome

    async def run(self):
        return self.outcome


class TestRunSinks(unittest.TestCase):
    def test_results_reach_csv_and_store(self):
        ts = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)
        outcome = RunOutcome(
            RunState.COMPLETED,
            results=(
                MeasurementResult(host="a", latency_ms=10.0, kbps=1000, timestamp=ts),
                MeasurementResult(host="b", timestamp=ts, error="Host unreachable"),
            ),
        )

        @asynccontextmanager
        async def fake_orchestrator(settings, events):
            yield StubOrchestrator(outcome)

        with tempfile.TemporaryDirectory() as tmpdir:
            db = os.path.join(tmpdir, "results.db")
            csv_path = os.path.join(tmpdir, "log.csv")
            settings = Settings(interactive=False, history=False, db_path=db)

            with mock.patch("speedprobe.create_orchestrator", fake_orchestrator):
                result = asyncio.run(speedprobe.run_speedprobe(settings, csv_file=csv_path))

            self.assertIs(result, outcome)
            self.assertEqual(result.exit_code, 0)
            with open(csv_path) as f:
                self.assertEqual(len(f.read().splitlines()), 3)
            with ResultStore(db) as store:
                self.assertEqual(len(store.fetch_recent()), 2)


if __name__ == "__main__":
    unittest.main()
