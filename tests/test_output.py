"""Tests for result sinks -- JSON, CSV, history file, SQLite store, console lines."""

import json
import os
import sqlite3
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from engine.history import format_history_table, load_history, save_results
from engine.models import MeasurementResult, RunOutcome, RunState, ServerCandidate
from engine.store import ResultStore
from ui.dashboard import format_host_line, result_line
from ui.output import (
    _csv_escape,
    append_csv,
    create_result_json,
    format_csv_header,
    format_csv_row,
    save_json,
)

TS = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


def ok(host="a", search="Berlin", ts=TS):
    return MeasurementResult(host=host, latency_ms=12.34, kbps=95_000, search=search, timestamp=ts)


def failed(host="b", ts=TS):
    return MeasurementResult(host=host, search="Paris", timestamp=ts, error="Host unreachable")


class TestCsv(unittest.TestCase):
    def test_escape(self):
        self.assertEqual(_csv_escape("plain"), "plain")
        self.assertEqual(_csv_escape("a,b"), '"a,b"')
        self.assertEqual(_csv_escape('say "hi"'), '"say ""hi"""')

    def test_success_row(self):
        self.assertEqual(format_csv_row(ok()), "2025-01-15T10:30:00+00:00,a,Berlin,12.3,95000")

    def test_failed_row_has_no_numbers(self):
        row = format_csv_row(failed())
        self.assertTrue(row.endswith(",ERROR,ERROR"))

    def test_failed_download_keeps_latency(self):
        r = MeasurementResult(host="c", latency_ms=20.0, kbps=None, timestamp=TS)
        self.assertTrue(format_csv_row(r).endswith(",20.0,ERROR"))

    def test_append_writes_header_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "log.csv")
            outcome = RunOutcome(RunState.COMPLETED, results=(ok(), failed()))
            append_csv(path, outcome)
            append_csv(path, outcome)
            with open(path) as f:
                lines = f.read().splitlines()
            self.assertEqual(lines[0], format_csv_header())
            self.assertEqual(len(lines), 5)
            self.assertEqual(lines.count(format_csv_header()), 1)


class TestJson(unittest.TestCase):
    def test_result_json(self):
        outcome = RunOutcome(RunState.COMPLETED, hosts=[ServerCandidate(host="a")], results=(ok(), failed()))
        data = create_result_json(outcome)
        self.assertEqual(data["state"], "completed")
        self.assertTrue(data["success"])
        self.assertEqual(data["results"][0]["download_kbps"], 95_000)
        self.assertIsNone(data["results"][1]["ping"])
        self.assertIsNone(data["results"][1]["download_kbps"])
        json.dumps(data)

    def test_failed_run(self):
        data = create_result_json(RunOutcome(RunState.FAILED))
        self.assertFalse(data["success"])
        self.assertEqual(data["results"], [])

    def test_save_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "out.json")
            save_json({"x": 1}, path)
            with open(path) as f:
                self.assertEqual(json.load(f), {"x": 1})
            self.assertEqual(os.listdir(tmpdir), ["out.json"])

    def test_save_json_bad_dir(self):
        with self.assertRaises(IOError):
            save_json({"x": 1}, "/nonexistent_dir_speedprobe/out.json")


class TestHistory(unittest.TestCase):
    def test_save_and_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "sub", "history.jsonl")
            with mock.patch("engine.history._history_path", return_value=path):
                save_results([ok(), failed()])
                save_results([ok(host="z")])
                entries = load_history()
                self.assertEqual([e["host"] for e in entries], ["a", "b", "z"])
                self.assertEqual([e["host"] for e in load_history(limit=1)], ["z"])

    def test_corrupt_line_skipped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "history.jsonl")
            with open(path, "w") as f:
                f.write('{"host": "a"}\nnot json\n\n{"host": "b"}\n')
            with mock.patch("engine.history._history_path", return_value=path):
                self.assertEqual([e["host"] for e in load_history()], ["a", "b"])

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with mock.patch("engine.history._history_path", return_value=os.path.join(tmpdir, "none")):
                self.assertEqual(load_history(), [])

    def test_format_table(self):
        rows = format_history_table([ok().to_dict(), failed().to_dict()])
        self.assertEqual(rows[0]["timestamp"], "2025-01-15 10:30")
        self.assertEqual(rows[0]["download"], 95_000)
        self.assertIsNone(rows[1]["ping"])
        self.assertIsNone(rows[1]["download"])


class TestResultStore(unittest.TestCase):
    def test_insert_and_fetch(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with ResultStore(os.path.join(tmpdir, "results.db")) as store:
                later = TS + timedelta(minutes=5)
                self.assertEqual(store.add_results([ok(), failed(), ok(host="z", ts=later)]), 3)
                rows = store.fetch_recent()
                self.assertEqual(len(rows), 3)
                self.assertEqual(rows[-1]["host"], "z")
                by_host = {r["host"]: r for r in rows}
                self.assertEqual(by_host["a"]["download_speed"], 95_000)
                self.assertIsNone(by_host["b"]["ping"])
                self.assertIsNone(by_host["b"]["download_speed"])
                self.assertEqual([r["host"] for r in store.fetch_recent(limit=1)], ["z"])

    def test_duplicate_key_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with ResultStore(os.path.join(tmpdir, "results.db")) as store:
                store.add_results([ok()])
                with self.assertRaises(sqlite3.IntegrityError):
                    store.add_results([ok(), failed()])
                # the failed batch left nothing behind
                self.assertEqual(len(store.fetch_recent()), 1)


class TestHostLine(unittest.TestCase):
    def test_format(self):
        self.assertEqual(format_host_line("h", 23.4, 95123), "  23.4 ms |    95123 kbit | h")

    def test_errors(self):
        self.assertEqual(format_host_line("h", None, None), " ERROR ms |    ERROR kbit | h")

    def test_failed_result_never_numeric(self):
        r = MeasurementResult(host="h", latency_ms=20.0, kbps=0)
        self.assertIn("ERROR kbit", result_line(r))
        self.assertIn("20.0 ms", result_line(r))


if __name__ == "__main__":
    unittest.main()
