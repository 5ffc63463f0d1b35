"""SQLite store for measurement results.

One row per measured host, keyed by ``(timestamp, host)``.  Timestamps are
stored as ISO8601 strings to avoid sqlite's deprecated datetime adapter.
Failed measurements keep ``NULL`` in ``ping`` / ``download_speed``.
"""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List

from .models import MeasurementResult

_SCHEMA = """
CREATE TABLE IF NOT EXISTS results (
    timestamp      TEXT NOT NULL,
    host           TEXT NOT NULL,
    ping           REAL,
    download_speed INTEGER,
    search         TEXT,
    PRIMARY KEY (timestamp, host)
)
"""


class ResultStore:
    """Thin repository over a single ``results`` table."""

    def __init__(self, db_path: str) -> None:
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute(_SCHEMA)
        self.conn.commit()

    def __enter__(self) -> ResultStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()

    def close(self) -> None:
        self.conn.close()

    def add_results(self, results: Iterable[MeasurementResult]) -> int:
        """Insert *results* in one transaction; returns the row count."""
        rows = []
        for r in results:
            data = r.to_dict()
            rows.append((data["timestamp"], r.host, data["ping"], data["download_kbps"], r.search))

        with self.conn:
            self.conn.executemany(
                "INSERT INTO results(timestamp, host, ping, download_speed, search) VALUES(?, ?, ?, ?, ?)",
                rows,
            )
        return len(rows)

    def fetch_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Newest *limit* rows, newest last."""
        cur = self.conn.execute(
            "SELECT timestamp, host, ping, download_speed, search FROM results "
            "ORDER BY timestamp DESC LIMIT ?",
            (limit,),
        )
        return [dict(row) for row in reversed(cur.fetchall())]
