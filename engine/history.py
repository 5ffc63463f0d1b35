"""
Result history persistence.

Results are stored as JSON-lines in ``~/.speedprobe/history.jsonl``.
Each line is one ``MeasurementResult`` with its own timestamp, so the file
can be appended to safely (no need to parse the whole file to add a record).
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Iterable, List

from .config import CONFIG_DIR
from .models import MeasurementResult

logger = logging.getLogger(__name__)

_DEFAULT_FILE = "history.jsonl"
_MAX_DISPLAY = 20  # show last N entries in --history


def _history_path() -> str:
    return os.path.join(CONFIG_DIR, _DEFAULT_FILE)


# ---------------------------------------------------------------------------
# Write
# ---------------------------------------------------------------------------

def save_results(results: Iterable[MeasurementResult]) -> str:
    """Append one JSON line per result.  Returns the file path."""
    path = _history_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "a", encoding="utf-8") as fh:
        for result in results:
            fh.write(json.dumps(result.to_dict(), ensure_ascii=False) + "\n")

    return path


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

def load_history(limit: int = _MAX_DISPLAY) -> List[Dict[str, Any]]:
    """Return the most recent *limit* results, newest last."""
    path = _history_path()
    if not os.path.isfile(path):
        return []

    entries: List[Dict[str, Any]] = []
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Skipping corrupt history line")
                continue

    return entries[-limit:]


def format_history_table(entries: List[Dict[str, Any]]) -> List[dict]:
    """
    Flatten raw history entries for tabular display.  Each row has:
    timestamp, host, search, ping, download.  Failed values are ``None``.
    """
    rows = []
    for e in entries:
        ts_raw = e.get("timestamp", "")
        try:
            ts = datetime.fromisoformat(ts_raw).strftime("%Y-%m-%d %H:%M")
        except (ValueError, TypeError):
            ts = ts_raw[:16] if ts_raw else "?"

        rows.append({
            "timestamp": ts,
            "host": e.get("host", "?"),
            "search": e.get("search", ""),
            "ping": e.get("ping"),
            "download": e.get("download_kbps"),
        })
    return rows
