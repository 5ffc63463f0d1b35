"""
Output formatting -- JSON export and CSV.

Failed measurements are written as ``null`` (JSON) or ``ERROR`` (CSV),
never as a numeric zero.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from engine.models import MeasurementResult, RunOutcome, is_unreachable

ERROR = "ERROR"


def create_result_json(outcome: RunOutcome) -> Dict[str, Any]:
    """Build a JSON-serialisable summary of a whole run."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "state": outcome.state.value,
        "success": outcome.exit_code == 0,
        "servers": [s.to_dict() for s in outcome.hosts],
        "results": [r.to_dict() for r in outcome.results],
    }


def save_json(result: Dict[str, Any], filepath: str) -> None:
    """Write *result* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, filepath)
    except (IOError, OSError) as exc:
        # Clean up partial temp file
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise IOError(f"Failed to save JSON to {filepath}: {exc}") from exc


# ---------------------------------------------------------------------------
# CSV helpers
# ---------------------------------------------------------------------------

def _csv_escape(value: str) -> str:
    """Quote a field containing a comma, quote or newline (RFC 4180)."""
    if any(c in value for c in (",", '"', "\n", "\r")):
        return '"' + value.replace('"', '""') + '"'
    return value


def format_csv_header() -> str:
    return "timestamp,host,search,ping_ms,download_kbps"


def format_csv_row(result: MeasurementResult) -> str:
    ping: Optional[str] = None
    if not is_unreachable(result.latency_ms):
        ping = f"{result.latency_ms:.1f}"
    kbps = str(result.kbps) if result.success else ERROR

    return ",".join([
        result.timestamp.isoformat(),
        _csv_escape(result.host),
        _csv_escape(result.search),
        ping or ERROR,
        kbps,
    ])


def append_csv(path: str, outcome: RunOutcome) -> None:
    """Append one row per result, writing the header if the file is new."""
    write_header = not os.path.isfile(path) or os.path.getsize(path) == 0
    with open(path, "a", encoding="utf-8") as fh:
        if write_header:
            fh.write(format_csv_header() + "\n")
        for result in outcome.results:
            fh.write(format_csv_row(result) + "\n")
