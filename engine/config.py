"""
User configuration.

Settings are read from a JSON file (``~/.speedprobe/config.json`` by
default, or ``appsettings.json`` in the working directory when present),
then overlaid with command-line flags.  The result is a frozen
``Settings`` value that is passed to every component; nothing reads
configuration from global state.

Supported keys (snake_case, or the PascalCase spelling used by
``appsettings.json`` such as ``DownloadTime``)::

    download_time = 5000         # ms
    download_connections = 4
    buffer_size = 4096
    ping_count = 20
    servers = []                 # explicit hosts, skips discovery
    search = ""                  # comma separated search terms
    candidate_count = 5
    candidate_ping_max = 3
    candidate_tests = 1
    probe_transport = "icmp"     # or "ws"
    verify_candidates = true
    debug = false
    verbose = false
    interactive = true
    history = true
    db_path = ""
"""
from __future__ import annotations

import dataclasses
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .constants import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_CANDIDATE_COUNT,
    DEFAULT_CANDIDATE_PING_MAX,
    DEFAULT_CANDIDATE_TESTS,
    DEFAULT_CONNECTIONS,
    DEFAULT_DOWNLOAD_TIME_MS,
    DEFAULT_PING_COUNT,
    MAX_BUFFER_SIZE,
    MAX_CANDIDATE_COUNT,
    MAX_CONNECTIONS,
    MAX_DOWNLOAD_TIME_MS,
    MAX_PING_COUNT,
    MIN_BUFFER_SIZE,
    MIN_CONNECTIONS,
    MIN_DOWNLOAD_TIME_MS,
    MIN_PING_COUNT,
)
from .errors import ConfigurationInvalid

logger = logging.getLogger(__name__)

CONFIG_DIR = os.path.join(Path.home(), ".speedprobe")
_CONFIG_FILE = "config.json"
_LOCAL_FILE = "appsettings.json"

PROBE_TRANSPORTS = ("icmp", "ws")


def _config_path() -> str:
    if os.path.isfile(_LOCAL_FILE):
        return _LOCAL_FILE
    return os.path.join(CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Settings:
    download_time: int = DEFAULT_DOWNLOAD_TIME_MS
    download_connections: int = DEFAULT_CONNECTIONS
    buffer_size: int = DEFAULT_BUFFER_SIZE
    ping_count: int = DEFAULT_PING_COUNT
    servers: Tuple[str, ...] = ()
    search: str = ""
    candidate_count: int = DEFAULT_CANDIDATE_COUNT
    candidate_ping_max: int = DEFAULT_CANDIDATE_PING_MAX
    candidate_tests: int = DEFAULT_CANDIDATE_TESTS
    probe_transport: str = "icmp"
    verify_candidates: bool = True
    debug: bool = False
    verbose: bool = False
    interactive: bool = True
    history: bool = True
    db_path: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Settings:
        """Build settings from a config mapping, ignoring unknown keys."""
        names = {f.name for f in dataclasses.fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = _normalize_key(key)
            if name not in names:
                logger.debug("Ignoring unknown config key: %s", key)
                continue
            values[name] = value
        return cls().replace(**values)

    def replace(self, **changes: Any) -> Settings:
        """Copy with *changes* applied; ``None`` values are skipped."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if "servers" in changes:
            changes["servers"] = _as_hosts(changes["servers"])
        return dataclasses.replace(self, **changes)

    @property
    def search_terms(self) -> List[str]:
        """Search split on commas; an empty search still yields one term."""
        return [t.strip() for t in (self.search or "").split(",")]

    def describe(self) -> List[Tuple[str, str]]:
        rows = []
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.name == "servers":
                value = "[" + ", ".join(value) + "]"
            elif f.name == "search":
                value = f'"{value}"'
            rows.append((f.name, str(value)))
        return rows


def _normalize_key(key: str) -> str:
    """``DownloadTime`` / ``download-time`` -> ``download_time``."""
    key = key.replace("-", "_")
    return re.sub(r"(?<!^)(?<!_)(?=[A-Z])", "_", key).lower()


def _as_hosts(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    return tuple(h.strip() for h in value if h and h.strip())


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _check_range(name: str, value: Any, lo: int, hi: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not lo <= value <= hi:
        raise ConfigurationInvalid(f"{name} must be an integer between {lo} and {hi} (got {value!r})")


def validate(settings: Settings) -> Settings:
    """Raise ``ConfigurationInvalid`` if any value is out of range."""
    _check_range("download_time", settings.download_time, MIN_DOWNLOAD_TIME_MS, MAX_DOWNLOAD_TIME_MS)
    _check_range("download_connections", settings.download_connections, MIN_CONNECTIONS, MAX_CONNECTIONS)
    _check_range("buffer_size", settings.buffer_size, MIN_BUFFER_SIZE, MAX_BUFFER_SIZE)
    _check_range("ping_count", settings.ping_count, MIN_PING_COUNT, MAX_PING_COUNT)
    _check_range("candidate_count", settings.candidate_count, 1, MAX_CANDIDATE_COUNT)
    _check_range("candidate_ping_max", settings.candidate_ping_max, MIN_PING_COUNT, MAX_PING_COUNT)
    _check_range("candidate_tests", settings.candidate_tests, 1, MAX_CANDIDATE_COUNT)

    if settings.probe_transport not in PROBE_TRANSPORTS:
        raise ConfigurationInvalid(
            f"probe_transport must be one of {', '.join(PROBE_TRANSPORTS)} "
            f"(got {settings.probe_transport!r})"
        )
    return settings


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> Settings:
    """
    Load settings from *path* (or the default location).

    A missing file yields the defaults.  A corrupt file is reported and
    ignored; an explicitly requested file that is missing is an error.
    """
    explicit = path is not None
    path = path or _config_path()

    if not os.path.isfile(path):
        if explicit:
            raise ConfigurationInvalid(f"Config file not found: {path}")
        return Settings()

    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return Settings()

    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: expected a JSON object", path)
        return Settings()

    try:
        return Settings.from_dict(data)
    except (TypeError, ValueError) as exc:
        raise ConfigurationInvalid(f"Invalid config file {path}: {exc}") from exc
