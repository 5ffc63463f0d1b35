"""
Data models shared by the measurement engine.

Candidates come from the server directory, latency and throughput results
are produced per host, and ``MeasurementResult`` is the immutable record
handed to presentation and persistence.
"""
from __future__ import annotations

import enum
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .constants import DOWNLOAD_PATH, DOWNLOAD_PAYLOAD_SIZE

UNREACHABLE = math.inf


def is_unreachable(latency_ms: float) -> bool:
    return latency_ms is None or math.isinf(latency_ms) or latency_ms <= 0


def cache_buster() -> str:
    return str(uuid.uuid4())


def download_url(host: str, token: Optional[str] = None) -> str:
    """Download endpoint on *host* with a unique ``nocache`` token."""
    token = token or cache_buster()
    return f"https://{host}{DOWNLOAD_PATH}?nocache={token}&size={DOWNLOAD_PAYLOAD_SIZE}"


def strip_port(host: str) -> str:
    """``speed.example.net:8080`` -> ``speed.example.net`` (IPv6 aware)."""
    if host.startswith("["):
        return host[1:].split("]", 1)[0]
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


# ---------------------------------------------------------------------------
# Directory entries
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class ServerCandidate:
    """
    A single directory-listed server.

    Identity is ``(host, sponsor, name)`` and is fixed when the candidate is
    created; ``latency_ms`` is filled in once by the ranker and takes no
    part in equality or hashing.
    """

    host: str
    sponsor: str = ""
    name: str = ""
    country: str = ""
    cc: str = ""
    distance: float = 0.0
    https_functional: bool = True
    term: Optional[str] = None
    latency_ms: float = UNREACHABLE
    key: Tuple[str, str, str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.key = (self.host, self.sponsor, self.name)

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> ServerCandidate:
        if "https_functional" in data:
            functional = str(data["https_functional"]).strip().lower() in ("1", "true")
        else:
            functional = bool(data.get("httpsFunctional", False))

        return cls(
            host=str(data["host"]),
            sponsor=str(data.get("sponsor") or ""),
            name=str(data.get("name") or ""),
            country=str(data.get("country") or ""),
            cc=str(data.get("cc") or ""),
            distance=float(data.get("distance") or 0),
            https_functional=functional,
        )

    @classmethod
    def explicit(cls, host: str) -> ServerCandidate:
        """Candidate for a host given on the command line or in config."""
        return cls(host=host, https_functional=True)

    # -- Identity -----------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ServerCandidate):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    # -- Derived values -----------------------------------------------------

    @property
    def reachable(self) -> bool:
        return not is_unreachable(self.latency_ms)

    @property
    def label(self) -> str:
        """Search label stored with results: term, else name, else host."""
        return self.term or self.name or self.host

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "sponsor": self.sponsor,
            "name": self.name,
            "country": self.country,
            "cc": self.cc,
            "distance": self.distance,
            "latency_ms": None if is_unreachable(self.latency_ms) else round(self.latency_ms, 1),
            "term": self.term,
        }

    def __str__(self) -> str:
        ping = "ERROR" if is_unreachable(self.latency_ms) else f"{self.latency_ms:6.1f}"
        return f"{self.sponsor:<36} ({ping} ms): {self.host}"


# ---------------------------------------------------------------------------
# Per-host measurements
# ---------------------------------------------------------------------------

@dataclass
class LatencyResult:
    """Outcome of one ``LatencyProbe.measure`` call."""

    host: str
    latency_ms: float = UNREACHABLE
    samples: List[float] = field(default_factory=list)
    filtered: List[float] = field(default_factory=list)
    probes_sent: int = 0
    error: Optional[str] = None

    @property
    def reachable(self) -> bool:
        return not is_unreachable(self.latency_ms)


@dataclass
class SlotStats:
    """Per-connection counters maintained by one download slot."""

    id: int = 0
    bytes_read: int = 0
    reopens: int = 0
    error: Optional[str] = None


@dataclass
class ThroughputResult:
    """Download test result; ``kbps`` is only meaningful when ``success``."""

    host: str = ""
    kbps: int = 0
    bytes_total: int = 0
    elapsed_ms: int = 0
    slots: List[SlotStats] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None

    def calculate(self) -> None:
        """Derive kbit/s from total bytes and elapsed milliseconds."""
        if self.elapsed_ms > 0:
            self.kbps = (self.bytes_total * 8) // self.elapsed_ms
        else:
            self.kbps = 0


@dataclass(frozen=True)
class MeasurementResult:
    """Final, immutable record for one measured host."""

    host: str
    latency_ms: float = UNREACHABLE
    kbps: Optional[int] = None
    search: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return not is_unreachable(self.latency_ms) and bool(self.kbps) and self.kbps > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "host": self.host,
            "ping": None if is_unreachable(self.latency_ms) else round(self.latency_ms, 3),
            "download_kbps": self.kbps if self.success else None,
            "search": self.search,
            "success": self.success,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Run outcome
# ---------------------------------------------------------------------------

class RunState(enum.Enum):
    INIT = "init"
    RESOLVE_HOSTS = "resolve_hosts"
    MEASURING = "measuring"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunOutcome:
    state: RunState = RunState.INIT
    hosts: List[ServerCandidate] = field(default_factory=list)
    results: Tuple[MeasurementResult, ...] = ()

    @property
    def succeeded(self) -> List[MeasurementResult]:
        return [r for r in self.results if r.success]

    @property
    def exit_code(self) -> int:
        if self.state is RunState.COMPLETED and self.succeeded:
            return 0
        return 1
