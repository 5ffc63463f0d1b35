"""Speedprobe measurement engine -- discovery, latency, throughput, statistics."""

from .config import Settings, load_config, validate
from .directory import ServerDirectory, parse_servers
from .download import HttpStreamTransport, StreamTransport, ThroughputMeasurer
from .errors import ConfigurationInvalid, DirectoryUnavailable, SpeedprobeError, TransferFailed
from .latency import IcmpPinger, LatencyProbe, Pinger, WebSocketPinger, adaptive_probe_count
from .models import (
    UNREACHABLE,
    LatencyResult,
    MeasurementResult,
    RunOutcome,
    RunState,
    ServerCandidate,
    ThroughputResult,
)
from .ranker import CandidateRanker, ConnectivityVerifier
from .runner import MeasurementEvents, MeasurementOrchestrator, create_orchestrator
from .stats import mean, remove_upper_outliers, stddev, variance

__all__ = [
    "UNREACHABLE",
    "CandidateRanker",
    "ConfigurationInvalid",
    "ConnectivityVerifier",
    "DirectoryUnavailable",
    "HttpStreamTransport",
    "IcmpPinger",
    "LatencyProbe",
    "LatencyResult",
    "MeasurementEvents",
    "MeasurementOrchestrator",
    "MeasurementResult",
    "Pinger",
    "RunOutcome",
    "RunState",
    "ServerCandidate",
    "ServerDirectory",
    "Settings",
    "SpeedprobeError",
    "StreamTransport",
    "ThroughputMeasurer",
    "ThroughputResult",
    "TransferFailed",
    "WebSocketPinger",
    "adaptive_probe_count",
    "create_orchestrator",
    "load_config",
    "mean",
    "parse_servers",
    "remove_upper_outliers",
    "stddev",
    "validate",
    "variance",
]
