"""
Error taxonomy for the measurement engine.

An unreachable host is *not* an error: it is reported through the
``UNREACHABLE`` latency sentinel (see ``engine.models``).
"""
from __future__ import annotations


class SpeedprobeError(Exception):
    """Base class for all speedprobe errors."""


class DirectoryUnavailable(SpeedprobeError):
    """The server directory request failed or returned unusable data."""

    def __init__(self, term: str, reason: str) -> None:
        super().__init__(f"Server directory unavailable for {term!r}: {reason}")
        self.term = term
        self.reason = reason


class TransferFailed(SpeedprobeError):
    """A throughput measurement could not produce a number."""


class ConfigurationInvalid(SpeedprobeError, ValueError):
    """A configuration value is missing or out of range."""
