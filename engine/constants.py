"""
Shared constants used across all engine modules.

Centralises endpoints, default headers, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP headers (browser-like, required by Ookla servers)
# ---------------------------------------------------------------------------

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Origin": "https://www.speedtest.net",
    "Referer": "https://www.speedtest.net/",
}

# ---------------------------------------------------------------------------
# Speedtest.net endpoints
# ---------------------------------------------------------------------------

SERVERS_URL = "https://www.speedtest.net/api/js/servers"
DOWNLOAD_PATH = "/download"
DOWNLOAD_PAYLOAD_SIZE = 25_000_000   # bytes requested per stream
DIRECTORY_EXTRA_RESULTS = 5          # ask for a few more than we will probe

# ---------------------------------------------------------------------------
# Latency probing
# ---------------------------------------------------------------------------

REACHABILITY_TIMEOUT_MS = 1000
PROBE_TIMEOUT_MS = 1000
FULL_TIME_BUDGET_MS = 2000           # per-host reporting probe
CANDIDATE_TIME_BUDGET_MS = 750       # coarse ranking probe
MAX_CONCURRENT_PROBES = 10

# ---------------------------------------------------------------------------
# Defaults (mirrors engine.config.Settings)
# ---------------------------------------------------------------------------

DEFAULT_DOWNLOAD_TIME_MS = 5000
DEFAULT_CONNECTIONS = 4
DEFAULT_BUFFER_SIZE = 4096
DEFAULT_PING_COUNT = 20
DEFAULT_CANDIDATE_COUNT = 5
DEFAULT_CANDIDATE_PING_MAX = 3
DEFAULT_CANDIDATE_TESTS = 1

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 32
MIN_DOWNLOAD_TIME_MS = 500
MAX_DOWNLOAD_TIME_MS = 300_000
MIN_BUFFER_SIZE = 512
MAX_BUFFER_SIZE = 4 * 1024 * 1024
MIN_PING_COUNT = 1
MAX_PING_COUNT = 100
MAX_CANDIDATE_COUNT = 50

# ---------------------------------------------------------------------------
# Throughput sampling
# ---------------------------------------------------------------------------

SAMPLE_INTERVAL = 0.05               # 50 ms between progress samples
OPEN_TIMEOUT = 10.0                  # seconds to establish a download stream
