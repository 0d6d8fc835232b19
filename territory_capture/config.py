"""Central configuration for the territory capture engine.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Backend settings
# ---------------------------------------------------------------------------
# Base URL of the Supabase project hosting the territory tables.
TERRITORY_API_URL = os.getenv("TERRITORY_API_URL", "").rstrip("/")

# Anonymous API key and optional user access token. Do not hardcode secrets.
TERRITORY_API_KEY = os.getenv("TERRITORY_API_KEY", "")
TERRITORY_ACCESS_TOKEN = os.getenv("TERRITORY_ACCESS_TOKEN", "")

# View returning territories as GeoJSON and the RPC used to claim a polygon.
TERRITORY_TABLE = os.getenv("TERRITORY_TABLE", "territory_geojson")
TERRITORY_CLAIM_RPC = os.getenv("TERRITORY_CLAIM_RPC", "claim_territory")

# HTTP session pool sizes for concurrent requests.
HTTP_POOL_CONNECTIONS = _env_int("HTTP_POOL_CONNECTIONS", 10)
HTTP_POOL_MAXSIZE = _env_int("HTTP_POOL_MAXSIZE", 10)

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("REQUEST_TIMEOUT", 15)


# ---------------------------------------------------------------------------
# Loop detection
# ---------------------------------------------------------------------------
# Minimum number of route points collected before the live scanner runs.
LOOP_MIN_COORDINATES = _env_int("LOOP_MIN_COORDINATES", 21)

# Most recent points never used as loop anchors (GPS jitter while standing).
LOOP_RECENT_BUFFER = _env_int("LOOP_RECENT_BUFFER", 15)

# Distance (metres) below which the newest point closes a loop.
LOOP_CLOSE_DISTANCE_M = _env_float("LOOP_CLOSE_DISTANCE_M", 15.0)

# A loop needs at least this many points and a perimeter above this length.
LOOP_MIN_POINTS = _env_int("LOOP_MIN_POINTS", 10)
LOOP_MIN_PERIMETER_M = _env_float("LOOP_MIN_PERIMETER_M", 50.0)

# Minimum seconds between two live captures.
CAPTURE_DEBOUNCE_SECONDS = _env_float("CAPTURE_DEBOUNCE_SECONDS", 10.0)

# End-of-session fallback: start/end tolerance (metres) and minimum points.
SESSION_END_CLOSE_DISTANCE_M = _env_float("SESSION_END_CLOSE_DISTANCE_M", 25.0)
SESSION_END_MIN_POINTS = _env_int("SESSION_END_MIN_POINTS", 4)


# ---------------------------------------------------------------------------
# Polygon preparation
# ---------------------------------------------------------------------------
# Safety cap on the number of points submitted per polygon.
POLYGON_MAX_POINTS = _env_int("POLYGON_MAX_POINTS", 200)

# First/last points closer than this (metres) are snapped together.
POLYGON_SNAP_TOLERANCE_M = _env_float("POLYGON_SNAP_TOLERANCE_M", 5.0)


# ---------------------------------------------------------------------------
# Claim processing
# ---------------------------------------------------------------------------
# Worker threads used for claim submission and background refreshes.
CLAIM_MAX_WORKERS = _env_int("CLAIM_MAX_WORKERS", 2)

# Fetch the full territory set again after every confirmed claim.
REFRESH_AFTER_CLAIM = _env_bool("REFRESH_AFTER_CLAIM", False)
