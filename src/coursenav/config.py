# /coursenav/config.py
"""
Centralized configuration for the CourseNav catalog navigator.
Includes paging limits, token ceilings, session bounds and paths.
"""
import os
from pathlib import Path
from dotenv import load_dotenv
from rich.console import Console
from .observability import configure_logging

# ==============================================================================
# CONSOLE & ENVIRONMENT
# ==============================================================================
console = Console()
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 1, maximum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        return float(default)
    return max(float(minimum), value)


# ==============================================================================
# GLOBAL CONFIGURATION
# ==============================================================================
# --- Search ---
SEARCH_MIN_KEYWORD_LENGTH = _env_int("SEARCH_MIN_KEYWORD_LENGTH", 3, minimum=1)
SEARCH_PAGE_SIZE = _env_int("SEARCH_PAGE_SIZE", 5, minimum=1)
SEARCH_MAX_RESULTS = _env_int("SEARCH_MAX_RESULTS", 200, minimum=1)

# --- Action tokens ---
# Chat transports cap the callback payload (Telegram: 64 bytes).
TOKEN_MAX_BYTES = _env_int("TOKEN_MAX_BYTES", 64, minimum=16)

# --- Navigation ---
NAV_YEAR_COUNT = _env_int("NAV_YEAR_COUNT", 4, minimum=1, maximum=6)
NAV_TERM_COUNT = 2

# --- Session bounds ---
NAV_SESSION_TTL_S = _env_float("NAV_SESSION_TTL_S", 6 * 3600.0, minimum=1.0)
NAV_SESSION_MAX_ENTRIES = _env_int("NAV_SESSION_MAX_ENTRIES", 10000, minimum=1)
SEARCH_SESSION_TTL_S = _env_float("SEARCH_SESSION_TTL_S", 1800.0, minimum=1.0)
SEARCH_SESSION_MAX_ENTRIES = _env_int("SEARCH_SESSION_MAX_ENTRIES", 10000, minimum=1)

# --- Rate limiting ---
RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)
RATE_LIMIT_MAX_REQUESTS = _env_int("RATE_LIMIT_MAX_REQUESTS", 20, minimum=1)
RATE_LIMIT_WINDOW_S = _env_float("RATE_LIMIT_WINDOW_S", 60.0, minimum=0.1)
# Tracked conversations; idle windows are also swept every RATE_LIMIT_PRUNE_EVERY checks.
RATE_LIMIT_MAX_KEYS = _env_int("RATE_LIMIT_MAX_KEYS", 10000, minimum=1)
RATE_LIMIT_PRUNE_EVERY = _env_int("RATE_LIMIT_PRUNE_EVERY", 256, minimum=1)

# --- Favorites and history (in memory) ---
LIBRARY_PAGE_SIZE = _env_int("LIBRARY_PAGE_SIZE", 5, minimum=1)
HISTORY_MAX_ENTRIES = _env_int("HISTORY_MAX_ENTRIES", 100, minimum=1)
LIBRARY_TTL_S = _env_float("LIBRARY_TTL_S", 30 * 86400.0, minimum=1.0)
LIBRARY_MAX_CONVERSATIONS = _env_int("LIBRARY_MAX_CONVERSATIONS", 10000, minimum=1)

# --- API service ---
API_THREAD_POOL_WORKERS = _env_int("API_THREAD_POOL_WORKERS", 8, minimum=1)

# --- Path Configuration ---
# Data directory is at ../../data relative to this file (src/coursenav/config.py)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_DATA_DIR = _BASE_DIR / "data"

CATALOG_DB_PATH = Path(os.getenv("CATALOG_DB_PATH", str(_DATA_DIR / "catalog.sqlite")))
CATALOG_SEED_PATH = Path(os.getenv("CATALOG_SEED_PATH", str(_DATA_DIR / "sample_catalog.json")))
CACHE_DIR = Path(os.getenv("CACHE_DIR", str(_DATA_DIR / "runtime_cache")))
METRICS_DIR = Path(os.getenv("METRICS_DIR", str(CACHE_DIR / "metrics")))

# --- Create necessary directories ---
CACHE_DIR.mkdir(parents=True, exist_ok=True)
LOG_PATH = Path(os.getenv("LOG_PATH", str(CACHE_DIR / "app.log")))
LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
configure_logging(LOG_PATH)
