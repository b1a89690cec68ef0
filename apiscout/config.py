"""
Configuration constants for apiscout
v1.0 - Load overrides from .env file and APISCOUT_* environment variables
"""

import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


# Browser connection
CDP_URL = os.getenv("APISCOUT_CDP_URL", "")
DEFAULT_CDP_PORT = 9222
PROFILE_DIR = os.getenv("APISCOUT_PROFILE_DIR", "data/chrome-profile")
HEADLESS = os.getenv("APISCOUT_HEADLESS", "1") not in ("0", "false", "no")
LOCALE = os.getenv("APISCOUT_LOCALE", "en-US")

# Local Database (SQLite)
DB_PATH = os.getenv("APISCOUT_DB_PATH", "data/apiscout.db")

# Supabase Configuration
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_ANON_KEY", "")
SUPABASE_ENABLED = bool(SUPABASE_KEY)  # Enable if key is set
SUPABASE_TABLE = os.getenv("APISCOUT_SUPABASE_TABLE", "api_exchanges")

# Logging
LOG_DIR = os.getenv("APISCOUT_LOG_DIR", "logs")

# Timeouts (in milliseconds)
DEFAULT_TIMEOUT = 30000
NAVIGATION_TIMEOUT = 60000
NETWORK_IDLE_MS = 1500

# Login
LOGIN_MAX_ATTEMPTS = _env_int("APISCOUT_LOGIN_ATTEMPTS", 3)
LOGIN_TIMEOUT = _env_float("APISCOUT_LOGIN_TIMEOUT", 180.0)  # seconds, includes OTP wait

# Retry configuration
REPLAY_MAX_RETRIES = _env_int("APISCOUT_MAX_RETRIES", 3)
RETRY_DELAY = _env_float("APISCOUT_RETRY_DELAY", 2.0)  # seconds, doubled per attempt
TRANSIENT_STATUSES = {429, 502, 503, 504}
AUTH_FAILURE_STATUSES = {401, 403}

# Interception
CAPTURE_RESOURCE_TYPES = {"xhr", "fetch"}
MAX_BODY_CHARS = 2_000_000
MAX_SCROLLS = 50
EXCHANGE_LOG_LIMIT = _env_int("APISCOUT_EXCHANGE_LOG_LIMIT", 10000)  # per Session, oldest dropped first; 0 = unbounded

# Headers to strip before anything is written to disk
SENSITIVE_HEADERS = {
    "cookie",
    "set-cookie",
    "authorization",
    "x-csrftoken",
    "x-csrf-token",
    "x-xsrf-token",
}
