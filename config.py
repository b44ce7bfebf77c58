"""
config.py  --  runtime settings and the monitored locations

All values come from environment variables (a .env next to this file is
loaded first). Defaults match the production deployment.

Env vars:
  TELEGRAM_TOKEN         Telegram bot token (required to run the bot)
  API_BASE_URL           weather history endpoint (?location=..&date=..)
  ANALYSIS_URL           multi-day analysis endpoint (?location=..&days=..)
  DATA_DIR               directory holding state.db (default ./data)
  POLL_PERIOD_MIN        poll cadence in minutes (default 5)
  POLL_OFFSET_SEC        seconds after each boundary (default 10)
  TRACK_INTERVAL_SEC     live tracking tick (default 10)
  DISPLAY_TIMEZONE       reference timezone for /timezone (default Europe/Lisbon)
  LOG_LEVEL              logging level (default INFO)
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# ── Telegram ──────────────────────────────────────────────────────────────────

TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN", "")

# ── Upstream weather API ──────────────────────────────────────────────────────

API_BASE_URL = os.getenv(
    "API_BASE_URL",
    "https://wundergroundapi-production.up.railway.app/api/weather/history",
)
ANALYSIS_URL = os.getenv(
    "ANALYSIS_URL",
    "https://wundergroundapi-production.up.railway.app/api/weather/analysis",
)

REQUEST_TIMEOUT       = float(os.getenv("REQUEST_TIMEOUT", "10"))       # seconds per HTTP call
REQUEST_DELAY         = float(os.getenv("REQUEST_DELAY", "0.5"))        # between locations in a poll
HISTORY_REQUEST_DELAY = float(os.getenv("HISTORY_REQUEST_DELAY", "1"))  # between per-day history calls

# ── Scheduling ────────────────────────────────────────────────────────────────

POLL_PERIOD_MIN    = int(os.getenv("POLL_PERIOD_MIN", "5"))
POLL_OFFSET_SEC    = int(os.getenv("POLL_OFFSET_SEC", "10"))
TRACK_INTERVAL_SEC = float(os.getenv("TRACK_INTERVAL_SEC", "10"))

# ── Analytics / retention ─────────────────────────────────────────────────────

HISTORY_DAYS         = int(os.getenv("HISTORY_DAYS", "7"))
STATE_RETENTION_DAYS = int(os.getenv("STATE_RETENTION_DAYS", "2"))
DISPLAY_TIMEZONE     = os.getenv("DISPLAY_TIMEZONE", "Europe/Lisbon")

# ── Storage / logging ─────────────────────────────────────────────────────────

DATA_DIR  = Path(os.getenv("DATA_DIR", str(Path(__file__).resolve().parent / "data")))
DB_PATH   = DATA_DIR / "state.db"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


# ── Locations ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Location:
    id: str
    name: str
    emoji: str
    api_path: str
    timezone: str


LOCATIONS: tuple[Location, ...] = (
    Location("atlanta", "Atlanta",        "🍑", "us/atlanta/KATL",     "America/New_York"),
    Location("seattle", "Seattle",        "☕", "us/seattle/KSEA",     "America/Los_Angeles"),
    Location("nyc",     "New York (JFK)", "🗽", "us/new-york/KJFK",    "America/New_York"),
    Location("london",  "London",         "🇬🇧", "gb/london/EGLC",      "Europe/London"),
    Location("seoul",   "Seoul",          "🇰🇷", "kr/incheon/RKSI",     "Asia/Seoul"),
    Location("toronto", "Toronto",        "🍁", "ca/mississauga/CYYZ", "America/Toronto"),
    Location("dallas",  "Dallas",         "🤠", "us/dallas/KDAL",      "America/Chicago"),
)


def find_location(query: str,
                  locations: tuple[Location, ...] | list[Location] = LOCATIONS) -> Location | None:
    """Case-insensitive partial match in either direction ("new york" / "London city")."""
    q = query.strip().lower()
    if not q:
        return None
    for loc in locations:
        name = loc.name.lower()
        if q in name or name in q or q == loc.id:
            return loc
    return None
