"""
weather_gateway.py  --  adapter over the upstream weather history API

Two queries:
  history   ?location=<api_path>&date=YYYY-MM-DD  ->  current / daily / hourly_data
  analysis  ?location=<api_path>&days=N          ->  per-day hourly series

The history endpoint rejects dates it considers "future". Locations ahead of the
API's clock (Seoul) hit this right after local midnight, so fetch_current()
retries once with yesterday's date and flags the snapshot as a fallback.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo

import aiohttp

from config import ANALYSIS_URL, API_BASE_URL, REQUEST_TIMEOUT, Location

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Timeout, non-2xx status or malformed payload from the weather API."""

    def __init__(self, message: str, status: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.payload = payload


# ── Data ──────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Reading:
    temp: float
    local_time: str          # "1:05 PM"
    local_date: str          # date the snapshot belongs to (yesterday on fallback)
    observed_at: datetime    # aware, in the location's timezone
    is_fallback: bool = False


@dataclass(frozen=True)
class HourlyPoint:
    time: str
    temp: float


@dataclass
class DaySeries:
    date: str
    points: list[HourlyPoint] = field(default_factory=list)


@dataclass
class Snapshot:
    location: Location
    date: str
    payload: dict
    fetched_at: datetime
    is_fallback: bool = False

    def current_temp(self) -> float | None:
        return extract_current_temp(self.payload)

    def daily_high(self) -> float | None:
        return extract_daily_high(self.payload)

    def hourly(self) -> list[HourlyPoint]:
        return _hourly_points(_unwrap(self.payload).get("hourly_data"))

    @property
    def cache_hit(self) -> bool:
        meta = self.payload.get("metadata") or {}
        return bool(meta.get("cache_hit"))

    def reading(self) -> Reading | None:
        temp = self.current_temp()
        if temp is None:
            return None
        return Reading(
            temp=temp,
            local_time=format_local_time(self.fetched_at),
            local_date=self.date,
            observed_at=self.fetched_at,
            is_fallback=self.is_fallback,
        )


# ── Extraction helpers ────────────────────────────────────────────────────────

def _num(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _unwrap(payload: Any) -> dict:
    """The API wraps everything in {success, data}; accept the bare form too."""
    if not isinstance(payload, dict):
        return {}
    inner = payload.get("data")
    return inner if isinstance(inner, dict) else payload


def _dig(data: dict, *keys: str) -> Any:
    for k in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(k)
    return data


def _hourly_points(raw: Any) -> list[HourlyPoint]:
    if not isinstance(raw, list):
        return []
    pts = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        temp = _num(entry.get("temperature_c"))
        if temp is None:
            continue
        pts.append(HourlyPoint(time=str(entry.get("time") or ""), temp=temp))
    return pts


def _from_hourly(data: dict) -> float | None:
    # "current" is served from the API's cache and lags; the newest hourly row doesn't
    pts = _hourly_points(data.get("hourly_data"))
    return pts[-1].temp if pts else None


def _from_current(data: dict) -> float | None:
    return _num(_dig(data, "current", "temperature", "celsius"))


def _from_temperature(data: dict) -> float | None:
    return _num(_dig(data, "temperature", "celsius"))


def _from_temp(data: dict) -> float | None:
    return _num(data.get("temp"))


TEMP_STRATEGIES: tuple[Callable[[dict], float | None], ...] = (
    _from_hourly,
    _from_current,
    _from_temperature,
    _from_temp,
)


def extract_current_temp(payload: Any) -> float | None:
    data = _unwrap(payload)
    for strategy in TEMP_STRATEGIES:
        value = strategy(data)
        if value is not None:
            return value
    return None


def extract_daily_high(payload: Any) -> float | None:
    data = _unwrap(payload)
    high = _num(_dig(data, "daily", "temperature", "max"))
    if high is not None:
        return high
    pts = _hourly_points(data.get("hourly_data"))
    return max(p.temp for p in pts) if pts else None


_TIME_RE = re.compile(r"(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])?")


def parse_local_hour(text: str) -> int | None:
    """Hour of day from "1:53 PM", "13:53" or "2026-10-10T13:53:00"."""
    m = _TIME_RE.search(text or "")
    if not m:
        return None
    hour = int(m.group(1))
    meridiem = (m.group(3) or "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    return hour if 0 <= hour <= 23 else None


def format_local_time(dt: datetime) -> str:
    hour = dt.hour % 12 or 12
    return f"{hour}:{dt.minute:02d} {'AM' if dt.hour < 12 else 'PM'}"


def local_now(location: Location, now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(location.timezone))


def _is_future_date_error(err: FetchError) -> bool:
    if err.status != 400 or not isinstance(err.payload, dict):
        return False
    details = _dig(err.payload, "error", "details") or []
    return any("future" in str(d.get("message", "")) for d in details if isinstance(d, dict))


# ── Gateway ───────────────────────────────────────────────────────────────────

class WeatherGateway:
    def __init__(self, session: aiohttp.ClientSession,
                 base_url: str = API_BASE_URL,
                 analysis_url: str = ANALYSIS_URL,
                 timeout: float = REQUEST_TIMEOUT):
        self.session = session
        self.base_url = base_url
        self.analysis_url = analysis_url
        self.timeout = timeout

    async def _get_json(self, url: str, params: dict) -> tuple[int, Any]:
        try:
            async with self.session.get(url, params=params,
                                        timeout=aiohttp.ClientTimeout(total=self.timeout)) as r:
                try:
                    data = await r.json(content_type=None)
                except ValueError:
                    data = None
                return r.status, data
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise FetchError(f"{url} {params}: {e!r}") from e

    async def _fetch_day(self, location: Location, day: date, fetched_at: datetime) -> Snapshot:
        status, data = await self._get_json(
            self.base_url, {"location": location.api_path, "date": day.isoformat()})
        if status != 200:
            raise FetchError(f"HTTP {status} for {location.api_path} on {day}",
                             status=status, payload=data)
        if not isinstance(data, dict) or data.get("success") is False:
            raise FetchError(f"Malformed payload for {location.api_path} on {day}",
                             status=status, payload=data)
        snap = Snapshot(location=location, date=day.isoformat(), payload=data,
                        fetched_at=fetched_at)
        body = _unwrap(data)
        logger.info("[%s] %s: current=%s dailyMax=%s dailyMin=%s cache=%s",
                    location.name, day,
                    _dig(body, "current", "temperature", "celsius"),
                    _dig(body, "daily", "temperature", "max"),
                    _dig(body, "daily", "temperature", "min"),
                    "HIT" if snap.cache_hit else "MISS")
        return snap

    async def fetch_current(self, location: Location, now: datetime | None = None) -> Snapshot:
        """Today's snapshot in the location's timezone; raises FetchError."""
        fetched_at = local_now(location, now)
        today = fetched_at.date()
        try:
            return await self._fetch_day(location, today, fetched_at)
        except FetchError as e:
            if not _is_future_date_error(e):
                raise
        yesterday = today - timedelta(days=1)
        logger.info("[%s] Local date %s is future for API, retrying with %s",
                    location.name, today, yesterday)
        snap = await self._fetch_day(location, yesterday, fetched_at)
        snap.is_fallback = True
        return snap

    async def fetch_historical_day(self, location: Location, day: date) -> DaySeries | None:
        """Hourly series for one past day; None when the API has nothing."""
        try:
            snap = await self._fetch_day(location, day, local_now(location))
        except FetchError as e:
            logger.warning("[%s] History for %s unavailable: %s", location.name, day, e)
            return None
        points = snap.hourly()
        return DaySeries(day.isoformat(), points) if points else None

    async def fetch_analysis(self, location: Location, days: int) -> list[DaySeries] | None:
        """Bulk N-day hourly series; None means "use the per-day path"."""
        try:
            status, data = await self._get_json(
                self.analysis_url, {"location": location.api_path, "days": days})
        except FetchError as e:
            logger.warning("[%s] Analysis unavailable: %s", location.name, e)
            return None
        if status != 200 or not isinstance(data, dict):
            logger.warning("[%s] Analysis returned HTTP %s", location.name, status)
            return None

        body = data.get("data", data)
        if isinstance(body, dict):
            body = body.get("days")
        if not isinstance(body, list):
            return None

        series = []
        for entry in body:
            if not isinstance(entry, dict):
                continue
            points = _hourly_points(entry.get("hourly_data") or entry.get("hourly"))
            if points:
                series.append(DaySeries(str(entry.get("date") or ""), points))
        return series or None
