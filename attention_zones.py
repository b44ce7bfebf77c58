"""
attention_zones.py  --  when does each market usually hit its daily high?

For each of the last N days we take the hour of the first occurrence of the
daily max and how many consecutive readings stayed at that max before the first
lower one. Averages give a 3-hour "attention window" (peak-1 .. peak+2) and the
typical number of readings the high is sustained for.

Computed once at startup; AttentionZoneRegistry.recompute() swaps in a fresh
dict so readers never see a half-built cache.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from config import DISPLAY_TIMEZONE, HISTORY_DAYS, HISTORY_REQUEST_DELAY, Location
from weather_gateway import DaySeries, HourlyPoint, WeatherGateway, local_now, parse_local_hour

logger = logging.getLogger(__name__)

DEFAULT_START_HOUR = 13
DEFAULT_END_HOUR = 16
DEFAULT_SUSTAINED_COUNT = 4


@dataclass(frozen=True)
class AttentionZone:
    start_hour: int
    end_hour: int
    avg_sustained_count: int
    peak_hour: int | None = None
    days_used: int = 0

    @property
    def display(self) -> str:
        return f"{self.start_hour:02d}:00-{self.end_hour:02d}:00"

    def contains(self, when: datetime) -> bool:
        minutes = when.hour * 60 + when.minute
        return self.start_hour * 60 <= minutes <= self.end_hour * 60


DEFAULT_ZONE = AttentionZone(DEFAULT_START_HOUR, DEFAULT_END_HOUR, DEFAULT_SUSTAINED_COUNT)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def peak_of_day(points: list[HourlyPoint]) -> tuple[int, int] | None:
    """(hour of first max, readings sustained at max) or None if unusable."""
    if not points:
        return None
    temps = [p.temp for p in points]
    high = max(temps)
    first = temps.index(high)
    hour = parse_local_hour(points[first].time)
    if hour is None:
        return None
    sustained = 0
    for t in temps[first:]:
        if t < high:
            break
        sustained += 1
    return hour, sustained


def zone_from_peaks(peaks: list[tuple[int, int]]) -> AttentionZone:
    if not peaks:
        return DEFAULT_ZONE
    avg_hour = _round_half_up(sum(h for h, _ in peaks) / len(peaks))
    avg_sustained = _round_half_up(sum(c for _, c in peaks) / len(peaks))
    return AttentionZone(
        start_hour=max(0, avg_hour - 1),
        end_hour=min(23, avg_hour + 2),
        avg_sustained_count=max(1, avg_sustained),
        peak_hour=avg_hour,
        days_used=len(peaks),
    )


async def _history(gateway: WeatherGateway, location: Location,
                   lookback_days: int, today: date) -> list[DaySeries]:
    series = await gateway.fetch_analysis(location, lookback_days)
    if series is not None:
        return series[:lookback_days]

    logger.info("[%s] Analysis unavailable, fetching %d days one by one",
                location.name, lookback_days)
    series = []
    for offset in range(1, lookback_days + 1):
        if offset > 1:
            await asyncio.sleep(HISTORY_REQUEST_DELAY)
        day = await gateway.fetch_historical_day(location, today - timedelta(days=offset))
        if day is not None:
            series.append(day)
    return series


async def compute_zone(gateway: WeatherGateway, location: Location,
                       lookback_days: int = HISTORY_DAYS,
                       today: date | None = None) -> AttentionZone:
    today = today or local_now(location).date()
    series = await _history(gateway, location, lookback_days, today)

    peaks = []
    for day in series:
        peak = peak_of_day(day.points)
        if peak is not None:
            peaks.append(peak)

    zone = zone_from_peaks(peaks)
    if peaks:
        logger.info("[%s] Attention zone %s (peak ~%02d:00, sustained ~%d, %d days)",
                    location.name, zone.display, zone.peak_hour,
                    zone.avg_sustained_count, zone.days_used)
    else:
        logger.warning("[%s] No usable history, using default zone %s",
                       location.name, zone.display)
    return zone


def to_display_timezone(zone: AttentionZone, location: Location,
                        tz_name: str = DISPLAY_TIMEZONE,
                        day: date | None = None) -> str:
    """Window re-expressed in a reference timezone, e.g. "18:00-21:00"."""
    src = ZoneInfo(location.timezone)
    dst = ZoneInfo(tz_name)
    day = day or local_now(location).date()
    start = datetime(day.year, day.month, day.day, zone.start_hour, tzinfo=src).astimezone(dst)
    end = datetime(day.year, day.month, day.day, zone.end_hour, tzinfo=src).astimezone(dst)
    return f"{start:%H:%M}-{end:%H:%M}"


class AttentionZoneRegistry:
    """Process-lifetime cache of zones keyed by location id."""

    def __init__(self, gateway: WeatherGateway, lookback_days: int = HISTORY_DAYS):
        self.gateway = gateway
        self.lookback_days = lookback_days
        self._zones: dict[str, AttentionZone] = {}

    async def recompute(self, locations: tuple[Location, ...] | list[Location]) -> dict[str, AttentionZone]:
        zones = {}
        for loc in locations:
            try:
                zones[loc.id] = await compute_zone(self.gateway, loc, self.lookback_days)
            except Exception as e:
                logger.error("[%s] Zone computation failed: %s", loc.name, e, exc_info=True)
                zones[loc.id] = DEFAULT_ZONE
        self._zones = zones
        return zones

    def get(self, location_id: str) -> AttentionZone:
        return self._zones.get(location_id, DEFAULT_ZONE)

    @property
    def ready(self) -> bool:
        return bool(self._zones)
