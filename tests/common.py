"""Shared builders for the test suite."""
from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from config import LOCATIONS, Location
from weather_gateway import Reading, Snapshot, format_local_time

LONDON: Location = next(l for l in LOCATIONS if l.id == "london")
SEOUL: Location = next(l for l in LOCATIONS if l.id == "seoul")


def local_dt(location: Location, y: int, m: int, d: int, hh: int, mm: int = 0) -> datetime:
    return datetime(y, m, d, hh, mm, tzinfo=ZoneInfo(location.timezone))


def make_reading(temp: float, when: datetime, fallback: bool = False) -> Reading:
    day = (when.date() - timedelta(days=1)) if fallback else when.date()
    return Reading(temp=temp, local_time=format_local_time(when),
                   local_date=day.isoformat(), observed_at=when, is_fallback=fallback)


def history_payload(temps: list[float], times: list[str] | None = None,
                    current: float | None = None, daily_max: float | None = None) -> dict:
    times = times or [f"{h}:00" for h in range(len(temps))]
    data: dict = {"hourly_data": [{"time": t, "temperature_c": v} for t, v in zip(times, temps)]}
    if current is not None:
        data["current"] = {"temperature": {"celsius": current}}
    if daily_max is not None:
        data["daily"] = {"temperature": {"max": daily_max}}
    return {"success": True, "data": data}


def make_snapshot(location: Location, temp: float | None, when: datetime,
                  fallback: bool = False) -> Snapshot:
    payload = history_payload([temp]) if temp is not None else {"success": True, "data": {}}
    day = (when.date() - timedelta(days=1)) if fallback else when.date()
    return Snapshot(location=location, date=day.isoformat(), payload=payload,
                    fetched_at=when, is_fallback=fallback)
