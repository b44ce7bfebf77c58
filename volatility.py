"""
volatility.py  --  per-location daily high / drop / sustained-high detection

State is scoped to (location, local calendar date). The first reading of a day
sets the baseline silently; afterwards every reading is checked in order:

  1. above the tracked high        -> NewHigh, drop flag cleared, sustained = 1
  2. below the high, not alerted   -> Drop (once per high), sustained = 0
  3. equal to the high, inside the attention window, drop not alerted
                                   -> sustained += 1, SustainedHigh from 2 on
  4. otherwise nothing

A state row that cannot be read aborts the reading; only a failed write falls
back to the in-memory result.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from attention_zones import AttentionZone
from config import Location
from state_store import LocationDayState, PersistenceError, StateStore
from weather_gateway import Reading

logger = logging.getLogger(__name__)


# ── Alert events ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NewHigh:
    location: Location
    temp: float
    prev_high: float
    local_time: str
    local_date: str


@dataclass(frozen=True)
class Drop:
    location: Location
    temp: float
    high: float
    local_time: str
    local_date: str


@dataclass(frozen=True)
class SustainedHigh:
    location: Location
    temp: float
    high: float
    count: int
    local_time: str
    local_date: str


AlertEvent = Union[NewHigh, Drop, SustainedHigh]


# ── State machine ─────────────────────────────────────────────────────────────

class VolatilityStateMachine:
    def __init__(self, store: StateStore):
        self.store = store

    def _save(self, location: Location, day: str, state: LocationDayState) -> None:
        try:
            self.store.save_state(location.id, day, state)
        except PersistenceError as e:
            logger.error("[%s] %s (continuing with in-memory state)", location.name, e)

    def process_reading(self, location: Location, reading: Reading,
                        zone: AttentionZone | None = None) -> list[AlertEvent]:
        """Apply one reading to the day's state. PersistenceError from the load propagates."""
        day = reading.local_date
        temp = reading.temp
        state = self.store.load_state(location.id, day)

        if state.high_temp is None:
            state.high_temp = temp
            state.last_temp = temp
            state.has_alerted_drop = False
            state.sustained_high_count = 1
            state.history.append({"temp": temp, "time": reading.local_time})
            self._save(location, day, state)
            logger.info("[%s] BASELINE SET: %s°C (%s)", location.name, temp, day)
            return []

        logger.info("[%s] State: high=%s°C last=%s°C alertedDrop=%s sustained=%d | now %s°C",
                    location.name, state.high_temp, state.last_temp,
                    state.has_alerted_drop, state.sustained_high_count, temp)

        events: list[AlertEvent] = []
        if temp > state.high_temp:
            prev_high = state.high_temp
            state.high_temp = temp
            state.has_alerted_drop = False
            state.sustained_high_count = 1
            events.append(NewHigh(location, temp, prev_high, reading.local_time, reading.local_date))
            logger.info("[%s] ALERT: NEW HIGH %s°C (prev %s°C)", location.name, temp, prev_high)

        elif temp < state.high_temp and not state.has_alerted_drop:
            state.has_alerted_drop = True
            state.sustained_high_count = 0
            events.append(Drop(location, temp, state.high_temp, reading.local_time, reading.local_date))
            logger.info("[%s] ALERT: DROPPED to %s°C (high %s°C)", location.name, temp, state.high_temp)

        elif (temp == state.high_temp
              and not state.has_alerted_drop
              and self.in_window(zone, reading)):
            state.sustained_high_count += 1
            if state.sustained_high_count >= 2:
                events.append(SustainedHigh(location, temp, state.high_temp,
                                            state.sustained_high_count,
                                            reading.local_time, reading.local_date))
                logger.info("[%s] ALERT: SUSTAINED HIGH %s°C x%d", location.name,
                            temp, state.sustained_high_count)
        else:
            logger.debug("[%s] No alert needed", location.name)

        state.last_temp = temp
        state.history.append({"temp": temp, "time": reading.local_time})
        self._save(location, day, state)
        return events

    @staticmethod
    def in_window(zone: AttentionZone | None, reading: Reading) -> bool:
        """True when the reading was observed today, inside the zone's hours."""
        if zone is None:
            return False
        # a fallback snapshot belongs to yesterday; today's clock says nothing about it
        if reading.local_date != reading.observed_at.date().isoformat():
            return False
        return zone.contains(reading.observed_at)
