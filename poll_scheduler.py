"""
poll_scheduler.py  --  one sequential poll over every location, on a cadence
aligned to wall-clock five-minute marks (:00:10, :05:10, :10:10, ...).
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from attention_zones import AttentionZoneRegistry
from config import LOCATIONS, POLL_OFFSET_SEC, POLL_PERIOD_MIN, REQUEST_DELAY, Location
from messages import format_alert
from state_store import PersistenceError
from telegram_sink import TelegramSink
from volatility import AlertEvent, VolatilityStateMachine
from weather_gateway import FetchError, Reading, WeatherGateway

logger = logging.getLogger(__name__)


def seconds_until_next_poll(now: datetime,
                            period_min: int = POLL_PERIOD_MIN,
                            offset_s: int = POLL_OFFSET_SEC) -> float:
    """Delay until the next period boundary + offset; never zero or negative."""
    next_mark = -(-now.minute // period_min) * period_min
    delay = (next_mark - now.minute) * 60 - now.second - now.microsecond / 1e6 + offset_s
    if delay <= 0:
        delay += period_min * 60
    return delay


class PollScheduler:
    def __init__(self, gateway: WeatherGateway,
                 machine: VolatilityStateMachine,
                 sink: TelegramSink,
                 zones: AttentionZoneRegistry,
                 locations: tuple[Location, ...] | list[Location] = LOCATIONS,
                 request_delay: float = REQUEST_DELAY):
        self.gateway = gateway
        self.machine = machine
        self.sink = sink
        self.zones = zones
        self.locations = locations
        self.request_delay = request_delay
        # location_id -> latest reading summary, for /status
        self.current_readings: dict[str, dict] = {}

    def _remember(self, location: Location, reading: Reading, api_daily_max: float | None) -> None:
        state = self.machine.store.load_state(location.id, reading.local_date)
        high = reading.temp if state.high_temp is None else max(state.high_temp, reading.temp)
        self.current_readings[location.id] = {
            "temp": reading.temp,
            "time": reading.local_time,
            "date": reading.observed_at.date().isoformat(),
            "high": high,
            "api_daily_max": api_daily_max,
            "is_fallback": reading.is_fallback,
        }

    async def _process_location(self, location: Location) -> list[tuple[AlertEvent, bool]]:
        try:
            snapshot = await self.gateway.fetch_current(location)
        except FetchError as e:
            logger.warning("[%s] Fetch failed, skipping: %s", location.name, e)
            return []

        reading = snapshot.reading()
        if reading is None:
            logger.warning("[%s] Could not extract temperature", location.name)
            return []

        zone = self.zones.get(location.id)
        # sqlite work runs off the event loop
        try:
            await asyncio.to_thread(self._remember, location, reading, snapshot.daily_high())
            events = await asyncio.to_thread(self.machine.process_reading, location, reading, zone)
        except PersistenceError as e:
            logger.error("[%s] State unavailable, skipping: %s", location.name, e)
            return []
        in_window = self.machine.in_window(zone, reading)
        return [(event, in_window) for event in events]

    async def run_cycle(self) -> list[AlertEvent]:
        logger.info("Polling %d locations at %s", len(self.locations),
                    datetime.now().strftime("%H:%M:%S"))
        collected: list[tuple[AlertEvent, bool]] = []
        for i, location in enumerate(self.locations):
            if i and self.request_delay:
                await asyncio.sleep(self.request_delay)
            try:
                collected.extend(await self._process_location(location))
            except Exception as e:
                logger.error("[%s] Error processing location: %s", location.name, e, exc_info=True)

        for event, in_window in collected:
            text = format_alert(event, self.zones.get(event.location.id), in_window)
            if not text:
                continue
            sent = await self.sink.broadcast(text, event.location.id)
            logger.info("Sent %s %s alert to %d user(s)",
                        event.location.name, type(event).__name__, sent)

        logger.info("Polling complete. %d alert(s) processed.", len(collected))
        return [event for event, _ in collected]

    async def run_forever(self, stop: asyncio.Event) -> None:
        """Poll on every boundary until stop is set; the delay is recomputed each time."""
        while not stop.is_set():
            delay = seconds_until_next_poll(datetime.now())
            logger.info("Next poll at %s (in %ds)",
                        (datetime.now() + timedelta(seconds=delay)).strftime("%H:%M:%S"), delay)
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error("Poll cycle error: %s", e, exc_info=True)
