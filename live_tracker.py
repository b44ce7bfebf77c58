"""
live_tracker.py  --  per-user live tracking of a single market

Each (user, location) pair gets its own asyncio task ticking every
TRACK_INTERVAL_SEC. A tick edits one status message in place; when the value
changes it also sends a separate "new data point" message. A message that can
no longer be edited ends the session.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from config import TRACK_INTERVAL_SEC, Location
from messages import (tracking_change, tracking_error, tracking_no_temperature,
                      tracking_placeholder, tracking_update)
from telegram_sink import DeliveryError, MessageNotEditable, RecipientUnreachable, TelegramSink
from weather_gateway import FetchError, WeatherGateway

logger = logging.getLogger(__name__)

SessionKey = tuple[int, str]   # (user_id, location_id)


@dataclass
class TrackingSession:
    location: Location
    message_id: int | None = None
    last_temp: float | None = None
    last_update_time: datetime | None = None


class LiveTracker:
    def __init__(self, gateway: WeatherGateway, sink: TelegramSink,
                 interval: float = TRACK_INTERVAL_SEC):
        self.gateway = gateway
        self.sink = sink
        self.interval = interval
        self._sessions: dict[SessionKey, TrackingSession] = {}
        self._tasks: dict[SessionKey, asyncio.Task] = {}

    # ── Public interface ──────────────────────────────────────────────────────

    def is_tracking(self, user_id: int, location_id: str) -> bool:
        return (user_id, location_id) in self._sessions

    async def start_tracking(self, user_id: int, location: Location) -> bool:
        """False when this pair is already tracked. DeliveryError propagates."""
        key = (user_id, location.id)
        if key in self._sessions:
            return False
        session = TrackingSession(location)
        self._sessions[key] = session   # reserve before the first await
        try:
            session.message_id = await self.sink.send(user_id, tracking_placeholder(location))
        except DeliveryError:
            self._sessions.pop(key, None)
            raise
        self._tasks[key] = asyncio.create_task(self._run(key))
        logger.info("User %s started tracking %s", user_id, location.name)
        return True

    def stop_tracking(self, user_id: int, location_id: str) -> bool:
        """False when nothing was being tracked. Safe to call repeatedly."""
        stopped = self._drop((user_id, location_id))
        if stopped:
            logger.info("Stopped tracking %s for user %s", location_id, user_id)
        return stopped

    def stop_all_tracking(self, user_id: int) -> int:
        keys = [k for k in self._sessions if k[0] == user_id]
        for key in keys:
            self._drop(key)
        if keys:
            logger.info("Stopped %d tracking session(s) for user %s", len(keys), user_id)
        return len(keys)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._sessions.clear()

    # ── Internals ─────────────────────────────────────────────────────────────

    def _drop(self, key: SessionKey) -> bool:
        session = self._sessions.pop(key, None)
        task = self._tasks.pop(key, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        return session is not None

    async def _run(self, key: SessionKey) -> None:
        while key in self._sessions:
            await asyncio.sleep(self.interval)
            if key not in self._sessions:
                break
            try:
                await self._tick(key)
            except Exception as e:
                logger.error("Error in tracking loop for %s: %s", key, e, exc_info=True)

    async def _edit(self, key: SessionKey, session: TrackingSession, text: str) -> bool:
        """Edit the status message; False (and session dropped) if it is gone."""
        try:
            await self.sink.edit(key[0], session.message_id, text)
        except (MessageNotEditable, RecipientUnreachable) as e:
            logger.info("Tracking message for %s unavailable (%s), stopping", key, e)
            self._drop(key)
            return False
        except DeliveryError as e:
            logger.warning("Could not update tracking message for %s: %s", key, e)
        return True

    async def _tick(self, key: SessionKey) -> None:
        session = self._sessions.get(key)
        if session is None:
            return
        user_id = key[0]
        loc = session.location
        check_time = datetime.now().strftime("%H:%M:%S")

        try:
            snapshot = await self.gateway.fetch_current(loc)
        except FetchError as e:
            logger.warning("[%s] Tracking fetch failed: %s", loc.name, e)
            await self._edit(key, session, tracking_error(loc, check_time))
            return

        reading = snapshot.reading()
        if reading is None:
            await self._edit(key, session, tracking_no_temperature(loc, check_time))
            return

        text = tracking_update(loc, reading.temp, reading.local_time, check_time,
                               reading.is_fallback)
        if not await self._edit(key, session, text):
            return

        prev = session.last_temp
        if prev is not None and prev != reading.temp:
            try:
                await self.sink.send(user_id, tracking_change(
                    loc, reading.temp, prev, reading.local_time, check_time))
                logger.info("[%s] Temp changed: %s°C -> %s°C", loc.name, prev, reading.temp)
            except RecipientUnreachable:
                self._drop(key)
                return
            except DeliveryError as e:
                logger.error("Error sending tracking update to %s: %s", user_id, e)

        session.last_temp = reading.temp
        session.last_update_time = datetime.now(timezone.utc)
