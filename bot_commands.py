"""
Telegram command handling: subscription, per-market opt-in, status, attention
zones and live tracking. Updates arrive through getUpdates long-polling.
"""
from __future__ import annotations

import asyncio
import html
import logging

from attention_zones import AttentionZoneRegistry
from config import LOCATIONS, Location, find_location
from live_tracker import LiveTracker
from messages import format_status, format_zones, welcome
from poll_scheduler import PollScheduler
from state_store import StateStore
from telegram_sink import DeliveryError, TelegramSink

logger = logging.getLogger(__name__)

BOT_COMMANDS = [
    ("start",      "🚀 Subscribe to weather alerts"),
    ("markets",    "🌍 Enable/disable market notifications"),
    ("status",     "🌡️ View current temperatures"),
    ("timezone",   "🕐 Peak hours per market"),
    ("track",      "🔍 Track a market (updates every 10s)"),
    ("untrack",    "⏹️ Stop tracking a market"),
    ("untrackall", "🛑 Stop all tracking"),
    ("stop",       "🛑 Unsubscribe from alerts"),
]


class CommandRouter:
    def __init__(self, sink: TelegramSink, store: StateStore, tracker: LiveTracker,
                 scheduler: PollScheduler, zones: AttentionZoneRegistry,
                 locations: tuple[Location, ...] | list[Location] = LOCATIONS):
        self.sink = sink
        self.store = store
        self.tracker = tracker
        self.scheduler = scheduler
        self.zones = zones
        self.locations = locations
        self._handlers = {
            "start": self.cmd_start,
            "stop": self.cmd_stop,
            "markets": self.cmd_markets,
            "status": self.cmd_status,
            "timezone": self.cmd_timezone,
            "track": self.cmd_track,
            "untrack": self.cmd_untrack,
            "untrackall": self.cmd_untrackall,
        }

    # ── Dispatch ──────────────────────────────────────────────────────────────

    async def handle_update(self, update: dict) -> None:
        if "callback_query" in update:
            await self.handle_callback(update["callback_query"])
            return
        msg = update.get("message") or {}
        text = (msg.get("text") or "").strip()
        chat_id = (msg.get("chat") or {}).get("id")
        if chat_id is None or not text.startswith("/"):
            return

        head, _, arg = text.partition(" ")
        command = head[1:].split("@", 1)[0].lower()
        handler = self._handlers.get(command)
        if handler is None:
            return
        sender = msg.get("from") or {}
        username = sender.get("username") or sender.get("first_name") or "User"
        await handler(chat_id, arg.strip(), username)

    async def poll_updates(self, stop: asyncio.Event) -> None:
        offset = None
        while not stop.is_set():
            try:
                updates = await self.sink.get_updates(offset)
            except DeliveryError as e:
                logger.warning("getUpdates failed: %s", e)
                await asyncio.sleep(5)
                continue
            for update in updates:
                offset = update["update_id"] + 1
                try:
                    await self.handle_update(update)
                except Exception as e:
                    logger.error("Error handling update %s: %s", update.get("update_id"), e,
                                 exc_info=True)

    # ── Keyboard ──────────────────────────────────────────────────────────────

    def markets_keyboard(self, chat_id: int) -> dict:
        user = self.store.get_user(chat_id) or {}
        rows = []
        for loc in self.locations:
            icon = "✅" if self.store.market_enabled(user, loc.id) else "❌"
            rows.append([{"text": f"{icon} {loc.emoji} {loc.name}",
                          "callback_data": f"toggle_{loc.id}"}])
        return {"inline_keyboard": rows}

    async def handle_callback(self, query: dict) -> None:
        data = query.get("data") or ""
        message = query.get("message") or {}
        chat_id = (message.get("chat") or {}).get("id")
        if not data.startswith("toggle_") or chat_id is None:
            return
        location_id = data[len("toggle_"):]
        loc = next((l for l in self.locations if l.id == location_id), None)
        if loc is None:
            return
        enabled = await asyncio.to_thread(self.store.toggle_market, chat_id, location_id)
        if enabled is None:
            await self.sink.answer_callback(query["id"], "Use /start first!")
            return
        state = "enabled ✅" if enabled else "disabled ❌"
        await self.sink.edit_reply_markup(chat_id, message["message_id"],
                                          self.markets_keyboard(chat_id))
        await self.sink.answer_callback(query["id"], f"{loc.emoji} {loc.name} alerts {state}")
        logger.info("User %s toggled %s: %s", chat_id, loc.name, state)

    # ── Commands ──────────────────────────────────────────────────────────────

    async def cmd_start(self, chat_id: int, arg: str, username: str) -> None:
        if self.store.add_user(chat_id, username, [l.id for l in self.locations]):
            await self.sink.reply(chat_id, welcome(html.escape(username), self.locations))
            logger.info("New user registered: %s (%s)", username, chat_id)
        else:
            await self.sink.reply(chat_id,
                "👋 You're already subscribed to weather alerts!\n\n"
                "Use /markets to manage alerts, /status to view temperatures, "
                "or /stop to unsubscribe.")

    async def cmd_stop(self, chat_id: int, arg: str, username: str) -> None:
        self.tracker.stop_all_tracking(chat_id)
        if self.store.remove_user(chat_id):
            await self.sink.reply(chat_id,
                "👋 You've been unsubscribed from weather alerts.\n\n"
                "Use /start anytime to resubscribe!")
            logger.info("User unsubscribed: %s", chat_id)
        else:
            await self.sink.reply(chat_id, "You weren't subscribed. Use /start to subscribe!")

    async def cmd_markets(self, chat_id: int, arg: str, username: str) -> None:
        if self.store.get_user(chat_id) is None:
            await self.sink.reply(chat_id, "❌ You're not subscribed yet. Use /start first!")
            return
        await self.sink.reply(chat_id,
            "🌍 <b>Market Notifications</b>\n\n"
            "Tap a market to toggle alerts on/off:\n"
            "✅ = Enabled  ❌ = Disabled",
            reply_markup=self.markets_keyboard(chat_id))

    async def cmd_status(self, chat_id: int, arg: str, username: str) -> None:
        await self.sink.reply(chat_id, format_status(self.locations,
                                                     self.scheduler.current_readings))

    async def cmd_timezone(self, chat_id: int, arg: str, username: str) -> None:
        zones = {l.id: self.zones.get(l.id) for l in self.locations} if self.zones.ready else {}
        await self.sink.reply(chat_id, format_zones(self.locations, zones))

    def _lookup(self, arg: str) -> Location | None:
        return find_location(arg, self.locations) if arg else None

    async def _unknown_city(self, chat_id: int, arg: str, usage: str) -> None:
        cities = ", ".join(l.name for l in self.locations)
        name = html.escape(arg) if arg else ""
        await self.sink.reply(chat_id,
            f"❌ City \"{name}\" not found.\n\nAvailable cities: {cities}\n\nUsage: {usage}")

    async def cmd_track(self, chat_id: int, arg: str, username: str) -> None:
        loc = self._lookup(arg)
        if loc is None:
            await self._unknown_city(chat_id, arg, "/track London")
            return
        try:
            started = await self.tracker.start_tracking(chat_id, loc)
        except DeliveryError as e:
            logger.error("Could not start tracking %s for %s: %s", loc.name, chat_id, e)
            return
        if not started:
            await self.sink.reply(chat_id,
                f"⚠️ Already tracking {loc.emoji} {loc.name}.\n\n"
                f"Use /untrack {loc.name} to stop.")

    async def cmd_untrack(self, chat_id: int, arg: str, username: str) -> None:
        loc = self._lookup(arg)
        if loc is None:
            await self._unknown_city(chat_id, arg, "/untrack London")
            return
        if self.tracker.stop_tracking(chat_id, loc.id):
            await self.sink.reply(chat_id, f"✅ Stopped tracking {loc.emoji} {loc.name}.")
        else:
            await self.sink.reply(chat_id, f"ℹ️ You weren't tracking {loc.emoji} {loc.name}.")

    async def cmd_untrackall(self, chat_id: int, arg: str, username: str) -> None:
        count = self.tracker.stop_all_tracking(chat_id)
        if count:
            await self.sink.reply(chat_id, f"✅ Stopped tracking all markets ({count}).")
        else:
            await self.sink.reply(chat_id, "ℹ️ You weren't tracking any markets.")
