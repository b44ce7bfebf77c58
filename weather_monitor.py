"""
weather_monitor.py  --  multi-market temperature volatility alerts

Polls the weather history API for every configured market and pushes Telegram
alerts when a market sets a new daily high, first drops from it, or holds the
high during its attention window (the hours the daily peak usually happens,
learned from the last 7 days).

Startup
───────
1. Drop state rows older than STATE_RETENTION_DAYS.
2. Compute attention zones for every market.
3. Run one poll immediately, then every POLL_PERIOD_MIN minutes at +POLL_OFFSET_SEC.
4. Serve bot commands (/start, /markets, /status, /timezone, /track, ...).

Config: see config.py (TELEGRAM_TOKEN is required).
"""
from __future__ import annotations

import asyncio
import logging
import signal as signal_module
from datetime import datetime, timezone

import aiohttp

from attention_zones import AttentionZoneRegistry
from bot_commands import BOT_COMMANDS, CommandRouter
from config import (DB_PATH, DISPLAY_TIMEZONE, HISTORY_DAYS, LOCATIONS, LOG_LEVEL,
                    POLL_OFFSET_SEC, POLL_PERIOD_MIN, STATE_RETENTION_DAYS,
                    TELEGRAM_TOKEN, TRACK_INTERVAL_SEC)
from live_tracker import LiveTracker
from poll_scheduler import PollScheduler
from state_store import StateStore
from telegram_sink import DeliveryError, TelegramSink
from volatility import VolatilityStateMachine
from weather_gateway import WeatherGateway

# ── Logging ───────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


# ── Main ──────────────────────────────────────────────────────────────────────

async def main() -> None:
    if not TELEGRAM_TOKEN:
        logger.error("TELEGRAM_TOKEN not set. Add it to the environment or .env")
        return

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_shutdown(signum, frame):
        logger.info("Stopping...")
        loop.call_soon_threadsafe(stop.set)

    if hasattr(signal_module, "SIGINT"):
        signal_module.signal(signal_module.SIGINT, _handle_shutdown)
    if hasattr(signal_module, "SIGTERM"):
        signal_module.signal(signal_module.SIGTERM, _handle_shutdown)

    logger.info("=" * 65)
    logger.info("  WEATHER VOLATILITY ALERTS")
    logger.info("=" * 65)
    logger.info("  Markets:    %s", ", ".join(l.name for l in LOCATIONS))
    logger.info("  Poll:       every %dmin at +%ds", POLL_PERIOD_MIN, POLL_OFFSET_SEC)
    logger.info("  Tracking:   every %gs per user/market", TRACK_INTERVAL_SEC)
    logger.info("  Zones:      last %d days, shown in %s", HISTORY_DAYS, DISPLAY_TIMEZONE)
    logger.info("  State:      %s (keep %d days)", DB_PATH, STATE_RETENTION_DAYS)
    logger.info("=" * 65)

    store = StateStore(DB_PATH)
    store.cleanup_old_states(datetime.now(timezone.utc).date(), STATE_RETENTION_DAYS)

    async with aiohttp.ClientSession() as session:
        gateway   = WeatherGateway(session)
        sink      = TelegramSink(session, store)
        zones     = AttentionZoneRegistry(gateway)
        machine   = VolatilityStateMachine(store)
        scheduler = PollScheduler(gateway, machine, sink, zones)
        tracker   = LiveTracker(gateway, sink)
        router    = CommandRouter(sink, store, tracker, scheduler, zones)

        try:
            await sink.set_commands(BOT_COMMANDS)
            logger.info("Bot command menu set up")
        except DeliveryError as e:
            logger.warning("Failed to set bot commands: %s", e)

        commands = asyncio.create_task(router.poll_updates(stop))

        logger.info("Calculating attention zones...")
        await zones.recompute(LOCATIONS)

        logger.info("Running initial poll...")
        try:
            await scheduler.run_cycle()
        except Exception as e:
            logger.error("Initial poll error: %s", e, exc_info=True)

        try:
            await scheduler.run_forever(stop)
        finally:
            stop.set()
            commands.cancel()
            await asyncio.gather(commands, return_exceptions=True)
            await tracker.shutdown()

    logger.info("Stopped.")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
