"""Telegram message texts (HTML parse mode)."""
from __future__ import annotations

from datetime import date, datetime

from attention_zones import AttentionZone, to_display_timezone
from config import DISPLAY_TIMEZONE, Location
from volatility import AlertEvent, Drop, NewHigh, SustainedHigh

BAR = "━━━━━━━━━━━━━━━━━━━━━━"


def _short_date(iso: str) -> str:
    try:
        return date.fromisoformat(iso).strftime("%b %d").replace(" 0", " ")
    except ValueError:
        return iso


def _fmt(temp: float | None) -> str:
    if temp is None:
        return "--"
    return f"{temp:g}"


def format_alert(event: AlertEvent, zone: AttentionZone | None = None,
                 in_window: bool = False) -> str:
    loc = event.location
    when = f"🕐 Time: {event.local_time} ({_short_date(event.local_date)})"
    header = "🚨🚨🚨 <b>PEAK HOURS ALERT</b> 🚨🚨🚨\n\n" if in_window else ""
    footer = (f"\n\n⚠️ <b>ATTENTION WINDOW: {zone.display}</b>"
              if in_window and zone is not None else "")

    if isinstance(event, NewHigh):
        title = "🔴 <b>NEW HIGH RECORDED</b>" if in_window else "📈 <b>NEW HIGH RECORDED</b>"
        body = (f"🌡️ Temperature: <b>{_fmt(event.temp)}°C</b>\n"
                f"📊 Previous High: {_fmt(event.prev_high)}°C\n")
    elif isinstance(event, Drop):
        title = "🔴 <b>TEMPERATURE DROP</b>" if in_window else "📉 <b>TEMPERATURE DROP</b>"
        body = (f"🌡️ Current: <b>{_fmt(event.temp)}°C</b>\n"
                f"📊 Day's High: {_fmt(event.high)}°C (↓{event.high - event.temp:.1f}°C)\n")
    elif isinstance(event, SustainedHigh):
        title = "🔥 <b>HIGH SUSTAINED</b>"
        expected = (f" (typical: {zone.avg_sustained_count})" if zone is not None else "")
        body = (f"🌡️ Temperature: <b>{_fmt(event.temp)}°C</b> = day's high\n"
                f"🔁 Readings at high: <b>{event.count}</b>{expected}\n")
    else:
        return ""

    return f"{header}{title}\n\n{loc.emoji} <b>{loc.name}</b>\n{body}{when}{footer}"


def format_status(locations: tuple[Location, ...] | list[Location],
                  readings: dict[str, dict], now: datetime | None = None) -> str:
    if not readings:
        return "⏳ No data yet. Waiting for first poll..."
    now = now or datetime.now()
    lines = ["🌡️ <b>Current Temperatures</b>", ""]
    for loc in locations:
        r = readings.get(loc.id)
        if r is None:
            lines += [f"{loc.emoji} <b>{loc.name}</b>: No data", ""]
            continue
        high = f" (High: {_fmt(r['high'])}°C)" if r.get("high") is not None else ""
        stale = " ⏳" if r.get("is_fallback") else ""
        lines.append(f"{loc.emoji} <b>{loc.name}</b>: {_fmt(r['temp'])}°C{high}{stale}")
        lines.append(f"   └ {r['time']} • {r['date']}")
        lines.append("")
    lines.append(f"<i>Last updated: {now:%H:%M:%S}</i>")
    lines.append("<i>⏳ = Data from previous day (new day data pending)</i>")
    return "\n".join(lines)


def format_zones(locations: tuple[Location, ...] | list[Location],
                 zones: dict[str, AttentionZone],
                 tz_name: str = DISPLAY_TIMEZONE) -> str:
    city = tz_name.split("/")[-1].replace("_", " ")
    parts = [f"🎯 <b>Attention Zones ({city} Time)</b>", "",
             "<i>Based on last 7 days of historical data</i>",
             "<i>When each market typically hits daily high</i>", "", BAR, ""]
    for loc in locations:
        zone = zones.get(loc.id)
        if zone is None:
            parts += [f"{loc.emoji} <b>{loc.name}</b>", "   Calculating...", ""]
            continue
        parts += [
            f"{loc.emoji} <b>{loc.name}</b>",
            f"   🕐 {city}: <b>{to_display_timezone(zone, loc, tz_name)}</b>",
            f"   📍 Local: {zone.display}",
            f"   📊 Avg sustained: <b>{zone.avg_sustained_count} readings</b>",
            "",
        ]
    parts += [BAR,
              "<i>🚨 Alerts during these windows have special formatting</i>",
              "<i>📊 Avg sustained = avg consecutive readings at the high before drop</i>"]
    return "\n".join(parts)


# ── Live tracking ─────────────────────────────────────────────────────────────

def _tracking_title(loc: Location) -> str:
    return f"🔍 <b>Tracking {loc.emoji} {loc.name}</b>"


def tracking_placeholder(loc: Location) -> str:
    return f"{_tracking_title(loc)}\n\n⏳ Fetching initial data...\n<i>Last check: --</i>"


def tracking_error(loc: Location, check_time: str) -> str:
    return f"{_tracking_title(loc)}\n\n❌ Could not fetch data\n<i>Last check: {check_time}</i>"


def tracking_no_temperature(loc: Location, check_time: str) -> str:
    return (f"{_tracking_title(loc)}\n\n⚠️ Could not extract temperature\n"
            f"<i>Last check: {check_time}</i>")


def tracking_update(loc: Location, temp: float, local_time: str, check_time: str,
                    is_fallback: bool = False) -> str:
    stale = " ⏳ (previous day data)" if is_fallback else ""
    return (f"{_tracking_title(loc)}\n\n"
            f"🌡️ Temperature: <b>{_fmt(temp)}°C</b>{stale}\n"
            f"🕐 Local time: {local_time}\n"
            f"<i>Last check: {check_time}</i>")


def tracking_change(loc: Location, temp: float, prev: float,
                    local_time: str, check_time: str) -> str:
    arrow = "↑" if temp > prev else "↓"
    return (f"📊 <b>NEW DATA POINT</b>\n\n"
            f"{loc.emoji} <b>{loc.name}</b>\n\n"
            f"🌡️ Temperature: <b>{_fmt(temp)}°C</b> {arrow}{abs(temp - prev):.1f}°C\n"
            f"📊 Previous: {_fmt(prev)}°C\n"
            f"🕐 {local_time}\n"
            f"🕐 Checked: {check_time}")


# ── Onboarding ────────────────────────────────────────────────────────────────

def welcome(username: str, locations: tuple[Location, ...] | list[Location]) -> str:
    monitored = "\n".join(f"{l.emoji} {l.name}" for l in locations)
    return (f"🌡️ <b>Weather Volatility Alerts</b>\n\n"
            f"Welcome, {username}! You're now subscribed to temperature alerts.\n\n"
            f"📍 <b>Monitored Locations:</b>\n{monitored}\n\n"
            f"You'll receive alerts when:\n"
            f"📈 A new high temperature is recorded\n"
            f"📉 Temperature drops from the day's high\n"
            f"🔥 The high holds during the attention window\n\n"
            f"<b>Commands:</b>\n"
            f"/markets - Enable/disable market alerts\n"
            f"/status - View current temperatures\n"
            f"/timezone - Peak hours per market\n"
            f"/track [city] - Track a market (updates every 10s)\n"
            f"/untrack [city] - Stop tracking a market\n"
            f"/untrackall - Stop all tracking\n"
            f"/stop - Unsubscribe from alerts")
