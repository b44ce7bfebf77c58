"""
SQLite persistence for per-location daily state and the subscriber registry.

One row per (location_id, date) in day_state; the running history is kept as a
JSON column. Rows older than STATE_RETENTION_DAYS are dropped at startup.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from config import DB_PATH, STATE_RETENTION_DAYS

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """A state write did not reach the database."""


@dataclass
class LocationDayState:
    high_temp: float | None = None
    last_temp: float | None = None
    has_alerted_drop: bool = False
    sustained_high_count: int = 0
    history: list[dict] = field(default_factory=list)


class StateStore:
    def __init__(self, db_path: Path | str = DB_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.setup_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def setup_database(self) -> None:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS day_state (
                location_id TEXT NOT NULL,
                date TEXT NOT NULL,
                high_temp REAL,
                last_temp REAL,
                has_alerted_drop INTEGER NOT NULL DEFAULT 0,
                sustained_high_count INTEGER NOT NULL DEFAULT 0,
                history TEXT NOT NULL DEFAULT '[]',
                updated_at TEXT,
                PRIMARY KEY (location_id, date)
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                chat_id INTEGER PRIMARY KEY,
                username TEXT,
                registered_at TEXT,
                enabled_markets TEXT NOT NULL DEFAULT '{}'
            )
        ''')
        conn.commit()
        conn.close()

    # ── Day state ─────────────────────────────────────────────────────────────

    def load_state(self, location_id: str, day: str) -> LocationDayState:
        """Stored state for the key, or a fresh empty state when no row exists.

        An unreadable row raises PersistenceError; it must never be mistaken
        for a missing one, or the next save would overwrite the day's high.
        """
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT * FROM day_state WHERE location_id = ? AND date = ?",
                    (location_id, day),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error reading state for {location_id}/{day}: {e}") from e

        if row is None:
            return LocationDayState()
        try:
            history = json.loads(row["history"] or "[]")
        except ValueError as e:
            raise PersistenceError(f"Corrupt history for {location_id}/{day}: {e}") from e
        return LocationDayState(
            high_temp=row["high_temp"],
            last_temp=row["last_temp"],
            has_alerted_drop=bool(row["has_alerted_drop"]),
            sustained_high_count=row["sustained_high_count"] or 0,
            history=history,
        )

    def save_state(self, location_id: str, day: str, state: LocationDayState) -> None:
        try:
            conn = self._connect()
            try:
                conn.execute('''
                    INSERT INTO day_state (location_id, date, high_temp, last_temp,
                                           has_alerted_drop, sustained_high_count,
                                           history, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(location_id, date) DO UPDATE SET
                        high_temp = excluded.high_temp,
                        last_temp = excluded.last_temp,
                        has_alerted_drop = excluded.has_alerted_drop,
                        sustained_high_count = excluded.sustained_high_count,
                        history = excluded.history,
                        updated_at = excluded.updated_at
                ''', (location_id, day, state.high_temp, state.last_temp,
                      int(state.has_alerted_drop), state.sustained_high_count,
                      json.dumps(state.history, ensure_ascii=False),
                      datetime.now(timezone.utc).isoformat()))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error saving state for {location_id}/{day}: {e}") from e

    def cleanup_old_states(self, today: date | None = None,
                           keep_days: int = STATE_RETENTION_DAYS) -> int:
        """Delete rows dated before today - keep_days. Returns rows removed."""
        today = today or datetime.now(timezone.utc).date()
        cutoff = (today - timedelta(days=keep_days)).isoformat()
        conn = self._connect()
        try:
            cur = conn.execute("DELETE FROM day_state WHERE date < ?", (cutoff,))
            conn.commit()
            removed = cur.rowcount
        finally:
            conn.close()
        if removed:
            logger.info("Cleaned up %d state row(s) older than %s", removed, cutoff)
        return removed

    # ── Users ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> dict:
        try:
            markets = json.loads(row["enabled_markets"] or "{}")
        except ValueError:
            markets = {}
        return {
            "chat_id": row["chat_id"],
            "username": row["username"],
            "registered_at": row["registered_at"],
            "enabled_markets": markets,
        }

    def all_users(self) -> list[dict]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM users ORDER BY registered_at, chat_id").fetchall()
        finally:
            conn.close()
        return [self._user_from_row(r) for r in rows]

    def get_user(self, chat_id: int) -> dict | None:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM users WHERE chat_id = ?", (chat_id,)).fetchone()
        finally:
            conn.close()
        return self._user_from_row(row) if row else None

    def add_user(self, chat_id: int, username: str | None = None,
                 default_markets: list[str] | None = None) -> bool:
        """Register a user with every market enabled. False if already registered."""
        markets = {m: True for m in (default_markets or [])}
        conn = self._connect()
        try:
            cur = conn.execute(
                "INSERT OR IGNORE INTO users (chat_id, username, registered_at, enabled_markets) "
                "VALUES (?, ?, ?, ?)",
                (chat_id, username, datetime.now(timezone.utc).isoformat(), json.dumps(markets)),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def remove_user(self, chat_id: int) -> bool:
        conn = self._connect()
        try:
            cur = conn.execute("DELETE FROM users WHERE chat_id = ?", (chat_id,))
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def toggle_market(self, chat_id: int, location_id: str) -> bool | None:
        """Flip one market for a user; returns the new value, None if unknown user."""
        user = self.get_user(chat_id)
        if user is None:
            return None
        markets = user["enabled_markets"]
        markets[location_id] = not markets.get(location_id, True)
        conn = self._connect()
        try:
            conn.execute("UPDATE users SET enabled_markets = ? WHERE chat_id = ?",
                         (json.dumps(markets), chat_id))
            conn.commit()
        finally:
            conn.close()
        return markets[location_id]

    @staticmethod
    def market_enabled(user: dict, location_id: str) -> bool:
        # users created before a location existed have no key for it
        return user.get("enabled_markets", {}).get(location_id, True)

    def users_for_market(self, location_id: str) -> list[dict]:
        return [u for u in self.all_users() if self.market_enabled(u, location_id)]
