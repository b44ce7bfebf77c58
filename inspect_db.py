#!/usr/bin/env python3
"""
Inspect the alert state database and print a summary.

Usage:
    python inspect_db.py [path/to/state.db]
"""
import os
import sqlite3
import sys

from config import DB_PATH


def summarize(db_path) -> list[str]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    cursor = conn.cursor()
    lines = []

    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;")
    tables = [t[0] for t in cursor.fetchall()]
    lines.append("Tables in database:")
    for t in tables:
        lines.append(f"  - {t}")

    if "day_state" in tables:
        cursor.execute("SELECT COUNT(*) FROM day_state")
        lines.append(f"\nState rows: {cursor.fetchone()[0]}")
        cursor.execute("""
            SELECT location_id, date, high_temp, last_temp, has_alerted_drop, sustained_high_count
            FROM day_state ORDER BY date DESC, location_id
        """)
        for row in cursor.fetchall():
            drop = "drop alerted" if row["has_alerted_drop"] else "watching"
            lines.append(f"  {row['date']}  {row['location_id']:<8} high={row['high_temp']}°C "
                         f"last={row['last_temp']}°C sustained={row['sustained_high_count']} ({drop})")

    if "users" in tables:
        cursor.execute("SELECT COUNT(*) FROM users")
        lines.append(f"\nRegistered users: {cursor.fetchone()[0]}")

    conn.close()
    return lines


def main():
    db_path = sys.argv[1] if len(sys.argv) > 1 else DB_PATH
    if not os.path.exists(db_path):
        print("Database file not found.")
        return
    print("\n".join(summarize(db_path)))


if __name__ == "__main__":
    main()
