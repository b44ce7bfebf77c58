"""Tests for alert and tracking message texts."""
from __future__ import annotations

import unittest
from datetime import datetime

from attention_zones import AttentionZone
from messages import format_alert, format_status, tracking_change
from tests.common import LONDON, SEOUL
from volatility import Drop, NewHigh, SustainedHigh


class TestFormatAlert(unittest.TestCase):

    def test_new_high_outside_window(self):
        text = format_alert(NewHigh(LONDON, 21.5, 20, "11:20 AM", "2026-07-10"))
        self.assertIn("📈 <b>NEW HIGH RECORDED</b>", text)
        self.assertIn("<b>21.5°C</b>", text)
        self.assertIn("Previous High: 20°C", text)
        self.assertIn("(Jul 10)", text)
        self.assertNotIn("PEAK HOURS", text)

    def test_drop_inside_window(self):
        zone = AttentionZone(13, 16, 4)
        text = format_alert(Drop(SEOUL, 28, 30, "2:50 PM", "2026-07-10"), zone, in_window=True)
        self.assertTrue(text.startswith("🚨🚨🚨 <b>PEAK HOURS ALERT</b>"))
        self.assertIn("🔴 <b>TEMPERATURE DROP</b>", text)
        self.assertIn("↓2.0°C", text)
        self.assertTrue(text.endswith("ATTENTION WINDOW: 13:00-16:00</b>"))

    def test_sustained_shows_typical_count(self):
        zone = AttentionZone(13, 16, 3)
        text = format_alert(SustainedHigh(LONDON, 22, 22, 2, "2:00 PM", "2026-07-10"),
                            zone, in_window=True)
        self.assertIn("HIGH SUSTAINED", text)
        self.assertIn("<b>2</b> (typical: 3)", text)


class TestStatusAndTracking(unittest.TestCase):

    def test_status_marks_fallback(self):
        readings = {"london": {"temp": 18, "time": "11:50 PM", "date": "2026-07-09",
                               "high": 23, "is_fallback": True}}
        text = format_status([LONDON, SEOUL], readings, now=datetime(2026, 7, 10, 0, 5))
        self.assertIn("London</b>: 18°C (High: 23°C) ⏳", text)
        self.assertIn("Seoul</b>: No data", text)
        self.assertIn("Last updated: 00:05:00", text)

    def test_change_direction(self):
        self.assertIn("↑1.5°C", tracking_change(LONDON, 21.5, 20, "1:00 PM", "13:00:10"))
        self.assertIn("↓1.0°C", tracking_change(LONDON, 19, 20, "1:00 PM", "13:00:10"))


if __name__ == "__main__":
    unittest.main()
