"""
Tests for the weather gateway: temperature extraction order, time parsing,
future-date fallback and the analysis query.
"""
from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import aiohttp

from tests.common import LONDON, SEOUL, history_payload
from weather_gateway import (FetchError, WeatherGateway, extract_current_temp,
                             extract_daily_high, format_local_time, parse_local_hour)

FUTURE_ERROR = {"success": False,
                "error": {"message": "Validation failed",
                          "details": [{"field": "date", "message": "Date cannot be in the future"}]}}


class TestExtraction(unittest.TestCase):

    def test_latest_hourly_beats_current(self):
        payload = history_payload([18, 19, 21], current=17)
        self.assertEqual(extract_current_temp(payload), 21)

    def test_current_used_without_hourly(self):
        payload = {"success": True, "data": {"current": {"temperature": {"celsius": 17.5}}}}
        self.assertEqual(extract_current_temp(payload), 17.5)

    def test_other_scalar_fields(self):
        self.assertEqual(extract_current_temp({"temperature": {"celsius": 12}}), 12)
        self.assertEqual(extract_current_temp({"data": {"temp": 9}}), 9)

    def test_no_temperature(self):
        self.assertIsNone(extract_current_temp({"success": True, "data": {}}))
        self.assertIsNone(extract_current_temp({"data": {"hourly_data": [{"temperature_c": None}]}}))
        self.assertIsNone(extract_current_temp(None))

    def test_daily_high_prefers_explicit_max(self):
        self.assertEqual(extract_daily_high(history_payload([18, 24, 20], daily_max=25)), 25)
        self.assertEqual(extract_daily_high(history_payload([18, 24, 20])), 24)
        self.assertIsNone(extract_daily_high({"data": {}}))


class TestTimeHelpers(unittest.TestCase):

    def test_parse_local_hour(self):
        self.assertEqual(parse_local_hour("1:53 PM"), 13)
        self.assertEqual(parse_local_hour("12:20 AM"), 0)
        self.assertEqual(parse_local_hour("12:20 PM"), 12)
        self.assertEqual(parse_local_hour("09:00"), 9)
        self.assertEqual(parse_local_hour("2026-10-10T15:53:00"), 15)
        self.assertIsNone(parse_local_hour("noon"))
        self.assertIsNone(parse_local_hour(""))

    def test_format_local_time(self):
        self.assertEqual(format_local_time(datetime(2026, 7, 1, 13, 5)), "1:05 PM")
        self.assertEqual(format_local_time(datetime(2026, 7, 1, 0, 30)), "12:30 AM")


class TestFetchCurrent(unittest.IsolatedAsyncioTestCase):

    def make_gateway(self, *responses):
        gateway = WeatherGateway(MagicMock(), base_url="http://h", analysis_url="http://a")
        gateway._get_json = AsyncMock(side_effect=list(responses))
        return gateway

    async def test_today_in_location_timezone(self):
        gateway = self.make_gateway((200, history_payload([20, 21])))
        # 16:00 UTC is already 01:00 next day in Seoul
        now = datetime(2026, 7, 1, 16, 0, tzinfo=timezone.utc)
        snap = await gateway.fetch_current(SEOUL, now)
        self.assertFalse(snap.is_fallback)
        self.assertEqual(snap.date, "2026-07-02")
        self.assertEqual(gateway._get_json.await_args.args[1],
                         {"location": SEOUL.api_path, "date": "2026-07-02"})
        reading = snap.reading()
        self.assertEqual(reading.temp, 21)
        self.assertEqual(reading.local_time, "1:00 AM")

    async def test_future_date_retries_with_yesterday(self):
        gateway = self.make_gateway((400, FUTURE_ERROR), (200, history_payload([19])))
        now = datetime(2026, 7, 1, 16, 0, tzinfo=timezone.utc)
        snap = await gateway.fetch_current(SEOUL, now)
        self.assertTrue(snap.is_fallback)
        self.assertEqual(snap.date, "2026-07-01")
        self.assertEqual(gateway._get_json.await_count, 2)
        self.assertTrue(snap.reading().is_fallback)

    async def test_other_400_is_not_retried(self):
        gateway = self.make_gateway((400, {"error": {"details": [{"message": "bad location"}]}}))
        with self.assertRaises(FetchError) as ctx:
            await gateway.fetch_current(LONDON)
        self.assertEqual(ctx.exception.status, 400)
        self.assertEqual(gateway._get_json.await_count, 1)

    async def test_fallback_failure_raises(self):
        gateway = self.make_gateway((400, FUTURE_ERROR), (500, None))
        with self.assertRaises(FetchError):
            await gateway.fetch_current(SEOUL)

    async def test_malformed_payload(self):
        gateway = self.make_gateway((200, ["not", "a", "dict"]))
        with self.assertRaises(FetchError):
            await gateway.fetch_current(LONDON)

    async def test_network_error_becomes_fetch_error(self):
        session = MagicMock()
        session.get.side_effect = aiohttp.ClientConnectionError("refused")
        gateway = WeatherGateway(session)
        with self.assertRaises(FetchError):
            await gateway.fetch_current(LONDON)


class TestHistory(unittest.IsolatedAsyncioTestCase):

    async def test_analysis_days_parsed(self):
        body = {"success": True, "data": {"days": [
            {"date": "2026-07-01", "hourly_data": [{"time": "1:00 PM", "temperature_c": 22}]},
            {"date": "2026-07-02", "hourly_data": []},
            {"date": "2026-07-03", "hourly_data": [{"time": "2:00 PM", "temperature_c": 24}]},
        ]}}
        gateway = WeatherGateway(MagicMock())
        gateway._get_json = AsyncMock(return_value=(200, body))
        days = await gateway.fetch_analysis(LONDON, 7)
        self.assertEqual([d.date for d in days], ["2026-07-01", "2026-07-03"])
        self.assertEqual(days[1].points[0].temp, 24)

    async def test_analysis_unavailable_returns_none(self):
        gateway = WeatherGateway(MagicMock())
        gateway._get_json = AsyncMock(return_value=(404, {"error": "not found"}))
        self.assertIsNone(await gateway.fetch_analysis(LONDON, 7))
        gateway._get_json = AsyncMock(side_effect=FetchError("timeout"))
        self.assertIsNone(await gateway.fetch_analysis(LONDON, 7))

    async def test_historical_day_absence(self):
        gateway = WeatherGateway(MagicMock())
        gateway._get_json = AsyncMock(return_value=(200, {"success": True, "data": {}}))
        self.assertIsNone(await gateway.fetch_historical_day(LONDON, date(2026, 7, 1)))

        gateway._get_json = AsyncMock(return_value=(200, history_payload([18, 20])))
        day = await gateway.fetch_historical_day(LONDON, date(2026, 7, 1))
        self.assertEqual(day.date, "2026-07-01")
        self.assertEqual(len(day.points), 2)


if __name__ == "__main__":
    unittest.main()
