"""
Tests for LiveTracker: session lifecycle, per-tick edits, change messages and
stopping when the status message is gone.
"""
from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from live_tracker import LiveTracker
from telegram_sink import DeliveryError, MessageNotEditable
from tests.common import LONDON, SEOUL, local_dt, make_snapshot
from weather_gateway import FetchError

USER = 1001
KEY = (USER, LONDON.id)


class TrackerTestBase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.gateway = MagicMock()
        self.gateway.fetch_current = AsyncMock()
        self.sink = MagicMock()
        self.sink.send = AsyncMock(return_value=555)
        self.sink.edit = AsyncMock()
        # long interval: ticks are driven by hand
        self.tracker = LiveTracker(self.gateway, self.sink, interval=3600)

    async def asyncTearDown(self):
        await self.tracker.shutdown()

    def returns(self, *temps):
        when = local_dt(LONDON, 2026, 7, 10, 14)
        self.gateway.fetch_current.side_effect = [make_snapshot(LONDON, t, when) for t in temps]


class TestLifecycle(TrackerTestBase):

    async def test_start_sends_one_placeholder(self):
        self.assertTrue(await self.tracker.start_tracking(USER, LONDON))
        self.sink.send.assert_awaited_once()
        self.assertIn("Fetching initial data", self.sink.send.await_args.args[1])
        self.assertTrue(self.tracker.is_tracking(USER, LONDON.id))
        self.assertEqual(self.tracker._sessions[KEY].message_id, 555)

    async def test_second_start_is_reported_noop(self):
        await self.tracker.start_tracking(USER, LONDON)
        self.assertFalse(await self.tracker.start_tracking(USER, LONDON))
        self.assertEqual(self.sink.send.await_count, 1)
        self.assertEqual(len(self.tracker._tasks), 1)

    async def test_failed_placeholder_leaves_no_session(self):
        self.sink.send.side_effect = DeliveryError("boom")
        with self.assertRaises(DeliveryError):
            await self.tracker.start_tracking(USER, LONDON)
        self.assertFalse(self.tracker.is_tracking(USER, LONDON.id))

    async def test_stop_is_idempotent(self):
        await self.tracker.start_tracking(USER, LONDON)
        task = self.tracker._tasks[KEY]
        self.assertTrue(self.tracker.stop_tracking(USER, LONDON.id))
        self.assertFalse(self.tracker.stop_tracking(USER, LONDON.id))
        await asyncio.gather(task, return_exceptions=True)
        self.assertTrue(task.cancelled())

    async def test_stop_all_only_touches_that_user(self):
        await self.tracker.start_tracking(USER, LONDON)
        await self.tracker.start_tracking(USER, SEOUL)
        await self.tracker.start_tracking(2002, LONDON)
        self.assertEqual(self.tracker.stop_all_tracking(USER), 2)
        self.assertEqual(self.tracker.stop_all_tracking(USER), 0)
        self.assertTrue(self.tracker.is_tracking(2002, LONDON.id))
        self.assertFalse(self.tracker.is_tracking(USER, SEOUL.id))


class TestTicks(TrackerTestBase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        await self.tracker.start_tracking(USER, LONDON)
        self.sink.send.reset_mock()

    async def test_first_tick_edits_only(self):
        self.returns(21)
        await self.tracker._tick(KEY)
        self.sink.edit.assert_awaited_once()
        chat_id, message_id, text = self.sink.edit.await_args.args
        self.assertEqual((chat_id, message_id), (USER, 555))
        self.assertIn("21°C", text)
        self.sink.send.assert_not_awaited()
        self.assertEqual(self.tracker._sessions[KEY].last_temp, 21)

    async def test_unchanged_value_edits_only(self):
        self.returns(21, 21)
        await self.tracker._tick(KEY)
        await self.tracker._tick(KEY)
        self.assertEqual(self.sink.edit.await_count, 2)
        self.sink.send.assert_not_awaited()

    async def test_changed_value_edits_and_sends(self):
        self.returns(21, 22.5)
        await self.tracker._tick(KEY)
        await self.tracker._tick(KEY)
        self.assertEqual(self.sink.edit.await_count, 2)
        self.sink.send.assert_awaited_once()
        text = self.sink.send.await_args.args[1]
        self.assertIn("↑1.5°C", text)
        self.assertIn("Previous: 21°C", text)

    async def test_fetch_error_shows_error_and_keeps_tracking(self):
        self.gateway.fetch_current.side_effect = FetchError("timeout")
        await self.tracker._tick(KEY)
        self.sink.edit.assert_awaited_once()
        self.assertIn("Could not fetch", self.sink.edit.await_args.args[2])
        self.assertTrue(self.tracker.is_tracking(USER, LONDON.id))

    async def test_missing_temperature_is_reported(self):
        self.returns(None)
        await self.tracker._tick(KEY)
        self.assertIn("Could not extract temperature", self.sink.edit.await_args.args[2])
        self.assertIsNone(self.tracker._sessions[KEY].last_temp)

    async def test_deleted_message_ends_session_silently(self):
        self.returns(21, 25)
        await self.tracker._tick(KEY)
        self.sink.edit.side_effect = MessageNotEditable("message to edit not found")
        await self.tracker._tick(KEY)
        self.assertFalse(self.tracker.is_tracking(USER, LONDON.id))
        self.sink.send.assert_not_awaited()

    async def test_transient_edit_error_keeps_session(self):
        self.returns(21)
        self.sink.edit.side_effect = DeliveryError("HTTP 502", 502)
        await self.tracker._tick(KEY)
        self.assertTrue(self.tracker.is_tracking(USER, LONDON.id))


class TestTimer(TrackerTestBase):

    async def test_timer_ticks_on_interval(self):
        self.tracker.interval = 0.01
        self.returns(*([20] * 50))
        await self.tracker.start_tracking(USER, LONDON)
        await asyncio.sleep(0.1)
        self.assertGreaterEqual(self.sink.edit.await_count, 2)
        self.tracker.stop_tracking(USER, LONDON.id)
        edits = self.sink.edit.await_count
        await asyncio.sleep(0.05)
        self.assertEqual(self.sink.edit.await_count, edits)


if __name__ == "__main__":
    unittest.main()
