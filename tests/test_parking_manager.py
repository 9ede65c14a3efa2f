from __future__ import annotations

import os
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parents[1]
import sys

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import requests

from guildbot.config import ParkingConfig
from guildbot.parking_client import ExecutorError, MobileParkingClient, build_parking_payload
from guildbot.parking_manager import (
    ParkingManager,
    RateLimiter,
    is_valid_time,
    parse_time_of_day,
    validate_phone_number,
    validate_plate,
)
from guildbot.schedule_store import ParkingProfile, ScheduleData, ScheduleStore


class _Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeExecutor:
    def __init__(self) -> None:
        self.profiles = []
        self.error = None

    def execute(self, profile: ParkingProfile) -> None:
        self.profiles.append(profile)
        if self.error:
            raise self.error


class ValidationTests(unittest.TestCase):
    def test_phone_numbers(self):
        self.assertTrue(validate_phone_number("12345678"))
        for bad in ("1234567", "123456789", "1234567a", "+4512345678", "１２３４５６７８"):
            self.assertFalse(validate_phone_number(bad), bad)

    def test_plates(self):
        self.assertTrue(validate_plate("AB"))
        self.assertTrue(validate_plate(" AB12345 "))
        self.assertFalse(validate_plate("A"))
        self.assertFalse(validate_plate("ABCDEFGHIJK"))

    def test_times(self):
        self.assertEqual(parse_time_of_day(["8", "30"]), (8, 30))
        self.assertEqual(parse_time_of_day(["08:30"]), (8, 30))
        self.assertIsNone(parse_time_of_day(["eight"]))
        self.assertIsNone(parse_time_of_day(["8", "x"]))
        self.assertTrue(is_valid_time(23, 59))
        self.assertFalse(is_valid_time(24, 0))
        self.assertFalse(is_valid_time(8, 60))


class RateLimiterTests(unittest.TestCase):
    def test_rolling_window(self):
        clock = _Clock()
        limiter = RateLimiter(limit=3, window=3600, clock=clock)
        self.assertTrue(all(limiter.check(1) for _ in range(3)))
        self.assertFalse(limiter.check(1))
        self.assertTrue(limiter.check(2))
        self.assertEqual(limiter.remaining(1), 0)

        clock.now = 3600
        self.assertEqual(limiter.remaining(1), 3)
        self.assertTrue(limiter.check(1))


class ParkingManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory(prefix="parking_manager_test_")
        self.addCleanup(self.tmpdir.cleanup)
        self.store = ScheduleStore(os.path.join(self.tmpdir.name, "parking_data.json"), encrypt=False)
        self.store.load()
        self.executor = FakeExecutor()
        self.manager = ParkingManager(
            store=self.store,
            executor=self.executor,
            clean_log=lambda *args, **kwargs: None,
            rate_limiter=RateLimiter(limit=3, window=3600, clock=_Clock()),
            area_key="ADK-4688",
        )

    def test_park_now_saves_profile(self):
        reply = self.manager.handle_command("now ab12345 12345678", 7)

        self.assertTrue(reply.ephemeral)
        self.assertIn("Parking confirmed", reply.text)
        self.assertIn("+45 12345678", reply.text)
        self.assertIn("ADK-4688", reply.text)
        self.assertEqual(self.executor.profiles[0].plate, "AB12345")
        self.assertEqual(self.store.profile(7), ParkingProfile("AB12345", "12345678"))

    def test_park_now_reuses_and_overrides_stored_profile(self):
        self.manager.park_now(7, ["AB12345", "12345678"])
        self.manager.park_now(7, [])
        self.manager.park_now(7, ["87654321"])
        self.assertEqual([p.phone_number for p in self.executor.profiles], ["12345678", "12345678", "87654321"])
        self.assertEqual(self.store.profile(7).plate, "AB12345")

    def test_park_now_requires_information(self):
        self.assertIn("Information required", self.manager.park_now(7, []).text)
        self.assertIn("Phone number required", self.manager.park_now(7, ["AB12345"]).text)
        self.assertIn("Invalid phone number", self.manager.park_now(7, ["AB12345", "123"]).text)
        self.assertEqual(self.executor.profiles, [])

    def test_park_now_rate_limited(self):
        for _ in range(3):
            self.manager.park_now(7, ["AB12345", "12345678"])
        reply = self.manager.park_now(7, ["AB12345", "12345678"])
        self.assertIn("Rate limit exceeded", reply.text)
        self.assertEqual(len(self.executor.profiles), 3)

    def test_park_now_reports_executor_failure(self):
        self.executor.error = ExecutorError("API request failed: 503 - down", 503)
        reply = self.manager.park_now(7, ["AB12345", "12345678"])
        self.assertIn("Parking request failed", reply.text)
        self.assertIn("503", reply.text)

    def test_info_and_clear(self):
        self.assertIn("No parking information found", self.manager.park_info(7).text)
        self.manager.park_now(7, ["AB12345", "12345678"])
        self.manager.schedule_set(7, ["8", "15"])

        info = self.manager.park_info(7).text
        self.assertIn("AB12345", info)
        self.assertIn("08:15 (Mon-Fri)", info)

        self.assertIn("Parking information cleared", self.manager.park_clear(7).text)
        self.assertIsNone(self.store.schedule(7))
        self.assertIn("No parking information found to clear", self.manager.park_clear(7).text)

    def test_schedule_requires_profile_and_valid_time(self):
        self.assertIn("Parking information required", self.manager.handle_command("schedule set 8 0", 7).text)
        self.manager.park_now(7, ["AB12345", "12345678"])
        self.assertIn("Invalid time", self.manager.handle_command("schedule set 25 0", 7).text)
        self.assertIsNone(self.store.schedule(7))

    def test_schedule_set_keeps_last_fired(self):
        fired = datetime(2024, 3, 6, 7, 0, tzinfo=timezone.utc)

        def _seed(data: ScheduleData) -> None:
            data.profiles[7] = ParkingProfile("AB12345", "12345678")

        self.store.update(_seed)
        self.manager.schedule_set(7, ["08:00"])
        self.store.update(lambda data: setattr(data.schedules[7], "last_fired", fired))

        reply = self.manager.schedule_set(7, ["9", "30"])

        self.assertIn("Automatic parking scheduled", reply.text)
        entry = self.store.schedule(7)
        self.assertEqual((entry.hour, entry.minute), (9, 30))
        self.assertEqual(entry.last_fired, fired)

    def test_schedule_status_and_disable(self):
        self.assertIn("No parking schedule set", self.manager.handle_command("schedule status", 7).text)
        self.assertIn("No parking schedule found", self.manager.handle_command("schedule disable", 7).text)

        self.manager.park_now(7, ["AB12345", "12345678"])
        self.manager.handle_command("schedule set 7 45", 7)
        self.assertIn("07:45", self.manager.handle_command("schedule status", 7).text)
        self.assertIn("Last parked:** Never", self.manager.handle_command("schedule", 7).text)

        self.assertIn("Automatic parking disabled", self.manager.handle_command("schedule disable", 7).text)
        self.assertIn("already disabled", self.manager.handle_command("schedule disable", 7).text)
        self.assertIn("Disabled", self.manager.handle_command("schedule status", 7).text)

    def test_help(self):
        self.assertIn("/park now", self.manager.handle_command("", 7).text)


class ParkingClientTests(unittest.TestCase):
    def test_payload_shape(self):
        payload = build_parking_payload(ParkingProfile("AB12345", "12345678"), ParkingConfig())
        self.assertEqual(payload["PhoneNumber"], "4512345678")
        self.assertEqual(payload["VehicleRegistration"], "AB12345")
        self.assertEqual(payload["VehicleRegistrationCountry"], "DK")
        self.assertEqual(payload["Duration"], 600)
        self.assertEqual(payload["parkingAreas"], [{"ParkingAreaId": 1956, "ParkingAreaKey": "ADK-4688"}])
        self.assertEqual(payload["Lang"], "da")

    def test_non_2xx_raises(self):
        session = mock.Mock()
        session.post.return_value = mock.Mock(status_code=500, text="boom")
        client = MobileParkingClient(session=session)

        with self.assertRaises(ExecutorError) as ctx:
            client.execute(ParkingProfile("AB12345", "12345678"))

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertIn("boom", str(ctx.exception))

    def test_transport_error_raises(self):
        session = mock.Mock()
        session.post.side_effect = requests.ConnectionError("no route")
        with self.assertRaises(ExecutorError):
            MobileParkingClient(session=session).execute(ParkingProfile("AB12345", "12345678"))

    def test_success_posts_payload(self):
        session = mock.Mock()
        session.post.return_value = mock.Mock(status_code=200, text="{}")
        config = ParkingConfig(request_timeout=5.0)
        MobileParkingClient(config, session=session).execute(ParkingProfile("AB12345", "12345678"))
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], config.api_url)
        self.assertEqual(kwargs["timeout"], 5.0)
        self.assertEqual(kwargs["json"]["VehicleRegistration"], "AB12345")


if __name__ == "__main__":
    unittest.main()
