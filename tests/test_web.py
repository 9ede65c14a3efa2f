from __future__ import annotations

import os
import random
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
import sys

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from guildbot.commands import CommandRouter
from guildbot.games import GameManager
from guildbot.schedule_store import ReminderStore, ScheduleEntry, ScheduleStore
from guildbot.session_store import SessionStore
from guildbot.web import create_app


class _Worker:
    def __init__(self, running: bool) -> None:
        self.running = running


class WebAppTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory(prefix="web_test_")
        self.addCleanup(self.tmpdir.cleanup)
        self.sessions = SessionStore()
        self.schedule_store = ScheduleStore(os.path.join(self.tmpdir.name, "parking_data.json"), encrypt=False)
        self.reminder_store = ReminderStore(os.path.join(self.tmpdir.name, "reminders.json"))
        self.reminder_store.load()
        self.games = GameManager(sessions=self.sessions, clean_log=lambda *a, **k: None, rng=random.Random(0))
        router = CommandRouter(
            games=self.games,
            parking=None,
            reminders=None,
            clean_log=lambda *a, **k: None,
        )
        app = create_app(
            router=router,
            sessions=self.sessions,
            games=self.games,
            schedule_store=self.schedule_store,
            reminder_store=self.reminder_store,
            runners={"schedule": _Worker(True), "reminders": _Worker(False)},
        )
        app.testing = True
        self.client = app.test_client()

    def test_health(self):
        body = self.client.get("/health").get_json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["status"], "running")

    def test_command_runs_through_router(self):
        resp = self.client.post("/command", json={"text": "/hangman rust", "sender_key": 7, "sender_name": "alice"})
        body = resp.get_json()
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(body["handled"])
        self.assertIn("Hangman Game Started", body["reply"]["text"])
        self.assertFalse(body["reply"]["ephemeral"])

    def test_plain_text_is_not_handled(self):
        body = self.client.post("/command", json={"text": "hello", "sender_key": 7}).get_json()
        self.assertEqual(body, {"handled": False})

    def test_command_validation(self):
        self.assertEqual(self.client.post("/command", json={"text": "/help"}).status_code, 400)
        self.assertEqual(self.client.post("/command", json={"text": "/help", "sender_key": "x"}).status_code, 400)
        self.assertEqual(self.client.post("/command", json={"text": "  ", "sender_key": 1}).status_code, 400)
        self.assertEqual(self.client.post("/command", data="not json").status_code, 400)

    def test_status_counts(self):
        self.client.post("/command", json={"text": "/numberguess", "sender_key": 7})
        self.schedule_store.update(lambda data: data.schedules.__setitem__(7, ScheduleEntry(hour=8, minute=0)))

        body = self.client.get("/status").get_json()

        self.assertEqual(body["sessions"]["total"], 1)
        self.assertEqual(body["sessions"]["numberguess"], 1)
        self.assertEqual(body["games_started"], {"numberguess": 1})
        self.assertEqual(body["workers"], {"schedule": True, "reminders": False})
        self.assertEqual(body["parking"]["enabled"], 1)
        self.assertEqual(body["reminders"], {"pending": 0})


if __name__ == "__main__":
    unittest.main()
