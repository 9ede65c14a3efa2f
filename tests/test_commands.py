from __future__ import annotations

import random
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
import sys

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from guildbot.commands import CommandRouter
from guildbot.games import GameManager
from guildbot.replies import PendingReply
from guildbot.session_store import SessionStore


class _Recorder:
    def __init__(self, name: str) -> None:
        self.name = name
        self.calls = []

    def handle_command(self, *args):
        self.calls.append(args)
        return PendingReply(f"{self.name} ok", self.name)


class _Exploding:
    def handle_command(self, *args):
        raise RuntimeError("kaboom")


class CommandRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.parking = _Recorder("park")
        self.reminders = _Recorder("remind")
        self.router = CommandRouter(
            games=GameManager(sessions=SessionStore(), clean_log=lambda *a, **k: None, rng=random.Random(0)),
            parking=self.parking,
            reminders=self.reminders,
            clean_log=lambda *a, **k: None,
        )

    def test_parse(self):
        self.assertEqual(self.router.parse("/guess 42"), ("/guess", "42"))
        self.assertEqual(self.router.parse("  -GUESS   42 "), ("/guess", "42"))
        self.assertEqual(self.router.parse("/help!"), ("/help", ""))
        self.assertIsNone(self.router.parse("hello there"))
        self.assertIsNone(self.router.parse("/"))
        self.assertIsNone(self.router.parse(""))

    def test_suggest(self):
        self.assertEqual(self.router.suggest("/guesss"), "/guess")
        self.assertEqual(self.router.suggest("/hangmn"), "/hangman")
        self.assertIsNone(self.router.suggest("/xyz"))
        self.assertIsNone(self.router.suggest("/completelydifferent"))

    def test_plain_chat_is_ignored(self):
        self.assertIsNone(self.router.route("good morning", sender_key=1))

    def test_unknown_command_with_suggestion(self):
        reply = self.router.route("/remnd list", sender_key=1)
        self.assertIn("Did you mean `/remind`", reply.text)
        self.assertEqual(self.reminders.calls, [])

    def test_unknown_command_without_suggestion_is_ignored(self):
        self.assertIsNone(self.router.route("/zzzzzzzz", sender_key=1))

    def test_routes_to_game_manager(self):
        reply = self.router.route("/numberguess 1 10", sender_key=1, sender_name="alice")
        self.assertIn("Number Guessing Game Started", reply.text)

    def test_routes_park_and_remind_arguments(self):
        self.router.route("/park now AB12345 12345678", sender_key=5)
        self.router.route("-remind set 5m tea", sender_key=5, channel_id=77, reply_to=9)
        self.assertEqual(self.parking.calls, [("now AB12345 12345678", 5)])
        self.assertEqual(self.reminders.calls, [("set 5m tea", 5, 77, 9)])

    def test_help_lists_every_area(self):
        text = self.router.route("/help", sender_key=1).text
        for fragment in ("/tictactoe", "/hangman", "/numberguess", "/park", "/remind"):
            self.assertIn(fragment, text)

    def test_handler_errors_become_replies(self):
        self.router.parking = _Exploding()
        with self.assertLogs("guildbot.commands", level="ERROR"):
            reply = self.router.route("/park info", sender_key=1)
        self.assertIn("Something went wrong", reply.text)

    def test_custom_prefixes(self):
        router = CommandRouter(
            games=None,
            parking=self.parking,
            reminders=self.reminders,
            clean_log=lambda *a, **k: None,
            prefixes=("!",),
        )
        self.assertIsNone(router.parse("/park info"))
        router.route("!park info", sender_key=3)
        self.assertEqual(self.parking.calls, [("info", 3)])


if __name__ == "__main__":
    unittest.main()
