from __future__ import annotations

import random
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
import sys

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from guildbot.games import GameManager
from guildbot.games.rules import HANGMAN, NUMBER_GUESS, TICTACTOE
from guildbot.session_store import SessionStore

ALICE = 111
BOB = 222
CAROL = 333


class GameManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.sessions = SessionStore()
        self.manager = GameManager(
            sessions=self.sessions,
            clean_log=lambda *args, **kwargs: None,
            rng=random.Random(0),
            is_bot=lambda user_id: user_id == 999,
        )

    def _cmd(self, cmd: str, args: str = "", sender: int = ALICE):
        return self.manager.handle_command(cmd, args, sender, f"user{sender}")

    def test_number_guess_round_ends_session(self):
        self.manager.start_number_guess(ALICE, "alice", 1, 10, secret=7)

        low = self._cmd("/guess", "3")
        self.assertIn("Too low", low.text)
        self.assertIn("Getting warmer", low.text)

        win = self._cmd("/guess", "7")
        self.assertIn("CONGRATULATIONS", win.text)
        self.assertIn("**2** attempts", win.text)
        self.assertIsNone(self.sessions.get(ALICE, NUMBER_GUESS))

    def test_number_guess_start_twice_is_rejected(self):
        self._cmd("/numberguess", "1 50")
        reply = self._cmd("/numberguess")
        self.assertIn("already have an active number guessing game", reply.text)
        self.assertEqual(self.sessions.get(ALICE, NUMBER_GUESS).payload.high, 50)

    def test_number_guess_bad_range(self):
        reply = self._cmd("/numberguess", "10 5")
        self.assertIn("Minimum must be less than maximum", reply.text)
        self.assertIsNone(self.sessions.get(ALICE, NUMBER_GUESS))

    def test_guess_without_game(self):
        reply = self._cmd("/guess", "5")
        self.assertIn("don't have an active number guessing game", reply.text)

    def test_hint_and_end(self):
        self.manager.start_number_guess(ALICE, "alice", 1, 100, secret=42)
        self.assertIn("binary search", self._cmd("/hint").text)
        reply = self._cmd("/endgame")
        self.assertIn("The number was **42**", reply.text)
        self.assertIsNone(self.sessions.get(ALICE, NUMBER_GUESS))

    def test_tictactoe_challenge_shares_board(self):
        start = self._cmd("/tictactoe", f"<@{BOB}>")
        self.assertIn("Two Player", start.text)

        self._cmd("/move", "5", sender=ALICE)
        board = self._cmd("/board", sender=BOB)
        self.assertIn(" X ", board.text)
        self.assertIn(f"Current turn: O <@{BOB}>", board.text)

    def test_tictactoe_out_of_turn_is_rejected(self):
        self._cmd("/tictactoe", f"<@{BOB}>")
        reply = self._cmd("/move", "1", sender=BOB)
        self.assertIn(f"It's <@{ALICE}>'s turn", reply.text)
        state = self.sessions.get(ALICE, TICTACTOE).payload
        self.assertEqual(state.board, [[""] * 3 for _ in range(3)])

    def test_tictactoe_busy_opponent_registers_nobody(self):
        self._cmd("/tictactoe", sender=BOB)
        reply = self._cmd("/tictactoe", f"<@{BOB}>", sender=ALICE)
        self.assertIn(f"<@{BOB}> already has an active game", reply.text)
        self.assertIsNone(self.sessions.get(ALICE, TICTACTOE))

    def test_tictactoe_rejects_self_and_bots(self):
        self.assertIn("against yourself", self._cmd("/tictactoe", f"<@{ALICE}>").text)
        self.assertIn("against bots", self._cmd("/tictactoe", "<@999>").text)
        self.assertEqual(self.sessions.active(TICTACTOE), 0)

    def test_tictactoe_win_ends_for_both_players(self):
        self._cmd("/tictactoe", f"<@{BOB}>")
        for sender, pos in ((ALICE, 1), (BOB, 4), (ALICE, 2), (BOB, 5)):
            self._cmd("/move", str(pos), sender=sender)
        reply = self._cmd("/move", "3", sender=ALICE)
        self.assertIn(f"<@{ALICE}> wins", reply.text)
        self.assertIsNone(self.sessions.get(ALICE, TICTACTOE))
        self.assertIsNone(self.sessions.get(BOB, TICTACTOE))

    def test_tictactoe_vs_ai(self):
        self._cmd("/tictactoe")
        reply = self._cmd("/move", "1")
        self.assertIn("AI played position 5", reply.text)

    def test_endttt(self):
        self._cmd("/tictactoe", f"<@{BOB}>")
        self.assertIn("game ended", self._cmd("/endttt", sender=BOB).text)
        self.assertIsNone(self.sessions.get(ALICE, TICTACTOE))

    def test_hangman_custom_word_round(self):
        start = self._cmd("/hangman", "rust")
        self.assertIn("Hangman Game Started", start.text)
        self.assertIn("_ _ _ _", start.text)

        self.assertIn("Correct", self._cmd("/letter", "r").text)
        self.assertIn("already guessed", self._cmd("/letter", "R").text)
        self.assertIn("Wrong", self._cmd("/letter", "q").text)
        for letter in "us":
            self._cmd("/letter", letter)
        win = self._cmd("/letter", "t")
        self.assertIn("The word was **RUST**", win.text)
        self.assertIsNone(self.sessions.get(ALICE, HANGMAN))

    def test_hangman_status_and_hint(self):
        self._cmd("/hangman", "loop")
        self._cmd("/letter", "o")
        status = self._cmd("/hangmanstatus")
        self.assertIn("_ O O _", status.text)
        hint = self._cmd("/hangmanhint")
        self.assertIn("Custom Word", hint.text)
        self.assertIn("4 characters", hint.text)

    def test_started_games_are_counted(self):
        self._cmd("/numberguess")
        self._cmd("/numberguess")
        self._cmd("/hangman", "loop", sender=BOB)
        self.assertEqual(self.manager.started_counts(), {NUMBER_GUESS: 1, HANGMAN: 1})

    def test_unknown_game_command(self):
        self.assertIn("not recognized", self._cmd("/chess").text)


if __name__ == "__main__":
    unittest.main()
