from __future__ import annotations

import random
import re
import threading
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Tuple

from guildbot.replies import PendingReply
from guildbot.session_store import AlreadyActive, SessionNotFound, SessionStore

from .rules import (
    HANGMAN,
    NUMBER_GUESS,
    TICTACTOE,
    GameError,
    GameStatus,
    GuessResult,
    HangmanGuess,
    HangmanState,
    NumberGuess,
    NumberGuessState,
    NotYourTurn,
    TicTacToeMove,
    TicTacToeOutcome,
    TicTacToeState,
    new_hangman,
    new_number_guess,
    optimal_attempts,
    performance_rating,
    session_step,
)


# ----------------------------
# Utility
# ----------------------------

def _format_lines(lines: List[str]) -> str:
    return "\n".join([line.rstrip() for line in lines if line is not None])


def _mention(user_id: Optional[int]) -> str:
    return f"<@{user_id}>" if user_id is not None else "AI"


_MENTION_RE = re.compile(r"^<@!?(\d+)>$")


def parse_user_ref(token: str) -> Optional[int]:
    text = (token or "").strip()
    match = _MENTION_RE.match(text)
    if match:
        return int(match.group(1))
    if text.isdigit():
        return int(text)
    return None


class GameManager:
    """Text command front-end for the turn-based games.

    Every piece of game state lives in the injected :class:`SessionStore`;
    this class only parses arguments, routes moves through
    ``SessionStore.mutate`` and renders the outcome.
    """

    def __init__(
        self,
        *,
        sessions: SessionStore,
        clean_log: Callable[..., None],
        rng: Optional[random.Random] = None,
        is_bot: Optional[Callable[[int], bool]] = None,
    ) -> None:
        self.sessions = sessions
        self.clean_log = clean_log
        self.rng = rng or random.Random()
        self.is_bot = is_bot
        self._stats_lock = threading.Lock()
        self.games_started: Counter = Counter()

    def _record_game_play(self, game_type: str) -> None:
        with self._stats_lock:
            self.games_started[game_type] += 1
        self.clean_log(f"{game_type} game started", "🎮")

    def started_counts(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self.games_started)

    def handle_command(self, cmd: str, arguments: str, sender_key: int, sender_name: str) -> PendingReply:
        cmd = cmd.lower()
        args = (arguments or "").strip()
        if cmd == "/tictactoe":
            return self.start_tictactoe(sender_key, args or None)
        if cmd == "/move":
            return self.tictactoe_move(sender_key, args)
        if cmd == "/board":
            return self.tictactoe_board(sender_key)
        if cmd == "/endttt":
            return self.end_tictactoe(sender_key)
        if cmd == "/hangman":
            return self.start_hangman(sender_key, sender_name, args or None)
        if cmd == "/letter":
            return self.hangman_letter(sender_key, args)
        if cmd == "/hangmanstatus":
            return self.hangman_status(sender_key)
        if cmd == "/hangmanhint":
            return self.hangman_hint(sender_key)
        if cmd == "/endhangman":
            return self.end_hangman(sender_key)
        if cmd == "/numberguess":
            return self.start_number_guess_command(sender_key, sender_name, args)
        if cmd == "/guess":
            return self.number_guess(sender_key, args)
        if cmd == "/hint":
            return self.number_hint(sender_key)
        if cmd == "/gamestatus":
            return self.number_status(sender_key)
        if cmd == "/endgame":
            return self.end_number_guess(sender_key)
        return PendingReply("Game not recognized.", "games")

    # ------------------------
    # Tic-Tac-Toe
    # ------------------------
    def start_tictactoe(self, sender_key: int, opponent: Optional[str] = None) -> PendingReply:
        opponent_id: Optional[int] = None
        if opponent:
            opponent_id = parse_user_ref(opponent)
            if opponent_id is None:
                return PendingReply("❌ Mention the player you want to challenge, or leave it empty to play vs AI.", "tictactoe start")
            if opponent_id == sender_key:
                return PendingReply("❌ You can't play against yourself! Try `/tictactoe` without mentioning anyone to play vs AI.", "tictactoe start")
            if self.is_bot and self.is_bot(opponent_id):
                return PendingReply("❌ You can't play against bots! Try `/tictactoe` without mentioning anyone to play vs AI.", "tictactoe start")

        state = TicTacToeState(player_x=sender_key, player_o=opponent_id)
        partners = (opponent_id,) if opponent_id is not None else ()
        try:
            self.sessions.start(sender_key, TICTACTOE, state, partners=partners)
        except AlreadyActive as exc:
            if exc.owner_key == sender_key:
                return PendingReply("❌ You already have an active Tic-Tac-Toe game! Use `/move <position>` to play or `/endttt` to quit.", "tictactoe start")
            return PendingReply(f"❌ {_mention(exc.owner_key)} already has an active game!", "tictactoe start")
        self._record_game_play(TICTACTOE)

        game_type = "🤖 **vs AI**" if state.vs_ai else "👥 **Two Player**"
        lines = [
            f"⭕ **Tic-Tac-Toe Game Started!** {game_type}",
            f"**Player X:** {_mention(sender_key)}",
            f"**Player O:** {_mention(opponent_id)}",
            "",
            f"{_mention(sender_key)} goes first!",
            "Use `/move <position>` where position is 1-9:",
            self.render_board(state),
            f"Current turn: X {_mention(sender_key)}",
        ]
        return PendingReply(_format_lines(lines), "tictactoe start")

    def _play(self, sender_key: int, kind: str, move) -> Tuple[Any, Any]:
        """Run one move through the store; returns ``(outcome, state_after)``."""
        seen: List[Any] = []

        def _step(state):
            new_state, outcome = session_step(move)(state)
            seen.append(state)
            return new_state, outcome

        outcome = self.sessions.mutate(sender_key, kind, _step)
        return outcome, seen[-1]

    def tictactoe_move(self, sender_key: int, args: str) -> PendingReply:
        try:
            position = int(args.split()[0])
        except (IndexError, ValueError):
            return PendingReply("❌ Use `/move <position>` with a number from 1-9.", "tictactoe move")
        try:
            outcome, state = self._play(sender_key, TICTACTOE, TicTacToeMove(sender_key, position))
        except SessionNotFound:
            return PendingReply("❌ You don't have an active Tic-Tac-Toe game! Start one with `/tictactoe`", "tictactoe move")
        except NotYourTurn:
            view = self.sessions.get(sender_key, TICTACTOE)
            waiting_on = view.payload.player_for(view.payload.current) if view else None
            if waiting_on is None:
                return PendingReply("❌ It's the AI's turn! Wait for the AI to move.", "tictactoe move")
            return PendingReply(f"❌ It's {_mention(waiting_on)}'s turn!", "tictactoe move")
        except GameError as exc:
            return PendingReply(f"❌ {exc}", "tictactoe move")
        return PendingReply(_format_lines(self._tictactoe_outcome_lines(outcome, state)), "tictactoe move")

    def _tictactoe_outcome_lines(self, outcome: TicTacToeOutcome, state: TicTacToeState) -> List[str]:
        lines = []
        if outcome.ai_position is not None:
            lines.append(f"🤖 AI played position {outcome.ai_position}.")
        lines.append(self.render_board(state))
        if outcome.status is GameStatus.IN_PROGRESS:
            lines.append(f"Current turn: {state.current} {_mention(state.player_for(state.current))}")
            return lines
        if outcome.status is GameStatus.WON:
            winner_id = state.player_for(outcome.winner or "")
            if winner_id is None:
                lines.append("🤖 **AI wins!** Better luck next time!")
            else:
                lines.append(f"🎉 **{_mention(winner_id)} wins!**")
        else:
            lines.append("🤝 **It's a tie!** Good game!")
        lines.append("Start a new round with `/tictactoe`.")
        return lines

    def tictactoe_board(self, sender_key: int) -> PendingReply:
        view = self.sessions.get(sender_key, TICTACTOE)
        if view is None:
            return PendingReply("❌ You don't have an active Tic-Tac-Toe game! Start one with `/tictactoe`", "tictactoe board")
        state: TicTacToeState = view.payload
        lines = [
            "⭕ **Current Tic-Tac-Toe Game**",
            self.render_board(state),
            f"Current turn: {state.current} {_mention(state.player_for(state.current))}",
        ]
        return PendingReply(_format_lines(lines), "tictactoe board")

    def end_tictactoe(self, sender_key: int) -> PendingReply:
        if self.sessions.end(sender_key, TICTACTOE) is None:
            return PendingReply("❌ You don't have an active Tic-Tac-Toe game!", "tictactoe end")
        return PendingReply("🏳️ **Tic-Tac-Toe game ended!** Thanks for playing! 👋", "tictactoe end")

    @staticmethod
    def render_board(state: TicTacToeState) -> str:
        rows = []
        for row_idx, row in enumerate(state.board):
            cells = [f" {cell or row_idx * 3 + col_idx + 1} " for col_idx, cell in enumerate(row)]
            rows.append("|".join(cells))
        return "```\n" + "\n---|---|---\n".join(rows) + "\n```"

    # ------------------------
    # Hangman
    # ------------------------
    def start_hangman(self, sender_key: int, sender_name: str, custom_word: Optional[str] = None) -> PendingReply:
        if self.sessions.get(sender_key, HANGMAN) is not None:
            return PendingReply("❌ You already have an active Hangman game! Use `/letter <letter>` to guess or `/endhangman` to quit.", "hangman start")
        try:
            state = new_hangman(custom_word, rng=self.rng)
        except GameError as exc:
            return PendingReply(f"❌ {exc}", "hangman start")
        try:
            self.sessions.start(sender_key, HANGMAN, state)
        except AlreadyActive:
            return PendingReply("❌ You already have an active Hangman game! Use `/letter <letter>` to guess or `/endhangman` to quit.", "hangman start")
        self._record_game_play(HANGMAN)
        lines = [
            "🎪 **Hangman Game Started!**",
            "",
            f"```\n{state.gallows()}\n```",
            f"**Word:** {state.mask()}",
            "",
            self._hangman_progress(state),
            "",
            "Use `/letter <letter>` to guess a letter!",
            "Use `/hangmanstatus` to see your progress",
            "Use `/endhangman` to quit",
            "",
            f"Good luck, {sender_name}! 🍀",
        ]
        return PendingReply(_format_lines(lines), "hangman start")

    def hangman_letter(self, sender_key: int, args: str) -> PendingReply:
        try:
            outcome, state = self._play(sender_key, HANGMAN, HangmanGuess(args))
        except SessionNotFound:
            return PendingReply("❌ You don't have an active Hangman game! Start one with `/hangman`", "hangman letter")
        except GameError as exc:
            return PendingReply(f"❌ {exc}", "hangman letter")

        if outcome.status is GameStatus.WON:
            return PendingReply(
                _format_lines([f"🎉 **Congratulations!** The word was **{state.word}**.", "You saved the hangman! Play again with `/hangman`."]),
                "hangman letter",
            )
        if outcome.status is GameStatus.LOST:
            return PendingReply(
                _format_lines([f"```\n{state.gallows()}\n```", f"💀 **Game Over!** The word was **{state.word}**.", "Try again with `/hangman`."]),
                "hangman letter",
            )
        if outcome.correct:
            plural = "time" if outcome.occurrences == 1 else "times"
            header = f"✅ **Correct!** '{outcome.letter}' appears {outcome.occurrences} {plural}!"
        else:
            header = f"❌ **Wrong!** '{outcome.letter}' is not in the word."
        lines = [
            header,
            f"```\n{state.gallows()}\n```",
            f"**Word:** {state.mask()}",
            self._hangman_progress(state),
        ]
        return PendingReply(_format_lines(lines), "hangman letter")

    def hangman_status(self, sender_key: int) -> PendingReply:
        view = self.sessions.get(sender_key, HANGMAN)
        if view is None:
            return PendingReply("❌ You don't have an active Hangman game! Start one with `/hangman`", "hangman status")
        state: HangmanState = view.payload
        lines = [
            "🎪 **Your Hangman Game**",
            f"```\n{state.gallows()}\n```",
            f"**Word:** {state.mask()}",
            self._hangman_progress(state),
        ]
        if state.guessed:
            lines.append(f"✅ **Correct:** {', '.join(sorted(state.guessed))}")
        if state.wrong:
            lines.append(f"❌ **Wrong:** {', '.join(state.wrong)}")
        lines.append("Use `/letter <letter>` to guess!")
        return PendingReply(_format_lines(lines), "hangman status")

    def hangman_hint(self, sender_key: int) -> PendingReply:
        view = self.sessions.get(sender_key, HANGMAN)
        if view is None:
            return PendingReply("❌ You don't have an active Hangman game! Start one with `/hangman`", "hangman hint")
        state: HangmanState = view.payload
        unique = state.letters()
        vowels = {c for c in unique if c in "AEIOU"}
        lines = [
            "💡 **Hint for your Hangman game:**",
            f"🎯 **Category:** {state.category}",
            f"📏 **Length:** {len(state.word)} characters",
            f"🔤 **Unique letters:** {len(unique)}",
            f"📢 **Vowels:** {len(vowels)} different vowel(s)",
            f"📊 **Progress:** You've found {len(state.guessed)} out of {len(unique)} letters",
        ]
        return PendingReply(_format_lines(lines), "hangman hint")

    def end_hangman(self, sender_key: int) -> PendingReply:
        state = self.sessions.end(sender_key, HANGMAN)
        if state is None:
            return PendingReply("❌ You don't have an active Hangman game!", "hangman end")
        return PendingReply(
            _format_lines(["🏳️ **Hangman game ended!**", f"The word was: **{state.word}**", "Thanks for playing! 👋"]),
            "hangman end",
        )

    def _hangman_progress(self, state: HangmanState) -> str:
        found, total = state.progress()
        return (
            f"📊 **Progress:** {found}/{total} letters | **Wrong:** {len(state.wrong)}/{state.max_wrong}"
            f" | **Category:** {state.category}"
        )

    # ------------------------
    # Number guess
    # ------------------------
    def start_number_guess_command(self, sender_key: int, sender_name: str, args: str) -> PendingReply:
        parts = args.split()
        try:
            low = int(parts[0]) if len(parts) > 0 else 1
            high = int(parts[1]) if len(parts) > 1 else 100
        except ValueError:
            return PendingReply("❌ Use `/numberguess [min] [max]` with whole numbers.", "numberguess start")
        return self.start_number_guess(sender_key, sender_name, low, high)

    def start_number_guess(
        self,
        sender_key: int,
        sender_name: str,
        low: int = 1,
        high: int = 100,
        *,
        secret: Optional[int] = None,
    ) -> PendingReply:
        try:
            state = new_number_guess(low, high, secret=secret, rng=self.rng)
        except GameError as exc:
            return PendingReply(f"❌ {exc}", "numberguess start")
        try:
            self.sessions.start(sender_key, NUMBER_GUESS, state)
        except AlreadyActive:
            return PendingReply(
                "❌ You already have an active number guessing game! Use `/guess <number>` to make a guess or `/endgame` to quit.",
                "numberguess start",
            )
        self._record_game_play(NUMBER_GUESS)
        lines = [
            "🎯 **Number Guessing Game Started!**",
            f"I'm thinking of a number between **{low}** and **{high}**",
            "Use `/guess <number>` to make your guess!",
            "Use `/hint` for a hint or `/endgame` to quit",
            "",
            f"Good luck, {sender_name}! 🍀",
        ]
        return PendingReply(_format_lines(lines), "numberguess start")

    def number_guess(self, sender_key: int, args: str) -> PendingReply:
        try:
            value = int(args.split()[0])
        except (IndexError, ValueError):
            return PendingReply("❌ Use `/guess <number>`.", "numberguess guess")
        try:
            outcome, state = self._play(sender_key, NUMBER_GUESS, NumberGuess(value))
        except SessionNotFound:
            return PendingReply("❌ You don't have an active number guessing game! Start one with `/numberguess`", "numberguess guess")

        if outcome.result is GuessResult.CORRECT:
            lines = [
                "🎉 **CONGRATULATIONS!** 🎉",
                f"You guessed it! The number was **{state.secret}**",
                f"🏆 You did it in **{outcome.attempts}** attempts!",
                performance_rating(state),
                "",
                "Want to play again? Use `/numberguess`!",
            ]
        elif outcome.result is GuessResult.TOO_LOW:
            lines = ["📈 **Too low!** Try a higher number.", outcome.hint, f"📊 Attempts: **{outcome.attempts}**"]
        elif outcome.result is GuessResult.TOO_HIGH:
            lines = ["📉 **Too high!** Try a lower number.", outcome.hint, f"📊 Attempts: **{outcome.attempts}**"]
        else:
            lines = [f"❌ **Out of range!** Please guess between **{state.low}** and **{state.high}**"]
        return PendingReply(_format_lines(lines), "numberguess guess")

    def number_hint(self, sender_key: int) -> PendingReply:
        view = self.sessions.get(sender_key, NUMBER_GUESS)
        if view is None:
            return PendingReply("❌ You don't have an active number guessing game! Start one with `/numberguess`", "numberguess hint")
        state: NumberGuessState = view.payload
        lines = [
            "💡 **Hint for your guessing game:**",
            f"🎯 Range: **{state.low}** to **{state.high}** ({state.span + 1} numbers total)",
            f"📊 Attempts so far: **{state.attempts}**",
            f"🧠 Optimal strategy would take ~**{optimal_attempts(state)}** attempts",
            "💭 Try using binary search: start in the middle!",
        ]
        return PendingReply(_format_lines(lines), "numberguess hint")

    def number_status(self, sender_key: int) -> PendingReply:
        view = self.sessions.get(sender_key, NUMBER_GUESS)
        if view is None:
            return PendingReply("❌ You don't have an active number guessing game! Start one with `/numberguess`", "numberguess status")
        state: NumberGuessState = view.payload
        lines = [
            "🎮 **Your current game:**",
            f"🎯 Range: **{state.low}** to **{state.high}**",
            f"📊 Attempts: **{state.attempts}**",
            "🕒 Use `/guess <number>` to continue!",
        ]
        return PendingReply(_format_lines(lines), "numberguess status")

    def end_number_guess(self, sender_key: int) -> PendingReply:
        state = self.sessions.end(sender_key, NUMBER_GUESS)
        if state is None:
            return PendingReply("❌ You don't have an active number guessing game!", "numberguess end")
        lines = [
            "🏳️ **Game ended!**",
            f"The number was **{state.secret}**",
            f"You made **{state.attempts}** attempts.",
            "Thanks for playing! 👋",
        ]
        return PendingReply(_format_lines(lines), "numberguess end")
