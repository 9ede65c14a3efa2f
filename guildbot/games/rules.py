from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Set, Tuple, Union

from unidecode import unidecode

TICTACTOE = "tictactoe"
HANGMAN = "hangman"
NUMBER_GUESS = "numberguess"


# ----------------------------
# Shared outcome + rejections
# ----------------------------

class GameStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    WON = "won"
    LOST = "lost"
    TIED = "tied"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self is not GameStatus.IN_PROGRESS


class GameError(Exception):
    """A rejected move. The session is left exactly as it was."""


class NotYourTurn(GameError):
    pass


class InvalidPosition(GameError):
    pass


class CellOccupied(GameError):
    pass


class GameFinished(GameError):
    pass


class AlreadyGuessed(GameError):
    pass


class InvalidGuess(GameError):
    pass


class InvalidSetup(GameError):
    pass


# ----------------------------
# Tic-Tac-Toe
# ----------------------------

TICTACTOE_LINES: Tuple[Tuple[Tuple[int, int], ...], ...] = (
    ((0, 0), (0, 1), (0, 2)),
    ((1, 0), (1, 1), (1, 2)),
    ((2, 0), (2, 1), (2, 2)),
    ((0, 0), (1, 0), (2, 0)),
    ((0, 1), (1, 1), (2, 1)),
    ((0, 2), (1, 2), (2, 2)),
    ((0, 0), (1, 1), (2, 2)),
    ((0, 2), (1, 1), (2, 0)),
)
TICTACTOE_CORNERS = (1, 3, 7, 9)
EMPTY = ""


def _cell(position: int) -> Tuple[int, int]:
    return (position - 1) // 3, (position - 1) % 3


@dataclass
class TicTacToeState:
    player_x: int
    player_o: Optional[int] = None  # None = AI opponent
    board: List[List[str]] = field(default_factory=lambda: [[EMPTY] * 3 for _ in range(3)])
    current: str = "X"
    finished: bool = False
    winner: Optional[str] = None

    @property
    def vs_ai(self) -> bool:
        return self.player_o is None

    def player_for(self, mark: str) -> Optional[int]:
        return self.player_x if mark == "X" else self.player_o

    def mark_for(self, player_id: int) -> Optional[str]:
        if player_id == self.player_x:
            return "X"
        if self.player_o is not None and player_id == self.player_o:
            return "O"
        return None


@dataclass(frozen=True)
class TicTacToeMove:
    player_id: int
    position: int


@dataclass(frozen=True)
class TicTacToeOutcome:
    status: GameStatus
    position: int
    winner: Optional[str] = None
    ai_position: Optional[int] = None


def tictactoe_winner(board: Sequence[Sequence[str]]) -> Optional[str]:
    for line in TICTACTOE_LINES:
        symbols = {board[r][c] for r, c in line}
        if len(symbols) == 1:
            symbol = symbols.pop()
            if symbol != EMPTY:
                return symbol
    return None


def tictactoe_full(board: Sequence[Sequence[str]]) -> bool:
    return all(cell != EMPTY for row in board for cell in row)


def _winning_position(board: List[List[str]], mark: str) -> Optional[int]:
    for position in range(1, 10):
        row, col = _cell(position)
        if board[row][col] != EMPTY:
            continue
        board[row][col] = mark
        won = tictactoe_winner(board) == mark
        board[row][col] = EMPTY
        if won:
            return position
    return None


def tictactoe_ai_move(board: List[List[str]], ai_mark: str = "O", human_mark: str = "X") -> Optional[int]:
    """Win, block, centre, corner, then the first open cell."""
    position = _winning_position(board, ai_mark)
    if position is not None:
        return position
    position = _winning_position(board, human_mark)
    if position is not None:
        return position
    if board[1][1] == EMPTY:
        return 5
    for corner in TICTACTOE_CORNERS:
        row, col = _cell(corner)
        if board[row][col] == EMPTY:
            return corner
    for position in range(1, 10):
        row, col = _cell(position)
        if board[row][col] == EMPTY:
            return position
    return None


def _tictactoe_settle(state: TicTacToeState) -> Optional[GameStatus]:
    winner = tictactoe_winner(state.board)
    if winner:
        state.finished = True
        state.winner = winner
        return GameStatus.WON
    if tictactoe_full(state.board):
        state.finished = True
        return GameStatus.TIED
    return None


def apply_tictactoe(state: TicTacToeState, move: TicTacToeMove) -> TicTacToeOutcome:
    if state.finished:
        raise GameFinished("That round is already over.")
    if state.player_for(state.current) != move.player_id:
        raise NotYourTurn("It's not your turn!")
    if not 1 <= move.position <= 9:
        raise InvalidPosition("Position must be between 1-9!")
    row, col = _cell(move.position)
    if state.board[row][col] != EMPTY:
        raise CellOccupied("That position is already taken!")

    state.board[row][col] = state.current
    status = _tictactoe_settle(state)
    if status is not None:
        return TicTacToeOutcome(status, move.position, winner=state.winner)
    state.current = "O" if state.current == "X" else "X"

    if not state.vs_ai:
        return TicTacToeOutcome(GameStatus.IN_PROGRESS, move.position)

    ai_position = tictactoe_ai_move(state.board)
    if ai_position is None:
        state.finished = True
        return TicTacToeOutcome(GameStatus.TIED, move.position)
    ai_row, ai_col = _cell(ai_position)
    state.board[ai_row][ai_col] = "O"
    status = _tictactoe_settle(state)
    if status is not None:
        return TicTacToeOutcome(status, move.position, winner=state.winner, ai_position=ai_position)
    state.current = "X"
    return TicTacToeOutcome(GameStatus.IN_PROGRESS, move.position, ai_position=ai_position)


# ----------------------------
# Hangman
# ----------------------------

HANGMAN_WORDS: Tuple[Tuple[str, str], ...] = (
    ("RUST", "Programming Language"),
    ("PYTHON", "Programming Language"),
    ("JAVASCRIPT", "Programming Language"),
    ("FUNCTION", "Programming Concept"),
    ("VARIABLE", "Programming Concept"),
    ("LOOP", "Programming Concept"),
    ("ARRAY", "Data Structure"),
    ("STRUCT", "Programming Concept"),
    ("ENUM", "Programming Concept"),
    ("VECTOR", "Data Structure"),
    ("HASHMAP", "Data Structure"),
    ("ITERATOR", "Programming Concept"),
    ("CLOSURE", "Programming Concept"),
    ("GENERATOR", "Python Concept"),
    ("DECORATOR", "Python Concept"),
    ("MEMORY", "Computer Science"),
    ("ALGORITHM", "Computer Science"),
    ("RECURSION", "Programming Concept"),
    ("INHERITANCE", "Programming Concept"),
    ("POLYMORPHISM", "Programming Concept"),
    ("ENCAPSULATION", "Programming Concept"),
    ("ABSTRACTION", "Programming Concept"),
    ("DISCORD", "Platform"),
    ("CHANNEL", "Discord Feature"),
    ("SERVER", "Technology"),
    ("MESSAGE", "Communication"),
    ("REACTION", "Discord Feature"),
    ("EMOJI", "Communication"),
    ("MODERATOR", "Role"),
    ("ADMINISTRATOR", "Role"),
    ("COMMAND", "Bot Feature"),
    ("PREFIX", "Bot Feature"),
    ("CHALLENGE", "General"),
    ("ADVENTURE", "General"),
    ("DISCOVERY", "General"),
    ("CREATIVITY", "General"),
    ("KNOWLEDGE", "General"),
    ("WISDOM", "General"),
    ("LEARNING", "General"),
    ("PRACTICE", "General"),
    ("PATIENCE", "General"),
    ("PERSEVERANCE", "General"),
)

HANGMAN_MAX_WRONG = 6
HANGMAN_MAX_CUSTOM_LENGTH = 20

HANGMAN_STAGES = (
    "  +---+\n  |   |\n      |\n      |\n      |\n      |\n=========",
    "  +---+\n  |   |\n  O   |\n      |\n      |\n      |\n=========",
    "  +---+\n  |   |\n  O   |\n  |   |\n      |\n      |\n=========",
    "  +---+\n  |   |\n  O   |\n /|   |\n      |\n      |\n=========",
    "  +---+\n  |   |\n  O   |\n /|\\  |\n      |\n      |\n=========",
    "  +---+\n  |   |\n  O   |\n /|\\  |\n /    |\n      |\n=========",
    "  +---+\n  |   |\n  O   |\n /|\\  |\n / \\  |\n      |\n=========",
)


@dataclass
class HangmanState:
    word: str
    category: str = "General"
    guessed: Set[str] = field(default_factory=set)
    wrong: List[str] = field(default_factory=list)
    max_wrong: int = HANGMAN_MAX_WRONG

    def letters(self) -> Set[str]:
        return {c for c in self.word if c.isalpha()}

    def mask(self) -> str:
        return " ".join(c if (not c.isalpha() or c in self.guessed) else "_" for c in self.word)

    def is_won(self) -> bool:
        return self.letters() <= self.guessed

    def is_lost(self) -> bool:
        return len(self.wrong) >= self.max_wrong

    def gallows(self) -> str:
        return HANGMAN_STAGES[min(len(self.wrong), len(HANGMAN_STAGES) - 1)]

    def progress(self) -> Tuple[int, int]:
        letters = [c for c in self.word if c.isalpha()]
        return sum(1 for c in letters if c in self.guessed), len(letters)


@dataclass(frozen=True)
class HangmanGuess:
    letter: str


@dataclass(frozen=True)
class HangmanOutcome:
    status: GameStatus
    letter: str
    correct: bool
    occurrences: int = 0


def normalize_custom_word(raw: str) -> str:
    """Upper-case ASCII form of a custom word, or ``InvalidSetup``."""
    word = unidecode(raw or "").strip().upper()
    if not word or len(word) > HANGMAN_MAX_CUSTOM_LENGTH:
        raise InvalidSetup(f"Custom word must be between 1-{HANGMAN_MAX_CUSTOM_LENGTH} characters!")
    if not all(c.isalpha() or c == " " for c in word) or not any(c.isalpha() for c in word):
        raise InvalidSetup("Custom word can only contain letters and spaces!")
    return word


def new_hangman(custom_word: Optional[str] = None, rng: Optional[random.Random] = None) -> HangmanState:
    if custom_word is not None:
        return HangmanState(word=normalize_custom_word(custom_word), category="Custom Word")
    word, category = (rng or random).choice(HANGMAN_WORDS)
    return HangmanState(word=word, category=category)


def apply_hangman(state: HangmanState, guess: HangmanGuess) -> HangmanOutcome:
    if state.is_won() or state.is_lost():
        raise GameFinished("That round is already over.")
    text = unidecode(guess.letter or "").strip().upper()
    if len(text) != 1 or not text.isalpha():
        raise InvalidGuess("Please guess a single letter!")
    if text in state.guessed or text in state.wrong:
        raise AlreadyGuessed(f"You already guessed '{text}'!")
    if text in state.word:
        state.guessed.add(text)
        status = GameStatus.WON if state.is_won() else GameStatus.IN_PROGRESS
        return HangmanOutcome(status, text, True, state.word.count(text))
    state.wrong.append(text)
    status = GameStatus.LOST if state.is_lost() else GameStatus.IN_PROGRESS
    return HangmanOutcome(status, text, False)


# ----------------------------
# Number guess
# ----------------------------

NUMBER_GUESS_MAX_SPAN = 10_000

HINT_TIERS = (
    (0.5, "🔥 Way off!"),
    (0.3, "🌡️ Getting warmer..."),
    (0.15, "🎯 Getting close!"),
    (0.05, "🔥 Very close!"),
)
HINT_CLOSEST = "🌟 So close!"


class GuessResult(str, Enum):
    CORRECT = "correct"
    TOO_LOW = "too_low"
    TOO_HIGH = "too_high"
    OUT_OF_RANGE = "out_of_range"


@dataclass
class NumberGuessState:
    secret: int
    low: int = 1
    high: int = 100
    attempts: int = 0

    @property
    def span(self) -> int:
        return self.high - self.low


@dataclass(frozen=True)
class NumberGuess:
    value: int


@dataclass(frozen=True)
class NumberGuessOutcome:
    status: GameStatus
    result: GuessResult
    attempts: int
    tier: Optional[int] = None
    hint: Optional[str] = None


def hint_tier(difference: int, span: int) -> int:
    """0 (coldest) .. 4 (warmest) from ``difference / span``."""
    ratio = abs(difference) / span if span else 0.0
    for tier, (threshold, _) in enumerate(HINT_TIERS):
        if ratio > threshold:
            return tier
    return len(HINT_TIERS)


def hint_text(tier: int) -> str:
    if tier < len(HINT_TIERS):
        return HINT_TIERS[tier][1]
    return HINT_CLOSEST


def new_number_guess(low: int = 1, high: int = 100, *, secret: Optional[int] = None, rng: Optional[random.Random] = None) -> NumberGuessState:
    if low >= high:
        raise InvalidSetup("Minimum must be less than maximum!")
    if high - low > NUMBER_GUESS_MAX_SPAN:
        raise InvalidSetup("Range too large! Maximum range is 10,000 numbers.")
    if secret is None:
        secret = (rng or random).randint(low, high)
    elif not low <= secret <= high:
        raise InvalidSetup("Secret must fall inside the range.")
    return NumberGuessState(secret=secret, low=low, high=high)


def apply_number_guess(state: NumberGuessState, guess: NumberGuess) -> NumberGuessOutcome:
    state.attempts += 1
    value = guess.value
    if not state.low <= value <= state.high:
        return NumberGuessOutcome(GameStatus.IN_PROGRESS, GuessResult.OUT_OF_RANGE, state.attempts)
    if value == state.secret:
        return NumberGuessOutcome(GameStatus.WON, GuessResult.CORRECT, state.attempts)
    tier = hint_tier(state.secret - value, state.span)
    result = GuessResult.TOO_LOW if value < state.secret else GuessResult.TOO_HIGH
    return NumberGuessOutcome(GameStatus.IN_PROGRESS, result, state.attempts, tier, hint_text(tier))


def optimal_attempts(state: NumberGuessState) -> int:
    # binary search over the high - low + 1 candidates
    return max(1, math.ceil(math.log2(state.span + 1)))


def performance_rating(state: NumberGuessState) -> str:
    optimal = optimal_attempts(state)
    attempts = state.attempts
    if attempts == 1:
        return "🏅 INCREDIBLE! First try! Are you psychic?"
    if attempts <= optimal:
        return "🏆 EXCELLENT! Perfect strategy!"
    if attempts <= optimal + 3:
        return "👍 GOOD! Nice guessing!"
    if attempts <= optimal + 7:
        return "😊 NOT BAD! You got there!"
    return "🤔 Keep practicing!"


# ----------------------------
# Dispatch
# ----------------------------

GameState = Union[TicTacToeState, HangmanState, NumberGuessState]
Move = Union[TicTacToeMove, HangmanGuess, NumberGuess]
Outcome = Union[TicTacToeOutcome, HangmanOutcome, NumberGuessOutcome]


def apply_move(state: GameState, move: Move) -> Outcome:
    """Advance ``state`` in place. Raises ``GameError`` before touching it on a bad move."""
    if isinstance(state, TicTacToeState) and isinstance(move, TicTacToeMove):
        return apply_tictactoe(state, move)
    if isinstance(state, HangmanState) and isinstance(move, HangmanGuess):
        return apply_hangman(state, move)
    if isinstance(state, NumberGuessState) and isinstance(move, NumberGuess):
        return apply_number_guess(state, move)
    raise TypeError(f"{type(move).__name__} does not apply to {type(state).__name__}")


def session_step(move: Move):
    """Build a ``SessionStore.mutate`` callback that drops the session once it ends."""

    def _step(state: GameState):
        outcome = apply_move(state, move)
        return (None if outcome.status.terminal else state), outcome

    return _step
