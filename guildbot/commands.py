"""Text command parsing and dispatch to the feature managers."""

from __future__ import annotations

import difflib
import logging
import string
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from guildbot.replies import PendingReply

logger = logging.getLogger(__name__)

# Characters to trim from command tokens
_COMMAND_PUNCT = string.punctuation.replace("/", "").replace("-", "") + "–—"

GAME_COMMANDS = (
    "/tictactoe",
    "/move",
    "/board",
    "/endttt",
    "/hangman",
    "/letter",
    "/hangmanstatus",
    "/hangmanhint",
    "/endhangman",
    "/numberguess",
    "/guess",
    "/hint",
    "/gamestatus",
    "/endgame",
)

HELP_LINES = (
    "🤖 **Commands**",
    "🎮 `/tictactoe [@user]` `/move <1-9>` `/board` `/endttt`",
    "🎪 `/hangman [word]` `/letter <a-z>` `/hangmanstatus` `/hangmanhint` `/endhangman`",
    "🎯 `/numberguess [min] [max]` `/guess <n>` `/hint` `/gamestatus` `/endgame`",
    "🚗 `/park now|info|clear|schedule ...`",
    "⏰ `/remind set|list|remove|clear ...`",
)


def _pick_best_match(candidate: str, options: Sequence[str]) -> Tuple[Optional[str], float]:
    """Return the best matching option and the similarity score."""
    best_name = None
    best_ratio = 0.0
    for opt in options:
        ratio = difflib.SequenceMatcher(None, candidate, opt).ratio()
        if ratio > best_ratio:
            best_ratio = ratio
            best_name = opt
    return best_name, best_ratio


def _min_ratio(token: str) -> float:
    length = len(token)
    if length <= 3:
        return 1.0
    if length == 4:
        return 0.92
    return 0.82


class CommandRouter:
    def __init__(
        self,
        *,
        games,
        parking,
        reminders,
        clean_log: Callable[..., None],
        prefixes: Iterable[str] = ("/", "-"),
    ) -> None:
        self.games = games
        self.parking = parking
        self.reminders = reminders
        self.clean_log = clean_log
        self.prefixes = tuple(prefixes)
        self._handlers: Dict[str, Callable[..., PendingReply]] = {cmd: self._game for cmd in GAME_COMMANDS}
        self._handlers.update({
            "/park": self._park,
            "/remind": self._remind,
            "/help": self._help,
        })

    def known_commands(self) -> List[str]:
        return sorted(self._handlers)

    def parse(self, text: str) -> Optional[Tuple[str, str]]:
        """``"-guess 42"`` -> ``("/guess", "42")``; ``None`` for ordinary chat."""
        stripped = (text or "").strip()
        prefix = next((p for p in self.prefixes if stripped.startswith(p)), None)
        if prefix is None:
            return None
        parts = stripped[len(prefix):].split(None, 1)
        if not parts:
            return None
        token = parts[0].strip(_COMMAND_PUNCT).lower()
        if not token:
            return None
        return "/" + token, (parts[1].strip() if len(parts) > 1 else "")

    def suggest(self, cmd: str) -> Optional[str]:
        bare = cmd.lstrip("/")
        names = [c.lstrip("/") for c in self._handlers]
        best, score = _pick_best_match(bare, names)
        if best and score >= _min_ratio(bare):
            return "/" + best
        return None

    def route(
        self,
        text: str,
        *,
        sender_key: int,
        sender_name: str = "",
        channel_id: int = 0,
        reply_to: Optional[int] = None,
    ) -> Optional[PendingReply]:
        parsed = self.parse(text)
        if parsed is None:
            return None
        cmd, args = parsed
        handler = self._handlers.get(cmd)
        if handler is None:
            suggestion = self.suggest(cmd)
            if suggestion is None:
                return None
            return PendingReply(f"❓ Unknown command `{cmd}`. Did you mean `{suggestion}`?", "unknown command")
        self.clean_log(f"{sender_name or sender_key}: {cmd} {args}".rstrip(), "💬")
        try:
            return handler(cmd, args, sender_key, sender_name or str(sender_key), channel_id, reply_to)
        except Exception:
            logger.exception("Command %s failed for %s", cmd, sender_key)
            return PendingReply("⚠️ Something went wrong handling that command.", "command error")

    def _game(self, cmd, args, sender_key, sender_name, channel_id, reply_to) -> PendingReply:
        return self.games.handle_command(cmd, args, sender_key, sender_name)

    def _park(self, cmd, args, sender_key, sender_name, channel_id, reply_to) -> PendingReply:
        return self.parking.handle_command(args, sender_key)

    def _remind(self, cmd, args, sender_key, sender_name, channel_id, reply_to) -> PendingReply:
        return self.reminders.handle_command(args, sender_key, channel_id, reply_to)

    def _help(self, cmd, args, sender_key, sender_name, channel_id, reply_to) -> PendingReply:
        return PendingReply("\n".join(HELP_LINES), "help")
