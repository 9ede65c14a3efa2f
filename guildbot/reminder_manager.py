from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from guildbot.replies import PendingReply

logger = logging.getLogger(__name__)

LIST_LIMIT = 10
DEFAULT_REPLY_MESSAGE = "⏰ Reminder"
MAX_DURATION = timedelta(days=365)

_DURATION_RE = re.compile(r"^(\d+)\s*([a-z]+)$")

_UNIT_SECONDS = {
    "s": 1, "sec": 1, "second": 1, "seconds": 1,
    "m": 60, "min": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hr": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
    "w": 604800, "week": 604800, "weeks": 604800,
}


def parse_duration(token: str) -> Optional[timedelta]:
    """``30s``, ``5m``, ``2 hours``, ``1w`` -> timedelta; ``None`` when unparseable or longer than a year."""
    text = (token or "").strip().lower()
    m = _DURATION_RE.match(text)
    if not m:
        return None
    seconds = _UNIT_SECONDS.get(m.group(2))
    if seconds is None:
        return None
    total = int(m.group(1)) * seconds
    if total <= 0 or total > MAX_DURATION.total_seconds():
        return None
    return timedelta(seconds=total)


def format_duration(delta: timedelta) -> str:
    total = int(delta.total_seconds())
    if total < 60:
        return f"{total}s"
    if total < 3600:
        return f"{total // 60}m"
    if total < 86400:
        return f"{total // 3600}h"
    return f"{total // 86400}d"


def _ts(dt: datetime, style: str) -> str:
    return f"<t:{int(dt.timestamp())}:{style}>"


class ReminderManager:
    """``/remind set|list|remove|clear`` on top of :class:`ReminderStore`."""

    def __init__(self, *, store, clean_log: Callable[..., None], clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self.clean_log = clean_log
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def handle_command(
        self,
        arguments: str,
        sender_key: int,
        channel_id: int,
        reply_to: Optional[int] = None,
    ) -> PendingReply:
        parts = (arguments or "").strip().split(None, 1)
        sub = parts[0].lower() if parts else ""
        rest = parts[1] if len(parts) > 1 else ""
        if sub == "set":
            return self.set_reminder(sender_key, channel_id, rest, reply_to)
        if sub == "list":
            return self.list_reminders(sender_key)
        if sub == "remove":
            return self.remove_reminder(sender_key, rest)
        if sub == "clear":
            return self.clear_reminders(sender_key)
        return PendingReply(
            "⏰ **Reminders**\n"
            "`/remind set <time> <message>` (e.g. 5m, 1h, 2d, 1w)\n"
            "`/remind list`\n"
            "`/remind remove <id>`\n"
            "`/remind clear`",
            "remind help",
        )

    def set_reminder(self, sender_key: int, channel_id: int, args: str, reply_to: Optional[int] = None) -> PendingReply:
        tokens = (args or "").strip().split(None, 1)
        if not tokens:
            return PendingReply("❌ Use `/remind set <time> <message>`.", "remind set")
        duration = parse_duration(tokens[0])
        if duration is None:
            return PendingReply("❌ Invalid time format! Use formats like: 5m, 1h, 2d, 1w", "remind set")
        message = tokens[1].strip() if len(tokens) > 1 else ""
        if not message:
            if reply_to is None:
                return PendingReply("❌ Please provide a reminder message!", "remind set")
            message = DEFAULT_REPLY_MESSAGE

        now = self._clock()
        try:
            fire_at = now + duration
        except OverflowError:
            return PendingReply("❌ Invalid time format! Use formats like: 5m, 1h, 2d, 1w", "remind set")
        try:
            reminder = self.store.add(sender_key, channel_id, message, fire_at, created_at=now, reply_to=reply_to)
        except OSError as exc:
            logger.error("Failed to save reminder for %s: %s", sender_key, exc)
            return PendingReply(f"❌ Failed to save reminder: {exc}", "remind set")
        self.clean_log(f"Reminder {reminder.id} set for {sender_key}", "⏰")
        lines = [
            "⏰ **Reminder Set!**",
            f"**Message:** {reminder.message}",
            f"**Remind at:** {_ts(reminder.fire_at, 'F')}",
            f"*Reminder ID: {reminder.id}*",
        ]
        return PendingReply("\n".join(lines), "remind set")

    def list_reminders(self, sender_key: int) -> PendingReply:
        items = self.store.list_for(sender_key, self._clock())
        if not items:
            return PendingReply("📭 You have no active reminders!", "remind list")
        lines: List[str] = ["📋 **Your Active Reminders**", ""]
        for reminder in items[:LIST_LIMIT]:
            lines.append(f"**ID {reminder.id}:** {reminder.message}")
            lines.append(f"⏰ {_ts(reminder.fire_at, 'R')}")
            lines.append("")
        if len(items) > LIST_LIMIT:
            lines.append(f"... and {len(items) - LIST_LIMIT} more")
        lines.append(f"*Total active reminders: {len(items)}*")
        return PendingReply("\n".join(lines), "remind list")

    def remove_reminder(self, sender_key: int, args: str) -> PendingReply:
        try:
            reminder_id = int((args or "").split()[0])
        except (IndexError, ValueError):
            return PendingReply("❌ Use `/remind remove <id>`.", "remind remove")
        try:
            removed = self.store.remove(sender_key, reminder_id)
        except OSError as exc:
            return PendingReply(f"❌ Failed to save changes: {exc}", "remind remove")
        if removed is None:
            return PendingReply("❌ Reminder not found! Make sure you own this reminder and the ID is correct.", "remind remove")
        return PendingReply(f"🗑️ **Reminder Removed**\n**Removed:** {removed.message}", "remind remove")

    def clear_reminders(self, sender_key: int) -> PendingReply:
        try:
            count = self.store.clear(sender_key)
        except OSError as exc:
            return PendingReply(f"❌ Failed to save changes: {exc}", "remind clear")
        if not count:
            return PendingReply("📭 You have no reminders to clear!", "remind clear")
        return PendingReply(f"🗑️ **Reminders Cleared**\nRemoved {count} reminder(s)", "remind clear")
