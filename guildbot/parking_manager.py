from __future__ import annotations

import logging
import re
import threading
import time
from collections import defaultdict, deque
from datetime import timezone, tzinfo
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from guildbot.replies import PendingReply
from guildbot.schedule_store import ParkingProfile, ScheduleData, ScheduleEntry, ScheduleStore

logger = logging.getLogger(__name__)

PLATE_MIN = 2
PLATE_MAX = 10
_TIME_RE = re.compile(r"^(\d{1,2})[:.](\d{2})$")


def validate_phone_number(phone: str) -> bool:
    """Danish mobile numbers: exactly eight digits, no country code."""
    return len(phone) == 8 and phone.isascii() and phone.isdigit()


def validate_plate(plate: str) -> bool:
    return PLATE_MIN <= len(plate.strip()) <= PLATE_MAX


def is_valid_time(hour: int, minute: int) -> bool:
    return 0 <= hour <= 23 and 0 <= minute <= 59


def parse_time_of_day(tokens: List[str]) -> Optional[Tuple[int, int]]:
    """Accept ``8 30`` or ``08:30``."""
    try:
        if len(tokens) == 1:
            m = _TIME_RE.match(tokens[0])
            if not m:
                return None
            return int(m.group(1)), int(m.group(2))
        if len(tokens) == 2:
            return int(tokens[0]), int(tokens[1])
    except ValueError:
        return None
    return None


class RateLimiter:
    """At most ``limit`` hits per key inside a rolling ``window`` seconds."""

    def __init__(self, limit: int = 3, window: float = 3600.0, clock: Callable[[], float] = time.time) -> None:
        self.limit = limit
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: Dict[int, Deque[float]] = defaultdict(deque)

    def check(self, key: int) -> bool:
        now = self._clock()
        with self._lock:
            hits = self._hits[key]
            while hits and now - hits[0] >= self.window:
                hits.popleft()
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    def remaining(self, key: int) -> int:
        now = self._clock()
        with self._lock:
            hits = self._hits.get(key) or ()
            return max(0, self.limit - sum(1 for t in hits if now - t < self.window))


class ParkingManager:
    def __init__(
        self,
        *,
        store: ScheduleStore,
        executor: Any,
        clean_log: Callable[..., None],
        rate_limiter: Optional[RateLimiter] = None,
        tz: tzinfo = timezone.utc,
        country_code: str = "45",
        area_key: str = "",
        validity_hours: float = 10.0,
    ) -> None:
        self.store = store
        self.executor = executor
        self.clean_log = clean_log
        self.rate_limiter = rate_limiter or RateLimiter()
        self.tz = tz
        self.country_code = country_code
        self.area_key = area_key
        self.validity_hours = validity_hours

    def _reply(self, text: str, reason: str) -> PendingReply:
        return PendingReply(text, reason, ephemeral=True)

    def _phone_label(self, phone: str) -> str:
        return f"+{self.country_code} {phone}"

    def handle_command(self, arguments: str, sender_key: int) -> PendingReply:
        tokens = (arguments or "").split()
        sub = tokens[0].lower() if tokens else ""
        rest = tokens[1:]
        if sub == "now":
            return self.park_now(sender_key, rest)
        if sub == "info":
            return self.park_info(sender_key)
        if sub == "clear":
            return self.park_clear(sender_key)
        if sub == "schedule":
            action = rest[0].lower() if rest else "status"
            if action == "set":
                return self.schedule_set(sender_key, rest[1:])
            if action == "status":
                return self.schedule_status(sender_key)
            if action == "disable":
                return self.schedule_disable(sender_key)
        return self._reply(
            "🚗 **Parking**\n"
            "`/park now [plate] [phone]`\n"
            "`/park info` | `/park clear`\n"
            "`/park schedule set <hour> <minute>` | `/park schedule status` | `/park schedule disable`",
            "park help",
        )

    # ------------------------
    # Manual parking
    # ------------------------
    def _resolve_profile(self, sender_key: int, args: List[str]) -> Tuple[Optional[ParkingProfile], Optional[str]]:
        plate: Optional[str] = None
        phone: Optional[str] = None
        if len(args) >= 2:
            plate, phone = args[0], args[1]
        elif len(args) == 1:
            if validate_phone_number(args[0]):
                phone = args[0]
            else:
                plate = args[0]

        if phone is not None and not validate_phone_number(phone):
            return None, "❌ **Invalid phone number**\nPhone number must be exactly 8 digits (Danish format, no country code)"
        if plate is not None and not validate_plate(plate):
            return None, "❌ **Invalid license plate**\nLicense plate format is invalid"

        stored = self.store.profile(sender_key)
        if plate is None and phone is None:
            if stored is None:
                return None, (
                    "❌ **Information required**\nI don't have your parking information. "
                    "Please provide both your license plate and phone number."
                )
            return stored, None
        if stored is None and (plate is None or phone is None):
            missing = "phone number" if phone is None else "license plate"
            return None, (
                f"❌ **{missing.capitalize()} required**\nI don't have your {missing} saved. "
                "Please provide both plate and phone number."
            )
        profile = ParkingProfile(
            plate=plate.strip().upper() if plate is not None else stored.plate,
            phone_number=phone if phone is not None else stored.phone_number,
        )
        return profile, None

    def park_now(self, sender_key: int, args: List[str]) -> PendingReply:
        if not self.rate_limiter.check(sender_key):
            return self._reply(
                f"🚫 **Rate limit exceeded**\nYou can only park {self.rate_limiter.limit} times per hour. "
                "Please wait before trying again.",
                "park now",
            )
        profile, error = self._resolve_profile(sender_key, args)
        if profile is None:
            return self._reply(error or "❌ Missing parking information.", "park now")

        def _save(data: ScheduleData) -> None:
            data.profiles[sender_key] = profile

        try:
            self.store.update(_save)
        except OSError as exc:
            logger.warning("Failed to save parking data: %s", exc)

        try:
            self.executor.execute(profile)
        except Exception as exc:
            logger.error("Parking request failed for %s: %s", sender_key, exc)
            return self._reply(
                f"❌ **Parking request failed**\n**Error:** {exc}\n\n🔧 Please try again in a few minutes.",
                "park now",
            )
        self.clean_log(f"Manual parking registered for {sender_key}", "🚗")
        lines = [
            "✅ **Parking confirmed!**",
            f"🚗 **Plate:** {profile.plate}",
            f"📱 **Phone:** {self._phone_label(profile.phone_number)}",
            f"⏱️ **Duration:** {self.validity_hours:g} hours",
        ]
        if self.area_key:
            lines.append(f"📍 **Area:** {self.area_key}")
        lines.extend(["", "📱 **Please check your SMS** for confirmation!"])
        return self._reply("\n".join(lines), "park now")

    # ------------------------
    # Profile
    # ------------------------
    def _schedule_summary(self, entry: Optional[ScheduleEntry]) -> str:
        if entry is None:
            return "⏰ **Schedule:** Not set"
        if not entry.enabled:
            return "⏰ **Schedule:** ❌ Disabled"
        last = f"<t:{int(entry.last_fired.timestamp())}:F>" if entry.last_fired else "Never"
        return (
            f"⏰ **Schedule:** {entry.hour:02d}:{entry.minute:02d} (Mon-Fri)\n"
            f"📊 **Status:** ✅ Enabled\n"
            f"🕐 **Last auto-park:** {last}"
        )

    def park_info(self, sender_key: int) -> PendingReply:
        profile = self.store.profile(sender_key)
        if profile is None:
            return self._reply(
                "📭 **No parking information found**\nUse `/park now <plate> <phone>` to save your information.",
                "park info",
            )
        lines = [
            "📋 **Your Parking Information**",
            f"🚗 **License Plate:** {profile.plate}",
            f"📱 **Phone:** {self._phone_label(profile.phone_number)}",
            "",
            self._schedule_summary(self.store.schedule(sender_key)),
            "",
            "💡 *Use `/park clear` to remove this information*",
        ]
        return self._reply("\n".join(lines), "park info")

    def park_clear(self, sender_key: int) -> PendingReply:
        def _clear(data: ScheduleData) -> bool:
            had_profile = data.profiles.pop(sender_key, None) is not None
            had_schedule = data.schedules.pop(sender_key, None) is not None
            return had_profile or had_schedule

        if self.store.profile(sender_key) is None and self.store.schedule(sender_key) is None:
            return self._reply("📭 **No parking information found to clear**", "park clear")
        try:
            self.store.update(_clear)
        except OSError as exc:
            logger.warning("Failed to save parking data after clear: %s", exc)
        return self._reply(
            "🗑️ **Parking information cleared**\nYour saved plate, phone number, and schedule have been removed.",
            "park clear",
        )

    # ------------------------
    # Schedule
    # ------------------------
    def schedule_set(self, sender_key: int, args: List[str]) -> PendingReply:
        parsed = parse_time_of_day(args)
        if parsed is None or not is_valid_time(*parsed):
            return self._reply("❌ **Invalid time**\nHour must be 0-23, minute must be 0-59", "park schedule")
        hour, minute = parsed

        def _set(data: ScheduleData) -> bool:
            if sender_key not in data.profiles:
                return False
            previous = data.schedules.get(sender_key)
            # keep last_fired so re-scheduling cannot park twice on the same day
            data.schedules[sender_key] = ScheduleEntry(
                hour=hour,
                minute=minute,
                enabled=True,
                last_fired=previous.last_fired if previous else None,
            )
            return True

        try:
            ok = self.store.update(_set)
        except OSError as exc:
            return self._reply(f"❌ **Failed to save schedule:** {exc}", "park schedule")
        if not ok:
            return self._reply(
                "❌ **Parking information required**\nYou need to save your parking information first. "
                "Use `/park now <plate> <phone>` to set it up.",
                "park schedule",
            )
        self.clean_log(f"Parking schedule set for {sender_key} at {hour:02d}:{minute:02d}", "⏰")
        lines = [
            "⏰ **Automatic parking scheduled!**",
            f"🕐 **Time:** {hour:02d}:{minute:02d} ({self.tz})",
            "📅 **Days:** Monday to Friday",
            "🔔 **Notifications:** You'll receive a DM when parking is registered and when it's about to expire",
        ]
        return self._reply("\n".join(lines), "park schedule")

    def schedule_status(self, sender_key: int) -> PendingReply:
        entry = self.store.schedule(sender_key)
        if entry is None:
            return self._reply(
                "📭 **No parking schedule set**\nUse `/park schedule set <hour> <minute>` to create one.",
                "park schedule",
            )
        if not entry.enabled:
            return self._reply(
                "⏰ **Your Parking Schedule**\n📊 **Status:** ❌ Disabled\n\n"
                "💡 *Use `/park schedule set <hour> <minute>` to enable*",
                "park schedule",
            )
        last = f"<t:{int(entry.last_fired.timestamp())}:F>" if entry.last_fired else "Never"
        lines = [
            "⏰ **Your Parking Schedule**",
            f"🕐 **Time:** {entry.hour:02d}:{entry.minute:02d} ({self.tz})",
            "📅 **Days:** Monday to Friday",
            "📊 **Status:** ✅ Enabled",
            f"🕐 **Last parked:** {last}",
            "⏰ **DST:** Automatically adjusts",
        ]
        return self._reply("\n".join(lines), "park schedule")

    def schedule_disable(self, sender_key: int) -> PendingReply:
        def _disable(data: ScheduleData) -> str:
            entry = data.schedules.get(sender_key)
            if entry is None:
                return "not_found"
            if not entry.enabled:
                return "already_disabled"
            entry.enabled = False
            return "disabled"

        try:
            result = self.store.update(_disable)
        except OSError as exc:
            return self._reply(f"❌ **Failed to disable schedule:** {exc}", "park schedule")
        if result == "not_found":
            return self._reply("📭 **No parking schedule found**", "park schedule")
        if result == "already_disabled":
            return self._reply("⏰ **Schedule is already disabled**", "park schedule")
        return self._reply(
            "⏰ **Automatic parking disabled**\nYour schedule has been turned off. "
            "Use `/park schedule set <hour> <minute>` to re-enable.",
            "park schedule",
        )
