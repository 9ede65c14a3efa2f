"""Background workers that act on the durable stores.

``ScheduleRunner`` drives the daily parking registrations and
``ReminderRunner`` delivers one-shot reminders. Both follow the same loop: a
daemon thread, a stop event and a ``tick`` that can also be called directly
with an explicit ``now``.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from guildbot.logs import null_log
from guildbot.reminder_manager import format_duration
from guildbot.schedule_store import ParkingProfile, ReminderStore, ScheduleData, ScheduleStore

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FireResult:
    owner_key: int
    fire_time: datetime
    ok: bool
    error: Optional[str] = None
    replayed: bool = False


class PollingWorker:
    """Daemon thread calling ``_run_once`` on a fixed cadence until stopped.

    Passes are paced against an absolute deadline, so time spent inside a
    pass does not push later passes back.
    """

    label = "Worker"
    emoji = "⏱️"
    _monotonic = staticmethod(time.monotonic)

    def __init__(self, *, clean_log: Callable[..., None], poll_interval: float) -> None:
        self.clean_log = clean_log
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker, name=self.label, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        t = self._thread
        if t and t.is_alive():
            t.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _on_start(self) -> None:
        pass

    def _run_once(self) -> None:
        raise NotImplementedError

    def _worker(self) -> None:
        self.clean_log(f"{self.label} started", self.emoji, True, False)
        try:
            self._on_start()
        except Exception:
            logger.exception("%s startup pass failed", self.label)
        next_run = self._monotonic()
        while not self._stop_event.is_set():
            try:
                self._run_once()
            except Exception:
                logger.exception("%s tick failed", self.label)
            next_run += self.poll_interval
            delay = next_run - self._monotonic()
            if delay < 0:
                # a pass overran a whole interval; start counting again from now
                logger.warning("%s fell behind by %.1fs", self.label, -delay)
                next_run = self._monotonic()
                delay = 0.0
            self._stop_event.wait(delay)
        self.clean_log(f"{self.label} stopped", self.emoji, True, False)


class ScheduleRunner(PollingWorker):
    """Fires each owner's daily schedule once per local calendar day.

    A fire is written to ``pending_fires`` and saved before the executor is
    called, so a crash mid-request leaves a durable trace that
    :meth:`recover_missed` replays (at most once) on the next start.
    """

    label = "Parking scheduler"
    emoji = "🚗"

    def __init__(
        self,
        *,
        store: ScheduleStore,
        executor: Any,
        notifier: Any,
        clean_log: Callable[..., None] = null_log,
        tz: tzinfo = timezone.utc,
        poll_interval: float = 60.0,
        tolerance_seconds: int = 30,
        validity: timedelta = timedelta(hours=10),
        warn_before: timedelta = timedelta(seconds=60),
        weekdays_only: bool = True,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        super().__init__(clean_log=clean_log, poll_interval=poll_interval)
        self.store = store
        self.executor = executor
        self.notifier = notifier
        self.tz = tz
        self.tolerance_seconds = tolerance_seconds
        self.validity = validity
        self.warn_before = warn_before
        self.weekdays_only = weekdays_only
        self._clock = clock
        self._in_flight: Set[int] = set()
        self._in_flight_lock = threading.Lock()
        self._warned: Set[Tuple[int, datetime]] = set()
        # local time of the previous completed tick and expiry pass
        self._last_evaluated: Optional[datetime] = None
        self._last_expiry_check: Optional[datetime] = None

    # Worker hooks -----------------------------------------------------
    def _on_start(self) -> None:
        self.recover_missed()

    def _run_once(self) -> None:
        now = self._clock()
        self.tick(now)
        self.check_expiry(now)

    # Helpers ----------------------------------------------------------
    def _local(self, now: Optional[datetime]) -> datetime:
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz)

    def _fired_on(self, last_fired: Optional[datetime], day) -> bool:
        return last_fired is not None and last_fired.astimezone(self.tz).date() == day

    def _claim(self, owner_key: int) -> bool:
        with self._in_flight_lock:
            if owner_key in self._in_flight:
                return False
            self._in_flight.add(owner_key)
            return True

    def _release(self, owner_key: int) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(owner_key)

    def _notify(self, owner_key: int, text: str) -> None:
        try:
            self.notifier.notify(owner_key, text)
        except Exception as exc:
            logger.error("Failed to notify %s: %s", owner_key, exc)

    def _due_candidates(
        self,
        data: ScheduleData,
        local: datetime,
        since: Optional[datetime] = None,
    ) -> List[Tuple[int, datetime]]:
        """Entries whose target is within tolerance of ``local`` or was passed since ``since``."""
        due = []
        caught_up = since is not None and since.date() == local.date()
        for owner_key, entry in data.schedules.items():
            if not entry.enabled or owner_key not in data.profiles:
                continue
            if self._fired_on(entry.last_fired, local.date()):
                continue
            target = local.replace(hour=entry.hour, minute=entry.minute, second=0, microsecond=0)
            in_window = abs((local - target).total_seconds()) <= self.tolerance_seconds
            passed = caught_up and since < target <= local
            if not (in_window or passed):
                continue
            due.append((owner_key, target.astimezone(timezone.utc)))
        return due

    # Public API -------------------------------------------------------
    def tick(self, now: Optional[datetime] = None) -> List[FireResult]:
        local = self._local(now)
        since = self._last_evaluated
        if self.weekdays_only and local.weekday() >= 5:
            self._last_evaluated = local
            return []
        if not self._due_candidates(self.store.snapshot(), local, since):
            self._last_evaluated = local
            return []

        held: List[int] = []

        def _record(data: ScheduleData) -> List[Tuple[int, datetime, ParkingProfile]]:
            claimed = []
            for owner_key, fire_time in self._due_candidates(data, local, since):
                if not self._claim(owner_key):
                    continue
                held.append(owner_key)
                data.schedules[owner_key].add_pending(fire_time)
                claimed.append((owner_key, fire_time, copy.deepcopy(data.profiles[owner_key])))
            return claimed

        try:
            claimed = self.store.update(_record)
        except OSError as exc:
            # nothing durable was written; the window is not advanced so the next tick retries
            logger.error("Could not record scheduled fires: %s", exc)
            for owner_key in held:
                self._release(owner_key)
            return []
        self._last_evaluated = local

        results = []
        for owner_key, fire_time, profile in claimed:
            try:
                results.append(self._fire(owner_key, fire_time, profile, local, replayed=False))
            finally:
                self._release(owner_key)
        return results

    def _fire(
        self,
        owner_key: int,
        fire_time: datetime,
        profile: ParkingProfile,
        local: datetime,
        *,
        replayed: bool,
    ) -> FireResult:
        try:
            self.executor.execute(profile)
        except Exception as exc:
            logger.error("Scheduled parking failed for %s: %s", owner_key, exc)
            self.clean_log(f"Scheduled parking failed for {owner_key}", "❌", True, False)
            if replayed:
                header = "❌ **Missed parking request failed**"
                footer = "🤖 *This was a recovery attempt after bot restart*"
            else:
                header = "❌ **Automatic parking failed**"
                footer = None
            lines = [
                header,
                f"**Error:** {exc}",
                f"⏰ **Originally scheduled:** {fire_time.astimezone(self.tz):%H:%M}",
                "",
                "🔧 You may need to try parking manually with `/park now`",
            ]
            if footer:
                lines.extend(["", footer])
            self._notify(owner_key, "\n".join(lines))
            return FireResult(owner_key, fire_time, False, str(exc), replayed)

        fired_at = local.astimezone(timezone.utc)

        def _done(data: ScheduleData) -> None:
            entry = data.schedules.get(owner_key)
            if entry is None:
                return
            entry.last_fired = fired_at
            entry.drop_pending(fire_time)

        try:
            self.store.update(_done)
        except OSError as exc:
            logger.error("Could not record parking for %s: %s", owner_key, exc)

        expires = (fired_at + self.validity).astimezone(self.tz)
        header = "✅ **Missed parking request recovered!**" if replayed else "✅ **Automatic parking registered!**"
        lines = [
            header,
            f"🚗 **Plate:** {profile.plate}",
            f"📱 **Phone:** {profile.phone_number}",
            f"⏱️ **Valid until:** {expires:%H:%M}",
        ]
        if replayed:
            lines.append(f"⏰ **Originally scheduled:** {fire_time.astimezone(self.tz):%H:%M}")
        lines.extend(["", "📱 **Please check your SMS** for confirmation!"])
        self._notify(owner_key, "\n".join(lines))
        self.clean_log(f"Parking registered for {owner_key} at {local:%H:%M}", "🚗", True, False)
        return FireResult(owner_key, fire_time, True, None, replayed)

    def check_expiry(self, now: Optional[datetime] = None) -> List[int]:
        """Warn owners whose parking expires within ``warn_before``.

        A warning point passed since the previous check is still reported, so a
        late pass never drops the warning.
        """
        local = self._local(now)
        since = self._last_expiry_check
        self._last_expiry_check = local
        data = self.store.snapshot()
        warned = []
        current: Set[Tuple[int, datetime]] = set()
        for owner_key, entry in data.schedules.items():
            if not entry.enabled or entry.last_fired is None:
                continue
            key = (owner_key, entry.last_fired)
            current.add(key)
            expires = entry.last_fired + self.validity
            remaining = (expires - local).total_seconds()
            upcoming = 0 < remaining <= self.warn_before.total_seconds()
            passed = since is not None and since < expires - self.warn_before <= local
            if not (upcoming or passed):
                continue
            if key in self._warned:
                continue
            self._warned.add(key)
            profile = data.profiles.get(owner_key)
            lines = ["⏰ **Parking expires soon!**" if remaining > 0 else "⏰ **Parking has expired!**"]
            if profile:
                lines.append(f"🚗 **Plate:** {profile.plate}")
            lines.append(f"⏱️ **Expires:** {expires.astimezone(self.tz):%H:%M}")
            self._notify(owner_key, "\n".join(lines))
            warned.append(owner_key)
        self._warned &= current
        return warned

    def recover_missed(self, now: Optional[datetime] = None) -> List[FireResult]:
        """Replay at most one of today's recorded fires per owner, then forget them all."""
        local = self._local(now)
        today = local.date()
        now_utc = local.astimezone(timezone.utc)

        def _plan(data: ScheduleData) -> List[Tuple[int, datetime, ParkingProfile]]:
            plan = []
            for owner_key, entry in data.schedules.items():
                todays = [t for t in entry.pending_fires if t.astimezone(self.tz).date() == today]
                entry.pending_fires = [t for t in entry.pending_fires if t.astimezone(self.tz).date() > today]
                if not todays:
                    continue
                if not entry.enabled or self._fired_on(entry.last_fired, today):
                    logger.info("Dropping %d pending fire(s) for %s", len(todays), owner_key)
                    continue
                past = [t for t in todays if t <= now_utc]
                profile = data.profiles.get(owner_key)
                if past and profile is not None:
                    plan.append((owner_key, max(past), copy.deepcopy(profile)))
            return plan

        try:
            plan = self.store.update(_plan)
        except OSError as exc:
            logger.error("Could not clear pending fires during recovery: %s", exc)
            return []

        results = []
        for owner_key, fire_time, profile in plan:
            if not self._claim(owner_key):
                continue
            try:
                self.clean_log(f"Replaying missed parking for {owner_key}", "🔄", True, False)
                results.append(self._fire(owner_key, fire_time, profile, local, replayed=True))
            finally:
                self._release(owner_key)
        return results


class ReminderRunner(PollingWorker):
    label = "Reminder checker"
    emoji = "⏰"

    def __init__(
        self,
        *,
        store: ReminderStore,
        chat: Any,
        clean_log: Callable[..., None] = null_log,
        poll_interval: float = 60.0,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        super().__init__(clean_log=clean_log, poll_interval=poll_interval)
        self.store = store
        self.chat = chat
        self._clock = clock

    def _run_once(self) -> None:
        self.tick()

    def tick(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or self._clock()
        sent: List[int] = []
        failed = 0
        for reminder in self.store.due(now):
            ago = format_duration(now - reminder.created_at)
            content = "\n".join([
                f"<@{reminder.owner_key}>",
                "⏰ **Reminder!**",
                reminder.message,
                f"*Set {ago} ago*",
            ])
            try:
                self.chat.send_message(reminder.channel_id, content, reply_to=reminder.reply_to)
            except Exception as exc:
                failed += 1
                logger.error("Failed to send reminder %s: %s", reminder.id, exc)
                continue
            logger.info("Sent reminder %s to user %s", reminder.id, reminder.owner_key)
            sent.append(reminder.id)
        if sent:
            try:
                self.store.delete(sent)
            except OSError as exc:
                logger.error("Failed to save reminders after delivery: %s", exc)
        return {"sent": len(sent), "failed": failed}
