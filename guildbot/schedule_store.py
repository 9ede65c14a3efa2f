"""JSON snapshot stores for parking schedules and one-shot reminders.

Both stores keep their data in memory behind a lock and write the whole
document back on every change (write to ``<path>.tmp``, then ``os.replace``).
Parking profiles hold a phone number and licence plate, so those two fields
are sealed with AES-GCM before they touch the disk.
"""

from __future__ import annotations

import base64
import copy
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional, TypeVar

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_SIZE = 32
NONCE_SIZE = 12


# ----------------------------
# File helpers
# ----------------------------

def _ensure_directory(path: str, mode: int = 0o700) -> None:
    directory = os.path.dirname(path)
    if directory and not os.path.isdir(directory):
        os.makedirs(directory, exist_ok=True)
        try:
            os.chmod(directory, mode)
        except OSError as exc:
            logger.debug("Could not restrict %s: %s", directory, exc)


def _write_atomic(path: str, data: str, *, mode: Optional[int] = None) -> None:
    _ensure_directory(path)
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as fh:
        fh.write(data)
        fh.flush()
        os.fsync(fh.fileno())
    if mode is not None:
        os.chmod(tmp, mode)
    os.replace(tmp, path)


def _read_json(path: str) -> Any:
    """Return the parsed document, ``None`` when missing or unreadable."""
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError) as exc:
        logger.warning("⚠️ Failed to read %s: %s, starting fresh", path, exc)
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


# ----------------------------
# Encryption
# ----------------------------

class SecretBox:
    """AES-256-GCM sealing of short strings; output is base64(nonce || ciphertext)."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError(f"Encryption key must be {KEY_SIZE} bytes")
        self._aead = AESGCM(key)

    @classmethod
    def load_or_create(cls, key_path: str) -> "SecretBox":
        key: Optional[bytes] = None
        if os.path.exists(key_path):
            with open(key_path, "rb") as fh:
                key = fh.read()
            if len(key) != KEY_SIZE:
                logger.warning("⚠️ Invalid encryption key size in %s, generating new key", key_path)
                key = None
        if key is None:
            key = AESGCM.generate_key(bit_length=KEY_SIZE * 8)
            _ensure_directory(key_path)
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as fh:
                fh.write(key)
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, token: str) -> str:
        combined = base64.b64decode(token.encode("ascii"), validate=True)
        if len(combined) < NONCE_SIZE:
            raise ValueError("Invalid encrypted data")
        nonce, sealed = combined[:NONCE_SIZE], combined[NONCE_SIZE:]
        return self._aead.decrypt(nonce, sealed, None).decode("utf-8")


# ----------------------------
# Parking schedules
# ----------------------------

@dataclass
class ParkingProfile:
    plate: str
    phone_number: str


@dataclass
class ScheduleEntry:
    hour: int
    minute: int
    enabled: bool = True
    last_fired: Optional[datetime] = None
    pending_fires: List[datetime] = field(default_factory=list)

    def add_pending(self, fire_time: datetime) -> None:
        if fire_time not in self.pending_fires:
            self.pending_fires.append(fire_time)
            self.pending_fires.sort()

    def drop_pending(self, fire_time: datetime) -> None:
        self.pending_fires = [t for t in self.pending_fires if t != fire_time]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hour": self.hour,
            "minute": self.minute,
            "enabled": self.enabled,
            "last_fired": format_timestamp(self.last_fired),
            "pending_fires": [format_timestamp(t) for t in self.pending_fires],
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ScheduleEntry":
        hour = int(raw["hour"])
        minute = int(raw["minute"])
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"invalid schedule time {hour}:{minute}")
        pending = [parse_timestamp(v) for v in raw.get("pending_fires") or raw.get("missed_requests") or []]
        entry = cls(
            hour=hour,
            minute=minute,
            enabled=bool(raw.get("enabled", True)),
            last_fired=parse_timestamp(raw.get("last_fired") or raw.get("last_parked")),
        )
        for fire_time in pending:
            if fire_time is not None:
                entry.add_pending(fire_time)
        return entry


@dataclass
class ScheduleData:
    profiles: Dict[int, ParkingProfile] = field(default_factory=dict)
    schedules: Dict[int, ScheduleEntry] = field(default_factory=dict)


def purge_stale(data: ScheduleData, now: datetime) -> int:
    """Drop pending fires dated before ``now``'s calendar day; returns how many went."""
    today = now.date()
    zone = now.tzinfo or timezone.utc
    removed = 0
    for entry in data.schedules.values():
        kept = [t for t in entry.pending_fires if t.astimezone(zone).date() >= today]
        removed += len(entry.pending_fires) - len(kept)
        entry.pending_fires = kept
    return removed


class ScheduleStore:
    """Owner of :class:`ScheduleData` and its snapshot file.

    Readers call :meth:`snapshot` for a private copy; writers go through
    :meth:`update`, which applies a function to a working copy and commits it
    only once the file write succeeded. Nothing slow besides the file write
    ever runs under the lock.
    """

    def __init__(
        self,
        path: str,
        *,
        key_path: Optional[str] = None,
        encrypt: bool = True,
        tz: tzinfo = timezone.utc,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.path = path
        self.key_path = key_path or os.path.join(os.path.dirname(path) or ".", "parking_key")
        self.encrypt = encrypt
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._box: Optional[SecretBox] = None
        self._data = ScheduleData()

    def _secret_box(self) -> Optional[SecretBox]:
        if not self.encrypt:
            return None
        if self._box is None:
            self._box = SecretBox.load_or_create(self.key_path)
        return self._box

    def _reveal(self, value: str) -> str:
        box = self._secret_box()
        if box is None or not value:
            return value
        try:
            return box.decrypt(value)
        except Exception:
            # plaintext written before encryption was enabled
            return value

    def load(self) -> ScheduleData:
        raw = _read_json(self.path)
        data = ScheduleData()
        if raw is not None and not isinstance(raw, dict):
            logger.warning("⚠️ Failed to parse parking data in %s, starting fresh", self.path)
            raw = None
        if raw:
            profiles = raw.get("profiles") or raw.get("users") or {}
            schedules = raw.get("schedules") or {}
            try:
                for owner, info in profiles.items():
                    data.profiles[int(owner)] = ParkingProfile(
                        plate=self._reveal(str(info["plate"])),
                        phone_number=self._reveal(str(info["phone_number"])),
                    )
                for owner, entry in schedules.items():
                    data.schedules[int(owner)] = ScheduleEntry.from_dict(entry)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("⚠️ Failed to parse parking data: %s, starting fresh", exc)
                data = ScheduleData()
        removed = purge_stale(data, self._clock().astimezone(self.tz))
        if removed:
            logger.info("Purged %d stale pending fire(s) from %s", removed, self.path)
        with self._lock:
            self._data = data
            return copy.deepcopy(data)

    def save(self, data: Optional[ScheduleData] = None) -> None:
        with self._lock:
            source = self._data if data is None else data
            box = self._secret_box()
            payload = {
                "profiles": {
                    str(owner): {
                        "plate": box.encrypt(p.plate) if box else p.plate,
                        "phone_number": box.encrypt(p.phone_number) if box else p.phone_number,
                    }
                    for owner, p in source.profiles.items()
                },
                "schedules": {str(owner): e.to_dict() for owner, e in source.schedules.items()},
            }
            _write_atomic(self.path, json.dumps(payload, indent=2, sort_keys=True), mode=0o600)
            if data is not None:
                self._data = copy.deepcopy(data)

    def snapshot(self) -> ScheduleData:
        with self._lock:
            return copy.deepcopy(self._data)

    def update(self, fn: Callable[[ScheduleData], T]) -> T:
        """Apply ``fn`` to a working copy and commit it once the file is written."""
        with self._lock:
            working = copy.deepcopy(self._data)
            result = fn(working)
            self.save(working)
            return result

    def profile(self, owner_key: int) -> Optional[ParkingProfile]:
        with self._lock:
            found = self._data.profiles.get(owner_key)
            return copy.deepcopy(found) if found else None

    def schedule(self, owner_key: int) -> Optional[ScheduleEntry]:
        with self._lock:
            found = self._data.schedules.get(owner_key)
            return copy.deepcopy(found) if found else None


# ----------------------------
# One-shot reminders
# ----------------------------

@dataclass
class Reminder:
    id: int
    owner_key: int
    channel_id: int
    message: str
    fire_at: datetime
    created_at: datetime
    reply_to: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_key": self.owner_key,
            "channel_id": self.channel_id,
            "message": self.message,
            "fire_at": format_timestamp(self.fire_at),
            "created_at": format_timestamp(self.created_at),
            "reply_to": self.reply_to,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Reminder":
        fire_at = parse_timestamp(raw.get("fire_at") or raw.get("remind_at"))
        created_at = parse_timestamp(raw.get("created_at"))
        if fire_at is None or created_at is None:
            raise ValueError("reminder without timestamps")
        reply_to = raw.get("reply_to", raw.get("reply_to_message_id"))
        return cls(
            id=int(raw["id"]),
            owner_key=int(raw.get("owner_key", raw.get("user_id"))),
            channel_id=int(raw["channel_id"]),
            message=str(raw.get("message") or ""),
            fire_at=fire_at,
            created_at=created_at,
            reply_to=int(reply_to) if reply_to is not None else None,
        )


@dataclass
class ActionsData:
    next_id: int = 1
    reminders: List[Reminder] = field(default_factory=list)


class ReminderStore:
    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._data = ActionsData()

    def load(self) -> ActionsData:
        raw = _read_json(self.path)
        data = ActionsData()
        if isinstance(raw, dict):
            try:
                data.reminders = [Reminder.from_dict(r) for r in raw.get("reminders") or []]
                highest = max((r.id for r in data.reminders), default=0)
                data.next_id = max(int(raw.get("next_id") or 1), highest + 1)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("⚠️ Failed to parse reminders: %s, starting fresh", exc)
                data = ActionsData()
        elif raw is not None:
            logger.warning("⚠️ Reminder file %s is not a JSON object, starting fresh", self.path)
        with self._lock:
            self._data = data
            return copy.deepcopy(data)

    def save(self) -> None:
        with self._lock:
            payload = {
                "next_id": self._data.next_id,
                "reminders": [r.to_dict() for r in self._data.reminders],
            }
            _write_atomic(self.path, json.dumps(payload, indent=2, ensure_ascii=False))

    def add(
        self,
        owner_key: int,
        channel_id: int,
        message: str,
        fire_at: datetime,
        *,
        created_at: datetime,
        reply_to: Optional[int] = None,
    ) -> Reminder:
        with self._lock:
            reminder = Reminder(
                id=self._data.next_id,
                owner_key=owner_key,
                channel_id=channel_id,
                message=message,
                fire_at=fire_at,
                created_at=created_at,
                reply_to=reply_to,
            )
            self._data.reminders.append(reminder)
            self._data.next_id += 1
            try:
                self.save()
            except OSError:
                self._data.reminders.remove(reminder)
                self._data.next_id -= 1
                raise
            return copy.deepcopy(reminder)

    def list_for(self, owner_key: int, now: datetime) -> List[Reminder]:
        with self._lock:
            items = [r for r in self._data.reminders if r.owner_key == owner_key and r.fire_at > now]
            return copy.deepcopy(sorted(items, key=lambda r: r.fire_at))

    def _commit(self, kept: List[Reminder]) -> int:
        # caller holds the lock; memory is rolled back if the write fails
        previous = self._data.reminders
        removed = len(previous) - len(kept)
        if not removed:
            return 0
        self._data.reminders = kept
        try:
            self.save()
        except OSError:
            self._data.reminders = previous
            raise
        return removed

    def remove(self, owner_key: int, reminder_id: int) -> Optional[Reminder]:
        with self._lock:
            for reminder in self._data.reminders:
                if reminder.id == reminder_id and reminder.owner_key == owner_key:
                    self._commit([r for r in self._data.reminders if r is not reminder])
                    return reminder
        return None

    def clear(self, owner_key: int) -> int:
        with self._lock:
            return self._commit([r for r in self._data.reminders if r.owner_key != owner_key])

    def due(self, now: datetime) -> List[Reminder]:
        with self._lock:
            return copy.deepcopy([r for r in self._data.reminders if r.fire_at <= now])

    def delete(self, reminder_ids: List[int]) -> int:
        wanted = set(reminder_ids)
        with self._lock:
            return self._commit([r for r in self._data.reminders if r.id not in wanted])

    def count(self) -> int:
        with self._lock:
            return len(self._data.reminders)
