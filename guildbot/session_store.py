"""Concurrent per-owner session registry shared by every game handler."""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

OwnerKey = int
SessionKey = Tuple[OwnerKey, str]


class SessionError(Exception):
    """Base class for registry conflicts."""


class AlreadyActive(SessionError):
    def __init__(self, owner_key: OwnerKey, kind: str) -> None:
        super().__init__(f"{owner_key} already has an active {kind} session")
        self.owner_key = owner_key
        self.kind = kind


class SessionNotFound(SessionError):
    def __init__(self, owner_key: OwnerKey, kind: str) -> None:
        super().__init__(f"{owner_key} has no active {kind} session")
        self.owner_key = owner_key
        self.kind = kind


@dataclass(frozen=True)
class SessionView:
    owner_key: OwnerKey
    kind: str
    participants: Tuple[OwnerKey, ...]
    payload: Any
    created_ts: float
    updated_ts: float


class _Entry:
    __slots__ = ("kind", "participants", "payload", "lock", "alive", "created_ts", "updated_ts")

    def __init__(self, kind: str, participants: Tuple[OwnerKey, ...], payload: Any, now: float) -> None:
        self.kind = kind
        self.participants = participants
        self.payload = payload
        self.lock = threading.Lock()
        self.alive = True
        self.created_ts = now
        self.updated_ts = now


class SessionStore:
    """Map of ``(owner_key, kind)`` to session payloads.

    The map itself sits behind one short-lived lock; every entry carries its
    own lock, so a move in one owner's game never waits on another owner's.
    A two-party session is a single entry registered under both owners.
    Locks are always taken entry first, map second.
    """

    def __init__(self, *, idle_timeout: Optional[float] = None, clock: Callable[[], float] = time.time) -> None:
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[SessionKey, _Entry] = {}

    def start(self, owner_key: OwnerKey, kind: str, payload: Any, partners: Iterable[OwnerKey] = ()) -> None:
        participants = tuple(dict.fromkeys([owner_key, *partners]))
        with self._lock:
            for key in participants:
                if (key, kind) in self._entries:
                    raise AlreadyActive(key, kind)
            entry = _Entry(kind, participants, payload, self._clock())
            for key in participants:
                self._entries[(key, kind)] = entry

    def get(self, owner_key: OwnerKey, kind: str) -> Optional[SessionView]:
        entry = self._lookup(owner_key, kind)
        if entry is None:
            return None
        with entry.lock:
            if not entry.alive:
                return None
            return SessionView(
                owner_key=owner_key,
                kind=kind,
                participants=entry.participants,
                payload=copy.deepcopy(entry.payload),
                created_ts=entry.created_ts,
                updated_ts=entry.updated_ts,
            )

    def mutate(self, owner_key: OwnerKey, kind: str, fn: Callable[[Any], Tuple[Any, Any]]) -> Any:
        """Apply ``fn`` to a private copy of the payload and commit the result.

        ``fn`` returns ``(new_payload, outcome)``; a ``None`` payload ends the
        session for every participant. If ``fn`` raises, nothing changes and
        the exception reaches the caller.
        """
        while True:
            entry = self._lookup(owner_key, kind)
            if entry is None:
                raise SessionNotFound(owner_key, kind)
            with entry.lock:
                if not entry.alive:
                    # retired between lookup and lock; a new session may have replaced it
                    continue
                working = copy.deepcopy(entry.payload)
                new_payload, outcome = fn(working)
                if new_payload is None:
                    self._retire_locked(entry)
                else:
                    entry.payload = new_payload
                    entry.updated_ts = self._clock()
                return outcome

    def end(self, owner_key: OwnerKey, kind: str) -> Optional[Any]:
        entry = self._lookup(owner_key, kind)
        if entry is None:
            return None
        with entry.lock:
            if not entry.alive:
                return None
            self._retire_locked(entry)
            return entry.payload

    def active(self, kind: Optional[str] = None) -> int:
        with self._lock:
            entries = {id(e): e for (_, k), e in self._entries.items() if kind is None or k == kind}
        return len(entries)

    def owners(self, kind: str) -> List[OwnerKey]:
        with self._lock:
            return sorted(owner for owner, k in self._entries if k == kind)

    def reap_idle(self, now: Optional[float] = None) -> int:
        """Drop sessions untouched for longer than ``idle_timeout`` seconds."""
        if not self.idle_timeout:
            return 0
        now = self._clock() if now is None else now
        with self._lock:
            candidates = list({id(e): e for e in self._entries.values()}.values())
        reaped = 0
        for entry in candidates:
            with entry.lock:
                if entry.alive and now - entry.updated_ts > self.idle_timeout:
                    self._retire_locked(entry)
                    reaped += 1
        return reaped

    def _lookup(self, owner_key: OwnerKey, kind: str) -> Optional[_Entry]:
        with self._lock:
            return self._entries.get((owner_key, kind))

    def _retire_locked(self, entry: _Entry) -> None:
        # caller holds entry.lock
        entry.alive = False
        with self._lock:
            for key in entry.participants:
                if self._entries.get((key, entry.kind)) is entry:
                    del self._entries[(key, entry.kind)]
