"""Thin REST client for the chat platform plus a log-only stand-in for dry runs."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

BULK_DELETE_MAX = 100


class ChatClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotifyError(ChatClientError):
    """A direct message to the owner could not be delivered."""


class DiscordRestClient:
    """Synchronous calls against the Discord v10 REST API.

    Every failure, transport or HTTP, comes back as :class:`ChatClientError`.
    A single 429 is retried after the advertised ``retry_after``.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = "https://discord.com/api/v10",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        max_retry_wait: float = 5.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retry_wait = max_retry_wait
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bot {token}",
            "Content-Type": "application/json",
            "User-Agent": "guildbot (https://github.com/guildbot, 1.0)",
        })
        self._dm_channels: Dict[int, int] = {}
        self._dm_lock = threading.Lock()

    def _request(self, method: str, path: str, *, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        for attempt in range(2):
            try:
                r = self.session.request(method, url, json=json, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                raise ChatClientError(f"{method} {path} failed: {e}") from e
            if r.status_code == 429 and attempt == 0:
                try:
                    wait = float(r.json().get("retry_after", 1.0))
                except ValueError:
                    wait = 1.0
                time.sleep(min(max(wait, 0.0), self.max_retry_wait))
                continue
            break
        if not 200 <= r.status_code < 300:
            body = (r.text or "")[:200]
            raise ChatClientError(f"{method} {path} returned {r.status_code}: {body}", r.status_code)
        if r.status_code == 204 or not r.content:
            return None
        try:
            return r.json()
        except ValueError:
            return None

    def send_message(self, channel_id: int, content: str, reply_to: Optional[int] = None) -> int:
        body: Dict[str, Any] = {"content": content}
        if reply_to is not None:
            body["message_reference"] = {"message_id": str(reply_to), "fail_if_not_exists": False}
        data = self._request("POST", f"/channels/{channel_id}/messages", json=body)
        return int(data["id"]) if data and "id" in data else 0

    def edit_message(self, channel_id: int, message_id: int, content: str) -> None:
        self._request("PATCH", f"/channels/{channel_id}/messages/{message_id}", json={"content": content})

    def react(self, channel_id: int, message_id: int, emoji: str) -> None:
        self._request("PUT", f"/channels/{channel_id}/messages/{message_id}/reactions/{quote(emoji)}/@me")

    def delete_message(self, channel_id: int, message_id: int) -> None:
        self._request("DELETE", f"/channels/{channel_id}/messages/{message_id}")

    def _dm_channel(self, user_id: int) -> int:
        with self._dm_lock:
            cached = self._dm_channels.get(user_id)
        if cached:
            return cached
        data = self._request("POST", "/users/@me/channels", json={"recipient_id": str(user_id)})
        if not data or "id" not in data:
            raise ChatClientError(f"No DM channel returned for {user_id}")
        channel_id = int(data["id"])
        with self._dm_lock:
            self._dm_channels[user_id] = channel_id
        return channel_id

    def direct_message(self, user_id: int, content: str) -> int:
        return self.send_message(self._dm_channel(user_id), content)

    def list_recent_messages(self, channel_id: int, before: Optional[int] = None, limit: int = 50) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": max(1, min(int(limit), 100))}
        if before is not None:
            params["before"] = str(before)
        return list(self._request("GET", f"/channels/{channel_id}/messages", params=params) or [])

    def delete_messages_bulk(self, channel_id: int, message_ids: Sequence[int]) -> int:
        ids = list(dict.fromkeys(message_ids))
        deleted = 0
        for start in range(0, len(ids), BULK_DELETE_MAX):
            chunk = ids[start:start + BULK_DELETE_MAX]
            if len(chunk) == 1:
                self.delete_message(channel_id, chunk[0])
            else:
                self._request(
                    "POST",
                    f"/channels/{channel_id}/messages/bulk-delete",
                    json={"messages": [str(m) for m in chunk]},
                )
            deleted += len(chunk)
        return deleted

    def is_bot(self, user_id: int) -> bool:
        try:
            data = self._request("GET", f"/users/{user_id}")
        except ChatClientError as e:
            logger.debug("User lookup for %s failed: %s", user_id, e)
            return False
        return bool(data and data.get("bot"))

    def notify(self, owner_key: int, text: str) -> None:
        try:
            self.direct_message(owner_key, text)
        except ChatClientError as e:
            raise NotifyError(f"Could not DM {owner_key}: {e}", e.status_code) from e


class LogChatClient:
    """Chat client that only logs; used for dry runs and local testing."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _record(self, **entry: Any) -> int:
        with self._lock:
            message_id = next(self._ids)
            entry["id"] = message_id
            self.sent.append(entry)
        logger.info("[dry-run] %s", entry)
        return message_id

    def send_message(self, channel_id: int, content: str, reply_to: Optional[int] = None) -> int:
        return self._record(kind="message", channel_id=channel_id, content=content, reply_to=reply_to)

    def edit_message(self, channel_id: int, message_id: int, content: str) -> None:
        self._record(kind="edit", channel_id=channel_id, message_id=message_id, content=content)

    def react(self, channel_id: int, message_id: int, emoji: str) -> None:
        self._record(kind="react", channel_id=channel_id, message_id=message_id, emoji=emoji)

    def delete_message(self, channel_id: int, message_id: int) -> None:
        self._record(kind="delete", channel_id=channel_id, message_id=message_id)

    def direct_message(self, user_id: int, content: str) -> int:
        return self._record(kind="dm", user_id=user_id, content=content)

    def list_recent_messages(self, channel_id: int, before: Optional[int] = None, limit: int = 50) -> List[Dict[str, Any]]:
        return []

    def delete_messages_bulk(self, channel_id: int, message_ids: Sequence[int]) -> int:
        ids = list(dict.fromkeys(message_ids))
        self._record(kind="bulk_delete", channel_id=channel_id, message_ids=ids)
        return len(ids)

    def is_bot(self, user_id: int) -> bool:
        return False

    def notify(self, owner_key: int, text: str) -> None:
        self.direct_message(owner_key, text)
