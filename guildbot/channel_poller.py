from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from guildbot.chat_client import ChatClientError
from guildbot.logs import null_log
from guildbot.replies import PendingReply
from guildbot.schedule_runner import PollingWorker

logger = logging.getLogger(__name__)


def _as_id(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ChannelPoller(PollingWorker):
    """Reads new messages from the watched channels and answers commands.

    The first pass over a channel only records the newest message id, so a
    restart never replays old commands. Ephemeral replies go out as DMs.
    """

    label = "Channel poller"
    emoji = "💬"

    def __init__(
        self,
        *,
        chat,
        router,
        channel_ids: Iterable[int],
        clean_log: Callable[..., None] = null_log,
        poll_interval: float = 2.0,
        fetch_limit: int = 50,
    ) -> None:
        super().__init__(clean_log=clean_log, poll_interval=poll_interval)
        self.chat = chat
        self.router = router
        self.channel_ids = list(channel_ids)
        self.fetch_limit = fetch_limit
        self._last_seen: Dict[int, int] = {}

    def _run_once(self) -> None:
        self.tick()

    def tick(self) -> int:
        handled = 0
        for channel_id in self.channel_ids:
            try:
                messages = self.chat.list_recent_messages(channel_id, limit=self.fetch_limit)
            except ChatClientError as exc:
                logger.warning("Could not read channel %s: %s", channel_id, exc)
                continue
            handled += self._process(channel_id, messages)
        return handled

    def _process(self, channel_id: int, messages: List[Dict[str, Any]]) -> int:
        ordered = sorted(
            (m for m in messages if _as_id(m.get("id")) is not None),
            key=lambda m: int(m["id"]),
        )
        if channel_id not in self._last_seen:
            self._last_seen[channel_id] = int(ordered[-1]["id"]) if ordered else 0
            return 0
        handled = 0
        for msg in ordered:
            message_id = int(msg["id"])
            if message_id <= self._last_seen[channel_id]:
                continue
            self._last_seen[channel_id] = message_id
            author = msg.get("author") or {}
            sender_key = _as_id(author.get("id"))
            if sender_key is None or author.get("bot"):
                continue
            reference = msg.get("message_reference") or {}
            reply = self.router.route(
                str(msg.get("content") or ""),
                sender_key=sender_key,
                sender_name=str(author.get("global_name") or author.get("username") or sender_key),
                channel_id=channel_id,
                reply_to=_as_id(reference.get("message_id")),
            )
            if reply is None:
                continue
            self._deliver(channel_id, message_id, sender_key, reply)
            handled += 1
        return handled

    def _deliver(self, channel_id: int, message_id: int, sender_key: int, reply: PendingReply) -> None:
        texts = [reply.text] + ([reply.follow_up_text] if reply.follow_up_text else [])
        for text in texts:
            try:
                if reply.ephemeral:
                    self.chat.direct_message(sender_key, text)
                else:
                    self.chat.send_message(channel_id, text, reply_to=message_id)
            except ChatClientError as exc:
                logger.error("Failed to deliver %s reply to %s: %s", reply.reason, sender_key, exc)
                return
