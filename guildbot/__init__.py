"""Core components of the guildbot chat bot."""

from .replies import PendingReply
from .session_store import AlreadyActive, SessionNotFound, SessionStore
from .games import GameManager

__all__ = [
    "PendingReply",
    "SessionStore",
    "AlreadyActive",
    "SessionNotFound",
    "GameManager",
]
