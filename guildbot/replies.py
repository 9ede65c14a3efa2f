from dataclasses import dataclass
from typing import Optional


@dataclass
class PendingReply:
    text: str
    reason: str = "command"
    ephemeral: bool = False
    reply_to: Optional[int] = None
    follow_up_text: Optional[str] = None
