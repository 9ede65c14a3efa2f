"""Logging helpers: root logger setup plus the emoji ``clean_log`` callable."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from typing import Callable, Dict, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Library chatter that only matters while debugging
NOISE_PATTERNS = (
    "Starting new HTTPS connection",
    "Resetting dropped connection",
    "Connection pool is full",
)


class _NoiseFilter(logging.Filter):
    def __init__(self, debug: bool = False) -> None:
        super().__init__()
        self.debug = debug

    def filter(self, rec: logging.LogRecord) -> bool:
        noisy = any(s in rec.getMessage() for s in NOISE_PATTERNS)
        return self.debug or not noisy


def configure_logging(debug: bool = False, *, log_file: Optional[str] = None) -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(_NoiseFilter(debug))
        root.addHandler(handler)
    for name in ("urllib3", "werkzeug"):
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)


class CleanLogger:
    """Emoji-prefixed, rate-limited log lines for people watching the console.

    Instances are callable with the same signature the managers expect:
    ``clean_log(message, emoji="📝", show_always=False, rate_limit=True)``.
    Repeats of the same message inside ``rate_limit_seconds`` are swallowed and
    the next emitted copy reports how many were suppressed.
    """

    def __init__(
        self,
        *,
        logger: Optional[logging.Logger] = None,
        rate_limit_seconds: float = 2.0,
        debug: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.logger = logger or logging.getLogger("guildbot")
        self.rate_limit_seconds = rate_limit_seconds
        self.debug = debug
        self._clock = clock
        self._lock = threading.Lock()
        self._last_message_time: Dict[str, float] = defaultdict(float)
        self._message_counts: Dict[str, int] = defaultdict(int)

    def __call__(self, message, emoji: str = "📝", show_always: bool = False, rate_limit: bool = True) -> None:
        message = str(message).replace("\x07", "")
        if rate_limit and not self.debug:
            message_key = f"{emoji}_{message[:50]}"
            current_time = self._clock()
            with self._lock:
                if current_time - self._last_message_time[message_key] < self.rate_limit_seconds:
                    self._message_counts[message_key] += 1
                    return
                suppressed_count = self._message_counts.pop(message_key, 0)
                self._last_message_time[message_key] = current_time
            if suppressed_count > 1:
                message += f" (suppressed {suppressed_count} similar messages)"
        level = logging.WARNING if show_always and emoji in ("⚠️", "❌") else logging.INFO
        self.logger.log(level, f"{emoji} {message}")


def null_log(*_args, **_kwargs) -> None:
    return None
