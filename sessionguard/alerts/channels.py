"""Built-in notice channels: logging and an in-memory inbox."""

from __future__ import annotations

import logging
import threading
from collections import deque

from sessionguard.alerts.manager import Notice, NoticeChannel, Severity

logger = logging.getLogger("sessionguard.notices")

_LEVELS = {
    Severity.SUCCESS: logging.INFO,
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class LogChannel(NoticeChannel):
    """Writes every notice to the application log."""

    @property
    def name(self) -> str:
        return "log"

    def send(self, notice: Notice) -> bool:
        logger.log(_LEVELS[notice.severity], "[%s] %s: %s", notice.severity.value, notice.title, notice.message)
        return True


class InboxChannel(NoticeChannel):
    """Keeps the most recent notices for a UI to poll and display.

    Oldest notices are dropped once ``max_notices`` is reached.
    """

    def __init__(self, max_notices: int = 50) -> None:
        self._notices: deque[Notice] = deque(maxlen=max_notices)
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "inbox"

    def send(self, notice: Notice) -> bool:
        with self._lock:
            self._notices.append(notice)
        return True

    def peek(self) -> list[Notice]:
        """Return pending notices without removing them."""
        with self._lock:
            return list(self._notices)

    def drain(self) -> list[Notice]:
        """Return and remove all pending notices."""
        with self._lock:
            notices = list(self._notices)
            self._notices.clear()
        return notices
