"""SessionGuard notice manager and base channel.

Provides the abstract NoticeChannel base class and the NoticeManager
that dispatches user-visible notices ("toasts") to every configured
channel. Notices are out-of-band: they never replace the result an
auth operation returns.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger("sessionguard.alerts")


class Severity(Enum):
    """Notice severity levels, mirroring toast variants."""

    SUCCESS = "SUCCESS"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Notice:
    """A single user-visible notice."""

    severity: Severity
    title: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    dismissible: bool = True

    def to_dict(self) -> dict[str, object]:
        return {
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "dismissible": self.dismissible,
        }


class NoticeChannel(ABC):
    """Abstract base class for notice channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the channel name (e.g. 'log', 'inbox')."""

    @property
    def is_configured(self) -> bool:
        """Whether this channel can deliver notices."""
        return True

    @abstractmethod
    def send(self, notice: Notice) -> bool:
        """Deliver a notice.

        Returns:
            True if delivered, False otherwise.
        """


class NoticeManager:
    """Dispatches notices to all registered channels.

    A failing channel is logged and never propagates into the caller.
    """

    def __init__(self, channels: list[NoticeChannel] | None = None) -> None:
        self._channels: list[NoticeChannel] = list(channels or [])

    def register(self, channel: NoticeChannel) -> None:
        """Register a notice channel."""
        self._channels.append(channel)

    @property
    def channels(self) -> list[NoticeChannel]:
        """Return the list of registered channels."""
        return list(self._channels)

    def notify(
        self,
        severity: Severity,
        title: str,
        message: str,
        dismissible: bool = True,
    ) -> dict[str, bool]:
        """Send a notice to all configured channels.

        Args:
            severity: Notice severity.
            title: Short title.
            message: Message shown to the user.
            dismissible: False for blocking notices (e.g. lockout).

        Returns:
            Dictionary mapping channel names to delivery success.
        """
        notice = Notice(severity=severity, title=title, message=message, dismissible=dismissible)
        results: dict[str, bool] = {}
        for channel in self._channels:
            if not channel.is_configured:
                logger.warning("Channel '%s' not configured, skipping", channel.name)
                results[channel.name] = False
                continue
            try:
                results[channel.name] = channel.send(notice)
            except Exception as exc:
                logger.error("Channel '%s' failed: %s", channel.name, exc)
                results[channel.name] = False
        return results
