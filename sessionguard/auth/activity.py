# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Activity monitor: turns user interaction events into activity timestamps.

The monitor listens to a fixed set of interaction events on an activity
source and forwards each one to the session guard, which records a
timestamp only while a session is live. Recording is idempotent, so no
debouncing is needed.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional, Protocol

from sessionguard.auth.guard import SessionGuard

logger = logging.getLogger("sessionguard.activity")


class ActivityEvent(str, Enum):
    """Interaction event classes that count as user activity."""

    POINTER_DOWN = "pointerdown"
    POINTER_MOVE = "pointermove"
    KEY_PRESS = "keypress"
    SCROLL = "scroll"
    TOUCH_START = "touchstart"
    CLICK = "click"


TRACKED_EVENTS: tuple[ActivityEvent, ...] = tuple(ActivityEvent)

ActivityListener = Callable[[ActivityEvent], None]


class ActivitySource(Protocol):
    """A stream of interaction events that listeners can subscribe to."""

    def add_listener(self, event: ActivityEvent, listener: ActivityListener) -> None: ...

    def remove_listener(self, event: ActivityEvent, listener: ActivityListener) -> None: ...


class LocalActivitySource:
    """In-process event bus. ``emit`` fans an event out to its listeners."""

    def __init__(self) -> None:
        self._listeners: dict[ActivityEvent, list[ActivityListener]] = {}
        self._lock = threading.Lock()

    def add_listener(self, event: ActivityEvent, listener: ActivityListener) -> None:
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: ActivityEvent, listener: ActivityListener) -> None:
        with self._lock:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(event, None)

    def listener_count(self, event: Optional[ActivityEvent] = None) -> int:
        with self._lock:
            if event is not None:
                return len(self._listeners.get(event, []))
            return sum(len(v) for v in self._listeners.values())

    def emit(self, event: ActivityEvent | str) -> int:
        """Deliver an event. Returns the number of listeners notified."""
        event = ActivityEvent(event)
        with self._lock:
            listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                listener(event)
            except Exception as exc:
                logger.error("Activity listener failed on %s: %s", event.value, exc)
        return len(listeners)


class ActivitySubscription:
    """Handle for an attached monitor. Detaching twice is a no-op."""

    def __init__(self, monitor: ActivityMonitor) -> None:
        self._monitor = monitor

    @property
    def active(self) -> bool:
        return self._monitor.attached

    def detach(self) -> None:
        self._monitor.detach()

    def __enter__(self) -> ActivitySubscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.detach()


class ActivityMonitor:
    """Feeds interaction events from a source into a session guard."""

    def __init__(
        self,
        guard: SessionGuard,
        source: ActivitySource,
        events: tuple[ActivityEvent, ...] = TRACKED_EVENTS,
    ) -> None:
        self._guard = guard
        self._source = source
        self._events = events
        self._attached = False
        self._close_hooked = False
        self.events_seen = 0

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self) -> ActivitySubscription:
        """Subscribe to every tracked event. Detached automatically on guard close."""
        if not self._attached:
            for event in self._events:
                self._source.add_listener(event, self._handle)
            self._attached = True
            if not self._close_hooked:
                self._guard.on_close(self._on_guard_close)
                self._close_hooked = True
            logger.debug("Activity monitor attached to %d event types", len(self._events))
        return ActivitySubscription(self)

    def detach(self) -> None:
        """Remove every listener this monitor added."""
        if not self._attached:
            return
        for event in self._events:
            self._source.remove_listener(event, self._handle)
        self._attached = False
        logger.debug("Activity monitor detached")

    def _on_guard_close(self) -> None:
        self._close_hooked = False
        self.detach()

    def _handle(self, event: ActivityEvent) -> None:
        self.events_seen += 1
        self._guard.record_activity()
