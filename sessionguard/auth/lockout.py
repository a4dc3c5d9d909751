# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Client-side lockout after repeated failed sign-ins."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from sessionguard.core.config import LOCKOUT_DURATION, MAX_ATTEMPTS

logger = logging.getLogger("sessionguard.auth")


@dataclass
class LockoutState:
    """Failed sign-in counters for one client."""

    failed_attempts: int = 0
    last_failed_at: Optional[datetime] = None


class LockoutTracker:
    """Counts consecutive failed sign-ins and enforces a lockout window.

    There is no background timer. The window is evaluated on demand and
    is_locked() resets the counters once it has elapsed.
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        lockout_seconds: int = LOCKOUT_DURATION,
    ) -> None:
        self._state = LockoutState()
        self._lock = threading.Lock()
        self._max_attempts = max_attempts
        self._lockout = timedelta(seconds=lockout_seconds)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def state(self) -> LockoutState:
        """Snapshot of the current counters."""
        with self._lock:
            return replace(self._state)

    def record_failure(self, now: datetime) -> None:
        """Record a failed sign-in attempt."""
        with self._lock:
            self._state.failed_attempts += 1
            self._state.last_failed_at = now
            if self._state.failed_attempts == self._max_attempts:
                logger.warning(
                    "Sign-in locked for %ds after %d failed attempts",
                    int(self._lockout.total_seconds()),
                    self._state.failed_attempts,
                )

    def record_success(self) -> None:
        """Reset counters after a successful sign-in."""
        with self._lock:
            self._state = LockoutState()

    def is_locked(self, now: datetime) -> bool:
        """Return True while the lockout window is active.

        Side effect: once the window has elapsed the counters are reset.
        """
        with self._lock:
            return self._locked_until(now) is not None

    def remaining_seconds(self, now: datetime) -> float:
        """Seconds until the lockout lifts, 0.0 when not locked."""
        with self._lock:
            until = self._locked_until(now)
            return (until - now).total_seconds() if until is not None else 0.0

    def remaining_minutes(self, now: datetime) -> int:
        """Whole minutes until the lockout lifts, rounded up."""
        remaining = self.remaining_seconds(now)
        return max(1, math.ceil(remaining / 60)) if remaining > 0 else 0

    def _locked_until(self, now: datetime) -> Optional[datetime]:
        state = self._state
        if state.failed_attempts < self._max_attempts or state.last_failed_at is None:
            return None
        until = state.last_failed_at + self._lockout
        if now < until:
            return until
        logger.info("Lockout window elapsed, resetting %d failed attempts", state.failed_attempts)
        self._state = LockoutState()
        return None
