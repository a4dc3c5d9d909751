"""Shared fixtures: a controllable clock and a wired-up guard."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sessionguard.alerts.channels import InboxChannel
from sessionguard.alerts.manager import NoticeManager
from sessionguard.auth.guard import SessionGuard
from sessionguard.auth.lockout import LockoutTracker
from sessionguard.auth.memory_provider import InMemoryAuthProvider
from sessionguard.storage.secure_store import SecureStore

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

EMAIL = "owner@example.com"
PASSWORD = "Correct-Horse1"


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now += timedelta(**kwargs)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def provider() -> InMemoryAuthProvider:
    p = InMemoryAuthProvider(bcrypt_rounds=4)
    p.add_user(EMAIL, PASSWORD)
    return p


@pytest.fixture
def storage() -> SecureStore:
    return SecureStore()


@pytest.fixture
def inbox() -> InboxChannel:
    return InboxChannel()


@pytest.fixture
def lockout() -> LockoutTracker:
    return LockoutTracker()


@pytest.fixture
def guard(provider, storage, clock, inbox, lockout) -> SessionGuard:
    return SessionGuard(
        provider=provider,
        storage=storage,
        clock=clock,
        lockout=lockout,
        notices=NoticeManager([inbox]),
    )
