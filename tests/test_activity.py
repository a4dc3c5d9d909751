"""Tests for the ActivityMonitor and LocalActivitySource."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import EMAIL, PASSWORD, T0

from sessionguard.auth.activity import (
    TRACKED_EVENTS,
    ActivityEvent,
    ActivityMonitor,
    LocalActivitySource,
)
from sessionguard.storage.secure_store import LAST_ACTIVITY
from sessionguard.core.clock import to_iso


class TestLocalActivitySource:
    """Tests for the in-process event bus."""

    def test_emit_reaches_listeners(self) -> None:
        source = LocalActivitySource()
        seen: list[ActivityEvent] = []
        source.add_listener(ActivityEvent.CLICK, seen.append)
        assert source.emit("click") == 1
        assert seen == [ActivityEvent.CLICK]

    def test_emit_unknown_event(self) -> None:
        with pytest.raises(ValueError):
            LocalActivitySource().emit("resize")

    def test_failing_listener_does_not_stop_others(self) -> None:
        source = LocalActivitySource()
        seen: list[ActivityEvent] = []

        def broken(event: ActivityEvent) -> None:
            raise RuntimeError("boom")

        source.add_listener(ActivityEvent.SCROLL, broken)
        source.add_listener(ActivityEvent.SCROLL, seen.append)
        assert source.emit(ActivityEvent.SCROLL) == 2
        assert seen == [ActivityEvent.SCROLL]

    def test_remove_listener(self) -> None:
        source = LocalActivitySource()
        source.add_listener(ActivityEvent.KEY_PRESS, print)
        source.remove_listener(ActivityEvent.KEY_PRESS, print)
        source.remove_listener(ActivityEvent.KEY_PRESS, print)
        assert source.listener_count() == 0


class TestActivityMonitor:
    """Tests for attaching the monitor to a guard."""

    def test_tracks_six_event_classes(self) -> None:
        assert {e.value for e in TRACKED_EVENTS} == {
            "pointerdown", "pointermove", "keypress", "scroll", "touchstart", "click",
        }

    def test_attach_registers_every_event(self, guard) -> None:
        source = LocalActivitySource()
        ActivityMonitor(guard, source).attach()
        assert source.listener_count() == len(TRACKED_EVENTS)
        for event in TRACKED_EVENTS:
            assert source.listener_count(event) == 1

    def test_attach_twice_is_idempotent(self, guard) -> None:
        source = LocalActivitySource()
        monitor = ActivityMonitor(guard, source)
        monitor.attach()
        monitor.attach()
        assert source.listener_count() == len(TRACKED_EVENTS)

    def test_detach_removes_every_listener(self, guard) -> None:
        source = LocalActivitySource()
        subscription = ActivityMonitor(guard, source).attach()
        subscription.detach()
        subscription.detach()
        assert source.listener_count() == 0
        assert not subscription.active

    def test_subscription_context_manager(self, guard) -> None:
        source = LocalActivitySource()
        with ActivityMonitor(guard, source).attach() as subscription:
            assert subscription.active
        assert source.listener_count() == 0

    def test_event_records_activity(self, guard, clock, storage) -> None:
        source = LocalActivitySource()
        monitor = ActivityMonitor(guard, source)
        monitor.attach()
        asyncio.run(guard.sign_in(EMAIL, PASSWORD))

        clock.advance(minutes=4)
        source.emit(ActivityEvent.POINTER_MOVE)

        assert monitor.events_seen == 1
        assert guard.last_activity == T0 + timedelta(minutes=4)
        assert storage.retrieve(LAST_ACTIVITY) == to_iso(T0 + timedelta(minutes=4))
        assert guard.session_expiry == T0 + timedelta(minutes=30)

    def test_events_while_signed_out_are_ignored(self, guard, storage) -> None:
        source = LocalActivitySource()
        monitor = ActivityMonitor(guard, source)
        monitor.attach()
        source.emit(ActivityEvent.CLICK)
        assert monitor.events_seen == 1
        assert guard.last_activity is None
        assert storage.retrieve(LAST_ACTIVITY) is None

    def test_guard_close_detaches(self, guard) -> None:
        source = LocalActivitySource()
        monitor = ActivityMonitor(guard, source)

        async def scenario() -> None:
            async with guard:
                monitor.attach()
                assert source.listener_count() == len(TRACKED_EVENTS)

        asyncio.run(scenario())
        assert source.listener_count() == 0
        assert not monitor.attached

    def test_reattach_registers_close_hook_once(self, guard) -> None:
        """Attach/detach cycles do not pile up teardown callbacks."""
        source = LocalActivitySource()
        monitor = ActivityMonitor(guard, source)
        for _ in range(3):
            monitor.attach()
            monitor.detach()
        monitor.attach()
        assert len(guard._closers) == 1

        asyncio.run(guard.close())
        assert not monitor.attached
        assert guard._closers == []

        monitor.attach()
        assert len(guard._closers) == 1
        assert source.listener_count() == len(TRACKED_EVENTS)

    def test_event_bursts_write_activity_once(self, guard, clock, storage) -> None:
        """Rapid events update memory at once but storage at most every 30 seconds."""
        source = LocalActivitySource()
        ActivityMonitor(guard, source).attach()
        asyncio.run(guard.sign_in(EMAIL, PASSWORD))
        clock.advance(minutes=1)
        source.emit(ActivityEvent.POINTER_MOVE)

        with patch.object(storage, "store", wraps=storage.store) as store:
            for _ in range(5):
                clock.advance(seconds=2)
                source.emit(ActivityEvent.POINTER_MOVE)
            assert store.call_count == 0
            assert guard.last_activity == T0 + timedelta(minutes=1, seconds=10)

            clock.advance(seconds=20)
            source.emit(ActivityEvent.SCROLL)
            store.assert_called_once_with(LAST_ACTIVITY, to_iso(T0 + timedelta(minutes=1, seconds=30)))
