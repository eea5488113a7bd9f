"""Tests for the event registry."""

import asyncio

import pytest

from conftest import EventRecorder
from niimbot_bridge.core.events import CONNECT, DISCONNECT, EventRegistry


class TestEventRegistry:
    """Tests for subscribing and dispatching."""

    def test_dispatch_in_subscription_order(self):
        """Test that listeners run in the order they subscribed."""
        events = EventRegistry()
        calls = []
        events.on(CONNECT, lambda payload: calls.append(("first", payload)))
        events.on(CONNECT, lambda payload: calls.append(("second", payload)))

        events.emit(CONNECT, "info")

        assert calls == [("first", "info"), ("second", "info")]

    def test_emit_without_listeners(self):
        """Test that emitting an event nobody listens to does nothing."""
        EventRegistry().emit(DISCONNECT)

    def test_off(self):
        """Test that an unsubscribed listener no longer receives events."""
        events = EventRegistry()
        recorder = EventRecorder()
        events.on(DISCONNECT, recorder)

        events.off(DISCONNECT, recorder)
        events.emit(DISCONNECT)

        assert len(recorder) == 0
        assert events.listener_count(DISCONNECT) == 0
        assert DISCONNECT not in events.listeners

    def test_off_unknown_listener(self):
        """Test that removing a listener that never subscribed is a no-op."""
        events = EventRegistry()
        events.on(CONNECT, EventRecorder())

        events.off(CONNECT, EventRecorder())
        events.off(DISCONNECT, EventRecorder())

        assert events.listener_count(CONNECT) == 1

    def test_once(self):
        """Test that a once listener only sees the first event."""
        events = EventRegistry()
        recorder = EventRecorder()
        events.once(CONNECT, recorder)

        events.emit(CONNECT, 1)
        events.emit(CONNECT, 2)

        assert recorder.events == [1]
        assert events.listener_count(CONNECT) == 0

    def test_failing_listener_is_isolated(self, caplog):
        """Test that a failing listener does not stop the others or the emitter."""
        events = EventRegistry()
        recorder = EventRecorder()

        def broken(payload):
            raise RuntimeError("listener bug")

        events.on(DISCONNECT, broken)
        events.on(DISCONNECT, recorder)

        events.emit(DISCONNECT, "payload")

        assert recorder.events == ["payload"]
        assert "listener bug" in caplog.text

    def test_unsubscribe_during_dispatch(self):
        """Test that a listener may remove itself while the event is dispatched."""
        events = EventRegistry()
        recorder = EventRecorder()

        def remove_self(payload):
            events.off(CONNECT, remove_self)

        events.on(CONNECT, remove_self)
        events.on(CONNECT, recorder)

        events.emit(CONNECT, "x")

        assert recorder.events == ["x"]
        assert events.listener_count(CONNECT) == 1

    @pytest.mark.asyncio
    async def test_async_listener_is_scheduled(self):
        """Test that coroutine listeners run on the loop without blocking emit."""
        events = EventRegistry()
        done = asyncio.Event()
        seen = []

        async def listener(payload):
            seen.append(payload)
            done.set()

        events.on(CONNECT, listener)
        events.emit(CONNECT, "info")

        assert seen == []
        await asyncio.wait_for(done.wait(), 1)
        assert seen == ["info"]

    @pytest.mark.asyncio
    async def test_failing_async_listener_is_logged(self, caplog):
        """Test that a failing coroutine listener is logged, not raised."""
        events = EventRegistry()

        async def broken(payload):
            raise RuntimeError("async listener bug")

        events.on(DISCONNECT, broken)
        events.emit(DISCONNECT)
        await asyncio.sleep(0.01)

        assert "async listener bug" in caplog.text

    def test_clear(self):
        events = EventRegistry()
        events.on(CONNECT, EventRecorder())
        events.on(DISCONNECT, EventRecorder())

        events.clear()

        assert events.listeners == {}
