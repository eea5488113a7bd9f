"""
Event registry for session lifecycle and printer protocol events.

Listeners are kept in an explicit mapping of event name to an ordered list
of callbacks. Dispatch happens in subscription order. A failing listener is
logged and never affects the emitter or the remaining listeners; coroutine
listeners are scheduled on the running loop instead of being awaited.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from niimbot_bridge.core.logging import get_logger

if TYPE_CHECKING:
    from niimbot_bridge.device.session import ConnectionInfo
    from niimbot_bridge.printer.packet import Packet

logger = get_logger()

Listener = Callable[[Any], Any]

CONNECT = "connect"
DISCONNECT = "disconnect"
RAW_PACKET_SENT = "raw_packet_sent"
PACKET_SENT = "packet_sent"
PACKET_RECEIVED = "packet_received"
HEARTBEAT = "heartbeat"
HEARTBEAT_FAILED = "heartbeat_failed"


@dataclass
class ConnectEvent:
    info: ConnectionInfo


@dataclass
class DisconnectEvent:
    pass


@dataclass
class RawPacketSentEvent:
    data: bytes


@dataclass
class PacketSentEvent:
    packet: Packet


@dataclass
class PacketReceivedEvent:
    packet: Packet


@dataclass
class HeartbeatEvent:
    packet: Packet


@dataclass
class HeartbeatFailedEvent:
    failed_attempts: int


@dataclass
class EventRegistry:
    """
    Explicit subscription registry.

    Attributes:
        listeners: Mapping of event name to its callbacks, in subscription order.
    """

    listeners: dict[str, list[Listener]] = field(default_factory=dict)
    _background_tasks: set[asyncio.Task] = field(default_factory=set, repr=False)

    def on(self, event: str, listener: Listener) -> None:
        """Subscribe a listener to an event."""
        self.listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        """
        Remove a listener. Removing a listener that is not subscribed is a no-op.
        """
        callbacks = self.listeners.get(event)
        if not callbacks:
            return
        try:
            callbacks.remove(listener)
        except ValueError:
            return
        if not callbacks:
            del self.listeners[event]

    def once(self, event: str, listener: Listener) -> Listener:
        """
        Subscribe a listener that removes itself after the first call.

        Returns:
            The wrapper actually registered, usable with off().
        """

        def wrapper(payload: Any) -> Any:
            self.off(event, wrapper)
            return listener(payload)

        self.on(event, wrapper)
        return wrapper

    def listener_count(self, event: str) -> int:
        return len(self.listeners.get(event, []))

    def emit(self, event: str, payload: Any = None) -> None:
        """
        Dispatch an event to its listeners.

        Args:
            event: Event name.
            payload: Event object handed to every listener.
        """
        # Copy so listeners may unsubscribe during dispatch
        for listener in list(self.listeners.get(event, [])):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                logger.exception(f"Listener for '{event}' event failed: {e}")

    def clear(self) -> None:
        self.listeners.clear()

    def _schedule(self, event: str, awaitable: Any) -> None:
        async def run() -> None:
            try:
                await awaitable
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Async listener for '{event}' event failed: {e}")

        task = asyncio.get_running_loop().create_task(run())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
