"""
Device Session - connection state machine for a serial label printer.

This module provides the DeviceSession class which owns the transport
handle, the exclusive writer and the read loop, sequences connect and
disconnect, and publishes lifecycle events. Packet contents are left to the
DeviceProtocol collaborator.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from niimbot_bridge.core.events import (
    CONNECT,
    DISCONNECT,
    ConnectEvent,
    DisconnectEvent,
    EventRegistry,
)
from niimbot_bridge.core.logging import get_logger
from niimbot_bridge.core.utils import EndpointNotSet, NotConnected, WriteFailed
from niimbot_bridge.device.interface import DeviceProtocol
from niimbot_bridge.device.reader import ReadLoop
from niimbot_bridge.device.transport import DEFAULT_BAUD_RATE, SerialTransportHandle
from niimbot_bridge.device.writer import DEFAULT_PACKET_INTERVAL, ExclusiveWriter

logger = get_logger()

TransportOpener = Callable[[str, int], Awaitable[SerialTransportHandle]]


class ConnectionStatus(Enum):
    """Connection states of a DeviceSession."""

    DISCONNECTED = "disconnected"
    OPENING = "opening"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"


@dataclass
class ConnectionInfo:
    """
    Result of a successful connect.

    Attributes:
        device_name: Human-readable endpoint label, e.g. "Serial (/dev/ttyACM0)".
        result: Negotiation result code reported by the printer.
    """

    device_name: str
    result: int


class DeviceSession:
    """
    A session with one serial printer.

    Transitions: DISCONNECTED -> OPENING -> NEGOTIATING -> CONNECTED, and back
    to DISCONNECTED from any state on disconnect(), on transport close, or
    when negotiation fails. The session never holds more than one transport
    handle and never reconnects on its own.
    """

    def __init__(
        self,
        protocol: DeviceProtocol,
        endpoint: str | None = None,
        baud_rate: int = DEFAULT_BAUD_RATE,
        packet_interval: float = DEFAULT_PACKET_INTERVAL,
        events: EventRegistry | None = None,
        transport_opener: TransportOpener = SerialTransportHandle.open,
    ):
        """
        Initialize the session.

        Args:
            protocol: Printer protocol collaborator; it is bound to this session.
            endpoint: Serial port path; can also be set later with set_endpoint().
            baud_rate: Serial baud rate.
            packet_interval: Minimum delay in ms between gated writes.
            events: Event registry to publish on. A new one is created if None.
            transport_opener: Coroutine function opening a transport handle.
        """
        self.baud_rate = baud_rate
        self.events = events if events is not None else EventRegistry()
        self.protocol = protocol
        self.last_error: BaseException | None = None

        self._endpoint = endpoint
        self._status = ConnectionStatus.DISCONNECTED
        self._open_transport = transport_opener
        self._handle: SerialTransportHandle | None = None
        self._read_loop: ReadLoop | None = None
        self._connect_lock = asyncio.Lock()
        # Bumped by every disconnect() so an open in flight can tell it was cancelled
        self._disconnects = 0
        self._writer = ExclusiveWriter(
            is_writable=self._can_write,
            write=self._write_raw,
            packet_interval=packet_interval,
            events=self.events,
        )

        protocol.bind(self)

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    def set_endpoint(self, endpoint: str) -> None:
        """Set the serial port used by the next connect()."""
        self._endpoint = endpoint

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        """True only once negotiation and info fetch have succeeded."""
        return self._status == ConnectionStatus.CONNECTED

    @property
    def writer(self) -> ExclusiveWriter:
        return self._writer

    async def connect(self, endpoint: str | None = None) -> ConnectionInfo:
        """
        Open the port and bring the session up.

        Concurrent calls are served one after the other. Any previous
        connection is fully torn down before the new port is opened.

        Args:
            endpoint: Overrides the configured endpoint if given.

        Returns:
            ConnectionInfo with the endpoint label and negotiation result.

        Raises:
            EndpointNotSet: If no endpoint is configured.
            TransportUnavailable: If the port cannot be opened.
            NegotiationError: Or any other error raised by the protocol
                collaborator; the port is closed before it propagates.
        """
        async with self._connect_lock:
            if endpoint is not None:
                self.set_endpoint(endpoint)

            await self.disconnect()

            if not self._endpoint:
                raise EndpointNotSet("Port not set")

            disconnects = self._disconnects
            self._status = ConnectionStatus.OPENING
            logger.debug(f"Opening {self._endpoint}")

            try:
                handle = await self._open_transport(self._endpoint, self.baud_rate)
            except BaseException as e:
                self._status = ConnectionStatus.DISCONNECTED
                self.last_error = e
                raise

            if self._disconnects != disconnects:
                logger.info(f"Disconnect requested while opening {self._endpoint}, closing it")
                handle.close()
                await handle.wait_closed()
                self._status = ConnectionStatus.DISCONNECTED
                raise NotConnected("Disconnected while opening the port")

            self._handle = handle
            self._status = ConnectionStatus.NEGOTIATING
            self.protocol.reset()

            read_loop = ReadLoop(handle.read_available, self.protocol.data_received)
            self._read_loop = read_loop
            handle.on_close(lambda exc: self._on_transport_closed(handle, exc))
            handle.on_readable(lambda: self._on_transport_readable(handle))

            # Pick up anything that arrived before the observer was installed
            read_loop.on_readable()

            try:
                result = await self.protocol.negotiate()
                await self.protocol.fetch_info()

                if self._handle is not handle:
                    raise NotConnected("Transport closed during negotiation")

            except BaseException as e:
                logger.warning(f"Negotiation with {self._endpoint} failed: {e!r}")
                self.last_error = e
                await self.disconnect()
                raise

            self._status = ConnectionStatus.CONNECTED
            self.last_error = None

            info = ConnectionInfo(device_name=f"Serial ({self._endpoint})", result=result)
            logger.info(f"Connected to {info.device_name}, result code {info.result}")

            self.protocol.start_heartbeat()
            self.events.emit(CONNECT, ConnectEvent(info))
            return info

    async def disconnect(self) -> None:
        """
        Stop the health check and close the port.

        A connect() still opening the port is abandoned: the port it opens is
        closed and that connect() raises NotConnected. Safe to call when
        already disconnected or never connected.
        """
        self._disconnects += 1
        self.protocol.stop_heartbeat()

        handle = self._handle
        if handle is None:
            self._status = ConnectionStatus.DISCONNECTED
            return

        handle.close()
        await handle.wait_closed()

    async def send(self, data: bytes, bypass_queue: bool = False) -> None:
        """
        Send raw bytes to the printer.

        Args:
            data: Bytes to send.
            bypass_queue: Write immediately, skipping the gate and the packet
                interval. Ordering against queued writes is undefined.

        Raises:
            NotConnected: If the session has no open transport.
            WriteFailed: If the transport rejected the write.
        """
        await self._writer.send(data, bypass_queue=bypass_queue)

    def _can_write(self) -> bool:
        return (
            self._status in (ConnectionStatus.NEGOTIATING, ConnectionStatus.CONNECTED)
            and self._handle is not None
            and self._handle.is_open
        )

    def _write_raw(self, data: bytes) -> None:
        handle = self._handle
        if handle is None:
            raise WriteFailed("Serial port is not open")
        handle.write(data)

    def _on_transport_readable(self, handle: SerialTransportHandle) -> None:
        if handle is not self._handle or self._read_loop is None:
            return
        self._read_loop.on_readable()

    def _on_transport_closed(self, handle: SerialTransportHandle, exc: Exception | None) -> None:
        # Late notification from a handle this session already replaced
        if handle is not self._handle:
            return

        self._handle = None
        self._read_loop = None
        self._status = ConnectionStatus.DISCONNECTED

        self.protocol.stop_heartbeat()
        self._writer.stop()

        logger.info(f"Disconnected from {handle.endpoint}")
        self.events.emit(DISCONNECT, DisconnectEvent())

    async def __aenter__(self) -> "DeviceSession":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.disconnect()
