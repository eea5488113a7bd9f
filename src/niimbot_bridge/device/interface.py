"""
Serial Protocol Interface - byte-level serial communication with the printer.

This module provides:
- SerialTransportProtocol: the asyncio.Protocol attached to the serial port by
  pyserial-asyncio. It buffers inbound chunks for non-blocking reads and
  reports readability and connection loss to its owner.
- DeviceProtocol: the capability interface a printer protocol implementation
  offers to a DeviceSession (decoding, negotiation, info retrieval, health
  check).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, cast

from niimbot_bridge.core.logging import bytes_to_hex, get_logger, log_packet_recv, log_packet_sent
from niimbot_bridge.core.utils import NotConnected, WriteFailed

if TYPE_CHECKING:
    from niimbot_bridge.device.session import DeviceSession

logger = get_logger()


class SerialTransportProtocol(asyncio.Protocol):
    """
    asyncio.Protocol implementation for the printer's serial port.

    Inbound data is not parsed here. Each received chunk is queued as-is and
    the owner is told the port became readable; the owner pulls the chunks
    with read_chunk() until it returns None.
    """

    def __init__(
        self,
        on_readable: Callable[[], None] | None = None,
        on_connection_lost: Callable[[Exception | None], None] | None = None,
    ):
        """
        Initialize the protocol.

        Args:
            on_readable: Called whenever a new chunk has been buffered.
            on_connection_lost: Called when the serial transport goes away.
        """
        self.on_readable = on_readable
        self.on_connection_lost = on_connection_lost
        self.transport: asyncio.Transport | None = None
        self._chunks: deque[bytes] = deque()

    def connection_made(self, transport) -> None:
        """Called when the connection is established."""
        self.transport = cast(asyncio.Transport, transport)
        logger.debug("Serial connection established")

    def connection_lost(self, exc: Exception | None) -> None:
        """Called when the connection is lost."""
        logger.debug(f"Serial connection lost: {exc}")
        self.transport = None

        if self.on_connection_lost:
            self.on_connection_lost(exc)

    def data_received(self, data: bytes) -> None:
        """
        Called when data is received from the serial device.

        Args:
            data: Raw bytes received from the serial device.
        """
        logger.verbose(f"Raw serial data received: {bytes_to_hex(data)}")
        log_packet_recv(data)

        self._chunks.append(data)

        if self.on_readable:
            self.on_readable()

    def read_chunk(self) -> bytes | None:
        """Pop the oldest buffered chunk, or None when nothing is buffered."""
        if not self._chunks:
            return None
        return self._chunks.popleft()

    def write(self, data: bytes) -> None:
        """
        Write data to the serial device.

        Args:
            data: The bytes to write.

        Raises:
            WriteFailed: If the transport is not available or rejects the data.
        """
        if not self.transport or self.transport.is_closing():
            raise WriteFailed("Cannot write data - transport not available")

        try:
            self.transport.write(data)
        except (OSError, RuntimeError) as e:
            raise WriteFailed(f"Serial write failed: {e}") from e

        log_packet_sent(data)
        logger.verbose(f"Raw serial data sent: {bytes_to_hex(data)}")

    def close(self) -> bool:
        """
        Close the serial connection.

        Returns:
            True if a close was started, False if there was nothing to close.
        """
        if self.transport and not self.transport.is_closing():
            self.transport.close()
            logger.debug("Serial connection closing")
            return True
        return False


class DeviceProtocol(ABC):
    """
    Printer protocol collaborator of a DeviceSession.

    The session knows nothing about packet contents. It hands every inbound
    chunk to data_received(), lets the protocol run negotiate() and
    fetch_info() while connecting, and starts/stops the health check around
    the connected period. Implementations send through session.send().
    """

    def __init__(self) -> None:
        self._session: DeviceSession | None = None

    def bind(self, session: DeviceSession) -> None:
        """Attach the protocol to the session it talks through."""
        self._session = session

    @property
    def session(self) -> DeviceSession:
        if self._session is None:
            raise NotConnected("Protocol is not bound to a session")
        return self._session

    def reset(self) -> None:
        """Drop per-connection state before a new transport is opened."""

    @abstractmethod
    def data_received(self, chunk: bytes) -> None:
        """Consume one inbound chunk, in arrival order."""

    @abstractmethod
    async def negotiate(self) -> int:
        """
        Run the initial handshake.

        Returns:
            The negotiation result code reported in the connect event.
        """

    @abstractmethod
    async def fetch_info(self) -> None:
        """Retrieve device information after a successful handshake."""

    def start_heartbeat(self) -> None:
        """Start the periodic health check, if the protocol has one."""

    def stop_heartbeat(self) -> None:
        """Stop the periodic health check. Must be safe to call at any time."""
