"""
Transport Handle - one open serial port owned by a device session.

The handle is opened with pyserial-asyncio and exposes a small surface:
write, non-blocking read of buffered chunks, close, and two observers
(readable and closed). The closed observer fires exactly once per handle,
whether the close was requested locally or the device went away.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import serial
import serial_asyncio

from niimbot_bridge.core.logging import get_logger
from niimbot_bridge.core.utils import NotConnected, TransportUnavailable, WriteFailed
from niimbot_bridge.device.interface import SerialTransportProtocol

logger = get_logger()

DEFAULT_BAUD_RATE = 115200


class SerialTransportHandle:
    """
    Wrapper around a single serial connection.

    Use SerialTransportHandle.open() to create one; a handle is never
    reopened after it has been closed.
    """

    def __init__(self, endpoint: str, baud_rate: int = DEFAULT_BAUD_RATE):
        self.endpoint = endpoint
        self.baud_rate = baud_rate

        self._protocol: SerialTransportProtocol | None = None
        self._closed = False
        self._closed_event = asyncio.Event()
        self._close_callback: Callable[[Exception | None], None] | None = None
        self._readable_callback: Callable[[], None] | None = None

    @classmethod
    async def open(
        cls,
        endpoint: str,
        baud_rate: int = DEFAULT_BAUD_RATE,
    ) -> "SerialTransportHandle":
        """
        Open the serial port.

        Args:
            endpoint: Port path or name (e.g. /dev/ttyACM0 or COM7).
            baud_rate: Serial baud rate.

        Returns:
            An open handle.

        Raises:
            TransportUnavailable: If the port does not exist, is busy, or
                cannot be accessed.
        """
        handle = cls(endpoint, baud_rate)
        loop = asyncio.get_running_loop()

        def protocol_factory() -> SerialTransportProtocol:
            return SerialTransportProtocol(
                on_readable=handle._on_readable,
                on_connection_lost=handle._on_connection_lost,
            )

        try:
            _, protocol = await serial_asyncio.create_serial_connection(
                loop,
                protocol_factory,
                endpoint,
                baudrate=baud_rate,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            raise TransportUnavailable(f"Unable to open serial port {endpoint}: {e}") from e

        handle._protocol = protocol
        logger.info(f"Opened {endpoint} at {baud_rate} baud")
        return handle

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._protocol is not None
            and self._protocol.transport is not None
            and not self._protocol.transport.is_closing()
        )

    def on_close(self, callback: Callable[[Exception | None], None]) -> None:
        """Install the observer called once when the handle closes."""
        self._close_callback = callback

    def on_readable(self, callback: Callable[[], None]) -> None:
        """Install the observer called whenever inbound data was buffered."""
        self._readable_callback = callback

    def write(self, data: bytes) -> None:
        """
        Write bytes to the port.

        Raises:
            WriteFailed: If the handle is not open or the write fails.
        """
        if not self.is_open or self._protocol is None:
            raise WriteFailed(f"Serial port {self.endpoint} is not open")
        self._protocol.write(data)

    def read_available(self) -> bytes | None:
        """
        Return the next buffered chunk without blocking.

        Returns:
            The chunk, or None when nothing is currently buffered.

        Raises:
            NotConnected: If the handle was never opened.
        """
        if self._protocol is None:
            raise NotConnected(f"Serial port {self.endpoint} was never opened")
        return self._protocol.read_chunk()

    def close(self) -> None:
        """
        Request the port to close. Idempotent.

        The close notification arrives asynchronously; use wait_closed() to
        wait for it.
        """
        if self._closed:
            return

        if self._protocol is None or not self._protocol.close():
            # Nothing left to close, report the close right away
            self._on_connection_lost(None)

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    def _on_readable(self) -> None:
        if self._readable_callback:
            self._readable_callback()

    def _on_connection_lost(self, exc: Exception | None) -> None:
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()

        if exc:
            logger.info(f"Serial port {self.endpoint} lost: {exc}")
        else:
            logger.info(f"Serial port {self.endpoint} closed")

        if self._close_callback:
            self._close_callback(exc)
