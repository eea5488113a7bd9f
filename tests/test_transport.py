"""Tests for the serial transport handle and its asyncio protocol."""

from unittest.mock import MagicMock, patch

import pytest
import serial

from niimbot_bridge.core.utils import NotConnected, TransportUnavailable, WriteFailed
from niimbot_bridge.device.interface import SerialTransportProtocol
from niimbot_bridge.device.transport import SerialTransportHandle


def make_transport():
    transport = MagicMock()
    transport.is_closing.return_value = False
    return transport


def fake_serial_connection(transport):
    """Build a create_serial_connection replacement wiring in the given transport."""

    async def create(loop, protocol_factory, url, baudrate=9600):
        protocol = protocol_factory()
        protocol.connection_made(transport)
        create.protocol = protocol
        create.url = url
        create.baudrate = baudrate
        return transport, protocol

    return create


class TestSerialTransportHandle:
    """Tests for SerialTransportHandle."""

    @pytest.mark.asyncio
    async def test_open(self):
        """Test that open() connects to the given port at the given baud rate."""
        transport = make_transport()
        create = fake_serial_connection(transport)

        with patch("serial_asyncio.create_serial_connection", create):
            handle = await SerialTransportHandle.open("/dev/ttyACM0", 115200)

        assert handle.is_open
        assert create.url == "/dev/ttyACM0"
        assert create.baudrate == 115200

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            serial.SerialException("could not open port COM7"),
            FileNotFoundError("No such file or directory"),
            PermissionError("Permission denied"),
        ],
    )
    async def test_open_failure(self, error):
        """Test that open failures are reported as TransportUnavailable."""

        async def create(*args, **kwargs):
            raise error

        with patch("serial_asyncio.create_serial_connection", create):
            with pytest.raises(TransportUnavailable, match="COM7"):
                await SerialTransportHandle.open("COM7")

    @pytest.mark.asyncio
    async def test_write(self):
        """Test that writes go to the underlying transport."""
        transport = make_transport()

        with patch("serial_asyncio.create_serial_connection", fake_serial_connection(transport)):
            handle = await SerialTransportHandle.open("/dev/ttyACM0")

        handle.write(b"\x55\x55")

        transport.write.assert_called_once_with(b"\x55\x55")

    @pytest.mark.asyncio
    async def test_write_rejected_by_transport(self):
        """Test that a transport error while writing becomes WriteFailed."""
        transport = make_transport()
        transport.write.side_effect = OSError("Input/output error")

        with patch("serial_asyncio.create_serial_connection", fake_serial_connection(transport)):
            handle = await SerialTransportHandle.open("/dev/ttyACM0")

        with pytest.raises(WriteFailed):
            handle.write(b"\x01")

    @pytest.mark.asyncio
    async def test_read_available(self):
        """Test that buffered chunks are returned in arrival order, then None."""
        transport = make_transport()
        create = fake_serial_connection(transport)
        readable = MagicMock()

        with patch("serial_asyncio.create_serial_connection", create):
            handle = await SerialTransportHandle.open("/dev/ttyACM0")
        handle.on_readable(readable)

        create.protocol.data_received(b"ab")
        create.protocol.data_received(b"cd")

        assert readable.call_count == 2
        assert handle.read_available() == b"ab"
        assert handle.read_available() == b"cd"
        assert handle.read_available() is None

    def test_read_before_open(self):
        """Test that reading from a handle that was never opened raises."""
        handle = SerialTransportHandle("/dev/ttyACM0")

        with pytest.raises(NotConnected):
            handle.read_available()

    @pytest.mark.asyncio
    async def test_close_notifies_once(self):
        """Test that the close observer fires once however often close is reported."""
        transport = make_transport()
        create = fake_serial_connection(transport)
        closed = MagicMock()

        with patch("serial_asyncio.create_serial_connection", create):
            handle = await SerialTransportHandle.open("/dev/ttyACM0")
        handle.on_close(closed)

        handle.close()
        transport.close.assert_called_once()
        closed.assert_not_called()

        # pyserial-asyncio reports the close through the protocol
        transport.is_closing.return_value = True
        create.protocol.connection_lost(None)
        create.protocol.connection_lost(None)
        handle.close()

        closed.assert_called_once_with(None)
        assert not handle.is_open
        await handle.wait_closed()

    @pytest.mark.asyncio
    async def test_device_lost(self):
        """Test that losing the device reports the error and blocks writes."""
        transport = make_transport()
        create = fake_serial_connection(transport)
        closed = MagicMock()

        with patch("serial_asyncio.create_serial_connection", create):
            handle = await SerialTransportHandle.open("/dev/ttyACM0")
        handle.on_close(closed)

        error = OSError("device reports readiness to read but returned no data")
        create.protocol.connection_lost(error)

        closed.assert_called_once_with(error)
        assert not handle.is_open
        with pytest.raises(WriteFailed):
            handle.write(b"\x01")

    @pytest.mark.asyncio
    async def test_close_when_transport_already_closing(self):
        """Test that close reports immediately when nothing is left to close."""
        transport = make_transport()
        create = fake_serial_connection(transport)
        closed = MagicMock()

        with patch("serial_asyncio.create_serial_connection", create):
            handle = await SerialTransportHandle.open("/dev/ttyACM0")
        handle.on_close(closed)

        transport.is_closing.return_value = True
        handle.close()

        closed.assert_called_once_with(None)
        await handle.wait_closed()


class TestSerialTransportProtocol:
    """Tests for SerialTransportProtocol."""

    def test_write_without_transport(self):
        """Test that writing before connection_made raises WriteFailed."""
        protocol = SerialTransportProtocol()

        with pytest.raises(WriteFailed):
            protocol.write(b"\x01")

    def test_connection_lost_clears_transport(self):
        """Test that connection_lost drops the transport and notifies the owner."""
        lost = MagicMock()
        protocol = SerialTransportProtocol(on_connection_lost=lost)
        protocol.connection_made(make_transport())

        protocol.connection_lost(None)

        assert protocol.transport is None
        lost.assert_called_once_with(None)

    def test_close_returns_whether_close_started(self):
        """Test that close() only closes an open transport."""
        transport = make_transport()
        protocol = SerialTransportProtocol()

        assert protocol.close() is False

        protocol.connection_made(transport)
        assert protocol.close() is True
        transport.close.assert_called_once()
