"""Shared fakes for the session tests."""

import asyncio
from collections import deque
from collections.abc import Callable

import pytest

from niimbot_bridge.core.utils import TransportUnavailable, WriteFailed
from niimbot_bridge.device.interface import DeviceProtocol
from niimbot_bridge.device.session import DeviceSession
from niimbot_bridge.printer.packet import (
    ConnectResult,
    Packet,
    PrinterInfoType,
    RequestCommandId,
    ResponseCommandId,
)


class FakeTransportHandle:
    """In-memory stand-in for SerialTransportHandle."""

    def __init__(self, endpoint: str, baud_rate: int = 115200):
        self.endpoint = endpoint
        self.baud_rate = baud_rate
        self.written: list[bytes] = []
        self.write_times: list[float] = []
        self.close_calls = 0
        self.fail_writes = False

        self._chunks: deque[bytes] = deque()
        self._closed = False
        self._closed_event = asyncio.Event()
        self._close_callback = None
        self._readable_callback = None

    @property
    def is_open(self) -> bool:
        return not self._closed

    def on_close(self, callback) -> None:
        self._close_callback = callback

    def on_readable(self, callback) -> None:
        self._readable_callback = callback

    def write(self, data: bytes) -> None:
        if self._closed or self.fail_writes:
            raise WriteFailed("fake write failed")
        self.written.append(bytes(data))
        self.write_times.append(asyncio.get_running_loop().time())

    def read_available(self) -> bytes | None:
        if not self._chunks:
            return None
        return self._chunks.popleft()

    def close(self) -> None:
        self.close_calls += 1
        if self._closed:
            return
        # Like pyserial-asyncio, connection loss is reported on the next loop iteration
        asyncio.get_running_loop().call_soon(self._connection_lost, None)

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    def feed(self, data: bytes) -> None:
        """Simulate bytes arriving from the device."""
        self._chunks.append(bytes(data))
        if self._readable_callback:
            self._readable_callback()

    def unplug(self) -> None:
        """Simulate the device going away."""
        self._connection_lost(OSError("device disconnected"))

    def _connection_lost(self, exc: Exception | None) -> None:
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()
        if self._close_callback:
            self._close_callback(exc)


Responder = Callable[[Packet], list[Packet]]


class FakePrinterHandle(FakeTransportHandle):
    """Fake handle that answers Niimbot packets through a responder."""

    def __init__(self, endpoint: str, baud_rate: int = 115200, responder: Responder | None = None):
        super().__init__(endpoint, baud_rate)
        self.responder = responder
        self.requests: list[Packet] = []

    def write(self, data: bytes) -> None:
        super().write(data)
        packet = Packet.from_bytes(data)
        self.requests.append(packet)
        if self.responder:
            loop = asyncio.get_running_loop()
            for reply in self.responder(packet):
                loop.call_soon(self.feed, reply.to_bytes())


def printer_responder(
    connect_result: int = ConnectResult.CONNECTED,
    info: dict[int, bytes | None] | None = None,
    answer_connect: bool = True,
    answer_heartbeat: bool = True,
) -> Responder:
    """
    Build a responder emulating a printer.

    Args:
        connect_result: Result byte of the connect answer.
        info: Printer info payload per key; None answers NOT_SUPPORTED and a
            missing key is never answered.
        answer_connect: Whether the connect request is answered at all.
        answer_heartbeat: Whether heartbeats are answered.
    """
    if info is None:
        info = {
            PrinterInfoType.PRINTER_MODEL_ID: b"\x08\x01",
            PrinterInfoType.SOFTWARE_VERSION: b"\x01\x2c",
            PrinterInfoType.HARDWARE_VERSION: b"\x00\x64",
            PrinterInfoType.SERIAL_NUMBER: b"H123456789",
            PrinterInfoType.BATTERY_CHARGE_LEVEL: b"\x04",
        }

    def respond(packet: Packet) -> list[Packet]:
        if packet.command == RequestCommandId.CONNECT:
            if not answer_connect:
                return []
            return [Packet(ResponseCommandId.CONNECT, bytes([connect_result]))]

        if packet.command == RequestCommandId.PRINTER_INFO:
            key = packet.data[0]
            if key not in info:
                return []
            payload = info[key]
            if payload is None:
                return [Packet(ResponseCommandId.NOT_SUPPORTED, b"")]
            return [Packet(RequestCommandId.PRINTER_INFO + key, payload)]

        if packet.command == RequestCommandId.HEARTBEAT and answer_heartbeat:
            return [Packet(ResponseCommandId.HEARTBEAT_ADVANCED_1, b"\x00" * 10)]

        return []

    return respond


class FakeTransportFactory:
    """Transport opener recording every handle it creates."""

    def __init__(self, handle_factory: Callable[[str, int], FakeTransportHandle] | None = None):
        self.handle_factory = handle_factory or FakeTransportHandle
        self.handles: list[FakeTransportHandle] = []
        self.unavailable: set[str] = set()
        # Number of live handles seen at each open, before the new one
        self.live_at_open: list[int] = []

    async def __call__(self, endpoint: str, baud_rate: int) -> FakeTransportHandle:
        if endpoint in self.unavailable:
            raise TransportUnavailable(f"Unable to open serial port {endpoint}")

        self.live_at_open.append(len(self.live_handles()))
        handle = self.handle_factory(endpoint, baud_rate)
        self.handles.append(handle)
        return handle

    def live_handles(self) -> list[FakeTransportHandle]:
        return [h for h in self.handles if h.is_open]


class FakeProtocol(DeviceProtocol):
    """Protocol collaborator recording what the session asks of it."""

    def __init__(
        self,
        result: int = ConnectResult.CONNECTED,
        negotiate_error: Exception | None = None,
        info_error: Exception | None = None,
        handshake: bytes | None = b"hello",
    ):
        super().__init__()
        self.result = result
        self.negotiate_error = negotiate_error
        self.info_error = info_error
        self.handshake = handshake

        self.chunks: list[bytes] = []
        self.heartbeat_running = False
        self.stop_heartbeat_calls = 0
        self.reset_calls = 0
        self.info_fetched = False

    def reset(self) -> None:
        self.reset_calls += 1

    def data_received(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    async def negotiate(self) -> int:
        if self.handshake is not None:
            await self.session.send(self.handshake)
        if self.negotiate_error:
            raise self.negotiate_error
        return self.result

    async def fetch_info(self) -> None:
        if self.info_error:
            raise self.info_error
        self.info_fetched = True

    def start_heartbeat(self) -> None:
        self.heartbeat_running = True

    def stop_heartbeat(self) -> None:
        self.stop_heartbeat_calls += 1
        self.heartbeat_running = False


class EventRecorder:
    """Listener collecting every payload it receives."""

    def __init__(self) -> None:
        self.events: list = []

    def __call__(self, payload) -> None:
        self.events.append(payload)

    def __len__(self) -> int:
        return len(self.events)


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def protocol():
    return FakeProtocol()


@pytest.fixture
def session(protocol, transport_factory):
    return DeviceSession(
        protocol=protocol,
        endpoint="/dev/ttyACM0",
        packet_interval=0,
        transport_opener=transport_factory,
    )
