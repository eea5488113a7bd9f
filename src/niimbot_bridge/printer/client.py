"""
Niimbot Protocol - negotiation, printer info and heartbeat over a DeviceSession.

This module provides the NiimbotProtocol class, the DeviceProtocol
implementation for Niimbot label printers, plus helpers that build a
ready-to-use serial session from configuration.
"""

import asyncio
import string
from dataclasses import asdict, dataclass
from typing import Any

from niimbot_bridge.core.config import DeviceConfig
from niimbot_bridge.core.events import (
    HEARTBEAT,
    HEARTBEAT_FAILED,
    PACKET_RECEIVED,
    PACKET_SENT,
    HeartbeatEvent,
    HeartbeatFailedEvent,
    PacketReceivedEvent,
    PacketSentEvent,
)
from niimbot_bridge.core.logging import get_logger
from niimbot_bridge.core.utils import HandshakeFailed, InfoFetchFailed, SessionError
from niimbot_bridge.device.interface import DeviceProtocol
from niimbot_bridge.device.session import DeviceSession
from niimbot_bridge.printer.decoder import PacketDecoder
from niimbot_bridge.printer.packet import (
    HEARTBEAT_RESPONSE_IDS,
    ConnectResult,
    Packet,
    PrinterInfoType,
    RequestCommandId,
    ResponseCommandId,
)

logger = get_logger()

DEFAULT_NEGOTIATION_TIMEOUT = 1000.0  # ms
DEFAULT_INFO_TIMEOUT = 1000.0  # ms
DEFAULT_HEARTBEAT_INTERVAL = 2000.0  # ms
DEFAULT_HEARTBEAT_MAX_FAILS = 5

# Info keys queried while connecting, in order
INFO_KEYS = (
    PrinterInfoType.PRINTER_MODEL_ID,
    PrinterInfoType.SOFTWARE_VERSION,
    PrinterInfoType.HARDWARE_VERSION,
    PrinterInfoType.SERIAL_NUMBER,
    PrinterInfoType.BATTERY_CHARGE_LEVEL,
)


@dataclass
class PrinterInfo:
    """Printer details collected during connect."""

    connect_result: int | None = None
    model_id: int | None = None
    software_version: str | None = None
    hardware_version: str | None = None
    serial_number: str | None = None
    battery_charge_level: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _decode_u16(data: bytes) -> int | None:
    if len(data) >= 2:
        return int.from_bytes(data[:2], "big")
    if len(data) == 1:
        return data[0]
    return None


def _decode_version(data: bytes) -> str | None:
    value = _decode_u16(data)
    if value is None:
        return None
    return f"{value / 100:.2f}"


def _decode_serial(data: bytes) -> str | None:
    if not data:
        return None
    text = data.decode("ascii", errors="replace")
    if all(c in string.printable for c in text):
        return text.strip()
    return data.hex()


class NiimbotProtocol(DeviceProtocol):
    """
    DeviceProtocol for Niimbot printers.

    Inbound chunks are framed by a PacketDecoder. Requests that expect an
    answer register a waiter before they are sent, so a fast response cannot
    be missed. Every decoded packet is published as packet_received.
    """

    def __init__(
        self,
        negotiation_timeout: float = DEFAULT_NEGOTIATION_TIMEOUT,
        info_timeout: float = DEFAULT_INFO_TIMEOUT,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        heartbeat_timeout: float | None = None,
    ):
        """
        Initialize the protocol.

        Args:
            negotiation_timeout: Time in ms to wait for the connect answer.
            info_timeout: Time in ms to wait for each printer info answer.
            heartbeat_interval: Period in ms between heartbeats. 0 disables them.
            heartbeat_timeout: Time in ms to wait for a heartbeat answer.
                Defaults to heartbeat_interval.
        """
        super().__init__()
        self.negotiation_timeout = negotiation_timeout / 1000
        self.info_timeout = info_timeout / 1000
        self.heartbeat_interval = heartbeat_interval / 1000
        self.heartbeat_timeout = (
            heartbeat_timeout / 1000 if heartbeat_timeout is not None else self.heartbeat_interval
        )

        self.decoder = PacketDecoder(on_packet=self._on_packet)
        self.info = PrinterInfo()
        self.heartbeat_fails = 0

        self._waiters: list[tuple[frozenset[int], asyncio.Future[Packet]]] = []
        self._heartbeat_task: asyncio.Task | None = None

    def reset(self) -> None:
        self.decoder.reset()
        self.info = PrinterInfo()
        self.heartbeat_fails = 0
        for _, future in self._waiters:
            future.cancel()
        self._waiters.clear()

    def data_received(self, chunk: bytes) -> None:
        self.decoder.feed(chunk)

    async def send_packet(self, packet: Packet, bypass_queue: bool = False) -> None:
        """Send one packet through the session's writer."""
        await self.session.send(packet.to_bytes(), bypass_queue=bypass_queue)
        logger.verbose(f">> {packet}")
        self.session.events.emit(PACKET_SENT, PacketSentEvent(packet))

    async def send_and_wait(
        self,
        packet: Packet,
        response_ids: frozenset[int] | set[int],
        timeout: float,
    ) -> Packet:
        """
        Send a packet and wait for the first packet with one of the given ids.

        Args:
            packet: Request to send.
            response_ids: Command ids accepted as the answer.
            timeout: Time in seconds to wait for the answer.

        Returns:
            The answer packet.

        Raises:
            asyncio.TimeoutError: If no answer arrives in time.
            NotConnected: If the session cannot send.
        """
        future: asyncio.Future[Packet] = asyncio.get_running_loop().create_future()
        waiter = (frozenset(response_ids), future)
        self._waiters.append(waiter)

        try:
            await self.send_packet(packet)
            return await asyncio.wait_for(future, timeout)
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    async def negotiate(self) -> int:
        """
        Send the connect request and return the printer's result code.

        Raises:
            HandshakeFailed: If the printer does not answer in time or refuses.
        """
        try:
            answer = await self.send_and_wait(
                Packet(RequestCommandId.CONNECT, b"\x01"),
                {ResponseCommandId.CONNECT},
                self.negotiation_timeout,
            )
        except asyncio.TimeoutError as e:
            raise HandshakeFailed(
                f"No answer to connect request within {self.negotiation_timeout * 1000:.0f}ms"
            ) from e

        result = answer.data[0] if answer.data else ConnectResult.FIRMWARE_ERRORS
        self.info.connect_result = result

        if result == ConnectResult.DISCONNECT:
            raise HandshakeFailed("Printer refused the connection")

        logger.debug(f"Negotiated, connect result {result}")
        return result

    async def fetch_info(self) -> None:
        """
        Query the printer info keys in INFO_KEYS.

        Keys the printer answers with NOT_SUPPORTED are left as None.

        Raises:
            InfoFetchFailed: If any key is not answered within info_timeout.
        """
        for key in INFO_KEYS:
            try:
                answer = await self.send_and_wait(
                    Packet(RequestCommandId.PRINTER_INFO, bytes([key])),
                    {key.response_id, ResponseCommandId.NOT_SUPPORTED},
                    self.info_timeout,
                )
            except asyncio.TimeoutError as e:
                raise InfoFetchFailed(
                    f"Printer did not report {key.name} within {self.info_timeout * 1000:.0f}ms"
                ) from e

            if answer.command == ResponseCommandId.NOT_SUPPORTED:
                logger.debug(f"Printer info {key.name} not supported")
                continue

            self._store_info(key, answer.data)

        logger.debug(f"Printer info: {self.info}")

    def _store_info(self, key: PrinterInfoType, data: bytes) -> None:
        if key == PrinterInfoType.PRINTER_MODEL_ID:
            self.info.model_id = _decode_u16(data)
        elif key == PrinterInfoType.SOFTWARE_VERSION:
            self.info.software_version = _decode_version(data)
        elif key == PrinterInfoType.HARDWARE_VERSION:
            self.info.hardware_version = _decode_version(data)
        elif key == PrinterInfoType.SERIAL_NUMBER:
            self.info.serial_number = _decode_serial(data)
        elif key == PrinterInfoType.BATTERY_CHARGE_LEVEL:
            self.info.battery_charge_level = data[0] if data else None

    def start_heartbeat(self) -> None:
        """Start the heartbeat loop. Does nothing when heartbeat_interval is 0."""
        self.stop_heartbeat()
        self.heartbeat_fails = 0

        if self.heartbeat_interval == 0:
            logger.info("Heartbeat disabled (heartbeat_interval is 0)")
            return

        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())

    def stop_heartbeat(self) -> None:
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _heartbeat_loop(self) -> None:
        """
        Send a heartbeat every heartbeat_interval.

        A missing or failed answer emits heartbeat_failed with the number of
        consecutive failures; an answer resets the count and emits heartbeat.
        The loop never disconnects by itself, see attach_failure_policy().
        """
        logger.debug(f"Heartbeat started (period: {self.heartbeat_interval * 1000:.0f}ms)")

        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval)

                try:
                    answer = await self.send_and_wait(
                        Packet(RequestCommandId.HEARTBEAT, b"\x01"),
                        HEARTBEAT_RESPONSE_IDS,
                        self.heartbeat_timeout,
                    )
                except (asyncio.TimeoutError, SessionError) as e:
                    self.heartbeat_fails += 1
                    logger.debug(f"Heartbeat failed ({self.heartbeat_fails}): {e!r}")
                    self.session.events.emit(
                        HEARTBEAT_FAILED, HeartbeatFailedEvent(self.heartbeat_fails)
                    )
                    continue

                self.heartbeat_fails = 0
                self.session.events.emit(HEARTBEAT, HeartbeatEvent(answer))

        except asyncio.CancelledError:
            logger.debug("Heartbeat stopped")

    def _on_packet(self, packet: Packet) -> None:
        logger.verbose(f"<< {packet}")
        self.session.events.emit(PACKET_RECEIVED, PacketReceivedEvent(packet))

        for waiter in self._waiters:
            response_ids, future = waiter
            if packet.command in response_ids and not future.done():
                future.set_result(packet)
                self._waiters.remove(waiter)
                break


def attach_failure_policy(
    session: DeviceSession,
    max_fails: int = DEFAULT_HEARTBEAT_MAX_FAILS,
) -> None:
    """
    Disconnect the session after max_fails consecutive heartbeat failures.
    """

    async def on_heartbeat_failed(event: HeartbeatFailedEvent) -> None:
        logger.warning(f"Heartbeat failed {event.failed_attempts}/{max_fails}")

        if event.failed_attempts >= max_fails:
            logger.warning("Disconnecting")
            await session.disconnect()

    session.events.on(HEARTBEAT_FAILED, on_heartbeat_failed)


def create_printer_session(
    config: DeviceConfig | None = None,
    address: str | None = None,
) -> DeviceSession:
    """
    Build a serial session speaking the Niimbot protocol.

    Args:
        config: Device settings; defaults are used if None.
        address: Serial port, overriding config.path.

    Returns:
        A disconnected DeviceSession with the heartbeat failure policy attached.
    """
    config = config or DeviceConfig()

    protocol = NiimbotProtocol(
        negotiation_timeout=config.negotiation_timeout,
        info_timeout=config.info_timeout,
        heartbeat_interval=config.heartbeat_interval,
    )
    session = DeviceSession(
        protocol=protocol,
        endpoint=address or config.path,
        baud_rate=config.baud_rate,
        packet_interval=config.packet_interval,
    )
    attach_failure_policy(session, max_fails=config.heartbeat_max_fails)
    return session
