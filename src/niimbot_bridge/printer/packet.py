"""
Niimbot packet framing.

Every packet on the wire looks like::

    55 55 | command | length | data ... | checksum | aa aa

where checksum is the XOR of the command byte, the length byte and every
data byte.
"""

from dataclasses import dataclass
from enum import IntEnum

from niimbot_bridge.core.logging import bytes_to_hex

PACKET_HEAD = b"\x55\x55"
PACKET_TAIL = b"\xaa\xaa"
# Head, command, length, checksum and tail with an empty payload
MIN_PACKET_SIZE = 7
MAX_DATA_SIZE = 0xFF


class PacketError(ValueError):
    """Raised when bytes do not form a valid packet."""

    pass


class RequestCommandId(IntEnum):
    PRINTER_INFO = 0x40
    CONNECT = 0xC1
    HEARTBEAT = 0xDC


class ResponseCommandId(IntEnum):
    NOT_SUPPORTED = 0x00
    PRINTER_INFO_DENSITY = 0x41
    PRINTER_INFO_SPEED = 0x42
    PRINTER_INFO_LABEL_TYPE = 0x43
    PRINTER_INFO_LANGUAGE = 0x46
    PRINTER_INFO_AUTO_SHUTDOWN_TIME = 0x47
    PRINTER_INFO_PRINTER_CODE = 0x48
    PRINTER_INFO_SOFTWARE_VERSION = 0x49
    PRINTER_INFO_BATTERY_CHARGE_LEVEL = 0x4A
    PRINTER_INFO_SERIAL_NUMBER = 0x4B
    PRINTER_INFO_HARDWARE_VERSION = 0x4C
    CONNECT = 0xC2
    HEARTBEAT_ADVANCED_2 = 0xD9
    HEARTBEAT_ADVANCED_1 = 0xDD
    HEARTBEAT_BASIC = 0xDE
    HEARTBEAT_UNKNOWN = 0xDF


class PrinterInfoType(IntEnum):
    """Keys of the PRINTER_INFO request; the answer uses command 0x40 + key."""

    DENSITY = 1
    SPEED = 2
    LABEL_TYPE = 3
    LANGUAGE = 6
    AUTO_SHUTDOWN_TIME = 7
    PRINTER_MODEL_ID = 8
    SOFTWARE_VERSION = 9
    BATTERY_CHARGE_LEVEL = 10
    SERIAL_NUMBER = 11
    HARDWARE_VERSION = 12

    @property
    def response_id(self) -> int:
        return RequestCommandId.PRINTER_INFO + self.value


class ConnectResult(IntEnum):
    DISCONNECT = 0
    CONNECTED = 1
    CONNECTED_NEW = 2
    CONNECTED_V3 = 3
    FIRMWARE_ERRORS = 90


HEARTBEAT_RESPONSE_IDS = frozenset({
    ResponseCommandId.HEARTBEAT_ADVANCED_1,
    ResponseCommandId.HEARTBEAT_ADVANCED_2,
    ResponseCommandId.HEARTBEAT_BASIC,
    ResponseCommandId.HEARTBEAT_UNKNOWN,
})


def command_name(command: int) -> str:
    for enum_type in (RequestCommandId, ResponseCommandId):
        try:
            return enum_type(command).name
        except ValueError:
            continue
    return f"0x{command:02x}"


@dataclass(frozen=True)
class Packet:
    """
    One framed command.

    Attributes:
        command: Command id byte.
        data: Payload, at most 255 bytes.
    """

    command: int
    data: bytes = b""

    def __post_init__(self) -> None:
        if not 0 <= self.command <= 0xFF:
            raise PacketError(f"Command id out of range: {self.command}")
        if len(self.data) > MAX_DATA_SIZE:
            raise PacketError(f"Payload too long: {len(self.data)} bytes")

    @property
    def checksum(self) -> int:
        value = self.command ^ len(self.data)
        for b in self.data:
            value ^= b
        return value

    def to_bytes(self) -> bytes:
        return (
            PACKET_HEAD
            + bytes([self.command, len(self.data)])
            + bytes(self.data)
            + bytes([self.checksum])
            + PACKET_TAIL
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Packet":
        """
        Parse exactly one packet.

        Raises:
            PacketError: On a bad head or tail, a length mismatch or a bad checksum.
        """
        if len(raw) < MIN_PACKET_SIZE:
            raise PacketError(f"Packet too short: {len(raw)} bytes")
        if raw[:2] != PACKET_HEAD:
            raise PacketError("Invalid packet head")
        if raw[-2:] != PACKET_TAIL:
            raise PacketError("Invalid packet tail")

        command = raw[2]
        length = raw[3]
        if len(raw) != length + MIN_PACKET_SIZE:
            raise PacketError(f"Length byte {length} does not match packet size {len(raw)}")

        packet = cls(command=command, data=bytes(raw[4:4 + length]))
        if packet.checksum != raw[4 + length]:
            raise PacketError(
                f"Checksum mismatch: expected {packet.checksum:02x}, got {raw[4 + length]:02x}"
            )
        return packet

    def __str__(self) -> str:
        return f"{command_name(self.command)} [{bytes_to_hex(self.data)}]"
