"""Tests for Niimbot packet framing."""

import pytest

from niimbot_bridge.printer.packet import (
    Packet,
    PacketError,
    PrinterInfoType,
    RequestCommandId,
    ResponseCommandId,
    command_name,
)


class TestPacketEncoding:
    """Tests for Packet.to_bytes()."""

    def test_connect_request(self):
        packet = Packet(RequestCommandId.CONNECT, b"\x01")
        assert packet.to_bytes() == bytes.fromhex("5555c10101c1aaaa")

    def test_printer_info_request(self):
        packet = Packet(RequestCommandId.PRINTER_INFO, bytes([PrinterInfoType.PRINTER_MODEL_ID]))
        assert packet.to_bytes() == bytes.fromhex("555540010849aaaa")

    def test_empty_payload(self):
        packet = Packet(ResponseCommandId.NOT_SUPPORTED)
        assert packet.to_bytes() == bytes.fromhex("5555000000aaaa")

    def test_command_out_of_range(self):
        with pytest.raises(PacketError):
            Packet(0x100)

    def test_payload_too_long(self):
        with pytest.raises(PacketError):
            Packet(0x40, bytes(256))


class TestPacketDecoding:
    """Tests for Packet.from_bytes()."""

    def test_connect_answer(self):
        packet = Packet.from_bytes(bytes.fromhex("5555c20101c2aaaa"))
        assert packet == Packet(ResponseCommandId.CONNECT, b"\x01")

    def test_bad_head(self):
        with pytest.raises(PacketError, match="head"):
            Packet.from_bytes(bytes.fromhex("5556c20101c2aaaa"))

    def test_bad_tail(self):
        with pytest.raises(PacketError, match="tail"):
            Packet.from_bytes(bytes.fromhex("5555c20101c2aaab"))

    def test_bad_checksum(self):
        with pytest.raises(PacketError, match="Checksum"):
            Packet.from_bytes(bytes.fromhex("5555c20101c3aaaa"))

    def test_length_mismatch(self):
        with pytest.raises(PacketError, match="Length"):
            Packet.from_bytes(bytes.fromhex("5555c20301c2aaaa"))

    def test_too_short(self):
        with pytest.raises(PacketError, match="short"):
            Packet.from_bytes(b"\x55\x55\xaa")


class TestNames:
    """Tests for human-readable packet names."""

    def test_known_command(self):
        assert command_name(0xC1) == "CONNECT"
        assert command_name(0xDD) == "HEARTBEAT_ADVANCED_1"

    def test_unknown_command(self):
        assert command_name(0x99) == "0x99"

    def test_str(self):
        assert str(Packet(RequestCommandId.HEARTBEAT, b"\x01")) == "HEARTBEAT [01]"

    def test_info_response_id(self):
        assert PrinterInfoType.SERIAL_NUMBER.response_id == ResponseCommandId.PRINTER_INFO_SERIAL_NUMBER
