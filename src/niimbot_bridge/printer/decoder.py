"""
Packet Decoder - frames Niimbot packets out of the raw serial byte stream.
"""

from collections.abc import Callable

from niimbot_bridge.core.logging import bytes_to_hex, get_logger
from niimbot_bridge.printer.packet import MIN_PACKET_SIZE, PACKET_HEAD, Packet, PacketError

logger = get_logger()


class PacketDecoder:
    """
    Incremental packet decoder.

    Chunks may split packets anywhere, or carry several packets at once.
    Bytes before a packet head are discarded, and a frame that fails
    validation is dropped one byte at a time until the next head lines up.
    """

    def __init__(self, on_packet: Callable[[Packet], None] | None = None):
        """
        Args:
            on_packet: Called for every decoded packet, in stream order.
        """
        self.on_packet = on_packet
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def feed(self, chunk: bytes) -> list[Packet]:
        """
        Add a chunk and extract every complete packet.

        Returns:
            The packets decoded from this chunk, in order.
        """
        self._buffer.extend(chunk)
        packets: list[Packet] = []

        while True:
            start = self._buffer.find(PACKET_HEAD)
            if start < 0:
                # A trailing 0x55 may be the first half of the next head
                keep = 1 if self._buffer.endswith(PACKET_HEAD[:1]) else 0
                self._discard(len(self._buffer) - keep)
                break

            self._discard(start)

            if len(self._buffer) < MIN_PACKET_SIZE:
                break

            total = self._buffer[3] + MIN_PACKET_SIZE
            if len(self._buffer) < total:
                # A stray 0x55 before the head shifts the length byte; prefer a
                # complete frame further on over waiting for a bogus long one
                later = self._later_frame_start()
                if later < 0:
                    break
                self._discard(later)
                continue

            frame = bytes(self._buffer[:total])
            try:
                packet = Packet.from_bytes(frame)
            except PacketError as e:
                logger.warning(f"Dropping malformed frame {bytes_to_hex(frame)}: {e}")
                del self._buffer[:1]
                continue

            del self._buffer[:total]
            packets.append(packet)

            if self.on_packet:
                self.on_packet(packet)

        return packets

    def _later_frame_start(self) -> int:
        """Offset of the first head past the start that begins a complete valid frame, or -1."""
        start = self._buffer.find(PACKET_HEAD, 1)
        while start >= 0:
            end = start + MIN_PACKET_SIZE
            if len(self._buffer) >= end:
                end += self._buffer[start + 3]
                if len(self._buffer) >= end:
                    try:
                        Packet.from_bytes(bytes(self._buffer[start:end]))
                        return start
                    except PacketError:
                        pass
            start = self._buffer.find(PACKET_HEAD, start + 1)
        return -1

    def _discard(self, count: int) -> None:
        if count <= 0:
            return
        logger.verbose(f"Discarding {count} bytes outside a packet: {bytes_to_hex(self._buffer[:count])}")
        del self._buffer[:count]
