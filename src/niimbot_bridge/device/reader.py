"""
Read Loop - drains the transport whenever it becomes readable.
"""

from collections.abc import Callable

from niimbot_bridge.core.logging import bytes_to_hex, get_logger

logger = get_logger()


class ReadLoop:
    """
    Turns readability notifications into drain cycles.

    A drain cycle reads until the source returns None or raises, handing
    every non-empty chunk to the consumer before reading the next one. An
    error only ends the current cycle. A notification received during a
    drain does not start a second one; the running drain reads that data too.
    """

    def __init__(
        self,
        read_available: Callable[[], bytes | None],
        on_chunk: Callable[[bytes], None],
    ):
        """
        Args:
            read_available: Non-blocking read returning None when drained.
            on_chunk: Consumer of inbound chunks (the packet decoder).
        """
        self._read_available = read_available
        self._on_chunk = on_chunk
        self._draining = False

    @property
    def draining(self) -> bool:
        return self._draining

    def on_readable(self) -> None:
        if self._draining:
            return

        self._draining = True
        try:
            self._drain()
        finally:
            self._draining = False

    def _drain(self) -> None:
        while True:
            try:
                chunk = self._read_available()
                if chunk is None:
                    break
                if not chunk:
                    continue

                logger.verbose(f"<< serial chunk {bytes_to_hex(chunk)}")
                self._on_chunk(chunk)

            # The source may raise once fully drained or closed
            except Exception as e:
                logger.verbose(f"Drain cycle ended: {e!r}")
                break
