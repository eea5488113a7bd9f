"""
Exclusive Writer - serializes every outbound write to the printer.

Gated writes go through a FIFO queue served by a single worker task. The
worker waits the minimum packet interval before each write, so consecutive
gated writes reach the port at least that far apart and in call order.

Bypass writes skip the queue and the interval and hit the port immediately.
Their order relative to queued writes is undefined; use them only for
control traffic where ordering does not matter.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

from niimbot_bridge.core.events import RAW_PACKET_SENT, EventRegistry, RawPacketSentEvent
from niimbot_bridge.core.logging import get_logger
from niimbot_bridge.core.utils import NotConnected

logger = get_logger()

DEFAULT_PACKET_INTERVAL = 10.0  # ms


@dataclass
class SendRequest:
    """
    A pending gated write.

    Attributes:
        data: Bytes to write.
        future: Resolved once the write was performed or failed.
    """

    data: bytes
    future: asyncio.Future[None] = field(repr=False)


class ExclusiveWriter:
    """
    Single-slot write gate with a minimum inter-write delay.
    """

    def __init__(
        self,
        is_writable: Callable[[], bool],
        write: Callable[[bytes], None],
        packet_interval: float = DEFAULT_PACKET_INTERVAL,
        events: EventRegistry | None = None,
    ):
        """
        Initialize the writer.

        Args:
            is_writable: Returns whether the owning session can currently write.
            write: Performs the actual transport write.
            packet_interval: Minimum delay in ms before every gated write.
            events: Registry that receives raw_packet_sent events.
        """
        self._is_writable = is_writable
        self._write = write
        self.packet_interval = packet_interval / 1000
        self.events = events if events is not None else EventRegistry()

        self._queue: asyncio.Queue[SendRequest] = asyncio.Queue()
        self._worker_task: asyncio.Task | None = None

    def pending(self) -> int:
        """Number of gated writes waiting for their turn."""
        return self._queue.qsize()

    async def send(self, data: bytes, bypass_queue: bool = False) -> None:
        """
        Write bytes to the port.

        Args:
            data: Bytes to write.
            bypass_queue: Write immediately, skipping the gate and the interval.

        Raises:
            NotConnected: If the session cannot write, checked before queueing,
                or if the session went away while the request was queued.
            WriteFailed: If the transport rejected the write.
        """
        if not self._is_writable():
            raise NotConnected("Not connected")

        if bypass_queue:
            self._perform_write(bytes(data))
            return

        loop = asyncio.get_running_loop()
        request = SendRequest(data=bytes(data), future=loop.create_future())

        self._ensure_worker()
        self._queue.put_nowait(request)
        logger.verbose(f"Queued write of {len(request.data)} bytes, pending: {self._queue.qsize()}")

        await request.future

    def stop(self) -> None:
        """
        Stop the worker and fail every queued write with NotConnected.
        """
        if self._worker_task:
            self._worker_task.cancel()
            self._worker_task = None

        while not self._queue.empty():
            try:
                request = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            if not request.future.done():
                request.future.set_exception(NotConnected("Disconnected before write"))

    def _ensure_worker(self) -> None:
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.get_running_loop().create_task(self._process_queue())

    def _perform_write(self, data: bytes) -> None:
        self._write(data)
        self.events.emit(RAW_PACKET_SENT, RawPacketSentEvent(data))

    async def _process_queue(self) -> None:
        """Serve queued writes one at a time, in arrival order."""
        while True:
            request = await self._queue.get()
            try:
                # Caller gave up while queued
                if request.future.done():
                    continue

                await asyncio.sleep(self.packet_interval)

                if not self._is_writable():
                    raise NotConnected("Disconnected before write")

                self._perform_write(request.data)

            except asyncio.CancelledError:
                if not request.future.done():
                    request.future.set_exception(NotConnected("Disconnected before write"))
                raise
            except Exception as e:
                if not request.future.done():
                    request.future.set_exception(e)
            else:
                if not request.future.done():
                    request.future.set_result(None)
            finally:
                self._queue.task_done()
