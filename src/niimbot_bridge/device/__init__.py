"""
Device package - Contains the serial session core.

This package provides:
- DeviceSession: Connection state machine owning one serial port
- ConnectionStatus: Enum of session states
- ConnectionInfo: Result of a successful connect
- SerialTransportHandle: One open serial port
- ExclusiveWriter: FIFO write gate with a minimum packet interval
- ReadLoop: Drain loop forwarding inbound chunks to the decoder
- DeviceProtocol: Interface of the printer protocol collaborator
- SerialTransportProtocol: asyncio.Protocol attached to the serial port
- scan / EndpointDescriptor: Serial endpoint enumeration
"""

from .enumerator import EndpointDescriptor, scan
from .interface import DeviceProtocol, SerialTransportProtocol
from .reader import ReadLoop
from .session import ConnectionInfo, ConnectionStatus, DeviceSession
from .transport import DEFAULT_BAUD_RATE, SerialTransportHandle
from .writer import ExclusiveWriter

__all__ = [
    "DeviceSession",
    "ConnectionStatus",
    "ConnectionInfo",
    "SerialTransportHandle",
    "DEFAULT_BAUD_RATE",
    "ExclusiveWriter",
    "ReadLoop",
    "DeviceProtocol",
    "SerialTransportProtocol",
    "EndpointDescriptor",
    "scan",
]
