"""Niimbot Bridge - Serial session manager for Niimbot label printers."""

__version__ = "0.1.0"
__author__ = "Niimbot Bridge Team"

from .api import ApiError, PrinterApi, SessionRegistry
from .core.utils import (
    EndpointNotSet,
    HandshakeFailed,
    InfoFetchFailed,
    NotConnected,
    SessionError,
    TransportUnavailable,
    WriteFailed,
)
from .device import ConnectionInfo, ConnectionStatus, DeviceSession, EndpointDescriptor, scan
from .printer import NiimbotProtocol, create_printer_session

__all__ = [
    "ApiError",
    "PrinterApi",
    "SessionRegistry",
    "EndpointNotSet",
    "HandshakeFailed",
    "InfoFetchFailed",
    "NotConnected",
    "SessionError",
    "TransportUnavailable",
    "WriteFailed",
    "ConnectionInfo",
    "ConnectionStatus",
    "DeviceSession",
    "EndpointDescriptor",
    "scan",
    "NiimbotProtocol",
    "create_printer_session",
    "__version__",
]
