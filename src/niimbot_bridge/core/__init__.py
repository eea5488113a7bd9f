"""
Core package - Contains shared infrastructure.

This package provides:
- Config: Configuration loading and management
- Events: Explicit event subscription registry and event types
- Logging: Logging utilities
- Utils: Error types shared across the bridge
"""

from .config import Config, DeviceConfig
from .events import (
    ConnectEvent,
    DisconnectEvent,
    EventRegistry,
    HeartbeatEvent,
    HeartbeatFailedEvent,
    PacketReceivedEvent,
    PacketSentEvent,
    RawPacketSentEvent,
)
from .logging import get_logger, setup_logging
from .utils import (
    EndpointNotSet,
    HandshakeFailed,
    InfoFetchFailed,
    NegotiationError,
    NotConnected,
    SessionError,
    TransportUnavailable,
    WriteFailed,
)

__all__ = [
    "Config",
    "DeviceConfig",
    "ConnectEvent",
    "DisconnectEvent",
    "EventRegistry",
    "HeartbeatEvent",
    "HeartbeatFailedEvent",
    "PacketReceivedEvent",
    "PacketSentEvent",
    "RawPacketSentEvent",
    "get_logger",
    "setup_logging",
    "EndpointNotSet",
    "HandshakeFailed",
    "InfoFetchFailed",
    "NegotiationError",
    "NotConnected",
    "SessionError",
    "TransportUnavailable",
    "WriteFailed",
]
