"""
Printer package - Niimbot protocol collaborator for the device session.

This package provides:
- Packet: Niimbot packet framing and command ids
- PacketDecoder: Incremental packet framing of the serial byte stream
- NiimbotProtocol: Negotiation, printer info and heartbeat
- create_printer_session: Factory for a configured serial session
"""

from .client import (
    NiimbotProtocol,
    PrinterInfo,
    attach_failure_policy,
    create_printer_session,
)
from .decoder import PacketDecoder
from .packet import (
    ConnectResult,
    Packet,
    PacketError,
    PrinterInfoType,
    RequestCommandId,
    ResponseCommandId,
)

__all__ = [
    "NiimbotProtocol",
    "PrinterInfo",
    "attach_failure_policy",
    "create_printer_session",
    "PacketDecoder",
    "ConnectResult",
    "Packet",
    "PacketError",
    "PrinterInfoType",
    "RequestCommandId",
    "ResponseCommandId",
]
