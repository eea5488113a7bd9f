"""
Device enumeration for serial endpoints.
"""

from dataclasses import asdict, dataclass

import serial.tools.list_ports

from niimbot_bridge.core.logging import get_logger

logger = get_logger()

UNKNOWN_DEVICE_NAME = "unknown"

# pyserial fills missing port attributes with this placeholder
_PYSERIAL_UNSET = "n/a"


@dataclass(frozen=True)
class EndpointDescriptor:
    """
    A serial endpoint found by scan().

    Attributes:
        address: Port path or name to connect to.
        display_name: Best-effort human-readable name.
    """

    address: str
    display_name: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def display_name_for(port) -> str:
    """
    Pick a display name for a pyserial ListPortInfo.

    Prefers the platform's friendly description, then the hardware id, then
    "unknown".
    """
    for hint in (port.description, port.hwid):
        if hint and hint != _PYSERIAL_UNSET:
            return str(hint)
    return UNKNOWN_DEVICE_NAME


def scan() -> list[EndpointDescriptor]:
    """
    List the serial ports currently visible to the system.

    Returns:
        One descriptor per port; an empty list when none are attached.
    """
    ports = serial.tools.list_ports.comports()

    devices = [
        EndpointDescriptor(address=port.device, display_name=display_name_for(port))
        for port in ports
    ]

    logger.debug(f"Found {len(devices)} serial ports: {[d.address for d in devices]}")
    return devices
