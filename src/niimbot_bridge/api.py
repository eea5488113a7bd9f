"""
Request handlers for an HTTP front end.

PrinterApi holds the operations an HTTP worker routes to: connect,
disconnect, connection status, printer info and port scan. Handlers return
JSON-ready dicts and raise ApiError carrying an HTTP status; dispatch()
turns any raised error into a (status, body) pair.

Sessions are kept in a SessionRegistry keyed by connection id instead of a
module-level client, so each PrinterApi owns its sessions explicitly.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from niimbot_bridge.core.config import DeviceConfig
from niimbot_bridge.core.logging import get_logger
from niimbot_bridge.core.utils import (
    EndpointNotSet,
    NegotiationError,
    NotConnected,
    TransportUnavailable,
)
from niimbot_bridge.device.enumerator import scan as scan_serial_ports
from niimbot_bridge.device.session import DeviceSession
from niimbot_bridge.printer.client import NiimbotProtocol, create_printer_session

logger = get_logger()

DEFAULT_CONNECTION_ID = "default"
TRANSPORTS = ("serial", "ble")

SessionFactory = Callable[[DeviceConfig, str], DeviceSession]


class ApiError(Exception):
    """An error with the HTTP status it should be reported with."""

    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.status = status


def status_for_error(error: Exception) -> int:
    """Map an exception to the HTTP status reported to the caller."""
    if isinstance(error, ApiError):
        return error.status
    if isinstance(error, (EndpointNotSet, NotConnected)):
        return 400
    if isinstance(error, TransportUnavailable):
        return 503
    if isinstance(error, NegotiationError):
        return 502
    return 500


class SessionRegistry:
    """Sessions keyed by connection id."""

    def __init__(self) -> None:
        self._sessions: dict[str, DeviceSession] = {}

    def get(self, connection_id: str = DEFAULT_CONNECTION_ID) -> DeviceSession | None:
        return self._sessions.get(connection_id)

    def put(self, session: DeviceSession, connection_id: str = DEFAULT_CONNECTION_ID) -> None:
        self._sessions[connection_id] = session

    def pop(self, connection_id: str = DEFAULT_CONNECTION_ID) -> DeviceSession | None:
        return self._sessions.pop(connection_id, None)

    def connection_ids(self) -> list[str]:
        return list(self._sessions)

    async def close_all(self) -> None:
        for connection_id in list(self._sessions):
            session = self._sessions.pop(connection_id)
            await session.disconnect()


class PrinterApi:
    """
    Handlers backing the HTTP surface.
    """

    def __init__(
        self,
        config: DeviceConfig | None = None,
        registry: SessionRegistry | None = None,
        session_factory: SessionFactory = create_printer_session,
    ):
        """
        Args:
            config: Device settings used for new sessions.
            registry: Session registry; a new one is created if None.
            session_factory: Builds a session for (config, address).
        """
        self.config = config or DeviceConfig()
        self.registry = registry if registry is not None else SessionRegistry()
        self._session_factory = session_factory
        # One lock per connection id; the check, connect and registration run under it
        self._locks: dict[str, asyncio.Lock] = {}

    async def dispatch(
        self,
        handler: Callable[..., Awaitable[dict[str, Any]]],
        *args: Any,
        **kwargs: Any,
    ) -> tuple[int, dict[str, Any]]:
        """
        Run a handler and translate its outcome into (status, body).
        """
        try:
            return 200, await handler(*args, **kwargs)
        except Exception as e:
            status = status_for_error(e)
            if status >= 500:
                logger.exception(f"Request handler failed: {e}")
            else:
                logger.info(f"Request rejected ({status}): {e}")
            return status, {"error": str(e)}

    def _lock_for(self, connection_id: str) -> asyncio.Lock:
        return self._locks.setdefault(connection_id, asyncio.Lock())

    def _require_connected(self, connection_id: str) -> DeviceSession:
        session = self.registry.get(connection_id)
        if session is None or not session.is_connected:
            raise ApiError("Not connected", 400)
        return session

    async def index(self) -> dict[str, Any]:
        return {"message": "Server is working"}

    async def connect(
        self,
        transport: str,
        address: str,
        connection_id: str = DEFAULT_CONNECTION_ID,
    ) -> dict[str, Any]:
        _check_transport(transport)
        if transport == "ble":
            raise ApiError("Bluetooth not supported", 400)

        async with self._lock_for(connection_id):
            existing = self.registry.get(connection_id)
            if existing is not None and existing.is_connected:
                raise ApiError("Already connected", 400)

            session = self._session_factory(self.config, address)
            info = await session.connect()
            self.registry.put(session, connection_id)

        return {"message": "Connected", "deviceName": info.device_name, "result": info.result}

    async def disconnect(self, connection_id: str = DEFAULT_CONNECTION_ID) -> dict[str, Any]:
        async with self._lock_for(connection_id):
            session = self._require_connected(connection_id)

            await session.disconnect()
            self.registry.pop(connection_id)
        return {"message": "Disconnected"}

    async def connected(self, connection_id: str = DEFAULT_CONNECTION_ID) -> dict[str, Any]:
        session = self.registry.get(connection_id)
        return {"connected": bool(session and session.is_connected)}

    async def info(self, connection_id: str = DEFAULT_CONNECTION_ID) -> dict[str, Any]:
        session = self._require_connected(connection_id)

        protocol = session.protocol
        printer_info = protocol.info.to_dict() if isinstance(protocol, NiimbotProtocol) else {}
        return {
            "endpoint": session.endpoint,
            "status": session.status.value,
            "printerInfo": printer_info,
        }

    async def scan(self, transport: str) -> dict[str, Any]:
        _check_transport(transport)
        if transport == "ble":
            return {"devices": []}

        return {
            "devices": [
                {"address": d.address, "name": d.display_name} for d in scan_serial_ports()
            ]
        }


def _check_transport(transport: str) -> None:
    if transport not in TRANSPORTS:
        raise ApiError(f"Invalid transport '{transport}'", 400)

