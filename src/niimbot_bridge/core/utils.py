"""
Error types shared by the session core, the printer protocol and the
handler layer.
"""


class SessionError(Exception):
    """Base class for all device session errors."""

    pass


class EndpointNotSet(SessionError):
    """Raised when connect is attempted before an endpoint was configured."""

    pass


class TransportUnavailable(SessionError):
    """Raised when the serial port cannot be opened (missing, busy, no permission)."""

    pass


class NotConnected(SessionError):
    """Raised when an operation needs an open session and there is none."""

    pass


class WriteFailed(SessionError):
    """Raised when the transport rejects a write."""

    pass


class NegotiationError(SessionError):
    """Raised by the protocol collaborator while bringing a session up."""

    pass


class HandshakeFailed(NegotiationError):
    """Raised when the initial connect handshake is not answered or rejected."""

    pass


class InfoFetchFailed(NegotiationError):
    """Raised when the printer info could not be retrieved during connect."""

    pass
