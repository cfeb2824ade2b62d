"""Error taxonomy for the tunnel client.

Only ConfigError is allowed to reach the caller. Everything else is caught at
the client boundary and turned into a reconnect cycle.
"""

from __future__ import annotations


class OpenBoreError(Exception):
    """Base exception for all open-bore errors."""

    code = "OPENBORE_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(OpenBoreError):
    """Server identity is missing or could not be parsed."""

    code = "CONFIG_ERROR"


class TransportError(OpenBoreError):
    """Connect, read or write failure on a relay socket."""

    code = "TRANSPORT_ERROR"


class ProtocolError(OpenBoreError):
    """Malformed control frame or a login rejected by the relay."""

    code = "PROTOCOL_ERROR"


class LoginRejectedError(ProtocolError):
    """The relay answered Login with a non-empty error."""

    code = "LOGIN_REJECTED"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Login rejected by relay: {reason}")


class LocalServiceError(OpenBoreError):
    """The local service refused or dropped its connection."""

    code = "LOCAL_SERVICE_ERROR"

    def __init__(self, port: int, detail: str = "") -> None:
        self.port = port
        message = f"Local service on 127.0.0.1:{port} is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


def format_error_for_user(error: BaseException) -> str:
    """Render an exception as a single human-readable line."""
    if isinstance(error, OpenBoreError):
        return error.message
    if isinstance(error, ConnectionRefusedError):
        return "Connection refused. Is the relay server running?"
    if isinstance(error, TimeoutError):
        return "Connection timed out."
    text = str(error)
    if not text:
        return type(error).__name__
    return f"{type(error).__name__}: {text}"
