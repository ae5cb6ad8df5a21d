"""
Error taxonomy shared by every layer of the Olarm integration.

- AuthError:      rejected credentials or refresh token (forces a re-login)
- NetworkError:   transport failure or timeout (retried by the reconnect loop,
                  surfaced to command callers)
- ProtocolError:  malformed or irrelevant inbound data (logged and dropped)
- NotFoundError:  unknown device or area in a command request
- ShutdownError:  the engine was shut down while the call was pending
"""
from __future__ import annotations


class OlarmError(Exception):
    """Base class for all Olarm integration errors."""


class AuthError(OlarmError):
    """Raised when the Olarm cloud rejects a credential."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class NetworkError(OlarmError):
    """Raised when the Olarm cloud cannot be reached or times out."""


class ApiResponseError(NetworkError):
    """Raised when the API answers with a non-auth error status."""

    def __init__(self, status: int, body: object = None) -> None:
        self.status = status
        self.body = body
        super().__init__(f"API Error: HTTP {status}: {body}")


class ProtocolError(OlarmError):
    """Raised when inbound data does not have the expected shape."""


class NotFoundError(OlarmError):
    """Raised when a command references an unknown device or area."""


class ShutdownError(OlarmError):
    """Raised when an operation is attempted after shutdown."""
