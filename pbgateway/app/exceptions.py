"""Custom exceptions for the gateway application."""

from typing import Any


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)


class ForbiddenTargetError(GatewayException):
    """Raised when a caller-supplied backend URL fails SSRF validation.

    ``reason`` is one of the ``RejectionReason`` values
    (invalid-url, scheme-not-allowed, private-network, unresolvable-host).
    Maps to HTTP 403 Forbidden.
    """
    status_code = 403

    def __init__(self, reason: str, message: str | None = None):
        self.reason = reason
        super().__init__(message or f"Backend URL rejected: {reason}")


class BackendError(GatewayException):
    """Raised when the PocketBase backend answers with an error status.

    Carries the backend's status and response body so tool results can
    surface field-level validation details.
    """
    status_code = 502

    def __init__(self, status: int, message: str, data: Any = None):
        self.status = status
        self.data = data if data is not None else {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"message": self.message, "status": self.status, "data": self.data}


class BackendAuthError(BackendError):
    """Raised when the backend rejects a credential exchange.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401
