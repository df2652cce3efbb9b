"""Error taxonomy for the realtime subsystem.

Every error carries a stable ``code`` and renders to the client-safe body of
the outbound ``error`` event via ``to_payload()``. Only ``AuthError`` is fatal
to a connection; the rest reject a single inbound event.
"""

from enum import Enum
from typing import Any


class RealtimeError(Exception):
    code = "REALTIME_ERROR"

    def __init__(self, message: str, code: str | None = None, **details: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class AuthFailure(str, Enum):
    NO_TOKEN = "NO_TOKEN"
    INVALID_TOKEN = "INVALID_TOKEN"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_MISMATCH = "USER_MISMATCH"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"


_AUTH_MESSAGES = {
    AuthFailure.NO_TOKEN: "Authentication token required",
    AuthFailure.INVALID_TOKEN: "Invalid or expired token",
    AuthFailure.USER_NOT_FOUND: "User not found",
    AuthFailure.USER_MISMATCH: "User ID mismatch",
    AuthFailure.ACCOUNT_INACTIVE: "User account is not active",
}


class AuthError(RealtimeError):
    """Handshake rejected; the transport connection is closed."""

    def __init__(self, reason: AuthFailure, **details: Any):
        super().__init__(_AUTH_MESSAGES[reason], code=reason.value, **details)
        self.reason = reason


class OwnershipError(RealtimeError):
    code = "ACCESS_DENIED"


class EventNotAllowedError(RealtimeError):
    code = "EVENT_NOT_ALLOWED"


class RateLimitError(RealtimeError):
    code = "RATE_LIMIT"

    def __init__(self, limit: int, reset_time: int):
        super().__init__("Rate limit exceeded", limit=limit, resetTime=reset_time)
        self.limit = limit
        self.reset_time = reset_time


class ValidationError(RealtimeError):
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"{field} is invalid", field=field)
        self.field = field


class UpstreamError(RealtimeError):
    """A collaborator lookup failed. The client only sees the safe message."""

    code = "UPSTREAM_ERROR"
