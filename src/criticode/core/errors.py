# Author: Bradley R. Kinnard — every failure gets a name tag

"""
One exception type, tagged with an ErrorKind. Handlers dispatch on the kind,
never on the class, so there's exactly one thing to catch.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Stable category names. These strings go straight into the JSON envelope."""
    VALIDATION = "ValidationError"
    AUTHENTICATION = "AuthenticationError"
    AUTHORIZATION = "AuthorizationError"
    NOT_FOUND = "NotFoundError"
    PAYLOAD_TOO_LARGE = "PayloadTooLargeError"
    RATE_LIMIT = "RateLimitError"
    INTERNAL = "InternalServerError"
    SERVICE_UNAVAILABLE = "ServiceUnavailableError"


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.INTERNAL: 500,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
}

DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Validation failed",
    ErrorKind.AUTHENTICATION: "Authentication required",
    ErrorKind.AUTHORIZATION: "Insufficient permissions",
    ErrorKind.NOT_FOUND: "Resource not found",
    ErrorKind.PAYLOAD_TOO_LARGE: "Payload too large",
    ErrorKind.RATE_LIMIT: "Rate limit exceeded",
    ErrorKind.INTERNAL: "Internal server error occurred",
    ErrorKind.SERVICE_UNAVAILABLE: "Service temporarily unavailable",
}


class AppError(Exception):
    """
    kind: the category, decides the status code
    reason: finer machine tag ("timeout", "parse", ...), optional
    details: extra payload for the client, must be JSON-able
    retry_after: seconds, only meaningful for RATE_LIMIT
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
        retry_after: int | None = None,
    ):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.reason = reason
        self.details = details
        self.retry_after = retry_after
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    @property
    def is_operational(self) -> bool:
        # 500s mean we screwed up, everything else is the caller or a dependency
        return self.kind is not ErrorKind.INTERNAL

    def __repr__(self) -> str:
        return f"AppError({self.kind.value}, {self.message!r}, reason={self.reason!r})"


# shorthands so call sites read like the old class names

def validation_error(message: str, details: dict[str, Any] | None = None, reason: str | None = None) -> AppError:
    return AppError(ErrorKind.VALIDATION, message, details=details, reason=reason)


def authentication_error(message: str) -> AppError:
    return AppError(ErrorKind.AUTHENTICATION, message)


def authorization_error(message: str) -> AppError:
    return AppError(ErrorKind.AUTHORIZATION, message)


def not_found_error(message: str) -> AppError:
    return AppError(ErrorKind.NOT_FOUND, message)


def internal_error(message: str, details: dict[str, Any] | None = None) -> AppError:
    return AppError(ErrorKind.INTERNAL, message, details=details)


def service_unavailable_error(message: str, reason: str | None = None, details: dict[str, Any] | None = None) -> AppError:
    return AppError(ErrorKind.SERVICE_UNAVAILABLE, message, reason=reason, details=details)
