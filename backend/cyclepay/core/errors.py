"""Application error taxonomy.

Every error raised by services derives from :class:`AppError`, which carries the
HTTP status used by the API exception handler and a stable machine-readable code.
"""

from http import HTTPStatus
from typing import Any


class AppError(Exception):
    """Base exception for all application errors."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert the error to a dictionary for API responses."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError, ValueError):
    """Bad input. Not retried."""

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY
    code = "validation_error"


class NotFoundError(AppError, LookupError):
    """A referenced entity does not exist."""

    status_code = HTTPStatus.NOT_FOUND
    code = "not_found"


class ConflictError(AppError):
    """The request conflicts with committed state (e.g. shrinking a contracted quota)."""

    status_code = HTTPStatus.CONFLICT
    code = "conflict"


class GatewayError(AppError):
    """Base class for payment gateway failures."""

    status_code = HTTPStatus.BAD_GATEWAY
    code = "gateway_error"
    retryable = False

    def __init__(
        self,
        message: str,
        provider_status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.provider_status = provider_status
        if provider_status is not None:
            self.details.setdefault("provider_status", provider_status)


class GatewayAuthError(GatewayError):
    """The provider refused or failed to issue an access token."""

    code = "gateway_auth_error"


class GatewayTransientError(GatewayError):
    """Network failure or 5xx from the provider. Safe to resubmit with the same idempotency key."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    code = "gateway_unavailable"
    retryable = True


class GatewayRejectedError(GatewayError):
    """The provider rejected the payload (4xx)."""

    code = "gateway_rejected"
