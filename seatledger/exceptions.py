"""Service error taxonomy.

Every error raised by the services carries the HTTP status it maps to, so the
API layer renders them through one handler instead of per-endpoint
try/except blocks.
"""

from typing import Any


class ServiceError(Exception):
    """Base class for all service errors."""

    status_code: int = 400
    error: str = "Bad Request"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(ServiceError):
    """Malformed or out-of-range input."""

    status_code = 400
    error = "Validation Error"


class AuthorizationError(ServiceError):
    """The principal may not perform the action on the resource."""

    status_code = 403
    error = "Forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    error = "Not Found"


class ConflictError(ServiceError):
    """Request conflicts with current state, e.g. insufficient seats."""

    status_code = 409
    error = "Conflict"

    def __init__(
        self,
        message: str,
        items: list[dict[str, Any]] | None = None,
        **details: Any,
    ) -> None:
        super().__init__(message)
        self.items = items or []
        self.details = details


class ExternalServiceError(ServiceError):
    """A collaborator (renderer, code generator, mailer, gateway) failed."""

    status_code = 502
    error = "Bad Gateway"
