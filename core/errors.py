"""
core/errors.py -- Error taxonomy shared by the auth service and the gateway.

Every failure that crosses an HTTP boundary is one of these kinds. Each
carries the status code and a stable machine-readable code; the message is
safe to show to clients. Internal detail (storage errors, provider responses)
is logged by the raiser and never placed in the message.

Layer rule: no framework imports. api/ and gateway/ turn these into
responses with their own exception handlers.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class: an error with an HTTP status and a client-facing message."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def body(self) -> dict:
        """Return the JSON error envelope: {"error": {"code", "message"}}."""
        return {"error": {"code": self.code, "message": self.message}}


class ValidationError(ServiceError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request."


class UnauthorizedError(ServiceError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class MethodNotAllowedError(ServiceError):
    status_code = 405
    code = "method_not_allowed"
    default_message = "Method not allowed"


class ConflictError(ServiceError):
    status_code = 409
    code = "conflict"
    default_message = "Conflict."


class UpstreamError(ServiceError):
    """A store or external-provider failure."""

    status_code = 500
    code = "upstream_error"
    default_message = "An upstream dependency failed."


class BadGatewayError(ServiceError):
    """The gateway could not reach a backend."""

    status_code = 502
    code = "bad_gateway"
    default_message = "Failed to reach backend"
