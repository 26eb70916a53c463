"""Domain error kinds raised by services.

Services raise these at the point of detection. They carry no transport
details; the API layer maps each kind to an HTTP status code.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of error categories."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    CONFLICT = "conflict"
    UPSTREAM = "upstream_error"
    INTERNAL = "internal_error"


class DomainError(Exception):
    """Base class for errors raised by the order lifecycle services."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_message = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class NotFoundError(DomainError):
    """A referenced order, item, artwork, shipment or profile is absent."""

    kind = ErrorKind.NOT_FOUND
    default_message = "Resource not found"


class UnauthorizedError(DomainError):
    """The caller does not own the resource or lacks the required role."""

    kind = ErrorKind.UNAUTHORIZED
    default_message = "You are not allowed to perform this action"


class BadRequestError(DomainError):
    """The request is well-formed but cannot be honoured as stated."""

    kind = ErrorKind.BAD_REQUEST
    default_message = "Bad request"


class ConflictError(DomainError):
    """The request conflicts with the current state of the resource."""

    kind = ErrorKind.CONFLICT
    default_message = "The resource was modified or is in the wrong state"


class StaleWriteError(ConflictError):
    """A compare-and-set update matched no rows."""

    default_message = "The resource was modified concurrently"


class UpstreamError(DomainError):
    """A payment, shipping or notification provider call failed."""

    kind = ErrorKind.UPSTREAM
    default_message = "An external provider request failed"

    def __init__(
        self,
        message: str | None = None,
        provider: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(message, details)
