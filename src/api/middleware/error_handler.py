"""Error handling for consistent error responses."""

import logging
import traceback
from typing import Any, Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from src.core.errors import DomainError, ErrorKind, UpstreamError
from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.UPSTREAM: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: DomainError) -> int:
    """HTTP status code for a domain error."""
    return STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error category for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Optional request ID for tracing.
        headers: Optional extra response headers.

    Returns:
        JSONResponse: Formatted error response.
    """
    error_response = ErrorResponse.from_exception(
        status_code=status_code,
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers=headers,
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Translate a service error into its HTTP response."""
    request_id = request.headers.get("X-Request-ID")
    status_code = status_for(exc)

    if isinstance(exc, UpstreamError):
        logger.error(
            "Upstream error from %s: %s",
            exc.provider or "provider",
            exc.message,
            extra={"request_id": request_id},
        )
    else:
        logger.warning(
            "Domain error: %s - %s",
            exc.kind.value,
            exc.message,
            extra={"request_id": request_id, "status_code": status_code},
        )

    return create_error_response(
        error_type=exc.kind.value,
        message=exc.message,
        status_code=status_code,
        details=exc.details,
        request_id=request_id,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap FastAPI HTTP exceptions in the error envelope."""
    request_id = request.headers.get("X-Request-ID")
    logger.warning(
        "HTTP exception: %s - %s",
        exc.status_code,
        exc.detail,
        extra={"request_id": request_id},
    )
    return create_error_response(
        error_type="http_error",
        message=str(exc.detail),
        status_code=exc.status_code,
        request_id=request_id,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies and parameters as 400."""
    request_id = request.headers.get("X-Request-ID")
    errors = exc.errors()
    logger.warning("Validation error: %d problems", len(errors), extra={"request_id": request_id})
    return create_error_response(
        error_type=ErrorKind.BAD_REQUEST.value,
        message="Request validation failed",
        status_code=status.HTTP_400_BAD_REQUEST,
        details=[
            {"loc": error.get("loc"), "msg": error.get("msg", ""), "type": error.get("type", "error")}
            for error in errors
        ],
        request_id=request_id,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error envelope handlers on an application."""
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch anything the exception handlers did not.

    Logs full stack traces for debugging while returning safe messages to clients.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    # Extract request ID if present (can be set by upstream middleware/load balancer)
    request_id = request.headers.get("X-Request-ID")

    try:
        return await call_next(request)

    except DomainError as e:
        return await domain_error_handler(request, e)

    except Exception as e:
        logger.error(
            "Unhandled exception: %s\n%s",
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type=ErrorKind.INTERNAL.value,
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
