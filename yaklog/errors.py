"""
Error taxonomy and FastAPI exception handlers.

Every error response has the shape {"error": <kind>, "message": <text>}.
Storage failures and unexpected exceptions are logged here and surface to the
caller only as a generic InternalServerError.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "InternalServerError"
    default_message = "Unexpected server error."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "ValidationError"
    default_message = "Request is invalid."


class Unauthorized(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"
    default_message = "Provide a valid Bearer token or X-API-Key header."


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "NotFound"
    default_message = "Message not found."


class PayloadTooLarge(ApiError):
    status_code = 413
    error = "PayloadTooLarge"
    default_message = "Request body is too large."


class ServiceMisconfigured(ApiError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "ServiceMisconfigured"
    default_message = "YAKLOG_API_KEYS is required."


class StorageError(Exception):
    """Raised by the message store when the underlying database fails."""


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


def _describe_validation_error(exc: RequestValidationError) -> str:
    """Turn the first pydantic error into a short, caller-facing sentence."""
    errors = exc.errors()
    if not errors:
        return "Request is invalid."

    first = errors[0]
    if first.get("type") == "json_invalid":
        return "Request body must be valid JSON."

    # loc looks like ("body", "channel") or ("query", "limit")
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    message = first.get("msg", "is invalid")
    if message.startswith("Value error, "):
        return message[len("Value error, "):]
    if loc:
        return f"{'.'.join(loc)}: {message}"
    return message


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the handlers that translate exceptions into error bodies."""

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        return error_response(exc.status_code, exc.error, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = _describe_validation_error(exc)
        logger.debug(f"Validation failed on {request.url.path}: {exc.errors()}")
        return error_response(status.HTTP_400_BAD_REQUEST, "ValidationError", message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return error_response(exc.status_code, "NotFound", "Route not found.")
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            return error_response(exc.status_code, "MethodNotAllowed", "Method not allowed.")
        return error_response(exc.status_code, "HTTPError", str(exc.detail))

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "InternalServerError",
            "Unexpected server error.",
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "InternalServerError",
            "Unexpected server error.",
        )
