"""
Error handling and sanitization

- Domain errors (TourpassBaseError) -> their own status code, message verbatim
- Database errors -> generic message
- Stack traces -> logged only, not returned to client
"""
import logging
import traceback
from typing import Union

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tourpass.core.config import settings
from tourpass.core.exceptions import TourpassBaseError

logger = logging.getLogger(__name__)

# Patterns that indicate internal/sensitive error information
SENSITIVE_PATTERNS = [
    "password",
    "secret",
    "token",
    "credential",
    "sqlalchemy",
    "asyncpg",
    "psycopg",
    "postgresql",
    "traceback",
    "file \"",
    "line ",
]


def is_sensitive_error(message: str) -> bool:
    """Check if error message contains sensitive information."""
    message_lower = message.lower()
    return any(pattern in message_lower for pattern in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """
    Sanitize an error message for safe client exposure.

    Returns the full message in debug mode, a generic one when it leaks
    internals, and a truncated one when it is very long.
    """
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message

    if is_sensitive_error(message):
        return "An internal error occurred. Please try again later."

    if len(message) > 200:
        return message[:200] + "..."

    return message


async def tourpass_error_handler(request: Request, exc: TourpassBaseError) -> JSONResponse:
    """Map domain errors to their HTTP status with the message surfaced verbatim."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}",
        extra={"error": exc.to_dict()},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": sanitize_error_message(exc.message),
            "code": exc.code,
        },
    )


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Catch unhandled exceptions and sanitize error responses.

    - In production: Returns generic error, logs full details
    - In development: Returns full error for debugging
    """

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except HTTPException:
            raise
        except Exception as e:
            error_id = f"{request.client.host if request.client else 'unknown'}-{id(e)}"
            logger.error(
                f"Unhandled exception [{error_id}]: {type(e).__name__}: {str(e)}\n"
                f"Path: {request.url.path}\n"
                f"Method: {request.method}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            message = str(e) if settings.DEBUG else "An unexpected error occurred. Please try again later."
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": message,
                    "code": "INTERNAL_ERROR",
                    "error_id": error_id,
                }
            )
