"""
Error responses

CatalogAddonError subclasses become JSON bodies with their mapped status:

    {"error": "link_not_found", "code": "LINK_NOT_FOUND", "message": "...", "details": {...}}

Anything else that escapes a route is logged with its traceback and answered
with a generic 500 carrying an error id that can be matched against the log.
"""
import logging
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from catalog_addon.core.config import settings
from catalog_addon.core.exceptions import CatalogAddonError

logger = logging.getLogger(__name__)

# Fragments that suggest a message leaks driver or credential details
SENSITIVE_FRAGMENTS = (
    "password",
    "secret",
    "credential",
    "sqlalchemy",
    "asyncpg",
    "aiosqlite",
    "postgresql",
    "traceback",
)

MAX_MESSAGE_LENGTH = 200


def sanitize_error_message(message: str) -> str:
    """Message safe to send to a client (unchanged in DEBUG)."""
    if settings.DEBUG:
        return message
    lowered = message.lower()
    if any(fragment in lowered for fragment in SENSITIVE_FRAGMENTS):
        return "An internal error occurred. Please try again later."
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:MAX_MESSAGE_LENGTH] + "..."
    return message


async def catalog_error_handler(request: Request, exc: CatalogAddonError) -> JSONResponse:
    where = f"{request.method} {request.url.path}"
    if exc.status_code >= 500:
        logger.error(f"{exc!r} on {where}")
    elif exc.status_code == 409:
        logger.warning(f"{exc.code} on {where}: {exc.message} {exc.details}")
    else:
        logger.info(f"{exc.code} on {where}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code.lower(),
            "code": exc.code,
            "message": sanitize_error_message(exc.message),
            "details": exc.details,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CatalogAddonError, catalog_error_handler)


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """Last-resort handler for exceptions no route or handler dealt with."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            error_id = uuid.uuid4().hex[:12]
            logger.exception(
                f"Unhandled {type(e).__name__} [{error_id}] on {request.method} {request.url.path}"
            )

            content = {
                "error": "internal_error",
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred. Please try again later.",
                "error_id": error_id,
            }
            if settings.DEBUG:
                content["message"] = str(e)
                content["type"] = type(e).__name__
            return JSONResponse(status_code=500, content=content)
