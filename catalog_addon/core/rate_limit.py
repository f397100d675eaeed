"""
Rate limiting

SlowAPI limiter keyed on the caller's IP. Only the public cart discount
endpoint is decorated; admin routes sit behind auth instead.
"""
import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from catalog_addon.core.config import settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Left-most X-Forwarded-For entry when behind a proxy, else the socket peer."""
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    client_ip = forwarded_for.split(",")[0].strip()
    return client_ip or get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    limit = str(exc.detail or settings.RATE_LIMIT_CHECKOUT)
    logger.warning(f"Rate limit {limit} hit by {get_client_ip(request)} on {request.url.path}")

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "code": "RATE_LIMITED",
            "message": f"Too many requests (limit {limit}). Please slow down.",
            "details": {"limit": limit},
        },
        headers={"Retry-After": "60"},
    )
