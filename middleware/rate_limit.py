# middleware/rate_limit.py
"""
HTTP rate limiting with slowapi, keyed by client address.

Usage in route files:
    from middleware.rate_limit import limiter

    @router.get("/expensive")
    @limiter.limit(ANALYSIS_RATE_LIMIT)
    async def my_endpoint(request: Request):
        ...

This guards the HTTP surface only; outbound model calls are paced separately.
"""
import logging
import os

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

# Env-overridable so limits can be tuned per environment without a deploy.
DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
ANALYSIS_RATE_LIMIT = os.getenv("RATE_LIMIT_ANALYSIS", "10/minute")

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        "rate_limited path=%s client=%s limit=%s",
        request.scope.get("path", ""),
        get_remote_address(request),
        exc.detail,
    )
    return JSONResponse(status_code=429, content={"detail": f"Rate limit exceeded: {exc.detail}"})
