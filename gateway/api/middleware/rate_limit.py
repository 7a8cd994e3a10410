"""
Rate Limiting Middleware

Per-client rate limiting with Redis backend, proper headers and logging.

Two scopes share the same fixed window:
- general: lifecycle routes (request-qr, reset)
- send: send-product-info
"""

import logging
from typing import Callable, Literal, Tuple

from fastapi import HTTPException, Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from gateway.api.deps import get_app_settings
from gateway.config import Settings
from gateway.infra.redis import get_rate_limiter_store

logger = logging.getLogger(__name__)

RateLimitScope = Literal["general", "send"]

# Paths that skip rate limiting (health checks, docs)
RATE_LIMIT_SKIP_PATHS = {
    "/",
    "/health",
    "/health/ready",
    "/health/live",
    "/docs",
    "/redoc",
    "/openapi.json",
}

# Header names
HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_USED = "X-RateLimit-Used"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"


def should_skip_rate_limit(request: Request) -> bool:
    """
    Check if request should skip rate limiting.

    Skips:
    - Health check endpoints
    - Documentation endpoints
    - OPTIONS requests (CORS preflight)
    """
    if request.url.path in RATE_LIMIT_SKIP_PATHS:
        return True

    if request.method == "OPTIONS":
        return True

    return False


def get_client_ip(request: Request) -> str:
    """Client address, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def limit_for_scope(scope: RateLimitScope, settings: Settings) -> int:
    if scope == "send":
        return settings.send_rate_limit_requests
    return settings.rate_limit_requests


def add_rate_limit_headers(
    response: Response,
    limit: int,
    remaining: int,
    used: int,
    reset_seconds: int,
) -> None:
    """Add rate limit headers to response."""
    response.headers[HEADER_LIMIT] = str(limit)
    response.headers[HEADER_REMAINING] = str(remaining)
    response.headers[HEADER_USED] = str(used)
    response.headers[HEADER_RESET] = str(reset_seconds)


async def check_rate_limit(
    request: Request,
    scope: RateLimitScope,
) -> Tuple[bool, int, int, int, int]:
    """
    Check rate limit for current request.

    Returns:
        Tuple of (allowed, limit, remaining, used, reset_seconds)
    """
    if should_skip_rate_limit(request):
        return (True, 0, 0, 0, 0)

    settings = get_app_settings(request)
    limit = limit_for_scope(scope, settings)
    store = await get_rate_limiter_store(settings.rate_limit_window)

    identifier = f"{scope}:{get_client_ip(request)}"
    allowed, remaining, used, reset_seconds = await store.hit(identifier, limit)

    return (allowed, limit, remaining, used, reset_seconds)


def rate_limit(scope: RateLimitScope = "general") -> Callable:
    """
    Build a FastAPI dependency that enforces the ``scope`` rate limit.

    Raises HTTPException 429 if rate limit exceeded.

    Usage:
        @router.post("/reset", dependencies=[Depends(rate_limit("general"))])
        async def reset(): ...
    """

    async def require_rate_limit(request: Request) -> None:
        allowed, limit, remaining, used, reset_seconds = await check_rate_limit(request, scope)

        # Store in request state for middleware to add headers
        request.state.rate_limit_limit = limit
        request.state.rate_limit_remaining = remaining
        request.state.rate_limit_used = used
        request.state.rate_limit_reset = reset_seconds

        if not allowed:
            logger.warning(
                f"Rate limit exceeded | Scope: {scope} | "
                f"Limit: {limit} | Used: {used} | IP: {get_client_ip(request)} | "
                f"Path: {request.url.path}"
            )

            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "Rate limit exceeded",
                    "limit": limit,
                    "used": used,
                    "retry_after": reset_seconds,
                },
                headers={
                    HEADER_LIMIT: str(limit),
                    HEADER_REMAINING: "0",
                    HEADER_USED: str(used),
                    HEADER_RESET: str(reset_seconds),
                    HEADER_RETRY_AFTER: str(reset_seconds),
                },
            )

    return require_rate_limit


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds rate limit headers to all responses.

    The actual rate limit check is done by the rate_limit() dependency.
    This middleware just ensures headers are added to responses.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        response = await call_next(request)

        limit = getattr(request.state, "rate_limit_limit", None)
        remaining = getattr(request.state, "rate_limit_remaining", None)
        used = getattr(request.state, "rate_limit_used", None)
        reset_seconds = getattr(request.state, "rate_limit_reset", None)

        if limit is not None and limit > 0:
            add_rate_limit_headers(response, limit, remaining, used, reset_seconds)

        return response
