"""
API Key Authentication

Optional shared-secret checks. When ``API_KEY`` is set, mutating HTTP routes
require it in the ``X-API-Key`` header; when ``REALTIME_TOKEN`` is set,
websocket clients must pass it as the ``token`` query parameter.
"""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from gateway.api.deps import get_app_settings
from gateway.config import Settings

logger = logging.getLogger(__name__)

# API Key header scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def mask_api_key(api_key: str) -> str:
    """
    Mask API key for logging.

    Shows the first 3 and last 3 characters.
    """
    if len(api_key) < 10:
        return "***"
    return f"{api_key[:3]}...{api_key[-3:]}"


def secrets_match(provided: Optional[str], expected: str) -> bool:
    """Constant-time comparison (prevents timing attacks)."""
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


async def require_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
) -> None:
    """
    FastAPI dependency that enforces the configured API key.

    No-op when ``API_KEY`` is not configured.

    Raises:
        HTTPException 401: No API key provided
        HTTPException 403: Invalid API key
    """
    settings = get_app_settings(request)
    if not settings.api_key:
        return

    client_ip = request.client.host if request.client else "unknown"
    user_agent = request.headers.get("user-agent", "unknown")[:100]

    if not api_key:
        logger.warning(f"Auth failed: No API key provided | IP: {client_ip} | UA: {user_agent}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not secrets_match(api_key, settings.api_key):
        logger.warning(
            f"Auth failed: Invalid API key | Key: {mask_api_key(api_key)} | "
            f"IP: {client_ip} | UA: {user_agent}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    logger.debug(f"Auth success | IP: {client_ip} | Path: {request.url.path}")


def verify_realtime_token(token: Optional[str], settings: Settings) -> bool:
    """Whether a realtime client may connect. Always True when no token is configured."""
    if not settings.realtime_token:
        return True
    return secrets_match(token, settings.realtime_token)
