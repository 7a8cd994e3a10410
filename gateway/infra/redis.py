"""
Redis Connection Management

Redis connection used for request rate limiting. Features graceful
degradation: when Redis is disabled or unreachable, rate limiting fails open.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from gateway.config import settings

# Logger
logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "wagateway:v1:"


class RedisClient:
    """
    Manages Redis connection as a singleton.

    Features:
    - Connection pooling
    - Automatic retries
    - Timeouts
    - Graceful failure handling
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if disabled or connection fails
        """
        if not settings.redis_enabled:
            return None

        if cls._client is not None and cls._connected:
            return cls._client

        try:
            # Retry configuration: 3 retries with exponential backoff
            retry = Retry(ExponentialBackoff(), retries=3)

            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            # Test connection
            await cls._client.ping()
            cls._connected = True
            logger.info("Redis connection established successfully")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None
        except Exception as e:
            logger.error(f"Unexpected error connecting to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except Exception as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False


async def get_redis() -> Optional[Redis]:
    """
    FastAPI dependency that provides Redis client.

    Returns None if Redis is disabled or unavailable.
    """
    return await RedisClient.get_client()


class RateLimiterStore:
    """
    Redis-based rate limiting using a fixed window counter.

    Key: wagateway:v1:ratelimit:{identifier}

    IMPORTANT: Fails OPEN - if Redis is unavailable, requests are ALLOWED.
    """

    RATELIMIT_PREFIX = f"{APP_PREFIX}ratelimit:"

    def __init__(self, redis_client: Optional[Redis], window_seconds: Optional[int] = None):
        self.redis = redis_client
        self.window_seconds = window_seconds or settings.rate_limit_window

    def _key(self, identifier: str) -> str:
        """Generate rate limit key with namespace."""
        return f"{self.RATELIMIT_PREFIX}{identifier}"

    async def hit(self, identifier: str, max_requests: int) -> tuple[bool, int, int, int]:
        """
        Count a request and check it against ``max_requests``.

        FAILS OPEN: If Redis unavailable, the request is allowed.

        Args:
            identifier: Unique identifier (e.g., "send:203.0.113.7")
            max_requests: Requests allowed per window

        Returns:
            Tuple of (allowed, remaining, used, reset_seconds)
        """
        if self.redis is None:
            return (True, max_requests, 0, self.window_seconds)

        try:
            key = self._key(identifier)

            # Increment counter
            current = await self.redis.incr(key)

            # Set expiry on first request in window
            if current == 1:
                await self.redis.expire(key, self.window_seconds)

            # Get TTL for reset time
            ttl = await self.redis.ttl(key)
            if ttl < 0:
                ttl = self.window_seconds

            remaining = max(0, max_requests - current)
            allowed = current <= max_requests

            if not allowed:
                logger.info(f"Rate limit exceeded for {identifier}")

            return (allowed, remaining, current, ttl)

        except RedisError as e:
            # FAIL OPEN on error
            logger.error(f"Rate limit check failed for {identifier}: {e} - allowing request")
            return (True, max_requests, 0, self.window_seconds)


async def get_rate_limiter_store(window_seconds: Optional[int] = None) -> RateLimiterStore:
    """
    Get RateLimiterStore instance.

    Returns RateLimiterStore even if Redis unavailable (fails open).
    """
    client = await get_redis()
    return RateLimiterStore(client, window_seconds)


async def check_redis_health() -> Optional[bool]:
    """
    Check Redis connectivity for health checks.

    Returns:
        None if Redis is disabled, otherwise whether it responds to PING
    """
    if not settings.redis_enabled:
        return None

    try:
        client = await get_redis()
        if client is None:
            return False

        await client.ping()
        return True

    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return False
