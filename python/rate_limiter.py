"""
Fixed-window rate limiting with a Redis backend.

Counters live in Redis, not in process memory, so limits hold across
restarts and across every API instance sharing the same Redis.

- Key: ``<prefix>:<identity>:<window start>``
- Identity: ``user:<id>`` for a valid bearer token, else ``ip:<client address>``
- A Redis outage is logged and the request is let through
"""

import logging
import time
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Request, status
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from api.middleware import create_error_response
from auth import AuthenticationError, decode_access_token, extract_bearer_token
from config_manager import AuthConfig, RateLimitConfig
from security_logger import get_security_logger

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when an identity has used up its window"""

    def __init__(
        self,
        detail: str = "Too many requests. Please try again later.",
        retry_after: int = 60,
        limit: int = 100,
        window: int = 60,
    ):
        super().__init__(detail)
        self.detail = detail
        self.retry_after = retry_after
        self.limit = limit
        self.window = window
        self.status_code = status.HTTP_429_TOO_MANY_REQUESTS
        self.headers = {
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(int(time.time()) + retry_after),
        }


class RateLimiter:
    """Fixed-window request counter"""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        requests: int = 100,
        window: int = 900,
        prefix: str = "halamanggaling:ratelimit",
    ):
        """
        Args:
            redis_client: Async Redis client
            requests: Number of requests allowed per window
            window: Window length in seconds
            prefix: Redis key prefix
        """
        if requests <= 0 or window <= 0:
            raise ValueError("requests and window must be positive")
        self.redis = redis_client
        self.requests = requests
        self.window = window
        self.prefix = prefix

        logger.info(f"Rate limiter initialized: {requests} requests per {window}s")

    def _get_key(self, identity: str, window_start: int) -> str:
        return f"{self.prefix}:{identity}:{window_start}"

    async def check_rate_limit(self, identity: str) -> dict:
        """
        Count one request for ``identity``.

        Returns:
            Dictionary with ``remaining``, ``reset`` (unix time) and ``retry_after``

        Raises:
            RateLimitExceeded: If the window is used up
            RedisError: If Redis cannot be reached
        """
        now = int(time.time())
        window_start = now - (now % self.window)
        window_end = window_start + self.window
        key = self._get_key(identity, window_start)

        pipe = self.redis.pipeline()
        pipe.incr(key)
        pipe.expireat(key, window_end)
        results = await pipe.execute()

        count = int(results[0])
        if count > self.requests:
            raise RateLimitExceeded(
                retry_after=max(1, window_end - now),
                limit=self.requests,
                window=self.window,
            )

        return {
            "remaining": max(0, self.requests - count),
            "reset": window_end,
            "retry_after": 0,
        }


def client_identity(request: Request, auth_config: Optional[AuthConfig] = None) -> str:
    """``user:<id>`` from a valid bearer token, otherwise ``ip:<address>``"""
    try:
        token = extract_bearer_token(request.headers.get("Authorization"))
        payload = decode_access_token(token, auth_config)
        return f"user:{payload['sub']}"
    except AuthenticationError:
        pass

    client_ip = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    return f"ip:{client_ip}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies the limiter to every request outside ``exclude_paths`` and stamps
    X-RateLimit-* headers on the response.
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: RateLimiter,
        auth_config: Optional[AuthConfig] = None,
        exclude_paths: Optional[list] = None,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.auth_config = auth_config
        self.exclude_paths = exclude_paths or []

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        identity = client_identity(request, self.auth_config)

        try:
            rate_info = await self.limiter.check_rate_limit(identity)
        except RateLimitExceeded as e:
            logger.warning(
                f"Rate limit exceeded for {identity}: "
                f"{request.method} {request.url.path}"
            )
            get_security_logger().log_rate_limited(
                identity=identity,
                limit=e.limit,
                retry_after=e.retry_after,
                source="rate_limiter.RateLimitMiddleware"
            )
            response = create_error_response(
                code="RATE_LIMIT_EXCEEDED",
                message=e.detail,
                status_code=e.status_code,
                details={"retryAfter": e.retry_after}
            )
            response.headers.update(e.headers)
            return response
        except RedisError as e:
            logger.error(f"Rate limiter unavailable, allowing request: {e}")
            return await call_next(request)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limiter.requests)
        response.headers["X-RateLimit-Remaining"] = str(rate_info["remaining"])
        response.headers["X-RateLimit-Reset"] = str(rate_info["reset"])
        return response


def create_rate_limiter(config: RateLimitConfig) -> Optional[RateLimiter]:
    """Build a limiter from config, or None when rate limiting is off"""
    if not config.enabled or not config.redis_url:
        logger.info("Rate limiting disabled")
        return None
    client = aioredis.from_url(config.redis_url, decode_responses=True)
    return RateLimiter(
        client,
        requests=config.requests,
        window=config.window_seconds,
        prefix=config.key_prefix,
    )
