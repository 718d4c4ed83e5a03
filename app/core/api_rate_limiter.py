"""
Request-level rate limiting per client IP.

Counts every hit on the password-reset endpoints in Redis, independent of
whether the email belongs to an account. This complements the store-backed
caps in app/core/rate_limiter.py, which only see issued reset records.
"""

import logging
from typing import Optional

import redis

from app.core.config import settings
from app.core.exceptions import RateLimited
from app.core.logging_config import log_security_event

logger = logging.getLogger(__name__)


class RequestRateLimiter:
    """
    Redis-based fixed window rate limiter.

    The first hit in a window creates the counter with an expiry; later
    hits increment it. If Redis is unreachable requests are let through.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def check_rate_limit(self, key: str, max_requests: int, window_seconds: int) -> None:
        """
        Count one request against key.

        Args:
            key: Unique identifier for this limit (e.g., "reset:forgot:203.0.113.7")
            max_requests: Requests allowed per window
            window_seconds: Window length in seconds

        Raises:
            RateLimited: If the window already holds max_requests hits
        """
        try:
            count = self.redis_client.incr(key)
            if count == 1:
                self.redis_client.expire(key, window_seconds)

            if count > max_requests:
                ttl = self.redis_client.ttl(key)
                wait_seconds = ttl if ttl and ttl > 0 else window_seconds
                log_security_event("REQUEST_RATE_LIMITED", logging.WARNING, limit_key=key, wait_seconds=wait_seconds)
                raise RateLimited(wait_seconds=wait_seconds)

        except redis.RedisError as e:
            # Fail open: the store-backed caps still apply
            logger.error(f"Redis rate limiter error for {key}: {e}")

    def reset_limit(self, key: str) -> None:
        """Clear the counter for a key."""
        try:
            self.redis_client.delete(key)
        except redis.RedisError as e:
            logger.error(f"Redis reset error for {key}: {e}")


_limiter: Optional[RequestRateLimiter] = None


def get_request_limiter() -> RequestRateLimiter:
    """Shared limiter on the configured Redis (connects on first use)."""
    global _limiter
    if _limiter is None:
        _limiter = RequestRateLimiter(
            redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=1,
                socket_timeout=1,
            )
        )
    return _limiter


def check_forgot_password_ip_limit(limiter: RequestRateLimiter, ip_address: Optional[str]) -> None:
    """
    Rate limit for forgot-password requests.

    Limit: RESET_MAX_REQUESTS_PER_IP_HOUR per hour per IP, counting
    unknown-email requests too.
    """
    limiter.check_rate_limit(
        key=f"reset:forgot:{ip_address or 'unknown'}",
        max_requests=settings.RESET_MAX_REQUESTS_PER_IP_HOUR,
        window_seconds=3600,
    )


def check_auth_attempt_ip_limit(limiter: RequestRateLimiter, ip_address: Optional[str]) -> None:
    """
    Rate limit for code verification and password reset attempts.

    Limit: AUTH_RATE_LIMIT_REQUESTS per AUTH_RATE_LIMIT_WINDOW_SECONDS per IP,
    shared by verify-otp and reset-password.
    """
    limiter.check_rate_limit(
        key=f"reset:auth:{ip_address or 'unknown'}",
        max_requests=settings.AUTH_RATE_LIMIT_REQUESTS,
        window_seconds=settings.AUTH_RATE_LIMIT_WINDOW_SECONDS,
    )
