"""Per-client request rate limiting using a sliding window.

This guards the auth endpoints against floods from a single client address.
It is independent of the per-email resend interval enforced when codes are
issued.
"""

import time
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum

from fastapi import Request

from clarity.utils.locks import KeyedLock


class RateLimitType(str, Enum):
    """Rate limit types for different endpoint categories."""

    SEND_OTP = "send_otp"
    VERIFY_OTP = "verify_otp"
    REFRESH = "refresh"
    API = "api"


@dataclass
class RateLimitConfig:
    """Configuration for a rate limit type."""

    requests: int
    window_seconds: int


RATE_LIMIT_CONFIG: dict[RateLimitType, RateLimitConfig] = {
    RateLimitType.SEND_OTP: RateLimitConfig(requests=10, window_seconds=60),
    RateLimitType.VERIFY_OTP: RateLimitConfig(requests=20, window_seconds=60),
    RateLimitType.REFRESH: RateLimitConfig(requests=30, window_seconds=60),
    RateLimitType.API: RateLimitConfig(requests=120, window_seconds=60),
}


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    success: bool
    limit: int
    remaining: int
    reset: int  # Unix timestamp in seconds


class InMemoryRateLimiter:
    """In-memory sliding window limiter.

    Note: This is suitable for single-instance deployments.
    """

    def __init__(self) -> None:
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._locks = KeyedLock()

    async def check(self, identifier: str, limit_type: RateLimitType) -> RateLimitResult:
        """Record a request for ``identifier`` and report whether it is allowed.

        Args:
            identifier: Unique identifier (e.g., "ip:1.2.3.4")
            limit_type: Type of rate limit to apply
        """
        config = RATE_LIMIT_CONFIG[limit_type]
        key = f"{limit_type.value}:{identifier}"
        now = time.time()
        window_start = now - config.window_seconds

        async with self._locks.hold(key):
            timestamps = [t for t in self._requests[key] if t > window_start]
            self._requests[key] = timestamps

            if len(timestamps) >= config.requests:
                return RateLimitResult(
                    success=False,
                    limit=config.requests,
                    remaining=0,
                    reset=int(min(timestamps) + config.window_seconds),
                )

            timestamps.append(now)
            return RateLimitResult(
                success=True,
                limit=config.requests,
                remaining=config.requests - len(timestamps),
                reset=int(now + config.window_seconds),
            )

    def reset(self) -> None:
        """Reset all rate limit entries. Useful for testing."""
        self._requests.clear()

    async def cleanup_old_entries(self) -> int:
        """Drop keys whose whole window has elapsed. Returns the number removed."""
        now = time.time()
        removed = 0
        for key in list(self._requests):
            limit_type = RateLimitType(key.split(":", 1)[0])
            window = RATE_LIMIT_CONFIG[limit_type].window_seconds
            async with self._locks.hold(key):
                valid = [t for t in self._requests.get(key, []) if t > now - window]
                if valid:
                    self._requests[key] = valid
                elif key in self._requests:
                    del self._requests[key]
                    removed += 1
        return removed


# Global rate limiter instance
_rate_limiter = InMemoryRateLimiter()


def get_rate_limiter() -> InMemoryRateLimiter:
    """Get the global rate limiter instance."""
    return _rate_limiter


def get_client_ip(request: Request) -> str | None:
    """Extract the client IP, honouring common proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return None


async def check_rate_limit(request: Request, limit_type: RateLimitType) -> RateLimitResult:
    """Check the rate limit for the client making ``request``."""
    identifier = f"ip:{get_client_ip(request) or 'unknown'}"
    return await get_rate_limiter().check(identifier, limit_type)


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Build the X-RateLimit-* (and Retry-After) response headers."""
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset),
    }

    if not result.success:
        headers["Retry-After"] = str(max(0, result.reset - int(time.time())))

    return headers
