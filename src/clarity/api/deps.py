"""FastAPI dependencies for dependency injection."""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clarity.database import get_session
from clarity.models import User
from clarity.services.auth import SessionService, get_session_service
from clarity.services.errors import TokenError
from clarity.services.rate_limit import (
    RateLimitType,
    check_rate_limit,
    rate_limit_headers,
)

logger = logging.getLogger(__name__)

# Type alias for database session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]

# Type alias for the auth facade
SessionServiceDep = Annotated[SessionService, Depends(get_session_service)]

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    service: SessionServiceDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str:
    """Validate the bearer access token and return its user id, or raise 401.

    This is the single trust boundary for every authenticated endpoint.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return service.validate_access_token(credentials.credentials)
    except TokenError as e:
        logger.debug(f"Access token rejected: {e.code}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


async def get_current_user(service: SessionServiceDep, user_id: CurrentUserId) -> User:
    """Resolve the authenticated user record, or raise 401 if it is gone."""
    user = await service.current_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


class RateLimitDependency:
    """Dependency class for rate limiting endpoints.

    Usage:
        @router.post("/endpoint")
        async def endpoint(
            rate_limit: Annotated[None, Depends(RateLimitDependency(RateLimitType.API))]
        ):
            ...
    """

    def __init__(self, limit_type: RateLimitType) -> None:
        self.limit_type = limit_type

    async def __call__(self, request: Request) -> None:
        """Check rate limit and raise 429 if exceeded."""
        result = await check_rate_limit(request, self.limit_type)

        if not result.success:
            headers = rate_limit_headers(result)
            retry_after = headers.get("Retry-After", "60")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Rate limit exceeded. Please try again in {retry_after} seconds.",
                headers=headers,
            )


# Pre-configured rate limit dependencies
SendOTPRateLimit = Annotated[None, Depends(RateLimitDependency(RateLimitType.SEND_OTP))]
VerifyOTPRateLimit = Annotated[None, Depends(RateLimitDependency(RateLimitType.VERIFY_OTP))]
RefreshRateLimit = Annotated[None, Depends(RateLimitDependency(RateLimitType.REFRESH))]
