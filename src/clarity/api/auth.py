"""Authentication endpoints: SendOTP, VerifyOTP, RefreshToken."""

import logging

from fastapi import APIRouter
from pydantic import BaseModel, EmailStr, Field

from clarity.api.deps import (
    CurrentUser,
    RefreshRateLimit,
    SendOTPRateLimit,
    SessionServiceDep,
    VerifyOTPRateLimit,
)
from clarity.models import UserRead

logger = logging.getLogger(__name__)

router = APIRouter()


class SendOTPRequest(BaseModel):
    """Request body for requesting a sign-in code."""

    email: EmailStr


class SendOTPResponse(BaseModel):
    """Response for a sign-in code request."""

    success: bool
    message: str


class VerifyOTPRequest(BaseModel):
    """Request body for verifying a sign-in code."""

    email: str = Field(max_length=255)
    code: str = Field(max_length=16)


class VerifyOTPResponse(BaseModel):
    """Response for code verification. Tokens and user are set only on success."""

    success: bool
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str = "bearer"
    user: UserRead | None = None


class RefreshTokenRequest(BaseModel):
    """Request body for exchanging a refresh token."""

    refresh_token: str = Field(min_length=1, max_length=512)


class RefreshTokenResponse(BaseModel):
    """A rotated token pair."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class LogoutRequest(BaseModel):
    """Request body for logout."""

    refresh_token: str = Field(min_length=1, max_length=512)


class LogoutResponse(BaseModel):
    success: bool


@router.post("/send-otp", response_model=SendOTPResponse)
async def send_otp(
    request: SendOTPRequest,
    service: SessionServiceDep,
    _rate_limit: SendOTPRateLimit,
):
    """
    Request a sign-in code.

    Always reports success for a well-formed address, whether or not a new
    code was actually issued.
    """
    result = await service.send_otp(request.email)
    return SendOTPResponse(success=result.success, message=result.message)


@router.post("/verify-otp", response_model=VerifyOTPResponse)
async def verify_otp(
    request: VerifyOTPRequest,
    service: SessionServiceDep,
    _rate_limit: VerifyOTPRateLimit,
):
    """
    Verify a sign-in code and return a session.

    Wrong, expired, reused and unknown codes are indistinguishable here.
    """
    result = await service.verify_otp(request.email, request.code)
    if not result.success or result.tokens is None or result.user is None:
        return VerifyOTPResponse(success=False)

    return VerifyOTPResponse(
        success=True,
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        user=UserRead.model_validate(result.user, from_attributes=True),
    )


@router.post("/refresh-token", response_model=RefreshTokenResponse)
async def refresh_token(
    request: RefreshTokenRequest,
    service: SessionServiceDep,
    _rate_limit: RefreshRateLimit,
):
    """
    Exchange a refresh token for a new pair.

    The presented token is revoked. Presenting it again revokes the session.
    """
    tokens = await service.refresh_token(request.refresh_token)
    return RefreshTokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@router.get("/me", response_model=UserRead)
async def get_current_user_info(user: CurrentUser):
    """Get current authenticated user info."""
    return UserRead.model_validate(user, from_attributes=True)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: LogoutRequest,
    service: SessionServiceDep,
    _rate_limit: RefreshRateLimit,
):
    """Revoke the session the refresh token belongs to."""
    await service.logout(request.refresh_token)
    return LogoutResponse(success=True)
