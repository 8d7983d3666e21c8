"""SQLModel database models."""

from clarity.models.base import TimestampMixin
from clarity.models.otp_challenge import OTPChallenge
from clarity.models.refresh_token import RefreshToken
from clarity.models.user import User, UserRead

__all__ = [
    "OTPChallenge",
    "RefreshToken",
    "TimestampMixin",
    "User",
    "UserRead",
]
