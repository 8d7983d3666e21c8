"""One-time code challenge model."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class OTPChallenge(SQLModel, table=True):
    """Outstanding one-time code for an email address.

    The email is the primary key: issuing a new code replaces the row, so at
    most one challenge per email can exist.
    """

    __tablename__ = "otp_challenges"

    email: str = Field(primary_key=True, max_length=255)
    code_hash: str = Field(max_length=64, description="HMAC-SHA256 digest of the code")
    attempts: int = Field(default=0, description="Failed verification attempts")
    consumed: bool = Field(default=False)
    created_at: datetime = Field(
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
        description="When the code was issued",
    )
    expires_at: datetime = Field(
        index=True,
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
        description="Code expiration time",
    )
    consumed_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )
