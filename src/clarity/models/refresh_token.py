"""Refresh token provenance model."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from clarity.models.base import generate_nanoid


class RefreshToken(SQLModel, table=True):
    """Server-side record of an issued refresh token.

    Only a hash of the secret part is stored. Tokens rotated from the same
    login share a ``family_id`` so a replayed token can revoke its whole lineage.
    """

    __tablename__ = "refresh_tokens"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    user_id: str = Field(foreign_key="users.id", index=True, max_length=21, ondelete="CASCADE")
    family_id: str = Field(index=True, max_length=21)
    token_hash: str = Field(max_length=64)
    revoked: bool = Field(default=False)
    replaced_by: str | None = Field(default=None, max_length=21)
    created_at: datetime = Field(
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )
    expires_at: datetime = Field(
        index=True,
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )
    revoked_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )
