"""Shared model fields."""

from datetime import datetime

from nanoid import generate as nanoid_generate
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from clarity.utils.time import utcnow


def generate_nanoid() -> str:
    """URL-safe 21 character id for users and refresh tokens."""
    return nanoid_generate()


class TimestampMixin(SQLModel):
    """Adds created_at / updated_at, both stored timezone-aware."""

    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[call-overload]
        sa_column_kwargs={"onupdate": utcnow},
    )
