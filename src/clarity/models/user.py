"""User model."""

from sqlmodel import Field, SQLModel

from clarity.models.base import TimestampMixin, generate_nanoid


class User(TimestampMixin, SQLModel, table=True):
    """User identity, keyed by a verified email address."""

    __tablename__ = "users"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    email: str = Field(unique=True, index=True, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    date_of_birth: str | None = Field(default=None, max_length=32)
    gender: str | None = Field(default=None, max_length=32)
    blood_type: str | None = Field(default=None, max_length=8)


class UserRead(SQLModel):
    """Schema for reading a user."""

    id: str
    email: str
    name: str | None = None
    date_of_birth: str | None = None
    gender: str | None = None
    blood_type: str | None = None
