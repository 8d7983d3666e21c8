"""Pydantic schemas for API requests/responses."""

from clarity.schemas.common import ErrorResponse

__all__ = ["ErrorResponse"]
