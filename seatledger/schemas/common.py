"""Common schema utilities."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class ErrorResponse(BaseModel):
    """Error response schema."""

    error: str
    detail: str | None = None
    items: list[dict[str, Any]] | None = None


class SuccessResponse(BaseModel):
    """Simple success response."""

    success: bool = True
    message: str
