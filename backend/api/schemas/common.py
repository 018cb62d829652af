"""Common schemas used across the API."""

from pydantic import BaseModel, Field


class StatusMessage(BaseModel):
    """Simple status acknowledgement."""

    status: str


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(description="Human-readable error message")
