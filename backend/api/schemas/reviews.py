"""Target and review schemas."""

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class TargetResponse(BaseModel):
    """A configured (application, country) target."""

    model_config = ConfigDict(populate_by_name=True)

    app_id: str = Field(alias="appId", description="Store application ID")
    country: str = Field(description="Two-letter storefront country code")


class ReviewResponse(BaseModel):
    """A stored customer review."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="Feed-assigned review ID")
    app_id: str = Field(alias="appId")
    country: str
    author: str = ""
    rating: int = Field(description="Star rating, 1-5")
    title: str = ""
    content: str = ""
    submitted_at: str = Field(alias="submittedAt", description="RFC3339 submission time (UTC)")


class ReviewListResponse(BaseModel):
    """Recent reviews for one target within a time window."""

    model_config = ConfigDict(populate_by_name=True)

    app_id: str = Field(alias="appId")
    country: str
    from_: str = Field(alias="from", description="Window start, RFC3339")
    to: str = Field(description="Window end, RFC3339")
    count: int = Field(description="Number of reviews returned")
    reviews: List[ReviewResponse] = Field(description="Reviews, newest first")
