"""Review-sync event schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ReviewSnapshotPayload(BaseModel):
    """Review state as sent by review sync."""

    model_config = ConfigDict(populate_by_name=True)

    rating: Optional[int] = Field(default=None, ge=1, le=5)
    sentiment: Optional[str] = None
    body: Optional[str] = Field(default=None, validation_alias=AliasChoices("body", "text", "content"))
    platform: Optional[str] = None
    author_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("author_name", "authorName")
    )
    needs_action: bool = Field(
        default=False, validation_alias=AliasChoices("needs_action", "needsAction")
    )
    replied_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("replied_at", "repliedAt")
    )
    created_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )


class EventPublish(BaseModel):
    """PublishEvent request from review sync."""

    model_config = ConfigDict(populate_by_name=True)

    review_id: UUID = Field(..., validation_alias=AliasChoices("review_id", "reviewId"))
    kind: str = Field(..., description="created, updated, replied or sentiment_enriched")
    version: Optional[str] = Field(default=None, min_length=1, max_length=64)
    snapshot: ReviewSnapshotPayload


class EventAccepted(BaseModel):
    """Event queued for processing."""

    event_id: UUID
    review_id: UUID
    kind: str
    version: str
    status: str = "accepted"
