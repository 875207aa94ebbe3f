"""
Canonical Report Schema

A Report is a citizen's record of a problem in the municipality.
It is created pending, triaged by agents, and never deleted.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class ReportStatus(str, Enum):
    """
    Triage state of a report.

    Any state can move to any other state. Agents may also reset a
    report back to PENDING.
    """
    PENDING = "pending"         # Reported, not yet looked at
    WATCHED = "watched"         # Acknowledged by the municipality
    OBSERVED = "observed"       # Under observation / work scheduled
    SUCCESS = "success"         # Resolved

    @property
    def label(self) -> str:
        """Human-readable label shown to citizens."""
        return STATUS_LABELS[self]


STATUS_LABELS = {
    ReportStatus.PENDING: "Pending",
    ReportStatus.WATCHED: "Watched",
    ReportStatus.OBSERVED: "Under Observation",
    ReportStatus.SUCCESS: "Resolved",
}


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class Media(BaseModel):
    """
    A photo or video attached to a report.

    The url is a payload reference: either a remote http(s) URL or
    an inline base64 data URL uploaded with the report.
    """
    id: UUID = Field(
        ...,
        description="Unique identifier for this attachment"
    )
    kind: MediaKind = Field(
        ...,
        description="image or video"
    )
    url: str = Field(
        ...,
        min_length=1,
        description="http(s) URL or data: URL of the payload"
    )


class Comment(BaseModel):
    """
    A comment on a report. Comments are append-only.
    """
    id: UUID
    text: str = Field(..., min_length=1)
    author_id: UUID
    author_name: str
    created_at: datetime


class Report(BaseModel):
    """
    The atomic unit of the reporting system.

    Invariants:
    - status is one of the four ReportStatus values
    - updated_at >= created_at
    - comments are ordered by created_at

    author_id may point to an identity that no longer exists: deleting
    an account leaves its reports in place.
    """
    id: UUID = Field(
        ...,
        description="Unique identifier for this report"
    )

    title: str = Field(
        ...,
        min_length=1,
        description="Brief title of the issue"
    )
    description: str = Field(
        ...,
        min_length=1,
        description="What is wrong, in the reporter's words"
    )
    location: str = Field(
        ...,
        min_length=1,
        description="Free-text location (street, landmark or coordinates)"
    )

    status: ReportStatus = Field(
        default=ReportStatus.PENDING,
        description="Current triage status"
    )

    created_at: datetime = Field(
        ...,
        description="When the report was submitted"
    )
    updated_at: datetime = Field(
        ...,
        description="Last status change or comment"
    )

    author_id: UUID = Field(
        ...,
        description="Identity that submitted the report"
    )
    author_name: str = Field(
        ...,
        description="Display name of the author at submission time"
    )

    media: list[Media] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)

    schema_version: int = Field(
        default=1,
        description="Schema version for forward compatibility"
    )

    @model_validator(mode="after")
    def updated_not_before_created(self) -> "Report":
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not be earlier than created_at")
        return self

    @field_validator("comments")
    @classmethod
    def comments_in_creation_order(cls, v: list[Comment]) -> list[Comment]:
        for earlier, later in zip(v, v[1:]):
            if later.created_at < earlier.created_at:
                raise ValueError("comments must be ordered by created_at")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "id": "550e8400-e29b-41d4-a716-446655440000",
                "title": "Broken Street Light",
                "description": "The street light at the corner of Main St and Park Ave has been broken for two weeks.",
                "location": "Main St & Park Ave, Bhimdatta",
                "status": "pending",
                "created_at": "2024-03-15T14:30:00Z",
                "updated_at": "2024-03-15T14:30:00Z",
                "author_id": "660e8400-e29b-41d4-a716-446655440001",
                "author_name": "John Doe",
                "media": [],
                "comments": [],
                "schema_version": 1
            }
        }


class MediaUpload(BaseModel):
    """
    A media item as submitted with a new report.

    kind may be omitted for data URLs; it is then taken from the mime type.
    """
    url: str = Field(..., min_length=1)
    kind: Optional[MediaKind] = None
