"""Question and answer Pydantic schemas."""
from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QuestionCreate(BaseModel):
    """Schema for asking a new question."""

    title: str = Field(..., min_length=1, max_length=300)
    content: str = ""
    category: str | None = None


class QuestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    content: str
    category: str | None
    created_at: datetime


class AnswerCreate(BaseModel):
    """Schema for posting an answer or a reply to another answer."""

    content: str
    parent_id: str | None = None


class AnswerRecord(BaseModel):
    """Flat answer as fetched from the store, oldest first."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    question_id: str
    parent_id: str | None = None
    user_id: str
    content: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive timestamps; realtime payloads are aware.
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class AnswerNodeResponse(AnswerRecord):
    """Answer with its replies nested in arrival order."""

    model_config = ConfigDict(from_attributes=True, frozen=False)

    children: list[AnswerNodeResponse] = Field(default_factory=list)
