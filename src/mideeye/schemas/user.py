"""Profile-related Pydantic schemas."""
from __future__ import annotations

from pydantic import BaseModel


class UserStats(BaseModel):
    """Social counters shown on profile pages."""

    user_id: str
    followers_count: int = 0
    following_count: int = 0
    questions_count: int = 0
    answers_count: int = 0
