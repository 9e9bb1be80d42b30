"""Read helpers for profiles and their social counters."""
from __future__ import annotations

from typing import Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from mideeye.models import Answer, Profile, Question, SavedPost, UserFollow
from mideeye.schemas.user import UserStats

__all__ = ["get_profile", "get_user_stats", "list_saved_posts"]


def get_profile(db: Session, user_id: str) -> Profile | None:
    """Return a single profile by primary key."""
    return db.query(Profile).filter(Profile.id == user_id).first()


def _count(db: Session, model: type, *criteria) -> int:
    return int(db.query(func.count()).select_from(model).filter(*criteria).scalar() or 0)


def get_user_stats(db: Session, user_id: str) -> UserStats:
    """Aggregate follower/following/question/answer counts for a profile."""
    return UserStats(
        user_id=user_id,
        followers_count=_count(db, UserFollow, UserFollow.following_id == user_id),
        following_count=_count(db, UserFollow, UserFollow.follower_id == user_id),
        questions_count=_count(db, Question, Question.user_id == user_id),
        answers_count=_count(db, Answer, Answer.user_id == user_id),
    )


def list_saved_posts(
    db: Session, user_id: str, skip: int = 0, limit: int = 20
) -> Sequence[Question]:
    """Return questions saved by ``user_id``, most recently saved first."""
    return (
        db.query(Question)
        .join(SavedPost, SavedPost.post_id == Question.id)
        .filter(SavedPost.user_id == user_id)
        .order_by(SavedPost.saved_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
