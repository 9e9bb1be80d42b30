"""Profile endpoints: social counters and saved posts."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from mideeye.api.v1.dependencies import CurrentUserDep, SessionDep
from mideeye.core.settings import settings
from mideeye.models import Question
from mideeye.schemas.question import QuestionResponse
from mideeye.schemas.user import UserStats
from mideeye.services import user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}/stats", response_model=UserStats)
async def get_user_stats(user_id: str, db: SessionDep) -> UserStats:
    """Followers, following, questions and answers counts."""
    if user_service.get_profile(db, user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user_service.get_user_stats(db, user_id)


@router.get("/{user_id}/saved-posts", response_model=list[QuestionResponse])
async def list_saved_posts(
    user_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    skip: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
) -> list[Question]:
    """Saved questions, newest save first. Only visible to their owner."""
    if current_user.id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Saved posts are private",
        )
    page_size = limit if limit is not None else settings.saved_posts_page_size
    return list(user_service.list_saved_posts(db, user_id, skip=skip, limit=page_size))
