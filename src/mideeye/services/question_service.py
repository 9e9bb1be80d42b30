"""Service-level helpers for questions and threaded answers."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from mideeye.core.settings import settings
from mideeye.db.time import utcnow
from mideeye.models import Answer, Question
from mideeye.schemas.question import AnswerCreate, AnswerRecord, QuestionCreate

__all__ = [
    "create_question",
    "get_question",
    "list_answers",
    "create_answer",
    "delete_answer",
]

logger = logging.getLogger(__name__)


class AnswerNotAllowedError(PermissionError):
    """Raised when a user modifies an answer they do not own."""


def create_question(db: Session, author_id: str, payload: QuestionCreate) -> Question:
    """Persist a new question for ``author_id``."""
    question = Question(
        user_id=author_id,
        title=payload.title.strip(),
        content=payload.content,
        category=payload.category,
    )
    db.add(question)
    db.commit()
    db.refresh(question)
    return question


def get_question(db: Session, question_id: str) -> Question | None:
    """Return a single question by primary key."""
    return db.query(Question).filter(Question.id == question_id).first()


def list_answers(db: Session, question_id: str) -> list[AnswerRecord]:
    """Return every answer of a question, oldest first.

    Ties on ``created_at`` fall back to insertion order of the primary key
    index, which the thread builder treats as arrival order.
    """
    rows = (
        db.query(Answer)
        .filter(Answer.question_id == question_id)
        .order_by(Answer.created_at.asc())
        .all()
    )
    return [AnswerRecord.model_validate(row) for row in rows]


def create_answer(
    db: Session, question: Question, author_id: str, payload: AnswerCreate
) -> AnswerRecord:
    """Add an answer, or a reply when ``payload.parent_id`` is set.

    Raises:
        ValueError: If the content is too short or the parent answer does not
            belong to ``question``.
    """
    content = payload.content.strip()
    if len(content) < settings.answer_min_length:
        raise ValueError(
            f"Answer must be at least {settings.answer_min_length} characters long"
        )

    if payload.parent_id is not None:
        parent = (
            db.query(Answer)
            .filter(Answer.id == payload.parent_id, Answer.question_id == question.id)
            .first()
        )
        if parent is None:
            raise ValueError("Parent answer not found for this question")

    answer = Answer(
        question_id=question.id,
        parent_id=payload.parent_id,
        user_id=author_id,
        content=content,
    )
    db.add(answer)
    db.commit()
    db.refresh(answer)
    logger.debug("Answer %s added to question %s", answer.id, question.id)
    return AnswerRecord.model_validate(answer)


def delete_answer(db: Session, answer_id: str, requester_id: str) -> bool:
    """Delete an answer owned by ``requester_id``.

    Replies to the deleted answer are kept; their ``parent_id`` is cleared.

    Returns:
        ``False`` if the answer does not exist.

    Raises:
        AnswerNotAllowedError: If the requester is not the author.
    """
    answer = db.query(Answer).filter(Answer.id == answer_id).first()
    if answer is None:
        return False
    if answer.user_id != requester_id:
        raise AnswerNotAllowedError("Only the author can delete this answer")

    # SQLite ignores ON DELETE SET NULL unless foreign keys are enabled.
    db.query(Answer).filter(Answer.parent_id == answer_id).update(
        {Answer.parent_id: None, Answer.updated_at: utcnow()},
        synchronize_session=False,
    )
    db.delete(answer)
    db.commit()
    return True
