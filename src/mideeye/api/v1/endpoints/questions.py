"""Question and threaded-answer endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status
from sqlalchemy.orm import Session

from mideeye.api.v1.dependencies import CurrentUserDep, SessionDep
from mideeye.models import Question
from mideeye.schemas.question import (
    AnswerCreate,
    AnswerNodeResponse,
    AnswerRecord,
    QuestionCreate,
    QuestionResponse,
)
from mideeye.services import question_service
from mideeye.services.threads import ThreadNode, build_thread_tree

router = APIRouter(tags=["questions"])


def _get_question_or_404(db: Session, question_id: str) -> Question:
    question = question_service.get_question(db, question_id)
    if question is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
    return question


def _to_node_response(node: ThreadNode[AnswerRecord]) -> AnswerNodeResponse:
    return AnswerNodeResponse(
        **node.record.model_dump(),
        children=[_to_node_response(child) for child in node.children],
    )


@router.post(
    "/questions",
    response_model=QuestionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_question(
    payload: QuestionCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> Question:
    """Ask a new question."""
    return question_service.create_question(db, current_user.id, payload)


@router.get("/questions/{question_id}", response_model=QuestionResponse)
async def get_question(question_id: str, db: SessionDep) -> Question:
    """Fetch a single question."""
    return _get_question_or_404(db, question_id)


@router.get("/questions/{question_id}/answers", response_model=list[AnswerRecord])
async def list_answers(question_id: str, db: SessionDep) -> list[AnswerRecord]:
    """Flat answers of a question, oldest first."""
    _get_question_or_404(db, question_id)
    return question_service.list_answers(db, question_id)


@router.get("/questions/{question_id}/answers/thread", response_model=list[AnswerNodeResponse])
async def get_answer_thread(question_id: str, db: SessionDep) -> list[AnswerNodeResponse]:
    """Answers of a question nested into reply threads."""
    _get_question_or_404(db, question_id)
    tree = build_thread_tree(question_service.list_answers(db, question_id))
    return [_to_node_response(root) for root in tree]


@router.post(
    "/questions/{question_id}/answers",
    response_model=AnswerRecord,
    status_code=status.HTTP_201_CREATED,
)
async def create_answer(
    question_id: str,
    payload: AnswerCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> AnswerRecord:
    """Answer a question, or reply to one of its answers."""
    question = _get_question_or_404(db, question_id)
    try:
        return question_service.create_answer(db, question, current_user.id, payload)
    except ValueError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err


@router.delete("/answers/{answer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_answer(
    answer_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> Response:
    """Delete one of the caller's answers; its replies stay visible."""
    try:
        deleted = question_service.delete_answer(db, answer_id, current_user.id)
    except question_service.AnswerNotAllowedError as err:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(err)) from err
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Answer not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
