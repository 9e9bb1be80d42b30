"""Typed relation rows validated at the persistence boundary.

Rows arrive as loosely shaped mappings (database rows, realtime payloads,
HTTP bodies). Each relation table has its own model; all of them normalise to
a single :class:`RelationEdge` so the reconciler never deals with raw dicts.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MAX_BATCH_TARGETS = 500


class RelationKind(str, Enum):
    """User-owned relation families that share the toggle state machine."""

    QUESTION_VOTE = "question_vote"
    ANSWER_VOTE = "answer_vote"
    FOLLOW = "follow"
    SAVED_POST = "saved_post"

    @property
    def is_vote(self) -> bool:
        return self in (RelationKind.QUESTION_VOTE, RelationKind.ANSWER_VOTE)

    @property
    def binary(self) -> bool:
        """Binary relations only exist with the value 1."""
        return not self.is_vote

    @property
    def votable_type(self) -> str:
        if self is RelationKind.QUESTION_VOTE:
            return "question"
        if self is RelationKind.ANSWER_VOTE:
            return "answer"
        raise ValueError(f"{self.value} is not a vote relation")

    @property
    def table(self) -> str:
        if self.is_vote:
            return "votes"
        if self is RelationKind.FOLLOW:
            return "user_follows"
        return "saved_posts"

    @classmethod
    def for_votable_type(cls, votable_type: str) -> RelationKind:
        if votable_type == "question":
            return cls.QUESTION_VOTE
        if votable_type == "answer":
            return cls.ANSWER_VOTE
        raise ValueError(f"Unknown votable type: {votable_type!r}")


@dataclass(frozen=True)
class RelationEdge:
    """One relation row in domain terms."""

    kind: RelationKind
    owner_id: str
    target_id: str
    value: int = 1


class _Row(BaseModel):
    model_config = ConfigDict(extra="ignore", from_attributes=True, coerce_numbers_to_str=True)


class VoteRow(_Row):
    """Row of the ``votes`` table."""

    user_id: str
    votable_id: str
    votable_type: Literal["question", "answer"]
    value: int

    def to_edge(self) -> RelationEdge:
        return RelationEdge(
            kind=RelationKind.for_votable_type(self.votable_type),
            owner_id=self.user_id,
            target_id=self.votable_id,
            value=self.value,
        )


class FollowRow(_Row):
    """Row of the ``user_follows`` table."""

    follower_id: str
    following_id: str

    def to_edge(self) -> RelationEdge:
        return RelationEdge(RelationKind.FOLLOW, self.follower_id, self.following_id)


class SavedPostRow(_Row):
    """Row of the ``saved_posts`` table."""

    user_id: str
    post_id: str

    def to_edge(self) -> RelationEdge:
        return RelationEdge(RelationKind.SAVED_POST, self.user_id, self.post_id)


_ROW_MODELS: dict[str, type[VoteRow] | type[FollowRow] | type[SavedPostRow]] = {
    "votes": VoteRow,
    "user_follows": FollowRow,
    "saved_posts": SavedPostRow,
}


def parse_relation_row(table: str, row: Mapping[str, Any] | object) -> RelationEdge:
    """Validate a raw row from ``table`` and return its edge.

    Raises:
        ValueError: If the table is unknown or the row does not validate
            (pydantic's ``ValidationError`` is a ``ValueError``).
    """
    model = _ROW_MODELS.get(table)
    if model is None:
        raise ValueError(f"Not a relation table: {table!r}")
    if isinstance(row, Mapping):
        row = dict(row)
    return model.model_validate(row).to_edge()


class RelationCastRequest(BaseModel):
    """Body of ``PUT /relations/{kind}/{target_id}``."""

    value: int = Field(default=1, description="Nonzero magnitude; binary relations accept only 1")


class TargetIdsRequest(BaseModel):
    """Batch lookup body."""

    target_ids: list[str] = Field(default_factory=list, max_length=MAX_BATCH_TARGETS)


class RelationCastResponse(BaseModel):
    kind: RelationKind
    target_id: str
    value: int


class AggregateResponse(BaseModel):
    kind: RelationKind
    counts: dict[str, int]


class OwnerRelationsResponse(BaseModel):
    kind: RelationKind
    values: dict[str, int]
