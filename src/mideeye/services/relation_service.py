"""Persistence for user-owned relations (votes, follows, saved posts).

All functions take an open SQLAlchemy session, commit their own work and
return a :data:`~mideeye.schemas.common.ServiceResult`. Database errors are
logged and converted into :class:`~mideeye.schemas.common.Err`; nothing
raises past this module.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, Session

from mideeye.models import SavedPost, UserFollow, Vote
from mideeye.schemas.common import Err, Ok, ServiceResult
from mideeye.schemas.relations import RelationKind

__all__ = [
    "cast_relation",
    "remove_relation",
    "get_aggregate",
    "get_owner_relations",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Columns:
    model: type[Any]
    owner: InstrumentedAttribute[str]
    target: InstrumentedAttribute[str]
    criteria: tuple[Any, ...] = ()


def _columns(kind: RelationKind) -> _Columns:
    if kind.is_vote:
        return _Columns(
            model=Vote,
            owner=Vote.user_id,
            target=Vote.votable_id,
            criteria=(Vote.votable_type == kind.votable_type,),
        )
    if kind is RelationKind.FOLLOW:
        return _Columns(UserFollow, UserFollow.follower_id, UserFollow.following_id)
    return _Columns(SavedPost, SavedPost.user_id, SavedPost.post_id)


def _unique(target_ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(target_ids))


def _find_row(db: Session, kind: RelationKind, owner_id: str, target_id: str) -> Any | None:
    cols = _columns(kind)
    return (
        db.query(cols.model)
        .filter(cols.owner == owner_id, cols.target == target_id, *cols.criteria)
        .first()
    )


def _new_row(kind: RelationKind, owner_id: str, target_id: str, value: int) -> Any:
    if kind.is_vote:
        return Vote(
            user_id=owner_id,
            votable_id=target_id,
            votable_type=kind.votable_type,
            value=value,
        )
    if kind is RelationKind.FOLLOW:
        return UserFollow(follower_id=owner_id, following_id=target_id)
    return SavedPost(user_id=owner_id, post_id=target_id)


def _validate_cast(kind: RelationKind, owner_id: str, target_id: str, value: int) -> str | None:
    if value == 0:
        return "Relation value must be nonzero; remove the relation instead"
    if kind.binary and value != 1:
        return f"{kind.value} relations only accept the value 1"
    if kind is RelationKind.FOLLOW and owner_id == target_id:
        return "Users cannot follow themselves"
    return None


def cast_relation(
    db: Session,
    kind: RelationKind,
    owner_id: str,
    target_id: str,
    value: int = 1,
) -> ServiceResult[int]:
    """Create the relation or update its value in place.

    A uniqueness violation on insert means a concurrent request created the
    row first; the existing row is updated and the call still succeeds.

    Returns:
        ``Ok`` with the stored value, or ``Err`` describing the failure.
    """
    problem = _validate_cast(kind, owner_id, target_id, value)
    if problem is not None:
        return Err(problem)

    try:
        existing = _find_row(db, kind, owner_id, target_id)
        if existing is None:
            try:
                with db.begin_nested():
                    db.add(_new_row(kind, owner_id, target_id, value))
            except IntegrityError as err:
                existing = _find_row(db, kind, owner_id, target_id)
                if existing is None:
                    logger.warning(
                        "Rejected %s insert %s -> %s: %s", kind.value, owner_id, target_id, err.orig
                    )
                    return Err("Relation could not be created")
                logger.info(
                    "Concurrent %s insert %s -> %s; reusing existing row",
                    kind.value,
                    owner_id,
                    target_id,
                )

        if existing is not None and kind.is_vote:
            existing.value = value
        db.commit()
    except SQLAlchemyError as err:
        db.rollback()
        logger.warning("cast_relation(%s, %s, %s) failed: %s", kind.value, owner_id, target_id, err)
        return Err("Failed to save relation")

    return Ok(value)


def remove_relation(
    db: Session,
    owner_id: str,
    target_id: str,
    kind: RelationKind,
) -> ServiceResult[None]:
    """Delete the relation if present. Deleting an absent relation succeeds."""
    cols = _columns(kind)
    try:
        deleted = (
            db.query(cols.model)
            .filter(cols.owner == owner_id, cols.target == target_id, *cols.criteria)
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as err:
        db.rollback()
        logger.warning(
            "remove_relation(%s, %s, %s) failed: %s", kind.value, owner_id, target_id, err
        )
        return Err("Failed to remove relation")

    logger.debug("Removed %d %s row(s) %s -> %s", deleted, kind.value, owner_id, target_id)
    return Ok(None)


def get_aggregate(
    db: Session,
    kind: RelationKind,
    target_ids: Sequence[str],
) -> ServiceResult[dict[str, int]]:
    """Return summed relation values per target.

    Targets without rows are omitted and should be read as ``0``.
    """
    ids = _unique(target_ids)
    if not ids:
        return Ok({})

    cols = _columns(kind)
    total = func.sum(Vote.value) if kind.is_vote else func.count()
    try:
        rows = (
            db.query(cols.target, total)
            .filter(cols.target.in_(ids), *cols.criteria)
            .group_by(cols.target)
            .all()
        )
    except SQLAlchemyError as err:
        db.rollback()
        logger.warning("get_aggregate(%s) failed: %s", kind.value, err)
        return Err("Failed to load counts")

    return Ok({target: int(amount or 0) for target, amount in rows})


def get_owner_relations(
    db: Session,
    owner_id: str,
    kind: RelationKind,
    target_ids: Sequence[str],
) -> ServiceResult[dict[str, int]]:
    """Return the owner's own value per target (absent targets omitted)."""
    ids = _unique(target_ids)
    if not ids:
        return Ok({})

    cols = _columns(kind)
    try:
        if kind.is_vote:
            rows = (
                db.query(cols.target, Vote.value)
                .filter(cols.owner == owner_id, cols.target.in_(ids), *cols.criteria)
                .all()
            )
            values = {target: int(value) for target, value in rows}
        else:
            targets = (
                db.query(cols.target)
                .filter(cols.owner == owner_id, cols.target.in_(ids))
                .all()
            )
            values = {target: 1 for (target,) in targets}
    except SQLAlchemyError as err:
        db.rollback()
        logger.warning("get_owner_relations(%s, %s) failed: %s", kind.value, owner_id, err)
        return Err("Failed to load relations")

    return Ok(values)
