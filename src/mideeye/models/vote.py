"""Models capturing voting interactions on questions and answers."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mideeye.db.session import Base
from mideeye.db.time import new_id, utcnow


class Vote(Base):
    """Per-user vote on a votable item (question or answer).

    ``votable_id`` is polymorphic over ``votable_type`` so it carries no
    foreign key.
    """

    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("user_id", "votable_id", "votable_type", name="uq_votes_owner_target"),
        CheckConstraint("value <> 0", name="ck_votes_value_nonzero"),
        CheckConstraint("votable_type IN ('question', 'answer')", name="ck_votes_votable_type"),
        Index("ix_votes_target", "votable_type", "votable_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    votable_id: Mapped[str] = mapped_column(String(36), nullable=False)
    votable_type: Mapped[str] = mapped_column(String(16), nullable=False)

    # Signed magnitude; the web client only ever sends 1.
    value: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
