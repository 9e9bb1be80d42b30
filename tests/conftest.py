# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from datetime import UTC, datetime, timedelta
from itertools import count

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from mideeye.core.security import create_access_token
from mideeye.db.session import Base
from mideeye.db.session import get_db as app_get_session
from mideeye.main import app as fastapi_app
from mideeye.models import Answer, Profile, Question
from mideeye.services.notifier import NotificationLog

TEST_DB_URL = "sqlite://"

_EMAIL_COUNTER = count(1)
_BASE_TIME = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def _make_profile(db_session: Session, full_name: str) -> Profile:
    profile = Profile(
        full_name=full_name,
        email=f"user{next(_EMAIL_COUNTER)}@mideeye.test",
    )
    db_session.add(profile)
    db_session.flush()
    db_session.refresh(profile)
    return profile


@pytest.fixture()
def test_user(db_session: Session) -> Profile:
    """Create and return a persisted test user."""
    return _make_profile(db_session, "Test User")


@pytest.fixture()
def other_user(db_session: Session) -> Profile:
    """Create and return a second persisted user."""
    return _make_profile(db_session, "Other User")


@pytest.fixture()
def auth_token(test_user: Profile) -> dict[str, str]:
    """Return authorization headers for the primary test user."""
    return {"Authorization": f"Bearer {create_access_token(test_user.id)}"}


@pytest.fixture()
def other_auth_token(other_user: Profile) -> dict[str, str]:
    """Return authorization headers for the secondary test user."""
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


@pytest.fixture()
def test_question(db_session: Session, test_user: Profile) -> Question:
    """Create a baseline question for tests."""
    question = Question(
        user_id=test_user.id,
        title="Sidee loo bartaa Python?",
        content="Waxaan rabaa inaan barto barnaamijyada.",
        category="tech",
    )
    db_session.add(question)
    db_session.flush()
    db_session.refresh(question)
    return question


@pytest.fixture()
def make_answer(db_session: Session, test_question: Question, test_user: Profile):
    """Factory for answers with strictly increasing ``created_at``."""
    minutes = count()

    def _make(content: str = "Jawaab faahfaahsan oo dheer", parent: Answer | None = None,
              author: Profile | None = None) -> Answer:
        answer = Answer(
            question_id=test_question.id,
            parent_id=parent.id if parent is not None else None,
            user_id=(author or test_user).id,
            content=content,
            created_at=_BASE_TIME + timedelta(minutes=next(minutes)),
        )
        db_session.add(answer)
        db_session.flush()
        db_session.refresh(answer)
        return answer

    return _make


@pytest.fixture()
def notifications() -> NotificationLog:
    """Collects notifications emitted by reconcilers under test."""
    return NotificationLog()
