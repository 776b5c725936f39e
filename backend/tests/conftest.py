"""Shared pytest fixtures for backend tests."""

import pytest
from unittest.mock import patch, MagicMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from attempt_service.core.security import create_access_token
from attempt_service.db import models  # noqa: F401  (register tables)
from attempt_service.db.session import Base, get_db
from attempt_service.main import app
from attempt_service.schemas.test import QuestionDefinition, TestDefinition
from attempt_service.services.realtime_store import InMemoryRealtimeStore, get_realtime_store
from attempt_service.services.catalog import register_test
from attempt_service.services.timeutil import now_ms


# Use an in-memory SQLite database for testing with static pool
SQLALCHEMY_TEST_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # Use StaticPool to keep connection alive
    echo=False,
)
TestSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)

DAY_MS = 24 * 60 * 60 * 1000


@pytest.fixture(autouse=True)
def mock_celery_tasks():
    """Mock Celery tasks for all tests to prevent Redis connection."""
    mock_task = MagicMock(return_value=MagicMock(id="fake-task-id"))
    mock_task.apply_async = MagicMock(return_value=MagicMock(id="fake-task-id"))
    mock_celery = MagicMock()

    # Patch at the import point in the attempts module
    with patch("attempt_service.api.attempts.auto_submit_attempt", mock_task), patch(
        "attempt_service.api.attempts.celery_app", mock_celery
    ):
        yield {"auto_submit_attempt": mock_task, "celery_app": mock_celery}


@pytest.fixture(scope="function")
def db():
    """Fresh schema and DB session for each test (services commit, so no rollback isolation)."""
    Base.metadata.create_all(bind=engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def realtime():
    return InMemoryRealtimeStore()


@pytest.fixture(scope="function")
def client(db: Session, realtime: InMemoryRealtimeStore):
    """FastAPI test client with overridden DB and realtime dependencies."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_realtime_store] = lambda: realtime

    # Remove TrustedHostMiddleware for tests to allow 'testserver' host
    app.user_middleware = [m for m in app.user_middleware if "TrustedHost" not in str(m)]

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ── Factories ──────────────────────────────────────────────────────────────────


def default_questions() -> list[QuestionDefinition]:
    """Three 5-mark MCQs; the correct answer of question i is option i."""
    return [
        QuestionDefinition(
            question_type="mcq",
            text=f"Question {i + 1}",
            marks=5,
            options=["A answer", "B answer", "C answer", "D answer"],
            option_ids=[f"q{i}_a", f"q{i}_b", f"q{i}_c", f"q{i}_d"],
            correct_option=i,
        )
        for i in range(3)
    ]


def essay_question(marks: float = 10) -> QuestionDefinition:
    return QuestionDefinition(question_type="essay", text="Explain photosynthesis", marks=marks)


@pytest.fixture
def make_test(db: Session):
    """Register a test definition; flexible, open for a day either side of now by default."""

    def _make(
        test_type: str = "flexible",
        attempts_allowed: int | None = 1,
        duration_minutes: int | None = 60,
        questions: list[QuestionDefinition] | None = None,
        teacher_id: str = "teacher-1",
        **overrides,
    ):
        now = now_ms()
        fields = {
            "title": "Biology mid-term",
            "teacher_id": teacher_id,
            "test_type": test_type,
            "duration_minutes": duration_minutes,
            "attempts_allowed": attempts_allowed,
            "questions": questions if questions is not None else default_questions(),
        }
        if test_type == "flexible":
            fields["available_from"] = now - DAY_MS
            fields["available_to"] = now + DAY_MS
        fields.update(overrides)
        return register_test(db, TestDefinition(**fields))

    return _make


def auth_headers(uid: str, role: str = "student", profile_id: str | None = None) -> dict:
    claims = {"sub": uid, "role": role}
    if profile_id:
        claims["profile_id"] = profile_id
    return {"Authorization": f"Bearer {create_access_token(claims)}"}
