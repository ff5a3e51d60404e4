"""Shared pytest fixtures for backend tests."""

import os

# Must be set before quiz_engine.config is imported
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DATABASE_CREATE_TABLES", "false")
os.environ.setdefault("RATE_LIMIT_ANSWERS_RPM", "0")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")

import uuid
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from quiz_engine.core.clock import FakeClock, get_clock, set_clock
from quiz_engine.core.security import create_access_token
from quiz_engine.db import models  # noqa: F401  (registers tables on Base)
from quiz_engine.db.models import RoleEnum, User
from quiz_engine.db.session import Base, build_engine, create_tables, get_db
from quiz_engine.main import app
from quiz_engine.services.notifications import Notifier, get_notifier
from quiz_engine.services.scheduler import AvailabilityScheduler, get_scheduler

from factories import COURSE_ID, enroll

# In-memory SQLite; build_engine shares one connection across threads
SQLALCHEMY_TEST_URL = "sqlite:///:memory:"
engine = build_engine(SQLALCHEMY_TEST_URL)
TestSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(autouse=True)
def mock_celery_tasks():
    """Mock Celery tasks for all tests to prevent Redis connection."""
    mock_task = MagicMock(return_value=MagicMock(id="fake-task-id"))
    mock_task.delay = MagicMock(return_value=MagicMock(id="fake-task-id"))

    with patch("quiz_engine.tasks.send_quiz_notification", mock_task):
        yield mock_task


@pytest.fixture
def clock():
    """Process clock pinned to 2030-01-01 09:00 UTC; advance it explicitly."""
    fake = FakeClock()
    previous = get_clock()
    set_clock(fake)
    yield fake
    set_clock(previous)


@pytest.fixture(scope="function")
def db():
    """Fresh schema and session for each test."""
    create_tables(engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    """Records notify(event, quiz_id, audience, attempt_id) calls."""
    return MagicMock(spec=Notifier)


@pytest.fixture
def scheduler(clock, notifier):
    return AvailabilityScheduler(
        session_factory=TestSession,
        clock=clock,
        notifier=notifier,
        poll_interval_seconds=0.05,
    )


@pytest.fixture(scope="function")
def client(db: Session, clock, notifier, scheduler):
    """FastAPI test client with overridden DB, notifier and scheduler."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_scheduler] = lambda: scheduler

    # Remove TrustedHostMiddleware for tests to allow 'testserver' host
    app.user_middleware = [m for m in app.user_middleware if "TrustedHost" not in str(m)]

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ── Users ─────────────────────────────────────────────────────────────────────


@pytest.fixture
def make_user(db: Session):
    """Create a user directly and return ``(user, auth_headers)``."""

    def _make(role: RoleEnum = RoleEnum.STUDENT, enrolled_in: uuid.UUID | None = None):
        user = User(
            email=f"{role.value}-{uuid.uuid4().hex[:8]}@example.com",
            hashed_password="not-used",
            full_name=f"Test {role.value.title()}",
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        if enrolled_in is not None:
            enroll(db, user, enrolled_in)
        token = create_access_token(user.id, role.value)
        return user, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def instructor(make_user):
    return make_user(RoleEnum.INSTRUCTOR)


@pytest.fixture
def student(make_user):
    return make_user(RoleEnum.STUDENT, enrolled_in=COURSE_ID)
