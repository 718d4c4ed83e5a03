"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- Database setup/teardown
- FastAPI test client
- A controllable clock
- Captured reset-code emails (no SES, no Celery)
- Request throttling on fakeredis (no Redis server)
"""

import os

# Must be set before app modules read settings
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("EMAIL_DELIVERY", "disabled")
os.environ.setdefault("JSON_LOGS", "false")
os.environ.setdefault("RESET_STORE_BACKEND", "sql")

import uuid
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.api_rate_limiter import RequestRateLimiter, get_request_limiter
from app.core.clock import Clock
from app.core.config import ResetPolicy
from app.core.database import Base, get_db
from app.core.deps import get_clock, get_reset_code_sender
from app.core.security import get_password_hash
from app.models.user import User
from main import app


# Use in-memory SQLite for testing (fast, isolated)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

START_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock(Clock):
    """
    Clock that only moves when a test advances it.

    sleep() is recorded instead of blocking, and moves the monotonic
    timer so response padding can be asserted.
    """

    def __init__(self, start: datetime = START_TIME):
        self.current = start
        self.mono = 1000.0
        self.sleeps = []

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.mono

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.mono += seconds

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)
        self.mono += seconds


@pytest.fixture
def db_session():
    """
    Create a fresh database for each test.
    Tables are dropped after the test completes.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def frozen_clock():
    return FrozenClock()


@pytest.fixture
def sent_emails():
    """List of (email, code) tuples captured instead of sending mail."""
    return []


@pytest.fixture
def policy():
    return ResetPolicy()


@pytest.fixture
def request_limiter():
    """Request limiter on a private fakeredis server, empty for every test."""
    return RequestRateLimiter(fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True))


@pytest.fixture
def client(db_session, frozen_clock, sent_emails, request_limiter):
    """
    FastAPI test client with overridden database, clock, email sender
    and request limiter.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    def override_sender():
        def send(email: str, code: str) -> bool:
            sent_emails.append((email, code))
            return True
        return send

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: frozen_clock
    app.dependency_overrides[get_reset_code_sender] = override_sender
    app.dependency_overrides[get_request_limiter] = lambda: request_limiter

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def test_user(db_session):
    """Active account with a known password"""
    user = User(
        id=uuid.uuid4(),
        email="alice@example.com",
        hashed_password=get_password_hash("OldPassword123!"),
        full_name="Alice Example",
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user
