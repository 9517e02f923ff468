"""
Unit tests for the store-backed rate limiter.
"""
import pytest
from datetime import timedelta
from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
import app.db.models  # noqa: F401
from app.db.models.rate_limit_counter import RateLimitCounter
from app.core.clock import utcnow
from app.core.rate_limit import check_rate_limit, hit, purge_expired


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

NOW = utcnow().replace(microsecond=0)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


def test_requests_within_limit_allowed(db):
    assert all(hit(db, "reveal:1", 3, 60, now=NOW) for _ in range(3))
    assert hit(db, "reveal:1", 3, 60, now=NOW) is False


def test_keys_are_independent(db):
    for _ in range(3):
        hit(db, "reveal:1", 3, 60, now=NOW)

    assert hit(db, "reveal:2", 3, 60, now=NOW) is True


def test_window_resets(db):
    for _ in range(3):
        hit(db, "reveal:1", 3, 60, now=NOW)
    assert hit(db, "reveal:1", 3, 60, now=NOW + timedelta(seconds=30)) is False

    assert hit(db, "reveal:1", 3, 60, now=NOW + timedelta(seconds=61)) is True
    counter = db.query(RateLimitCounter).populate_existing().filter(RateLimitCounter.key == "reveal:1").one()
    assert counter.count == 1
    assert counter.window_start == NOW + timedelta(seconds=61)


def test_check_rate_limit_raises_429(db):
    check_rate_limit(db, "reveal:1", 1, 60)

    with pytest.raises(HTTPException) as exc_info:
        check_rate_limit(db, "reveal:1", 1, 60)
    assert exc_info.value.status_code == 429


def test_purge_expired(db):
    hit(db, "reveal:old", 5, 60, now=NOW - timedelta(minutes=5))
    hit(db, "reveal:live", 5, 60, now=NOW)

    assert purge_expired(db, now=NOW) == 1
    assert [key for (key,) in db.query(RateLimitCounter.key).all()] == ["reveal:live"]
