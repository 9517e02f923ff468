"""
Unit tests for the policy overlay.
Tests the unverified monthly reveal limit, its scope exemptions and retry hints.
"""
import pytest
from datetime import timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
import app.db.models  # noqa: F401
from app.db.models.account import Account
from app.db.models.consumption_record import ConsumptionRecord
from app.core.clock import utcnow
from app.core.errors import NotFound, PolicyDenied
from app.services.policy_overlay import (
    UNVERIFIED_MONTHLY_LIMIT,
    database_reveals_in_window,
    enforce,
    evaluate,
    is_allowed,
)


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


@pytest.fixture
def unverified(db):
    account = Account(email="new-employer@example.com", role="employer", is_verified=False)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def verified(db):
    account = Account(email="employer@example.com", role="employer", is_verified=True, verified_at=NOW)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def record_reveal(db, account, target_ref, created_at, scope="database", action_kind="reveal_contact"):
    db.add(ConsumptionRecord(
        actor_account_id=account.id,
        owner_account_id=account.id,
        action_kind=action_kind,
        target_ref=target_ref,
        scope=scope,
        credit_type="resume_contact",
        source="credit",
        amount=1,
        subscription_amount=0,
        credit_amount=1,
        created_at=created_at,
    ))
    db.commit()


def test_first_database_reveal_allowed(db, unverified):
    assert is_allowed(db, unverified.id, "reveal_contact", now=NOW)


def test_second_database_reveal_denied_within_window(db, unverified):
    first_at = NOW - timedelta(days=10)
    record_reveal(db, unverified, "profile:1", first_at)

    decision = evaluate(db, unverified.id, "reveal_contact", now=NOW)

    assert decision.allowed is False
    assert decision.rule == UNVERIFIED_MONTHLY_LIMIT
    assert decision.retry_after == first_at + timedelta(days=30)
    assert "Verify your account" in decision.reason


def test_enforce_raises_policy_denied(db, unverified):
    record_reveal(db, unverified, "profile:1", NOW - timedelta(days=1))

    with pytest.raises(PolicyDenied) as exc_info:
        enforce(db, unverified.id, "reveal_contact", now=NOW)

    detail = exc_info.value.to_detail()
    assert detail["error"] == "policy_denied"
    assert detail["rule"] == UNVERIFIED_MONTHLY_LIMIT
    assert detail["retry_after"] is not None


def test_window_is_rolling(db, unverified):
    """A reveal older than the window no longer counts."""
    record_reveal(db, unverified, "profile:1", NOW - timedelta(days=31))

    assert is_allowed(db, unverified.id, "reveal_contact", now=NOW)
    assert database_reveals_in_window(db, unverified.id, now=NOW) == []


def test_application_reveals_exempt(db, unverified):
    """Reveals of the account's own applicants neither count nor get blocked."""
    record_reveal(db, unverified, "application:1", NOW - timedelta(days=1), scope="application")
    record_reveal(db, unverified, "application:2", NOW - timedelta(hours=1), scope="application")

    assert is_allowed(db, unverified.id, "reveal_contact", scope="database", now=NOW)

    record_reveal(db, unverified, "profile:9", NOW - timedelta(minutes=5))
    assert is_allowed(db, unverified.id, "reveal_contact", scope="application", now=NOW)
    assert not is_allowed(db, unverified.id, "reveal_contact", scope="database", now=NOW)


def test_verified_accounts_unrestricted(db, verified):
    for i in range(5):
        record_reveal(db, verified, f"profile:{i}", NOW - timedelta(days=i))

    assert is_allowed(db, verified.id, "reveal_contact", now=NOW)


def test_other_actions_unrestricted(db, unverified):
    record_reveal(db, unverified, "profile:1", NOW - timedelta(days=1))

    assert is_allowed(db, unverified.id, "ai_analysis", now=NOW)


def test_verification_lifts_limit(db, unverified):
    record_reveal(db, unverified, "profile:1", NOW - timedelta(days=1))
    assert not is_allowed(db, unverified.id, "reveal_contact", now=NOW)

    unverified.is_verified = True
    unverified.verified_at = NOW
    db.commit()

    assert is_allowed(db, unverified.id, "reveal_contact", now=NOW)


def test_unknown_account(db):
    with pytest.raises(NotFound):
        evaluate(db, 4242, "reveal_contact", now=NOW)
