"""
Unit tests for the subscription lifecycle.
Tests the free-tier default, period rollover, expiry, trials, activation and cancellation.
"""
import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
import app.db.models  # noqa: F401
from app.db.models.account import Account
from app.db.models.subscription import Subscription
from app.core.errors import InvalidRequest, NotFound
from app.services.plan_catalog import ensure_catalog, get_plan_by_type
from app.services.subscription_service import (
    activate_subscription,
    cancel_subscription,
    get_current_subscription,
    period_length,
    start_trial,
)


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database with the default catalog for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        ensure_catalog(db)
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def employer(db):
    account = Account(email="employer@example.com", full_name="Acme Hiring", role="employer")
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def test_free_subscription_created_on_first_access(db, employer):
    """An account without a subscription gets the free tier."""
    subscription = get_current_subscription(db, employer.id, now=NOW)

    assert subscription.plan.plan_type == "free"
    assert subscription.status == "active"
    assert subscription.current_period_start == NOW
    assert subscription.current_period_end == NOW + timedelta(days=30)

    # Second access reuses the same row
    assert get_current_subscription(db, employer.id, now=NOW).id == subscription.id


def test_free_period_rolls_forward(db, employer):
    """An elapsed free period advances in whole steps; the row is kept."""
    subscription = get_current_subscription(db, employer.id, now=NOW)

    later = NOW + timedelta(days=65)
    rolled = get_current_subscription(db, employer.id, now=later)

    assert rolled.id == subscription.id
    assert rolled.current_period_start == NOW + timedelta(days=60)
    assert rolled.current_period_end == NOW + timedelta(days=90)


def test_paid_subscription_expires_to_free(db, employer):
    """An elapsed paid period expires and the account falls back to free."""
    premium = get_plan_by_type(db, "premium")
    paid = activate_subscription(db, employer.id, premium, billing_cycle="monthly", now=NOW)
    db.commit()

    current = get_current_subscription(db, employer.id, now=NOW + timedelta(days=31))

    assert current.plan.plan_type == "free"
    db.refresh(paid)
    assert paid.status == "expired"


def test_activate_replaces_live_subscription(db, employer):
    free = get_current_subscription(db, employer.id, now=NOW)
    basic = get_plan_by_type(db, "basic")

    subscription = activate_subscription(db, employer.id, basic, billing_cycle="yearly", now=NOW)
    db.commit()

    assert subscription.status == "active"
    assert subscription.current_period_end == NOW + timedelta(days=365)
    db.refresh(free)
    assert free.status == "canceled"
    assert free.canceled_at == NOW


def test_activate_same_plan_extends_period(db, employer):
    """Renewing the active plan moves its period instead of adding a row."""
    basic = get_plan_by_type(db, "basic")
    first = activate_subscription(db, employer.id, basic, now=NOW)
    db.commit()

    renewal_time = NOW + timedelta(days=29)
    renewed = activate_subscription(db, employer.id, basic, now=renewal_time)
    db.commit()

    assert renewed.id == first.id
    assert renewed.current_period_start == renewal_time
    assert db.query(Subscription).filter(Subscription.account_id == employer.id).count() == 1


def test_at_most_one_live_subscription(db, employer):
    """The store refuses a second live subscription for the same account."""
    get_current_subscription(db, employer.id, now=NOW)
    basic = get_plan_by_type(db, "basic")
    db.add(Subscription(
        account_id=employer.id,
        plan_id=basic.id,
        status="active",
        billing_cycle="monthly",
        current_period_start=NOW,
        current_period_end=NOW + timedelta(days=30),
    ))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_start_trial(db, employer):
    trial = start_trial(db, employer.id, "premium", now=NOW)

    assert trial.status == "trialing"
    assert trial.billing_cycle == "trial"
    assert trial.current_period_end == NOW + timedelta(days=14)
    assert get_current_subscription(db, employer.id, now=NOW).id == trial.id


def test_trial_only_once(db, employer):
    start_trial(db, employer.id, "basic", now=NOW)
    with pytest.raises(InvalidRequest):
        start_trial(db, employer.id, "premium", now=NOW + timedelta(days=1))


def test_free_plan_has_no_trial(db, employer):
    with pytest.raises(InvalidRequest):
        start_trial(db, employer.id, "free", now=NOW)


def test_trial_expires_to_free(db, employer):
    start_trial(db, employer.id, "basic", now=NOW)
    current = get_current_subscription(db, employer.id, now=NOW + timedelta(days=8))
    assert current.plan.plan_type == "free"


def test_cancel_falls_back_to_free(db, employer):
    premium = get_plan_by_type(db, "premium")
    paid = activate_subscription(db, employer.id, premium, now=NOW)
    db.commit()

    free = cancel_subscription(db, employer.id, now=NOW + timedelta(days=3))

    assert free.plan.plan_type == "free"
    db.refresh(paid)
    assert paid.status == "canceled"


def test_cancel_without_paid_plan(db, employer):
    get_current_subscription(db, employer.id, now=NOW)
    with pytest.raises(NotFound):
        cancel_subscription(db, employer.id, now=NOW)


def test_period_length():
    assert period_length("monthly") == timedelta(days=30)
    assert period_length("yearly") == timedelta(days=365)
    with pytest.raises(InvalidRequest):
        period_length("weekly")
