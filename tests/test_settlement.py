"""
Unit tests for the settlement pipeline.
Tests exactly-once crediting per payment id, bundles, subscription activation,
signal conflicts, failure recording, checkout, and concurrent credits.
"""
import threading
import pytest
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from app.db.base import Base
import app.db.models  # noqa: F401
from app.db.models.account import Account
from app.db.models.credit_balance import CreditBalance
from app.db.models.payment_settlement import PaymentSettlement
from app.db.models.plan import CreditPackage
from app.core.clock import utcnow
from app.core.errors import InvalidRequest, NotFound, SettlementConflict
from app.services import balance_store, settlement_service, stripe_service
from app.services.balance_store import grant_credits
from app.services.plan_catalog import ensure_catalog, get_plan_by_type
from app.services.settlement_service import (
    create_checkout,
    get_settlement,
    mark_failed,
    record_pending,
    settle,
)
from app.services.subscription_service import get_current_subscription


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
    account = Account(email="employer@example.com", role="employer", is_verified=True)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def package(db, code):
    return db.query(CreditPackage).filter(CreditPackage.code == code).one()


def purchased(db, account_id, credit_type="resume_contact"):
    return (
        db.query(CreditBalance.purchased)
        .filter(CreditBalance.account_id == account_id, CreditBalance.credit_type == credit_type)
        .scalar()
    )


def test_package_settles_exactly_once(db, employer):
    """Replaying the same payment any number of times credits once."""
    starter = package(db, "resume-contact-starter")
    record_pending(db, "pi_starter", employer.id, "credit_package", starter.id, starter.price)

    results = [
        settle(db, "pi_starter", item_id=starter.id, item_type="credit_package", now=NOW)
        for _ in range(5)
    ]

    assert results[0].already_settled is False
    assert all(result.already_settled for result in results[1:])
    assert purchased(db, employer.id) == 30

    balance = results[-1].balances["resume_contact"]
    assert balance.purchased == 30
    assert balance.total_purchased == 30
    assert balance.expires_at == NOW + timedelta(days=90)

    settlement = get_settlement(db, "pi_starter")
    assert settlement.status == "succeeded"
    assert settlement.settled_at == NOW


def test_bundle_credits_every_type(db, employer):
    ultimate = package(db, "ultimate-bundle")
    record_pending(db, "pi_bundle", employer.id, "credit_package", ultimate.id, ultimate.price)

    result = settle(db, "pi_bundle", now=NOW)

    assert set(result.balances) == {"resume_contact", "ai_credit", "job_posting"}
    assert purchased(db, employer.id, "resume_contact") == 400
    assert purchased(db, employer.id, "ai_credit") == 200
    assert purchased(db, employer.id, "job_posting") == 10


def test_subscription_settlement_activates_plan(db, employer):
    premium = get_plan_by_type(db, "premium")
    record_pending(
        db, "pi_premium", employer.id, "subscription", premium.id, premium.price_yearly, billing_cycle="yearly"
    )

    result = settle(db, "pi_premium", item_id=premium.id, item_type="subscription", now=NOW)

    subscription = result.subscription
    assert subscription.plan_id == premium.id
    assert subscription.status == "active"
    assert subscription.billing_cycle == "yearly"
    assert subscription.current_period_end == NOW + timedelta(days=365)
    assert result.settlement.subscription_id == subscription.id

    replay = settle(db, "pi_premium", now=NOW + timedelta(minutes=5))
    assert replay.already_settled is True
    assert replay.subscription.id == subscription.id
    assert get_current_subscription(db, employer.id, now=NOW).id == subscription.id


def test_mismatched_signal_is_a_conflict(db, employer):
    starter = package(db, "resume-contact-starter")
    pro = package(db, "resume-contact-pro")
    record_pending(db, "pi_conflict", employer.id, "credit_package", starter.id, starter.price)

    with pytest.raises(SettlementConflict):
        settle(db, "pi_conflict", item_id=pro.id, item_type="credit_package", now=NOW)
    with pytest.raises(SettlementConflict):
        settle(db, "pi_conflict", item_id=starter.id, item_type="subscription", now=NOW)

    assert get_settlement(db, "pi_conflict").status == "pending"
    assert purchased(db, employer.id) is None


def test_record_pending_is_idempotent_per_purchase(db, employer):
    starter = package(db, "resume-contact-starter")
    pro = package(db, "resume-contact-pro")

    first = record_pending(db, "pi_dup", employer.id, "credit_package", starter.id, starter.price)
    again = record_pending(db, "pi_dup", employer.id, "credit_package", starter.id, starter.price)
    assert again.id == first.id

    with pytest.raises(SettlementConflict):
        record_pending(db, "pi_dup", employer.id, "credit_package", pro.id, pro.price)
    assert db.query(PaymentSettlement).count() == 1


def test_record_pending_validates_item(db, employer):
    with pytest.raises(InvalidRequest):
        record_pending(db, "pi_bad", employer.id, "gift_card", 1, Decimal("10"))
    with pytest.raises(InvalidRequest):
        record_pending(db, "pi_bad", employer.id, "subscription", 1, Decimal("10"), billing_cycle="weekly")


def test_failed_settlement_credits_nothing_and_can_retry(db, employer, monkeypatch):
    """A crash inside the atomic unit leaves the payment failed and the balance untouched."""
    starter = package(db, "resume-contact-starter")
    record_pending(db, "pi_retry", employer.id, "credit_package", starter.id, starter.price)

    real_add = settlement_service.add_purchased

    def broken_add(*args, **kwargs):
        raise RuntimeError("balance store unavailable")

    monkeypatch.setattr(settlement_service, "add_purchased", broken_add)
    with pytest.raises(RuntimeError):
        settle(db, "pi_retry", now=NOW)

    settlement = get_settlement(db, "pi_retry")
    db.refresh(settlement)
    assert settlement.status == "failed"
    assert "balance store unavailable" in settlement.failure_reason
    assert purchased(db, employer.id) == 0

    monkeypatch.setattr(settlement_service, "add_purchased", real_add)
    result = settle(db, "pi_retry", now=NOW + timedelta(minutes=1))

    assert result.already_settled is False
    assert result.settlement.status == "succeeded"
    assert result.settlement.failure_reason is None
    assert purchased(db, employer.id) == 30


def test_mark_failed(db, employer):
    starter = package(db, "resume-contact-starter")
    record_pending(db, "pi_declined", employer.id, "credit_package", starter.id, starter.price)

    settlement = mark_failed(db, "pi_declined", "card declined")

    assert settlement.status == "failed"
    assert settlement.failure_reason == "card declined"


def test_succeeded_payment_cannot_fail(db, employer):
    starter = package(db, "resume-contact-starter")
    record_pending(db, "pi_done", employer.id, "credit_package", starter.id, starter.price)
    settle(db, "pi_done", now=NOW)

    with pytest.raises(SettlementConflict):
        mark_failed(db, "pi_done", "late failure")
    assert get_settlement(db, "pi_done").status == "succeeded"
    assert purchased(db, employer.id) == 30


def test_unknown_payment(db):
    with pytest.raises(NotFound):
        settle(db, "pi_missing", now=NOW)


def test_checkout_creates_pending_settlement(db, employer, monkeypatch):
    captured = {}

    def fake_intent(amount, currency, description, metadata):
        captured.update(amount=amount, currency=currency, metadata=metadata)
        return SimpleNamespace(id="pi_checkout", client_secret="pi_checkout_secret")

    monkeypatch.setattr(stripe_service, "create_payment_intent", fake_intent)
    starter = package(db, "resume-contact-starter")

    checkout = create_checkout(db, employer.id, "credit_package", starter.id)

    assert checkout["activated"] is False
    assert checkout["payment_id"] == "pi_checkout"
    assert checkout["client_secret"] == "pi_checkout_secret"
    assert checkout["status"] == "pending"
    assert captured["amount"] == Decimal("199")
    assert captured["metadata"] == {
        "account_id": str(employer.id),
        "item_type": "credit_package",
        "item_id": str(starter.id),
    }
    assert get_settlement(db, "pi_checkout").credit_package_id == starter.id


def test_checkout_yearly_plan_price(db, employer, monkeypatch):
    monkeypatch.setattr(
        stripe_service,
        "create_payment_intent",
        lambda amount, currency, description, metadata: SimpleNamespace(id="pi_yearly", client_secret=None),
    )
    basic = get_plan_by_type(db, "basic")

    checkout = create_checkout(db, employer.id, "subscription", basic.id, billing_cycle="yearly")

    assert checkout["amount"] == Decimal("2990")
    assert get_settlement(db, "pi_yearly").billing_cycle == "yearly"


def test_free_plan_checkout_activates_without_payment(db, employer, monkeypatch):
    def no_payment(*args, **kwargs):
        raise AssertionError("free plans must not create a payment")

    monkeypatch.setattr(stripe_service, "create_payment_intent", no_payment)
    free = get_plan_by_type(db, "free")

    checkout = create_checkout(db, employer.id, "subscription", free.id)

    assert checkout["activated"] is True
    assert checkout["payment_id"] is None
    assert get_current_subscription(db, employer.id).plan.plan_type == "free"


def test_expired_credits_forfeited_when_package_lands(db, employer):
    grant_credits(db, employer.id, "resume_contact", 10, expires_at=NOW - timedelta(days=1))
    starter = package(db, "resume-contact-starter")
    record_pending(db, "pi_refill", employer.id, "credit_package", starter.id, starter.price)

    result = settle(db, "pi_refill", now=NOW)

    balance = result.balances["resume_contact"]
    assert balance.purchased == 30
    assert balance.total_purchased == 40
    assert balance.expires_at == NOW + timedelta(days=90)


@pytest.fixture
def file_db(tmp_path):
    """File-backed database so worker threads get their own connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'settlement.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=NullPool,
    )
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    setup = Session()
    try:
        ensure_catalog(setup)
        account = Account(email="race@example.com", role="employer", is_verified=True)
        setup.add(account)
        setup.commit()
        account_id = account.id
    finally:
        setup.close()

    yield Session, account_id
    engine.dispose()


def run_workers(targets):
    """Start every target at once; return the outcomes and unexpected errors."""
    barrier = threading.Barrier(len(targets))
    outcomes = []
    errors = []
    lock = threading.Lock()

    def worker(target):
        try:
            barrier.wait()
            outcome = target()
        except Exception as e:
            with lock:
                errors.append(e)
            return
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(target,)) for target in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcomes, errors


def test_concurrent_deliveries_credit_once(file_db):
    """Eight simultaneous deliveries of one payment: one credit, seven replays."""
    Session, account_id = file_db
    setup = Session()
    try:
        starter = package(setup, "resume-contact-starter")
        record_pending(setup, "pi_race", account_id, "credit_package", starter.id, starter.price)
    finally:
        setup.close()

    def deliver():
        session = Session()
        try:
            return settle(session, "pi_race").already_settled
        finally:
            session.close()

    outcomes, errors = run_workers([deliver] * 8)

    assert errors == []
    assert outcomes.count(False) == 1
    assert outcomes.count(True) == 7

    check = Session()
    try:
        assert get_settlement(check, "pi_race").status == "succeeded"
        assert purchased(check, account_id) == 30
        balance = check.query(CreditBalance).filter(CreditBalance.account_id == account_id).one()
        assert balance.total_purchased == 30
    finally:
        check.close()


def test_concurrent_credits_on_expired_balance_all_land(file_db):
    """Payments and grants racing onto an expired balance forfeit the old credit once and lose nothing."""
    Session, account_id = file_db
    payments = 4
    grants = 4
    setup = Session()
    try:
        grant_credits(setup, account_id, "resume_contact", 10, expires_at=utcnow() - timedelta(days=1))
        starter = package(setup, "resume-contact-starter")
        for i in range(payments):
            record_pending(setup, f"pi_expired_{i}", account_id, "credit_package", starter.id, starter.price)
    finally:
        setup.close()

    def deliver(payment_id):
        def run():
            session = Session()
            try:
                return settle(session, payment_id).already_settled
            finally:
                session.close()
        return run

    def grant():
        session = Session()
        try:
            grant_credits(session, account_id, "resume_contact", 5, reason="goodwill")
            return "granted"
        finally:
            session.close()

    targets = [deliver(f"pi_expired_{i}") for i in range(payments)] + [grant] * grants
    outcomes, errors = run_workers(targets)

    assert errors == []
    assert outcomes.count(False) == payments
    assert outcomes.count("granted") == grants

    check = Session()
    try:
        balance = check.query(CreditBalance).filter(CreditBalance.account_id == account_id).one()
        assert balance.purchased == payments * 30 + grants * 5
        assert balance.total_purchased == 10 + payments * 30 + grants * 5
    finally:
        check.close()


def test_credit_committed_mid_update_is_kept(file_db, monkeypatch):
    """A grant that commits while another credit is being applied is not overwritten."""
    Session, account_id = file_db
    setup = Session()
    try:
        grant_credits(setup, account_id, "resume_contact", 10, expires_at=utcnow() - timedelta(days=1))
    finally:
        setup.close()

    real_merge = balance_store._merged_expiry
    interleaved = []

    def merge_after_competing_grant(incoming, now):
        if not interleaved:
            interleaved.append(True)
            other = Session()
            try:
                grant_credits(other, account_id, "resume_contact", 25)
            finally:
                other.close()
        return real_merge(incoming, now)

    monkeypatch.setattr(balance_store, "_merged_expiry", merge_after_competing_grant)
    session = Session()
    try:
        grant_credits(session, account_id, "resume_contact", 30)
    finally:
        session.close()

    check = Session()
    try:
        balance = check.query(CreditBalance).filter(CreditBalance.account_id == account_id).one()
        assert interleaved == [True]
        assert balance.purchased == 55
        assert balance.total_purchased == 65
        assert balance.expires_at is None
    finally:
        check.close()
