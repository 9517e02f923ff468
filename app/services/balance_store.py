"""
Balance store: per-account, per-credit-type ledger rows.

Rows are created lazily. Every mutation is a single conditional UPDATE whose
WHERE clause carries the guard (period identity, expiry, non-negativity), so
concurrent requests in different processes cannot both pass a check that only
one of them should pass.
"""
import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy import and_, case, null, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import InvalidRequest
from app.db.models.credit_balance import CreditBalance
from app.db.models.subscription import Subscription
from app.services.ownership import get_account
from app.services.plan_catalog import CREDIT_TYPES, validate_credit_type
from app.services.subscription_service import get_current_subscription, peek_subscription

logger = logging.getLogger(__name__)


def _reload(db: Session, balance_id: int) -> CreditBalance:
    return db.query(CreditBalance).populate_existing().filter(CreditBalance.id == balance_id).one()


def get_or_create_balance(db: Session, account_id: int, credit_type: str) -> CreditBalance:
    """
    Fetch the balance row, creating an empty one on first use.

    Creation commits immediately; the unique (account, credit type) constraint
    settles concurrent first-use races. Call it before opening any ledger
    mutation that must commit atomically.
    """
    balance = (
        db.query(CreditBalance)
        .filter(CreditBalance.account_id == account_id, CreditBalance.credit_type == credit_type)
        .first()
    )
    if balance is not None:
        return balance

    now = utcnow()
    balance = CreditBalance(
        account_id=account_id,
        credit_type=credit_type,
        allocated=0,
        used=0,
        purchased=0,
        total_purchased=0,
        purchased_used=0,
        created_at=now,
        updated_at=now,
    )
    db.add(balance)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return (
            db.query(CreditBalance)
            .filter(CreditBalance.account_id == account_id, CreditBalance.credit_type == credit_type)
            .one()
        )
    db.refresh(balance)
    logger.debug(f"Balance row created: account_id={account_id}, credit_type={credit_type}")
    return balance


def sync_allocation(db: Session, balance: CreditBalance, subscription: Subscription) -> CreditBalance:
    """
    Point the quota half of a balance at the subscription's current period.

    A new subscription or a new period resets ``used`` to zero and refreshes
    ``allocated`` from the plan ceiling. The update only applies while the row
    still names a different period, so concurrent callers reset it once.
    """
    if (
        balance.subscription_id == subscription.id
        and balance.period_start == subscription.current_period_start
    ):
        return balance

    allocated = subscription.plan.allowance_for(balance.credit_type)
    rows = (
        db.query(CreditBalance)
        .filter(
            CreditBalance.id == balance.id,
            or_(
                CreditBalance.subscription_id.is_distinct_from(subscription.id),
                CreditBalance.period_start.is_distinct_from(subscription.current_period_start),
            ),
        )
        .update(
            {
                CreditBalance.subscription_id: subscription.id,
                CreditBalance.period_start: subscription.current_period_start,
                CreditBalance.period_end: subscription.current_period_end,
                CreditBalance.allocated: allocated,
                CreditBalance.used: 0,
                CreditBalance.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if rows:
        logger.info(
            f"Allowance refreshed: account_id={balance.account_id}, credit_type={balance.credit_type}, "
            f"allocated={'unlimited' if allocated is None else allocated}, "
            f"period_start={subscription.current_period_start.isoformat()}"
        )
    return _reload(db, balance.id)


def expire_purchased(db: Session, balance: CreditBalance, now: Optional[datetime] = None) -> CreditBalance:
    """Zero a purchased balance whose validity window has passed."""
    now = now or utcnow()
    if balance.expires_at is None or balance.expires_at > now or balance.purchased == 0:
        return balance

    rows = (
        db.query(CreditBalance)
        .filter(
            CreditBalance.id == balance.id,
            CreditBalance.expires_at.isnot(None),
            CreditBalance.expires_at <= now,
            CreditBalance.purchased > 0,
        )
        .update({CreditBalance.purchased: 0, CreditBalance.updated_at: now}, synchronize_session=False)
    )
    db.commit()
    if rows:
        logger.info(
            f"Purchased credits expired: account_id={balance.account_id}, "
            f"credit_type={balance.credit_type}, forfeited={balance.purchased}"
        )
    return _reload(db, balance.id)


def prepare_balance(
    db: Session, account_id: int, credit_type: str, now: Optional[datetime] = None
) -> Tuple[CreditBalance, Subscription]:
    """Resolve subscription and balance row, bringing both up to date for ``now``."""
    now = now or utcnow()
    subscription = get_current_subscription(db, account_id, now=now)
    balance = get_or_create_balance(db, account_id, credit_type)
    balance = sync_allocation(db, balance, subscription)
    balance = expire_purchased(db, balance, now=now)
    return balance, subscription


def _merged_expiry(incoming: Optional[datetime], now: datetime):
    """
    SQL expression for the expiry after a credit lands.

    One expiry per balance: an empty or expired balance takes the incoming
    expiry, otherwise the later of the two wins and no expiry counts as latest.
    """
    if incoming is None:
        return null()
    empty = or_(CreditBalance.purchased <= 0, _expired(now))
    return case(
        (empty, incoming),
        (CreditBalance.expires_at.is_(None), null()),
        (CreditBalance.expires_at < incoming, incoming),
        else_=CreditBalance.expires_at,
    )


def _expired(now: datetime):
    return and_(CreditBalance.expires_at.isnot(None), CreditBalance.expires_at <= now)


def add_purchased(
    db: Session,
    account_id: int,
    credit_type: str,
    amount: int,
    expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> CreditBalance:
    """
    Credit purchased balance. Does not commit.

    The balance row must already exist (see ``get_or_create_balance``).
    Credits that already expired are forfeited before the new amount lands.
    Forfeit, merge and credit are one UPDATE evaluated against the row as the
    store holds it, so a concurrent credit is never overwritten.
    """
    if amount <= 0:
        raise InvalidRequest("Credit amount must be positive")
    now = now or utcnow()

    balance_id = (
        db.query(CreditBalance.id)
        .filter(CreditBalance.account_id == account_id, CreditBalance.credit_type == credit_type)
        .scalar()
    )
    if balance_id is None:
        raise InvalidRequest(f"No {credit_type} balance for account {account_id}")

    values = {
        CreditBalance.purchased: case((_expired(now), amount), else_=CreditBalance.purchased + amount),
        CreditBalance.total_purchased: CreditBalance.total_purchased + amount,
        CreditBalance.expires_at: _merged_expiry(expires_at, now),
        CreditBalance.updated_at: now,
    }
    db.query(CreditBalance).filter(CreditBalance.id == balance_id).update(values, synchronize_session=False)
    db.flush()
    return _reload(db, balance_id)


def grant_credits(
    db: Session,
    account_id: int,
    credit_type: str,
    amount: int,
    expires_at: Optional[datetime] = None,
    reason: str = "",
) -> CreditBalance:
    """Administrative credit grant outside the payment flow."""
    validate_credit_type(credit_type)
    get_account(db, account_id)
    get_or_create_balance(db, account_id, credit_type)
    try:
        balance = add_purchased(db, account_id, credit_type, amount, expires_at=expires_at)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Credits granted: account_id={account_id}, credit_type={credit_type}, amount={amount}, "
        f"purchased={balance.purchased}, reason={reason or 'n/a'}"
    )
    return balance


def get_balance(db: Session, account_id: int, now: Optional[datetime] = None) -> Dict:
    """
    Read-only balance snapshot for display.

    Returns the current plan and period plus, per credit type, the remaining
    subscription quota (None = unlimited) and purchased balance. Nothing is
    written: rows, rollovers and expiries are applied by the next consumption
    or settlement, and the snapshot reports what they would produce.
    """
    now = now or utcnow()
    get_account(db, account_id)
    view = peek_subscription(db, account_id, now=now)
    rows = {
        balance.credit_type: balance
        for balance in db.query(CreditBalance).filter(CreditBalance.account_id == account_id).all()
    }

    subscription_remaining = {}
    purchased = {}
    credits = {}
    for credit_type in CREDIT_TYPES:
        balance = rows.get(credit_type)
        current_period = (
            balance is not None
            and view.subscription_id is not None
            and balance.subscription_id == view.subscription_id
            and balance.period_start == view.period_start
        )
        if current_period:
            allocated, used = balance.allocated, balance.used
        else:
            allocated, used = view.plan.allowance_for(credit_type), 0
        remaining = None if allocated is None else max(0, allocated - used)
        available = balance.purchased_available(now) if balance is not None else 0

        subscription_remaining[credit_type] = remaining
        purchased[credit_type] = available
        credits[credit_type] = {
            "allocated": allocated,
            "used": used,
            "subscription_remaining": remaining,
            "unlimited": allocated is None,
            "purchased": available,
            "total_purchased": balance.total_purchased if balance is not None else 0,
            "expires_at": balance.expires_at if balance is not None else None,
        }

    return {
        "account_id": account_id,
        "plan": view.plan.plan_type,
        "subscription_status": view.status,
        "period_start": view.period_start,
        "period_end": view.period_end,
        "subscription_remaining": subscription_remaining,
        "purchased": purchased,
        "credits": credits,
    }
