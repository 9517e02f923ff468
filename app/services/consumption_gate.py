"""
Consumption gate.

Decides which source pays for an action and debits it:

1. subscription quota first, up to what remains in the current period;
2. purchased credits for whatever the quota cannot cover;
3. otherwise ``InsufficientBalance`` with both remainders, and nothing debited.

Each debit is one conditional UPDATE (``used + n <= allocated``,
``purchased >= n``) so two requests racing on the same account can never push
``used`` past ``allocated`` or ``purchased`` below zero. A guard that fails
because another request got there first re-reads the row and tries again.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core import config
from app.core.clock import utcnow
from app.core.errors import InsufficientBalance, InvalidRequest
from app.db.models.credit_balance import CreditBalance
from app.services.balance_store import prepare_balance
from app.services.plan_catalog import upgrade_options, validate_credit_type

logger = logging.getLogger(__name__)

SOURCE_SUBSCRIPTION = "subscription"
SOURCE_CREDIT = "credit"
SOURCE_MIXED = "mixed"


@dataclass(frozen=True)
class ConsumeResult:
    credit_type: str
    amount: int
    source: str
    from_subscription: int
    from_credit: int
    subscription_remaining: Optional[int]  # None = unlimited
    purchased_remaining: int

    @property
    def new_remaining(self) -> Optional[int]:
        if self.subscription_remaining is None:
            return None
        return self.subscription_remaining + self.purchased_remaining


def _source_for(from_subscription: int, from_credit: int) -> str:
    if from_subscription and from_credit:
        return SOURCE_MIXED
    if from_credit:
        return SOURCE_CREDIT
    return SOURCE_SUBSCRIPTION


def _take_subscription(db: Session, balance_id: int, amount: int, now: datetime) -> bool:
    rows = (
        db.query(CreditBalance)
        .filter(
            CreditBalance.id == balance_id,
            or_(CreditBalance.allocated.is_(None), CreditBalance.used + amount <= CreditBalance.allocated),
        )
        .update(
            {CreditBalance.used: CreditBalance.used + amount, CreditBalance.last_used_at: now, CreditBalance.updated_at: now},
            synchronize_session=False,
        )
    )
    return rows == 1


def _return_subscription(db: Session, balance_id: int, amount: int) -> None:
    db.query(CreditBalance).filter(CreditBalance.id == balance_id).update(
        {CreditBalance.used: CreditBalance.used - amount}, synchronize_session=False
    )


def _take_purchased(db: Session, balance_id: int, amount: int, now: datetime) -> bool:
    rows = (
        db.query(CreditBalance)
        .filter(
            CreditBalance.id == balance_id,
            CreditBalance.purchased >= amount,
            or_(CreditBalance.expires_at.is_(None), CreditBalance.expires_at > now),
        )
        .update(
            {
                CreditBalance.purchased: CreditBalance.purchased - amount,
                CreditBalance.purchased_used: CreditBalance.purchased_used + amount,
                CreditBalance.last_used_at: now,
                CreditBalance.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    return rows == 1


def debit(
    db: Session,
    owner_id: int,
    credit_type: str,
    amount: int = 1,
    now: Optional[datetime] = None,
) -> ConsumeResult:
    """
    Debit ``amount`` units inside the caller's transaction. Does not commit.

    Callers that need the debit to stand or fall with another write (the
    reveal registry's record insert) commit or roll back both together.
    """
    validate_credit_type(credit_type)
    if amount <= 0:
        raise InvalidRequest("Amount must be positive")
    now = now or utcnow()

    balance, _ = prepare_balance(db, owner_id, credit_type, now=now)

    # Only lost guards with no visible change by another request count toward the bound
    stalled = 0
    while stalled < config.CONSUME_MAX_ATTEMPTS:
        sub_remaining = balance.subscription_remaining
        purchased = balance.purchased_available(now)

        from_subscription = amount if sub_remaining is None else min(sub_remaining, amount)
        from_credit = amount - from_subscription
        if from_credit > purchased:
            break

        lost = None
        if from_subscription and not _take_subscription(db, balance.id, from_subscription, now):
            lost = "Quota"
        elif from_credit and not _take_purchased(db, balance.id, from_credit, now):
            if from_subscription:
                _return_subscription(db, balance.id, from_subscription)
            lost = "Purchased"

        if lost:
            seen = _snapshot(balance)
            balance = _refresh(db, balance.id)
            stalled = stalled + 1 if _snapshot(balance) == seen else 0
            logger.debug(
                f"{lost} guard lost race: owner_id={owner_id}, credit_type={credit_type}, stalled={stalled}"
            )
            continue

        db.flush()
        balance = _refresh(db, balance.id)
        return ConsumeResult(
            credit_type=credit_type,
            amount=amount,
            source=_source_for(from_subscription, from_credit),
            from_subscription=from_subscription,
            from_credit=from_credit,
            subscription_remaining=balance.subscription_remaining,
            purchased_remaining=balance.purchased_available(now),
        )

    sub_remaining = balance.subscription_remaining
    purchased = balance.purchased_available(now)
    logger.warning(
        f"Insufficient balance: owner_id={owner_id}, credit_type={credit_type}, requested={amount}, "
        f"subscription_remaining={sub_remaining}, purchased={purchased}"
    )
    raise InsufficientBalance(
        credit_type=credit_type,
        requested=amount,
        subscription_remaining=sub_remaining,
        purchased_balance=purchased,
        upgrade_options=upgrade_options(db, credit_type, balance.allocated),
    )


def _refresh(db: Session, balance_id: int) -> CreditBalance:
    return db.query(CreditBalance).populate_existing().filter(CreditBalance.id == balance_id).one()


def _snapshot(balance: CreditBalance):
    return balance.allocated, balance.used, balance.purchased, balance.expires_at, balance.period_start


def consume(
    db: Session,
    owner_id: int,
    credit_type: str,
    amount: int = 1,
    now: Optional[datetime] = None,
) -> ConsumeResult:
    """
    Consume credits for a credit-owning account and commit.

    Returns the source that paid and the new remainders; raises
    ``InsufficientBalance`` without touching the balance when neither source,
    nor both together, can cover ``amount``.
    """
    try:
        result = debit(db, owner_id, credit_type, amount, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Credits consumed: owner_id={owner_id}, credit_type={credit_type}, amount={amount}, "
        f"source={result.source}, from_subscription={result.from_subscription}, "
        f"from_credit={result.from_credit}, purchased_remaining={result.purchased_remaining}"
    )
    return result
