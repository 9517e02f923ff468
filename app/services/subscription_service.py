"""
Subscription lifecycle for credit-owning accounts.

Resolves the live subscription (creating the free-tier default when none
exists), rolls elapsed periods forward, and handles trials, activation and
cancellation. Status changes are conditional updates so concurrent requests
converge on one outcome; the partial unique index on live subscriptions is the
final guard against two live rows for one account.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import config
from app.core.clock import utcnow
from app.core.errors import InvalidRequest, NotFound
from app.db.models.plan import SubscriptionPlan
from app.db.models.subscription import Subscription, LIVE_STATUSES
from app.services.plan_catalog import FREE_PLAN_TYPE, get_plan_by_type

logger = logging.getLogger(__name__)


def period_length(billing_cycle: str) -> timedelta:
    if billing_cycle == "yearly":
        return timedelta(days=config.YEARLY_PERIOD_DAYS)
    if billing_cycle == "monthly":
        return timedelta(days=config.BILLING_PERIOD_DAYS)
    raise InvalidRequest(f"Unknown billing cycle: {billing_cycle}")


def _live_subscription(db: Session, account_id: int) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.account_id == account_id, Subscription.status.in_(LIVE_STATUSES))
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )


def _end_live(db: Session, account_id: int, status: str, now: datetime) -> int:
    """Move every live subscription of an account to ``status``. Does not commit."""
    values = {Subscription.status: status, Subscription.updated_at: now}
    if status == "canceled":
        values[Subscription.canceled_at] = now
    return (
        db.query(Subscription)
        .filter(Subscription.account_id == account_id, Subscription.status.in_(LIVE_STATUSES))
        .update(values, synchronize_session=False)
    )


def _create_free_subscription(db: Session, account_id: int, now: datetime) -> Subscription:
    free_plan = get_plan_by_type(db, FREE_PLAN_TYPE)
    subscription = Subscription(
        account_id=account_id,
        plan_id=free_plan.id,
        status="active",
        billing_cycle="monthly",
        current_period_start=now,
        current_period_end=now + period_length("monthly"),
    )
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request created the live row first
        db.rollback()
        existing = _live_subscription(db, account_id)
        if existing is None:
            raise
        return existing

    db.refresh(subscription)
    logger.info(f"Free subscription created: account_id={account_id}, subscription_id={subscription.id}")
    return subscription


def _roll_free_period(db: Session, subscription: Subscription, now: datetime) -> Subscription:
    step = period_length(subscription.billing_cycle)
    start, end = subscription.current_period_start, subscription.current_period_end
    while end <= now:
        start, end = end, end + step

    rows = (
        db.query(Subscription)
        .filter(
            Subscription.id == subscription.id,
            Subscription.current_period_end == subscription.current_period_end,
        )
        .update(
            {
                Subscription.current_period_start: start,
                Subscription.current_period_end: end,
                Subscription.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(subscription)
    if rows:
        logger.info(
            f"Free period rolled over: account_id={subscription.account_id}, "
            f"period_start={start.isoformat()}, period_end={end.isoformat()}"
        )
    return subscription


def _expire(db: Session, subscription: Subscription, now: datetime) -> None:
    rows = (
        db.query(Subscription)
        .filter(Subscription.id == subscription.id, Subscription.status.in_(LIVE_STATUSES))
        .update({Subscription.status: "expired", Subscription.updated_at: now}, synchronize_session=False)
    )
    db.commit()
    if rows:
        logger.info(
            f"Subscription expired: account_id={subscription.account_id}, subscription_id={subscription.id}"
        )


def get_current_subscription(db: Session, account_id: int, now: Optional[datetime] = None) -> Subscription:
    """
    Live subscription of a credit-owning account.

    Elapsed free periods roll forward; elapsed paid or trial periods expire and
    the account falls back to a fresh free-tier subscription.
    """
    now = now or utcnow()
    subscription = _live_subscription(db, account_id)

    if subscription is not None and subscription.current_period_end <= now:
        if subscription.plan.is_free and subscription.status == "active":
            return _roll_free_period(db, subscription, now)
        _expire(db, subscription, now)
        subscription = None

    if subscription is None:
        subscription = _create_free_subscription(db, account_id, now)
    return subscription


@dataclass(frozen=True)
class SubscriptionView:
    subscription_id: Optional[int]
    plan: SubscriptionPlan
    status: str
    period_start: datetime
    period_end: datetime


def peek_subscription(db: Session, account_id: int, now: Optional[datetime] = None) -> SubscriptionView:
    """
    What ``get_current_subscription`` would resolve to at ``now``, without writing.

    ``subscription_id`` is None when the account would fall back to a new
    free-tier subscription.
    """
    now = now or utcnow()
    subscription = _live_subscription(db, account_id)

    if subscription is not None:
        start, end = subscription.current_period_start, subscription.current_period_end
        if end > now:
            return SubscriptionView(subscription.id, subscription.plan, subscription.status, start, end)
        if subscription.plan.is_free and subscription.status == "active":
            step = period_length(subscription.billing_cycle)
            while end <= now:
                start, end = end, end + step
            return SubscriptionView(subscription.id, subscription.plan, subscription.status, start, end)

    return SubscriptionView(
        subscription_id=None,
        plan=get_plan_by_type(db, FREE_PLAN_TYPE),
        status="active",
        period_start=now,
        period_end=now + period_length("monthly"),
    )


def activate_subscription(
    db: Session,
    account_id: int,
    plan: SubscriptionPlan,
    billing_cycle: str = "monthly",
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Activate or extend a plan with period bounds starting now.

    Does not commit: settlement commits it together with the payment's status
    transition.
    """
    now = now or utcnow()
    period_end = now + period_length(billing_cycle)

    current = _live_subscription(db, account_id)
    if current is not None and current.plan_id == plan.id and current.status == "active":
        current.billing_cycle = billing_cycle
        current.current_period_start = now
        current.current_period_end = period_end
        current.updated_at = now
        db.flush()
        logger.info(f"Subscription extended: account_id={account_id}, plan={plan.plan_type}")
        return current

    _end_live(db, account_id, "canceled", now)
    subscription = Subscription(
        account_id=account_id,
        plan_id=plan.id,
        status="active",
        billing_cycle=billing_cycle,
        current_period_start=now,
        current_period_end=period_end,
    )
    db.add(subscription)
    db.flush()
    logger.info(
        f"Subscription activated: account_id={account_id}, plan={plan.plan_type}, "
        f"cycle={billing_cycle}, subscription_id={subscription.id}"
    )
    return subscription


def start_trial(db: Session, account_id: int, plan_type: str, now: Optional[datetime] = None) -> Subscription:
    """Open a trialing subscription. Each account gets one trial."""
    now = now or utcnow()
    plan = get_plan_by_type(db, plan_type)
    if plan.trial_days <= 0:
        raise InvalidRequest(f"Plan {plan_type} has no trial")

    had_trial = (
        db.query(Subscription.id)
        .filter(Subscription.account_id == account_id, Subscription.billing_cycle == "trial")
        .first()
    )
    if had_trial is not None:
        raise InvalidRequest("Trial already used for this account")

    _end_live(db, account_id, "canceled", now)
    subscription = Subscription(
        account_id=account_id,
        plan_id=plan.id,
        status="trialing",
        billing_cycle="trial",
        current_period_start=now,
        current_period_end=now + timedelta(days=plan.trial_days),
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    logger.info(f"Trial started: account_id={account_id}, plan={plan_type}, days={plan.trial_days}")
    return subscription


def cancel_subscription(db: Session, account_id: int, now: Optional[datetime] = None) -> Subscription:
    """Cancel the live paid subscription and fall back to the free tier."""
    now = now or utcnow()
    current = _live_subscription(db, account_id)
    if current is None or current.plan.is_free:
        raise NotFound("paid_subscription", account_id)

    _end_live(db, account_id, "canceled", now)
    db.commit()
    logger.info(f"Subscription canceled: account_id={account_id}, subscription_id={current.id}")
    return _create_free_subscription(db, account_id, now)
