"""
Settlement pipeline.

Turns a successful payment into an activated subscription or credited balance
exactly once per payment identifier. The ``pending -> succeeded`` transition is
a conditional update committed in the same transaction as the credit, so a
crash leaves either both or neither; a duplicate or retried delivery finds the
row already ``succeeded`` and returns the recorded result untouched.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import config
from app.core.clock import utcnow
from app.core.errors import InvalidRequest, NotFound, SettlementConflict
from app.db.models.credit_balance import CreditBalance
from app.db.models.payment_settlement import PaymentSettlement
from app.db.models.subscription import Subscription
from app.services import stripe_service
from app.services.balance_store import add_purchased, get_or_create_balance
from app.services.ownership import get_account
from app.services.plan_catalog import get_package, get_plan
from app.services.subscription_service import activate_subscription, period_length

logger = logging.getLogger(__name__)

ITEM_SUBSCRIPTION = "subscription"
ITEM_CREDIT_PACKAGE = "credit_package"
ITEM_TYPES = (ITEM_SUBSCRIPTION, ITEM_CREDIT_PACKAGE)


@dataclass
class SettlementResult:
    settlement: PaymentSettlement
    already_settled: bool = False
    subscription: Optional[Subscription] = None
    balances: Dict[str, CreditBalance] = field(default_factory=dict)


def get_settlement(db: Session, payment_id: str) -> PaymentSettlement:
    settlement = db.query(PaymentSettlement).filter(PaymentSettlement.payment_id == payment_id).first()
    if not settlement:
        raise NotFound("payment_settlement", payment_id)
    return settlement


def _validate_item(item_type: str, billing_cycle: Optional[str]) -> None:
    if item_type not in ITEM_TYPES:
        raise InvalidRequest(f"Unknown purchased item type: {item_type}")
    if item_type == ITEM_SUBSCRIPTION:
        period_length(billing_cycle or "monthly")


def record_pending(
    db: Session,
    payment_id: str,
    account_id: int,
    item_type: str,
    item_id: int,
    amount: Decimal,
    currency: str = config.PAYMENT_CURRENCY,
    billing_cycle: Optional[str] = None,
) -> PaymentSettlement:
    """
    Register a payment before the provider confirms it.

    Re-registering the same payment for the same purchase is a no-op; for a
    different purchase it is a ``SettlementConflict``.
    """
    _validate_item(item_type, billing_cycle)
    settlement = PaymentSettlement(
        payment_id=payment_id,
        account_id=account_id,
        item_type=item_type,
        plan_id=item_id if item_type == ITEM_SUBSCRIPTION else None,
        credit_package_id=item_id if item_type == ITEM_CREDIT_PACKAGE else None,
        billing_cycle=(billing_cycle or "monthly") if item_type == ITEM_SUBSCRIPTION else None,
        amount=amount,
        currency=currency,
        status="pending",
    )
    db.add(settlement)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_settlement(db, payment_id)
        if existing.account_id != account_id or existing.item_type != item_type or existing.item_id != item_id:
            logger.warning(f"Payment id reused for a different purchase: payment_id={payment_id}")
            raise SettlementConflict(payment_id, "payment already registered for a different purchase")
        return existing

    db.refresh(settlement)
    logger.info(
        f"Settlement pending: payment_id={payment_id}, account_id={account_id}, "
        f"item={item_type}:{item_id}, amount={amount} {currency}"
    )
    return settlement


def _check_signal(settlement: PaymentSettlement, item_id: Optional[int], item_type: Optional[str]) -> None:
    if item_type is not None and item_type != settlement.item_type:
        raise SettlementConflict(
            settlement.payment_id, f"signal item type {item_type} does not match {settlement.item_type}"
        )
    if item_id is not None and int(item_id) != settlement.item_id:
        raise SettlementConflict(
            settlement.payment_id, f"signal item {item_id} does not match {settlement.item_id}"
        )


def _package_balances(db: Session, settlement: PaymentSettlement) -> Dict[str, CreditBalance]:
    package = get_package(db, settlement.credit_package_id)
    return {
        credit_type: db.query(CreditBalance)
        .populate_existing()
        .filter(CreditBalance.account_id == settlement.account_id, CreditBalance.credit_type == credit_type)
        .first()
        for credit_type in package.credit_grants()
    }


def _recorded_result(db: Session, settlement: PaymentSettlement) -> SettlementResult:
    result = SettlementResult(settlement=settlement, already_settled=True)
    if settlement.item_type == ITEM_SUBSCRIPTION and settlement.subscription_id:
        result.subscription = db.query(Subscription).filter(Subscription.id == settlement.subscription_id).first()
    elif settlement.item_type == ITEM_CREDIT_PACKAGE:
        result.balances = _package_balances(db, settlement)
    return result


def _record_failure(db: Session, payment_id: str, reason: str) -> None:
    rows = (
        db.query(PaymentSettlement)
        .filter(PaymentSettlement.payment_id == payment_id, PaymentSettlement.status != "succeeded")
        .update(
            {
                PaymentSettlement.status: "failed",
                PaymentSettlement.failure_reason: reason[:500],
                PaymentSettlement.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if rows:
        logger.warning(f"Settlement failed: payment_id={payment_id}, reason={reason}")


def settle(
    db: Session,
    payment_id: str,
    item_id: Optional[int] = None,
    item_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SettlementResult:
    """
    Apply a successful payment. Safe to call any number of times.

    ``item_id``/``item_type`` are the provider's view of what was bought; a
    mismatch with the registered purchase is a ``SettlementConflict`` and
    nothing is credited.
    """
    now = now or utcnow()
    settlement = get_settlement(db, payment_id)
    try:
        _check_signal(settlement, item_id, item_type)
    except SettlementConflict:
        logger.warning(f"Settlement integrity warning: payment_id={payment_id}, item={item_type}:{item_id}")
        raise

    if settlement.status == "succeeded":
        logger.info(f"Settlement replayed: payment_id={payment_id}")
        return _recorded_result(db, settlement)

    # Lookups and lazy row creation happen before the atomic unit opens
    account_id = settlement.account_id
    get_account(db, account_id)
    plan = package = None
    if settlement.item_type == ITEM_SUBSCRIPTION:
        plan = get_plan(db, settlement.plan_id)
    else:
        package = get_package(db, settlement.credit_package_id)
        for credit_type in package.credit_grants():
            get_or_create_balance(db, account_id, credit_type)

    try:
        rows = (
            db.query(PaymentSettlement)
            .filter(PaymentSettlement.payment_id == payment_id, PaymentSettlement.status != "succeeded")
            .update(
                {
                    PaymentSettlement.status: "succeeded",
                    PaymentSettlement.failure_reason: None,
                    PaymentSettlement.settled_at: now,
                    PaymentSettlement.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if rows == 0:
            # A concurrent delivery settled it first
            db.rollback()
            settlement = get_settlement(db, payment_id)
            db.refresh(settlement)
            logger.info(f"Settlement already applied concurrently: payment_id={payment_id}")
            return _recorded_result(db, settlement)

        result = SettlementResult(settlement=settlement)
        if plan is not None:
            subscription = activate_subscription(
                db, account_id, plan, billing_cycle=settlement.billing_cycle or "monthly", now=now
            )
            db.query(PaymentSettlement).filter(PaymentSettlement.id == settlement.id).update(
                {PaymentSettlement.subscription_id: subscription.id}, synchronize_session=False
            )
            result.subscription = subscription
        else:
            expires_at = now + timedelta(days=package.validity_days) if package.validity_days else None
            for credit_type, amount in package.credit_grants().items():
                result.balances[credit_type] = add_purchased(
                    db, account_id, credit_type, amount, expires_at=expires_at, now=now
                )

        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Settlement error: payment_id={payment_id}, error={e}", exc_info=True)
        _record_failure(db, payment_id, str(e))
        raise

    db.refresh(settlement)
    if result.subscription is not None:
        db.refresh(result.subscription)
        logger.info(
            f"Settlement succeeded: payment_id={payment_id}, account_id={account_id}, "
            f"plan={plan.plan_type}, subscription_id={result.subscription.id}"
        )
    else:
        logger.info(
            f"Settlement succeeded: payment_id={payment_id}, account_id={account_id}, "
            f"package={package.code}, credited={package.credit_grants()}"
        )
    return result


def mark_failed(db: Session, payment_id: str, reason: str = "payment failed") -> PaymentSettlement:
    """Record a provider-side payment failure. A succeeded payment cannot fail afterwards."""
    settlement = get_settlement(db, payment_id)
    if settlement.status == "succeeded":
        logger.warning(f"Failure signal for succeeded payment ignored: payment_id={payment_id}")
        raise SettlementConflict(payment_id, "payment already succeeded")

    _record_failure(db, payment_id, reason)
    db.refresh(settlement)
    return settlement


def create_checkout(
    db: Session,
    account_id: int,
    item_type: str,
    item_id: int,
    billing_cycle: str = "monthly",
) -> Dict:
    """
    Start a purchase for a plan or credit package.

    The provider PaymentIntent is created first; the pending settlement is
    recorded after it. Free plans activate immediately without a payment.
    """
    _validate_item(item_type, billing_cycle)
    account = get_account(db, account_id)

    if item_type == ITEM_SUBSCRIPTION:
        plan = get_plan(db, item_id)
        if not plan.is_active:
            raise NotFound("subscription_plan", item_id)
        amount = plan.price_yearly if billing_cycle == "yearly" else plan.price_monthly
        description = f"{plan.name} Subscription - {billing_cycle}"
        if not amount:
            try:
                subscription = activate_subscription(db, account.id, plan, billing_cycle=billing_cycle)
                db.commit()
            except Exception:
                db.rollback()
                raise
            logger.info(f"Free plan activated without payment: account_id={account.id}, plan={plan.plan_type}")
            return {"activated": True, "subscription_id": subscription.id, "payment_id": None}
    else:
        package = get_package(db, item_id)
        if not package.is_active:
            raise NotFound("credit_package", item_id)
        amount = package.price
        description = f"{package.name} - Credit Package"
        billing_cycle = None

    metadata = {
        "account_id": str(account.id),
        "item_type": item_type,
        "item_id": str(item_id),
    }
    intent = stripe_service.create_payment_intent(amount, config.PAYMENT_CURRENCY, description, metadata)
    settlement = record_pending(
        db,
        payment_id=intent.id,
        account_id=account.id,
        item_type=item_type,
        item_id=item_id,
        amount=amount,
        currency=config.PAYMENT_CURRENCY,
        billing_cycle=billing_cycle,
    )
    return {
        "activated": False,
        "payment_id": settlement.payment_id,
        "client_secret": getattr(intent, "client_secret", None),
        "amount": settlement.amount,
        "currency": settlement.currency,
        "status": settlement.status,
    }
