"""
Idempotent reveal registry.

A paid action is recorded once per (credit owner, target, action kind). The
lookup short-circuits retries and duplicate clicks without touching the
balance; the store's unique constraint settles concurrent first requests. The
gate debit and the record insert share one transaction, so the loser of an
insert race has its debit rolled back with it and is handed the winner's
record.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import InvalidRequest
from app.db.models.consumption_record import ConsumptionRecord
from app.services import consumption_gate, policy_overlay
from app.services.ownership import resolve_credit_owner, resolve_reveal_scope
from app.services.plan_catalog import credit_type_for_action

logger = logging.getLogger(__name__)

ACTION_SCOPE = "action"


@dataclass(frozen=True)
class RevealResult:
    already_paid: bool
    record: ConsumptionRecord
    consumption: Optional[consumption_gate.ConsumeResult] = None


def find_reveal(db: Session, owner_id: int, action_kind: str, target_ref: str) -> Optional[ConsumptionRecord]:
    return (
        db.query(ConsumptionRecord)
        .filter(
            ConsumptionRecord.owner_account_id == owner_id,
            ConsumptionRecord.target_ref == target_ref,
            ConsumptionRecord.action_kind == action_kind,
        )
        .first()
    )


def list_reveals(
    db: Session,
    owner_id: int,
    since: Optional[datetime] = None,
    action_kind: Optional[str] = None,
    limit: int = 100,
) -> List[ConsumptionRecord]:
    query = db.query(ConsumptionRecord).filter(ConsumptionRecord.owner_account_id == owner_id)
    if since is not None:
        query = query.filter(ConsumptionRecord.created_at >= since)
    if action_kind:
        query = query.filter(ConsumptionRecord.action_kind == action_kind)
    return query.order_by(ConsumptionRecord.created_at.desc(), ConsumptionRecord.id.desc()).limit(limit).all()


def _scope_for(db: Session, owner_id: int, action_kind: str, target_ref: str) -> str:
    if action_kind == policy_overlay.REVEAL_ACTION:
        return resolve_reveal_scope(db, owner_id, target_ref)
    return ACTION_SCOPE


def reveal_or_charge(
    db: Session,
    actor_id: int,
    owner_id: int,
    action_kind: str,
    target_ref: str,
    now: Optional[datetime] = None,
) -> RevealResult:
    """
    Charge one unit for a gated action on ``target_ref`` unless already paid.

    Raises ``PolicyDenied`` or ``InsufficientBalance`` before any record is
    written; ``NotFound`` when the target is missing or not the owner's.
    """
    credit_type = credit_type_for_action(action_kind)
    if resolve_credit_owner(db, actor_id).owner_id != owner_id:
        raise InvalidRequest(f"Account {actor_id} cannot spend credits of account {owner_id}")

    existing = find_reveal(db, owner_id, action_kind, target_ref)
    if existing is not None:
        logger.info(
            f"Already paid: owner_id={owner_id}, actor_id={actor_id}, action={action_kind}, "
            f"target={target_ref}, record_id={existing.id}"
        )
        return RevealResult(already_paid=True, record=existing)

    now = now or utcnow()
    scope = _scope_for(db, owner_id, action_kind, target_ref)
    policy_overlay.enforce(db, owner_id, action_kind, scope=scope, now=now)

    try:
        consumption = consumption_gate.debit(db, owner_id, credit_type, 1, now=now)
        record = ConsumptionRecord(
            actor_account_id=actor_id,
            owner_account_id=owner_id,
            action_kind=action_kind,
            target_ref=target_ref,
            scope=scope,
            credit_type=credit_type,
            source=consumption.source,
            amount=consumption.amount,
            subscription_amount=consumption.from_subscription,
            credit_amount=consumption.from_credit,
            created_at=now,
        )
        db.add(record)
        db.commit()
    except IntegrityError:
        # Concurrent duplicate won the insert; our debit rolls back with it
        db.rollback()
        winner = find_reveal(db, owner_id, action_kind, target_ref)
        if winner is None:
            raise
        logger.warning(
            f"Duplicate reveal race resolved: owner_id={owner_id}, actor_id={actor_id}, "
            f"target={target_ref}, winner_record_id={winner.id}"
        )
        return RevealResult(already_paid=True, record=winner)
    except Exception:
        db.rollback()
        raise

    db.refresh(record)
    logger.info(
        f"Reveal charged: owner_id={owner_id}, actor_id={actor_id}, action={action_kind}, target={target_ref}, "
        f"scope={scope}, source={consumption.source}, purchased_remaining={consumption.purchased_remaining}"
    )
    return RevealResult(already_paid=False, record=record, consumption=consumption)
