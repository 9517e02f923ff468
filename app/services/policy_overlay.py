"""
Policy overlay: account-level restrictions evaluated before the gate.

Unverified accounts get a limited number of database-wide contact reveals per
rolling window, whatever their purchased balance. Reveals of applications to
the account's own job postings are exempt. The window is read straight from
the consumption ledger so it can never drift from what was actually charged.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core import config
from app.core.clock import utcnow
from app.core.errors import PolicyDenied
from app.db.models.consumption_record import ConsumptionRecord
from app.services.ownership import DATABASE_SCOPE, get_account

logger = logging.getLogger(__name__)

UNVERIFIED_MONTHLY_LIMIT = "unverified_monthly_limit"
REVEAL_ACTION = "reveal_contact"


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    rule: Optional[str] = None
    reason: Optional[str] = None
    retry_after: Optional[datetime] = None


ALLOW = PolicyDecision(allowed=True)


def database_reveals_in_window(db: Session, owner_id: int, now: Optional[datetime] = None) -> List[datetime]:
    """Timestamps of the owner's database-scoped reveals inside the rolling window, oldest first."""
    now = now or utcnow()
    window_start = now - timedelta(days=config.UNVERIFIED_REVEAL_WINDOW_DAYS)
    rows = (
        db.query(ConsumptionRecord.created_at)
        .filter(
            ConsumptionRecord.owner_account_id == owner_id,
            ConsumptionRecord.action_kind == REVEAL_ACTION,
            ConsumptionRecord.scope == DATABASE_SCOPE,
            ConsumptionRecord.created_at > window_start,
        )
        .order_by(ConsumptionRecord.created_at.asc())
        .all()
    )
    return [created_at for (created_at,) in rows]


def evaluate(
    db: Session,
    owner_id: int,
    action_kind: str,
    scope: str = DATABASE_SCOPE,
    now: Optional[datetime] = None,
) -> PolicyDecision:
    if action_kind != REVEAL_ACTION or scope != DATABASE_SCOPE:
        return ALLOW

    owner = get_account(db, owner_id)
    if owner.is_verified:
        return ALLOW

    now = now or utcnow()
    limit = config.UNVERIFIED_DATABASE_REVEAL_LIMIT
    recent = database_reveals_in_window(db, owner_id, now=now)
    if len(recent) < limit:
        return ALLOW

    # The slot frees up when the oldest counted reveal leaves the window
    oldest_counted = recent[len(recent) - limit]
    retry_after = oldest_counted + timedelta(days=config.UNVERIFIED_REVEAL_WINDOW_DAYS)
    return PolicyDecision(
        allowed=False,
        rule=UNVERIFIED_MONTHLY_LIMIT,
        reason=(
            f"Unverified accounts may reveal {limit} database candidate contact"
            f"{'s' if limit != 1 else ''} per {config.UNVERIFIED_REVEAL_WINDOW_DAYS} days. "
            "Verify your account to remove this limit."
        ),
        retry_after=retry_after,
    )


def is_allowed(
    db: Session,
    owner_id: int,
    action_kind: str,
    scope: str = DATABASE_SCOPE,
    now: Optional[datetime] = None,
) -> bool:
    return evaluate(db, owner_id, action_kind, scope=scope, now=now).allowed


def enforce(
    db: Session,
    owner_id: int,
    action_kind: str,
    scope: str = DATABASE_SCOPE,
    now: Optional[datetime] = None,
) -> None:
    decision = evaluate(db, owner_id, action_kind, scope=scope, now=now)
    if decision.allowed:
        return

    logger.warning(
        f"Policy denied: owner_id={owner_id}, action={action_kind}, scope={scope}, rule={decision.rule}"
    )
    raise PolicyDenied(rule=decision.rule, reason=decision.reason, retry_after=decision.retry_after)
