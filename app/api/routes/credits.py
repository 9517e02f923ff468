"""
Balance and consumption endpoints.

Used by the UI for display and by gated features (AI analysis, job posting)
that consume credits without a per-target record.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_credit_owner
from app.core.errors import LedgerError
from app.db.session import get_db
from app.schemas.credits import BalanceResponse, ConsumeRequest, ConsumeResponse
from app.services import consumption_gate
from app.services.balance_store import get_balance
from app.services.ownership import CreditOwner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["Credits"])


@router.get("/balance", response_model=BalanceResponse)
def read_balance(
    owner: CreditOwner = Depends(get_credit_owner),
    db: Session = Depends(get_db),
):
    """
    Current plan, remaining allowance and purchased balance per credit type.

    Delegated seats see their organization's balance.
    """
    try:
        return get_balance(db, owner.owner_id)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/consume", response_model=ConsumeResponse, status_code=status.HTTP_200_OK)
def consume_credits(
    request: ConsumeRequest,
    owner: CreditOwner = Depends(get_credit_owner),
    db: Session = Depends(get_db),
):
    """
    Consume credits, subscription allowance first.

    Returns 402 with both remainders and upgrade options when neither source
    can cover the amount.
    """
    try:
        result = consumption_gate.consume(db, owner.owner_id, request.credit_type, request.amount)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    logger.debug(f"Consume request served: actor_id={owner.actor_id}, owner_id={owner.owner_id}")
    return ConsumeResponse(
        credit_type=result.credit_type,
        amount=result.amount,
        source=result.source,
        from_subscription=result.from_subscription,
        from_credit=result.from_credit,
        subscription_remaining=result.subscription_remaining,
        purchased_remaining=result.purchased_remaining,
        new_remaining=result.new_remaining,
    )
