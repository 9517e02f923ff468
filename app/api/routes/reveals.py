"""
Contact reveal endpoints.

POST /reveals charges at most once per (organization, target); repeating the
call, from the same seat or another seat of the same organization, returns the
original record without charging again.
"""
import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_credit_owner
from app.core.errors import LedgerError
from app.core.rate_limit import rate_limit
from app.db.session import get_db
from app.schemas.reveal import (
    ConsumptionRecordOut,
    RevealRequest,
    RevealResponse,
    RevealStatusResponse,
)
from app.services.ownership import CreditOwner, application_target, profile_target
from app.services.reveal_registry import find_reveal, list_reveals, reveal_or_charge

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reveals", tags=["Reveals"])


def _target_ref(request: RevealRequest) -> str:
    if request.application_id is not None:
        return application_target(request.application_id)
    if request.profile_id is not None:
        return profile_target(request.profile_id)
    return request.target_ref


@router.post("", response_model=RevealResponse, dependencies=[Depends(rate_limit("reveal"))])
def reveal(
    request: RevealRequest,
    owner: CreditOwner = Depends(get_credit_owner),
    db: Session = Depends(get_db),
):
    """
    Reveal a candidate's contact details, charging one credit if not already paid.

    Errors:
    - 402: no allowance or purchased credits left (with shortfall details)
    - 403: blocked by account policy (e.g. unverified monthly limit)
    - 404: target missing or not one of your applications
    """
    target_ref = _target_ref(request)
    try:
        result = reveal_or_charge(db, owner.actor_id, owner.owner_id, request.action_kind, target_ref)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    consumption = result.consumption
    return RevealResponse(
        already_paid=result.already_paid,
        record=ConsumptionRecordOut.model_validate(result.record),
        subscription_remaining=consumption.subscription_remaining if consumption else None,
        purchased_remaining=consumption.purchased_remaining if consumption else None,
    )


@router.get("", response_model=List[ConsumptionRecordOut])
def reveal_history(
    since: Optional[datetime] = None,
    action_kind: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    owner: CreditOwner = Depends(get_credit_owner),
    db: Session = Depends(get_db),
):
    """Paid actions recorded for the caller's organization, newest first."""
    return list_reveals(db, owner.owner_id, since=since, action_kind=action_kind, limit=limit)


@router.get("/status", response_model=RevealStatusResponse)
def reveal_status(
    target_ref: str,
    action_kind: str = "reveal_contact",
    owner: CreditOwner = Depends(get_credit_owner),
    db: Session = Depends(get_db),
):
    """Whether the caller's organization already paid for a target."""
    record = find_reveal(db, owner.owner_id, action_kind, target_ref)
    return RevealStatusResponse(
        target_ref=target_ref,
        has_access=record is not None,
        revealed_at=record.created_at if record else None,
    )
