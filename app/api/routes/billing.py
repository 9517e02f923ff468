"""
Billing endpoints: checkout, trials and cancellation.

Payments settle only through the provider webhook (billing_webhook.py).
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_credit_owner
from app.core.errors import LedgerError
from app.db.session import get_db
from app.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    SubscriptionOut,
    TrialRequest,
)
from app.services import settlement_service, subscription_service
from app.services.ownership import CreditOwner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    request: CheckoutRequest,
    owner: CreditOwner = Depends(get_credit_owner),
    db: Session = Depends(get_db),
):
    """
    Start a plan or credit package purchase for the caller's organization.

    Returns the provider client secret; credits land when the payment
    webhook settles the payment.
    """
    try:
        return settlement_service.create_checkout(
            db, owner.owner_id, request.item_type, request.item_id, billing_cycle=request.billing_cycle
        )
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except ValueError as e:
        logger.error(f"Checkout failed: owner_id={owner.owner_id}, error={e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail={"error": "payment_provider_error", "message": str(e)})


@router.post("/trial", response_model=SubscriptionOut)
def trial(
    request: TrialRequest,
    owner: CreditOwner = Depends(get_credit_owner),
    db: Session = Depends(get_db),
):
    try:
        return subscription_service.start_trial(db, owner.owner_id, request.plan_type)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/cancel", response_model=SubscriptionOut)
def cancel(
    owner: CreditOwner = Depends(get_credit_owner),
    db: Session = Depends(get_db),
):
    """Cancel the paid plan; the organization drops to the free tier."""
    try:
        return subscription_service.cancel_subscription(db, owner.owner_id)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

