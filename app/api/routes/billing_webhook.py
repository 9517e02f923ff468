import logging
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.errors import LedgerError, NotFound
from app.core.logging_config import sanitize_log_data
from app.db.session import get_db
from app.services import settlement_service, stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing Webhook"])


def invalid_webhook(error: ValueError) -> HTTPException:
    logger.warning(f"Webhook rejected: {error}")
    return HTTPException(status_code=400, detail={"error": "invalid_webhook", "message": str(error)})


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    """
    Payment provider webhook. The only path that settles a payment.

    Deliveries are at-least-once; settlement is idempotent by payment id, so
    duplicates are acknowledged without crediting again. Non-2xx responses make
    the provider retry.
    """
    payload = await request.body()

    try:
        event = stripe_service.parse_webhook_event(payload, stripe_signature)
        event_type, payment_id, metadata = stripe_service.payment_signal(event)
    except ValueError as e:
        raise invalid_webhook(e)

    logger.info(f"Webhook received: type={event_type}, payment_id={payment_id}, metadata={sanitize_log_data(metadata)}")
    if not payment_id or event_type not in stripe_service.SUCCEEDED_EVENTS + stripe_service.FAILED_EVENTS:
        logger.debug(f"Webhook ignored: type={event_type}")
        return {"status": "ignored", "type": event_type}

    try:
        if event_type in stripe_service.SUCCEEDED_EVENTS:
            try:
                item_id = stripe_service.metadata_item_id(metadata)
            except ValueError as e:
                raise invalid_webhook(e)
            result = settlement_service.settle(
                db,
                payment_id,
                item_id=item_id,
                item_type=metadata.get("item_type"),
            )
            return {
                "status": "settled",
                "payment_id": payment_id,
                "already_settled": result.already_settled,
            }

        payment_error = event["data"]["object"].get("last_payment_error") or {}
        reason = (payment_error.get("message") if isinstance(payment_error, dict) else None) or event_type
        settlement_service.mark_failed(db, payment_id, str(reason))
        return {"status": "failed", "payment_id": payment_id}
    except NotFound as e:
        logger.warning(f"Webhook for unknown payment: payment_id={payment_id}")
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
