"""Webhook endpoints - payment provider callbacks."""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from app.database import get_database
from app.exceptions import WebhookSignatureError
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    db=Depends(get_database),
):
    """
    Receive a Stripe event.

    - Signature is verified against the webhook secret (400 if invalid)
    - Invalid metadata is rejected before anything is written (400)
    - Retried deliveries return the original result
    """
    payload = await request.body()
    service = PaymentService(db)

    try:
        event = service.verify_event(payload, stripe_signature)
    except WebhookSignatureError as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    try:
        result = await service.handle_event(event)
    except ValueError as e:
        logger.warning("Webhook %s rejected: %s", event.get("id"), e)
        raise HTTPException(status_code=400, detail=str(e))

    if result is None:
        return {"received": True}
    return {"received": True, "result": result.model_dump()}
