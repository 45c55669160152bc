"""Gift endpoints."""
from fastapi import APIRouter, Depends, Query

from app.database import get_database
from app.models.gift import ExperienceGift
from app.routers.auth import get_current_user_id
from app.services.payment_service import PaymentService


router = APIRouter(prefix="/gifts", tags=["gifts"])


@router.get("", response_model=list[ExperienceGift])
async def get_gifts_by_payment_intent(
    payment_intent_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    List the caller's gifts created by a payment.

    - Used after checkout to show the claim codes
    - Only returns gifts the caller paid for
    """
    service = PaymentService(db)
    return await service.get_gifts_by_payment_intent(user_id=user_id, payment_intent_id=payment_intent_id)
