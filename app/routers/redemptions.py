"""Redemption endpoints - look up and redeem claim codes."""
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from app.database import get_database
from app.models.goal import Goal, GoalSetup
from app.models.redemption import CodeLookup, CodeLookupRequest
from app.routers.auth import get_current_user_id
from app.routers.errors import to_http_exception
from app.services.redemption_service import RedemptionService


router = APIRouter(prefix="/redeem", tags=["redemptions"])


class RedeemRequest(BaseModel):
    """Request model for redeeming a code into a goal."""

    code: str
    goal: GoalSetup


@router.post("/lookup", response_model=CodeLookup)
async def lookup_code(
    request: CodeLookupRequest,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Classify a code as a gift, a Valentine purchaser or partner code, or invalid.
    """
    service = RedemptionService(db)
    try:
        return await service.lookup_code(user_id=user_id, raw_code=request.code)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/gift", response_model=Goal, status_code=status.HTTP_201_CREATED)
async def redeem_gift(
    request: RedeemRequest,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Redeem a gift code and create the goal.

    - Goals from another user's gift start pending approval
    """
    service = RedemptionService(db)
    try:
        return await service.redeem_gift(user_id=user_id, raw_code=request.code, setup=request.goal)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/valentine", response_model=Goal, status_code=status.HTTP_201_CREATED)
async def redeem_valentine(
    request: RedeemRequest,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Redeem one side of a Valentine challenge.

    - Links the two goals once both partners have redeemed
    """
    service = RedemptionService(db)
    try:
        return await service.redeem_valentine(user_id=user_id, raw_code=request.code, setup=request.goal)
    except ValueError as e:
        raise to_http_exception(e)
