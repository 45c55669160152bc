"""Hint endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.database import get_database
from app.routers.auth import get_current_user_id
from app.routers.errors import to_http_exception
from app.services.goal_service import GoalService
from app.services.hint_service import HintService


router = APIRouter(prefix="/goals", tags=["hints"])


class HintResponse(BaseModel):
    goal_id: str
    session_number: int
    text: str


@router.get("/{goal_id}/hints/{session_number}", response_model=HintResponse)
async def get_hint(
    goal_id: str,
    session_number: int,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Get the hint for a session.

    - Returns the cached hint, generating it on a miss
    - Personalized hints are delivered through session finish, not here
    """
    try:
        goal = await GoalService(db).get_goal(user_id=user_id, goal_id=goal_id)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)

    total = goal.target_count * goal.sessions_per_week
    if not 1 <= session_number <= total:
        raise HTTPException(status_code=400, detail=f"Session number must be between 1 and {total}")

    text = await HintService(db).get_hint(goal, session_number)
    return HintResponse(goal_id=goal.id, session_number=session_number, text=text)
