"""Goal endpoints - reads, progress, pairing and the giver approval flow."""
from fastapi import APIRouter, Depends, Query

from app.database import get_database
from app.models.goal import (
    ApprovalRequest,
    Goal,
    GoalChangeSuggestion,
    PersonalizedHintCreate,
    SuggestionResponse,
)
from app.models.session import PairingStatus, ProgressSnapshot
from app.routers.auth import get_current_user_id
from app.routers.errors import to_http_exception
from app.services.goal_service import GoalService
from app.services.pairing_service import PairingService


router = APIRouter(prefix="/goals", tags=["goals"])


@router.get("", response_model=list[Goal])
async def list_goals(
    include_completed: bool = Query(True),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    List the authenticated user's goals, newest first.
    """
    service = GoalService(db)
    return await service.list_goals(user_id=user_id, include_completed=include_completed)


@router.get("/{goal_id}", response_model=Goal)
async def get_goal(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Get a goal.

    - Visible to the owner, the giver and the Valentine partner
    """
    service = GoalService(db)
    try:
        return await service.get_goal(user_id=user_id, goal_id=goal_id)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)


@router.get("/{goal_id}/progress", response_model=ProgressSnapshot)
async def get_progress(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Get derived progress figures, including when the next week opens.
    """
    service = GoalService(db)
    try:
        return await service.get_progress(user_id=user_id, goal_id=goal_id)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)


@router.get("/{goal_id}/pairing", response_model=PairingStatus)
async def get_pairing(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Get both sides of a Valentine challenge.

    - Owner only
    - Completes a pending unlock if both sides have finished
    """
    service = PairingService(db)
    try:
        return await service.pairing_status(user_id=user_id, goal_id=goal_id)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)


@router.post("/{goal_id}/approve", response_model=Goal)
async def approve_goal(
    goal_id: str,
    request: ApprovalRequest,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Approve a gifted goal. Giver only.
    """
    service = GoalService(db)
    try:
        return await service.approve_goal(giver_id=user_id, goal_id=goal_id, message=request.message)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)


@router.post("/{goal_id}/suggest-change", response_model=Goal)
async def suggest_change(
    goal_id: str,
    suggestion: GoalChangeSuggestion,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Suggest a different cadence for a pending goal. Giver only.
    """
    service = GoalService(db)
    try:
        return await service.suggest_goal_change(giver_id=user_id, goal_id=goal_id, suggestion=suggestion)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)


@router.post("/{goal_id}/respond-to-suggestion", response_model=Goal)
async def respond_to_suggestion(
    goal_id: str,
    response: SuggestionResponse,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Accept the giver's suggestion, optionally raising it. Owner only.
    """
    service = GoalService(db)
    try:
        return await service.respond_to_suggestion(user_id=user_id, goal_id=goal_id, response=response)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)


@router.post("/{goal_id}/personalized-hint", response_model=Goal)
async def set_personalized_hint(
    goal_id: str,
    hint: PersonalizedHintCreate,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Leave a hint for a future session. Giver only.
    """
    service = GoalService(db)
    try:
        return await service.set_personalized_hint(giver_id=user_id, goal_id=goal_id, hint=hint)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)
