"""Session endpoints - start, finish and cancel goal sessions."""
from fastapi import APIRouter, Depends

from app.database import get_database
from app.models.goal import Goal
from app.models.session import SessionResult, SessionState
from app.routers.auth import get_current_user_id
from app.routers.errors import to_http_exception
from app.services.session_service import SessionService


router = APIRouter(prefix="/goals", tags=["sessions"])


@router.post("/{goal_id}/session/start", response_model=Goal)
async def start_session(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Start a session.

    - Requires authentication and goal ownership
    - Only one session can run per goal
    - Returns 409 with a reason when gating refuses
    """
    service = SessionService(db)
    try:
        return await service.start_session(user_id=user_id, goal_id=goal_id)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)


@router.post("/{goal_id}/session/finish", response_model=SessionResult)
async def finish_session(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Finish the running session and count it.

    - Requires authentication and goal ownership
    - Returns the updated goal, the hint to show and the pairing outcome
    - Returns 409 with a reason (not_running, too_short, too_fast, ...)
    """
    service = SessionService(db)
    try:
        return await service.finish_session(user_id=user_id, goal_id=goal_id)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)


@router.post("/{goal_id}/session/cancel", response_model=Goal)
async def cancel_session(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Cancel the running session without counting it.
    """
    service = SessionService(db)
    try:
        return await service.cancel_session(user_id=user_id, goal_id=goal_id)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)


@router.get("/{goal_id}/session", response_model=SessionState)
async def get_session(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Get the running-session state, with elapsed time computed server-side.
    """
    service = SessionService(db)
    try:
        return await service.get_session_state(user_id=user_id, goal_id=goal_id)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)
