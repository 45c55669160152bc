"""WebSocket endpoint streaming goal events."""
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from jose import JWTError

from app.database import get_database
from app.services.event_bus import goal_events
from app.services.goal_service import GoalService
from app.utils.auth import verify_access_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.websocket("/goals/{goal_id}/events")
async def goal_events_socket(websocket: WebSocket, goal_id: str, db=Depends(get_database)):
    """
    Stream goal_updated, partner_updated and unlocked events for a goal.

    Client connects with ?token=<jwt>.
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return

    try:
        user_id = verify_access_token(token)
        await GoalService(db).get_goal(user_id=user_id, goal_id=goal_id)
    except (JWTError, ValueError, PermissionError):
        await websocket.close(code=4003, reason="Not allowed")
        return

    await websocket.accept()
    queue = goal_events.subscribe(goal_id)
    try:
        while True:
            message = await queue.get()
            await websocket.send_json(message)
    except WebSocketDisconnect:
        pass
    finally:
        goal_events.unsubscribe(goal_id, queue)
        logger.debug("Event stream closed for goal %s", goal_id)
