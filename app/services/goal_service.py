"""Goal service - goal reads, creation and the giver approval flow."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from app.config import settings
from app.exceptions import FailureReason, ForbiddenError, NotFoundError, StateConflictError
from app.models.goal import (
    ApprovalStatus,
    EmpoweredGoal,
    Goal,
    GoalChangeSuggestion,
    GoalSetup,
    PersonalizedHintCreate,
    SuggestionResponse,
    doc_to_goal,
)
from app.models.session import ProgressSnapshot
from app.services.gating import total_sessions_done
from app.services.notification_service import NotificationService
from app.services.progress import progress_snapshot
from app.services.user_service import UserService
from app.utils.clock import clock as default_clock
from app.utils.ids import to_object_id

logger = logging.getLogger(__name__)


def validate_cadence(target_count: Optional[int], sessions_per_week: Optional[int]) -> None:
    """
    Check a weeks x sessions-per-week cadence against the limits.

    Raises:
        ValueError: If either value is missing or out of range
    """
    if target_count is None or sessions_per_week is None:
        raise ValueError("Weeks and sessions per week are required")
    if not 1 <= target_count <= settings.max_target_weeks:
        raise ValueError(f"Weeks must be between 1 and {settings.max_target_weeks}")
    if not 1 <= sessions_per_week <= settings.max_sessions_per_week:
        raise ValueError(f"Sessions per week must be between 1 and {settings.max_sessions_per_week}")


def validate_setup(setup: GoalSetup) -> None:
    """
    Validate a recipient's goal setup.

    Raises:
        ValueError: If the cadence or session duration is invalid
    """
    validate_cadence(setup.target_count, setup.sessions_per_week)
    if setup.target_hours < 0 or not 0 <= setup.target_minutes < 60:
        raise ValueError("Session duration is invalid")
    total_minutes = setup.target_hours * 60 + setup.target_minutes
    if total_minutes <= 0:
        raise ValueError("Session duration must be greater than zero")
    if total_minutes > settings.max_session_hours * 60:
        raise ValueError(f"Sessions cannot be longer than {settings.max_session_hours} hours")


def new_goal_doc(
    user_id: str,
    setup: GoalSetup,
    now: datetime,
    experience_id: Optional[str] = None,
    empowered_by: Optional[str] = None,
    experience_gift_id: Optional[str] = None,
    valentine_challenge_id: Optional[str] = None,
    is_revealed: bool = True,
) -> dict:
    """
    Build the document for a freshly redeemed goal.

    Gifted goals start pending the giver's approval. Self goals and
    Valentine goals need no approval.
    """
    validate_setup(setup)

    needs_approval = bool(empowered_by) and empowered_by != user_id and not valentine_challenge_id
    approval_status = ApprovalStatus.PENDING if needs_approval else ApprovalStatus.NONE
    if valentine_challenge_id:
        approval_status = ApprovalStatus.APPROVED

    return {
        "user_id": user_id,
        "empowered_by": empowered_by,
        "title": setup.title,
        "description": setup.description,
        "experience_id": experience_id,
        "experience_gift_id": experience_gift_id,
        "target_count": setup.target_count,
        "sessions_per_week": setup.sessions_per_week,
        "target_hours": setup.target_hours,
        "target_minutes": setup.target_minutes,
        "initial_target_count": setup.target_count,
        "initial_sessions_per_week": setup.sessions_per_week,
        "current_count": 0,
        "weekly_count": 0,
        "weekly_log_dates": [],
        "week_start_at": None,
        "is_week_completed": False,
        "is_completed": False,
        "approval_status": approval_status.value,
        "approval_requested_at": now if needs_approval else None,
        "approval_deadline": now + timedelta(hours=settings.approval_window_hours) if needs_approval else None,
        "giver_action_taken": False,
        "personalized_next_hint": None,
        "hints": [],
        "valentine_challenge_id": valentine_challenge_id,
        "partner_goal_id": None,
        "is_revealed": is_revealed,
        "is_finished": False,
        "is_unlocked": False,
        "active_session_started_at": None,
        "last_session_at": None,
        "version": 0,
        "created_at": now,
        "updated_at": now,
    }


def retarget_changes(goal: Goal, target_count: int, sessions_per_week: int) -> dict:
    """Fields to set when a goal's cadence changes, keeping the counters valid."""
    current_count = min(goal.current_count, target_count)
    changes = {
        "target_count": target_count,
        "sessions_per_week": sessions_per_week,
        "current_count": current_count,
        "weekly_count": min(goal.weekly_count, sessions_per_week - 1),
    }
    if current_count >= target_count:
        changes["is_completed"] = True
    return changes


class GoalService:
    """Service for handling goal operations."""

    def __init__(self, db, clock=None, notifications=None):
        """Initialize service with database connection."""
        self.db = db
        self.goals = db["goals"]
        self.clock = clock or default_clock
        self.notifications = notifications or NotificationService(db, clock=self.clock)
        self.users = UserService(db)

    async def _find(self, goal_id: str) -> Goal:
        doc = await self.goals.find_one({"_id": to_object_id(goal_id, "goal ID")})
        if not doc:
            raise NotFoundError("Goal not found")
        return doc_to_goal(doc)

    async def _update_if_unchanged(self, goal: Goal, changes: dict) -> Goal:
        version = goal.version if goal.version else {"$in": [0, None]}
        changes = dict(changes, updated_at=self.clock.now())
        updated_doc = await self.goals.find_one_and_update(
            {"_id": to_object_id(goal.id, "goal ID"), "version": version},
            {"$set": changes, "$inc": {"version": 1}},
            return_document=True,
        )
        if not updated_doc:
            raise StateConflictError(FailureReason.CONCURRENT_UPDATE)
        return doc_to_goal(updated_doc)

    async def list_goals(self, user_id: str, include_completed: bool = True) -> list[Goal]:
        """
        List goals owned by a user, newest first.

        Args:
            user_id: Owner
            include_completed: Whether to include completed goals

        Returns:
            List of goals
        """
        query = {"user_id": user_id}
        if not include_completed:
            query["is_completed"] = False

        cursor = self.goals.find(query).sort("created_at", -1)
        docs = await cursor.to_list(length=None)
        return [doc_to_goal(doc) for doc in docs]

    async def get_goal(self, user_id: str, goal_id: str) -> Goal:
        """
        Get a goal visible to the user.

        The owner, the giver of an empowered goal and the partner of a
        paired goal may read it.

        Raises:
            NotFoundError: If the goal does not exist
            ForbiddenError: If the user may not see it
        """
        goal = await self._find(goal_id)
        if goal.user_id == user_id or goal.giver_id == user_id:
            return goal

        if goal.partner_goal_id:
            partner = await self.goals.find_one(
                {"_id": to_object_id(goal.partner_goal_id, "goal ID"), "user_id": user_id}
            )
            if partner:
                return goal

        raise ForbiddenError("Not allowed to view this goal")

    async def get_progress(self, user_id: str, goal_id: str) -> ProgressSnapshot:
        goal = await self.get_goal(user_id, goal_id)
        return progress_snapshot(goal, self.clock.now())

    async def _get_as_giver(self, giver_id: str, goal_id: str) -> Goal:
        goal = await self._find(goal_id)
        if not isinstance(goal.kind, EmpoweredGoal) or goal.kind.giver_id != giver_id:
            raise ForbiddenError("Only the giver can do this")
        return goal

    async def approve_goal(self, giver_id: str, goal_id: str, message: str = "") -> Goal:
        """
        Approve a recipient's goal.

        If the giver had suggested a change, approving applies it.

        Args:
            giver_id: Giver approving the goal
            goal_id: Goal ID
            message: Optional note to the recipient

        Returns:
            Approved goal

        Raises:
            ForbiddenError: If the user is not the goal's giver
            StateConflictError: If the goal is not awaiting the giver
        """
        goal = await self._get_as_giver(giver_id, goal_id)
        if goal.approval_status not in (ApprovalStatus.PENDING, ApprovalStatus.SUGGESTED_CHANGE):
            raise StateConflictError(FailureReason.APPROVAL_CLOSED)

        changes = {
            "approval_status": ApprovalStatus.APPROVED.value,
            "giver_action_taken": True,
            "giver_message": message or None,
            "suggested_target_count": None,
            "suggested_sessions_per_week": None,
        }
        if goal.suggested_target_count and goal.suggested_sessions_per_week:
            changes.update(
                retarget_changes(goal, goal.suggested_target_count, goal.suggested_sessions_per_week)
            )

        updated = await self._update_if_unchanged(goal, changes)
        logger.info("Goal %s approved by giver", goal_id)

        giver_name = await self.users.get_display_name(giver_id)
        await self.notifications.send(
            user_id=goal.user_id,
            type="goal_approved",
            title="Goal approved!",
            message=message or f"{giver_name} approved your goal. Go get it!",
            data={"goal_id": goal.id},
        )
        return updated

    async def suggest_goal_change(
        self, giver_id: str, goal_id: str, suggestion: GoalChangeSuggestion
    ) -> Goal:
        """
        Propose a different cadence for a pending goal.

        Raises:
            ForbiddenError: If the user is not the goal's giver
            StateConflictError: If the goal is not pending approval
            ValueError: If the suggested cadence is out of range
        """
        goal = await self._get_as_giver(giver_id, goal_id)
        if goal.approval_status != ApprovalStatus.PENDING:
            raise StateConflictError(FailureReason.APPROVAL_CLOSED)
        validate_cadence(suggestion.target_count, suggestion.sessions_per_week)

        updated = await self._update_if_unchanged(
            goal,
            {
                "approval_status": ApprovalStatus.SUGGESTED_CHANGE.value,
                "suggested_target_count": suggestion.target_count,
                "suggested_sessions_per_week": suggestion.sessions_per_week,
                "giver_message": suggestion.message or None,
                "giver_action_taken": True,
            },
        )

        giver_name = await self.users.get_display_name(giver_id)
        await self.notifications.send(
            user_id=goal.user_id,
            type="goal_change_suggested",
            title=f"{giver_name} suggested a change",
            message=(
                f"{giver_name} suggested {suggestion.target_count} weeks with "
                f"{suggestion.sessions_per_week} sessions per week."
            ),
            data={"goal_id": goal.id},
        )
        return updated

    async def respond_to_suggestion(
        self, user_id: str, goal_id: str, response: SuggestionResponse
    ) -> Goal:
        """
        Accept a suggested change, possibly raising it further.

        The recipient may not go below what they originally committed to.

        Raises:
            ForbiddenError: If the user does not own the goal
            StateConflictError: If no suggestion is pending
            ValueError: If the response is below the original cadence or out of range
        """
        goal = await self._find(goal_id)
        if goal.user_id != user_id:
            raise ForbiddenError("Not the goal owner")
        if goal.approval_status != ApprovalStatus.SUGGESTED_CHANGE:
            raise StateConflictError(FailureReason.APPROVAL_CLOSED)

        validate_cadence(response.target_count, response.sessions_per_week)
        if response.target_count < (goal.initial_target_count or 1):
            raise ValueError("Weeks cannot be lower than your original goal")
        if response.sessions_per_week < (goal.initial_sessions_per_week or 1):
            raise ValueError("Sessions per week cannot be lower than your original goal")

        changes = retarget_changes(goal, response.target_count, response.sessions_per_week)
        changes.update(
            approval_status=ApprovalStatus.APPROVED.value,
            receiver_message=response.message or None,
            suggested_target_count=None,
            suggested_sessions_per_week=None,
        )
        updated = await self._update_if_unchanged(goal, changes)

        if goal.giver_id:
            name = await self.users.get_display_name(user_id)
            await self.notifications.send(
                user_id=goal.giver_id,
                type="goal_suggestion_accepted",
                title=f"{name} updated their goal",
                message=f"{name} agreed to {response.target_count} weeks x {response.sessions_per_week} sessions.",
                data={"goal_id": goal.id},
            )
        return updated

    async def set_personalized_hint(
        self, giver_id: str, goal_id: str, hint: PersonalizedHintCreate
    ) -> Goal:
        """
        Leave a hint the recipient will see after a future session.

        Args:
            giver_id: Giver of the goal
            goal_id: Goal ID
            hint: Hint content; defaults to the session after next

        Returns:
            Goal with the pending hint set

        Raises:
            ForbiddenError: If the user is not the goal's giver
            ValueError: If the hint is empty or targets a past or missing session
        """
        goal = await self._get_as_giver(giver_id, goal_id)
        if goal.is_completed:
            raise StateConflictError(FailureReason.GOAL_COMPLETED)
        if not hint.text.strip() and not hint.audio_url and not hint.image_url:
            raise ValueError("Hint needs text, audio or an image")

        earliest = total_sessions_done(goal) + 2
        total = goal.target_count * goal.sessions_per_week
        session_number = hint.for_session_number or earliest
        if not earliest <= session_number <= total:
            raise ValueError(f"Hint session must be between {earliest} and {total}")

        pending = {
            "text": hint.text.strip(),
            "type": hint.type.value,
            "audio_url": hint.audio_url,
            "image_url": hint.image_url,
            "duration_seconds": hint.duration_seconds,
            "giver_name": await self.users.get_display_name(giver_id),
            "for_session_number": session_number,
            "created_at": self.clock.now(),
        }
        updated_doc = await self.goals.find_one_and_update(
            {"_id": to_object_id(goal_id, "goal ID")},
            {"$set": {"personalized_next_hint": pending, "updated_at": self.clock.now()}},
            return_document=True,
        )
        logger.info("Personalized hint set on goal %s for session %d", goal_id, session_number)
        return doc_to_goal(updated_doc)
