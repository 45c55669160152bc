"""Session service - start, finish and cancel goal sessions."""
import asyncio
import logging
from typing import Optional

from app.config import settings
from app.exceptions import FailureReason, ForbiddenError, NotFoundError, StateConflictError
from app.models.goal import EmpoweredGoal, Goal, doc_to_goal
from app.models.session import SessionResult, SessionState
from app.services.event_bus import GoalEvent, goal_events
from app.services.gating import SessionAction, can_act_on_goal, total_sessions_done
from app.services.hint_service import HintService, hints_enabled
from app.services.notification_service import NotificationService
from app.services.pairing_service import PairingService
from app.services.progress import apply_changes, is_final_session, record_session, sweep_week
from app.services.session_timer import session_timers
from app.services.user_service import UserService
from app.utils.clock import clock as default_clock, day_key
from app.utils.ids import to_object_id

logger = logging.getLogger(__name__)

MAX_COMMIT_ATTEMPTS = 5

# Strong references to in-flight prefetch tasks
_background_tasks: set[asyncio.Task] = set()


class SessionService:
    """Service driving a goal's session lifecycle."""

    def __init__(
        self,
        db,
        clock=None,
        timers=None,
        hints=None,
        pairing=None,
        notifications=None,
        events=None,
        prefetch_hints: bool = True,
    ):
        """Initialize service with database connection."""
        self.db = db
        self.goals = db["goals"]
        self.clock = clock or default_clock
        self.timers = timers if timers is not None else session_timers
        self.events = events or goal_events
        self.notifications = notifications or NotificationService(db, clock=self.clock)
        self.hints = hints or HintService(db, clock=self.clock)
        self.pairing = pairing or PairingService(
            db, clock=self.clock, notifications=self.notifications, events=self.events
        )
        self.users = UserService(db)
        self.prefetch_hints = prefetch_hints

    async def _get_owned_goal(self, user_id: str, goal_id: str) -> Goal:
        doc = await self.goals.find_one({"_id": to_object_id(goal_id, "goal ID")})
        if not doc:
            raise NotFoundError("Goal not found")
        if doc["user_id"] != user_id:
            raise ForbiddenError("Not the goal owner")
        return doc_to_goal(doc)

    async def _compare_and_set(self, goal: Goal, changes: dict, extra_filter: dict) -> Optional[Goal]:
        """
        Write ``changes`` only if the goal is still at the version we read.

        Returns:
            Updated goal, or None if another writer got there first
        """
        # Goals written before versioning have no version field
        version = goal.version if goal.version else {"$in": [0, None]}
        query = {"_id": to_object_id(goal.id, "goal ID"), "version": version}
        query.update(extra_filter)
        changes = dict(changes, updated_at=self.clock.now())

        updated_doc = await self.goals.find_one_and_update(
            query,
            {"$set": changes, "$inc": {"version": 1}},
            return_document=True,
        )
        return doc_to_goal(updated_doc) if updated_doc else None

    async def start_session(self, user_id: str, goal_id: str) -> Goal:
        """
        Start a session on a goal.

        Args:
            user_id: Goal owner
            goal_id: Goal ID

        Returns:
            Goal with the running session recorded

        Raises:
            NotFoundError: If the goal does not exist
            ForbiddenError: If the user does not own the goal
            StateConflictError: If a session is running or gating refuses
        """
        for _ in range(MAX_COMMIT_ATTEMPTS):
            goal = await self._get_owned_goal(user_id, goal_id)
            if goal.active_session_started_at is not None:
                raise StateConflictError(FailureReason.ALREADY_RUNNING)

            now = self.clock.now()
            changes = sweep_week(goal, now)
            swept = apply_changes(goal, changes)

            reason = can_act_on_goal(swept, SessionAction.START, now)
            if reason is not None:
                raise StateConflictError(reason)

            changes["active_session_started_at"] = now
            if swept.week_start_at is None:
                changes["week_start_at"] = now

            updated = await self._compare_and_set(
                goal, changes, {"active_session_started_at": None}
            )
            if updated is not None:
                break
        else:
            raise StateConflictError(FailureReason.CONCURRENT_UPDATE)

        logger.info("Session started on goal %s", goal_id)
        await self.timers.start(goal_id, now)
        self.events.publish(goal_id, GoalEvent.GOAL_UPDATED, {"action": "start"})
        self._schedule_prefetch(updated)
        return updated

    def _schedule_prefetch(self, goal: Goal) -> None:
        if not self.prefetch_hints or not hints_enabled(goal) or is_final_session(goal):
            return

        # Hint shown after this session is for the one after it
        next_session = total_sessions_done(goal) + 2
        pending = goal.personalized_next_hint
        if pending is not None and pending.for_session_number == next_session:
            return

        task = asyncio.create_task(self._prefetch(goal, next_session))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    async def _prefetch(self, goal: Goal, session_number: int) -> None:
        try:
            hint = await self.hints.prefetch(goal, session_number)
            if hint:
                await self.timers.set_pending_hint(goal.id, hint)
        except Exception:
            logger.warning("Hint prefetch failed for goal %s", goal.id, exc_info=True)

    def _check_finish(self, goal: Goal, now) -> dict:
        """Run every finish precondition and return the counter changes."""
        started = goal.active_session_started_at
        if started is None:
            raise StateConflictError(FailureReason.NOT_RUNNING)

        if (now - started).total_seconds() < settings.min_session_seconds:
            raise StateConflictError(FailureReason.TOO_SHORT)

        changes = sweep_week(goal, now)
        swept = apply_changes(goal, changes)

        reason = can_act_on_goal(swept, SessionAction.FINISH, now)
        if reason is not None:
            raise StateConflictError(reason)

        last = swept.last_session_at
        if last is not None:
            since_last = (now - last).total_seconds()
            # A future timestamp comes from debug time travel, skip the throttle
            if 0 < since_last < settings.min_session_interval_seconds:
                raise StateConflictError(FailureReason.TOO_FAST)

        if day_key(now) in swept.weekly_log_dates and not settings.allow_multiple_sessions_per_day:
            raise StateConflictError(FailureReason.ALREADY_LOGGED_TODAY)

        changes.update(record_session(swept, now))
        changes["active_session_started_at"] = None
        changes["last_session_at"] = now
        return changes

    async def finish_session(self, user_id: str, goal_id: str) -> SessionResult:
        """
        Finish the running session and count it.

        The counter update is one atomic write. Everything after it
        (timers, events, partner sync, notifications, hints) is
        best-effort and never undoes or repeats the update.

        Args:
            user_id: Goal owner
            goal_id: Goal ID

        Returns:
            Updated goal plus hint and pairing outcome

        Raises:
            NotFoundError: If the goal does not exist
            ForbiddenError: If the user does not own the goal
            StateConflictError: If any precondition fails
        """
        for _ in range(MAX_COMMIT_ATTEMPTS):
            goal = await self._get_owned_goal(user_id, goal_id)
            now = self.clock.now()
            changes = self._check_finish(goal, now)

            updated = await self._compare_and_set(
                goal, changes, {"active_session_started_at": goal.active_session_started_at}
            )
            if updated is not None:
                break
        else:
            raise StateConflictError(FailureReason.CONCURRENT_UPDATE)

        logger.info(
            "Session counted on goal %s: week %d/%d, session %d/%d",
            goal_id,
            updated.current_count,
            updated.target_count,
            updated.weekly_count,
            updated.sessions_per_week,
        )
        return await self._after_finish(updated)

    async def _after_finish(self, goal: Goal) -> SessionResult:
        result = SessionResult(goal=goal)

        try:
            await self.timers.stop(goal.id)
            self.events.publish(goal.id, GoalEvent.GOAL_UPDATED, {"action": "finish"})
        except Exception:
            logger.warning("Failed to clear timer for goal %s", goal.id, exc_info=True)

        if goal.is_paired:
            try:
                result.unlocked = await self.pairing.reconcile_unlock(goal)
                result.waiting_for_partner = goal.is_finished and not result.unlocked
            except Exception:
                logger.exception("Unlock reconciliation failed for goal %s", goal.id)
                result.waiting_for_partner = goal.is_finished
            try:
                await self.pairing.notify_partner_progress(goal)
            except Exception:
                logger.warning("Partner notification failed for goal %s", goal.id, exc_info=True)
        elif isinstance(goal.kind, EmpoweredGoal):
            try:
                await self._notify_giver(goal)
            except Exception:
                logger.warning("Giver notification failed for goal %s", goal.id, exc_info=True)

        if not goal.is_completed:
            try:
                result.hint = await self.hints.resolve_after_session(goal, total_sessions_done(goal))
            except Exception:
                logger.warning("Hint resolution failed for goal %s", goal.id, exc_info=True)
            try:
                await self.timers.take_pending_hint(goal.id)
            except Exception:
                logger.warning("Failed to clear prefetched hint for goal %s", goal.id, exc_info=True)

        return result

    async def _notify_giver(self, goal: Goal) -> None:
        name = await self.users.get_display_name(goal.user_id)
        done = total_sessions_done(goal)
        total = goal.target_count * goal.sessions_per_week

        if goal.is_completed:
            await self.notifications.send(
                user_id=goal.kind.giver_id,
                type="goal_completed",
                title=f"🏆 {name} completed their goal!",
                message=f"{name} finished all {total} sessions of \"{goal.title}\".",
                data={"goal_id": goal.id},
            )
            return

        await self.notifications.send(
            user_id=goal.kind.giver_id,
            type="goal_progress",
            title=f"{name} made progress!",
            message=f"{name} completed session {done} of {total} on \"{goal.title}\".",
            data={"goal_id": goal.id, "session_number": done},
        )

    async def cancel_session(self, user_id: str, goal_id: str) -> Goal:
        """
        Discard the running session without counting it.

        Raises:
            NotFoundError: If the goal does not exist
            ForbiddenError: If the user does not own the goal
            StateConflictError: If no session is running
        """
        goal = await self._get_owned_goal(user_id, goal_id)
        if goal.active_session_started_at is None:
            raise StateConflictError(FailureReason.NOT_RUNNING)

        updated_doc = await self.goals.find_one_and_update(
            {"_id": to_object_id(goal_id, "goal ID"), "active_session_started_at": {"$ne": None}},
            {
                "$set": {"active_session_started_at": None, "updated_at": self.clock.now()},
                "$inc": {"version": 1},
            },
            return_document=True,
        )
        if updated_doc is None:
            raise StateConflictError(FailureReason.NOT_RUNNING)

        await self.timers.stop(goal_id)
        self.events.publish(goal_id, GoalEvent.GOAL_UPDATED, {"action": "cancel"})
        logger.info("Session cancelled on goal %s", goal_id)
        return doc_to_goal(updated_doc)

    async def get_session_state(self, user_id: str, goal_id: str) -> SessionState:
        """Running-session view computed from the stored start time."""
        goal = await self._get_owned_goal(user_id, goal_id)
        started = goal.active_session_started_at
        elapsed = 0
        if started is not None:
            elapsed = max(0, int((self.clock.now() - started).total_seconds()))

        return SessionState(
            goal_id=goal.id,
            running=started is not None,
            started_at=started,
            elapsed_seconds=elapsed,
            pending_hint=self.timers.get(goal.id).pending_hint,
        )
