"""Pairing service - keep the two goals of a Valentine challenge in step."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.exceptions import ForbiddenError, NotFoundError
from app.models.gift import ChallengeStatus
from app.models.goal import Goal, doc_to_goal
from app.models.session import PairingStatus
from app.services.event_bus import GoalEvent, goal_events
from app.services.gating import total_sessions_done
from app.services.notification_service import NotificationService
from app.services.progress import apply_changes, progress_snapshot, sweep_week
from app.services.user_service import UserService
from app.utils.clock import clock as default_clock
from app.utils.ids import to_object_id

logger = logging.getLogger(__name__)


@dataclass
class Milestone:
    type: str
    title: str
    message: str
    data: dict = field(default_factory=dict)


def partner_milestone(
    goal: Goal, partner: Optional[Goal], actor_name: str, now: datetime
) -> Optional[Milestone]:
    """
    Pick the notification a partner gets after ``goal`` logged a session.

    The partner's week is swept to ``now`` first, so a week-completed flag
    left over from an earlier week does not count as finishing this one.

    Args:
        goal: Goal just after the session was counted
        partner: Partner goal as last stored, if linked
        actor_name: Display name of the user who logged the session
        now: Time the session was counted

    Returns:
        Milestone to send, or None when there is nothing to say
    """
    if partner is None or goal.is_completed:
        return None

    partner = apply_changes(partner, sweep_week(partner, now))

    spw = goal.sessions_per_week
    week_done = goal.is_week_completed
    week_number = goal.current_count if week_done else goal.current_count + 1
    data = {
        "goal_id": goal.id,
        "partner_goal_id": partner.id,
        "valentine_challenge_id": goal.kind.challenge_id,
        "session_number": total_sessions_done(goal),
        "week_number": week_number,
    }

    if week_done:
        if partner.is_week_completed and partner.current_count == goal.current_count:
            return Milestone(
                "valentine_celebration",
                "Both ready for next week!",
                f"You and {actor_name} both finished week {week_number}. Keep the streak going together!",
                data,
            )
        remaining = max(partner.sessions_per_week - partner.weekly_count, 0)
        plural = "" if remaining == 1 else "s"
        return Milestone(
            "valentine_sync",
            f"{actor_name} finished the week!",
            f"{actor_name} completed week {week_number}. You have {remaining} session{plural} left this week.",
            data,
        )

    if goal.weekly_count == 1:
        return Milestone(
            "valentine_milestone",
            f"{actor_name} started the week!",
            f"{actor_name} logged the first session of week {week_number}.",
            data,
        )
    if spw - goal.weekly_count == 1:
        return Milestone(
            "valentine_milestone",
            f"{actor_name} almost finished!",
            f"{actor_name} has one session left in week {week_number}.",
            data,
        )
    if spw >= 3 and goal.weekly_count == spw // 2:
        return Milestone(
            "valentine_milestone",
            f"{actor_name} is halfway there!",
            f"{actor_name} is halfway through week {week_number}.",
            data,
        )
    return Milestone(
        "valentine_partner_progress",
        f"{actor_name} completed a session!",
        f"{actor_name} logged session {goal.weekly_count} of {spw} this week.",
        data,
    )


class PairingService:
    """Service coordinating the two sides of a Valentine challenge."""

    def __init__(self, db, clock=None, notifications=None, events=None):
        """Initialize service with database connection."""
        self.db = db
        self.goals = db["goals"]
        self.challenges = db["valentine_challenges"]
        self.clock = clock or default_clock
        self.notifications = notifications or NotificationService(db, clock=self.clock)
        self.events = events or goal_events
        self.users = UserService(db)

    async def _get_goal(self, goal_id: str) -> Optional[Goal]:
        doc = await self.goals.find_one({"_id": to_object_id(goal_id, "goal ID")})
        return doc_to_goal(doc) if doc else None

    async def link_partners(self, challenge: dict, goal_id: str, role: str, session=None) -> Optional[str]:
        """
        Link a freshly redeemed goal to its partner, if the partner exists.

        Runs inside the redemption transaction. Callers run ``reconcile_goal``
        for the partner once it commits.

        Args:
            challenge: Challenge document as returned by the redeem update
            goal_id: Goal just created for ``role``
            role: ``purchaser`` or ``partner``
            session: Optional client session

        Returns:
            The partner goal ID when linked, otherwise None
        """
        other_role = "partner" if role == "purchaser" else "purchaser"
        partner_goal_id = challenge.get(f"{other_role}_goal_id")
        if not partner_goal_id:
            return None

        now = self.clock.now()
        await self.goals.update_one(
            {"_id": to_object_id(goal_id, "goal ID")},
            {"$set": {"partner_goal_id": partner_goal_id, "updated_at": now}},
            session=session,
        )
        await self.goals.update_one(
            {"_id": to_object_id(partner_goal_id, "goal ID")},
            {"$set": {"partner_goal_id": goal_id, "updated_at": now}},
            session=session,
        )
        await self.challenges.update_one(
            {"_id": challenge["_id"], "status": ChallengeStatus.PENDING_REDEMPTION.value},
            {"$set": {"status": ChallengeStatus.ACTIVE.value, "updated_at": now}},
            session=session,
        )
        logger.info("Linked goals %s and %s for challenge %s", goal_id, partner_goal_id, challenge["_id"])
        return partner_goal_id

    async def reconcile_goal(self, goal_id: str) -> bool:
        """Load ``goal_id`` and run the unlock reconciliation for it."""
        goal = await self._get_goal(goal_id)
        if goal is None:
            return False
        return await self.reconcile_unlock(goal)

    async def reconcile_unlock(self, goal: Goal) -> bool:
        """
        Unlock both goals once both sides have finished.

        Each side marks itself finished before calling this, so when two
        partners finish together at least one of them sees the other.
        Setting the unlock flags is idempotent. The challenge status moves
        to completed exactly once and only that caller sends notifications.

        Args:
            goal: Goal that may just have finished

        Returns:
            True if the pair is unlocked
        """
        if not goal.is_paired or not goal.is_finished:
            return False
        if goal.is_unlocked:
            return True
        if not goal.partner_goal_id:
            return False

        partner = await self._get_goal(goal.partner_goal_id)
        if partner is None or not partner.is_finished:
            return False

        now = self.clock.now()
        pair_ids = [to_object_id(goal.id, "goal ID"), to_object_id(partner.id, "goal ID")]
        await self.goals.update_many(
            {"_id": {"$in": pair_ids}, "is_unlocked": False},
            {"$set": {"is_unlocked": True, "unlocked_at": now, "updated_at": now}},
        )

        completed = await self.challenges.find_one_and_update(
            {
                "_id": to_object_id(goal.kind.challenge_id, "challenge ID"),
                "status": {"$ne": ChallengeStatus.COMPLETED.value},
            },
            {"$set": {"status": ChallengeStatus.COMPLETED.value, "completed_at": now, "updated_at": now}},
        )
        if completed is not None:
            logger.info("Challenge %s unlocked by goal %s", goal.kind.challenge_id, goal.id)
            payload = {"challenge_id": goal.kind.challenge_id, "unlocked_at": now.isoformat()}
            self.events.publish(goal.id, GoalEvent.UNLOCKED, payload)
            self.events.publish(partner.id, GoalEvent.UNLOCKED, payload)
            await self._notify_unlock(goal, partner)
        return True

    async def _notify_unlock(self, goal: Goal, partner: Goal) -> None:
        if partner.user_id == goal.user_id:
            return
        name = await self.users.get_display_name(goal.user_id, default="Your partner")
        await self.notifications.send(
            user_id=partner.user_id,
            type="valentine_completion",
            title="🎉 Partner Finished!",
            message=f"{name} finished their challenge. You both unlocked your experience!",
            data={
                "goal_id": partner.id,
                "partner_goal_id": goal.id,
                "valentine_challenge_id": goal.kind.challenge_id,
            },
        )

    async def notify_partner_progress(self, goal: Goal) -> bool:
        """
        Tell the partner about a session just logged on ``goal``.

        Returns:
            True if a notification was queued
        """
        if not goal.is_paired or not goal.partner_goal_id:
            return False

        partner = await self._get_goal(goal.partner_goal_id)
        if partner is None or partner.user_id == goal.user_id:
            return False

        self.events.publish(partner.id, GoalEvent.PARTNER_UPDATED, {"partner_goal_id": goal.id})

        name = await self.users.get_display_name(goal.user_id, default="Your partner")
        milestone = partner_milestone(goal, partner, name, self.clock.now())
        if milestone is None:
            return False

        return await self.notifications.send(
            user_id=partner.user_id,
            type=milestone.type,
            title=milestone.title,
            message=milestone.message,
            data=milestone.data,
        )

    async def pairing_status(self, user_id: str, goal_id: str) -> PairingStatus:
        """
        Describe both sides of the challenge from ``goal_id``'s point of view.

        Runs the unlock reconciliation first so a reader repairs an unlock
        that a crashed writer left behind.

        Raises:
            NotFoundError: If the goal does not exist
            ForbiddenError: If the user does not own the goal
            ValueError: If the goal is not part of a challenge
        """
        goal = await self._get_goal(goal_id)
        if goal is None:
            raise NotFoundError("Goal not found")
        if goal.user_id != user_id:
            raise ForbiddenError("Not the goal owner")
        if not goal.is_paired:
            raise ValueError("Goal is not part of a Valentine challenge")

        unlocked = await self.reconcile_unlock(goal)
        partner = await self._get_goal(goal.partner_goal_id) if goal.partner_goal_id else None
        now = self.clock.now()

        return PairingStatus(
            goal_id=goal.id,
            challenge_id=goal.kind.challenge_id,
            partner_goal_id=goal.partner_goal_id,
            waiting_for_partner_redeem=partner is None,
            waiting_for_partner_finish=goal.is_finished and not unlocked,
            unlocked=unlocked,
            partner_progress=progress_snapshot(partner, now) if partner else None,
        )
