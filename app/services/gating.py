"""Approval and cadence gating shared by session start and finish."""
from datetime import datetime
from enum import Enum
from typing import Optional

from app.exceptions import FailureReason
from app.models.goal import ApprovalStatus, Goal

LOCKED_STATUSES = {ApprovalStatus.PENDING, ApprovalStatus.SUGGESTED_CHANGE}


class SessionAction(str, Enum):
    START = "start"
    FINISH = "finish"


def total_sessions_done(goal: Goal) -> int:
    """Sessions counted so far across completed weeks and the current week."""
    return goal.current_count * goal.sessions_per_week + goal.weekly_count


def is_approval_locked(goal: Goal) -> bool:
    return goal.approval_status in LOCKED_STATUSES


def is_single_session_goal(goal: Goal) -> bool:
    return goal.target_count == 1 and goal.sessions_per_week == 1


def can_act_on_goal(goal: Goal, action: SessionAction, now: datetime) -> Optional[FailureReason]:
    """
    Decide whether a session may be started or finished.

    While the giver has not approved, the recipient may still log their
    very first session. A 1 week x 1 session goal has nothing beyond that
    first session, so it stays blocked until approved.

    Args:
        goal: Goal with week sweep already applied
        action: Start or finish, both are gated identically
        now: Current time

    Returns:
        None if allowed, otherwise the reason it is refused
    """
    if goal.is_completed:
        return FailureReason.GOAL_COMPLETED

    if goal.is_week_completed and goal.week_start_at is not None and now < goal.week_start_at:
        return FailureReason.WEEK_COMPLETED

    if is_approval_locked(goal):
        if is_single_session_goal(goal):
            return FailureReason.NOT_APPROVED
        if total_sessions_done(goal) >= 1:
            return FailureReason.NOT_APPROVED

    return None
