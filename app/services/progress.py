"""Pure progress rules for a single goal.

Functions here take a ``Goal`` and a timestamp and return the fields that
change, as a dict ready for a ``$set``. Nothing here touches the database.
"""
from datetime import datetime, timedelta

from app.models.goal import Goal
from app.models.session import ProgressSnapshot
from app.services.gating import total_sessions_done
from app.utils.clock import day_key

WEEK = timedelta(days=7)


def apply_changes(goal: Goal, changes: dict) -> Goal:
    """Return a copy of ``goal`` with ``changes`` applied."""
    if not changes:
        return goal
    return goal.model_copy(update=changes)


def sweep_week(goal: Goal, now: datetime) -> dict:
    """
    Bring the weekly window up to date with ``now``.

    A completed week re-opens once its next window starts. A window that
    ran out before the quota was met is dropped: the anchor moves forward
    in whole weeks and the weekly progress resets. Missed weeks never
    count toward ``current_count``.

    Args:
        goal: Goal as stored
        now: Current time

    Returns:
        Changed fields, empty if nothing moved
    """
    anchor = goal.week_start_at
    if goal.is_completed or anchor is None:
        return {}

    changes = {}
    if goal.is_week_completed:
        if now < anchor:
            return {}
        changes["is_week_completed"] = False

    if now >= anchor + WEEK:
        while now >= anchor + WEEK:
            anchor += WEEK
        changes.update(week_start_at=anchor, weekly_count=0, weekly_log_dates=[])

    return changes


def record_session(goal: Goal, now: datetime) -> dict:
    """
    Count one finished session.

    Args:
        goal: Goal with week sweep already applied
        now: Time the session finished

    Returns:
        Changed counter fields
    """
    anchor = goal.week_start_at or now
    today = day_key(now)

    log_dates = list(goal.weekly_log_dates)
    if today not in log_dates:
        log_dates.append(today)

    weekly_count = min(goal.weekly_count + 1, goal.sessions_per_week)
    changes = {
        "weekly_count": weekly_count,
        "weekly_log_dates": log_dates,
        "week_start_at": anchor,
        "is_week_completed": False,
    }

    if weekly_count >= goal.sessions_per_week:
        current_count = min(goal.current_count + 1, goal.target_count)
        changes.update(
            is_week_completed=True,
            current_count=current_count,
            weekly_count=0,
            week_start_at=anchor + WEEK,
            weekly_log_dates=[],
        )
        if current_count >= goal.target_count:
            changes["is_completed"] = True
            if goal.is_paired:
                changes["is_finished"] = True

    return changes


def is_final_session(goal: Goal) -> bool:
    """True when the next counted session would complete the goal."""
    return total_sessions_done(goal) + 1 >= goal.target_count * goal.sessions_per_week


def progress_snapshot(goal: Goal, now: datetime) -> ProgressSnapshot:
    """Derived progress figures for display."""
    goal = apply_changes(goal, sweep_week(goal, now))

    done = total_sessions_done(goal)
    total = goal.target_count * goal.sessions_per_week
    waiting = goal.is_week_completed and not goal.is_completed

    if goal.is_completed or waiting:
        weekly_percent = 100
    else:
        weekly_percent = round(goal.weekly_count / goal.sessions_per_week * 100)

    return ProgressSnapshot(
        goal_id=goal.id,
        total_sessions_done=done,
        total_sessions=total,
        overall_percent=round(done / total * 100) if total else 0,
        weekly_percent=weekly_percent,
        waiting_for_next_week=waiting,
        next_week_starts_at=goal.week_start_at if waiting else None,
        is_completed=goal.is_completed,
    )
