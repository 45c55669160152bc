"""Session and hint response model definitions."""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel

from app.models.goal import Goal, HintType


class HintView(BaseModel):
    """Hint shown to the recipient after a session."""

    session_number: int
    text: str
    source: Literal["personalized", "generated", "fallback"]
    type: HintType = HintType.TEXT
    giver_name: Optional[str] = None
    audio_url: Optional[str] = None
    image_url: Optional[str] = None
    duration_seconds: Optional[int] = None


class SessionResult(BaseModel):
    """Outcome of a committed session."""

    goal: Goal
    hint: Optional[HintView] = None
    unlocked: bool = False
    waiting_for_partner: bool = False


class SessionState(BaseModel):
    """Running-session view of a goal."""

    goal_id: str
    running: bool
    started_at: Optional[datetime] = None
    elapsed_seconds: int = 0
    pending_hint: Optional[str] = None


class ProgressSnapshot(BaseModel):
    """Derived progress figures for display."""

    goal_id: str
    total_sessions_done: int
    total_sessions: int
    overall_percent: int
    weekly_percent: int
    waiting_for_next_week: bool
    next_week_starts_at: Optional[datetime] = None
    is_completed: bool


class PairingStatus(BaseModel):
    """Both sides of a Valentine challenge as seen from one goal."""

    goal_id: str
    challenge_id: str
    partner_goal_id: Optional[str] = None
    waiting_for_partner_redeem: bool
    waiting_for_partner_finish: bool
    unlocked: bool
    partner_progress: Optional[ProgressSnapshot] = None
