"""Goal model definitions."""
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class ApprovalStatus(str, Enum):
    """Giver approval state of a goal."""

    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    SUGGESTED_CHANGE = "suggested_change"


class HintType(str, Enum):
    """Media kind of a giver-authored hint."""

    TEXT = "text"
    AUDIO = "audio"
    MIXED = "mixed"
    IMAGE = "image"


class SelfGoal(BaseModel):
    """Goal the recipient bought or set for themselves."""

    kind: Literal["self"] = "self"


class EmpoweredGoal(BaseModel):
    """Goal backed by a gift from another user."""

    kind: Literal["empowered"] = "empowered"
    giver_id: str


class PairedGoal(BaseModel):
    """One side of a Valentine challenge."""

    kind: Literal["paired"] = "paired"
    challenge_id: str
    partner_goal_id: Optional[str] = None


GoalKind = Annotated[Union[SelfGoal, EmpoweredGoal, PairedGoal], Field(discriminator="kind")]


class PersonalizedHint(BaseModel):
    """Giver-authored hint waiting for a specific session."""

    text: str = ""
    type: HintType = HintType.TEXT
    audio_url: Optional[str] = None
    image_url: Optional[str] = None
    duration_seconds: Optional[int] = None
    giver_name: str = ""
    for_session_number: int
    created_at: datetime


class PersonalizedHintCreate(BaseModel):
    """Request model for authoring a personalized hint."""

    text: str = Field(default="", max_length=500)
    type: HintType = HintType.TEXT
    audio_url: Optional[str] = None
    image_url: Optional[str] = None
    duration_seconds: Optional[int] = None
    for_session_number: Optional[int] = None


class HintRecord(BaseModel):
    """Entry in a goal's permanent hint history."""

    session: int
    hint: str
    type: Optional[HintType] = None
    giver_name: Optional[str] = None
    created_at: datetime


class GoalSetup(BaseModel):
    """Recipient's choices when turning a code into a goal."""

    title: str = ""
    description: str = ""
    target_count: Optional[int] = None
    sessions_per_week: Optional[int] = None
    target_hours: int = 0
    target_minutes: int = 30


class GoalChangeSuggestion(BaseModel):
    """Giver's proposed cadence change."""

    target_count: int
    sessions_per_week: int
    message: str = ""


class SuggestionResponse(BaseModel):
    """Recipient's counter-offer to a suggested change."""

    target_count: int
    sessions_per_week: int
    message: str = ""


class ApprovalRequest(BaseModel):
    """Giver approval payload."""

    message: str = ""


class Goal(BaseModel):
    """Full goal model with database fields."""

    id: str = Field(alias="_id", serialization_alias="id")
    user_id: str
    kind: GoalKind = Field(default_factory=SelfGoal)
    title: str = ""
    description: str = ""
    experience_id: Optional[str] = None
    experience_gift_id: Optional[str] = None

    target_count: int
    sessions_per_week: int
    target_hours: int = 0
    target_minutes: int = 0
    initial_target_count: Optional[int] = None
    initial_sessions_per_week: Optional[int] = None

    current_count: int = 0
    weekly_count: int = 0
    weekly_log_dates: list[str] = Field(default_factory=list)
    week_start_at: Optional[datetime] = None
    is_week_completed: bool = False
    is_completed: bool = False

    approval_status: ApprovalStatus = ApprovalStatus.NONE
    approval_requested_at: Optional[datetime] = None
    approval_deadline: Optional[datetime] = None
    suggested_target_count: Optional[int] = None
    suggested_sessions_per_week: Optional[int] = None
    giver_message: Optional[str] = None
    receiver_message: Optional[str] = None
    giver_action_taken: bool = False

    personalized_next_hint: Optional[PersonalizedHint] = None
    hints: list[HintRecord] = Field(default_factory=list)

    is_revealed: bool = True
    is_finished: bool = False
    is_unlocked: bool = False
    unlocked_at: Optional[datetime] = None

    active_session_started_at: Optional[datetime] = None
    last_session_at: Optional[datetime] = None
    version: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = {"populate_by_name": True}

    @property
    def giver_id(self) -> Optional[str]:
        return self.kind.giver_id if isinstance(self.kind, EmpoweredGoal) else None

    @property
    def partner_goal_id(self) -> Optional[str]:
        return self.kind.partner_goal_id if isinstance(self.kind, PairedGoal) else None

    @property
    def is_paired(self) -> bool:
        return isinstance(self.kind, PairedGoal)


def goal_kind_from_doc(doc: dict):
    """Build the tagged goal variant from the flat stored fields."""
    if doc.get("valentine_challenge_id"):
        return PairedGoal(
            challenge_id=str(doc["valentine_challenge_id"]),
            partner_goal_id=doc.get("partner_goal_id"),
        )
    if doc.get("empowered_by") and doc["empowered_by"] != doc.get("user_id"):
        return EmpoweredGoal(giver_id=doc["empowered_by"])
    return SelfGoal()


def doc_to_goal(doc: dict) -> Goal:
    """
    Convert database document to Goal model.
    """
    data = {key: value for key, value in doc.items() if key != "_id"}
    data["kind"] = goal_kind_from_doc(doc)
    return Goal(_id=str(doc["_id"]), **data)
