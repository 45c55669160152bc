"""Experience gift and challenge model definitions."""
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class GiftStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"


class ValentineMode(str, Enum):
    REVEALED = "revealed"
    SECRET = "secret"


class ChallengeStatus(str, Enum):
    PENDING_REDEMPTION = "pending_redemption"
    ACTIVE = "active"
    COMPLETED = "completed"


class CartItem(BaseModel):
    """One line of a purchase cart."""

    experience_id: str = Field(alias="experienceId")
    quantity: int = Field(default=1, gt=0)

    model_config = {"populate_by_name": True}


class ExperienceGift(BaseModel):
    """Single-recipient reward unit."""

    id: str = Field(alias="_id", serialization_alias="id")
    giver_id: str
    giver_name: str = ""
    experience_id: str
    personalized_message: str = ""
    partner_id: Optional[str] = None
    status: GiftStatus = GiftStatus.PENDING
    payment: str = "paid"
    payment_intent_id: str
    claim_code: str
    recipient_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = {"populate_by_name": True}


class ValentineChallenge(BaseModel):
    """Paired reward unit shared by two partners."""

    id: str = Field(alias="_id", serialization_alias="id")
    purchaser_email: str
    purchaser_user_id: Optional[str] = None
    experience_id: str
    experience_price: float = 0
    mode: ValentineMode
    goal_type: str = ""
    weeks: int
    sessions_per_week: int
    payment_intent_id: str
    total_amount: float = 0
    purchaser_code: str
    partner_code: str
    purchaser_code_redeemed: bool = False
    partner_code_redeemed: bool = False
    purchaser_goal_id: Optional[str] = None
    partner_goal_id: Optional[str] = None
    status: ChallengeStatus = ChallengeStatus.PENDING_REDEMPTION
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"populate_by_name": True}


class PaymentResult(BaseModel):
    """Records produced for one payment intent."""

    payment_intent_id: str
    kind: Literal["gifts", "valentine_challenge"]
    gift_ids: list[str] = Field(default_factory=list)
    challenge_id: Optional[str] = None


def doc_to_gift(doc: dict) -> ExperienceGift:
    data = {key: value for key, value in doc.items() if key != "_id"}
    return ExperienceGift(_id=str(doc["_id"]), **data)


def doc_to_challenge(doc: dict) -> ValentineChallenge:
    data = {key: value for key, value in doc.items() if key != "_id"}
    return ValentineChallenge(_id=str(doc["_id"]), **data)
