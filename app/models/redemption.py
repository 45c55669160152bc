"""Claim code redemption model definitions."""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from app.models.gift import ExperienceGift, ValentineChallenge


class CodeLookupRequest(BaseModel):
    code: str


class GiftCodeMatch(BaseModel):
    """Code belongs to a pending single-recipient gift."""

    kind: Literal["gift"] = "gift"
    code: str
    gift: ExperienceGift


class ValentineCodeMatch(BaseModel):
    """Code belongs to one side of a Valentine challenge."""

    kind: Literal["valentine_purchaser", "valentine_partner"]
    code: str
    challenge_id: str
    experience_id: str
    weeks: int
    sessions_per_week: int
    mode: str

    @property
    def role(self) -> str:
        return "purchaser" if self.kind == "valentine_purchaser" else "partner"


class InvalidCode(BaseModel):
    """Code matched nothing redeemable."""

    kind: Literal["invalid"] = "invalid"
    code: str
    reason: Literal["not_found", "already_redeemed", "already_joined", "expired"]


CodeLookup = Annotated[
    Union[GiftCodeMatch, ValentineCodeMatch, InvalidCode], Field(discriminator="kind")
]


def challenge_match(code: str, challenge: ValentineChallenge, role: str) -> ValentineCodeMatch:
    return ValentineCodeMatch(
        kind=f"valentine_{role}",
        code=code,
        challenge_id=challenge.id,
        experience_id=challenge.experience_id,
        weeks=challenge.weeks,
        sessions_per_week=challenge.sessions_per_week,
        mode=challenge.mode.value,
    )
