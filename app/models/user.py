"""User model definitions."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class User(BaseModel):
    """Profile fields the challenge flows read from the users collection."""

    id: str = Field(alias="_id", serialization_alias="id")
    name: str = ""
    email: Optional[EmailStr] = None
    profile_image_url: Optional[str] = None
    push_tokens: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    model_config = {"populate_by_name": True}

    @property
    def display_name(self) -> str:
        return self.name or "Someone"
