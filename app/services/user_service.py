"""User service - read access to externally owned user profiles."""
from typing import Optional

from app.exceptions import NotFoundError
from app.models.user import User
from app.utils.ids import flexible_id_filter


class UserService:
    """Service for looking up user profiles."""

    def __init__(self, db):
        """Initialize service with database connection."""
        self.db = db
        self.users = db["users"]

    async def find_user(self, user_id: str) -> Optional[User]:
        """Return the profile for ``user_id`` or None."""
        user_doc = await self.users.find_one(flexible_id_filter(user_id))
        if not user_doc:
            return None

        return User(
            _id=str(user_doc["_id"]),
            name=user_doc.get("name") or user_doc.get("display_name") or "",
            email=user_doc.get("email"),
            profile_image_url=user_doc.get("profile_image_url"),
            push_tokens=user_doc.get("push_tokens", []),
            created_at=user_doc.get("created_at"),
        )

    async def get_user_by_id(self, user_id: str) -> User:
        """
        Get user by ID.

        Args:
            user_id: User ID

        Returns:
            User object

        Raises:
            NotFoundError: If user not found
        """
        user = await self.find_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def get_display_name(self, user_id: Optional[str], default: str = "Someone") -> str:
        """Display name for notification copy, falling back to ``default``."""
        if not user_id:
            return default
        user = await self.find_user(user_id)
        if user is None or not user.name:
            return default
        return user.name
