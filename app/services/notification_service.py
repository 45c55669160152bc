"""Notification service - fire-and-forget notification documents.

Documents written here are picked up by a separate delivery pipeline.
Every send is best-effort: failures are logged and reported as False.
"""
import logging
from typing import Any, Optional

from app.utils.clock import clock as default_clock

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for queueing user notifications."""

    def __init__(self, db, clock=None):
        """Initialize service with database connection."""
        self.db = db
        self.notifications = db["notifications"]
        self.clock = clock or default_clock

    async def send(
        self,
        user_id: Optional[str],
        type: str,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        channel: str = "push",
        recipient_email: Optional[str] = None,
    ) -> bool:
        """
        Queue a notification.

        Args:
            user_id: Recipient user ID (None for email-only recipients)
            type: Notification type, e.g. ``valentine_milestone``
            title: Short title
            message: Body text
            data: Extra routing data for the client
            channel: ``push`` or ``email``
            recipient_email: Address for the email channel

        Returns:
            True if the notification was queued
        """
        if not user_id and not recipient_email:
            logger.warning("Notification %s has no recipient, skipping", type)
            return False

        now = self.clock.now()
        doc = {
            "user_id": user_id,
            "recipient_email": recipient_email,
            "channel": channel,
            "type": type,
            "title": title,
            "message": message,
            "data": data or {},
            "read": False,
            "created_at": now,
        }

        try:
            await self.notifications.insert_one(doc)
        except Exception:
            logger.warning("Failed to queue %s notification", type, exc_info=True)
            return False

        logger.debug("Queued %s notification for %s", type, user_id or recipient_email)
        return True
