"""Service-layer exceptions.

Services raise these and routers translate them to HTTP responses.
Validation problems are plain ``ValueError``.
"""
from enum import Enum


class FailureReason(str, Enum):
    """Specific reason a state-changing request was refused."""

    NOT_RUNNING = "not_running"
    ALREADY_RUNNING = "already_running"
    TOO_SHORT = "too_short"
    TOO_FAST = "too_fast"
    NOT_APPROVED = "not_approved"
    ALREADY_LOGGED_TODAY = "already_logged_today"
    WEEK_COMPLETED = "week_completed"
    GOAL_COMPLETED = "goal_completed"
    ALREADY_REDEEMED = "already_redeemed"
    DUPLICATE_PARTNER_REDEMPTION = "duplicate_partner_redemption"
    APPROVAL_CLOSED = "approval_closed"
    CONCURRENT_UPDATE = "concurrent_update"


FAILURE_MESSAGES = {
    FailureReason.NOT_RUNNING: "No session is running for this goal",
    FailureReason.ALREADY_RUNNING: "A session is already running for this goal",
    FailureReason.TOO_SHORT: "Session is too short to count",
    FailureReason.TOO_FAST: "Please wait before logging another session",
    FailureReason.NOT_APPROVED: "Waiting for the giver to approve this goal",
    FailureReason.ALREADY_LOGGED_TODAY: "A session was already logged today",
    FailureReason.WEEK_COMPLETED: "This week's sessions are done, the next week has not started",
    FailureReason.GOAL_COMPLETED: "Goal is already completed",
    FailureReason.ALREADY_REDEEMED: "This code has already been redeemed",
    FailureReason.DUPLICATE_PARTNER_REDEMPTION: "You have already joined this challenge",
    FailureReason.APPROVAL_CLOSED: "The giver has already responded to this goal",
    FailureReason.CONCURRENT_UPDATE: "Goal was updated concurrently, please retry",
}


class StateConflictError(ValueError):
    """Request conflicts with the current state of a goal, code or challenge."""

    def __init__(self, reason: FailureReason, message: str | None = None):
        self.reason = reason
        self.message = message or FAILURE_MESSAGES[reason]
        super().__init__(self.message)


class NotFoundError(ValueError):
    """Requested document does not exist."""


class ForbiddenError(PermissionError):
    """Authenticated user may not act on the requested document."""


class CodeGenerationError(RuntimeError):
    """No unique code could be produced within the attempt limit."""


class WebhookSignatureError(ValueError):
    """Webhook payload failed signature verification."""


class HintGenerationError(Exception):
    """External hint generation failed or returned nothing usable."""
