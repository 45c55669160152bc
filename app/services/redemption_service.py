"""Redemption service - turn claim codes into goals."""
import logging

from bson import ObjectId

from app.database import run_in_transaction
from app.exceptions import FailureReason, StateConflictError
from app.models.gift import GiftStatus, ValentineMode, doc_to_challenge, doc_to_gift
from app.models.goal import Goal, GoalSetup, doc_to_goal
from app.models.redemption import GiftCodeMatch, InvalidCode, challenge_match
from app.services.goal_service import new_goal_doc
from app.services.notification_service import NotificationService
from app.services.pairing_service import PairingService
from app.services.user_service import UserService
from app.utils.claim_code import normalize_code
from app.utils.clock import clock as default_clock

logger = logging.getLogger(__name__)


class RedemptionService:
    """Service for claim code lookup and redemption."""

    def __init__(self, db, clock=None, notifications=None, pairing=None):
        """Initialize service with database connection."""
        self.db = db
        self.goals = db["goals"]
        self.gifts = db["experience_gifts"]
        self.challenges = db["valentine_challenges"]
        self.clock = clock or default_clock
        self.notifications = notifications or NotificationService(db, clock=self.clock)
        self.pairing = pairing or PairingService(db, clock=self.clock, notifications=self.notifications)
        self.users = UserService(db)

    async def lookup_code(self, user_id: str, raw_code: str):
        """
        Classify a user-entered code.

        Valentine purchaser codes are checked first, then partner codes,
        then pending gifts.

        Args:
            user_id: User entering the code
            raw_code: Code as typed

        Returns:
            GiftCodeMatch, ValentineCodeMatch or InvalidCode

        Raises:
            ValueError: If the code is malformed
        """
        code = normalize_code(raw_code)

        for role in ("purchaser", "partner"):
            challenge_doc = await self.challenges.find_one({f"{role}_code": code})
            if not challenge_doc:
                continue
            if challenge_doc.get(f"{role}_code_redeemed"):
                return InvalidCode(code=code, reason="already_redeemed")
            existing = await self.goals.find_one(
                {"user_id": user_id, "valentine_challenge_id": str(challenge_doc["_id"])}
            )
            if existing:
                return InvalidCode(code=code, reason="already_joined")
            return challenge_match(code, doc_to_challenge(challenge_doc), role)

        gift_doc = await self.gifts.find_one({"claim_code": code})
        if not gift_doc:
            return InvalidCode(code=code, reason="not_found")
        if gift_doc.get("status") != GiftStatus.PENDING.value:
            return InvalidCode(code=code, reason="already_redeemed")
        if gift_doc["expires_at"] <= self.clock.now():
            return InvalidCode(code=code, reason="expired")
        return GiftCodeMatch(code=code, gift=doc_to_gift(gift_doc))

    async def redeem_gift(self, user_id: str, raw_code: str, setup: GoalSetup) -> Goal:
        """
        Claim a gift code and create the recipient's goal.

        The gift is claimed and the goal inserted in one transaction.

        Raises:
            ValueError: If the code or setup is invalid, or the gift expired
            StateConflictError: If the gift was already claimed
        """
        code = normalize_code(raw_code)
        now = self.clock.now()

        gift_doc = await self.gifts.find_one({"claim_code": code})
        if not gift_doc:
            raise ValueError("Invalid or already claimed code")
        if gift_doc["expires_at"] <= now:
            raise ValueError("This gift has expired")

        giver_id = gift_doc["giver_id"]
        goal_doc = new_goal_doc(
            user_id,
            setup,
            now,
            experience_id=gift_doc["experience_id"],
            empowered_by=giver_id,
            experience_gift_id=str(gift_doc["_id"]),
        )
        goal_doc["_id"] = ObjectId()

        async def claim(session):
            claimed = await self.gifts.find_one_and_update(
                {"_id": gift_doc["_id"], "status": GiftStatus.PENDING.value},
                {
                    "$set": {
                        "status": GiftStatus.CLAIMED.value,
                        "recipient_id": user_id,
                        "claimed_at": now,
                        "updated_at": now,
                    }
                },
                session=session,
            )
            if claimed is None:
                raise StateConflictError(FailureReason.ALREADY_REDEEMED)
            await self.goals.insert_one(goal_doc, session=session)

        await run_in_transaction(self.db, claim)
        goal = doc_to_goal(goal_doc)
        logger.info("Gift %s redeemed as goal %s", gift_doc["_id"], goal.id)

        if giver_id != user_id:
            name = await self.users.get_display_name(user_id)
            await self.notifications.send(
                user_id=giver_id,
                type="goal_approval_request",
                title=f"{name} set a goal for your gift",
                message=(
                    f"{name} plans {goal.target_count} weeks x {goal.sessions_per_week} sessions. "
                    "Approve it or suggest a change."
                ),
                data={"goal_id": goal.id},
            )
        return goal

    async def redeem_valentine(self, user_id: str, raw_code: str, setup: GoalSetup) -> Goal:
        """
        Redeem one side of a Valentine challenge.

        The cadence defaults to the one chosen at purchase. When the other
        side has already redeemed, the two goals are linked and the unlock
        check runs for the other side once the link is committed.

        Raises:
            ValueError: If the code or setup is invalid
            StateConflictError: If the code was already redeemed or the user
                already holds a goal in this challenge
        """
        code = normalize_code(raw_code)
        now = self.clock.now()

        role = None
        challenge_doc = None
        for candidate in ("purchaser", "partner"):
            challenge_doc = await self.challenges.find_one({f"{candidate}_code": code})
            if challenge_doc:
                role = candidate
                break
        if challenge_doc is None:
            raise ValueError("Invalid or already claimed code")

        challenge_id = str(challenge_doc["_id"])
        if setup.target_count is None:
            setup = setup.model_copy(update={"target_count": challenge_doc["weeks"]})
        if setup.sessions_per_week is None:
            setup = setup.model_copy(update={"sessions_per_week": challenge_doc["sessions_per_week"]})

        goal_doc = new_goal_doc(
            user_id,
            setup,
            now,
            experience_id=challenge_doc["experience_id"],
            valentine_challenge_id=challenge_id,
            is_revealed=challenge_doc.get("mode") == ValentineMode.REVEALED.value,
        )
        goal_doc["_id"] = ObjectId()
        goal_id = str(goal_doc["_id"])

        async def redeem(session):
            existing = await self.goals.find_one(
                {"user_id": user_id, "valentine_challenge_id": challenge_id}, session=session
            )
            if existing:
                raise StateConflictError(FailureReason.DUPLICATE_PARTNER_REDEMPTION)

            claimed = await self.challenges.find_one_and_update(
                {"_id": challenge_doc["_id"], f"{role}_code_redeemed": False},
                {
                    "$set": {
                        f"{role}_code_redeemed": True,
                        f"{role}_goal_id": goal_id,
                        "updated_at": now,
                    }
                },
                return_document=True,
                session=session,
            )
            if claimed is None:
                raise StateConflictError(FailureReason.ALREADY_REDEEMED)

            other_role = "partner" if role == "purchaser" else "purchaser"
            other_goal_id = claimed.get(f"{other_role}_goal_id")
            if other_goal_id:
                other = await self.goals.find_one(
                    {"_id": ObjectId(other_goal_id), "user_id": user_id}, session=session
                )
                if other:
                    raise StateConflictError(FailureReason.DUPLICATE_PARTNER_REDEMPTION)

            await self.goals.insert_one(goal_doc, session=session)
            partner_goal_id = await self.pairing.link_partners(claimed, goal_id, role, session=session)
            if partner_goal_id:
                goal_doc["partner_goal_id"] = partner_goal_id

        await run_in_transaction(self.db, redeem)
        logger.info("Valentine %s code redeemed for challenge %s", role, challenge_id)

        partner_goal_id = goal_doc.get("partner_goal_id")
        if partner_goal_id:
            try:
                await self.pairing.reconcile_goal(partner_goal_id)
            except Exception:
                logger.warning("Unlock check failed for goal %s", partner_goal_id, exc_info=True)
        return doc_to_goal(goal_doc)
