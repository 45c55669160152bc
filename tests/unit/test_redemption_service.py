"""Tests for RedemptionService."""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId

from app.exceptions import FailureReason, StateConflictError
from app.models.goal import ApprovalStatus, EmpoweredGoal, GoalSetup, PairedGoal
from app.models.redemption import GiftCodeMatch, InvalidCode, ValentineCodeMatch
from app.services.redemption_service import RedemptionService
from tests.conftest import START

GIFT_CODE = "GIFTCODE2345"
PURCHASER_CODE = "PURCHASER234"
PARTNER_CODE = "PARTNERCODE2"

SETUP = GoalSetup(title="Swim weekly", target_count=2, sessions_per_week=2)


@pytest.fixture
def redemptions(fake_db, clock):
    return RedemptionService(fake_db, clock=clock)


async def insert_gift(db, **overrides):
    doc = {
        "_id": ObjectId(),
        "giver_id": "giver1",
        "giver_name": "Gina",
        "experience_id": "exp1",
        "status": "pending",
        "payment_intent_id": "pi_1",
        "claim_code": GIFT_CODE,
        "expires_at": START + timedelta(days=365),
        "created_at": START,
        "updated_at": START,
    }
    doc.update(overrides)
    await db["experience_gifts"].insert_one(doc)
    return doc


async def insert_challenge(db, **overrides):
    doc = {
        "_id": ObjectId(),
        "purchaser_email": "pat@example.com",
        "experience_id": "exp9",
        "mode": "secret",
        "weeks": 3,
        "sessions_per_week": 2,
        "payment_intent_id": "pi_2",
        "purchaser_code": PURCHASER_CODE,
        "partner_code": PARTNER_CODE,
        "purchaser_code_redeemed": False,
        "partner_code_redeemed": False,
        "purchaser_goal_id": None,
        "partner_goal_id": None,
        "status": "pending_redemption",
        "created_at": START,
        "updated_at": START,
    }
    doc.update(overrides)
    await db["valentine_challenges"].insert_one(doc)
    return doc


@pytest.mark.asyncio
class TestLookupCode:
    """Tests for lookup_code."""

    async def test_gift_code(self, redemptions, fake_db):
        await insert_gift(fake_db)

        match = await redemptions.lookup_code("user123", GIFT_CODE.lower())

        assert isinstance(match, GiftCodeMatch)
        assert match.gift.giver_id == "giver1"

    async def test_valentine_codes(self, redemptions, fake_db):
        challenge = await insert_challenge(fake_db)

        purchaser = await redemptions.lookup_code("user123", PURCHASER_CODE)
        partner = await redemptions.lookup_code("user123", PARTNER_CODE)

        assert isinstance(purchaser, ValentineCodeMatch)
        assert purchaser.role == "purchaser"
        assert partner.role == "partner"
        assert partner.challenge_id == str(challenge["_id"])
        assert partner.weeks == 3

    async def test_unknown_code(self, redemptions):
        match = await redemptions.lookup_code("user123", "ZZZZZZZZZZZZ")

        assert isinstance(match, InvalidCode)
        assert match.reason == "not_found"

    async def test_claimed_gift(self, redemptions, fake_db):
        await insert_gift(fake_db, status="claimed")

        match = await redemptions.lookup_code("user123", GIFT_CODE)

        assert match.reason == "already_redeemed"

    async def test_expired_gift(self, redemptions, fake_db):
        await insert_gift(fake_db, expires_at=START - timedelta(days=1))

        match = await redemptions.lookup_code("user123", GIFT_CODE)

        assert match.reason == "expired"

    async def test_already_joined(self, redemptions, fake_db):
        await insert_challenge(fake_db)
        await redemptions.redeem_valentine("user123", PURCHASER_CODE, GoalSetup())

        match = await redemptions.lookup_code("user123", PARTNER_CODE)

        assert match.reason == "already_joined"

    async def test_malformed_code(self, redemptions):
        with pytest.raises(ValueError, match="12 letters or digits"):
            await redemptions.lookup_code("user123", "short")


@pytest.mark.asyncio
class TestRedeemGift:
    """Tests for redeem_gift."""

    async def test_creates_pending_goal_and_notifies_giver(self, redemptions, fake_db):
        gift = await insert_gift(fake_db)

        goal = await redemptions.redeem_gift("user123", GIFT_CODE, SETUP)

        assert isinstance(goal.kind, EmpoweredGoal)
        assert goal.giver_id == "giver1"
        assert goal.approval_status == ApprovalStatus.PENDING
        assert goal.approval_deadline == START + timedelta(hours=24)
        assert goal.experience_gift_id == str(gift["_id"])
        stored_gift = await fake_db["experience_gifts"].find_one({"_id": gift["_id"]})
        assert stored_gift["status"] == "claimed"
        assert stored_gift["recipient_id"] == "user123"
        [note] = fake_db["notifications"].docs
        assert note["user_id"] == "giver1"
        assert note["type"] == "goal_approval_request"

    async def test_second_redemption_rejected(self, redemptions, fake_db):
        await insert_gift(fake_db)
        await redemptions.redeem_gift("user123", GIFT_CODE, SETUP)

        with pytest.raises(StateConflictError) as exc_info:
            await redemptions.redeem_gift("user456", GIFT_CODE, SETUP)

        assert exc_info.value.reason == FailureReason.ALREADY_REDEEMED
        assert len(fake_db["goals"].docs) == 1

    async def test_self_gift_needs_no_approval(self, redemptions, fake_db):
        await insert_gift(fake_db, giver_id="user123")

        goal = await redemptions.redeem_gift("user123", GIFT_CODE, SETUP)

        assert goal.approval_status == ApprovalStatus.NONE
        assert fake_db["notifications"].docs == []

    async def test_invalid_setup_rejected(self, redemptions, fake_db):
        await insert_gift(fake_db)

        with pytest.raises(ValueError, match="Weeks must be between"):
            await redemptions.redeem_gift("user123", GIFT_CODE, GoalSetup(target_count=9, sessions_per_week=2))

        gift = fake_db["experience_gifts"].docs[0]
        assert gift["status"] == "pending"

    async def test_expired_gift_rejected(self, redemptions, fake_db):
        await insert_gift(fake_db, expires_at=START)

        with pytest.raises(ValueError, match="expired"):
            await redemptions.redeem_gift("user123", GIFT_CODE, SETUP)


@pytest.mark.asyncio
class TestRedeemValentine:
    """Tests for redeem_valentine."""

    async def test_first_side_waits_unlinked(self, redemptions, fake_db):
        challenge = await insert_challenge(fake_db)

        goal = await redemptions.redeem_valentine("alice", PURCHASER_CODE, GoalSetup())

        assert isinstance(goal.kind, PairedGoal)
        assert goal.kind.challenge_id == str(challenge["_id"])
        assert goal.partner_goal_id is None
        assert goal.target_count == 3
        assert goal.sessions_per_week == 2
        assert goal.is_revealed is False
        assert goal.approval_status == ApprovalStatus.APPROVED
        stored = await fake_db["valentine_challenges"].find_one({"_id": challenge["_id"]})
        assert stored["purchaser_code_redeemed"] is True
        assert stored["purchaser_goal_id"] == goal.id
        assert stored["status"] == "pending_redemption"

    async def test_second_side_links_both_goals(self, redemptions, fake_db):
        challenge = await insert_challenge(fake_db, mode="revealed")
        alice = await redemptions.redeem_valentine("alice", PURCHASER_CODE, GoalSetup())

        bob = await redemptions.redeem_valentine("bob", PARTNER_CODE, GoalSetup())

        assert bob.partner_goal_id == alice.id
        assert bob.is_revealed is True
        alice_doc = await fake_db["goals"].find_one({"_id": ObjectId(alice.id)})
        assert alice_doc["partner_goal_id"] == bob.id
        stored = await fake_db["valentine_challenges"].find_one({"_id": challenge["_id"]})
        assert stored["status"] == "active"

    async def test_link_runs_unlock_check_for_first_side(self, redemptions, fake_db):
        await insert_challenge(fake_db)
        alice = await redemptions.redeem_valentine("alice", PURCHASER_CODE, GoalSetup())
        redemptions.pairing.reconcile_unlock = AsyncMock(return_value=False)

        await redemptions.redeem_valentine("bob", PARTNER_CODE, GoalSetup())

        [checked] = redemptions.pairing.reconcile_unlock.await_args.args
        assert checked.id == alice.id
        assert checked.partner_goal_id is not None

    async def test_unlinked_side_skips_unlock_check(self, redemptions, fake_db):
        await insert_challenge(fake_db)
        redemptions.pairing.reconcile_unlock = AsyncMock(return_value=False)

        await redemptions.redeem_valentine("alice", PURCHASER_CODE, GoalSetup())

        redemptions.pairing.reconcile_unlock.assert_not_called()

    async def test_code_redeemed_twice(self, redemptions, fake_db):
        await insert_challenge(fake_db)
        await redemptions.redeem_valentine("alice", PURCHASER_CODE, GoalSetup())

        with pytest.raises(StateConflictError) as exc_info:
            await redemptions.redeem_valentine("carol", PURCHASER_CODE, GoalSetup())

        assert exc_info.value.reason == FailureReason.ALREADY_REDEEMED

    async def test_same_user_cannot_take_both_sides(self, redemptions, fake_db):
        challenge = await insert_challenge(fake_db)
        await redemptions.redeem_valentine("alice", PURCHASER_CODE, GoalSetup())

        with pytest.raises(StateConflictError) as exc_info:
            await redemptions.redeem_valentine("alice", PARTNER_CODE, GoalSetup())

        assert exc_info.value.reason == FailureReason.DUPLICATE_PARTNER_REDEMPTION
        stored = await fake_db["valentine_challenges"].find_one({"_id": challenge["_id"]})
        assert stored["partner_code_redeemed"] is False

    async def test_explicit_cadence_overrides_challenge(self, redemptions, fake_db):
        await insert_challenge(fake_db)

        goal = await redemptions.redeem_valentine(
            "alice", PURCHASER_CODE, GoalSetup(target_count=1, sessions_per_week=4)
        )

        assert goal.target_count == 1
        assert goal.sessions_per_week == 4

    async def test_unknown_code(self, redemptions):
        with pytest.raises(ValueError, match="Invalid or already claimed"):
            await redemptions.redeem_valentine("alice", "ZZZZZZZZZZZZ", GoalSetup())
