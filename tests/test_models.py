"""Tests for Pydantic models."""
import pytest
from datetime import datetime
from pydantic import TypeAdapter, ValidationError


NOW = datetime(2026, 2, 2, 9, 0, 0)


class TestGoalModel:
    """Tests for the Goal model and its tagged kind."""

    def _doc(self, **overrides):
        from bson import ObjectId

        doc = {
            "_id": ObjectId(),
            "user_id": "user123",
            "target_count": 2,
            "sessions_per_week": 3,
            "created_at": NOW,
            "updated_at": NOW,
        }
        doc.update(overrides)
        return doc

    def test_self_goal(self):
        """Test a goal with no giver is a self goal."""
        from app.models.goal import SelfGoal, doc_to_goal

        goal = doc_to_goal(self._doc())

        assert isinstance(goal.kind, SelfGoal)
        assert goal.giver_id is None
        assert goal.is_paired is False

    def test_goal_empowered_by_owner_is_self(self):
        """Test a goal the owner bought for themselves needs no giver."""
        from app.models.goal import SelfGoal, doc_to_goal

        goal = doc_to_goal(self._doc(empowered_by="user123"))

        assert isinstance(goal.kind, SelfGoal)

    def test_empowered_goal(self):
        from app.models.goal import EmpoweredGoal, doc_to_goal

        goal = doc_to_goal(self._doc(empowered_by="giver1"))

        assert isinstance(goal.kind, EmpoweredGoal)
        assert goal.giver_id == "giver1"

    def test_paired_goal_wins_over_giver(self):
        """Test a Valentine goal is paired even if a giver is recorded."""
        from app.models.goal import PairedGoal, doc_to_goal

        goal = doc_to_goal(
            self._doc(empowered_by="giver1", valentine_challenge_id="c1", partner_goal_id="g2")
        )

        assert isinstance(goal.kind, PairedGoal)
        assert goal.partner_goal_id == "g2"
        assert goal.giver_id is None

    def test_id_serialized_as_id(self):
        from app.models.goal import doc_to_goal

        doc = self._doc()
        data = doc_to_goal(doc).model_dump(by_alias=True)

        assert data["id"] == str(doc["_id"])
        assert data["kind"] == {"kind": "self"}

    def test_goal_requires_cadence(self):
        from app.models.goal import doc_to_goal

        doc = self._doc()
        del doc["target_count"]

        with pytest.raises(ValidationError):
            doc_to_goal(doc)

    def test_personalized_hint_text_limit(self):
        from app.models.goal import PersonalizedHintCreate

        with pytest.raises(ValidationError):
            PersonalizedHintCreate(text="x" * 501)


class TestGiftModels:
    """Tests for gift and cart models."""

    def test_cart_item_alias(self):
        from app.models.gift import CartItem

        item = CartItem.model_validate({"experienceId": "exp1"})

        assert item.experience_id == "exp1"
        assert item.quantity == 1

    def test_cart_item_rejects_zero_quantity(self):
        from app.models.gift import CartItem

        with pytest.raises(ValidationError):
            CartItem.model_validate({"experienceId": "exp1", "quantity": 0})

    def test_challenge_status_values(self):
        from app.models.gift import ChallengeStatus

        assert [s.value for s in ChallengeStatus] == ["pending_redemption", "active", "completed"]


class TestCodeLookup:
    """Tests for the code lookup union."""

    def test_invalid_code_parsed_by_kind(self):
        from app.models.redemption import CodeLookup, InvalidCode

        adapter = TypeAdapter(CodeLookup)
        parsed = adapter.validate_python({"kind": "invalid", "code": "ABCDEFGHJKLM", "reason": "expired"})

        assert isinstance(parsed, InvalidCode)

    def test_valentine_match_role(self):
        from app.models.redemption import ValentineCodeMatch

        match = ValentineCodeMatch(
            kind="valentine_partner",
            code="ABCDEFGHJKLM",
            challenge_id="c1",
            experience_id="exp1",
            weeks=2,
            sessions_per_week=3,
            mode="secret",
        )

        assert match.role == "partner"

    def test_unknown_reason_rejected(self):
        from app.models.redemption import InvalidCode

        with pytest.raises(ValidationError):
            InvalidCode(code="ABCDEFGHJKLM", reason="stolen")


class TestUserModel:
    """Tests for the User model."""

    def test_display_name_fallback(self):
        from app.models.user import User

        assert User(_id="u1").display_name == "Someone"
        assert User(_id="u1", name="Sam").display_name == "Sam"

    def test_email_validated(self):
        from app.models.user import User

        with pytest.raises(ValidationError):
            User(_id="u1", email="not-an-email")
