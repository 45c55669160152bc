"""Payment service - turn confirmed Stripe payments into gifts or challenges."""
import json
import logging
from datetime import timedelta
from typing import Any, Optional

import stripe
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from app.config import settings
from app.database import run_in_transaction
from app.exceptions import WebhookSignatureError
from app.models.gift import CartItem, ExperienceGift, GiftStatus, PaymentResult, ValentineMode, doc_to_gift
from app.services.notification_service import NotificationService
from app.utils.claim_code import generate_code_pair, generate_unique_claim_code
from app.utils.clock import clock as default_clock

logger = logging.getLogger(__name__)

VALENTINE_PURCHASE = "valentine_challenge"


def _positive_int(metadata: dict, key: str, upper: int) -> int:
    try:
        value = int(metadata.get(key))
    except (TypeError, ValueError):
        raise ValueError(f"Metadata field '{key}' must be a whole number")
    if not 1 <= value <= upper:
        raise ValueError(f"Metadata field '{key}' must be between 1 and {upper}")
    return value


def parse_cart(raw: Optional[str]) -> list[CartItem]:
    """
    Parse the cart stored in payment metadata.

    Raises:
        ValueError: If the cart is missing, malformed or empty
    """
    if not raw:
        raise ValueError("Missing cart in payment metadata")
    try:
        items = json.loads(raw)
    except ValueError:
        raise ValueError("Cart metadata is not valid JSON")
    if not isinstance(items, list) or not items:
        raise ValueError("Cart is empty")
    try:
        return [CartItem.model_validate(item) for item in items]
    except ValidationError as e:
        raise ValueError(f"Invalid cart item: {e.errors()[0]['msg']}")


def parse_valentine_metadata(metadata: dict) -> dict:
    """
    Validate the metadata of a Valentine purchase.

    Raises:
        ValueError: If a required field is missing or invalid
    """
    for key in ("purchaserEmail", "experienceId", "mode"):
        if not metadata.get(key):
            raise ValueError(f"Missing required Valentine metadata: {key}")

    mode = metadata["mode"]
    if mode not in {m.value for m in ValentineMode}:
        raise ValueError(f"Invalid Valentine mode: {mode}")

    try:
        price = float(metadata.get("experiencePrice") or 0)
    except ValueError:
        raise ValueError("Metadata field 'experiencePrice' must be a number")

    return {
        "purchaser_email": metadata["purchaserEmail"],
        "purchaser_user_id": metadata.get("purchaserUserId") or None,
        "experience_id": metadata["experienceId"],
        "experience_price": price,
        "mode": mode,
        "goal_type": metadata.get("goalType", ""),
        "weeks": _positive_int(metadata, "weeks", settings.max_target_weeks),
        "sessions_per_week": _positive_int(metadata, "sessionsPerWeek", settings.max_sessions_per_week),
    }


def _marker_to_result(marker: dict) -> PaymentResult:
    return PaymentResult(
        payment_intent_id=marker["_id"],
        kind=marker["kind"],
        gift_ids=marker.get("gift_ids", []),
        challenge_id=marker.get("challenge_id"),
    )


class PaymentService:
    """Service processing payment webhooks idempotently."""

    def __init__(self, db, clock=None, notifications=None):
        """Initialize service with database connection."""
        self.db = db
        self.gifts = db["experience_gifts"]
        self.challenges = db["valentine_challenges"]
        self.processed = db["processed_payments"]
        self.clock = clock or default_clock
        self.notifications = notifications or NotificationService(db, clock=self.clock)

    def verify_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify a webhook delivery against the shared secret.

        Args:
            payload: Raw request body
            signature: ``Stripe-Signature`` header value

        Returns:
            Event as a plain dict

        Raises:
            WebhookSignatureError: If the header is missing or does not match
        """
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}")
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}")
        return json.loads(payload)

    async def handle_event(self, event: dict) -> Optional[PaymentResult]:
        """
        Dispatch a verified event.

        Returns:
            Payment result for succeeded payment intents, otherwise None
        """
        event_type = event.get("type")
        intent = (event.get("data") or {}).get("object") or {}

        if event_type == "payment_intent.succeeded":
            return await self.process_payment_intent(intent)
        if event_type == "payment_intent.payment_failed":
            logger.warning("Payment failed for intent %s", intent.get("id"))
            return None

        logger.debug("Ignoring webhook event %s", event_type)
        return None

    async def process_payment_intent(self, intent: dict[str, Any]) -> PaymentResult:
        """
        Materialize the records for a succeeded payment exactly once.

        A retried or concurrent delivery for the same payment intent gets
        the result of the first one.

        Args:
            intent: Stripe PaymentIntent object

        Returns:
            IDs of the gifts or challenge created for the payment

        Raises:
            ValueError: If the intent or its metadata is invalid
            CodeGenerationError: If no unique codes could be generated
        """
        payment_intent_id = intent.get("id")
        if not payment_intent_id:
            raise ValueError("Payment intent has no ID")
        metadata = intent.get("metadata") or {}

        if metadata.get("type") == VALENTINE_PURCHASE:
            fields = parse_valentine_metadata(metadata)
            fields["total_amount"] = (intent.get("amount") or 0) / 100
            materialize = self._challenge_writer(payment_intent_id, fields)
        else:
            giver_id = metadata.get("giverId")
            if not giver_id:
                raise ValueError("Missing giverId in payment metadata")
            cart = parse_cart(metadata.get("cart"))
            materialize = self._gift_writer(payment_intent_id, giver_id, cart, metadata)

        created: dict = {}

        async def callback(session):
            marker = await self.processed.find_one({"_id": payment_intent_id}, session=session)
            if marker:
                created.clear()
                return _marker_to_result(marker)
            result, extra = await materialize(session)
            created.update(extra)
            return result

        try:
            result = await run_in_transaction(self.db, callback)
        except DuplicateKeyError:
            marker = await self.processed.find_one({"_id": payment_intent_id})
            if marker is None:
                raise
            logger.info("Payment %s was processed concurrently", payment_intent_id)
            return _marker_to_result(marker)

        if not created:
            logger.info("Payment %s already processed", payment_intent_id)
            return result

        logger.info(
            "Payment %s processed: %d gift(s), challenge %s",
            payment_intent_id,
            len(result.gift_ids),
            result.challenge_id,
        )
        if result.kind == VALENTINE_PURCHASE:
            await self._send_codes(created["challenge"])
        return result

    def _gift_writer(self, payment_intent_id: str, giver_id: str, cart: list[CartItem], metadata: dict):
        async def write(session):
            now = self.clock.now()
            await self.processed.insert_one(
                {"_id": payment_intent_id, "kind": "gifts", "gift_ids": [], "processed_at": now},
                session=session,
            )

            reserved: set[str] = set()
            docs = []
            for item in cart:
                for _ in range(item.quantity):
                    code = await generate_unique_claim_code(
                        [(self.gifts, "claim_code")],
                        max_attempts=settings.claim_code_max_attempts,
                        reserved=reserved,
                        length=settings.claim_code_length,
                        session=session,
                    )
                    docs.append({
                        "giver_id": giver_id,
                        "giver_name": metadata.get("giverName", ""),
                        "experience_id": item.experience_id,
                        "personalized_message": metadata.get("personalizedMessage", ""),
                        "partner_id": metadata.get("partnerId") or None,
                        "status": GiftStatus.PENDING.value,
                        "payment": "paid",
                        "payment_intent_id": payment_intent_id,
                        "claim_code": code,
                        "expires_at": now + timedelta(days=settings.gift_expiry_days),
                        "created_at": now,
                        "updated_at": now,
                    })

            result = await self.gifts.insert_many(docs, session=session)
            gift_ids = [str(gift_id) for gift_id in result.inserted_ids]
            await self.processed.update_one(
                {"_id": payment_intent_id}, {"$set": {"gift_ids": gift_ids}}, session=session
            )
            return (
                PaymentResult(payment_intent_id=payment_intent_id, kind="gifts", gift_ids=gift_ids),
                {"gift_ids": gift_ids},
            )

        return write

    def _challenge_writer(self, payment_intent_id: str, fields: dict):
        async def write(session):
            now = self.clock.now()
            await self.processed.insert_one(
                {"_id": payment_intent_id, "kind": VALENTINE_PURCHASE, "challenge_id": None, "processed_at": now},
                session=session,
            )

            checks = [(self.challenges, "purchaser_code"), (self.challenges, "partner_code")]
            purchaser_code, partner_code = await generate_code_pair(
                checks,
                max_attempts=settings.claim_code_max_attempts,
                length=settings.claim_code_length,
                session=session,
            )
            challenge = dict(
                fields,
                payment_intent_id=payment_intent_id,
                purchaser_code=purchaser_code,
                partner_code=partner_code,
                purchaser_code_redeemed=False,
                partner_code_redeemed=False,
                purchaser_goal_id=None,
                partner_goal_id=None,
                status="pending_redemption",
                created_at=now,
                updated_at=now,
            )
            inserted = await self.challenges.insert_one(challenge, session=session)
            challenge["_id"] = inserted.inserted_id
            challenge_id = str(inserted.inserted_id)
            await self.processed.update_one(
                {"_id": payment_intent_id}, {"$set": {"challenge_id": challenge_id}}, session=session
            )
            return (
                PaymentResult(
                    payment_intent_id=payment_intent_id, kind=VALENTINE_PURCHASE, challenge_id=challenge_id
                ),
                {"challenge": challenge},
            )

        return write

    async def _send_codes(self, challenge: dict) -> None:
        """Email both codes to the purchaser. Failure never fails the webhook."""
        try:
            sent = await self.notifications.send(
                user_id=challenge.get("purchaser_user_id"),
                recipient_email=challenge["purchaser_email"],
                channel="email",
                type="valentine_codes",
                title="Your Valentine's Challenge codes 💝",
                message=(
                    f"Your code: {challenge['purchaser_code']}\n"
                    f"Your partner's code: {challenge['partner_code']}\n"
                    "Each of you redeems one code to start your challenge."
                ),
                data={"challenge_id": str(challenge["_id"])},
            )
        except Exception:
            logger.exception("Failed to send Valentine codes for challenge %s", challenge["_id"])
            return
        if not sent:
            logger.warning("Valentine codes email not queued for challenge %s", challenge["_id"])

    async def get_gifts_by_payment_intent(self, user_id: str, payment_intent_id: str) -> list[ExperienceGift]:
        """
        List the caller's gifts created by one payment.

        Args:
            user_id: Giver
            payment_intent_id: Stripe payment intent ID

        Returns:
            Gifts the caller bought with that payment
        """
        cursor = self.gifts.find({"payment_intent_id": payment_intent_id, "giver_id": user_id})
        docs = await cursor.to_list(length=None)
        return [doc_to_gift(doc) for doc in docs]
