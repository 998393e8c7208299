"""
Payment Processing Module

Stripe payment intents for premium access. The local ``Payment`` row is
created alongside the intent and settled by the Stripe webhook; a succeeded
payment grants premium for ``PREMIUM_DAYS``.
"""

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

import stripe

from tradeacademy.models import Payment, PaymentStatus, User, db, utcnow
from tradeacademy.utils.exceptions import PaymentError, ValidationError
from tradeacademy.utils.logger import get_logger, log_payment_event

logger = get_logger(__name__)


class PaymentService:
    """
    Payment service for premium purchases.

    Integrates with Stripe for payment intents and signed webhooks.
    """

    def __init__(self, secret_key: str, webhook_secret: str, currencies=("usd",),
                 premium_days: int = 30, notifier=None):
        stripe.api_key = secret_key
        self.webhook_secret = webhook_secret
        self.currencies = tuple(c.lower() for c in currencies)
        self.premium_days = premium_days
        self.notifier = notifier

    @staticmethod
    def to_cents(amount: Decimal) -> int:
        return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def create_payment_intent(self, user: User, amount: Decimal, currency: str = "usd",
                              description: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a Stripe PaymentIntent and its pending local record.

        Returns:
            client secret and identifiers for the frontend
        """
        currency = currency.lower()
        if currency not in self.currencies:
            raise ValidationError(
                f"Unsupported currency {currency}",
                field="currency",
                details={"allowed": list(self.currencies)},
            )
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Amount must be positive", field="amount")

        try:
            intent = stripe.PaymentIntent.create(
                amount=self.to_cents(amount),
                currency=currency,
                description=description or "TradeAcademy premium access",
                metadata={"user_id": str(user.id)},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating PaymentIntent: {e}")
            raise PaymentError(
                "Failed to create payment intent",
                details={"reason": getattr(e, "user_message", None) or str(e)},
            ) from e

        payment = Payment(
            user_id=user.id,
            stripe_payment_intent_id=intent.id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            description=description,
        )
        db.session.add(payment)
        db.session.commit()

        log_payment_event("intent_created", str(payment.id), str(user.id), float(amount), currency)
        return {
            "client_secret": intent.client_secret,
            "payment_intent_id": intent.id,
            "payment_id": str(payment.id),
            "amount": float(amount),
            "currency": currency,
        }

    def handle_webhook(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Verify a Stripe webhook and apply the payment outcome it reports."""
        try:
            event = stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except ValueError as e:
            raise PaymentError("Invalid webhook payload", code="INVALID_WEBHOOK") from e
        except stripe.SignatureVerificationError as e:
            logger.warning("Stripe webhook signature verification failed")
            raise PaymentError("Invalid webhook signature", code="INVALID_SIGNATURE") from e

        event_type = event["type"]
        intent = event["data"]["object"]

        if event_type == "payment_intent.succeeded":
            self._payment_succeeded(intent)
        elif event_type == "payment_intent.payment_failed":
            self._payment_failed(intent)
        else:
            logger.debug(f"Ignoring Stripe event {event_type}")

        return {"received": True, "type": event_type}

    def _payment_for(self, intent) -> Optional[Payment]:
        return Payment.query.filter_by(stripe_payment_intent_id=intent["id"]).first()

    def _payment_succeeded(self, intent) -> None:
        metadata = intent.get("metadata") or {}
        user = db.session.get(User, UUID(metadata["user_id"])) if metadata.get("user_id") else None
        if user is None:
            raise PaymentError(
                "Payment refers to an unknown user",
                code="PAYMENT_USER_NOT_FOUND",
                details={"payment_intent": intent["id"]},
            )

        payment = self._payment_for(intent)
        if payment is None:
            payment = Payment(
                user_id=user.id,
                stripe_payment_intent_id=intent["id"],
                amount=Decimal(intent["amount"]) / 100,
                currency=intent.get("currency", "usd"),
            )
            db.session.add(payment)
        elif payment.status == PaymentStatus.SUCCEEDED:
            return

        now = utcnow()
        payment.status = PaymentStatus.SUCCEEDED
        payment.processed_at = now

        # Extend from the current expiry when premium is still running
        start = user.premium_expires_at if (
            user.premium_expires_at and user.premium_expires_at > now
        ) else now
        user.is_premium = True
        user.premium_expires_at = start + timedelta(days=self.premium_days)
        db.session.commit()

        log_payment_event(
            "payment_succeeded", str(payment.id), str(user.id), float(payment.amount),
            payment.currency,
        )
        if self.notifier is not None:
            self.notifier.send_payment_receipt(user, payment)

    def _payment_failed(self, intent) -> None:
        payment = self._payment_for(intent)
        error = intent.get("last_payment_error") or {}
        metadata = intent.get("metadata") or {}
        if payment is None:
            logger.warning(
                f"Payment failed for unknown intent {intent['id']}",
                extra={"user_id": metadata.get("user_id")},
            )
            return

        payment.status = PaymentStatus.FAILED
        payment.failure_message = error.get("message")
        payment.processed_at = utcnow()
        db.session.commit()

        log_payment_event(
            "payment_failed", str(payment.id), str(payment.user_id), float(payment.amount),
            payment.currency, reason=payment.failure_message,
        )

    def history(self, user: User, limit: int = 10) -> List[Payment]:
        return (
            Payment.query.filter_by(user_id=user.id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .all()
        )
