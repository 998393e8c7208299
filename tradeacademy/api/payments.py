"""
Payment API Endpoints

Stripe payment intents for premium access and the Stripe webhook.
"""

from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from tradeacademy import limiter
from tradeacademy.api import int_arg, load_json, success
from tradeacademy.schemas import PaymentIntentSchema
from tradeacademy.services import get_services
from tradeacademy.utils.logger import get_logger

payments_bp = Blueprint("payments", __name__)
logger = get_logger(__name__)


@payments_bp.route("/create-payment-intent", methods=["POST"])
@jwt_required()
@limiter.limit("10 per minute")
def create_payment_intent():
    """
    Create a Stripe PaymentIntent for premium access.

    Expects:
    {
        "amount": 19.99,
        "currency": "usd",
        "description": "optional"
    }

    Returns PaymentIntent client_secret for frontend Stripe Elements.
    """
    data = load_json(PaymentIntentSchema())
    intent = get_services().payments.create_payment_intent(
        current_user, data["amount"], data["currency"], data.get("description")
    )
    return jsonify(success(intent, message="Payment intent created successfully")), 200


@payments_bp.route("/webhook", methods=["POST"])
@limiter.exempt
def stripe_webhook():
    """
    Handle Stripe webhooks for payment events.

    The raw body is verified against the ``Stripe-Signature`` header.
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")
    result = get_services().payments.handle_webhook(payload, sig_header)
    logger.info(f"Received Stripe webhook: {result['type']}")
    return jsonify(result), 200


@payments_bp.route("/history", methods=["GET"])
@jwt_required()
def get_payment_history():
    """Most recent payments of the authenticated user."""
    limit = int_arg("limit", 10, 100)
    payments = get_services().payments.history(current_user, limit)
    return jsonify(success([p.to_dict() for p in payments], results=len(payments))), 200
