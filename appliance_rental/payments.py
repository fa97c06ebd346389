"""Stripe payment gateway wrapper.

The rental core only needs two things from the gateway: a client-usable
handle for an amount, and a yes/no answer to "has this payment completed".
"""
from __future__ import annotations

import stripe
from flask import current_app

from .errors import RentalError


class PaymentGatewayError(RentalError):
    error = "payment_error"
    status_code = 502
    default_message = "An error occurred while processing the payment."


class PaymentsUnavailable(RentalError):
    error = "server_error"
    status_code = 500
    default_message = "Payments are not currently available. Please contact support."


def _configure() -> None:
    stripe_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe_key:
        current_app.logger.warning("Stripe secret key not configured")
        raise PaymentsUnavailable()
    stripe.api_key = stripe_key


def to_minor_units(amount: float) -> int:
    """Stripe expects amounts in the currency's smallest unit."""
    return int(round(amount * 100))


def create_payment_intent(amount: float, metadata: dict[str, str] | None = None) -> dict[str, str]:
    _configure()
    try:
        intent = stripe.PaymentIntent.create(
            amount=to_minor_units(amount),
            currency=current_app.config.get("PAYMENT_CURRENCY", "inr"),
            description="Home appliance rental",
            automatic_payment_methods={"enabled": True},
            metadata=metadata or {},
        )
    except stripe.error.StripeError as exc:
        current_app.logger.exception("Stripe API error while creating payment intent", exc_info=exc)
        raise PaymentGatewayError() from exc

    return {"client_secret": intent.client_secret, "payment_intent_id": intent.id}


def payment_completed(payment_intent_id: str, expected_amount: float | None = None) -> bool:
    """True when the intent succeeded (and, if given, covers ``expected_amount``)."""
    _configure()
    try:
        intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.error.StripeError as exc:
        current_app.logger.exception("Stripe API error while retrieving payment intent", exc_info=exc)
        raise PaymentGatewayError("Failed to retrieve payment intent") from exc

    if intent.status != "succeeded":
        return False
    if expected_amount is not None and int(intent.amount or 0) < to_minor_units(expected_amount):
        current_app.logger.warning(
            "Payment intent %s amount %s is below the expected %s",
            payment_intent_id, intent.amount, to_minor_units(expected_amount),
        )
        return False
    return True
