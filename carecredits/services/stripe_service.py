"""Stripe service — webhook verification, routing, and checkout sessions.

Responsible for:
- Verifying Stripe-Signature headers against the raw request body
- Routing verified events: only checkout.session.completed in payment
  mode grants credits, everything else is acknowledged and dropped
- Handing valid credit grants to the ledger store (idempotent by
  checkout session id)
- Creating Stripe Checkout Sessions for credit packs
"""

import logging

import stripe
from flask import current_app
from pydantic import ValidationError

from carecredits.services.credit_packs import get_pack
from carecredits.services.events import CheckoutEvent
from carecredits.services.ledger_service import (
    ALREADY_PROCESSED,
    MAX_INTEGER,
    MAX_MANUAL_MINUTES,
    LedgerStoreError,
)
from carecredits.services.outcomes import OutcomeKind, WebhookOutcome

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


class WebhookAuthenticationError(Exception):
    """Missing, malformed, mismatched, or stale Stripe-Signature header."""


# ──────────────────────────────────────────────
# Signature verification
# ──────────────────────────────────────────────

def verify_webhook_signature(raw_body, sig_header, webhook_secret, tolerance):
    """Check that raw_body was signed by Stripe within `tolerance` seconds.

    raw_body must be the exact bytes received; re-serialized JSON will not
    match the signature. Returns raw_body unchanged on success.

    Raises WebhookAuthenticationError otherwise.
    """
    if not sig_header:
        raise WebhookAuthenticationError("Missing signature")

    try:
        # Decoding keeps the bytes exactly; verify_header signs a str.
        payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        stripe.WebhookSignature.verify_header(
            payload, sig_header, webhook_secret, tolerance=tolerance
        )
    except (stripe.SignatureVerificationError, ValueError) as e:
        raise WebhookAuthenticationError(f"Invalid signature: {e}") from e

    return raw_body


# ──────────────────────────────────────────────
# Event routing
# ──────────────────────────────────────────────

def _parse_whole_number(value, maximum):
    """Parse Stripe metadata (always strings) into an int, or None.

    Only plain ASCII digits up to `maximum` are accepted; "1_000", " 60 "
    and "-5" are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        if not (value.isascii() and value.isdigit()):
            return None
        value = int(value)
    if not isinstance(value, int) or not 0 <= value <= maximum:
        return None
    return value


def route_event(event):
    """Decide what a verified event means for the credit ledger.

    Returns a CheckoutEvent when credits should be applied, otherwise a
    terminal WebhookOutcome (IGNORED or METADATA_INVALID).
    """
    if event.type != CHECKOUT_COMPLETED:
        return WebhookOutcome(OutcomeKind.IGNORED, f"unhandled event type {event.type}")

    session = event.payload
    mode = session.get("mode")
    if mode != "payment":
        # Subscription and setup checkouts carry no credit pack.
        return WebhookOutcome(OutcomeKind.IGNORED, f"non-payment mode {mode}")

    session_id = session.get("id")
    metadata = session.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    caregiver_id = metadata.get("caregiver_id")
    pack_minutes = _parse_whole_number(metadata.get("pack_minutes"), MAX_MANUAL_MINUTES)

    raw_price = metadata.get("pack_price_cents")
    if raw_price in (None, ""):
        pack_price_cents = 0
    else:
        pack_price_cents = _parse_whole_number(raw_price, MAX_INTEGER)

    pack_label = metadata.get("pack_label")
    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")

    problems = []
    if not session_id or not isinstance(session_id, str):
        problems.append("session id")
    if not caregiver_id or not isinstance(caregiver_id, str):
        problems.append("caregiver_id")
    if pack_minutes is None or pack_minutes <= 0:
        problems.append("pack_minutes")
    if pack_price_cents is None:
        problems.append("pack_price_cents")
    if pack_label is not None and not isinstance(pack_label, str):
        problems.append("pack_label")
    if payment_intent is not None and not isinstance(payment_intent, str):
        problems.append("payment_intent")
    if problems:
        return _metadata_invalid(f"missing or invalid {', '.join(problems)}", metadata)

    try:
        return CheckoutEvent(
            session_id=session_id,
            mode=mode,
            caregiver_id=caregiver_id,
            pack_minutes=pack_minutes,
            pack_price_cents=pack_price_cents,
            pack_label=pack_label or f"{pack_minutes} minutes",
            payment_intent_id=payment_intent or None,
        )
    except ValidationError as e:
        return _metadata_invalid(f"invalid checkout fields: {e.error_count()} error(s)", metadata)


def _metadata_invalid(reason, metadata):
    return WebhookOutcome(OutcomeKind.METADATA_INVALID, f"{reason} (metadata={metadata})")


# ──────────────────────────────────────────────
# Credit application
# ──────────────────────────────────────────────

def handle_webhook_event(event, store):
    """Process a verified, decoded event against the ledger store.

    Idempotency lives in the store: add_credits() records the session id
    and increments the balance atomically, and reports ALREADY_PROCESSED
    for a session it has seen. There is no separate lookup here.

    Returns a WebhookOutcome. Ledger failures come back as
    MUTATION_ERROR so the caller answers 500 and Stripe redelivers.
    """
    routed = route_event(event)
    if isinstance(routed, WebhookOutcome):
        log = logger.warning if routed.kind is OutcomeKind.METADATA_INVALID else logger.info
        log(
            f"Webhook {routed.kind.value} event_id={event.id} type={event.type} "
            f"session_id={event.payload.get('id')}: {routed.reason}"
        )
        return routed

    checkout = routed
    context = (
        f"event_id={event.id} session_id={checkout.session_id} "
        f"caregiver_id={checkout.caregiver_id}"
    )
    logger.info(
        f"Applying credits {context} minutes={checkout.pack_minutes} "
        f"price_cents={checkout.pack_price_cents} label={checkout.pack_label!r}"
    )

    try:
        result = store.add_credits(
            caregiver_id=checkout.caregiver_id,
            minutes=checkout.pack_minutes,
            price_cents=checkout.pack_price_cents,
            pack_label=checkout.pack_label,
            source="stripe",
            session_id=checkout.session_id,
            payment_intent_id=checkout.payment_intent_id,
        )
    except LedgerStoreError as e:
        logger.error(f"add_credits failed {context}: {e}")
        return WebhookOutcome(OutcomeKind.MUTATION_ERROR, str(e))

    if result is ALREADY_PROCESSED:
        logger.info(f"Duplicate checkout session, skipping {context}")
        return WebhookOutcome(OutcomeKind.ALREADY_PROCESSED)

    logger.info(
        f"Credits added {context} minutes={checkout.pack_minutes} "
        f"new_balance={result.new_balance}"
    )
    return WebhookOutcome(OutcomeKind.CREDITED, new_balance=result.new_balance)


# ──────────────────────────────────────────────
# Checkout sessions
# ──────────────────────────────────────────────

def create_credit_checkout_session(caregiver_id, pack_minutes,
                                   customer_email=None, stripe_customer_id=None):
    """Create a one-time Stripe Checkout Session for a credit pack.

    The session metadata carries exactly what route_event() reads back
    when checkout.session.completed arrives.

    Returns the Stripe checkout session URL.
    Raises ValueError for unknown packs, stripe.StripeError on API failures.
    """
    price_cents, pack_label = get_pack(pack_minutes)

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    dashboard_url = current_app.config["DASHBOARD_URL"]

    params = {
        "mode": "payment",
        "line_items": [{
            "price_data": {
                "currency": "usd",
                "product_data": {
                    "name": f"MedReminder Credits: {pack_label}",
                    "description": f"{pack_minutes} minutes of call credits",
                },
                "unit_amount": price_cents,
            },
            "quantity": 1,
        }],
        "metadata": {
            "caregiver_id": str(caregiver_id),
            "pack_minutes": str(pack_minutes),
            "pack_price_cents": str(price_cents),
            "pack_label": pack_label,
        },
        "payment_intent_data": {"setup_future_usage": "off_session"},
        "success_url": f"{dashboard_url}/dashboard/credits?success=true",
        "cancel_url": f"{dashboard_url}/dashboard/credits?canceled=true",
    }
    if stripe_customer_id:
        params["customer"] = stripe_customer_id
    elif customer_email:
        params["customer_email"] = customer_email

    session = stripe.checkout.Session.create(**params)
    logger.info(
        f"Checkout session created session_id={session.id} "
        f"caregiver_id={caregiver_id} pack_minutes={pack_minutes}"
    )
    return session.url
