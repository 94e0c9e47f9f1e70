"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events for credit-pack purchases.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, current_app, request

from carecredits.extensions import limiter
from carecredits.services.events import EventDecodeError, decode_event
from carecredits.services.ledger_service import get_ledger_store
from carecredits.services.outcomes import OutcomeKind, WebhookOutcome, compose_response
from carecredits.services.stripe_service import (
    WebhookAuthenticationError,
    handle_webhook_event,
    verify_webhook_signature,
)

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
@limiter.limit(lambda: current_app.config["WEBHOOK_RATE_LIMIT"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Refuse to run without Stripe + ledger configuration
    2. Verify the signature over the raw, unparsed body
    3. Decode the event envelope
    4. Route and apply credits (idempotent via the ledger store)
    5. Acknowledge with {"received": true}, or fail so Stripe retries

    Non-POST methods are answered by the app's 405 handler.
    """
    settings = current_app.extensions["webhook_settings"]

    missing = settings.missing()
    if missing:
        logger.error(f"Webhook rejected, missing configuration: {', '.join(missing)}")
        return compose_response(WebhookOutcome(OutcomeKind.MISCONFIGURED))

    raw_body = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    # --- Verify signature ---
    try:
        verify_webhook_signature(
            raw_body, sig_header, settings.webhook_secret, settings.tolerance
        )
    except WebhookAuthenticationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        reason = "Missing signature" if not sig_header else "Invalid signature"
        return compose_response(WebhookOutcome(OutcomeKind.BAD_SIGNATURE, reason))

    # --- Decode ---
    try:
        event = decode_event(raw_body)
    except EventDecodeError as e:
        logger.warning(f"Webhook payload rejected: {e}")
        return compose_response(WebhookOutcome(OutcomeKind.MALFORMED, str(e)))

    logger.info(f"Webhook received event_id={event.id} type={event.type}")

    # --- Process event (idempotent) ---
    outcome = handle_webhook_event(event, get_ledger_store())

    if outcome.kind is OutcomeKind.MUTATION_ERROR:
        logger.error(f"Webhook processing failed event_id={event.id}: {outcome.reason}")

    return compose_response(outcome)
