"""Typed Stripe event payloads.

VerifiedEvent is the outer envelope Stripe sends for every webhook.
CheckoutEvent is the subset of a checkout.session.completed object the
credit pipeline reads. Both are frozen once built.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError


class EventDecodeError(Exception):
    """Raised when a verified body is not a usable Stripe event envelope."""


class EventData(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    object: dict[str, Any]


class VerifiedEvent(BaseModel):
    """Stripe event envelope, built only from signature-checked bytes."""

    # Stripe adds envelope fields over time; only id, type and data are required.
    model_config = ConfigDict(frozen=True, extra="ignore", strict=True)

    id: str
    type: str
    data: EventData

    @property
    def payload(self):
        return self.data.object


class CheckoutEvent(BaseModel):
    """Fields of a completed checkout session that drive a credit grant."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    mode: str | None = None
    caregiver_id: str
    pack_minutes: int
    pack_price_cents: int = 0
    pack_label: str
    payment_intent_id: str | None = None


def decode_event(raw_body):
    """Parse a verified webhook body into a VerifiedEvent.

    Only the envelope (id, type, data.object) is checked here; the
    event-specific fields inside data.object are left to the router.

    Raises EventDecodeError if the body is not JSON or the envelope is
    incomplete.
    """
    try:
        event = VerifiedEvent.model_validate_json(raw_body)
    except ValidationError as e:
        raise EventDecodeError(
            f"Malformed event envelope ({e.error_count()} errors)"
        ) from e
    if not event.id or not event.type:
        raise EventDecodeError("Event id and type must be non-empty")
    return event
