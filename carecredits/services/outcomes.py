"""Webhook outcomes and their HTTP acknowledgements.

Every path through the webhook pipeline ends in exactly one
WebhookOutcome. compose_response() is the only place outcomes become
status codes, and RESPONSES covers every OutcomeKind.

Stripe retries anything that is not 2xx, so only outcomes that could
succeed on redelivery (a ledger outage) or that must never be trusted
(bad signature, misconfiguration) are non-2xx. Ignored, invalid and
duplicate events are acknowledged so Stripe stops sending them.
"""

import enum
from dataclasses import dataclass

from flask import jsonify


class OutcomeKind(enum.Enum):
    METHOD_NOT_ALLOWED = "method_not_allowed"
    MISCONFIGURED = "misconfigured"
    BAD_SIGNATURE = "bad_signature"
    MALFORMED = "malformed"
    IGNORED = "ignored"
    METADATA_INVALID = "metadata_invalid"
    ALREADY_PROCESSED = "already_processed"
    CREDITED = "credited"
    MUTATION_ERROR = "mutation_error"


@dataclass(frozen=True)
class WebhookOutcome:
    kind: OutcomeKind
    reason: str = ""
    new_balance: int | None = None

    @property
    def acknowledged(self):
        return RESPONSES[self.kind][0] == 200


_RECEIVED = {"received": True}

# kind -> (status, body)
RESPONSES = {
    OutcomeKind.METHOD_NOT_ALLOWED: (405, {"error": "Method not allowed"}),
    OutcomeKind.MISCONFIGURED: (500, {"error": "Stripe not configured"}),
    OutcomeKind.BAD_SIGNATURE: (400, {"error": "Invalid signature"}),
    OutcomeKind.MALFORMED: (400, {"error": "Malformed payload"}),
    OutcomeKind.IGNORED: (200, _RECEIVED),
    OutcomeKind.METADATA_INVALID: (200, _RECEIVED),
    OutcomeKind.ALREADY_PROCESSED: (200, _RECEIVED),
    OutcomeKind.CREDITED: (200, _RECEIVED),
    OutcomeKind.MUTATION_ERROR: (500, {"error": "Processing error"}),
}


def compose_response(outcome):
    """Turn an outcome into a Flask (response, status) tuple."""
    status, body = RESPONSES[outcome.kind]
    if outcome.kind is OutcomeKind.BAD_SIGNATURE and outcome.reason:
        body = {"error": outcome.reason}
    return jsonify(body), status
