"""Shared test fixtures for the credit webhook test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite ledger)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- fake_ledger: in-memory ledger store swapped in for the app's store
- make_checkout_event / post_event: build and deliver signed Stripe events
"""

import hashlib
import hmac
import json
import threading
import time

import pytest

from carecredits import create_app
from carecredits.extensions import db as _db
from carecredits.services.ledger_service import (
    ALREADY_PROCESSED,
    CreditApplied,
    LedgerStoreError,
)

WEBHOOK_SECRET = "whsec_test_fake"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


class InMemoryLedgerStore:
    """Ledger store double with the same atomic add_credits contract.

    `outage` makes every call fail like an unreachable store.
    `barrier` holds each call until the given number of callers arrive,
    so concurrent deliveries really overlap.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.balances = {}
        self.sessions = set()
        self.calls = []
        self.results = []
        self.outage = False
        self.barrier = None

    def add_credits(self, caregiver_id, minutes, price_cents, pack_label,
                    source="stripe", session_id=None, payment_intent_id=None):
        self.calls.append({
            "caregiver_id": caregiver_id,
            "minutes": minutes,
            "price_cents": price_cents,
            "pack_label": pack_label,
            "source": source,
            "session_id": session_id,
            "payment_intent_id": payment_intent_id,
        })
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        if self.outage:
            raise LedgerStoreError("ledger store unavailable")

        with self._lock:
            if session_id is not None and session_id in self.sessions:
                result = ALREADY_PROCESSED
            else:
                if session_id is not None:
                    self.sessions.add(session_id)
                new_balance = self.balances.get(caregiver_id, 0) + minutes
                self.balances[caregiver_id] = new_balance
                result = CreditApplied(new_balance=new_balance)
            self.results.append(result)
        return result


@pytest.fixture
def fake_ledger(app, monkeypatch):
    """Replace the app's ledger store for one test."""
    store = InMemoryLedgerStore()
    monkeypatch.setitem(app.extensions, "ledger_store", store)
    return store


def build_signature_header(body, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for body (bytes)."""
    if timestamp is None:
        timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + body
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def sign_payload():
    """Signature header builder for tests that sign bodies themselves."""
    return build_signature_header


@pytest.fixture
def make_checkout_event():
    """Factory for checkout.session.completed event dicts."""

    def _make(session_id="cs_123", mode="payment", metadata=None,
              event_id="evt_checkout_001", payment_intent="pi_123"):
        if metadata is None:
            metadata = {
                "caregiver_id": "cg_1",
                "pack_minutes": "60",
                "pack_price_cents": "1200",
                "pack_label": "60 minutes",
            }
        return {
            "id": event_id,
            "object": "event",
            "type": "checkout.session.completed",
            "livemode": False,
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "mode": mode,
                    "payment_intent": payment_intent,
                    "metadata": metadata,
                }
            },
        }

    return _make


@pytest.fixture
def post_event(client):
    """POST an event to the webhook, signed unless told otherwise.

    Accepts a dict (serialized here) or raw bytes.
    """

    def _post(event, secret=WEBHOOK_SECRET, timestamp=None, signature=None,
              http_client=None):
        body = event if isinstance(event, bytes) else json.dumps(event).encode()
        headers = {}
        if signature is None:
            headers["Stripe-Signature"] = build_signature_header(body, secret, timestamp)
        elif signature:
            headers["Stripe-Signature"] = signature
        return (http_client or client).post(
            "/stripe/webhooks",
            data=body,
            content_type="application/json",
            headers=headers,
        )

    return _post
