"""Ledger service — the single atomic "add credits" operation.

The idempotency check and the balance increment happen in ONE call to
the ledger store. Callers never look up a purchase first and then add
credits: two deliveries of the same checkout session racing each other
would both pass the lookup. Instead the store relies on the unique
stripe_session_id on credit_purchases inside the same transaction that
increments the balance.

Backends:
- SupabaseLedgerStore: POST /rest/v1/rpc/add_credits (production).
- DatabaseLedgerStore: the same semantics against the local
  credit_balances / credit_purchases tables.

Both return CreditApplied or ALREADY_PROCESSED and raise
LedgerStoreError when the store cannot be reached or rejects the call.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import requests
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from carecredits.extensions import db
from carecredits.models.credits import CreditBalance, CreditPurchase

logger = logging.getLogger(__name__)

# Postgres unique_violation. PostgREST answers 409 for it, but also for
# other constraint errors (23503 foreign key), so only the code counts.
UNIQUE_VIOLATION = "23505"

MAX_MANUAL_MINUTES = 10000

# Largest value a 32-bit INTEGER column holds.
MAX_INTEGER = 2**31 - 1


class LedgerStoreError(Exception):
    """The ledger store failed; the grant was not applied and may be retried."""


@dataclass(frozen=True)
class CreditApplied:
    new_balance: int


class _AlreadyProcessed:
    def __repr__(self):
        return "ALREADY_PROCESSED"


ALREADY_PROCESSED = _AlreadyProcessed()


def _validate_grant(minutes, price_cents):
    """Same input checks as the add_credits() SQL function."""
    if minutes <= 0:
        raise ValueError("minutes must be positive")
    if price_cents < 0:
        raise ValueError("price_cents cannot be negative")
    if minutes > MAX_INTEGER or price_cents > MAX_INTEGER:
        raise ValueError("minutes and price_cents must fit in an INTEGER column")


class SupabaseLedgerStore:
    """Ledger backed by the Supabase add_credits() RPC."""

    def __init__(self, url, service_key, timeout=10):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout

    def add_credits(self, caregiver_id, minutes, price_cents, pack_label,
                    source="stripe", session_id=None, payment_intent_id=None):
        _validate_grant(minutes, price_cents)

        url = f"{self.url}/rest/v1/rpc/add_credits"
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }
        params = {
            "p_caregiver_id": caregiver_id,
            "p_minutes": minutes,
            "p_price_cents": price_cents,
            "p_pack_label": pack_label,
            "p_source": source,
            "p_stripe_session_id": session_id,
            "p_stripe_payment_intent_id": payment_intent_id,
        }

        try:
            resp = requests.post(url, json=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise LedgerStoreError(f"add_credits request failed: {e}") from e

        if _error_code(resp) == UNIQUE_VIOLATION:
            return ALREADY_PROCESSED

        if not resp.ok:
            raise LedgerStoreError(
                f"add_credits returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        try:
            result = resp.json()
        except ValueError as e:
            raise LedgerStoreError("add_credits returned a non-JSON body") from e

        # add_credits() returns NULL when the session id was already recorded
        if result is None:
            return ALREADY_PROCESSED

        try:
            return CreditApplied(new_balance=int(Decimal(str(result))))
        except (InvalidOperation, ValueError) as e:
            raise LedgerStoreError(f"add_credits returned an unexpected balance: {result!r}") from e


def _error_code(resp):
    """Extract the Postgres error code from a PostgREST error body, if any."""
    if resp.ok:
        return None
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("code")
    return None


class DatabaseLedgerStore:
    """Ledger backed by the app's own credit tables."""

    def add_credits(self, caregiver_id, minutes, price_cents, pack_label,
                    source="stripe", session_id=None, payment_intent_id=None):
        _validate_grant(minutes, price_cents)

        try:
            # Insert the purchase first: the unique session id is the guard,
            # and nothing below commits if it trips.
            purchase = CreditPurchase(
                caregiver_id=caregiver_id,
                minutes_purchased=minutes,
                price_cents=price_cents,
                pack_label=pack_label,
                source=source,
                stripe_session_id=session_id,
                stripe_payment_intent_id=payment_intent_id,
            )
            db.session.add(purchase)
            try:
                db.session.flush()
            except IntegrityError:
                db.session.rollback()
                if session_id is None:
                    raise
                return ALREADY_PROCESSED

            balance = db.session.get(
                CreditBalance, caregiver_id, with_for_update=True
            )
            if balance is None:
                balance = CreditBalance(caregiver_id=caregiver_id, balance_minutes=0)
                db.session.add(balance)
            balance.balance_minutes = (balance.balance_minutes or 0) + minutes
            db.session.flush()
            new_balance = balance.balance_minutes

            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise LedgerStoreError(f"add_credits transaction failed: {e}") from e

        return CreditApplied(new_balance=new_balance)


def init_ledger_store(app):
    """Build the configured ledger store and attach it to the app."""
    backend = app.config.get("LEDGER_BACKEND") or "supabase"
    if backend == "database":
        store = DatabaseLedgerStore()
    else:
        store = SupabaseLedgerStore(
            url=app.config.get("SUPABASE_URL") or "",
            service_key=app.config.get("SUPABASE_SERVICE_KEY"),
            timeout=app.config.get("LEDGER_TIMEOUT", 10),
        )
    app.extensions["ledger_store"] = store
    return store


def get_ledger_store():
    return current_app.extensions["ledger_store"]


def grant_manual_credits(caregiver_id, minutes, note=None, store=None):
    """Add free minutes to a caregiver (support/admin top-up).

    Recorded with source "manual" and price 0. Returns the CreditApplied
    result. Raises ValueError for minutes outside 1..10000 and
    LedgerStoreError if the store fails.
    """
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValueError("Invalid minutes (must be 1-10000)")
    if minutes <= 0 or minutes > MAX_MANUAL_MINUTES:
        raise ValueError("Invalid minutes (must be 1-10000)")

    store = store or get_ledger_store()
    pack_label = f"Manual: {note}" if note else "Manual addition"
    result = store.add_credits(
        caregiver_id=caregiver_id,
        minutes=minutes,
        price_cents=0,
        pack_label=pack_label,
        source="manual",
    )
    logger.info(
        f"Manual credits granted caregiver_id={caregiver_id} minutes={minutes} "
        f"new_balance={result.new_balance}"
    )
    return result
