"""Credit ledger models.

- CreditBalance: one row per caregiver, minutes remaining.
- CreditPurchase: audit trail of every credit grant. stripe_session_id is
  unique, which makes the row double as the idempotency record for
  Stripe checkout sessions. Manual and trial grants leave it NULL.

These tables back the "database" ledger backend. In production the same
shape lives in Supabase and is mutated only through add_credits().
"""

import uuid

from carecredits.extensions import db


class CreditBalance(db.Model):
    __tablename__ = "credit_balances"

    caregiver_id = db.Column(db.String(36), primary_key=True)
    balance_minutes = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<CreditBalance {self.caregiver_id} ({self.balance_minutes} min)>"


class CreditPurchase(db.Model):
    __tablename__ = "credit_purchases"

    SOURCES = ["stripe", "manual", "trial"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    caregiver_id = db.Column(db.String(36), nullable=False, index=True)
    minutes_purchased = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    pack_label = db.Column(db.String(255), nullable=True)
    source = db.Column(db.String(50), nullable=False)  # stripe | manual | trial
    stripe_session_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "cs_test_a1B2..."
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<CreditPurchase {self.minutes_purchased} min ({self.source})>"
