import os
import logging

import click
from flask import Flask, jsonify

from carecredits.config import WebhookSettings, config_by_name
from carecredits.extensions import db, migrate, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # Webhook requests check these on every call and answer 500 when
    # anything is missing, instead of re-reading the environment.
    app.extensions["webhook_settings"] = WebhookSettings.from_config(app.config)

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from carecredits import models  # noqa: F401

    # --- Ledger store ---
    from carecredits.services.ledger_service import init_ledger_store
    init_ledger_store(app)

    # --- Register blueprints ---
    from carecredits.blueprints.webhooks import webhooks_bp

    app.register_blueprint(webhooks_bp)

    # --- Error handlers ---
    from carecredits.services.outcomes import (
        OutcomeKind,
        WebhookOutcome,
        compose_response,
    )

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return compose_response(WebhookOutcome(OutcomeKind.METHOD_NOT_ALLOWED))

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Processing error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        # JSON only, nothing to load
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("add-credits")
    @click.option("--caregiver-id", required=True, help="Caregiver UUID")
    @click.option("--minutes", required=True, type=int, help="Minutes to add (1-10000)")
    @click.option("--note", default=None, help="Reason, stored in the pack label")
    def add_credits(caregiver_id, minutes, note):
        """Grant free call minutes to a caregiver.

        Recorded in credit_purchases with source "manual" and price 0.

        Usage:
            flask add-credits --caregiver-id <uuid> --minutes 30
            flask add-credits --caregiver-id <uuid> --minutes 30 --note "support refund"
        """
        from carecredits.services.ledger_service import (
            LedgerStoreError,
            grant_manual_credits,
        )

        try:
            result = grant_manual_credits(caregiver_id, minutes, note=note)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--minutes")
        except LedgerStoreError as e:
            raise click.ClickException(f"Failed to add credits: {e}")

        click.echo(f"Added {minutes} min to caregiver {caregiver_id}")
        click.echo(f"  New balance: {result.new_balance} min")

    @app.cli.command("create-checkout-link")
    @click.option("--caregiver-id", required=True, help="Caregiver UUID")
    @click.option(
        "--pack-minutes",
        required=True,
        type=click.Choice(["60", "150", "500"]),
        help="Credit pack size",
    )
    @click.option("--email", default=None, help="Prefill the customer email")
    def create_checkout_link(caregiver_id, pack_minutes, email):
        """Create a Stripe Checkout link for a credit pack.

        Paying through the link fires checkout.session.completed, which
        the webhook turns into credits.

        Usage:
            flask create-checkout-link --caregiver-id <uuid> --pack-minutes 150
        """
        from carecredits.services.stripe_service import create_credit_checkout_session

        url = create_credit_checkout_session(
            caregiver_id, int(pack_minutes), customer_email=email
        )

        click.echo("")
        click.echo("=" * 60)
        click.echo("Stripe checkout link created!")
        click.echo("=" * 60)
        click.echo(f"  Caregiver: {caregiver_id}")
        click.echo(f"  Pack:      {pack_minutes} minutes")
        click.echo(f"  URL:       {url}")
        click.echo("=" * 60)
