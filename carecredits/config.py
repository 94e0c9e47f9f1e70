import os
from dataclasses import dataclass


class Config:
    """Base configuration. Shared across all environments."""

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    # Max age (seconds) of the Stripe-Signature timestamp before a
    # delivery is treated as a replay.
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 300))
    DASHBOARD_URL = os.environ.get("DASHBOARD_URL", "http://localhost:3000")

    # --- Ledger store ---
    # "supabase": call the add_credits RPC over PostgREST (production).
    # "database": apply credits to the tables in SQLALCHEMY_DATABASE_URI.
    LEDGER_BACKEND = os.environ.get("LEDGER_BACKEND", "supabase")
    SUPABASE_URL = os.environ.get("SUPABASE_URL")                # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY") # service_role key for RPC
    LEDGER_TIMEOUT = float(os.environ.get("LEDGER_TIMEOUT", 10))

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or "sqlite:///carecredits.db"

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Rate limiting ---
    WEBHOOK_RATE_LIMIT = os.environ.get("WEBHOOK_RATE_LIMIT", "300 per minute")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
        ]
        if os.environ.get("LEDGER_BACKEND", "supabase") == "supabase":
            required += ["SUPABASE_URL", "SUPABASE_SERVICE_KEY"]
        else:
            required.append("DATABASE_URL")
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite ledger, rate limiting off."""

    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_WEBHOOK_TOLERANCE = 300
    DASHBOARD_URL = "http://localhost:3000"
    LEDGER_BACKEND = "database"
    SUPABASE_URL = "https://ledger.test.supabase.co"
    SUPABASE_SERVICE_KEY = "service-role-test-key"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}


@dataclass(frozen=True)
class WebhookSettings:
    """Secrets and ledger credentials the webhook pipeline needs.

    Built once in create_app() and handed to the pipeline explicitly, so a
    misconfigured deployment is detected per request without re-reading
    the environment.
    """

    stripe_secret_key: str | None
    webhook_secret: str | None
    ledger_backend: str
    ledger_url: str | None
    ledger_service_key: str | None
    tolerance: int = 300

    @classmethod
    def from_config(cls, config):
        """Build settings from a Flask config mapping."""
        backend = config.get("LEDGER_BACKEND") or "supabase"
        if backend == "database":
            ledger_url = config.get("SQLALCHEMY_DATABASE_URI")
            service_key = None
        else:
            ledger_url = config.get("SUPABASE_URL")
            service_key = config.get("SUPABASE_SERVICE_KEY")
        return cls(
            stripe_secret_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            ledger_backend=backend,
            ledger_url=ledger_url,
            ledger_service_key=service_key,
            tolerance=int(config.get("STRIPE_WEBHOOK_TOLERANCE", 300)),
        )

    def missing(self):
        """Return the names of required settings that are empty."""
        required = {
            "STRIPE_SECRET_KEY": self.stripe_secret_key,
            "STRIPE_WEBHOOK_SECRET": self.webhook_secret,
        }
        if self.ledger_backend == "database":
            required["SQLALCHEMY_DATABASE_URI"] = self.ledger_url
        else:
            required["SUPABASE_URL"] = self.ledger_url
            required["SUPABASE_SERVICE_KEY"] = self.ledger_service_key
        return [name for name, value in required.items() if not value]
