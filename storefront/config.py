import os


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Monime payment gateway ---
    MONIME_API_BASE_URL = os.environ.get(
        "MONIME_API_BASE_URL", "https://api.monime.io/v1"
    )
    MONIME_ENVIRONMENT = os.environ.get("MONIME_ENVIRONMENT", "test")  # test | live
    MONIME_LIVE_API_TOKEN = os.environ.get("MONIME_LIVE_API_TOKEN")
    MONIME_TEST_API_TOKEN = os.environ.get("MONIME_TEST_API_TOKEN")
    MONIME_SPACE_ID = os.environ.get("MONIME_SPACE_ID")
    MONIME_WEBHOOK_SECRET = os.environ.get("MONIME_WEBHOOK_SECRET")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "SLE")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # Request bodies (webhooks included) over this many bytes get a 413
    MAX_CONTENT_LENGTH = 1024 * 1024

    # Local debug server (run.py)
    RUN_HOST = os.environ.get("RUN_HOST", "127.0.0.1")
    RUN_PORT = int(os.environ.get("RUN_PORT", 5000))

    # Seconds before a gateway HTTP call is abandoned
    GATEWAY_TIMEOUT = float(os.environ.get("GATEWAY_TIMEOUT", 15))
    # Extra attempts for checkout creation on transient gateway failures
    CHECKOUT_CREATE_RETRIES = int(os.environ.get("CHECKOUT_CREATE_RETRIES", 2))

    # --- Marketplace economics ---
    # Seller keeps this share of each paid item; the platform fee is the rest.
    SELLER_SHARE_RATIO = os.environ.get("SELLER_SHARE_RATIO", "0.90")

    # --- Client poller ---
    POLL_INTERVAL_SECONDS = float(os.environ.get("POLL_INTERVAL_SECONDS", 5))

    # --- Identity ---
    # Header set by the upstream identity provider / auth proxy.
    IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-Authenticated-User")

    # --- Email (SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "TokFlo Store")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # defaults to MAIL_USERNAME

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "MONIME_SPACE_ID",
            "MONIME_WEBHOOK_SECRET",
            "APP_BASE_URL",
        ]
        # Only the token for the active environment is required
        if os.environ.get("MONIME_ENVIRONMENT", "test") == "live":
            required.append("MONIME_LIVE_API_TOKEN")
        else:
            required.append("MONIME_TEST_API_TOKEN")
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, fake gateway credentials."""

    TESTING = True
    DEBUG = False
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    MONIME_API_BASE_URL = "https://api.monime.test/v1"
    MONIME_ENVIRONMENT = "test"
    MONIME_TEST_API_TOKEN = "mon_test_fake"
    MONIME_LIVE_API_TOKEN = None
    MONIME_SPACE_ID = "spc_test_fake"
    MONIME_WEBHOOK_SECRET = "whsec_test_fake"
    PAYMENT_CURRENCY = "SLE"
    APP_BASE_URL = "http://localhost:5000"
    SELLER_SHARE_RATIO = "0.90"
    GATEWAY_TIMEOUT = 5
    CHECKOUT_CREATE_RETRIES = 2
    IDENTITY_HEADER = "X-Authenticated-User"
    MAIL_USERNAME = None  # never send real email in tests
    MAIL_PASSWORD = None
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

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
