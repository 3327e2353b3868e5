import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


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

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 300))
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # --- Product pricing (one-off website setup) ---
    STRIPE_PRODUCT_PRICE_CENTS = int(os.environ.get("STRIPE_PRODUCT_PRICE_CENTS", 19900))
    STRIPE_CURRENCY = os.environ.get("STRIPE_CURRENCY", "eur")
    STRIPE_PRODUCT_NAME = os.environ.get(
        "STRIPE_PRODUCT_NAME", "Professional Salon Website"
    )

    # --- Email ---
    MAIL_PROVIDER = os.environ.get("MAIL_PROVIDER", "resend")  # resend | smtp
    RESEND_API_KEY = os.environ.get("RESEND_API_KEY")
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "SalonPro")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS", "noreply@salonpro.app")
    MAIL_REPLY_TO = os.environ.get("MAIL_REPLY_TO", "support@salonpro.app")
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@salonpro.app")
    ADMIN_ALERT_WEBHOOK_URL = os.environ.get("ADMIN_ALERT_WEBHOOK_URL")

    # --- Email queue ---
    EMAIL_QUEUE_BACKEND = os.environ.get("EMAIL_QUEUE_BACKEND", "memory")  # memory | database
    EMAIL_QUEUE_AUTOSTART = _env_flag("EMAIL_QUEUE_AUTOSTART", "true")
    EMAIL_QUEUE_SCHEDULER = "thread"  # thread | manual
    EMAIL_QUEUE_POLL_SECONDS = float(os.environ.get("EMAIL_QUEUE_POLL_SECONDS", 30))
    EMAIL_QUEUE_BASE_DELAY_SECONDS = float(os.environ.get("EMAIL_QUEUE_BASE_DELAY_SECONDS", 5))
    EMAIL_QUEUE_MAX_DELAY_SECONDS = float(os.environ.get("EMAIL_QUEUE_MAX_DELAY_SECONDS", 300))
    EMAIL_QUEUE_SENT_RETENTION_SECONDS = float(
        os.environ.get("EMAIL_QUEUE_SENT_RETENTION_SECONDS", 60)
    )
    EMAIL_QUEUE_STALE_PROCESSING_SECONDS = float(
        os.environ.get("EMAIL_QUEUE_STALE_PROCESSING_SECONDS", 300)
    )

    # --- Fulfillment ---
    AUTO_LOGIN_TOKEN_TTL_MINUTES = int(os.environ.get("AUTO_LOGIN_TOKEN_TTL_MINUTES", 15))
    FULFILLMENT_TIMEOUT_SECONDS = float(os.environ.get("FULFILLMENT_TIMEOUT_SECONDS", 10))
    CLIENT_ONBOARDING_PATH = os.environ.get("CLIENT_ONBOARDING_PATH", "/client/onboarding")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "APP_BASE_URL",
        ]
        # Resend key is only required when Resend is the active provider
        if os.environ.get("MAIL_PROVIDER", "resend") == "resend":
            required.append("RESEND_API_KEY")
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, CSRF disabled, email queue driven by hand."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    APP_BASE_URL = "http://localhost:5000"
    MAIL_PROVIDER = "smtp"
    RESEND_API_KEY = None
    MAIL_USERNAME = None
    MAIL_PASSWORD = None
    ADMIN_ALERT_WEBHOOK_URL = None
    EMAIL_QUEUE_BACKEND = "memory"
    EMAIL_QUEUE_AUTOSTART = False
    EMAIL_QUEUE_SCHEDULER = "manual"  # tests drive the queue by hand
    WTF_CSRF_ENABLED = False  # disable CSRF for test forms
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    EMAIL_QUEUE_BACKEND = os.environ.get("EMAIL_QUEUE_BACKEND", "database")


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
