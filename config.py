"""Configuration for the Flask app."""

import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration class."""

    FLASK_ENV = os.environ.get("FLASK_ENV")

    # Secret key for signing cookies
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # SQLAlchemy settings
    SQLALCHEMY_DATABASE_URI = os.environ.get("SQLALCHEMY_DATABASE_URI")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Application settings
    APP_NAME = "ConsentBit"
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL")

    # Logging
    LOG_TO_STDOUT = os.environ.get("LOG_TO_STDOUT", "false").lower() in ["true", "on", "1"]
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sentry settings
    SENTRY_DSN = os.environ.get("SENTRY_DSN")
    SENTRY_ENVIRONMENT = os.environ.get("SENTRY_ENVIRONMENT", "development")

    # Stripe settings
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    ENABLE_STRIPE_HEALTH_ENDPOINT = os.environ.get("ENABLE_STRIPE_HEALTH_ENDPOINT", "0") == "1"

    # Prices and redirect targets of the checkouts this service creates
    STRIPE_PRICE_MONTHLY = os.environ.get("STRIPE_PRICE_MONTHLY")
    STRIPE_PRICE_YEARLY = os.environ.get("STRIPE_PRICE_YEARLY")
    CHECKOUT_SUCCESS_URL = os.environ.get("CHECKOUT_SUCCESS_URL")
    CHECKOUT_CANCEL_URL = os.environ.get("CHECKOUT_CANCEL_URL")

    # Redis settings
    REDIS_URL = os.environ.get("REDIS_URL")
    REDIS_QUEUE_DEFAULT = os.environ.get("REDIS_QUEUE_DEFAULT", "default")
    REDIS_QUEUE_PROVISIONING = os.environ.get("REDIS_QUEUE_PROVISIONING", "provisioning_queue")

    # Provisioning queue settings
    QUEUE_MAX_ATTEMPTS = int(os.environ.get("QUEUE_MAX_ATTEMPTS", 3))
    QUEUE_BATCH_LIMIT = int(os.environ.get("QUEUE_BATCH_LIMIT", 10))
    QUEUE_STALE_SECONDS = int(os.environ.get("QUEUE_STALE_SECONDS", 300))
    QUEUE_TIME_BUDGET_SECONDS = float(os.environ.get("QUEUE_TIME_BUDGET_SECONDS", 25))
    SITE_BATCH_DELAY_SECONDS = float(os.environ.get("SITE_BATCH_DELAY_SECONDS", 0.5))

    # Refund sweep settings
    REFUND_GRACE_SECONDS = int(os.environ.get("REFUND_GRACE_SECONDS", 12 * 60 * 60))
    REFUND_BATCH_LIMIT = int(os.environ.get("REFUND_BATCH_LIMIT", 20))

    # The first period is paid by the one-time checkout, so subscriptions start in trial
    TRIAL_DAYS_MONTHLY = int(os.environ.get("TRIAL_DAYS_MONTHLY", 30))
    TRIAL_DAYS_YEARLY = int(os.environ.get("TRIAL_DAYS_YEARLY", 365))

    PLATFORM_DETECTION_TIMEOUT = float(os.environ.get("PLATFORM_DETECTION_TIMEOUT", 5))

    # Shared secret for the scheduler hitting the cron endpoints
    CRON_SECRET = os.environ.get("CRON_SECRET")

    @classmethod
    def init_app(cls, app):
        """Initialize the configuration for the Flask app."""
        pass


class DevelopmentConfig(Config):
    """Development configuration."""

    DEBUG = False


class TestingConfig(Config):
    """Testing configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test_dummy"
    STRIPE_PRICE_MONTHLY = "price_monthly"
    STRIPE_PRICE_YEARLY = "price_yearly"
    CHECKOUT_SUCCESS_URL = "https://app.example.com/checkout/success"
    CHECKOUT_CANCEL_URL = "https://app.example.com/checkout/cancel"
    REDIS_URL = None
    SITE_BATCH_DELAY_SECONDS = 0
    CRON_SECRET = "test-cron-secret"
    SENTRY_DSN = None


class ProductionConfig(Config):
    """Production configuration."""

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")

    @classmethod
    def init_app(cls, app):
        """Initialize the configuration for the Flask app."""
        Config.init_app(app)

        # Log to stderr
        import logging
        from logging import StreamHandler

        file_handler = StreamHandler()
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)


# Dictionary to easily access different configurations
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
