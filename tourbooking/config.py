"""Application configuration, read from the environment."""
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Settings container. One instance is created at import time."""

    def __init__(self):
        self.environment = os.getenv("APP_ENV", "development")
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./tours.db")

        # ----- Auth / JWT -----
        self.jwt_secret = os.getenv("JWT_SECRET", "CHANGE_THIS_SECRET_IN_REAL_PROJECT")
        self.jwt_algorithm = "HS256"
        self.jwt_expires_in_days = int(os.getenv("JWT_EXPIRES_IN_DAYS", "90"))
        self.jwt_cookie_expires_in_days = int(os.getenv("JWT_COOKIE_EXPIRES_IN_DAYS", "90"))
        self.bcrypt_rounds = int(os.getenv("BCRYPT_ROUNDS", "12"))
        self.reset_code_ttl_minutes = 10

        # ----- Email -----
        self.email_host = os.getenv("EMAIL_HOST", "localhost")
        self.email_port = int(os.getenv("EMAIL_PORT", "25"))
        self.email_username = os.getenv("EMAIL_USERNAME")
        self.email_password = os.getenv("EMAIL_PASSWORD")
        self.email_from = os.getenv("EMAIL_FROM", "Tour Booking <hello@tourbooking.io>")

        # ----- Payments -----
        self.stripe_secret_key = os.getenv("STRIPE_SECRET_KEY", "")
        self.stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET", "")
        self.currency = os.getenv("PAYMENT_CURRENCY", "usd")

        # ----- Misc -----
        self.img_dir = os.getenv("IMG_DIR", "public/img")
        self.rate_limit = os.getenv("RATE_LIMIT", "100/hour")
        self.rate_limit_enabled = _env_bool("RATE_LIMIT_ENABLED", True)
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

    def is_production(self) -> bool:
        return self.environment == "production"

    def is_development(self) -> bool:
        return self.environment == "development"


settings = Settings()
