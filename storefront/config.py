import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _env_int(name, default):
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    ENV = os.getenv("FLASK_ENV", "development")
    TESTING = False

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-change-me-please-32-bytes")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=1)

    # user sessions (token + expiry persisted in usersessions)
    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)
    SESSION_RENEW_WINDOW_MINUTES = _env_int("SESSION_RENEW_WINDOW_MINUTES", 60)

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_PATH = os.getenv("LOG_PATH", "")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # mail is skipped unless all of these are set
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = _env_int("SMTP_PORT", 587)
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "1") not in {"0", "false", "False"}
    MAIL_FROM = os.getenv("MAIL_FROM", "")
    MAIL_ENABLED = True

    STORE_NAME = os.getenv("STORE_NAME", "Storefront")
    STORE_EMAIL = os.getenv("STORE_EMAIL", "")
    STORE_PHONE = os.getenv("STORE_PHONE", "")
    STORE_PICKUP_ADDRESS = os.getenv("STORE_PICKUP_ADDRESS", "")

    @staticmethod
    def init_app(app):
        uri = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
        if not uri:
            os.makedirs(app.instance_path, exist_ok=True)
            uri = f"sqlite:///{os.path.join(app.instance_path, 'app.db')}"
        app.config.setdefault("SQLALCHEMY_DATABASE_URI", uri)


class TestConfig(Config):
    TESTING = True
    ENV = "testing"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET_KEY = "test-secret-key-that-is-long-enough-for-hs256"
    MAIL_ENABLED = False
    LOG_PATH = ""

    @staticmethod
    def init_app(app):
        pass
