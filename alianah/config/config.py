# alianah/config/config.py
# Canonical configuration (env-first, production-safe)

from __future__ import annotations

import os
from typing import Optional


# ----------------------------
# Env helpers
# ----------------------------
_TRUTHY = {"1", "true", "yes", "on", "y"}
_FALSY = {"0", "false", "no", "off", "n"}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    return default


def _int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(str(v).strip())
    except ValueError:
        return default


def _clean_base_url(v: Optional[str]) -> str:
    return (v or "").strip().rstrip("/")


# ----------------------------
# Config classes
# ----------------------------
class BaseConfig:
    """
    Env-first config:
    - all important settings can be overridden via environment variables
    - safe defaults for local dev
    """

    ENV = (_env("APP_ENV") or _env("FLASK_ENV") or "base").strip().lower()

    DEBUG = _bool("FLASK_DEBUG", False)
    TESTING = False

    SECRET_KEY = _env("SECRET_KEY", "dev-change-me")
    LOG_LEVEL = _env("LOG_LEVEL", "INFO")
    BRAND_NAME = _env("BRAND_NAME", "Alianah Humanity Welfare")

    # Public links in emails (resume checkout, manage subscription, fundraiser pages)
    PUBLIC_BASE_URL = _clean_base_url(_env("PUBLIC_BASE_URL", "http://localhost:5000"))
    CORS_ORIGINS = _env("CORS_ORIGINS", "*")

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = _env("SQLALCHEMY_DATABASE_URI", _env("DATABASE_URL", "sqlite:///alianah-dev.db"))
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    AUTO_CREATE_SQLITE = _bool("AUTO_CREATE_SQLITE", True)

    # Stripe
    STRIPE_SECRET_KEY = _env("STRIPE_SECRET_KEY", "")
    STRIPE_API_VERSION = _env("STRIPE_API_VERSION")
    STRIPE_MAX_NETWORK_RETRIES = _int("STRIPE_MAX_NETWORK_RETRIES", 2)
    STRIPE_WEBHOOK_SECRET = _env("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_WEBHOOK_SECRET_LIVE = _env("STRIPE_WEBHOOK_SECRET_LIVE", "")
    STRIPE_WEBHOOK_SECRET_TEST = _env("STRIPE_WEBHOOK_SECRET_TEST", "")
    STRIPE_WEBHOOK_SECRETS = _env("STRIPE_WEBHOOK_SECRETS", "")
    STRIPE_WEBHOOK_TOLERANCE = _int("STRIPE_WEBHOOK_TOLERANCE", 300)
    CURRENCY = _env("CURRENCY", "gbp")

    # Mail (Flask-Mail). MAIL_PASSWORD is the provider API key for SMTP relays.
    MAIL_SERVER = _env("MAIL_SERVER", "")
    MAIL_PORT = _int("MAIL_PORT", 587)
    MAIL_USE_TLS = _bool("MAIL_USE_TLS", True)
    MAIL_USE_SSL = _bool("MAIL_USE_SSL", False)
    MAIL_USERNAME = _env("MAIL_USERNAME")
    MAIL_PASSWORD = _env("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = _env("MAIL_DEFAULT_SENDER", "noreply@alianah.org")
    MAIL_ENABLED = bool(MAIL_SERVER)

    # Manage-subscription links
    PORTAL_LINK_SECRET = _env("PORTAL_LINK_SECRET", "")
    PORTAL_LINK_TTL_SECONDS = _int("PORTAL_LINK_TTL_SECONDS", 60 * 60)

    # Optional Sentry
    SENTRY_DSN = _env("SENTRY_DSN", "")

    @classmethod
    def init_app(cls, app) -> None:
        """
        Optional hook for factory boot hardening.
        Called from create_app() after app.config.from_object(...)
        """
        uri = str(app.config.get("SQLALCHEMY_DATABASE_URI") or "")

        if uri.startswith("sqlite:"):
            opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
            connect_args = dict(opts.get("connect_args") or {})
            connect_args.setdefault("check_same_thread", False)
            opts["connect_args"] = connect_args
            app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    DEBUG = False

    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False}}
    WTF_CSRF_ENABLED = False
    AUTO_CREATE_SQLITE = False

    PUBLIC_BASE_URL = "https://donate.example.org"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = ""
    STRIPE_WEBHOOK_SECRET_LIVE = "whsec_live_secret"
    STRIPE_WEBHOOK_SECRET_TEST = "whsec_test_secret"
    STRIPE_WEBHOOK_SECRETS = ""

    MAIL_SERVER = "localhost"
    MAIL_ENABLED = True
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "noreply@alianah.org"

    PORTAL_LINK_SECRET = "portal-test-secret"
    SENTRY_DSN = ""


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False
    PREFERRED_URL_SCHEME = "https"

    @classmethod
    def init_app(cls, app) -> None:
        super().init_app(app)

        # ---- Production guardrails (fail fast) ----
        sk = app.config.get("SECRET_KEY")
        if not sk or sk == "dev-change-me":
            raise RuntimeError("SECRET_KEY must be set to a strong random value in production.")

        base = (app.config.get("PUBLIC_BASE_URL") or "").strip()
        if base.startswith("http://"):
            raise RuntimeError("PUBLIC_BASE_URL must be https:// in production.")

        if not app.config.get("PORTAL_LINK_SECRET"):
            raise RuntimeError("PORTAL_LINK_SECRET must be set in production.")
