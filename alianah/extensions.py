import logging
import time
from typing import Any, Dict, Iterable, List, Optional

import stripe
from flask import current_app, render_template
from flask_cors import CORS
from flask_mail import Mail, Message
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

log = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Core singletons
# ─────────────────────────────────────────────────────────────
db = SQLAlchemy()
migrate = Migrate()
mail = Mail()
csrf = CSRFProtect()
cors = CORS()


# ─────────────────────────────────────────────────────────────
# Safe DB helpers
# ─────────────────────────────────────────────────────────────
def tx_commit() -> None:
    """Commit or roll back and re-raise. Used where a failed write must abort the caller."""
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# ─────────────────────────────────────────────────────────────
# Email helper
# ─────────────────────────────────────────────────────────────
def mail_enabled() -> bool:
    return bool(current_app.config.get("MAIL_ENABLED"))


def send_email(
    subject: str,
    recipients: List[str],
    *,
    html_template: Optional[str] = None,
    text_template: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
    sender: Optional[str] = None,
    max_retries: int = 2,
    retry_backoff: float = 0.5,
) -> bool:
    """
    Render and send one message inline.

    Returns False (after a warning) when mail is disabled. Raises the last
    transport error once retries are exhausted; callers decide whether that
    is fatal.
    """
    if not mail_enabled():
        log.warning("Mail disabled; skipping %r to %s", subject, ", ".join(recipients))
        return False

    cleaned = [r.strip() for r in recipients if r and r.strip()]
    if not cleaned:
        raise ValueError("send_email: no recipients")

    ctx = context or {}
    html = render_template(html_template, **ctx) if html_template else None
    body = render_template(text_template, **ctx) if text_template else None

    msg = Message(
        subject=subject,
        recipients=cleaned,
        sender=sender or current_app.config.get("MAIL_DEFAULT_SENDER"),
        html=html,
        body=body,
    )

    attempts = 0
    while True:
        try:
            mail.send(msg)
            return True
        except Exception as e:
            attempts += 1
            if attempts > max_retries:
                raise
            log.warning("Mail send failed (attempt %s/%s): %s", attempts, max_retries, e)
            time.sleep(float(retry_backoff) * attempts)


# ─────────────────────────────────────────────────────────────
# Stripe initialization
# ─────────────────────────────────────────────────────────────
def _guess_stripe_mode(api_key: Optional[str]) -> str:
    if not api_key:
        return "disabled"
    if api_key.startswith(("sk_live_", "rk_live_")):
        return "live"
    if api_key.startswith(("sk_test_", "rk_test_")):
        return "test"
    return "unknown"


def init_stripe(app: Any) -> None:
    api_key = (app.config.get("STRIPE_SECRET_KEY") or "").strip()

    if not api_key:
        app.logger.warning("Stripe NOT initialized: missing STRIPE_SECRET_KEY")
        return

    stripe.api_key = api_key
    stripe.max_network_retries = int(app.config.get("STRIPE_MAX_NETWORK_RETRIES", 2))
    if app.config.get("STRIPE_API_VERSION"):
        stripe.api_version = app.config["STRIPE_API_VERSION"]

    app.logger.info("Stripe initialized (%s mode)", _guess_stripe_mode(api_key))


def webhook_secrets(config: Dict[str, Any]) -> List[str]:
    """
    Ordered, de-duplicated webhook signing secrets.

    Order: inline secret, live, test, then the comma-separated list.
    """
    raw: Iterable[Any] = [
        config.get("STRIPE_WEBHOOK_SECRET"),
        config.get("STRIPE_WEBHOOK_SECRET_LIVE"),
        config.get("STRIPE_WEBHOOK_SECRET_TEST"),
        *str(config.get("STRIPE_WEBHOOK_SECRETS") or "").split(","),
    ]
    out: List[str] = []
    for v in raw:
        s = str(v or "").strip()
        if s and s not in out:
            out.append(s)
    return out


# ─────────────────────────────────────────────────────────────
# Init all extensions
# ─────────────────────────────────────────────────────────────
def init_all_extensions(app: Any, *, cors_origins: Any = "*") -> None:
    db.init_app(app)
    migrate.init_app(app, db, compare_type=True, render_as_batch=True)
    mail.init_app(app)
    csrf.init_app(app)

    # Browser rule: cannot use credentials with wildcard origin
    cors.init_app(
        app,
        resources={r"/api/*": {"origins": cors_origins}},
        supports_credentials=cors_origins != "*",
    )

    init_stripe(app)


__all__ = [
    "db",
    "migrate",
    "mail",
    "csrf",
    "cors",
    "tx_commit",
    "mail_enabled",
    "send_email",
    "init_stripe",
    "webhook_secrets",
    "init_all_extensions",
]
