# alianah/__init__.py
# Alianah donations: Flask app factory
# - env-first config (python-dotenv never overrides real env vars)
# - request-id stamped on every log line and response
# - JSON error shape for /api routes

from __future__ import annotations

import logging
import os
import time
from typing import Any, Optional, Type, Union
from uuid import uuid4

import sentry_sdk
from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from werkzeug.exceptions import HTTPException, InternalServerError

# IMPORTANT: never override real env vars in prod
load_dotenv(override=False)

from alianah.config import CONFIG_BY_NAME  # noqa: E402
from alianah.extensions import db, init_all_extensions  # noqa: E402

ConfigLike = Union[str, Type[Any]]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _resolve_config(target: Optional[ConfigLike]) -> ConfigLike:
    """
    Choose config class.
    - If explicitly provided (class, short name or dotted path), respect it.
    - Else FLASK_CONFIG, else APP_ENV / FLASK_ENV, else development.
    """
    if target is None:
        target = (os.getenv("FLASK_CONFIG") or os.getenv("APP_ENV") or os.getenv("FLASK_ENV") or "development").strip()
    if isinstance(target, str) and target.lower() in CONFIG_BY_NAME:
        return CONFIG_BY_NAME[target.lower()]
    return target


def _json_error(message: str, status: int):
    resp = jsonify({"error": str(message), "request_id": getattr(g, "request_id", "-")})
    resp.status_code = int(status)
    return resp


def _wants_json_response() -> bool:
    if (request.path or "").startswith("/api/"):
        return True
    accept = (request.headers.get("Accept") or "").lower()
    return ("application/json" in accept) or bool(request.is_json)


def _parse_cors_origins(raw: Optional[str]):
    raw = (raw or "*").strip()
    if raw in {"", "*"}:
        return "*"
    if "," in raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return raw


# -----------------------------------------------------------------------------
# Logging with request_id
# -----------------------------------------------------------------------------
class _RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            record.request_id = getattr(g, "request_id", "-")
        except RuntimeError:
            # outside an app/request context (CLI, startup)
            record.request_id = "-"
        return True


def _configure_logging(app: Flask) -> None:
    fmt = "%(asctime)s [%(levelname)s] %(name)s [rid=%(request_id)s]: %(message)s"
    root = logging.getLogger()

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(_RequestIDFilter())
        root.addHandler(handler)
    else:
        for h in root.handlers:
            if not any(isinstance(f, _RequestIDFilter) for f in h.filters):
                h.addFilter(_RequestIDFilter())
            if not getattr(h, "formatter", None) or "%(request_id)s" not in getattr(h.formatter, "_fmt", ""):
                h.setFormatter(logging.Formatter(fmt))

    root.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    logging.getLogger("werkzeug").setLevel(str(app.config.get("WERKZEUG_LOG_LEVEL", "WARNING")).upper())
    app.logger.info("Loaded config: ENV=%s DEBUG=%s", app.config.get("ENV", "?"), app.debug)


# -----------------------------------------------------------------------------
# Integrations
# -----------------------------------------------------------------------------
def _init_sentry(app: Flask) -> None:
    dsn = (app.config.get("SENTRY_DSN") or "").strip()
    if not dsn:
        return
    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FlaskIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
        send_default_pii=False,
        environment=app.config.get("ENV", "development"),
        release=os.getenv("GIT_COMMIT"),
    )
    app.logger.info("Sentry initialized")


def _maybe_create_sqlite_tables(app: Flask) -> None:
    uri = (app.config.get("SQLALCHEMY_DATABASE_URI") or "").strip()
    if not uri.startswith("sqlite") or app.config.get("AUTO_CREATE_SQLITE") is not True:
        return
    with app.app_context():
        db.create_all()


# -----------------------------------------------------------------------------
# Request lifecycle + errors
# -----------------------------------------------------------------------------
def _register_request_lifecycle(app: Flask) -> None:
    @app.before_request
    def _bootstrap_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex
        g._start_ts = time.perf_counter()

    @app.after_request
    def _attach_request_headers(resp):
        resp.headers["X-Request-ID"] = getattr(g, "request_id", "-")
        start = getattr(g, "_start_ts", None)
        if start:
            resp.headers["X-Response-Time-ms"] = str(int((time.perf_counter() - start) * 1000))
        return resp


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _http_err(err: HTTPException):
        if _wants_json_response():
            return _json_error(err.description or err.name, err.code or 500)
        return err

    @app.errorhandler(Exception)
    def _uncaught(err: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        if _wants_json_response():
            return _json_error("Internal Server Error", 500)
        return InternalServerError()


def _register_health_endpoints(app: Flask) -> None:
    @app.get("/healthz")
    def _healthz():
        return {
            "status": "ok",
            "brand": app.config.get("BRAND_NAME"),
            "env": app.config.get("ENV", "unknown"),
            "request_id": getattr(g, "request_id", "-"),
        }


def _register_blueprints(app: Flask) -> None:
    from alianah.blueprints.checkout import bp as checkout_bp
    from alianah.blueprints.webhooks import bp as webhooks_bp

    app.register_blueprint(webhooks_bp, url_prefix="/api")
    app.register_blueprint(checkout_bp, url_prefix="/api")


# -----------------------------------------------------------------------------
# App Factory
# -----------------------------------------------------------------------------
def create_app(config_class: Optional[ConfigLike] = None) -> Flask:
    app = Flask(__name__)

    cfg = _resolve_config(config_class)
    app.config.from_object(cfg)
    init_hook = getattr(cfg, "init_app", None)
    if callable(init_hook):
        init_hook(app)

    app.url_map.strict_slashes = False
    app.config.setdefault("JSON_SORT_KEYS", False)

    _configure_logging(app)
    _init_sentry(app)

    init_all_extensions(app, cors_origins=_parse_cors_origins(app.config.get("CORS_ORIGINS")))
    _maybe_create_sqlite_tables(app)

    from alianah.filters import register_filters

    register_filters(app)

    _register_request_lifecycle(app)
    _register_error_handlers(app)
    _register_blueprints(app)
    _register_health_endpoints(app)

    from alianah.cli import register_cli

    register_cli(app)
    return app
