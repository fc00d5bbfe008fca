from __future__ import annotations

from typing import Optional

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

_SALT = "manage-subscription"


def _serializer() -> URLSafeTimedSerializer:
    secret = current_app.config.get("PORTAL_LINK_SECRET")
    if not secret:
        raise RuntimeError("PORTAL_LINK_SECRET is not set")
    return URLSafeTimedSerializer(secret, salt=_SALT)


def create_portal_token(email: str) -> str:
    return _serializer().dumps({"email": (email or "").strip().lower()})


def verify_portal_token(token: str, max_age: Optional[int] = None) -> Optional[str]:
    """Email address the token was issued for, or None when invalid/expired."""
    if not token:
        return None
    ttl = max_age if max_age is not None else int(current_app.config.get("PORTAL_LINK_TTL_SECONDS", 3600))
    try:
        data = _serializer().loads(token, max_age=ttl)
    except (SignatureExpired, BadSignature):
        return None
    email = data.get("email") if isinstance(data, dict) else None
    return email if isinstance(email, str) and email else None


def manage_subscription_url(email: str) -> str:
    base = (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")
    return f"{base}/manage-subscription?token={create_portal_token(email)}"
