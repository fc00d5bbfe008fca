from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def sget(obj: Any, *path: Any, default: Any = None) -> Any:
    """
    Walk a Stripe payload by keys / list indexes.

    Works on plain dicts (webhook JSON), StripeObject instances and lists.
    Returns `default` as soon as a step is missing or None.
    """
    cur = obj
    for key in path:
        if cur is None:
            return default
        try:
            cur = cur[key]
        except (KeyError, IndexError, TypeError, AttributeError):
            return default
    return default if cur is None else cur


def object_id(value: Any) -> Optional[str]:
    """`"pi_123"` or an expanded `{"id": "pi_123", ...}` -> `"pi_123"`."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    oid = sget(value, "id")
    return str(oid) if oid else None


def from_unix(ts: Any) -> Optional[datetime]:
    if ts in (None, "", 0):
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        return None


def subscription_period_end(subscription: Any) -> Optional[datetime]:
    # Newer API versions moved current_period_end onto subscription items.
    raw = sget(subscription, "current_period_end")
    if raw is None:
        raw = sget(subscription, "items", "data", 0, "current_period_end")
    return from_unix(raw)


def invoice_subscription_id(invoice: Any) -> Optional[str]:
    sub = sget(invoice, "subscription")
    if sub is None:
        sub = sget(invoice, "parent", "subscription_details", "subscription")
    return object_id(sub)
