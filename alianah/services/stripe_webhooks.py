from __future__ import annotations

# -----------------------------------------------------------------------------
# Stripe webhook: signature verification + per-event-type handlers.
#
# Handlers take the event's data.object (plain dict from the verified JSON
# body) and return a short outcome string for logging. They raise on DB
# errors; the blueprint rolls back and answers 500 so Stripe retries.
# -----------------------------------------------------------------------------
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import stripe
from sqlalchemy import update as sa_update

from alianah.extensions import db, tx_commit
from alianah.models import Donation, RecurringDonation
from alianah.models.mixins import STATUS_FAILED, STATUS_REFUNDED, utcnow
from alianah.services.finalize import finalize_order_by_order_number
from alianah.services.report_pool import assign_reports_for_subscription
from alianah.services.stripe_helpers import (
    invoice_subscription_id,
    object_id,
    sget,
    subscription_period_end,
)

logger = logging.getLogger(__name__)


class WebhookVerificationError(Exception):
    """Signature header missing/invalid, or body not a Stripe event."""


def verify_webhook(payload: bytes, sig_header: str, secrets: List[str], tolerance: int = 300) -> Dict[str, Any]:
    """
    Try each signing secret in order; first match wins.

    Several secrets are configured when live and test endpoints (or a
    rotated secret) deliver to the same URL.
    """
    if not sig_header:
        raise WebhookVerificationError("No signature")
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise WebhookVerificationError("Body is not UTF-8") from e

    verified = False
    for secret in secrets:
        try:
            stripe.WebhookSignature.verify_header(text, sig_header, secret, tolerance)
        except stripe.SignatureVerificationError:
            continue
        verified = True
        break

    if not verified:
        raise WebhookVerificationError("Invalid signature")

    try:
        event = json.loads(text)
    except ValueError as e:
        raise WebhookVerificationError("Invalid payload") from e
    if not isinstance(event, dict) or not event.get("type"):
        raise WebhookVerificationError("Invalid payload")
    return event


# ----------------------------
# Payment success
# ----------------------------
def _order_number(obj: Any) -> Optional[str]:
    value = sget(obj, "metadata", "orderNumber")
    return str(value).strip() if value else None


def handle_checkout_session_completed(session: Dict[str, Any]) -> str:
    order_number = _order_number(session)
    if not order_number:
        return "ignored:no-order-number"

    email = sget(session, "customer_details", "email") or sget(session, "customer_email")

    if sget(session, "mode") == "subscription":
        sub_id = object_id(sget(session, "subscription"))
        next_date = None
        if sub_id:
            next_date = subscription_period_end(stripe.Subscription.retrieve(sub_id))
        finalize_order_by_order_number(
            order_number,
            paid_at=utcnow(),
            payment_ref=sub_id,
            is_subscription=True,
            customer_email=email,
            next_payment_date=next_date,
        )
        return "finalized:subscription"

    finalize_order_by_order_number(
        order_number,
        paid_at=utcnow(),
        payment_ref=object_id(sget(session, "payment_intent")),
        is_subscription=False,
        customer_email=email,
    )
    return "finalized:payment"


def handle_payment_intent_succeeded(intent: Dict[str, Any]) -> str:
    order_number = _order_number(intent)
    if not order_number:
        return "ignored:no-order-number"

    finalize_order_by_order_number(
        order_number,
        paid_at=utcnow(),
        payment_ref=object_id(intent),
        is_subscription=False,
        customer_email=sget(intent, "receipt_email"),
    )
    return "finalized:payment_intent"


def handle_invoice_payment_succeeded(invoice: Dict[str, Any]) -> str:
    sub_id = invoice_subscription_id(invoice)
    if not sub_id:
        return "ignored:no-subscription"

    subscription = stripe.Subscription.retrieve(sub_id)
    order_number = _order_number(subscription)
    if not order_number:
        return "ignored:no-order-number"

    period_end = subscription_period_end(subscription)
    finalize_order_by_order_number(
        order_number,
        paid_at=utcnow(),
        payment_ref=sub_id,
        is_subscription=True,
        customer_email=sget(invoice, "customer_email"),
        next_payment_date=period_end,
    )

    if sget(invoice, "billing_reason") == "subscription_create":
        assigned = assign_reports_for_subscription(order_number, sub_id, period_end)
        return f"finalized:invoice:first:reports={assigned}"
    return "finalized:invoice:renewal"


# ----------------------------
# Failures + refunds
# ----------------------------
def _mark_recurring_failed(sub_id: Optional[str]) -> int:
    if not sub_id:
        return 0
    res = db.session.execute(
        sa_update(RecurringDonation)
        .where(RecurringDonation.subscription_id == sub_id)
        .values(status=STATUS_FAILED, updated_at=utcnow())
    )
    tx_commit()
    return int(getattr(res, "rowcount", 0) or 0)


def handle_subscription_deleted(subscription: Dict[str, Any]) -> str:
    n = _mark_recurring_failed(object_id(subscription))
    return f"recurring_failed={n}"


def handle_invoice_payment_failed(invoice: Dict[str, Any]) -> str:
    n = _mark_recurring_failed(invoice_subscription_id(invoice))
    return f"recurring_failed={n}"


def _mark_refunded(pi_id: Optional[str]) -> int:
    if not pi_id:
        return 0
    res = db.session.execute(
        sa_update(Donation)
        .where(Donation.transaction_id == pi_id, Donation.status != STATUS_REFUNDED)
        .values(status=STATUS_REFUNDED, updated_at=utcnow())
    )
    tx_commit()
    return int(getattr(res, "rowcount", 0) or 0)


def handle_charge_refunded(charge: Dict[str, Any]) -> str:
    n = _mark_refunded(object_id(sget(charge, "payment_intent")))
    return f"refunded={n}"


def handle_refund_updated(refund: Dict[str, Any]) -> str:
    if sget(refund, "status") != "succeeded":
        return "ignored:refund-not-succeeded"
    n = _mark_refunded(object_id(sget(refund, "payment_intent")))
    return f"refunded={n}"


EVENT_HANDLERS: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "checkout.session.completed": handle_checkout_session_completed,
    "payment_intent.succeeded": handle_payment_intent_succeeded,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "charge.refunded": handle_charge_refunded,
    "refund.updated": handle_refund_updated,
}


def handle_event(event: Dict[str, Any]) -> str:
    etype = str(event.get("type") or "")
    handler = EVENT_HANDLERS.get(etype)
    if handler is None:
        return "ignored:unhandled-type"
    obj = sget(event, "data", "object", default={})
    return handler(obj)
