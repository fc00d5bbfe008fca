from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy import update as sa_update

from alianah.extensions import db, tx_commit
from alianah.models import Donation, Order
from alianah.models.mixins import STATUS_ABANDONED, STATUS_COMPLETED, STATUS_PENDING, STATUS_REFUNDED, utcnow
from alianah.services.notifications import send_abandoned_checkout_email
from alianah.services.stripe_helpers import sget

logger = logging.getLogger(__name__)

FIRST_REMINDER_AFTER = timedelta(hours=1)
SECOND_REMINDER_AFTER = timedelta(hours=24)
MAX_REFUND_SCAN = 200


# ----------------------------
# Abandoned checkouts
# ----------------------------
def _guarded_update(order_id: int, expected_status: str, **values: Any) -> bool:
    """Write only while the order still has expected_status; a concurrent payment wins."""
    res = db.session.execute(
        sa_update(Order)
        .where(Order.id == order_id, Order.status == expected_status)
        .values(**values)
    )
    if getattr(res, "rowcount", 0):
        tx_commit()
        return True
    db.session.rollback()
    return False


def remind_abandoned_checkouts(now: Optional[datetime] = None) -> Dict[str, int]:
    """
    PENDING orders older than an hour get a first reminder and become
    ABANDONED; ABANDONED orders older than a day get one more. Orders are
    never expired or deleted here.
    """
    now = now or utcnow()
    stats = {"processedFirst": 0, "sentFirst": 0, "processedSecond": 0, "sentSecond": 0}

    pending: List[Order] = (
        db.session.query(Order)
        .filter(Order.status == STATUS_PENDING, Order.created_at <= now - FIRST_REMINDER_AFTER)
        .order_by(Order.id)
        .all()
    )
    stats["processedFirst"] = len(pending)
    for order in pending:
        try:
            sent = send_abandoned_checkout_email(order, reminder=1)
        except Exception:
            logger.exception("maintenance: first reminder failed for %s", order.order_number)
            continue
        stats["sentFirst"] += int(sent)
        if not _guarded_update(order.id, STATUS_PENDING, status=STATUS_ABANDONED):
            logger.info("maintenance: %s left PENDING during reminder; status kept", order.order_number)

    second: List[Order] = (
        db.session.query(Order)
        .filter(
            Order.status == STATUS_ABANDONED,
            Order.abandoned_email_2_sent_at.is_(None),
            Order.created_at <= now - SECOND_REMINDER_AFTER,
        )
        .order_by(Order.id)
        .all()
    )
    stats["processedSecond"] = len(second)
    for order in second:
        try:
            sent = send_abandoned_checkout_email(order, reminder=2)
        except Exception:
            logger.exception("maintenance: second reminder failed for %s", order.order_number)
            continue
        if sent:
            stats["sentSecond"] += 1
            _guarded_update(order.id, STATUS_ABANDONED, abandoned_email_2_sent_at=now)

    logger.info("maintenance: abandoned reminders %s", stats)
    return stats


# ----------------------------
# Refund reconciliation
# ----------------------------
def _is_refunded(intent: Any) -> bool:
    if (sget(intent, "amount_refunded") or 0) > 0:
        return True
    charge = sget(intent, "latest_charge")
    if isinstance(charge, str):
        return False
    return bool(sget(charge, "refunded")) or (sget(charge, "amount_refunded") or 0) > 0


def reconcile_refunds(limit: int = 50) -> Dict[str, Any]:
    """Catch refunds whose webhook was missed by asking Stripe directly."""
    limit = max(1, min(int(limit), MAX_REFUND_SCAN))
    donations: List[Donation] = (
        db.session.query(Donation)
        .filter(Donation.status == STATUS_COMPLETED, Donation.transaction_id.like("pi\\_%", escape="\\"))
        .order_by(Donation.created_at.desc())
        .limit(limit)
        .all()
    )

    updated = 0
    updated_orders: List[str] = []
    for donation in donations:
        try:
            intent = stripe.PaymentIntent.retrieve(donation.transaction_id, expand=["latest_charge"])
        except stripe.StripeError as e:
            logger.warning("maintenance: refund check failed for donation %s: %s", donation.id, e)
            continue
        if not _is_refunded(intent):
            continue
        donation.status = STATUS_REFUNDED
        tx_commit()
        updated += 1
        if donation.order_number:
            updated_orders.append(donation.order_number)

    result = {"scanned": len(donations), "updated": updated, "updatedOrders": updated_orders}
    logger.info("maintenance: refund reconcile scanned=%s updated=%s", result["scanned"], result["updated"])
    return result
