from __future__ import annotations

# -----------------------------------------------------------------------------
# Stripe webhook receiver
#   POST /api/webhooks/stripe   signed event delivery
#   GET  /api/webhooks/stripe   liveness
#
# 400: missing/invalid signature (nothing written)
# 500: handler failed; session rolled back so Stripe retries the delivery
# An event is recorded in stripe_events only after its handler returned, so a
# failed delivery is never mistaken for a duplicate.
# -----------------------------------------------------------------------------
from typing import Any, Dict

from flask import Blueprint, current_app, request
from sqlalchemy.exc import IntegrityError

from alianah.blueprints.common import json_error, json_response
from alianah.extensions import csrf, db, tx_commit, webhook_secrets
from alianah.models import StripeEvent
from alianah.services.stripe_helpers import object_id, sget
from alianah.services.stripe_webhooks import WebhookVerificationError, handle_event, verify_webhook

bp = Blueprint("webhooks", __name__)
csrf.exempt(bp)


def _already_processed(event_id: str) -> bool:
    if not event_id:
        return False
    return db.session.query(StripeEvent.id).filter(StripeEvent.event_id == event_id).first() is not None


def _record_event(event: Dict[str, Any]) -> None:
    event_id = str(event.get("id") or "")
    if not event_id:
        return
    db.session.add(
        StripeEvent(
            event_id=event_id[:120],
            type=str(event.get("type") or "")[:120],
            livemode=bool(event.get("livemode") or False),
            object_id=(object_id(sget(event, "data", "object")) or "")[:120] or None,
        )
    )
    try:
        tx_commit()
    except IntegrityError:
        # A concurrent delivery of the same event finished first.
        current_app.logger.info("webhooks: event %s already recorded", event_id)


@bp.get("/webhooks/stripe")
def stripe_webhook_alive():
    return json_response({"ok": True})


@bp.post("/webhooks/stripe")
def stripe_webhook():
    payload = request.get_data(cache=False, as_text=False)
    sig = (request.headers.get("Stripe-Signature") or "").strip()
    if not sig:
        return json_error("No signature", 400)

    secrets = webhook_secrets(current_app.config)
    if not secrets:
        current_app.logger.error("webhooks: no Stripe webhook secret configured")
        return json_error("Webhook secret not configured", 500)

    try:
        event = verify_webhook(
            payload,
            sig,
            secrets,
            tolerance=int(current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 300)),
        )
    except WebhookVerificationError as e:
        current_app.logger.warning("webhooks: rejected delivery: %s", e)
        return json_error(str(e), 400)

    event_id = str(event.get("id") or "")
    etype = str(event.get("type") or "")

    if _already_processed(event_id):
        current_app.logger.info("webhooks: duplicate event %s (%s)", event_id, etype)
        return json_response({"received": True, "duplicate": True})

    try:
        outcome = handle_event(event)
        _record_event(event)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("webhooks: %s %s processing failed (will retry)", etype, event_id)
        return json_error("Webhook handler failed", 500)

    current_app.logger.info("webhooks: %s %s -> %s", etype, event_id, outcome)
    return json_response({"received": True})
