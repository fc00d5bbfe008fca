from __future__ import annotations

# -----------------------------------------------------------------------------
# Public checkout API (JSON)
#   POST /api/checkout                  hosted Checkout Session
#   POST /api/checkout/express          wallet PaymentIntent (one-off only)
#   POST /api/checkout/confirm          client-side confirmation fallback
#   GET  /api/checkout/order/<id>       order status polling
#   GET  /api/checkout/resume           basket + donor for an unfinished order
#   POST /api/stripe/portal-session     manage-subscription portal link
# -----------------------------------------------------------------------------
import stripe
from flask import Blueprint, current_app, request

from alianah.blueprints.common import json_error, json_response, request_json
from alianah.extensions import csrf, db
from alianah.services import checkout as checkout_service
from alianah.services.checkout import CheckoutValidationError
from alianah.services.portal_tokens import verify_portal_token
from alianah.services.stripe_helpers import object_id, sget

bp = Blueprint("checkout", __name__)
csrf.exempt(bp)


def _stripe_message(e: Exception) -> str:
    return getattr(e, "user_message", None) or str(e) or "Payment provider error"


def _run(create, label: str):
    """Shared error mapping for the order-creating endpoints."""
    data = request_json()
    try:
        return json_response(create(data))
    except CheckoutValidationError as e:
        db.session.rollback()
        return json_error(str(e), 400)
    except stripe.StripeError as e:
        db.session.rollback()
        current_app.logger.error("checkout: Stripe error (%s): %s", label, _stripe_message(e), exc_info=True)
        return json_error(_stripe_message(e), 502)


@bp.post("/checkout")
def create_checkout():
    return _run(checkout_service.create_checkout_session, "session")


@bp.post("/checkout/express")
def create_express_checkout():
    return _run(checkout_service.create_express_checkout, "express")


@bp.post("/checkout/confirm")
def confirm_checkout():
    data = request_json()
    try:
        result = checkout_service.confirm_payment(data)
    except CheckoutValidationError as e:
        db.session.rollback()
        return json_error(str(e), 400)
    except stripe.StripeError as e:
        db.session.rollback()
        current_app.logger.error("checkout: Stripe error (confirm): %s", _stripe_message(e), exc_info=True)
        return json_error(_stripe_message(e), 502)

    if not result.found:
        return json_error("Order not found", 404)
    return json_response({"success": True, "orderNumber": result.order_number})


@bp.get("/checkout/order/<int:order_id>")
def checkout_order_status(order_id: int):
    status = checkout_service.order_status(order_id)
    if status is None:
        return json_error("Order not found", 404)
    return json_response(status)


@bp.get("/checkout/resume")
def resume_checkout():
    order_number = (request.args.get("orderNumber") or "").strip()
    if not order_number:
        return json_error("orderNumber required", 400)
    try:
        payload = checkout_service.resume_order(order_number)
    except CheckoutValidationError as e:
        return json_error(str(e), 400)
    if payload is None:
        return json_error("Order not found", 404)
    return json_response(payload)


@bp.post("/stripe/portal-session")
def create_portal_session():
    data = request_json()
    email = verify_portal_token(str(data.get("token") or ""))
    if not email:
        return json_error("Invalid or expired link", 401)

    base = (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")
    try:
        customers = stripe.Customer.list(email=email, limit=1)
        customer_id = object_id(sget(customers, "data", 0))
        if not customer_id:
            return json_error("No subscription found for this email", 404)
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=f"{base}/manage-subscription",
        )
    except stripe.StripeError as e:
        current_app.logger.error("checkout: Stripe error (portal): %s", _stripe_message(e), exc_info=True)
        return json_error(_stripe_message(e), 502)

    return json_response({"url": sget(session, "url")})
