from __future__ import annotations

# -----------------------------------------------------------------------------
# Checkout
#
# Validates a basket, persists a PENDING Order with its items and creates the
# Stripe object the browser completes:
#   - express (wallet buttons): a PaymentIntent, one-off items only
#   - standard: a hosted Checkout Session, subscription mode when any item recurs
# Donation rows are NOT created here; finalize.py does that once Stripe
# reports the payment.
# -----------------------------------------------------------------------------
import logging
import secrets
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

import stripe
from flask import current_app

from alianah.extensions import db, tx_commit
from alianah.models import (
    Appeal,
    Order,
    OrderItem,
    SponsorshipProject,
    SponsorshipProjectCountry,
    WaterProject,
    WaterProjectCountry,
)
from alianah.models.mixins import (
    DONATION_TYPES,
    FREQUENCIES,
    FREQUENCY_MONTHLY,
    FREQUENCY_ONE_OFF,
    FREQUENCY_YEARLY,
    RECURRING_FREQUENCIES,
    STATUS_ABANDONED,
    STATUS_PENDING,
    utcnow,
)
from alianah.services.donors import find_donor, find_or_create_donor, normalize_email
from alianah.services.finalize import FinalizeResult, finalize_order_by_order_number
from alianah.services.stripe_helpers import object_id, sget, subscription_period_end

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "786-1"
FEE_RATE = Decimal("0.012")
FEE_FLAT_PENCE = 20
_PAYMENT_OK_STATUSES = ("succeeded", "processing")


class CheckoutValidationError(ValueError):
    """Bad basket / donor input. The message is safe to show to the donor."""


# ----------------------------
# Small utilities
# ----------------------------
_TRUTHY = {"1", "true", "yes", "on", "y"}


def _truthy(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    return str(v).strip().lower() in _TRUTHY


def _str(v: Any, limit: int = 255) -> Optional[str]:
    s = str(v).strip() if v is not None else ""
    return s[:limit] if s else None


def _id_opt(v: Any, field: str) -> Optional[int]:
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    if isinstance(v, bool):
        raise CheckoutValidationError(f"{field} must be an id")
    try:
        return int(str(v).strip())
    except ValueError as e:
        raise CheckoutValidationError(f"{field} must be an id") from e


def _pence(v: Any, field: str, *, allow_zero: bool = False) -> int:
    if isinstance(v, bool) or not isinstance(v, (int, float)) or int(v) != v:
        raise CheckoutValidationError(f"{field} must be a whole number of pence")
    n = int(v)
    if n < 0 or (n == 0 and not allow_zero):
        raise CheckoutValidationError(f"{field} must be positive")
    return n


def _is_email(s: str) -> bool:
    s = (s or "").strip()
    return ("@" in s) and ("." in s.split("@")[-1])


def compute_fees(subtotal_pence: int, cover_fees: bool) -> int:
    """Processing fee the donor opts to cover: 1.2% + 20p, half-up."""
    if not cover_fees or subtotal_pence <= 0:
        return 0
    pct = (Decimal(subtotal_pence) * FEE_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(pct) + FEE_FLAT_PENCE


def generate_order_number(max_attempts: int = 15) -> str:
    for _ in range(max_attempts):
        candidate = f"{ORDER_NUMBER_PREFIX}{secrets.randbelow(100_000_000):08d}"
        taken = db.session.query(Order.id).filter(Order.order_number == candidate).first()
        if taken is None:
            return candidate
    raise RuntimeError("could not allocate a unique order number")


# ----------------------------
# Request parsing
# ----------------------------
@dataclass(frozen=True)
class BasketItem:
    appeal_title: str
    frequency: str
    donation_type: str
    amount_pence: int
    appeal_id: Optional[int] = None
    fundraiser_id: Optional[int] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    is_anonymous: bool = False
    water_project_id: Optional[int] = None
    water_project_country_id: Optional[int] = None
    plaque_name: Optional[str] = None
    sponsorship_project_id: Optional[int] = None
    sponsorship_country_id: Optional[int] = None
    sponsorship_project_type: Optional[str] = None

    @property
    def is_recurring(self) -> bool:
        return self.frequency in RECURRING_FREQUENCIES

    @classmethod
    def from_payload(cls, data: Any) -> "BasketItem":
        if not isinstance(data, dict):
            raise CheckoutValidationError("Each item must be an object")

        title = _str(data.get("appealTitle"), 200)
        if not title:
            raise CheckoutValidationError("Each item needs an appealTitle")

        frequency = str(data.get("frequency") or "").strip().upper()
        if frequency not in FREQUENCIES:
            raise CheckoutValidationError(f"Unsupported frequency: {data.get('frequency')!r}")

        donation_type = str(data.get("donationType") or "GENERAL").strip().upper()
        if donation_type not in DONATION_TYPES:
            raise CheckoutValidationError(f"Unsupported donation type: {data.get('donationType')!r}")

        item = cls(
            appeal_title=title,
            frequency=frequency,
            donation_type=donation_type,
            amount_pence=_pence(data.get("amountPence"), "amountPence"),
            appeal_id=_id_opt(data.get("appealId"), "appealId"),
            fundraiser_id=_id_opt(data.get("fundraiserId"), "fundraiserId"),
            product_id=_str(data.get("productId"), 64),
            product_name=_str(data.get("productName"), 200),
            is_anonymous=_truthy(data.get("isAnonymous")),
            water_project_id=_id_opt(data.get("waterProjectId"), "waterProjectId"),
            water_project_country_id=_id_opt(data.get("waterProjectCountryId"), "waterProjectCountryId"),
            plaque_name=_str(data.get("plaqueName"), 160),
            sponsorship_project_id=_id_opt(data.get("sponsorshipProjectId"), "sponsorshipProjectId"),
            sponsorship_country_id=_id_opt(data.get("sponsorshipCountryId"), "sponsorshipCountryId"),
            sponsorship_project_type=_str(data.get("sponsorshipProjectType"), 40),
        )

        targets = [t for t in (item.appeal_id, item.water_project_id, item.sponsorship_project_id) if t]
        if len(targets) != 1:
            raise CheckoutValidationError("Each item needs exactly one of appealId, waterProjectId or sponsorshipProjectId")
        return item


def _parse_items(data: Dict[str, Any]) -> List[BasketItem]:
    raw = data.get("items")
    if not isinstance(raw, list) or not raw:
        raise CheckoutValidationError("Basket is empty")
    return [BasketItem.from_payload(i) for i in raw]


@dataclass(frozen=True)
class DonorDetails:
    first_name: str
    last_name: str
    email: str
    title: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = None
    billing_address: Optional[str] = None
    billing_city: Optional[str] = None
    billing_postcode: Optional[str] = None
    billing_country: Optional[str] = None
    marketing_email: bool = False
    marketing_sms: bool = False
    gift_aid: bool = False
    cover_fees: bool = False

    @classmethod
    def from_payload(cls, data: Any) -> "DonorDetails":
        if not isinstance(data, dict):
            raise CheckoutValidationError("donor details required")

        first = _str(data.get("firstName"), 120)
        last = _str(data.get("lastName"), 120)
        email = normalize_email(data.get("email"))
        if not first or not last:
            raise CheckoutValidationError("First and last name are required")
        if not _is_email(email):
            raise CheckoutValidationError("A valid email address is required")

        return cls(
            first_name=first,
            last_name=last,
            email=email[:254],
            title=_str(data.get("title"), 20),
            phone=_str(data.get("phone"), 40),
            address=_str(data.get("address")),
            city=_str(data.get("city"), 120),
            postcode=_str(data.get("postcode"), 20),
            country=_str(data.get("country"), 80),
            billing_address=_str(data.get("billingAddress")),
            billing_city=_str(data.get("billingCity"), 120),
            billing_postcode=_str(data.get("billingPostcode"), 20),
            billing_country=_str(data.get("billingCountry"), 80),
            marketing_email=_truthy(data.get("marketingEmail")),
            marketing_sms=_truthy(data.get("marketingSMS")),
            gift_aid=_truthy(data.get("giftAid")),
            cover_fees=_truthy(data.get("coverFees")),
        )


# ----------------------------
# Validation against the catalogue
# ----------------------------
def _check_priced_item(
    label: str,
    project_model: Any,
    country_model: Any,
    project_id: Optional[int],
    country_id: Optional[int],
    amount_pence: int,
) -> None:
    if not project_id or not country_id:
        raise CheckoutValidationError(f"{label} item is missing required information")

    project = db.session.get(project_model, project_id)
    country = db.session.get(country_model, country_id)
    if project is None or not project.is_active:
        raise CheckoutValidationError(f"{label} not found")
    if country is None or not country.is_active:
        raise CheckoutValidationError(f"{label} country not found")
    if country.project_type != project.project_type:
        raise CheckoutValidationError(f"{label} country does not match project type")
    if amount_pence != country.price_pence:
        raise CheckoutValidationError(f"{label} amount does not match selected country price")


def validate_items(items: List[BasketItem]) -> None:
    for item in items:
        if item.water_project_id:
            _check_priced_item(
                "Water project",
                WaterProject,
                WaterProjectCountry,
                item.water_project_id,
                item.water_project_country_id,
                item.amount_pence,
            )
        elif item.sponsorship_project_id:
            _check_priced_item(
                "Sponsorship",
                SponsorshipProject,
                SponsorshipProjectCountry,
                item.sponsorship_project_id,
                item.sponsorship_country_id,
                item.amount_pence,
            )
        elif db.session.get(Appeal, item.appeal_id) is None:
            raise CheckoutValidationError("Appeal not found")


def _checked_subtotal(data: Dict[str, Any], items: List[BasketItem]) -> int:
    subtotal = sum(i.amount_pence for i in items)
    claimed = data.get("subtotalPence")
    if claimed is not None and _pence(claimed, "subtotalPence", allow_zero=True) != subtotal:
        raise CheckoutValidationError("subtotalPence does not match basket items")
    return subtotal


# ----------------------------
# Order persistence
# ----------------------------
def _build_order(
    *,
    order_number: str,
    items: List[BasketItem],
    subtotal: int,
    fees: int,
    cover_fees: bool,
    donor: DonorDetails,
) -> Order:
    order = Order(
        order_number=order_number,
        status=STATUS_PENDING,
        subtotal_pence=subtotal,
        fees_pence=fees,
        total_pence=subtotal + fees,
        cover_fees=cover_fees,
        gift_aid=donor.gift_aid,
        marketing_email=donor.marketing_email,
        marketing_sms=donor.marketing_sms,
        donor_first_name=donor.first_name,
        donor_last_name=donor.last_name,
        donor_email=donor.email,
        donor_phone=donor.phone,
        donor_address=donor.address,
        donor_city=donor.city,
        donor_postcode=donor.postcode,
        donor_country=donor.country,
        billing_address=donor.billing_address,
        billing_city=donor.billing_city,
        billing_postcode=donor.billing_postcode,
        billing_country=donor.billing_country,
    )
    for i in items:
        order.items.append(
            OrderItem(
                appeal_id=i.appeal_id,
                fundraiser_id=i.fundraiser_id,
                product_id=i.product_id,
                water_project_id=i.water_project_id,
                water_project_country_id=i.water_project_country_id,
                plaque_name=i.plaque_name,
                sponsorship_project_id=i.sponsorship_project_id,
                sponsorship_country_id=i.sponsorship_country_id,
                sponsorship_project_type=i.sponsorship_project_type,
                appeal_title=i.appeal_title,
                product_name=i.product_name,
                frequency=i.frequency,
                donation_type=i.donation_type,
                amount_pence=i.amount_pence,
                is_anonymous=i.is_anonymous,
            )
        )
    db.session.add(order)
    db.session.flush()
    return order


def _currency() -> str:
    return str(current_app.config.get("CURRENCY") or "gbp").lower()


def _base_url() -> str:
    return (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")


def _order_metadata(order: Order, **extra: str) -> Dict[str, str]:
    return {"orderId": str(order.id), "orderNumber": order.order_number, **extra}


# ----------------------------
# Express checkout (PaymentIntent)
# ----------------------------
def create_express_checkout(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Wallet checkout: the donor's name/address arrive later from the wallet,
    so the order starts with the donor's stored name or an "Express Donor"
    placeholder.
    """
    items = _parse_items(data)
    if any(i.frequency != FREQUENCY_ONE_OFF for i in items):
        raise CheckoutValidationError("Express checkout is only available for one-off donations")

    email = normalize_email(data.get("email"))
    if not _is_email(email):
        raise CheckoutValidationError("A valid email address is required")

    validate_items(items)
    subtotal = _checked_subtotal(data, items)
    cover_fees = _truthy(data.get("coverFees"))
    fees = compute_fees(subtotal, cover_fees)

    existing = find_donor(email)
    if existing is not None and existing.first_name:
        first, last = existing.first_name, existing.last_name or ""
    else:
        first, last = "Express", "Donor"
    find_or_create_donor(email, first_name=first, last_name=last)

    donor = DonorDetails(first_name=first, last_name=last, email=email, cover_fees=cover_fees)
    order = _build_order(
        order_number=generate_order_number(),
        items=items,
        subtotal=subtotal,
        fees=fees,
        cover_fees=cover_fees,
        donor=donor,
    )

    intent = stripe.PaymentIntent.create(
        amount=order.total_pence,
        currency=_currency(),
        automatic_payment_methods={"enabled": True},
        receipt_email=email,
        description=f"Donation {order.order_number}",
        metadata=_order_metadata(order, frequency=FREQUENCY_ONE_OFF),
        idempotency_key=f"express-{order.order_number}",
    )
    client_secret = sget(intent, "client_secret")
    if not client_secret:
        raise RuntimeError("Stripe did not return a client_secret")

    tx_commit()
    logger.info("checkout: express order %s total=%s", order.order_number, order.total_pence)
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "paymentClientSecret": client_secret,
        "paymentIntentId": object_id(intent),
    }


# ----------------------------
# Standard checkout (Checkout Session)
# ----------------------------
def _line_items(order: Order) -> List[Dict[str, Any]]:
    currency = _currency()
    lines: List[Dict[str, Any]] = []
    for item in order.items:
        price_data: Dict[str, Any] = {
            "currency": currency,
            "unit_amount": item.amount_pence,
            "product_data": {"name": item.display_title[:250]},
        }
        if item.frequency == FREQUENCY_MONTHLY:
            price_data["recurring"] = {"interval": "month"}
        elif item.frequency == FREQUENCY_YEARLY:
            price_data["recurring"] = {"interval": "year"}
        lines.append({"price_data": price_data, "quantity": 1})

    if order.fees_pence:
        lines.append(
            {
                "price_data": {
                    "currency": currency,
                    "unit_amount": order.fees_pence,
                    "product_data": {"name": "Transaction fees"},
                },
                "quantity": 1,
            }
        )
    return lines


def create_checkout_session(data: Dict[str, Any]) -> Dict[str, Any]:
    items = _parse_items(data)
    frequencies = {i.frequency for i in items if i.is_recurring}
    if len(frequencies) > 1:
        raise CheckoutValidationError("Monthly and yearly donations must be checked out separately")

    donor = DonorDetails.from_payload(data.get("donor"))
    validate_items(items)
    subtotal = _checked_subtotal(data, items)
    fees = compute_fees(subtotal, donor.cover_fees)

    find_or_create_donor(
        donor.email,
        first_name=donor.first_name,
        last_name=donor.last_name,
        title=donor.title,
        phone=donor.phone,
        address=donor.address,
        city=donor.city,
        postcode=donor.postcode,
        country=donor.country,
    )
    order = _build_order(
        order_number=generate_order_number(),
        items=items,
        subtotal=subtotal,
        fees=fees,
        cover_fees=donor.cover_fees,
        donor=donor,
    )

    metadata = _order_metadata(order)
    base = _base_url()
    params: Dict[str, Any] = {
        "mode": "subscription" if frequencies else "payment",
        "line_items": _line_items(order),
        "customer_email": donor.email,
        "client_reference_id": order.order_number,
        "metadata": metadata,
        "success_url": f"{base}/success/{order.id}?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base}/checkout?resume={order.order_number}",
    }
    if frequencies:
        params["subscription_data"] = {"metadata": metadata}
    else:
        params["payment_intent_data"] = {"metadata": metadata, "receipt_email": donor.email}

    session = stripe.checkout.Session.create(**params, idempotency_key=f"checkout-{order.order_number}")

    tx_commit()
    logger.info("checkout: order %s mode=%s total=%s", order.order_number, params["mode"], order.total_pence)
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "sessionId": object_id(session),
        "checkoutUrl": sget(session, "url"),
    }


# ----------------------------
# Client-side confirmation fallback
# ----------------------------
def _confirm_subscription(sub_id: str) -> Tuple[bool, Optional[str], Any]:
    sub = stripe.Subscription.retrieve(sub_id, expand=["latest_invoice.payment_intent", "customer"])
    invoice_paid = sget(sub, "latest_invoice", "status") == "paid"
    pi_status = sget(sub, "latest_invoice", "payment_intent", "status")
    return invoice_paid or pi_status in _PAYMENT_OK_STATUSES, sget(sub, "metadata", "orderNumber"), sub


def confirm_payment(data: Dict[str, Any]) -> FinalizeResult:
    order_number = _str(data.get("orderNumber"), 32)
    if not order_number or len(order_number) < 5:
        raise CheckoutValidationError("orderNumber required")

    pi_id = _str(data.get("paymentIntentId"), 120)
    sub_id = _str(data.get("subscriptionId"), 120)
    if not pi_id and not sub_id:
        raise CheckoutValidationError("paymentIntentId or subscriptionId required")

    if sub_id:
        ok, meta_order, sub = _confirm_subscription(sub_id)
    else:
        intent = stripe.PaymentIntent.retrieve(pi_id)
        ok = sget(intent, "status") in _PAYMENT_OK_STATUSES
        meta_order = sget(intent, "metadata", "orderNumber")

    # Intents and subscriptions we create always carry the order number.
    if meta_order != order_number:
        raise CheckoutValidationError("Payment does not belong to this order")
    if not ok:
        raise CheckoutValidationError("Payment not completed")

    if sub_id:
        return finalize_order_by_order_number(
            order_number,
            paid_at=utcnow(),
            payment_ref=sub_id,
            is_subscription=True,
            customer_email=sget(sub, "customer", "email"),
            next_payment_date=subscription_period_end(sub),
        )
    return finalize_order_by_order_number(
        order_number,
        paid_at=utcnow(),
        payment_ref=pi_id,
        is_subscription=False,
        customer_email=sget(intent, "receipt_email"),
    )


# ----------------------------
# Order lookups
# ----------------------------
def order_status(order_id: int) -> Optional[Dict[str, Any]]:
    order = db.session.get(Order, order_id)
    if order is None:
        return None
    return {"status": order.status, "orderNumber": order.order_number}


def resume_order(order_number: str) -> Optional[Dict[str, Any]]:
    order = db.session.query(Order).filter(Order.order_number == order_number).first()
    if order is None:
        return None
    if order.status not in (STATUS_PENDING, STATUS_ABANDONED):
        raise CheckoutValidationError("This order can no longer be resumed")

    donor = {
        "firstName": order.donor_first_name,
        "lastName": order.donor_last_name,
        "email": order.donor_email,
        "phone": order.donor_phone,
        "address": order.donor_address,
        "city": order.donor_city,
        "postcode": order.donor_postcode,
        "country": order.donor_country,
    }
    return {
        "orderNumber": order.order_number,
        "items": [i.as_dict() for i in order.items],
        "donor": {k: v for k, v in donor.items() if v is not None},
    }
