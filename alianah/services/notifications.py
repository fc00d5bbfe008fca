from __future__ import annotations

# -----------------------------------------------------------------------------
# Donor / fundraiser email notifications.
# Each function renders one template pair and sends inline via send_email.
# Returns False when mail is disabled; transport errors propagate so the
# caller decides whether they are fatal (the finalizer logs and moves on).
# -----------------------------------------------------------------------------
import logging
from typing import Any, Dict, List, Optional, Union

from flask import current_app

from alianah.extensions import send_email
from alianah.models import Donation, Order, SponsorshipDonation, WaterProjectDonation
from alianah.models.projects import project_type_label

logger = logging.getLogger(__name__)

ProjectDonation = Union[WaterProjectDonation, SponsorshipDonation]


def _brand() -> str:
    return current_app.config.get("BRAND_NAME") or "Alianah Humanity Welfare"


def _base_url() -> str:
    return (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")


def _order_lines(order: Order) -> List[Dict[str, Any]]:
    return [
        {
            "title": item.display_title,
            "amount_pence": item.amount_pence,
            "frequency": item.frequency,
            "donation_type": item.donation_type,
            "plaque_name": item.plaque_name,
        }
        for item in order.items
    ]


def send_donation_confirmation(order: Order, manage_subscription_url: Optional[str] = None) -> bool:
    """One receipt per order, listing every item."""
    ctx = {
        "brand": _brand(),
        "order": order,
        "donor_name": order.donor_first_name or order.donor_name or "Supporter",
        "lines": _order_lines(order),
        "manage_subscription_url": manage_subscription_url,
    }
    sent = send_email(
        f"Thank you for your donation ({order.order_number})",
        [order.donor_email],
        html_template="emails/donation_confirmation.html",
        text_template="emails/donation_confirmation.txt",
        context=ctx,
    )
    if sent:
        logger.info("notifications: confirmation sent order=%s", order.order_number)
    return sent


def _send_project_email(row: ProjectDonation, category: str) -> bool:
    project = row.project
    ctx = {
        "brand": _brand(),
        "category": category,
        "donation": row,
        "donor_name": row.donor.first_name or row.donor.full_name or "Supporter",
        "project_label": project_type_label(project.project_type if project else None),
        "location": project.location if project else None,
        "country": row.country.country if row.country else None,
        "plaque_name": getattr(row, "plaque_name", None),
    }
    subject = (
        f"Your water project donation ({row.order_number})"
        if category == "water"
        else f"Your sponsorship donation ({row.order_number})"
    )
    return send_email(
        subject,
        [row.donor.email],
        html_template="emails/project_donation.html",
        text_template="emails/project_donation.txt",
        context=ctx,
    )


def send_water_project_donation_email(row: WaterProjectDonation) -> bool:
    return _send_project_email(row, "water")


def send_sponsorship_donation_email(row: SponsorshipDonation) -> bool:
    return _send_project_email(row, "sponsorship")


def send_fundraiser_donation_notification(donation: Donation) -> bool:
    fundraiser = donation.fundraiser
    if fundraiser is None or not fundraiser.email:
        logger.info("notifications: donation %s has no fundraiser email", donation.id)
        return False

    donor_display = "An anonymous supporter" if donation.is_anonymous else (donation.donor.full_name or "A supporter")
    ctx = {
        "brand": _brand(),
        "fundraiser": fundraiser,
        "donation": donation,
        "donor_display": donor_display,
        "fundraiser_url": f"{_base_url()}/fundraise/{fundraiser.slug}",
    }
    return send_email(
        f"New donation to {fundraiser.title}",
        [fundraiser.email],
        html_template="emails/fundraiser_donation.html",
        text_template="emails/fundraiser_donation.txt",
        context=ctx,
    )


def resume_url(order: Order) -> str:
    return f"{_base_url()}/checkout?resume={order.order_number}"


def send_abandoned_checkout_email(order: Order, *, reminder: int = 1) -> bool:
    ctx = {
        "brand": _brand(),
        "order": order,
        "donor_name": order.donor_first_name or "there",
        "lines": _order_lines(order),
        "resume_url": resume_url(order),
        "reminder": reminder,
    }
    subject = (
        "You left a donation in your basket"
        if reminder == 1
        else "Your donation is still waiting for you"
    )
    return send_email(
        subject,
        [order.donor_email],
        html_template="emails/abandoned_checkout.html",
        text_template="emails/abandoned_checkout.txt",
        context=ctx,
    )
