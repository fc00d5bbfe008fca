from __future__ import annotations

from alianah.extensions import db
from alianah.models.appeal import Appeal, Fundraiser
from alianah.models.donation import Donation, RecurringDonation
from alianah.models.donor import Donor
from alianah.models.order import Order, OrderItem
from alianah.models.projects import (
    SponsorshipDonation,
    SponsorshipProject,
    SponsorshipProjectCountry,
    SponsorshipReportPool,
    WaterProject,
    WaterProjectCountry,
    WaterProjectDonation,
)
from alianah.models.stripe_event import IdempotencyKey, StripeEvent

__all__ = [
    "db",
    "Appeal",
    "Fundraiser",
    "Donation",
    "RecurringDonation",
    "Donor",
    "Order",
    "OrderItem",
    "SponsorshipDonation",
    "SponsorshipProject",
    "SponsorshipProjectCountry",
    "SponsorshipReportPool",
    "WaterProject",
    "WaterProjectCountry",
    "WaterProjectDonation",
    "IdempotencyKey",
    "StripeEvent",
]
