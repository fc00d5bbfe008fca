# alianah/models/mixins.py
"""Shared SQLAlchemy mixins and enum-like constants."""

from datetime import datetime, timezone

from alianah.extensions import db


def utcnow() -> datetime:
    """Naive UTC timestamp (columns are stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    """Adds created_at and updated_at columns with auto-refresh behavior."""

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    updated_at = db.Column(
        db.DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


# ---- Order / item vocabulary ----
FREQUENCY_ONE_OFF = "ONE_OFF"
FREQUENCY_MONTHLY = "MONTHLY"
FREQUENCY_YEARLY = "YEARLY"
FREQUENCIES = (FREQUENCY_ONE_OFF, FREQUENCY_MONTHLY, FREQUENCY_YEARLY)
RECURRING_FREQUENCIES = (FREQUENCY_MONTHLY, FREQUENCY_YEARLY)

DONATION_TYPES = ("GENERAL", "SADAQAH", "ZAKAT", "LILLAH")

DONATION_TYPE_LABELS = {
    "GENERAL": "General Donation",
    "SADAQAH": "Sadaqah",
    "ZAKAT": "Zakat",
    "LILLAH": "Lillah",
}

# ---- Status vocabulary ----
STATUS_PENDING = "PENDING"
STATUS_ABANDONED = "ABANDONED"
STATUS_COMPLETED = "COMPLETED"
STATUS_WAITING_TO_REVIEW = "WAITING_TO_REVIEW"
STATUS_REFUNDED = "REFUNDED"
STATUS_FAILED = "FAILED"
STATUS_ACTIVE = "ACTIVE"
STATUS_CANCELLED = "CANCELLED"

# ---- Payment bookkeeping ----
PAYMENT_METHOD_WEBSITE_STRIPE = "WEBSITE_STRIPE"
COLLECTED_VIA_WEBSITE = "WEBSITE"
