from __future__ import annotations

# -----------------------------------------------------------------------------
# Appeal donations + recurring (subscription) records.
# Pence-based. One Donation per order item; legacy rows (created at checkout
# by the older single-table flow) carry order_number but no order_item_id.
# -----------------------------------------------------------------------------
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from alianah.extensions import db
from alianah.models.mixins import (
    COLLECTED_VIA_WEBSITE,
    FREQUENCY_ONE_OFF,
    PAYMENT_METHOD_WEBSITE_STRIPE,
    STATUS_PENDING,
    TimestampMixin,
)


class Donation(db.Model, TimestampMixin):
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount_pence >= 0", name="ck_donations_amount_nonneg"),
        Index("ix_donations_order_status", "order_number", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    donor_id: Mapped[int] = mapped_column(db.ForeignKey("donors.id"), index=True, nullable=False)
    donor: Mapped["Donor"] = relationship("Donor", lazy="joined")

    appeal_id: Mapped[Optional[int]] = mapped_column(db.ForeignKey("appeals.id"), index=True, nullable=True)
    appeal: Mapped[Optional["Appeal"]] = relationship("Appeal")

    fundraiser_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("fundraisers.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    fundraiser: Mapped[Optional["Fundraiser"]] = relationship("Fundraiser")
    product_id: Mapped[Optional[str]] = mapped_column(db.String(64), nullable=True)

    # ---- Order linkage ----
    order_number: Mapped[Optional[str]] = mapped_column(db.String(32), index=True, nullable=True)
    order_item_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("order_items.id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
        doc="Set by finalization; NULL on legacy checkout-time rows.",
    )

    # ---- Financials ----
    amount_pence: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    donation_type: Mapped[str] = mapped_column(db.String(10), nullable=False, default="GENERAL")
    frequency: Mapped[str] = mapped_column(db.String(10), nullable=False, default=FREQUENCY_ONE_OFF)
    payment_method: Mapped[str] = mapped_column(
        db.String(40), nullable=False, default=PAYMENT_METHOD_WEBSITE_STRIPE
    )
    collected_via: Mapped[str] = mapped_column(db.String(40), nullable=False, default=COLLECTED_VIA_WEBSITE)
    is_anonymous: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    # ---- Payment tracking (Stripe) ----
    status: Mapped[str] = mapped_column(
        db.String(20),
        nullable=False,
        default=STATUS_PENDING,
        index=True,
        doc="PENDING / COMPLETED / REFUNDED / FAILED",
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(
        db.String(120),
        nullable=True,
        index=True,
        doc="PaymentIntent id (pi_...) or subscription id (sub_...).",
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    # ---- Gift Aid + billing snapshot ----
    gift_aid: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    billing_address: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)
    billing_city: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True)
    billing_postcode: Mapped[Optional[str]] = mapped_column(db.String(20), nullable=True)
    billing_country: Mapped[Optional[str]] = mapped_column(db.String(80), nullable=True)

    @property
    def amount_pounds(self) -> float:
        return round((self.amount_pence or 0) / 100.0, 2)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "orderNumber": self.order_number,
            "amountPence": int(self.amount_pence or 0),
            "status": self.status,
            "transactionId": self.transaction_id,
            "fundraiserId": self.fundraiser_id,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Donation {self.id} {self.status} £{self.amount_pounds:,.2f}>"


class RecurringDonation(db.Model, TimestampMixin):
    """One row per recurring order item; rows of one checkout share a subscription id."""

    __tablename__ = "recurring_donations"
    __table_args__ = (
        UniqueConstraint("subscription_id", "order_item_id", name="uq_recurring_sub_item"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    donor_id: Mapped[int] = mapped_column(db.ForeignKey("donors.id"), index=True, nullable=False)
    donor: Mapped["Donor"] = relationship("Donor")

    appeal_id: Mapped[Optional[int]] = mapped_column(db.ForeignKey("appeals.id"), nullable=True)
    water_project_id: Mapped[Optional[int]] = mapped_column(db.ForeignKey("water_projects.id"), nullable=True)
    sponsorship_project_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("sponsorship_projects.id"), nullable=True
    )
    order_item_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("order_items.id", ondelete="SET NULL"), nullable=True
    )
    order_number: Mapped[Optional[str]] = mapped_column(db.String(32), index=True, nullable=True)

    amount_pence: Mapped[int] = mapped_column(db.Integer, nullable=False)
    donation_type: Mapped[str] = mapped_column(db.String(10), nullable=False, default="GENERAL")
    frequency: Mapped[str] = mapped_column(db.String(10), nullable=False)
    payment_method: Mapped[str] = mapped_column(
        db.String(40), nullable=False, default=PAYMENT_METHOD_WEBSITE_STRIPE
    )

    subscription_id: Mapped[Optional[str]] = mapped_column(
        db.String(120),
        index=True,
        nullable=True,
        doc="Stripe subscription id (sub_...).",
    )
    status: Mapped[str] = mapped_column(
        db.String(20),
        nullable=False,
        default=STATUS_PENDING,
        index=True,
        doc="PENDING / ACTIVE / FAILED / CANCELLED",
    )
    last_payment_date: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    next_payment_date: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
