from __future__ import annotations

# -----------------------------------------------------------------------------
# Order + OrderItem
# A checkout attempt, persisted PENDING before Stripe confirms payment.
# Items are immutable snapshots of what the donor put in the basket.
# -----------------------------------------------------------------------------
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from alianah.extensions import db
from alianah.models.mixins import (
    FREQUENCY_ONE_OFF,
    RECURRING_FREQUENCIES,
    STATUS_PENDING,
    TimestampMixin,
)


class Order(db.Model, TimestampMixin):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_pence >= 0", name="ck_orders_total_nonneg"),
        Index("ix_orders_status_created", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    order_number: Mapped[str] = mapped_column(
        db.String(32),
        unique=True,
        index=True,
        nullable=False,
        doc="Human-readable donation number (786-1########).",
    )

    status: Mapped[str] = mapped_column(
        db.String(20),
        nullable=False,
        default=STATUS_PENDING,
        doc="PENDING / ABANDONED / COMPLETED",
    )

    # ---- Financials (pence) ----
    subtotal_pence: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    fees_pence: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    total_pence: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    cover_fees: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    # ---- Preferences ----
    gift_aid: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    marketing_email: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    marketing_sms: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    # ---- Donor snapshot ----
    donor_first_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    donor_last_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    donor_email: Mapped[str] = mapped_column(db.String(254), nullable=False, index=True)
    donor_phone: Mapped[Optional[str]] = mapped_column(db.String(40), nullable=True)
    donor_address: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)
    donor_city: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True)
    donor_postcode: Mapped[Optional[str]] = mapped_column(db.String(20), nullable=True)
    donor_country: Mapped[Optional[str]] = mapped_column(db.String(80), nullable=True)

    # ---- Billing snapshot (copied onto donation rows) ----
    billing_address: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)
    billing_city: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True)
    billing_postcode: Mapped[Optional[str]] = mapped_column(db.String(20), nullable=True)
    billing_country: Mapped[Optional[str]] = mapped_column(db.String(80), nullable=True)

    abandoned_email_2_sent_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def donor_name(self) -> str:
        return f"{self.donor_first_name or ''} {self.donor_last_name or ''}".strip()

    @property
    def billing_snapshot(self) -> Dict[str, Optional[str]]:
        return {
            "billing_address": self.billing_address,
            "billing_city": self.billing_city,
            "billing_postcode": self.billing_postcode,
            "billing_country": self.billing_country,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Order {self.order_number} {self.status} £{self.total_pence / 100:,.2f}>"


class OrderItem(db.Model, TimestampMixin):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("amount_pence > 0", name="ck_order_items_amount_pos"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    order_id: Mapped[int] = mapped_column(
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    order: Mapped["Order"] = relationship("Order", back_populates="items")

    # ---- Target (exactly one of appeal / water / sponsorship) ----
    appeal_id: Mapped[Optional[int]] = mapped_column(db.ForeignKey("appeals.id"), nullable=True)
    fundraiser_id: Mapped[Optional[int]] = mapped_column(db.ForeignKey("fundraisers.id"), nullable=True)
    product_id: Mapped[Optional[str]] = mapped_column(db.String(64), nullable=True)

    water_project_id: Mapped[Optional[int]] = mapped_column(db.ForeignKey("water_projects.id"), nullable=True)
    water_project_country_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("water_project_countries.id"), nullable=True
    )
    plaque_name: Mapped[Optional[str]] = mapped_column(db.String(160), nullable=True)

    sponsorship_project_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("sponsorship_projects.id"), nullable=True
    )
    sponsorship_country_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("sponsorship_project_countries.id"), nullable=True
    )
    sponsorship_project_type: Mapped[Optional[str]] = mapped_column(db.String(40), nullable=True)

    # ---- Snapshot ----
    appeal_title: Mapped[str] = mapped_column(db.String(200), nullable=False, default="")
    product_name: Mapped[Optional[str]] = mapped_column(db.String(200), nullable=True)
    frequency: Mapped[str] = mapped_column(db.String(10), nullable=False, default=FREQUENCY_ONE_OFF)
    donation_type: Mapped[str] = mapped_column(db.String(10), nullable=False, default="GENERAL")
    amount_pence: Mapped[int] = mapped_column(db.Integer, nullable=False)
    is_anonymous: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    @property
    def is_recurring(self) -> bool:
        return self.frequency in RECURRING_FREQUENCIES

    @property
    def kind(self) -> str:
        if self.water_project_id:
            return "water"
        if self.sponsorship_project_id:
            return "sponsorship"
        return "appeal"

    @property
    def display_title(self) -> str:
        if self.product_name:
            return f"{self.appeal_title} • {self.product_name}"
        return self.appeal_title

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "appealId": self.appeal_id,
            "appealTitle": self.appeal_title,
            "fundraiserId": self.fundraiser_id,
            "productId": self.product_id,
            "productName": self.product_name,
            "frequency": self.frequency,
            "donationType": self.donation_type,
            "amountPence": self.amount_pence,
            "isAnonymous": self.is_anonymous,
            "waterProjectId": self.water_project_id,
            "waterProjectCountryId": self.water_project_country_id,
            "plaqueName": self.plaque_name,
            "sponsorshipProjectId": self.sponsorship_project_id,
            "sponsorshipCountryId": self.sponsorship_country_id,
            "sponsorshipProjectType": self.sponsorship_project_type,
        }
        return {k: v for k, v in data.items() if v is not None}
