from __future__ import annotations

# -----------------------------------------------------------------------------
# Water projects + sponsorships.
# Both follow the same shape: a project (type/location/review status), a
# priced country list, and per-order-item donation rows that wait for admin
# review before disbursement.
# -----------------------------------------------------------------------------
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from alianah.extensions import db
from alianah.models.mixins import (
    COLLECTED_VIA_WEBSITE,
    PAYMENT_METHOD_WEBSITE_STRIPE,
    STATUS_PENDING,
    TimestampMixin,
)

PROJECT_TYPE_LABELS = {
    "WATER_PUMP": "Water Pump",
    "WATER_WELL": "Water Well",
    "WATER_TANK": "Water Tank",
    "WUDHU_AREA": "Wudhu Area",
    "ORPHANS": "Orphan Sponsorship",
    "HIFZ": "Hifz Student Sponsorship",
    "FAMILIES": "Family Sponsorship",
}


def project_type_label(project_type: Optional[str]) -> str:
    return PROJECT_TYPE_LABELS.get(project_type or "", (project_type or "").replace("_", " ").title())


class ProjectDonationMixin:
    """Columns shared by water-project and sponsorship donation rows."""

    id: Mapped[int] = mapped_column(primary_key=True)
    donor_id: Mapped[int] = mapped_column(db.ForeignKey("donors.id"), index=True, nullable=False)

    order_number: Mapped[Optional[str]] = mapped_column(db.String(32), index=True, nullable=True)
    order_item_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("order_items.id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
    )

    amount_pence: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    donation_type: Mapped[str] = mapped_column(db.String(10), nullable=False, default="GENERAL")
    payment_method: Mapped[str] = mapped_column(
        db.String(40), nullable=False, default=PAYMENT_METHOD_WEBSITE_STRIPE
    )
    collected_via: Mapped[str] = mapped_column(db.String(40), nullable=False, default=COLLECTED_VIA_WEBSITE)
    transaction_id: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        db.String(20),
        nullable=False,
        default=STATUS_PENDING,
        index=True,
        doc="PENDING / WAITING_TO_REVIEW / COMPLETED",
    )

    gift_aid: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    billing_address: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)
    billing_city: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True)
    billing_postcode: Mapped[Optional[str]] = mapped_column(db.String(20), nullable=True)
    billing_country: Mapped[Optional[str]] = mapped_column(db.String(80), nullable=True)

    email_sent: Mapped[bool] = mapped_column(
        db.Boolean,
        nullable=False,
        default=False,
        doc="Donor notification delivered; gates re-sends across re-finalization.",
    )
    report_sent: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)


# ──────────────────────────────────────────────────────────────────────────────
# Water
# ──────────────────────────────────────────────────────────────────────────────
class WaterProject(db.Model, TimestampMixin):
    __tablename__ = "water_projects"

    id: Mapped[int] = mapped_column(primary_key=True)
    project_type: Mapped[str] = mapped_column(db.String(40), nullable=False, index=True)
    location: Mapped[Optional[str]] = mapped_column(db.String(200), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(
        db.String(20),
        nullable=True,
        doc="NULL until the first paid donation puts it in WAITING_TO_REVIEW.",
    )
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)


class WaterProjectCountry(db.Model, TimestampMixin):
    __tablename__ = "water_project_countries"
    __table_args__ = (
        CheckConstraint("price_pence > 0", name="ck_water_country_price_pos"),
        Index("ix_water_country_type", "project_type", "country"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    project_type: Mapped[str] = mapped_column(db.String(40), nullable=False)
    country: Mapped[str] = mapped_column(db.String(80), nullable=False)
    price_pence: Mapped[int] = mapped_column(db.Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)


class WaterProjectDonation(db.Model, TimestampMixin, ProjectDonationMixin):
    __tablename__ = "water_project_donations"

    water_project_id: Mapped[int] = mapped_column(
        db.ForeignKey("water_projects.id"), index=True, nullable=False
    )
    country_id: Mapped[int] = mapped_column(db.ForeignKey("water_project_countries.id"), nullable=False)
    plaque_name: Mapped[Optional[str]] = mapped_column(db.String(160), nullable=True)

    donor: Mapped["Donor"] = relationship("Donor", lazy="joined")
    water_project: Mapped["WaterProject"] = relationship("WaterProject", lazy="joined")
    country: Mapped["WaterProjectCountry"] = relationship("WaterProjectCountry", lazy="joined")

    @property
    def project(self) -> "WaterProject":
        return self.water_project


# ──────────────────────────────────────────────────────────────────────────────
# Sponsorship
# ──────────────────────────────────────────────────────────────────────────────
class SponsorshipProject(db.Model, TimestampMixin):
    __tablename__ = "sponsorship_projects"

    id: Mapped[int] = mapped_column(primary_key=True)
    project_type: Mapped[str] = mapped_column(db.String(40), nullable=False, index=True)
    location: Mapped[Optional[str]] = mapped_column(db.String(200), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(db.String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)


class SponsorshipProjectCountry(db.Model, TimestampMixin):
    __tablename__ = "sponsorship_project_countries"
    __table_args__ = (
        CheckConstraint("price_pence > 0", name="ck_sponsorship_country_price_pos"),
        Index("ix_sponsorship_country_type", "project_type", "country"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    project_type: Mapped[str] = mapped_column(db.String(40), nullable=False)
    country: Mapped[str] = mapped_column(db.String(80), nullable=False)
    price_pence: Mapped[int] = mapped_column(db.Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)


class SponsorshipDonation(db.Model, TimestampMixin, ProjectDonationMixin):
    __tablename__ = "sponsorship_donations"

    sponsorship_project_id: Mapped[int] = mapped_column(
        db.ForeignKey("sponsorship_projects.id"), index=True, nullable=False
    )
    country_id: Mapped[int] = mapped_column(
        db.ForeignKey("sponsorship_project_countries.id"), nullable=False
    )

    donor: Mapped["Donor"] = relationship("Donor", lazy="joined")
    sponsorship_project: Mapped["SponsorshipProject"] = relationship("SponsorshipProject", lazy="joined")
    country: Mapped["SponsorshipProjectCountry"] = relationship("SponsorshipProjectCountry", lazy="joined")

    @property
    def project(self) -> "SponsorshipProject":
        return self.sponsorship_project


class SponsorshipReportPool(db.Model, TimestampMixin):
    """Pre-authored completion reports, handed out oldest-first to new sponsorships."""

    __tablename__ = "sponsorship_report_pool"
    __table_args__ = (
        Index("ix_report_pool_available", "sponsorship_project_id", "assigned_recurring_ref", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    sponsorship_project_id: Mapped[int] = mapped_column(
        db.ForeignKey("sponsorship_projects.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    pdf_url: Mapped[str] = mapped_column(db.String(500), nullable=False)

    assigned_donation_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("sponsorship_donations.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_recurring_ref: Mapped[Optional[str]] = mapped_column(
        db.String(200),
        nullable=True,
        doc="'<subscription id>:<period end>' of the sponsorship that claimed it.",
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    @property
    def is_available(self) -> bool:
        return self.assigned_donation_id is None and self.assigned_recurring_ref is None
