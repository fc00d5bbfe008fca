from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship

from alianah.extensions import db
from alianah.models.mixins import TimestampMixin


class Appeal(db.Model, TimestampMixin):
    __tablename__ = "appeals"

    id: Mapped[int] = mapped_column(primary_key=True)
    slug: Mapped[str] = mapped_column(db.String(120), unique=True, index=True, nullable=False)
    title: Mapped[str] = mapped_column(db.String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    fundraisers: Mapped[List["Fundraiser"]] = relationship("Fundraiser", back_populates="appeal")


class Fundraiser(db.Model, TimestampMixin):
    """A supporter page that attributes appeal donations to one person's campaign."""

    __tablename__ = "fundraisers"

    id: Mapped[int] = mapped_column(primary_key=True)
    appeal_id: Mapped[int] = mapped_column(db.ForeignKey("appeals.id"), index=True, nullable=False)
    appeal: Mapped["Appeal"] = relationship("Appeal", back_populates="fundraisers", lazy="joined")

    slug: Mapped[str] = mapped_column(db.String(120), unique=True, index=True, nullable=False)
    title: Mapped[str] = mapped_column(db.String(200), nullable=False)
    fundraiser_name: Mapped[str] = mapped_column(db.String(160), nullable=False)
    email: Mapped[str] = mapped_column(db.String(254), nullable=False)
    target_pence: Mapped[Optional[int]] = mapped_column(db.Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
