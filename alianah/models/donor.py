from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.orm import Mapped, mapped_column, validates

from alianah.extensions import db
from alianah.models.mixins import TimestampMixin


class Donor(db.Model, TimestampMixin):
    """A person who gives. One row per (lower-cased) email address."""

    __tablename__ = "donors"

    id: Mapped[int] = mapped_column(primary_key=True)

    email: Mapped[str] = mapped_column(
        db.String(254),
        unique=True,
        index=True,
        nullable=False,
        doc="Lower-cased, trimmed email; the dedup key.",
    )

    title: Mapped[Optional[str]] = mapped_column(db.String(20), nullable=True)
    first_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    phone: Mapped[Optional[str]] = mapped_column(db.String(40), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True)
    postcode: Mapped[Optional[str]] = mapped_column(db.String(20), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(db.String(80), nullable=True)

    @validates("email")
    def _normalize_email(self, _key: str, value: str) -> str:
        return (value or "").strip().lower()

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Donor {self.email}>"
