from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from alianah.extensions import db
from alianah.models.mixins import TimestampMixin, utcnow


class StripeEvent(db.Model, TimestampMixin):
    """Webhook events whose handler ran to completion."""

    __tablename__ = "stripe_events"
    __table_args__ = (
        Index("ix_stripe_events_type_created", "type", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    event_id: Mapped[str] = mapped_column(
        db.String(120),
        unique=True,
        index=True,
        nullable=False,
        doc="Stripe event id (evt_...)",
    )

    type: Mapped[str] = mapped_column(
        db.String(120),
        index=True,
        nullable=False,
        doc="Stripe event type (payment_intent.succeeded, etc)",
    )

    livemode: Mapped[bool] = mapped_column(
        db.Boolean,
        nullable=False,
        default=False,
    )

    object_id: Mapped[Optional[str]] = mapped_column(
        db.String(120),
        nullable=True,
        index=True,
        doc="Commonly PI id (pi_...), session id (cs_...) or invoice id (in_...)",
    )

    processed_at: Mapped[datetime] = mapped_column(db.DateTime, nullable=False, default=utcnow)


class IdempotencyKey(db.Model, TimestampMixin):
    """
    Claim table for once-only side effects.

    A row for (scope, key) means the effect has been attempted; the unique
    constraint is what makes concurrent claimers lose.
    """

    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    scope: Mapped[str] = mapped_column(db.String(60), nullable=False)
    key: Mapped[str] = mapped_column(db.String(200), nullable=False)
