from __future__ import annotations

import logging
from typing import Optional

from alianah.extensions import db
from alianah.models import Donor

logger = logging.getLogger(__name__)

_CONTACT_FIELDS = ("title", "phone", "address", "city", "postcode", "country")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def find_donor(email: Optional[str]) -> Optional[Donor]:
    norm = normalize_email(email)
    if not norm:
        return None
    return db.session.query(Donor).filter(Donor.email == norm).first()


def find_or_create_donor(
    email: str,
    *,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    **contact: Optional[str],
) -> Donor:
    """
    Donor registry: one row per case-insensitive email.

    Names are overwritten when given (latest checkout wins). Contact fields
    only replace existing values when a non-empty value is supplied.
    The caller owns the transaction; this only flushes.
    """
    norm = normalize_email(email)
    if not norm:
        raise ValueError("donor email required")

    unknown = set(contact) - set(_CONTACT_FIELDS)
    if unknown:
        raise TypeError(f"unknown donor fields: {', '.join(sorted(unknown))}")

    donor = find_donor(norm)
    if donor is None:
        donor = Donor(
            email=norm,
            first_name=(first_name or "").strip(),
            last_name=(last_name or "").strip(),
            **{k: (v or None) for k, v in contact.items()},
        )
        db.session.add(donor)
        db.session.flush()
        logger.info("donors: created donor id=%s", donor.id)
        return donor

    if first_name and first_name.strip():
        donor.first_name = first_name.strip()
    if last_name and last_name.strip():
        donor.last_name = last_name.strip()
    for field, value in contact.items():
        if value:
            setattr(donor, field, value)
    db.session.flush()
    return donor
