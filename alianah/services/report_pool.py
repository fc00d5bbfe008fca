from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from alianah.extensions import db, tx_commit
from alianah.models import Order, SponsorshipDonation, SponsorshipProject, SponsorshipReportPool
from alianah.models.mixins import utcnow
from alianah.services.idempotency import claim

logger = logging.getLogger(__name__)

SCOPE_REPORT_POOL = "report_pool"


def _available(project_id: int):
    return db.session.query(SponsorshipReportPool).filter(
        SponsorshipReportPool.sponsorship_project_id == project_id,
        SponsorshipReportPool.assigned_donation_id.is_(None),
        SponsorshipReportPool.assigned_recurring_ref.is_(None),
    )


def recurring_ref(subscription_id: str, period_end: Optional[datetime]) -> str:
    return f"{subscription_id}:{period_end.date().isoformat() if period_end else 'open'}"


def assign_reports_for_subscription(
    order_number: str,
    subscription_id: str,
    period_end: Optional[datetime],
) -> int:
    """
    Hand one pooled report per sponsored project to a brand-new subscription.

    Only the first invoice of a subscription should call this. The
    (subscription, project) claim makes repeat deliveries assign nothing.
    """
    order = db.session.query(Order).filter(Order.order_number == order_number).first()
    if order is None:
        return 0

    project_ids: List[int] = []
    for item in order.items:
        pid = item.sponsorship_project_id
        if pid and pid not in project_ids:
            project_ids.append(pid)

    ref = recurring_ref(subscription_id, period_end)
    assigned = 0
    for project_id in project_ids:
        if not claim(SCOPE_REPORT_POOL, f"{subscription_id}:{project_id}"):
            continue

        entry = (
            _available(project_id)
            .order_by(SponsorshipReportPool.created_at.asc(), SponsorshipReportPool.id.asc())
            .first()
        )
        if entry is None:
            # The claim is already spent, so this pair will not be retried.
            logger.error(
                "report_pool: no report available for project %s (sub=%s); assign one manually",
                project_id,
                subscription_id,
            )
            continue

        donation = (
            db.session.query(SponsorshipDonation)
            .filter(
                SponsorshipDonation.order_number == order_number,
                SponsorshipDonation.sponsorship_project_id == project_id,
            )
            .order_by(SponsorshipDonation.id.asc())
            .first()
        )

        entry.assigned_recurring_ref = ref
        entry.assigned_donation_id = donation.id if donation else None
        entry.assigned_at = utcnow()
        tx_commit()
        assigned += 1
        logger.info("report_pool: assigned report %s to %s", entry.id, ref)

    return assigned


# ---- Pool maintenance (CLI) ----
def add_reports(project_id: int, urls: Iterable[str]) -> int:
    if db.session.get(SponsorshipProject, project_id) is None:
        raise LookupError(f"sponsorship project {project_id} not found")

    added = 0
    for url in urls:
        url = (url or "").strip()
        if not url:
            continue
        db.session.add(SponsorshipReportPool(sponsorship_project_id=project_id, pdf_url=url))
        added += 1
    tx_commit()
    return added


def pool_status(project_id: int) -> Dict[str, int]:
    total = (
        db.session.query(SponsorshipReportPool)
        .filter(SponsorshipReportPool.sponsorship_project_id == project_id)
        .count()
    )
    available = _available(project_id).count()
    return {"total": total, "available": available, "assigned": total - available}
