from __future__ import annotations

# -----------------------------------------------------------------------------
# Order finalization
#
# Turns a paid Order into donation rows, recurring rows and notifications.
# Safe to call any number of times for the same order number, from any of
# the Stripe events that can report the payment:
#   - creation steps are gated on the order's prior status and on unique
#     order_item_id / (subscription_id, order_item_id) constraints
#   - donor + fundraiser emails are gated on idempotency-key claims
#   - water / sponsorship emails are gated on the per-row email_sent flag
# DB writes are committed before any email goes out. Email failures are
# logged only; DB failures propagate so the webhook returns 500 and Stripe
# retries.
# -----------------------------------------------------------------------------
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Type, Union

from alianah.extensions import db, tx_commit
from alianah.models import (
    Donation,
    Order,
    OrderItem,
    RecurringDonation,
    SponsorshipDonation,
    WaterProjectDonation,
)
from alianah.models.mixins import (
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_WAITING_TO_REVIEW,
)
from alianah.services import notifications
from alianah.services.donors import find_or_create_donor
from alianah.services.idempotency import claim
from alianah.services.portal_tokens import manage_subscription_url

logger = logging.getLogger(__name__)

SCOPE_DONOR_CONFIRMATION = "donor_confirmation"
SCOPE_FUNDRAISER_NOTICE = "fundraiser_notice"

ProjectDonation = Union[WaterProjectDonation, SponsorshipDonation]


@dataclass
class FinalizeResult:
    order_number: str
    found: bool = False
    already_completed: bool = False
    legacy_completed: int = 0
    donations_created: int = 0
    water_created: int = 0
    sponsorship_created: int = 0
    recurring_created: int = 0
    recurring_updated: int = 0
    confirmation_sent: bool = False
    project_emails_sent: int = 0
    fundraiser_notices_sent: int = 0
    skipped_items: List[int] = field(default_factory=list)

    @property
    def rows_created(self) -> int:
        return self.donations_created + self.water_created + self.sponsorship_created


def finalize_order_by_order_number(
    order_number: str,
    *,
    paid_at: datetime,
    payment_ref: Optional[str],
    is_subscription: bool,
    customer_email: Optional[str] = None,
    next_payment_date: Optional[datetime] = None,
) -> FinalizeResult:
    result = FinalizeResult(order_number=order_number)

    order: Optional[Order] = db.session.query(Order).filter(Order.order_number == order_number).first()
    if order is None:
        logger.info("finalize: order %s not found; nothing to do", order_number)
        return result

    result.found = True
    was_already_completed = order.status == STATUS_COMPLETED
    result.already_completed = was_already_completed

    donor = find_or_create_donor(
        order.donor_email,
        first_name=order.donor_first_name,
        last_name=order.donor_last_name,
    )

    # Appeal donations completed by this call (fundraiser notices below).
    completed_now: List[Donation] = []

    legacy_rows = (
        db.session.query(Donation)
        .filter(Donation.order_number == order_number, Donation.status == STATUS_PENDING)
        .order_by(Donation.id)
        .all()
    )
    for row in legacy_rows:
        row.status = STATUS_COMPLETED
        row.completed_at = paid_at
        if payment_ref:
            row.transaction_id = payment_ref
        completed_now.append(row)
    result.legacy_completed = len(legacy_rows)

    if not was_already_completed and not legacy_rows:
        completed_now.extend(_materialize_items(order, donor.id, paid_at, payment_ref, result))

    if order.status != STATUS_COMPLETED:
        order.status = STATUS_COMPLETED

    if is_subscription and payment_ref:
        _sync_recurring(order, donor.id, payment_ref, paid_at, next_payment_date, was_already_completed, result)

    completed_ids = [d.id for d in completed_now]
    tx_commit()

    if not was_already_completed and claim(SCOPE_DONOR_CONFIRMATION, order_number):
        result.confirmation_sent = _send_confirmation(order, is_subscription, customer_email)

    result.project_emails_sent += _process_project_rows(
        WaterProjectDonation, order_number, payment_ref, notifications.send_water_project_donation_email
    )
    result.project_emails_sent += _process_project_rows(
        SponsorshipDonation, order_number, payment_ref, notifications.send_sponsorship_donation_email
    )

    result.fundraiser_notices_sent = _notify_fundraisers(completed_ids)

    logger.info(
        "finalize: order=%s already_completed=%s legacy=%s created=%s recurring=+%s/~%s emails=%s/%s/%s",
        order_number,
        was_already_completed,
        result.legacy_completed,
        result.rows_created,
        result.recurring_created,
        result.recurring_updated,
        int(result.confirmation_sent),
        result.project_emails_sent,
        result.fundraiser_notices_sent,
    )
    return result


# -----------------------------------------------------------------------------
# Row creation
# -----------------------------------------------------------------------------
def _existing_item_ids(model: Type[db.Model], item_ids: Sequence[int]) -> set:
    if not item_ids:
        return set()
    rows = db.session.query(model.order_item_id).filter(model.order_item_id.in_(item_ids)).all()
    return {r[0] for r in rows}


def _materialize_items(
    order: Order,
    donor_id: int,
    paid_at: datetime,
    payment_ref: Optional[str],
    result: FinalizeResult,
) -> List[Donation]:
    item_ids = [i.id for i in order.items]
    seen = (
        _existing_item_ids(Donation, item_ids)
        | _existing_item_ids(WaterProjectDonation, item_ids)
        | _existing_item_ids(SponsorshipDonation, item_ids)
    )

    common = dict(
        donor_id=donor_id,
        order_number=order.order_number,
        transaction_id=payment_ref,
        gift_aid=bool(order.gift_aid),
        **order.billing_snapshot,
    )

    created: List[Donation] = []
    for item in order.items:
        if item.id in seen:
            continue

        kind = item.kind
        if kind == "water":
            db.session.add(
                WaterProjectDonation(
                    order_item_id=item.id,
                    water_project_id=item.water_project_id,
                    country_id=item.water_project_country_id,
                    plaque_name=item.plaque_name,
                    amount_pence=item.amount_pence,
                    donation_type=item.donation_type,
                    status=STATUS_WAITING_TO_REVIEW,
                    email_sent=False,
                    **common,
                )
            )
            result.water_created += 1
        elif kind == "sponsorship":
            db.session.add(
                SponsorshipDonation(
                    order_item_id=item.id,
                    sponsorship_project_id=item.sponsorship_project_id,
                    country_id=item.sponsorship_country_id,
                    amount_pence=item.amount_pence,
                    donation_type=item.donation_type,
                    status=STATUS_WAITING_TO_REVIEW,
                    email_sent=False,
                    **common,
                )
            )
            result.sponsorship_created += 1
        elif item.appeal_id:
            donation = Donation(
                order_item_id=item.id,
                appeal_id=item.appeal_id,
                fundraiser_id=item.fundraiser_id,
                product_id=item.product_id,
                amount_pence=item.amount_pence,
                donation_type=item.donation_type,
                frequency=item.frequency,
                is_anonymous=bool(item.is_anonymous),
                status=STATUS_COMPLETED,
                completed_at=paid_at,
                **common,
            )
            db.session.add(donation)
            created.append(donation)
            result.donations_created += 1
        else:
            logger.warning("finalize: order item %s has no donation target; skipped", item.id)
            result.skipped_items.append(item.id)

    db.session.flush()
    return created


def _recurring_target(item: OrderItem) -> dict:
    if item.water_project_id:
        return {"water_project_id": item.water_project_id}
    if item.sponsorship_project_id:
        return {"sponsorship_project_id": item.sponsorship_project_id}
    return {"appeal_id": item.appeal_id}


def _sync_recurring(
    order: Order,
    donor_id: int,
    subscription_id: str,
    paid_at: datetime,
    next_payment_date: Optional[datetime],
    was_already_completed: bool,
    result: FinalizeResult,
) -> None:
    existing = (
        db.session.query(RecurringDonation)
        .filter(RecurringDonation.subscription_id == subscription_id)
        .all()
    )
    if existing:
        for row in existing:
            row.status = STATUS_ACTIVE
            row.last_payment_date = paid_at
            if next_payment_date is not None:
                row.next_payment_date = next_payment_date
        result.recurring_updated = len(existing)
        return

    if was_already_completed:
        return

    for item in order.items:
        if not item.is_recurring:
            continue
        db.session.add(
            RecurringDonation(
                donor_id=donor_id,
                order_item_id=item.id,
                order_number=order.order_number,
                amount_pence=item.amount_pence,
                donation_type=item.donation_type,
                frequency=item.frequency,
                subscription_id=subscription_id,
                status=STATUS_ACTIVE,
                last_payment_date=paid_at,
                next_payment_date=next_payment_date,
                **_recurring_target(item),
            )
        )
        result.recurring_created += 1


# -----------------------------------------------------------------------------
# Notifications (best-effort)
# -----------------------------------------------------------------------------
def _send_confirmation(order: Order, is_subscription: bool, customer_email: Optional[str]) -> bool:
    manage_url = None
    if is_subscription and customer_email:
        try:
            manage_url = manage_subscription_url(customer_email)
        except RuntimeError as e:
            logger.warning("finalize: no manage-subscription link for %s: %s", order.order_number, e)

    try:
        return notifications.send_donation_confirmation(order, manage_subscription_url=manage_url)
    except Exception:
        logger.exception("finalize: donor confirmation failed for %s", order.order_number)
        return False


def _process_project_rows(
    model: Type[db.Model],
    order_number: str,
    payment_ref: Optional[str],
    send: Callable[[ProjectDonation], bool],
) -> int:
    rows: List[ProjectDonation] = (
        db.session.query(model).filter(model.order_number == order_number).order_by(model.id).all()
    )
    sent_count = 0
    for row in rows:
        if row.status == STATUS_PENDING or not row.transaction_id:
            if row.status == STATUS_PENDING:
                row.status = STATUS_WAITING_TO_REVIEW
            if payment_ref and not row.transaction_id:
                row.transaction_id = payment_ref

        project = row.project
        if project is not None and not project.status:
            project.status = STATUS_WAITING_TO_REVIEW
        tx_commit()

        if row.email_sent:
            continue

        try:
            sent = send(row)
        except Exception:
            logger.exception("finalize: %s email failed for row %s", model.__tablename__, row.id)
            continue

        if sent:
            row.email_sent = True
            tx_commit()
            sent_count += 1
    return sent_count


def _notify_fundraisers(donation_ids: Sequence[int]) -> int:
    sent_count = 0
    for donation_id in donation_ids:
        donation = db.session.get(Donation, donation_id)
        if donation is None or not donation.fundraiser_id:
            continue
        if not claim(SCOPE_FUNDRAISER_NOTICE, str(donation_id)):
            continue
        try:
            if notifications.send_fundraiser_donation_notification(donation):
                sent_count += 1
        except Exception:
            logger.exception("finalize: fundraiser notice failed for donation %s", donation_id)
    return sent_count
