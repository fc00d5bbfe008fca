from datetime import timedelta
from unittest import mock

from alianah.models import (
    Donation,
    Donor,
    IdempotencyKey,
    Order,
    RecurringDonation,
    SponsorshipDonation,
    WaterProjectDonation,
)
from alianah.models.mixins import (
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_WAITING_TO_REVIEW,
    utcnow,
)
from alianah.services.finalize import finalize_order_by_order_number


def _finalize(order_number, **kwargs):
    kwargs.setdefault("paid_at", utcnow())
    kwargs.setdefault("payment_ref", "pi_123")
    kwargs.setdefault("is_subscription", False)
    return finalize_order_by_order_number(order_number, **kwargs)


def _subjects(outbox):
    return [m.subject for m in outbox]


def test_unknown_order_is_a_noop(app, outbox):
    result = _finalize("786-199999999")
    assert result.found is False
    assert outbox == []


def test_appeal_and_water_order_finalizes_once(db, appeal, water, order_factory, outbox):
    project, country = water
    order = order_factory(
        [
            {"appeal_id": appeal.id, "appeal_title": "Gaza Emergency", "amount_pence": 2000},
            {
                "appeal_title": "Water Pump",
                "water_project_id": project.id,
                "water_project_country_id": country.id,
                "plaque_name": "In memory of Maryam",
                "amount_pence": 3000,
            },
        ],
        gift_aid=True,
        billing_postcode="E1 6AN",
    )

    result = _finalize(order.order_number)

    assert result.found is True
    assert result.already_completed is False
    assert result.donations_created == 1
    assert result.water_created == 1
    assert result.confirmation_sent is True
    assert result.project_emails_sent == 1

    donation = db.session.query(Donation).one()
    assert donation.status == STATUS_COMPLETED
    assert donation.transaction_id == "pi_123"
    assert donation.amount_pence == 2000
    assert donation.gift_aid is True
    assert donation.billing_postcode == "E1 6AN"

    water_row = db.session.query(WaterProjectDonation).one()
    assert water_row.status == STATUS_WAITING_TO_REVIEW
    assert water_row.plaque_name == "In memory of Maryam"
    assert water_row.email_sent is True
    assert db.session.get(type(project), project.id).status == STATUS_WAITING_TO_REVIEW

    assert db.session.get(Order, order.id).status == STATUS_COMPLETED
    assert db.session.query(Donor).filter_by(email="yusuf@example.com").count() == 1

    subjects = _subjects(outbox)
    assert subjects.count(f"Thank you for your donation ({order.order_number})") == 1
    assert subjects.count(f"Your water project donation ({order.order_number})") == 1

    # Redelivery of the same payment event changes nothing.
    again = _finalize(order.order_number)
    assert again.already_completed is True
    assert again.rows_created == 0
    assert again.confirmation_sent is False
    assert db.session.query(Donation).count() == 1
    assert db.session.query(WaterProjectDonation).count() == 1
    assert len(outbox) == 2


def test_legacy_pending_rows_are_completed_not_duplicated(db, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "amount_pence": 1500}])
    donor = Donor(email="yusuf@example.com", first_name="Yusuf", last_name="Khan")
    db.session.add(donor)
    db.session.flush()
    db.session.add(
        Donation(
            donor_id=donor.id,
            appeal_id=appeal.id,
            order_number=order.order_number,
            amount_pence=1500,
            status=STATUS_PENDING,
        )
    )
    db.session.commit()

    result = _finalize(order.order_number, payment_ref="pi_legacy")

    assert result.legacy_completed == 1
    assert result.donations_created == 0
    row = db.session.query(Donation).one()
    assert row.status == STATUS_COMPLETED
    assert row.transaction_id == "pi_legacy"
    assert row.completed_at is not None


def test_item_without_target_is_skipped(db, order_factory):
    order = order_factory([{"appeal_title": "Mystery", "amount_pence": 500}])

    result = _finalize(order.order_number)

    assert result.skipped_items == [order.items[0].id]
    assert db.session.query(Donation).count() == 0
    assert db.session.get(Order, order.id).status == STATUS_COMPLETED


def test_subscription_creates_then_updates_recurring_rows(db, appeal, order_factory, outbox):
    order = order_factory([{"appeal_id": appeal.id, "frequency": "MONTHLY", "amount_pence": 1000}])
    first_due = utcnow() + timedelta(days=30)

    created = _finalize(
        order.order_number,
        payment_ref="sub_abc",
        is_subscription=True,
        customer_email="yusuf@example.com",
        next_payment_date=first_due,
    )
    assert created.recurring_created == 1
    row = db.session.query(RecurringDonation).one()
    assert row.status == STATUS_ACTIVE
    assert row.subscription_id == "sub_abc"
    assert row.frequency == "MONTHLY"
    assert row.appeal_id == appeal.id
    assert "/manage-subscription?token=" in outbox[0].body

    renewal_due = first_due + timedelta(days=30)
    renewed = _finalize(
        order.order_number,
        payment_ref="sub_abc",
        is_subscription=True,
        next_payment_date=renewal_due,
    )
    assert renewed.recurring_created == 0
    assert renewed.recurring_updated == 1
    assert db.session.query(RecurringDonation).count() == 1
    assert db.session.query(RecurringDonation).one().next_payment_date == renewal_due
    assert len(outbox) == 1


def test_fundraiser_is_notified_once(db, appeal, fundraiser, order_factory, outbox):
    order = order_factory(
        [{"appeal_id": appeal.id, "fundraiser_id": fundraiser.id, "is_anonymous": True, "amount_pence": 2500}]
    )

    first = _finalize(order.order_number)
    second = _finalize(order.order_number)

    assert first.fundraiser_notices_sent == 1
    assert second.fundraiser_notices_sent == 0
    notices = [m for m in outbox if m.subject == "New donation to Amina's 10k Run"]
    assert len(notices) == 1
    assert notices[0].recipients == ["amina@example.com"]
    assert "An anonymous supporter" in notices[0].body


def test_email_failure_does_not_undo_finalization(db, appeal, water, order_factory, outbox):
    project, country = water
    order = order_factory(
        [
            {"appeal_id": appeal.id, "amount_pence": 2000},
            {"water_project_id": project.id, "water_project_country_id": country.id, "amount_pence": 3000},
        ]
    )

    with mock.patch("alianah.services.notifications.send_email", side_effect=RuntimeError("smtp down")):
        result = _finalize(order.order_number)

    assert result.confirmation_sent is False
    assert result.project_emails_sent == 0
    assert db.session.get(Order, order.id).status == STATUS_COMPLETED
    assert db.session.query(Donation).count() == 1
    assert db.session.query(WaterProjectDonation).one().email_sent is False
    # The confirmation claim was taken before the failed send.
    assert db.session.query(IdempotencyKey).filter_by(scope="donor_confirmation").count() == 1

    retry = _finalize(order.order_number)
    assert retry.confirmation_sent is False
    assert retry.project_emails_sent == 1
    assert db.session.query(WaterProjectDonation).one().email_sent is True
    assert _subjects(outbox) == [f"Your water project donation ({order.order_number})"]


def test_sponsorship_notice_is_sent_once_per_row(db, sponsorship, order_factory, outbox):
    project, country = sponsorship
    order = order_factory(
        [
            {
                "appeal_title": "Orphan Sponsorship",
                "sponsorship_project_id": project.id,
                "sponsorship_country_id": country.id,
                "sponsorship_project_type": "ORPHANS",
                "amount_pence": 3500,
            }
        ]
    )

    first = _finalize(order.order_number)
    again = _finalize(order.order_number)

    assert first.sponsorship_created == 1
    assert first.project_emails_sent == 1
    assert again.project_emails_sent == 0

    row = db.session.query(SponsorshipDonation).one()
    assert row.status == STATUS_WAITING_TO_REVIEW
    assert row.email_sent is True
    assert _subjects(outbox).count(f"Your sponsorship donation ({order.order_number})") == 1
