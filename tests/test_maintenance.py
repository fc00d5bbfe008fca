from datetime import timedelta
from unittest import mock

import stripe

from alianah.models import Donation, Donor, Order
from alianah.models.mixins import STATUS_ABANDONED, STATUS_COMPLETED, STATUS_PENDING, STATUS_REFUNDED
from alianah.services.maintenance import reconcile_refunds, remind_abandoned_checkouts


# -----------------------------------------------------------------------------
# Abandoned checkout reminders
# -----------------------------------------------------------------------------
def test_first_reminder_marks_order_abandoned(db, appeal, order_factory, outbox):
    stale = order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}], age=timedelta(hours=2))
    fresh = order_factory(
        [{"appeal_id": appeal.id, "amount_pence": 2000}],
        order_number="786-100000002",
        age=timedelta(minutes=10),
    )

    stats = remind_abandoned_checkouts()

    assert stats == {"processedFirst": 1, "sentFirst": 1, "processedSecond": 0, "sentSecond": 0}
    assert db.session.get(Order, stale.id).status == STATUS_ABANDONED
    assert db.session.get(Order, fresh.id).status == STATUS_PENDING
    assert [m.subject for m in outbox] == ["You left a donation in your basket"]
    assert f"/checkout?resume={stale.order_number}" in outbox[0].body


def test_second_reminder_is_sent_once(db, appeal, order_factory, outbox):
    order = order_factory(
        [{"appeal_id": appeal.id, "amount_pence": 2000}],
        status=STATUS_ABANDONED,
        age=timedelta(hours=30),
    )

    first = remind_abandoned_checkouts()
    second = remind_abandoned_checkouts()

    assert first["sentSecond"] == 1
    assert second["processedSecond"] == 0
    assert db.session.get(Order, order.id).abandoned_email_2_sent_at is not None
    # Abandoned orders are kept for resume; nothing is deleted.
    assert db.session.get(Order, order.id).status == STATUS_ABANDONED
    assert [m.subject for m in outbox] == ["Your donation is still waiting for you"]


def test_reminder_send_failure_leaves_order_pending(db, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}], age=timedelta(hours=2))

    with mock.patch("alianah.services.notifications.send_email", side_effect=RuntimeError("smtp down")):
        stats = remind_abandoned_checkouts()

    assert stats["sentFirst"] == 0
    assert db.session.get(Order, order.id).status == STATUS_PENDING


def test_payment_during_reminder_keeps_order_completed(db, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}], age=timedelta(hours=2))

    def paid_while_sending(row, reminder):
        row.status = STATUS_COMPLETED
        db.session.commit()
        return True

    with mock.patch("alianah.services.maintenance.send_abandoned_checkout_email", side_effect=paid_while_sending):
        stats = remind_abandoned_checkouts()

    assert stats["sentFirst"] == 1
    assert db.session.get(Order, order.id).status == STATUS_COMPLETED


def test_second_reminder_does_not_touch_completed_order(db, appeal, order_factory):
    order = order_factory(
        [{"appeal_id": appeal.id, "amount_pence": 2000}],
        status=STATUS_ABANDONED,
        age=timedelta(hours=30),
    )

    def paid_while_sending(row, reminder):
        row.status = STATUS_COMPLETED
        db.session.commit()
        return True

    with mock.patch("alianah.services.maintenance.send_abandoned_checkout_email", side_effect=paid_while_sending):
        remind_abandoned_checkouts()

    row = db.session.get(Order, order.id)
    assert row.status == STATUS_COMPLETED
    assert row.abandoned_email_2_sent_at is None


def test_completed_orders_are_not_reminded(appeal, order_factory, outbox):
    order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}], status=STATUS_COMPLETED, age=timedelta(days=3))
    assert remind_abandoned_checkouts()["processedFirst"] == 0
    assert outbox == []


# -----------------------------------------------------------------------------
# Refund reconciliation
# -----------------------------------------------------------------------------
def _donation(db, donor, pi_id, order_number):
    row = Donation(
        donor_id=donor.id,
        order_number=order_number,
        amount_pence=1000,
        status=STATUS_COMPLETED,
        transaction_id=pi_id,
    )
    db.session.add(row)
    return row


def test_reconcile_refunds_marks_refunded_intents(db):
    donor = Donor(email="yusuf@example.com", first_name="Yusuf", last_name="Khan")
    db.session.add(donor)
    db.session.flush()
    refunded = _donation(db, donor, "pi_refunded", "786-100000010")
    kept = _donation(db, donor, "pi_kept", "786-100000011")
    subscription_row = _donation(db, donor, "sub_123", "786-100000012")
    db.session.commit()

    intents = {
        "pi_refunded": {"id": "pi_refunded", "latest_charge": {"id": "ch_1", "refunded": True, "amount_refunded": 1000}},
        "pi_kept": {"id": "pi_kept", "latest_charge": {"id": "ch_2", "refunded": False, "amount_refunded": 0}},
    }

    def retrieve(pi_id, **kwargs):
        assert kwargs == {"expand": ["latest_charge"]}
        return intents[pi_id]

    with mock.patch("stripe.PaymentIntent.retrieve", side_effect=retrieve):
        result = reconcile_refunds(limit=10)

    assert result == {"scanned": 2, "updated": 1, "updatedOrders": ["786-100000010"]}
    assert db.session.get(Donation, refunded.id).status == STATUS_REFUNDED
    assert db.session.get(Donation, kept.id).status == STATUS_COMPLETED
    assert db.session.get(Donation, subscription_row.id).status == STATUS_COMPLETED


def test_reconcile_refunds_skips_stripe_errors(db):
    donor = Donor(email="yusuf@example.com", first_name="Yusuf", last_name="Khan")
    db.session.add(donor)
    db.session.flush()
    row = _donation(db, donor, "pi_flaky", None)
    db.session.commit()

    with mock.patch("stripe.PaymentIntent.retrieve", side_effect=stripe.APIConnectionError("timeout")):
        result = reconcile_refunds()

    assert result["scanned"] == 1
    assert result["updated"] == 0
    assert db.session.get(Donation, row.id).status == STATUS_COMPLETED
