import logging
from datetime import timedelta

from alianah.models import SponsorshipProject, SponsorshipReportPool
from alianah.models.mixins import utcnow
from alianah.services.report_pool import add_reports, assign_reports_for_subscription, pool_status


def _sponsorship_item(project, country, amount=3500):
    return {
        "sponsorship_project_id": project.id,
        "sponsorship_country_id": country.id,
        "sponsorship_project_type": "ORPHANS",
        "frequency": "MONTHLY",
        "amount_pence": amount,
    }


def _assigned(db):
    return (
        db.session.query(SponsorshipReportPool)
        .filter(SponsorshipReportPool.assigned_recurring_ref.isnot(None))
        .order_by(SponsorshipReportPool.sponsorship_project_id)
        .all()
    )


def test_one_report_per_sponsored_project(db, sponsorship, order_factory):
    project, country = sponsorship
    second = SponsorshipProject(project_type="ORPHANS", location="Hargeisa")
    db.session.add(second)
    db.session.commit()

    order = order_factory(
        [
            _sponsorship_item(project, country),
            _sponsorship_item(project, country),
            _sponsorship_item(second, country),
        ]
    )
    add_reports(project.id, ["https://cdn.example.org/a1.pdf", "https://cdn.example.org/a2.pdf"])
    add_reports(second.id, ["https://cdn.example.org/b1.pdf", "https://cdn.example.org/b2.pdf"])

    assert assign_reports_for_subscription(order.order_number, "sub_1", None) == 2
    assert assign_reports_for_subscription(order.order_number, "sub_1", None) == 0

    assigned = _assigned(db)
    assert [(r.sponsorship_project_id, r.pdf_url) for r in assigned] == [
        (project.id, "https://cdn.example.org/a1.pdf"),
        (second.id, "https://cdn.example.org/b1.pdf"),
    ]
    assert all(r.assigned_recurring_ref == "sub_1:open" for r in assigned)
    assert pool_status(project.id) == {"total": 2, "available": 1, "assigned": 1}
    assert pool_status(second.id) == {"total": 2, "available": 1, "assigned": 1}


def test_oldest_report_is_handed_out_first(db, sponsorship, order_factory):
    project, country = sponsorship
    order = order_factory([_sponsorship_item(project, country)])

    newer = SponsorshipReportPool(sponsorship_project_id=project.id, pdf_url="https://cdn.example.org/newer.pdf")
    older = SponsorshipReportPool(sponsorship_project_id=project.id, pdf_url="https://cdn.example.org/older.pdf")
    db.session.add(newer)
    db.session.flush()
    db.session.add(older)
    db.session.flush()
    older.created_at = utcnow() - timedelta(days=7)
    db.session.commit()
    assert newer.id < older.id

    assert assign_reports_for_subscription(order.order_number, "sub_2", None) == 1

    assert [r.pdf_url for r in _assigned(db)] == ["https://cdn.example.org/older.pdf"]


def test_empty_pool_is_logged_as_error(db, sponsorship, order_factory, caplog):
    project, country = sponsorship
    order = order_factory([_sponsorship_item(project, country)])

    with caplog.at_level(logging.ERROR, logger="alianah.services.report_pool"):
        assert assign_reports_for_subscription(order.order_number, "sub_3", None) == 0

    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "sub_3" in errors[0].getMessage()

    # The pair stays claimed; stocking the pool later does not assign retroactively.
    add_reports(project.id, ["https://cdn.example.org/late.pdf"])
    assert assign_reports_for_subscription(order.order_number, "sub_3", None) == 0
    assert pool_status(project.id)["available"] == 1
