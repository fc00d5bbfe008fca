import json
from datetime import timedelta
from unittest import mock

from alianah.models import Order, SponsorshipReportPool
from alianah.models.mixins import STATUS_ABANDONED


def test_pool_add_and_status(app, db, sponsorship):
    project, _ = sponsorship
    runner = app.test_cli_runner()

    added = runner.invoke(
        args=["sponsorships", "pool-add", str(project.id), "https://cdn.example.org/a.pdf", "https://cdn.example.org/b.pdf"]
    )
    assert added.exit_code == 0, added.output
    assert "Added 2 report(s)" in added.output
    assert db.session.query(SponsorshipReportPool).count() == 2

    status = runner.invoke(args=["sponsorships", "pool-status", str(project.id)])
    assert status.exit_code == 0
    assert f"project={project.id} total=2 available=2 assigned=0" in status.output


def test_pool_add_unknown_project_fails(app):
    result = app.test_cli_runner().invoke(args=["sponsorships", "pool-add", "404", "https://cdn.example.org/a.pdf"])
    assert result.exit_code != 0
    assert "sponsorship project 404 not found" in result.output


def test_remind_abandoned_command(app, db, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}], age=timedelta(hours=3))

    result = app.test_cli_runner().invoke(args=["checkout", "remind-abandoned"])

    assert result.exit_code == 0
    assert json.loads(result.output)["sentFirst"] == 1
    assert db.session.get(Order, order.id).status == STATUS_ABANDONED


def test_reconcile_refunds_command_passes_limit(app):
    stats = {"scanned": 0, "updated": 0, "updatedOrders": []}
    with mock.patch("alianah.cli.reconcile_refunds", return_value=stats) as reconcile:
        result = app.test_cli_runner().invoke(args=["donations", "reconcile-refunds", "--limit", "25"])

    assert result.exit_code == 0
    reconcile.assert_called_once_with(limit=25)
    assert json.loads(result.output) == stats
