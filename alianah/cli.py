# alianah/cli.py
import json

import click
from flask.cli import AppGroup

from alianah.services.maintenance import reconcile_refunds, remind_abandoned_checkouts
from alianah.services.report_pool import add_reports, pool_status

checkout_cli = AppGroup("checkout", help="Checkout maintenance.")
donations_cli = AppGroup("donations", help="Donation maintenance.")
sponsorships_cli = AppGroup("sponsorships", help="Sponsorship report pool.")


@checkout_cli.command("remind-abandoned")
def remind_abandoned():
    """Email donors who left a checkout unfinished (run hourly)."""
    stats = remind_abandoned_checkouts()
    click.echo(json.dumps(stats))


@donations_cli.command("reconcile-refunds")
@click.option("--limit", default=50, show_default=True, type=int, help="Donations to check (max 200).")
def reconcile_refunds_cmd(limit):
    """Mark donations REFUNDED when Stripe says they were refunded."""
    result = reconcile_refunds(limit=limit)
    click.echo(json.dumps(result))


@sponsorships_cli.command("pool-add")
@click.argument("project_id", type=int)
@click.argument("urls", nargs=-1, required=True)
def pool_add(project_id, urls):
    """Queue report PDFs for a sponsorship project."""
    try:
        added = add_reports(project_id, urls)
    except LookupError as e:
        raise click.ClickException(str(e))
    click.secho(f"✅ Added {added} report(s) to project {project_id}", fg="green")


@sponsorships_cli.command("pool-status")
@click.argument("project_id", type=int)
def pool_status_cmd(project_id):
    """Show total / available / assigned reports for a project."""
    counts = pool_status(project_id)
    click.echo(
        f"project={project_id} total={counts['total']} "
        f"available={counts['available']} assigned={counts['assigned']}"
    )


def register_cli(app) -> None:
    app.cli.add_command(checkout_cli)
    app.cli.add_command(donations_cli)
    app.cli.add_command(sponsorships_cli)
