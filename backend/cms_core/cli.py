import sys

import click
from flask.cli import AppGroup

from cms_core.application.services import build_services
from cms_core.extensions import db
from cms_core.models.site import Site
from cms_core.domain.records import SYSTEM_ACTOR
from cms_core.utils.site_scope import SiteContext
from cms_core.utils.time import parse_time_arg

scheduler_cli = AppGroup("scheduler", help="Scheduled publishing.")
audit_cli = AppGroup("audit", help="Audit log maintenance.")
workflow_cli = AppGroup("workflow", help="Workflow definitions.")


@scheduler_cli.command("run-due")
@click.option("--limit", type=int, default=None, help="Override the batch size for this pass.")
def run_due(limit):
    """Process every due job once (meant for cron or a platform timer)."""
    scheduler = build_services(SiteContext(db.session, None)).scheduler
    if limit:
        scheduler.batch_size = limit

    report = scheduler.run_due()
    for result in report.results:
        status = "ok" if result.success else f"failed ({result.error})"
        click.echo(f"{result.job_id}: {status}")
    click.echo(f"processed={report.processed} succeeded={report.succeeded} failed={report.failed}")


@audit_cli.command("verify")
@click.option("--site", "site_id", default=None, help="Only verify one site's entries.")
@click.option("--since", default=None, help="ISO8601 lower bound.")
@click.option("--until", default=None, help="ISO8601 upper bound.")
def verify(site_id, since, until):
    """Recompute audit checksums and report tampered rows."""
    audit = build_services(SiteContext(db.session, site_id)).audit
    report = audit.verify_integrity(
        site_id=site_id,
        since=parse_time_arg(since, "since"),
        until=parse_time_arg(until, "until"),
    )

    click.echo(f"checked={report.checked} valid={report.valid} unsigned={report.unsigned}")
    for log_id in report.tampered:
        click.echo(f"TAMPERED {log_id}", err=True)
    if not report.ok:
        sys.exit(1)


@workflow_cli.command("seed-default")
@click.option("--site", "site_id", required=True, help="Site that owns the workflow.")
def seed_default(site_id):
    """Create the 'Simple Review' workflow (draft → review → published)."""
    if db.session.get(Site, site_id) is None:
        raise click.ClickException(f"Unknown site: {site_id}")

    engine = build_services(SiteContext(db.session, site_id)).workflow
    workflow = engine.seed_default_workflow(actor=SYSTEM_ACTOR)
    click.echo(f"Created workflow {workflow.id} ({workflow.name})")


def register_cli(app):
    app.cli.add_command(scheduler_cli)
    app.cli.add_command(audit_cli)
    app.cli.add_command(workflow_cli)
