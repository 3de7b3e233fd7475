"""Scheduled sweeps, run from cron / a platform scheduler as ``flask`` commands.

    flask escrow release-due      # every 15 minutes
    flask disputes expire         # hourly
    flask disputes remind         # several times a day
"""

import click
from flask.cli import AppGroup

from homeservices.services import get_dispute_service, get_escrow_service

escrow_cli = AppGroup('escrow', help='Escrow payment sweeps.')
disputes_cli = AppGroup('disputes', help='Dispute lifecycle sweeps.')


@escrow_cli.command('release-due')
@click.option('--limit', default=50, show_default=True, help='Maximum payments to release in one run.')
def release_due(limit):
    """Release captured payments whose escrow hold has expired."""
    result = get_escrow_service().release_due_payments(limit=limit)
    click.echo(f"released={result['released']} skipped={result['skipped']} failed={result['failed']}")


@disputes_cli.command('expire')
def expire():
    """Expire disputes whose deadlines passed unattended."""
    result = get_dispute_service().expire_disputes()
    click.echo(f"updated={result['updated']}")


@disputes_cli.command('remind')
def remind():
    """Remind admins about disputes close to their decision deadline."""
    result = get_dispute_service().remind_moderation()
    click.echo(f"reminded={result['reminded']}")


def register_commands(app):
    app.cli.add_command(escrow_cli)
    app.cli.add_command(disputes_cli)
