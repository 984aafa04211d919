"""
Command line interface.

    flask --app backsync backup run            Create, upload and clean up a backup
    flask --app backsync backup delete-junk    Delete expired remote backups only
    flask --app backsync backup check          Test the storage credentials

The same commands are available through the `backsync` console script.
"""

import click
from flask import current_app
from flask.cli import AppGroup, FlaskGroup

from backsync.backup import create_gateway
from backsync.backup.credentials import ConfigurationError
from backsync.backup.executor import execute_backup_sync, execute_retention_sweep
from backsync.backup.gateway import TransportError
from backsync.config import SyncSettings


backup_cli = AppGroup('backup', help='Backup synchronization commands.')

EVENT_COLORS = {
    'uploaded': 'green',
    'deleted': 'yellow',
    'delete_failed': 'red',
    'warning': 'yellow',
    'failed': 'red'
}

EVENT_MESSAGES = {
    'uploaded': 'Backup file successfully uploaded: {}',
    'deleted': 'Expired file was deleted: {}',
    'delete_failed': 'Failed to delete expired file {}',
    'warning': '{}',
    'failed': '{}'
}


def echo_event(event: str, message: str):
    """Print an orchestrator notification in colour."""
    text = EVENT_MESSAGES.get(event, '{}').format(message)
    click.secho(text, fg=EVENT_COLORS.get(event), err=event in ('failed', 'delete_failed'))


@backup_cli.command('run')
@click.option('--auto-delete/--no-auto-delete', default=None,
              help='Override AUTO_DELETE for this run.')
def run_command(auto_delete):
    """Create a backup, upload it and delete expired remote backups."""
    try:
        result = execute_backup_sync(current_app.config, notify=echo_event, auto_delete=auto_delete)
    except ConfigurationError as e:
        raise click.ClickException(f"Configuration error: {e}")

    if not result.ok:
        raise click.ClickException(f"Backup sync failed ({result.error_kind}): {result.error}")

    if result.partial:
        click.secho('Backup uploaded, cleanup finished with warnings.', fg='yellow')


@backup_cli.command('delete-junk')
def delete_junk_command():
    """Delete remote backups older than EXPIRY_SECONDS."""
    try:
        result = execute_retention_sweep(current_app.config, notify=echo_event)
    except ConfigurationError as e:
        raise click.ClickException(f"Configuration error: {e}")
    except TransportError as e:
        raise click.ClickException(f"Retention sweep failed ({type(e).__name__}): {e}")

    click.echo(f"Deleted {len(result.deleted)} expired file(s) from {result.folder}.")

    if result.failed:
        raise click.ClickException(f"{len(result.failed)} expired file(s) could not be deleted.")


@backup_cli.command('check')
def check_command():
    """Test the storage credentials."""
    try:
        gateway = create_gateway(SyncSettings.from_config(current_app.config))
        gateway.test_connection()
    except ConfigurationError as e:
        raise click.ClickException(f"Configuration error: {e}")
    except TransportError as e:
        raise click.ClickException(str(e))

    click.secho(f"Connection to {current_app.config['STORAGE_PROVIDER']} storage OK.", fg='green')


def _create_cli_app():
    from backsync import create_app
    return create_app()


cli = FlaskGroup(create_app=_create_cli_app, add_default_commands=False, help='backsync backup tool.')


def main():
    cli()
