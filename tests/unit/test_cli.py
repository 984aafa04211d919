"""
Unit tests for the command line interface (backsync/cli.py).
"""

from unittest.mock import patch

from backsync.backup.credentials import ConfigurationError
from backsync.backup.executor import RunState, SweepResult, SyncResult
from backsync.backup.gateway import EntryKind, RemoteEntry, TransportError
from backsync.backup.producer import ProducerError


def uploaded_result(**kwargs):
    return SyncResult(
        state=RunState.DONE,
        destination_path='/backups/site.tar',
        uploaded=RemoteEntry(path='/backups/site.tar', name='site.tar', kind=EntryKind.FILE),
        **kwargs
    )


class TestRunCommand:

    @patch('backsync.cli.execute_backup_sync')
    def test_success(self, mock_execute, runner, app):
        def execute(config, notify, auto_delete):
            notify('uploaded', 'site.tar')
            return uploaded_result()

        mock_execute.side_effect = execute

        result = runner.invoke(args=['backup', 'run'])

        assert result.exit_code == 0
        assert 'Backup file successfully uploaded: site.tar' in result.output
        assert mock_execute.call_args.args[0] is app.config
        assert mock_execute.call_args.kwargs['auto_delete'] is None

    @patch('backsync.cli.execute_backup_sync')
    def test_no_auto_delete_flag(self, mock_execute, runner):
        mock_execute.return_value = uploaded_result()

        result = runner.invoke(args=['backup', 'run', '--no-auto-delete'])

        assert result.exit_code == 0
        assert mock_execute.call_args.kwargs['auto_delete'] is False

    @patch('backsync.cli.execute_backup_sync')
    def test_failed_run_exits_non_zero(self, mock_execute, runner):
        mock_execute.return_value = SyncResult(state=RunState.FAILED, error=ProducerError('disk full'))

        result = runner.invoke(args=['backup', 'run'])

        assert result.exit_code == 1
        assert 'Backup sync failed (ProducerError): disk full' in result.output

    @patch('backsync.cli.execute_backup_sync')
    def test_partial_run_exits_zero(self, mock_execute, runner):
        mock_execute.return_value = uploaded_result(sweep_error=TransportError('server error'))

        result = runner.invoke(args=['backup', 'run'])

        assert result.exit_code == 0
        assert 'warnings' in result.output

    @patch('backsync.cli.execute_backup_sync')
    def test_configuration_error(self, mock_execute, runner):
        mock_execute.side_effect = ConfigurationError('Missing credentials')

        result = runner.invoke(args=['backup', 'run'])

        assert result.exit_code == 1
        assert 'Configuration error: Missing credentials' in result.output


class TestDeleteJunkCommand:

    @patch('backsync.cli.execute_retention_sweep')
    def test_success(self, mock_sweep, runner):
        mock_sweep.return_value = SweepResult(folder='/backups', deleted=['/backups/a.tar', '/backups/b.tar'])

        result = runner.invoke(args=['backup', 'delete-junk'])

        assert result.exit_code == 0
        assert 'Deleted 2 expired file(s) from /backups.' in result.output

    @patch('backsync.cli.execute_retention_sweep')
    def test_failed_deletes_exit_non_zero(self, mock_sweep, runner):
        mock_sweep.return_value = SweepResult(
            folder='/backups',
            deleted=['/backups/a.tar'],
            failed={'/backups/b.tar': 'rate limited'}
        )

        result = runner.invoke(args=['backup', 'delete-junk'])

        assert result.exit_code == 1
        assert 'Deleted 1 expired file(s)' in result.output
        assert '1 expired file(s) could not be deleted' in result.output

    @patch('backsync.cli.execute_retention_sweep')
    def test_list_failure(self, mock_sweep, runner):
        mock_sweep.side_effect = TransportError('server error')

        result = runner.invoke(args=['backup', 'delete-junk'])

        assert result.exit_code == 1
        assert 'Retention sweep failed (TransportError)' in result.output


class TestCheckCommand:

    @patch('backsync.cli.create_gateway')
    def test_connection_ok(self, mock_create_gateway, runner):
        result = runner.invoke(args=['backup', 'check'])

        assert result.exit_code == 0
        assert 'Connection to dropbox storage OK.' in result.output
        mock_create_gateway.return_value.test_connection.assert_called_once()

    @patch('backsync.cli.create_gateway')
    def test_connection_failed(self, mock_create_gateway, runner):
        mock_create_gateway.return_value.test_connection.side_effect = TransportError('Authentication failed')

        result = runner.invoke(args=['backup', 'check'])

        assert result.exit_code == 1
        assert 'Authentication failed' in result.output
