"""
Unit tests for the command line interface (backupctl/cli.py).
"""

from unittest.mock import patch

import pytest

from backupctl import cli
from backupctl.errors import ConfigError
from backupctl.models import RunSummary


class TestParser:

    def test_schedule_arguments(self):
        args = cli.build_parser().parse_args(
            ['--targets', '/srv/t.json', 'schedule', '--cron', '0 3 * * *', '--mode', 'offsite', '--mode', 'local']
        )

        assert args.command == 'schedule'
        assert args.targets == '/srv/t.json'
        assert args.mode == ['offsite', 'local']
        assert args.timezone == 'UTC'

    def test_log_level_option(self):
        args = cli.build_parser().parse_args(['--log-level', 'DEBUG', 'validate'])

        assert args.log_level == 'DEBUG'

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


@pytest.fixture
def cli_env(monkeypatch, offsite_env, tmp_path):
    for key, value in offsite_env.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv('ENV_FILE', str(tmp_path / 'absent.env'))
    monkeypatch.delenv('LOG_DIR', raising=False)
    monkeypatch.delenv('TELEGRAM_BOT_TOKEN', raising=False)
    return offsite_env


@patch('backupctl.cli.AbortHandler.install')
class TestRunCommand:
    """Test exit codes of backup commands."""

    @patch('backupctl.cli.execute_run')
    def test_success_exit_code(self, mock_execute, mock_install, cli_env):
        mock_execute.return_value = RunSummary(total=1, processed=1)

        assert cli.main(['offsite']) == 0
        mock_install.assert_called_once()

    @patch('backupctl.cli.execute_run')
    def test_failed_targets_exit_code(self, mock_execute, mock_install, cli_env):
        mock_execute.return_value = RunSummary(total=2, processed=1, failed=1)

        assert cli.main(['offsite']) == 1

    @patch('backupctl.cli.execute_run')
    def test_pre_run_failure_exit_code(self, mock_execute, mock_install, cli_env):
        mock_execute.side_effect = ConfigError('B2_BUCKET_NAME is required')

        assert cli.main(['offsite']) == 1

    @patch('backupctl.cli.create_notifier')
    @patch('backupctl.cli.execute_run')
    def test_crash_is_notified(self, mock_execute, mock_create_notifier, mock_install, cli_env):
        mock_execute.side_effect = RuntimeError('boom')

        assert cli.main(['local']) == 1
        message = mock_create_notifier.return_value.call_args[0][0]
        assert message == '❌ Local backup aborted (exit 1): boom'


class TestValidateCommand:

    def test_lists_targets(self, cli_env, write_targets, capsys):
        write_targets([
            {'name': 'documents', 'locations': ['/srv/docs', '/srv/shared'], 'offsite': True, 'checkWeekly': True},
            {'name': 'photos', 'locations': ['/srv/photos'], 'enabled': False, 'local': True},
        ])

        assert cli.main(['validate']) == 0

        out = capsys.readouterr().out
        assert '2 targets' in out
        assert 'documents' in out
        assert 'offsite check-weekly' in out
        assert 'disabled local' in out

    def test_invalid_file(self, cli_env, write_targets, capsys):
        write_targets('not json')

        assert cli.main(['validate']) == 1
        assert 'invalid JSON' in capsys.readouterr().err


class TestScheduleCommand:

    @patch('backupctl.cli.run_scheduler')
    def test_default_mode(self, mock_run_scheduler, cli_env):
        assert cli.main(['schedule', '--cron', '0 3 * * *']) == 0

        jobs = mock_run_scheduler.call_args[0][0]
        assert jobs == [('offsite', '0 3 * * *')]

    @patch('backupctl.cli.run_scheduler')
    def test_invalid_cron(self, mock_run_scheduler, cli_env):
        mock_run_scheduler.side_effect = ValueError('Wrong number of fields')

        assert cli.main(['schedule', '--cron', 'nightly']) == 2
