"""
Unit tests for configuration (backupctl/config.py).
"""

import os

import pytest

from backupctl.config import OffsiteConfig, LocalConfig, config, load_environment
from backupctl.errors import ConfigError


class TestDefaults:

    def test_defaults(self):
        cfg = OffsiteConfig({})

        assert cfg.TARGETS_FILE == 'targets.json'
        assert cfg.LOCK_STALE_MINUTES == 30
        assert cfg.LOCK_LIST_FAILURE_IS_FREE is True
        assert cfg.CHECK_WEEKDAY == 7
        assert cfg.MIRROR_GRACE_DAYS == 60
        assert cfg.RESTIC_BIN == 'restic'
        assert cfg.RSYNC_BIN == 'rsync'
        assert cfg.telegram_enabled is False

    @pytest.mark.parametrize('raw,expected', [('false', False), ('0', False), ('no', False), ('yes', True)])
    def test_boolean_parsing(self, raw, expected):
        cfg = OffsiteConfig({'LOCK_LIST_FAILURE_IS_FREE': raw})

        assert cfg.LOCK_LIST_FAILURE_IS_FREE is expected

    def test_invalid_integer(self):
        with pytest.raises(ConfigError, match='LOCK_STALE_MINUTES must be an integer'):
            OffsiteConfig({'LOCK_STALE_MINUTES': 'half an hour'})

    def test_config_mapping(self):
        assert config['offsite'] is OffsiteConfig
        assert config['local'] is LocalConfig
        assert config['default'] is OffsiteConfig


class TestOffsiteConfig:
    """Test offsite secrets validation and engine environment."""

    def test_valid(self, offsite_env):
        OffsiteConfig(offsite_env).validate()

    @pytest.mark.parametrize('missing', ['B2_BUCKET_NAME', 'B2_ACCOUNT_ID', 'B2_ACCOUNT_KEY'])
    def test_missing_b2_setting(self, offsite_env, missing):
        env = dict(offsite_env)
        del env[missing]

        with pytest.raises(ConfigError, match=missing):
            OffsiteConfig(env).validate()

    def test_missing_password(self, offsite_env):
        env = dict(offsite_env)
        del env['RESTIC_PASSWORD']

        with pytest.raises(ConfigError, match='RESTIC_PASSWORD'):
            OffsiteConfig(env).validate()

    def test_password_file_must_exist(self, offsite_env, tmp_path):
        env = dict(offsite_env, RESTIC_PASSWORD_FILE=str(tmp_path / 'absent.pass'))

        with pytest.raises(ConfigError, match='RESTIC_PASSWORD_FILE not found'):
            OffsiteConfig(env).validate()

    @pytest.mark.parametrize('weekday', ['0', '8'])
    def test_check_weekday_range(self, offsite_env, weekday):
        with pytest.raises(ConfigError, match='CHECK_WEEKDAY'):
            OffsiteConfig(dict(offsite_env, CHECK_WEEKDAY=weekday)).validate()

    def test_repository_for(self, offsite_env):
        assert OffsiteConfig(offsite_env).repository_for('photos') == 'b2:test-bucket:photos'

    def test_engine_environment_with_password(self, offsite_env, monkeypatch):
        monkeypatch.setenv('PATH', '/usr/bin')

        env = OffsiteConfig(offsite_env).engine_environment()

        assert env['B2_ACCOUNT_ID'] == 'test-account'
        assert env['B2_ACCOUNT_KEY'] == 'test-key'
        assert env['RESTIC_PASSWORD'] == 'test-password'
        assert env['PATH'] == '/usr/bin'

    def test_engine_environment_with_password_file(self, offsite_env, monkeypatch, tmp_path):
        monkeypatch.setenv('RESTIC_PASSWORD', 'from-shell')
        password_file = tmp_path / 'restic.pass'
        password_file.write_text('secret')

        env = OffsiteConfig(dict(offsite_env, RESTIC_PASSWORD_FILE=str(password_file))).engine_environment()

        assert 'RESTIC_PASSWORD' not in env
        assert all(value is not None for value in env.values())


class TestLocalConfig:

    def test_valid(self, local_env):
        cfg = LocalConfig(local_env)
        cfg.validate()

        assert cfg.BACKUP_LABEL == 'Local backup'

    def test_missing_root(self):
        with pytest.raises(ConfigError, match='LOCAL_BACKUP_ROOT'):
            LocalConfig({}).validate()

    def test_negative_grace(self, local_env):
        with pytest.raises(ConfigError, match='MIRROR_GRACE_DAYS'):
            LocalConfig(dict(local_env, MIRROR_GRACE_DAYS='-1')).validate()


class TestLoadEnvironment:

    def test_loads_file_without_overriding(self, tmp_path, monkeypatch):
        env_file = tmp_path / '.env'
        env_file.write_text('BACKUPCTL_TEST_NEW=from-file\nBACKUPCTL_TEST_SET=from-file\n')
        monkeypatch.setenv('BACKUPCTL_TEST_SET', 'from-shell')
        monkeypatch.delenv('BACKUPCTL_TEST_NEW', raising=False)

        assert load_environment(str(env_file)) is True
        assert os.environ['BACKUPCTL_TEST_NEW'] == 'from-file'
        assert os.environ['BACKUPCTL_TEST_SET'] == 'from-shell'
        monkeypatch.delenv('BACKUPCTL_TEST_NEW')

    def test_missing_file(self, tmp_path):
        assert load_environment(str(tmp_path / 'absent.env')) is False
