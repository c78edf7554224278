"""
Shared pytest fixtures for backupctl tests.

This module provides fixtures for:
- Target factories
- A recording notifier
- Mock restic and rsync gateways
- Environment mappings for offsite and local runs
- Temporary source trees
"""

import json
from unittest.mock import MagicMock

import pytest

from backupctl.models import Target
from backupctl.backup.engine import (
    ResticRepository,
    MirrorGateway,
    EngineResult,
    BackupResult,
    BackupStatus,
    MirrorResult,
)


class RecordingNotifier:
    """Notifier double that keeps every message."""

    def __init__(self):
        self.messages = []
        self.log_only = []

    def __call__(self, text, chat=True):
        self.messages.append(text)
        if not chat:
            self.log_only.append(text)

    notify = __call__

    def contains(self, fragment):
        return any(fragment in message for message in self.messages)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_target():
    """
    Factory for Target instances.

    Defaults to an enabled target with offsite and local backups turned on.
    """
    def _make(name='documents', locations=(), **kwargs):
        kwargs.setdefault('offsite_enabled', True)
        kwargs.setdefault('local_enabled', True)
        return Target(name=name, locations=tuple(locations), **kwargs)

    return _make


@pytest.fixture
def source_tree(tmp_path):
    """
    Create a source directory with a few files.

    Creates:
    - source/a.txt
    - source/nested/b.txt
    """
    source = tmp_path / 'source'
    (source / 'nested').mkdir(parents=True)
    (source / 'a.txt').write_text('alpha')
    (source / 'nested' / 'b.txt').write_text('beta')
    return source


@pytest.fixture
def restic_gateway():
    """
    Mock ResticRepository for a healthy, existing, unlocked repository.
    """
    gateway = MagicMock(spec=ResticRepository)
    gateway.exists.return_value = True
    gateway.initialize.return_value = EngineResult(ok=True, exit_code=0)
    gateway.list_locks.return_value = []
    gateway.unlock.return_value = EngineResult(ok=True, exit_code=0)
    gateway.backup.return_value = BackupResult(
        status=BackupStatus.COMPLETE, exit_code=0, output='snapshot 1a2b3c4d saved\n'
    )
    gateway.prune.return_value = EngineResult(ok=True, message='removed 2 snapshots', exit_code=0)
    gateway.check.return_value = EngineResult(ok=True, message='no errors were found', exit_code=0)
    return gateway


@pytest.fixture
def mirror_gateway():
    """Mock MirrorGateway whose mirror call succeeds."""
    gateway = MagicMock(spec=MirrorGateway)
    gateway.mirror.side_effect = lambda paths, destination: MirrorResult(
        ok=True, exit_code=0, output='sent 120 bytes\n', destination=destination
    )
    return gateway


@pytest.fixture
def offsite_env(tmp_path):
    """Environment mapping with every offsite secret set."""
    return {
        'B2_BUCKET_NAME': 'test-bucket',
        'B2_ACCOUNT_ID': 'test-account',
        'B2_ACCOUNT_KEY': 'test-key',
        'RESTIC_PASSWORD': 'test-password',
        'TARGETS_FILE': str(tmp_path / 'targets.json'),
    }


@pytest.fixture
def local_env(tmp_path):
    """Environment mapping for local mirror runs."""
    return {
        'LOCAL_BACKUP_ROOT': str(tmp_path / 'mirror'),
        'TARGETS_FILE': str(tmp_path / 'targets.json'),
    }


@pytest.fixture
def write_targets(tmp_path):
    """Write a targets document and return its path."""
    def _write(document, name='targets.json'):
        path = tmp_path / name
        if isinstance(document, str):
            path.write_text(document)
        else:
            path.write_text(json.dumps(document))
        return path

    return _write
