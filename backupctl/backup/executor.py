"""
Target runners - orchestrate the backup workflow of a single target.

Offsite workflow (restic):
1. Skip disabled targets and targets with offsite backups turned off
2. Resolve source paths (skip when none exist)
3. Ensure the repository exists
4. Arbitrate repository locks (skip when locked)
5. Back up all paths in one snapshot
6. Apply retention (best-effort)
7. Run the weekly integrity check when due (best-effort)

Local workflow (rsync):
1. Skip disabled targets and targets with local backups turned off
2. Resolve source paths (skip when none exist)
3. Mirror into LOCAL_BACKUP_ROOT/<name>
4. Soft-delete prune the mirror

Every skip and terminal outcome is reported through the notifier before the
runner returns. The disabled and mode-disabled skips stay out of the chat and
only reach the message log.
"""

import logging
import os
import socket
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional

from backupctl.models import Target, TargetOutcome, TargetStatus
from .sources import PathResolver
from .locks import LockArbiter
from .engine import BackupStatus
from .retention import build_retention_args, MirrorPruner


logger = logging.getLogger(__name__)


def short_hostname() -> str:
    """Short host name used to tag snapshots."""
    try:
        name = socket.gethostname()
    except OSError:
        name = ''
    return name.split('.')[0] or 'unknown'


def _bullets(paths: List[str], marker: str = '•') -> str:
    return '\n'.join(f"{marker} {path}" for path in paths)


class TargetRunner(ABC):
    """
    Common skeleton for per-target runners.
    """

    mode = None

    def __init__(self, notify: Callable[[str], None], resolver: PathResolver = None):
        self.notify = notify
        self.resolver = resolver or PathResolver()

    @abstractmethod
    def mode_enabled(self, target: Target) -> bool:
        """Whether the target has this runner's backup mode turned on."""

    def run(self, target: Target) -> TargetOutcome:
        """
        Process one target.

        Args:
            target: Target to back up

        Returns:
            TargetOutcome describing what happened
        """
        if not target.enabled:
            self.notify(f"[SKIP] {target.name} (disabled)", chat=False)
            return TargetOutcome(target.name, TargetStatus.SKIPPED_DISABLED, 'disabled')

        if not self.mode_enabled(target):
            self.notify(f"[SKIP] {target.name} ({self.mode} backup disabled)", chat=False)
            return TargetOutcome(target.name, TargetStatus.SKIPPED_MODE_DISABLED, f"{self.mode} backup disabled")

        paths = self.resolver.resolve(target.locations)
        if not paths:
            self.notify(f"[WARN] No valid paths for {self.mode} backup {target.name}, skipping")
            return TargetOutcome(target.name, TargetStatus.SKIPPED_NO_VALID_PATHS, 'no valid paths')

        return self.process(target, paths)

    @abstractmethod
    def process(self, target: Target, paths: List[str]) -> TargetOutcome:
        """Back up the resolved paths of an enabled target."""


class OffsiteTargetRunner(TargetRunner):
    """
    Backs up a target to its own restic repository.
    """

    mode = 'offsite'

    def __init__(
        self,
        gateway,
        repository_for: Callable[[str], str],
        notify: Callable[[str], None],
        arbiter: LockArbiter = None,
        host_tag: str = None,
        check_weekday: int = 7,
        resolver: PathResolver = None,
        today: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize offsite runner.

        Args:
            gateway: ResticRepository (or compatible)
            repository_for: Maps a target name to its repository handle
            notify: Notification callable
            arbiter: LockArbiter (built from gateway if omitted)
            host_tag: Host identity for snapshots (defaults to the short hostname)
            check_weekday: ISO weekday on which weekly checks run (7 = Sunday)
            resolver: PathResolver
            today: Returns the current datetime (for the check schedule)
        """
        super().__init__(notify, resolver)
        self.gateway = gateway
        self.repository_for = repository_for
        self.arbiter = arbiter or LockArbiter(gateway, notify=notify)
        self.host_tag = host_tag or short_hostname()
        self.check_weekday = check_weekday
        self.today = today or (lambda: datetime.now())

    def mode_enabled(self, target: Target) -> bool:
        return target.offsite_enabled

    def process(self, target: Target, paths: List[str]) -> TargetOutcome:
        name = target.name
        handle = self.repository_for(name)

        init_outcome = self._ensure_repository(name, handle)
        if init_outcome is not None:
            return init_outcome

        decision = self.arbiter.arbitrate(handle, name)
        if not decision.proceed:
            return TargetOutcome(name, TargetStatus.SKIPPED_LOCKED, f"repository {decision.state.value}")

        self.notify(f"📦 Backup → {name}\n{_bullets(paths)}")
        result = self.gateway.backup(handle, paths, self.host_tag)
        tail = '\n'.join(result.output.rstrip('\n').splitlines()[-60:])

        if result.status == BackupStatus.FAILED:
            self.notify(f"❌ Backup failed for {name} (exit {result.exit_code})\n{tail}")
            return TargetOutcome(name, TargetStatus.FAILED, 'backup failed', result.exit_code)

        if result.status == BackupStatus.PARTIAL:
            self.notify(f"⚠️ Backup completed with unreadable files for {name} (exit {result.exit_code})\n{tail}")
            status = TargetStatus.SUCCESS_PARTIAL
        else:
            short_tail = '\n'.join(tail.splitlines()[-30:])
            self.notify(f"✅ Backup completed for {name}\n{short_tail}")
            status = TargetStatus.SUCCESS

        self._apply_retention(name, handle, target.retention)

        if target.check_weekly and self._check_due():
            self._run_check(name, handle)

        return TargetOutcome(name, status, result.status.value, result.exit_code)

    def _ensure_repository(self, name: str, handle: str) -> Optional[TargetOutcome]:
        if self.gateway.exists(handle):
            return None

        self.notify(f"ℹ️ Initialising repo → {handle}")
        result = self.gateway.initialize(handle)
        if not result.ok:
            self.notify(f"❌ Repo init failed for {handle}\n{result.message}")
            return TargetOutcome(name, TargetStatus.FAILED, 'repository init failed', result.exit_code)

        if result.already_existed:
            self.notify(f"ℹ️ Repo already initialized → {handle}")
        return None

    def _apply_retention(self, name: str, handle: str, retention):
        args = build_retention_args(retention)
        try:
            result = self.gateway.prune(handle, args)
        except Exception as e:
            logger.exception(f"Retention raised for {handle}")
            self.notify(f"⚠️ Retention failed for {handle}: {e}")
            return

        if result.ok:
            self.notify(f"🧹 Retention ok for {handle}\n{result.message}")
        else:
            self.notify(f"⚠️ Retention failed for {handle} (exit {result.exit_code})\n{result.message}")

    def _check_due(self) -> bool:
        return self.today().isoweekday() == self.check_weekday

    def _run_check(self, name: str, handle: str):
        try:
            result = self.gateway.check(handle)
        except Exception as e:
            logger.exception(f"Check raised for {handle}")
            self.notify(f"⚠️ Check failed for {name}: {e}")
            return

        if result.ok:
            self.notify(f"🧪 Check ok for {name}")
        else:
            self.notify(f"⚠️ Check failed for {name}\n{result.message}")


class MirrorTargetRunner(TargetRunner):
    """
    Mirrors a target onto a local drive and soft-delete prunes the mirror.
    """

    mode = 'local'

    def __init__(
        self,
        gateway,
        backup_root: str,
        notify: Callable[[str], None],
        pruner: MirrorPruner = None,
        resolver: PathResolver = None,
    ):
        """
        Initialize mirror runner.

        Args:
            gateway: MirrorGateway (or compatible)
            backup_root: Root directory holding one mirror per target
            notify: Notification callable
            pruner: MirrorPruner (default grace period if omitted)
            resolver: PathResolver
        """
        super().__init__(notify, resolver)
        self.gateway = gateway
        self.backup_root = backup_root
        self.pruner = pruner or MirrorPruner()

    def mode_enabled(self, target: Target) -> bool:
        return target.local_enabled

    def process(self, target: Target, paths: List[str]) -> TargetOutcome:
        name = target.name
        destination = os.path.join(self.backup_root, name)

        self.notify(f"[BACKUP] Local backup -> {name}\n{_bullets(paths, ' ')}")
        result = self.gateway.mirror(paths, destination)
        lines = result.output.rstrip('\n').splitlines()

        if not result.ok:
            tail = '\n'.join(lines[-30:])
            self.notify(f"[ERROR] Local backup failed for {name} (exit {result.exit_code})\n{tail}")
            return TargetOutcome(name, TargetStatus.FAILED, 'mirror failed', result.exit_code)

        tail = '\n'.join(lines[-20:])
        self.notify(f"[OK] Local backup completed for {name}\n{tail}")

        self.notify(
            f"[OK] Pruning files older than {self.pruner.grace_days} days "
            f"that don't exist on source for {name}"
        )
        try:
            deleted = self.pruner.prune(destination, paths)
        except OSError as e:
            logger.exception(f"Pruning failed for {destination}")
            self.notify(f"[WARN] Pruning failed for {name}: {e}")
        else:
            self.notify(f"[INFO] Deleted {deleted} old files from backup of {name}")

        return TargetOutcome(name, TargetStatus.SUCCESS, 'mirrored', result.exit_code)
