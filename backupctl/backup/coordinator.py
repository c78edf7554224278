"""
Run coordinator - processes every configured target in order.

A failure in one target never stops the run: anything a runner raises is
converted into a failed outcome for that target.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Sequence

from backupctl.models import Target, TargetOutcome, TargetStatus, RunSummary
from .engine import CommandRunner, ResticRepository, MirrorGateway
from .executor import OffsiteTargetRunner, MirrorTargetRunner, short_hostname
from .locks import LockArbiter
from .retention import MirrorPruner


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


class RunCoordinator:
    """
    Drives a TargetRunner over all targets and aggregates a RunSummary.
    """

    def __init__(self, runner, notify: Callable[[str], None], label: str = 'Backup',
                 host: str = None, banner: str = None):
        """
        Initialize run coordinator.

        Args:
            runner: TargetRunner used for every target
            notify: Notification callable
            label: Human name of the run ('Backup', 'Local backup')
            host: Host name shown in the start message
            banner: Extra line appended to the start message
        """
        self.runner = runner
        self.notify = notify
        self.label = label
        self.host = host
        self.banner = banner

    def run(self, targets: Sequence[Target]) -> RunSummary:
        """
        Process all targets sequentially.

        Args:
            targets: Targets in configuration order

        Returns:
            Finalized RunSummary
        """
        summary = RunSummary(total=len(targets), started_at=datetime.now())

        start_message = f"🗄️ {self.label} started @ {summary.started_at.strftime(TIMESTAMP_FORMAT)}"
        if self.host:
            start_message += f" on {self.host}"
        if self.banner:
            start_message += f"\n{self.banner}"
        self.notify(start_message)

        for target in targets:
            outcome = self._run_target(target)
            summary.record(outcome)
            logger.info(f"{target.name}: {outcome.status.value} ({outcome.detail})")

        summary.finish(datetime.now())
        self.notify(self.format_summary(summary))
        return summary

    def _run_target(self, target: Target) -> TargetOutcome:
        try:
            return self.runner.run(target)
        except Exception as e:
            logger.exception(f"Unhandled error while processing {target.name}")
            self.notify(f"❌ {self.label} failed for {target.name}: {e}")
            return TargetOutcome(target.name, TargetStatus.FAILED, str(e))

    def format_summary(self, summary: RunSummary) -> str:
        end_ts = summary.finished_at.strftime(TIMESTAMP_FORMAT)
        if summary.failed == 0:
            head = f"[OK] {self.label} finished @ {end_ts}"
        else:
            head = f"[ERROR] {self.label} finished with errors @ {end_ts}"

        return (
            f"{head}\n"
            f"Processed: {summary.processed} / {summary.total}\n"
            f"Failed: {summary.failed}\n"
            f"Duration: {summary.elapsed}"
        )


def create_coordinator(config, notify: Callable[[str], None], command_runner=None) -> RunCoordinator:
    """
    Wire the gateway, runner and coordinator for a configuration.

    Args:
        config: OffsiteConfig or LocalConfig instance (already validated)
        notify: Notification callable
        command_runner: CommandRunner to use (built from config if omitted)

    Returns:
        RunCoordinator ready to run
    """
    host = short_hostname()

    if config.MODE == 'offsite':
        command_runner = command_runner or CommandRunner(env=config.engine_environment())
        gateway = ResticRepository(
            command_runner,
            binary=config.RESTIC_BIN,
            password_file=config.RESTIC_PASSWORD_FILE,
        )
        arbiter = LockArbiter(
            gateway,
            stale_after=timedelta(minutes=config.LOCK_STALE_MINUTES),
            list_failure_is_free=config.LOCK_LIST_FAILURE_IS_FREE,
            notify=notify,
        )
        runner = OffsiteTargetRunner(
            gateway,
            repository_for=config.repository_for,
            notify=notify,
            arbiter=arbiter,
            host_tag=host,
            check_weekday=config.CHECK_WEEKDAY,
        )
        return RunCoordinator(runner, notify, label=config.BACKUP_LABEL, host=host)

    if config.MODE == 'local':
        command_runner = command_runner or CommandRunner()
        runner = MirrorTargetRunner(
            MirrorGateway(command_runner, binary=config.RSYNC_BIN),
            backup_root=config.LOCAL_BACKUP_ROOT,
            notify=notify,
            pruner=MirrorPruner(config.MIRROR_GRACE_DAYS),
        )
        return RunCoordinator(
            runner,
            notify,
            label=config.BACKUP_LABEL,
            host=host,
            banner=f"[INFO] Backup root: {config.LOCAL_BACKUP_ROOT}",
        )

    raise ValueError(f"Invalid backup mode: {config.MODE}")
