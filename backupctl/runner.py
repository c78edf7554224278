"""
Run service - loads configuration and targets, then executes one run.

Pre-run fatal conditions (missing secrets, missing engine binary, missing or
invalid targets file) are reported once through the notifier and re-raised,
before any target is attempted.
"""

import logging
import signal

from backupctl.config import config as config_classes
from backupctl.errors import BackupctlError
from backupctl.targets import load_targets
from backupctl.models import RunSummary
from backupctl.backup.engine import CommandRunner, require_binary
from backupctl.backup.coordinator import create_coordinator


logger = logging.getLogger(__name__)


def load_config(mode: str, targets_file: str = None, environ=None):
    """
    Build the configuration for a backup mode.

    Args:
        mode: 'offsite' or 'local'
        targets_file: Overrides TARGETS_FILE when given
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Config instance (not yet validated)

    Raises:
        ValueError: If mode is invalid
    """
    if mode not in ('offsite', 'local'):
        raise ValueError(f"Invalid backup mode: {mode}")

    cfg = config_classes[mode](environ)
    if targets_file:
        cfg.TARGETS_FILE = targets_file
    return cfg


def execute_run(cfg, notify, command_runner: CommandRunner = None) -> RunSummary:
    """
    Execute one backup run.

    Args:
        cfg: Config instance for the run
        notify: Notification callable
        command_runner: CommandRunner for engine calls (built from cfg if omitted)

    Returns:
        RunSummary of the run

    Raises:
        BackupctlError: On a pre-run fatal condition (already notified)
    """
    try:
        cfg.validate()
        binary = cfg.RESTIC_BIN if cfg.MODE == 'offsite' else cfg.RSYNC_BIN
        require_binary(binary)
        targets = load_targets(cfg.TARGETS_FILE)
    except BackupctlError as e:
        logger.error(f"Pre-run check failed: {e}")
        notify(f"❌ {cfg.BACKUP_LABEL} not started: {e}")
        raise

    logger.info(f"Loaded {len(targets)} targets from {cfg.TARGETS_FILE}")

    if command_runner is None:
        env = cfg.engine_environment() if cfg.MODE == 'offsite' else None
        command_runner = CommandRunner(env=env)

    coordinator = create_coordinator(cfg, notify, command_runner=command_runner)
    return coordinator.run(targets)


class AbortHandler:
    """
    Turns SIGINT/SIGTERM into one abort notification and an immediate exit.

    A foreground run passes its notifier and CommandRunner up front. The
    scheduler installs one handler for the process and attaches each job's
    run to it while the job executes.
    """

    def __init__(self, notify=None, command_runner: CommandRunner = None, label: str = 'Backup',
                 on_abort=None):
        """
        Initialize abort handler.

        Args:
            notify: Notification callable of the active run
            command_runner: CommandRunner of the active run
            label: Human name of the active run
            on_abort: Called once before exiting (e.g. to stop a scheduler)
        """
        self.notify = notify
        self.command_runner = command_runner
        self.label = label
        self.on_abort = on_abort
        self.fired = False

    def install(self):
        signal.signal(signal.SIGINT, self)
        signal.signal(signal.SIGTERM, self)

    def attach(self, notify, command_runner: CommandRunner, label: str):
        self.notify = notify
        self.command_runner = command_runner
        self.label = label

    def detach(self):
        self.notify = None
        self.command_runner = None

    def guard(self, notify):
        """Wrap a notifier so it goes quiet once the run was aborted."""
        def _notify(text, chat=True):
            if not self.fired:
                notify(text, chat=chat)
        return _notify

    def __call__(self, signum, frame):
        exit_code = 128 + signum
        if not self.fired:
            self.fired = True
            notify, command_runner = self.notify, self.command_runner
            if command_runner is not None:
                command = command_runner.current_command or command_runner.last_command or 'n/a'
                command_runner.terminate()
                try:
                    notify(f"❌ {self.label} aborted (exit {exit_code}) during: {command}")
                except Exception:
                    logger.exception("Abort notification failed")
            if self.on_abort is not None:
                self.on_abort()
        raise SystemExit(exit_code)
