"""
APScheduler configuration for recurring backup runs.

Manages:
- One cron-triggered job per backup mode
- A single worker so runs never overlap within this process
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from backupctl.errors import BackupctlError
from backupctl.runner import AbortHandler, load_config, execute_run
from backupctl.backup.engine import CommandRunner
from backupctl.utils.notify import create_notifier


logger = logging.getLogger(__name__)


def create_scheduler(timezone: str = 'UTC') -> BlockingScheduler:
    """
    Create and configure the scheduler.

    Args:
        timezone: Timezone cron expressions are evaluated in

    Returns:
        BlockingScheduler (not started)
    """
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    return BlockingScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=timezone
    )


def scheduled_run(mode: str, targets_file: str = None, abort_handler: AbortHandler = None) -> int:
    """
    Run one backup from the scheduler.

    Configuration is rebuilt on every run so changes to the environment or the
    targets file are picked up without a restart. Errors are logged and never
    propagate into the scheduler.

    Args:
        mode: 'offsite' or 'local'
        targets_file: Optional targets file override
        abort_handler: Process signal handler the run is attached to while it executes

    Returns:
        Number of failed targets (-1 if the run could not start)
    """
    cfg = load_config(mode, targets_file)
    notifier = create_notifier(cfg)

    env = cfg.engine_environment() if cfg.MODE == 'offsite' else None
    command_runner = CommandRunner(env=env)

    notify = notifier
    if abort_handler is not None:
        abort_handler.attach(notifier, command_runner, cfg.BACKUP_LABEL)
        notify = abort_handler.guard(notifier)

    try:
        summary = execute_run(cfg, notify, command_runner=command_runner)
    except BackupctlError as e:
        logger.error(f"Scheduled {mode} run not started: {e}")
        return -1
    except Exception:
        logger.exception(f"Scheduled {mode} run crashed")
        notify(f"❌ {cfg.BACKUP_LABEL} aborted: unexpected error, see logs")
        return -1
    finally:
        if abort_handler is not None:
            abort_handler.detach()

    logger.info(f"Scheduled {mode} run finished: {summary.processed} processed, {summary.failed} failed")
    return summary.failed


def add_backup_job(scheduler, mode: str, cron: str, targets_file: str = None, timezone: str = 'UTC',
                   abort_handler: AbortHandler = None):
    """
    Schedule a backup mode on a cron expression.

    Args:
        scheduler: APScheduler instance
        mode: 'offsite' or 'local'
        cron: Standard 5-field crontab expression
        targets_file: Optional targets file override
        timezone: Timezone of the cron expression
        abort_handler: Signal handler each run attaches to

    Raises:
        ValueError: If the cron expression is invalid
    """
    trigger = CronTrigger.from_crontab(cron, timezone=timezone)

    scheduler.add_job(
        func=scheduled_run,
        args=[mode, targets_file, abort_handler],
        trigger=trigger,
        id=f"backup_{mode}",
        name=f"Backup: {mode}",
        replace_existing=True
    )

    logger.info(f"Scheduled {mode} backup ({cron})")


def run_scheduler(jobs, targets_file: str = None, timezone: str = 'UTC'):
    """
    Block and run scheduled backups until interrupted.

    SIGINT/SIGTERM notify the run in progress (if any), stop its command,
    shut the scheduler down without waiting and exit with 128 + signal number.

    Args:
        jobs: Iterable of (mode, cron) pairs
        targets_file: Optional targets file override
        timezone: Timezone of the cron expressions
    """
    scheduler = create_scheduler(timezone)
    abort_handler = AbortHandler(on_abort=lambda: scheduler.shutdown(wait=False))

    for mode, cron in jobs:
        add_backup_job(scheduler, mode, cron, targets_file=targets_file, timezone=timezone,
                       abort_handler=abort_handler)

    for job in scheduler.get_jobs():
        logger.info(f"  - {job.id}: {job.name}")

    abort_handler.install()
    try:
        scheduler.start()
    except SystemExit:
        logger.info("Scheduler stopped")
        raise
