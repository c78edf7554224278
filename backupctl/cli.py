"""Command line interface for backupctl."""

import argparse
import logging
import sys

from backupctl import __version__, configure_logging
from backupctl.config import load_environment
from backupctl.errors import BackupctlError
from backupctl.targets import load_targets
from backupctl.runner import AbortHandler, load_config, execute_run
from backupctl.scheduler import run_scheduler
from backupctl.backup.engine import CommandRunner
from backupctl.utils.notify import create_notifier


logger = logging.getLogger(__name__)


def _load(args, mode):
    cfg = load_config(mode, args.targets)
    if args.log_level:
        cfg.LOG_LEVEL = args.log_level
    configure_logging(cfg)
    return cfg


def _run_backup(args) -> int:
    cfg = _load(args, args.command)
    notifier = create_notifier(cfg)

    env = cfg.engine_environment() if cfg.MODE == 'offsite' else None
    command_runner = CommandRunner(env=env)
    AbortHandler(notifier, command_runner, cfg.BACKUP_LABEL).install()

    try:
        summary = execute_run(cfg, notifier, command_runner=command_runner)
    except BackupctlError:
        return 1
    except Exception as e:
        logger.exception("Run crashed")
        notifier(f"❌ {cfg.BACKUP_LABEL} aborted (exit 1): {e}")
        return 1

    return 0 if summary.failed == 0 else 1


def _validate(args) -> int:
    cfg = _load(args, 'offsite')

    try:
        targets = load_targets(cfg.TARGETS_FILE)
    except BackupctlError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    print(f"{cfg.TARGETS_FILE}: {len(targets)} targets")
    for target in targets:
        flags = []
        if not target.enabled:
            flags.append('disabled')
        if target.offsite_enabled:
            flags.append('offsite')
        if target.local_enabled:
            flags.append('local')
        if target.check_weekly:
            flags.append('check-weekly')
        print(f"  {target.name:<24} {len(target.locations):>3} locations  {' '.join(flags)}")
    return 0


def _schedule(args) -> int:
    _load(args, args.mode[0])

    try:
        run_scheduler([(mode, args.cron) for mode in args.mode], targets_file=args.targets, timezone=args.timezone)
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='backupctl',
        description='Back up declared targets with restic (offsite) or rsync (local).'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--targets', help='Targets file (default: $TARGETS_FILE or ./targets.json)')
    parser.add_argument('--env-file', help='Dotenv file to load (default: $ENV_FILE or ./.env)')
    parser.add_argument('--log-level', help='Log level (default: $LOG_LEVEL or INFO)')

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('offsite', help='Back up targets to restic repositories on B2')
    subparsers.add_parser('local', help='Mirror targets onto LOCAL_BACKUP_ROOT with rsync')
    subparsers.add_parser('validate', help='Check the targets file and list targets')

    schedule = subparsers.add_parser('schedule', help='Run backups on a cron schedule')
    schedule.add_argument('--cron', required=True, help="Crontab expression, e.g. '0 3 * * *'")
    schedule.add_argument(
        '--mode', action='append', choices=['offsite', 'local'],
        help='Backup mode to schedule (repeatable, default: offsite)'
    )
    schedule.add_argument('--timezone', default='UTC', help='Timezone of the cron expression')

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_environment(args.env_file)

    if args.command in ('offsite', 'local'):
        return _run_backup(args)
    if args.command == 'validate':
        return _validate(args)
    if args.command == 'schedule':
        args.mode = args.mode or ['offsite']
        return _schedule(args)

    parser.error(f"Unknown command: {args.command}")


if __name__ == '__main__':
    sys.exit(main())
