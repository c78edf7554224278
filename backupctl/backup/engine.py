"""
External engine gateways.

ResticRepository wraps the per-repository restic operations and isolates all
parsing of restic's output. MirrorGateway wraps the rsync mirror call.

Every command goes through a CommandRunner. It keeps stdout apart from stderr
and remembers the command currently in flight so an interrupted run can
report it.
"""

import json
import logging
import re
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, List, Sequence

from backupctl.errors import EngineError, EngineNotFoundError
from backupctl.models import LockRecord


logger = logging.getLogger(__name__)

# restic exit code for "snapshot created but some source files could not be read"
RESTIC_EXIT_PARTIAL = 3

ALREADY_INITIALIZED_MARKERS = (
    'already initialized',
    'config file already exists',
)


def require_binary(name: str) -> str:
    """
    Locate a required executable on PATH.

    Args:
        name: Executable name or path

    Returns:
        Absolute path to the executable

    Raises:
        EngineNotFoundError: If the executable cannot be found
    """
    path = shutil.which(name)
    if not path:
        raise EngineNotFoundError(f"{name} not found")
    return path


@dataclass
class CommandResult:
    """Exit status and output of one external command"""
    args: List[str]
    returncode: int
    output: str = ''
    stdout: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 30) -> str:
        """Last `lines` lines of output."""
        return '\n'.join(self.output.rstrip('\n').splitlines()[-lines:])


class CommandRunner:
    """
    Runs external commands synchronously.

    stdout is kept on its own for parsing; `output` holds stdout followed by
    stderr for reporting. terminate() stops the command in flight and makes
    every later run() fail fast.
    """

    def __init__(self, env: Optional[dict] = None):
        self.env = env
        self.current_command = None
        self.last_command = None
        self.aborted = False
        self._process = None

    def run(self, args: Sequence[str]) -> CommandResult:
        if self.aborted:
            raise EngineError("Run aborted")

        args = [str(arg) for arg in args]
        display = shlex.join(args)
        self.current_command = display
        self.last_command = display
        logger.debug(f"Running: {display}")

        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=self.env,
            )
        except FileNotFoundError as e:
            self.current_command = None
            raise EngineNotFoundError(f"{args[0]} not found: {e}")

        self._process = process
        try:
            stdout, stderr = process.communicate()
        except BaseException:
            process.kill()
            process.wait()
            raise
        finally:
            self._process = None
            self.current_command = None

        stdout = stdout or ''
        stderr = stderr or ''
        logger.debug(f"Exit {process.returncode}: {display}")
        return CommandResult(
            args=args,
            returncode=process.returncode,
            output=stdout + stderr,
            stdout=stdout,
        )

    def terminate(self):
        """Stop the command in flight and refuse further commands."""
        self.aborted = True
        process = self._process
        if process is not None and process.poll() is None:
            logger.warning(f"Terminating: {self.current_command}")
            process.terminate()


@dataclass
class EngineResult:
    """Structured result of a repository operation"""
    ok: bool
    message: str = ''
    exit_code: Optional[int] = None
    already_existed: bool = False


class BackupStatus(str, Enum):
    COMPLETE = 'complete'
    PARTIAL = 'partial'
    FAILED = 'failed'


@dataclass
class BackupResult:
    """Classified result of a backup invocation"""
    status: BackupStatus
    exit_code: int
    output: str = ''

    @property
    def fatal(self) -> bool:
        return self.status == BackupStatus.FAILED


def classify_backup_exit(returncode: int) -> BackupStatus:
    if returncode == 0:
        return BackupStatus.COMPLETE
    if returncode == RESTIC_EXIT_PARTIAL:
        return BackupStatus.PARTIAL
    return BackupStatus.FAILED


_FRACTION = re.compile(r'(\.\d+)')


def parse_lock_time(value) -> Optional[datetime]:
    """
    Parse the RFC 3339 'time' field of a restic lock.

    restic writes nanosecond precision, which datetime cannot hold, so the
    fraction is truncated to microseconds. Naive values are taken as UTC.

    Returns:
        Timezone-aware datetime, or None if the value cannot be parsed
    """
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    text = _FRACTION.sub(lambda m: '.' + m.group(1)[1:7].ljust(6, '0'), text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ResticRepository:
    """
    Gateway to restic operations on B2 repositories.
    """

    def __init__(self, runner: CommandRunner, binary: str = 'restic', password_file: Optional[str] = None):
        """
        Initialize restic gateway.

        Args:
            runner: CommandRunner carrying the engine environment
            binary: restic executable
            password_file: Optional repository password file
        """
        self.runner = runner
        self.binary = binary
        self.password_file = password_file

    def _command(self, handle: str, *args: str) -> List[str]:
        cmd = [self.binary, '-r', handle]
        if self.password_file:
            cmd += ['--password-file', self.password_file]
        cmd += list(args)
        return cmd

    def _run(self, handle: str, *args: str) -> CommandResult:
        return self.runner.run(self._command(handle, *args))

    def exists(self, handle: str) -> bool:
        """Probe the repository config; False means it must be initialised."""
        return self._run(handle, 'cat', 'config').ok

    def initialize(self, handle: str) -> EngineResult:
        """
        Create the repository.

        A repository created concurrently by another process counts as success.
        """
        result = self._run(handle, 'init')
        if result.ok:
            return EngineResult(ok=True, message=result.tail(10), exit_code=0)

        lowered = result.output.lower()
        if any(marker in lowered for marker in ALREADY_INITIALIZED_MARKERS):
            return EngineResult(ok=True, message=result.tail(10), exit_code=result.returncode, already_existed=True)

        return EngineResult(ok=False, message=result.tail(60), exit_code=result.returncode)

    def backup(self, handle: str, paths: Sequence[str], host_tag: str) -> BackupResult:
        """Back up all paths of a target in a single snapshot."""
        result = self._run(handle, 'backup', *paths, '--host', host_tag)
        return BackupResult(
            status=classify_backup_exit(result.returncode),
            exit_code=result.returncode,
            output=result.output,
        )

    def prune(self, handle: str, retention_args: Sequence[str]) -> EngineResult:
        result = self._run(handle, 'forget', '--prune', *retention_args)
        if result.ok:
            return EngineResult(ok=True, message=result.tail(30), exit_code=0)
        return EngineResult(ok=False, message=result.tail(60), exit_code=result.returncode)

    def check(self, handle: str) -> EngineResult:
        result = self._run(handle, 'check')
        if result.ok:
            return EngineResult(ok=True, message=result.tail(10), exit_code=0)
        return EngineResult(ok=False, message=result.tail(60), exit_code=result.returncode)

    def list_locks(self, handle: str) -> Optional[List[str]]:
        """
        List outstanding lock ids.

        Returns:
            Lock ids, or None if the listing itself failed
        """
        result = self._run(handle, 'list', 'locks', '--no-lock')
        if not result.ok:
            logger.warning(f"Listing locks failed for {handle} (exit {result.returncode})")
            return None

        ids = []
        for line in result.stdout.splitlines():
            fields = line.split()
            if fields:
                ids.append(fields[0])
        return ids

    def read_lock(self, handle: str, lock_id: str) -> LockRecord:
        """
        Read one lock record. An unreadable lock yields a record without timestamp.
        """
        result = self._run(handle, 'cat', 'lock', lock_id, '--json')
        if not result.ok:
            return LockRecord(id=lock_id)

        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError:
            return LockRecord(id=lock_id)

        if not isinstance(payload, dict):
            return LockRecord(id=lock_id)
        return LockRecord(id=lock_id, timestamp=parse_lock_time(payload.get('time')))

    def unlock(self, handle: str) -> EngineResult:
        result = self._run(handle, 'unlock')
        return EngineResult(ok=result.ok, message=result.tail(10), exit_code=result.returncode)


@dataclass
class MirrorResult:
    ok: bool
    exit_code: int
    output: str = ''
    destination: str = ''


class MirrorGateway:
    """
    Gateway to rsync for mirroring a target onto a local drive.
    """

    def __init__(self, runner: CommandRunner, binary: str = 'rsync'):
        self.runner = runner
        self.binary = binary

    def mirror(self, paths: Sequence[str], destination: str) -> MirrorResult:
        """
        Mirror source paths into destination with archive and delete semantics.
        """
        Path(destination).mkdir(parents=True, exist_ok=True)
        target = destination.rstrip('/') + '/'
        result = self.runner.run([self.binary, '-av', '--delete', *paths, target])
        return MirrorResult(
            ok=result.ok,
            exit_code=result.returncode,
            output=result.output,
            destination=destination,
        )
