from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple, Union


PathSpec = Union[str, Dict[str, Any]]


class LockState(str, Enum):
    """Derived lock state of a repository"""
    FREE = 'free'
    ACTIVE = 'active'
    STALE = 'stale'


class TargetStatus(str, Enum):
    """Terminal status of one target in a run"""
    SKIPPED_DISABLED = 'skipped-disabled'
    SKIPPED_MODE_DISABLED = 'skipped-mode-disabled'
    SKIPPED_NO_VALID_PATHS = 'skipped-no-valid-paths'
    SKIPPED_LOCKED = 'skipped-locked'
    SUCCESS = 'success'
    SUCCESS_PARTIAL = 'success-partial'
    FAILED = 'failed'

    @property
    def is_skip(self) -> bool:
        return self.value.startswith('skipped-')

    @property
    def is_success(self) -> bool:
        return self in (TargetStatus.SUCCESS, TargetStatus.SUCCESS_PARTIAL)


@dataclass(frozen=True)
class Target:
    """Backup target loaded from the targets file"""
    name: str
    locations: Tuple[PathSpec, ...]
    enabled: bool = True
    offsite_enabled: bool = False
    local_enabled: bool = False
    retention: Optional[Dict[str, Any]] = None
    check_weekly: bool = False

    def __repr__(self):
        return f'<Target {self.name} enabled={self.enabled}>'


@dataclass(frozen=True)
class LockRecord:
    """Outstanding repository lock as reported by the engine"""
    id: str
    timestamp: Optional[datetime] = None


@dataclass
class TargetOutcome:
    """Result of processing one target"""
    target: str
    status: TargetStatus
    detail: str = ''
    exit_code: Optional[int] = None

    def __repr__(self):
        return f'<TargetOutcome {self.target} status={self.status.value}>'


@dataclass
class RunSummary:
    """Aggregate of one run over all configured targets"""
    total: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    outcomes: List[TargetOutcome] = field(default_factory=list)

    def record(self, outcome: TargetOutcome):
        self.outcomes.append(outcome)
        if outcome.status.is_success:
            self.processed += 1
        elif outcome.status == TargetStatus.FAILED:
            self.failed += 1
        else:
            self.skipped += 1

    def finish(self, finished_at: datetime = None):
        self.finished_at = finished_at or datetime.now()

    @property
    def attempted(self) -> int:
        return self.processed + self.failed

    @property
    def elapsed_seconds(self) -> int:
        end = self.finished_at or datetime.now()
        return max(0, int((end - self.started_at).total_seconds()))

    @property
    def elapsed(self) -> str:
        """Elapsed time formatted as 'Xm Ys'."""
        minutes, seconds = divmod(self.elapsed_seconds, 60)
        return f"{minutes}m {seconds}s"
