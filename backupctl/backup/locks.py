"""
Repository lock arbitration.

A repository may carry lock records left by a concurrent run or by a run that
crashed. Before each backup the arbiter classifies the lock state:

- free:   no lock records
- active: at least one lock younger than the staleness window, or a lock
          whose age cannot be determined
- stale:  every lock is older than the staleness window

Active locks are never touched. Stale locks get one unlock attempt; the target
is only backed up if the repository is free afterwards.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Callable

from backupctl.models import LockState


logger = logging.getLogger(__name__)

STALE_LOCK_MINUTES = 30


@dataclass
class LockDecision:
    """Outcome of arbitration for one repository"""
    proceed: bool
    state: LockState
    unlocked: bool = False


class LockArbiter:
    """
    Classifies repository locks and decides whether a backup may proceed.
    """

    def __init__(
        self,
        gateway,
        stale_after: timedelta = timedelta(minutes=STALE_LOCK_MINUTES),
        list_failure_is_free: bool = True,
        notify: Optional[Callable[[str], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize lock arbiter.

        Args:
            gateway: ResticRepository (or compatible) used to inspect and release locks
            stale_after: Age after which a lock is considered abandoned
            list_failure_is_free: Treat a failed lock listing as free (True) or active (False)
            notify: Optional callable receiving progress messages
            clock: Returns the current aware datetime (defaults to UTC now)
        """
        self.gateway = gateway
        self.stale_after = stale_after
        self.list_failure_is_free = list_failure_is_free
        self.notify = notify or (lambda message: None)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def inspect(self, handle: str) -> LockState:
        """
        Classify the current lock state of a repository.

        Args:
            handle: Repository handle

        Returns:
            LockState.FREE, LockState.ACTIVE or LockState.STALE
        """
        lock_ids = self.gateway.list_locks(handle)
        if lock_ids is None:
            # The listing itself failed
            return LockState.FREE if self.list_failure_is_free else LockState.ACTIVE
        if not lock_ids:
            return LockState.FREE

        now = self.clock()
        for lock_id in lock_ids:
            record = self.gateway.read_lock(handle, lock_id)
            if record.timestamp is None:
                logger.info(f"Lock {lock_id} on {handle} has no readable timestamp")
                return LockState.ACTIVE

            timestamp = record.timestamp
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
            age = now - timestamp
            if age < self.stale_after:
                logger.info(f"Lock {lock_id} on {handle} is {age} old")
                return LockState.ACTIVE

        return LockState.STALE

    def arbitrate(self, handle: str, name: str) -> LockDecision:
        """
        Decide whether the backup of a target may proceed.

        Args:
            handle: Repository handle
            name: Target name (for messages)

        Returns:
            LockDecision
        """
        state = self.inspect(handle)

        if state == LockState.FREE:
            return LockDecision(proceed=True, state=state)

        if state == LockState.ACTIVE:
            self.notify(f"🔒 Repo {name} is currently locked (active). Skipping this repo.")
            return LockDecision(proceed=False, state=state)

        self.notify(f"🧹 Stale locks detected for {name}, attempting unlock")
        try:
            result = self.gateway.unlock(handle)
            if not result.ok:
                logger.warning(f"Unlock failed for {handle} (exit {result.exit_code})")
        except Exception as e:
            logger.warning(f"Unlock failed for {handle}: {e}")

        state = self.inspect(handle)
        if state != LockState.FREE:
            self.notify(f"🔒 Repo {name} still locked after unlock attempt. Skipping.")
            return LockDecision(proceed=False, state=state, unlocked=True)

        return LockDecision(proceed=True, state=state, unlocked=True)
