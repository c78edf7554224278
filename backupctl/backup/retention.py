"""
Retention policy enforcement for backups.

Two policies live here:
- restic snapshot retention, expressed as `forget --prune` flags built from a
  target's declarative retention spec
- soft-delete pruning of local mirrors, which only removes files that are both
  past the grace period and gone from every source location
"""

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Dict, Any, Optional, Sequence


logger = logging.getLogger(__name__)

DEFAULT_RETENTION = {'keepWithin': '1m'}

MIRROR_GRACE_DAYS = 60

# Recognized retention keys and the restic flag each one maps to
RETENTION_FLAGS = {
    'keepLast': '--keep-last',
    'keepHourly': '--keep-hourly',
    'keepDaily': '--keep-daily',
    'keepWeekly': '--keep-weekly',
    'keepMonthly': '--keep-monthly',
    'keepYearly': '--keep-yearly',
    'keepWithin': '--keep-within',
    'groupBy': '--group-by',
}


def build_retention_args(retention: Optional[Dict[str, Any]]) -> List[str]:
    """
    Translate a retention spec into restic forget flags.

    Keys keep the order in which they appear in the spec. Unknown keys are
    ignored. Values are passed through literally, with JSON scalars written
    the way they appear in the targets file. Only a missing (None) spec falls
    back to the default policy; an empty mapping yields no flags.

    Args:
        retention: Retention spec, or None for the default policy

    Returns:
        Flat list of flag/value arguments
    """
    if retention is None:
        retention = DEFAULT_RETENTION

    args = []
    for key, value in retention.items():
        flag = RETENTION_FLAGS.get(key)
        if flag is None:
            logger.debug(f"Ignoring unknown retention key: {key}")
            continue
        args.extend([flag, _literal(value)])

    return args


def _literal(value) -> str:
    if isinstance(value, str):
        return value
    # 7.0 in the targets file means 7
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return json.dumps(value, separators=(',', ':'))


class MirrorPruner:
    """
    Removes files from a local mirror that have disappeared from the source.

    A file is deleted only when it is older than the grace period AND its
    relative path exists under none of the source locations.
    """

    def __init__(self, grace_days: int = MIRROR_GRACE_DAYS):
        """
        Initialize mirror pruner.

        Args:
            grace_days: Days a file absent from the source is still retained
        """
        self.grace_days = grace_days

    def prune(self, destination: str, sources: Sequence[str], now: datetime = None) -> int:
        """
        Prune a mirror directory.

        Args:
            destination: Mirror directory of the target
            sources: Source locations of the target
            now: Reference time (defaults to now)

        Returns:
            Number of files deleted
        """
        root = Path(destination)
        if not root.is_dir():
            return 0

        cutoff = (now or datetime.now()) - timedelta(days=self.grace_days)
        deleted_count = 0

        for file_path in sorted(root.rglob('*')):
            if not file_path.is_file():
                continue

            try:
                modified = datetime.fromtimestamp(file_path.stat().st_mtime)
            except OSError as e:
                logger.warning(f"Cannot stat {file_path}: {e}")
                continue

            if modified >= cutoff:
                continue

            relative = file_path.relative_to(root)
            if self._exists_in_sources(relative, sources):
                continue

            try:
                file_path.unlink()
                deleted_count += 1
                logger.info(f"Deleted mirrored file: {file_path}")
            except OSError as e:
                logger.warning(f"Failed to delete {file_path}: {e}")

        return deleted_count

    def _exists_in_sources(self, relative: Path, sources: Sequence[str]) -> bool:
        for source in sources:
            source_path = Path(source)
            if (source_path / relative).exists():
                return True
            # rsync places a source directory under its own basename
            parts = relative.parts
            if len(parts) > 1 and parts[0] == source_path.name:
                if source_path.joinpath(*parts[1:]).exists():
                    return True
            if len(parts) == 1 and parts[0] == source_path.name and source_path.is_file():
                return True
        return False
