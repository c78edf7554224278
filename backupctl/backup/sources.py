"""
Source path resolution for backup targets.

Filters a target's declared locations down to the ones that currently exist
on the local filesystem. Missing locations are reported but never fatal.
"""

import logging
from pathlib import Path
from typing import List, Sequence

from backupctl.models import PathSpec


logger = logging.getLogger(__name__)


def location_path(spec: PathSpec) -> str:
    """
    Extract the filesystem path from a location specifier.

    Args:
        spec: Either a bare path string or a dict carrying a 'path' key

    Returns:
        The path string ('' if the specifier carries none)
    """
    if isinstance(spec, dict):
        return spec.get('path') or ''
    return spec or ''


class PathResolver:
    """
    Resolves the declared source locations of a target.
    """

    def resolve(self, locations: Sequence[PathSpec]) -> List[str]:
        """
        Keep the locations that exist, preserving their order.

        Args:
            locations: Path specifiers as declared in the targets file

        Returns:
            Existing paths, possibly empty
        """
        existing = []

        for spec in locations:
            path = location_path(spec)
            if not path:
                continue

            if Path(path).exists():
                existing.append(path)
            else:
                logger.warning(f"Missing path: {path}")

        return existing
