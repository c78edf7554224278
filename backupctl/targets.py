"""
Targets file loading.

The targets file is a JSON array of target objects:

    [
      {
        "name": "documents",
        "enabled": true,
        "locations": ["/home/me/Documents", {"path": "/srv/shared"}],
        "offsite": true,
        "local": false,
        "retention": {"keepDaily": 7, "keepWeekly": 4},
        "checkWeekly": true
      }
    ]
"""

import json
import os
from typing import List, Dict, Any

from backupctl.errors import TargetsFileError
from backupctl.models import Target


def _flag(entry: Dict[str, Any], *keys: str, default: bool = False) -> bool:
    for key in keys:
        if key in entry and entry[key] is not None:
            value = entry[key]
            if not isinstance(value, bool):
                raise TargetsFileError(f"'{key}' must be true or false, got {value!r}")
            return value
    return default


def _parse_location(location, name: str):
    if isinstance(location, str):
        return os.path.expanduser(location)
    if isinstance(location, dict) and isinstance(location.get('path'), str):
        return dict(location, path=os.path.expanduser(location['path']))
    raise TargetsFileError(f"Target {name}: invalid location {location!r}")


def parse_target(entry: Dict[str, Any]) -> Target:
    """
    Build a Target from one entry of the targets document.

    Args:
        entry: Decoded JSON object

    Returns:
        Target instance

    Raises:
        TargetsFileError: If required fields are missing or malformed
    """
    if not isinstance(entry, dict):
        raise TargetsFileError(f"Target entries must be objects, got {type(entry).__name__}")

    # 'repo' is the key used by older targets files
    name = entry.get('name') or entry.get('repo')
    if not isinstance(name, str) or not name.strip():
        raise TargetsFileError(f"Target without a name: {entry!r}")

    locations = entry.get('locations')
    if not isinstance(locations, list):
        raise TargetsFileError(f"Target {name}: 'locations' must be a list")

    retention = entry.get('retention')
    if retention is not None and not isinstance(retention, dict):
        raise TargetsFileError(f"Target {name}: 'retention' must be an object or null")

    return Target(
        name=name,
        locations=tuple(_parse_location(loc, name) for loc in locations),
        enabled=_flag(entry, 'enabled', default=True),
        offsite_enabled=_flag(entry, 'offsite', 'offsiteEnabled'),
        local_enabled=_flag(entry, 'local', 'localEnabled'),
        retention=retention,
        check_weekly=_flag(entry, 'checkWeekly'),
    )


def load_targets(path: str) -> List[Target]:
    """
    Load and validate the targets file.

    Args:
        path: Path to the JSON targets file

    Returns:
        Targets in file order

    Raises:
        TargetsFileError: If the file is missing, not valid JSON, or malformed
    """
    if not os.path.isfile(path):
        raise TargetsFileError(f"targets.json not found at {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise TargetsFileError(f"targets.json is invalid JSON: {e}")
    except OSError as e:
        raise TargetsFileError(f"Failed to read {path}: {e}")

    if not isinstance(document, list):
        raise TargetsFileError("targets.json must contain a JSON array of targets")

    targets = [parse_target(entry) for entry in document]

    seen = set()
    for target in targets:
        if target.name in seen:
            raise TargetsFileError(f"Duplicate target name: {target.name}")
        seen.add(target.name)

    return targets
