"""
Backup module for backupctl.

This module handles the core backup functionality including:
- Source path resolution
- restic and rsync gateways
- Repository lock arbitration
- Retention policy enforcement
- Per-target execution and run coordination
"""

from .executor import OffsiteTargetRunner, MirrorTargetRunner
from .sources import PathResolver
from .engine import CommandRunner, ResticRepository, MirrorGateway
from .locks import LockArbiter
from .retention import build_retention_args, MirrorPruner
from .coordinator import RunCoordinator, create_coordinator

__all__ = [
    'OffsiteTargetRunner',
    'MirrorTargetRunner',
    'PathResolver',
    'CommandRunner',
    'ResticRepository',
    'MirrorGateway',
    'LockArbiter',
    'build_retention_args',
    'MirrorPruner',
    'RunCoordinator',
    'create_coordinator'
]
