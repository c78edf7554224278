"""Exception hierarchy for backupctl."""


class BackupctlError(Exception):
    """Base class for all backupctl errors."""
    pass


class ConfigError(BackupctlError):
    """Raised when required configuration or secrets are missing."""
    pass


class TargetsFileError(BackupctlError):
    """Raised when the targets document is missing or invalid."""
    pass


class EngineError(BackupctlError):
    """Raised when an external engine cannot be invoked."""
    pass


class EngineNotFoundError(EngineError):
    """Raised when a required external binary is not on PATH."""
    pass
