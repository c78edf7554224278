import os

from dotenv import load_dotenv

from backupctl.errors import ConfigError


def _env_bool(value, default: bool) -> bool:
    if value is None or value == '':
        return default
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(env, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def load_environment(env_file: str = None) -> bool:
    """
    Load a dotenv file into the process environment.

    Values already present in the environment win over the file.

    Args:
        env_file: Path to the dotenv file (default: $ENV_FILE or ./.env)

    Returns:
        True if a file was found and loaded
    """
    env_file = env_file or os.environ.get('ENV_FILE') or '.env'
    if not os.path.isfile(env_file):
        return False
    return load_dotenv(env_file, override=False)


class Config:
    """Base configuration"""

    MODE = None
    BACKUP_LABEL = 'Backup'

    def __init__(self, environ=None):
        env = os.environ if environ is None else environ
        self.environ = env

        # Targets
        self.TARGETS_FILE = env.get('TARGETS_FILE') or 'targets.json'

        # Logging
        self.LOG_LEVEL = env.get('LOG_LEVEL') or 'INFO'
        self.LOG_DIR = env.get('LOG_DIR') or None
        self.NOTIFY_LOG_FILE = env.get('NOTIFY_LOG_FILE') or None

        # Telegram
        self.TELEGRAM_BOT_TOKEN = env.get('TELEGRAM_BOT_TOKEN') or None
        self.TELEGRAM_CHAT_ID = env.get('TELEGRAM_CHAT_ID') or None

        # Lock arbitration
        self.LOCK_STALE_MINUTES = _env_int(env, 'LOCK_STALE_MINUTES', 30)
        self.LOCK_LIST_FAILURE_IS_FREE = _env_bool(env.get('LOCK_LIST_FAILURE_IS_FREE'), True)

        # Integrity check day (ISO weekday, 7 = Sunday)
        self.CHECK_WEEKDAY = _env_int(env, 'CHECK_WEEKDAY', 7)

        # Mirror soft-delete grace period
        self.MIRROR_GRACE_DAYS = _env_int(env, 'MIRROR_GRACE_DAYS', 60)

        # Engine binaries
        self.RESTIC_BIN = env.get('RESTIC_BIN') or 'restic'
        self.RSYNC_BIN = env.get('RSYNC_BIN') or 'rsync'

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.TELEGRAM_BOT_TOKEN and self.TELEGRAM_CHAT_ID)

    def validate(self):
        """
        Check required settings.

        Raises:
            ConfigError: If a setting is missing or out of range
        """
        if not 1 <= self.CHECK_WEEKDAY <= 7:
            raise ConfigError(f"CHECK_WEEKDAY must be between 1 and 7, got {self.CHECK_WEEKDAY}")
        if self.LOCK_STALE_MINUTES <= 0:
            raise ConfigError("LOCK_STALE_MINUTES must be positive")
        if self.MIRROR_GRACE_DAYS < 0:
            raise ConfigError("MIRROR_GRACE_DAYS must not be negative")


class OffsiteConfig(Config):
    """Restic to Backblaze B2 configuration"""

    MODE = 'offsite'
    BACKUP_LABEL = 'Backup'

    def __init__(self, environ=None):
        super().__init__(environ)
        env = self.environ

        self.B2_BUCKET_NAME = env.get('B2_BUCKET_NAME') or None
        self.B2_ACCOUNT_ID = env.get('B2_ACCOUNT_ID') or None
        self.B2_ACCOUNT_KEY = env.get('B2_ACCOUNT_KEY') or None
        self.RESTIC_PASSWORD = env.get('RESTIC_PASSWORD') or None
        self.RESTIC_PASSWORD_FILE = env.get('RESTIC_PASSWORD_FILE') or None

    def validate(self):
        super().validate()
        for key in ('B2_BUCKET_NAME', 'B2_ACCOUNT_ID', 'B2_ACCOUNT_KEY'):
            if not getattr(self, key):
                raise ConfigError(f"{key} is required")
        if not (self.RESTIC_PASSWORD_FILE or self.RESTIC_PASSWORD):
            raise ConfigError("RESTIC_PASSWORD[_FILE] is required")
        if self.RESTIC_PASSWORD_FILE and not os.path.isfile(self.RESTIC_PASSWORD_FILE):
            raise ConfigError(f"RESTIC_PASSWORD_FILE not found: {self.RESTIC_PASSWORD_FILE}")

    def repository_for(self, name: str) -> str:
        """Repository handle for a target name."""
        return f"b2:{self.B2_BUCKET_NAME}:{name}"

    def engine_environment(self) -> dict:
        """Environment for restic child processes."""
        env = dict(os.environ)
        for key in ('B2_ACCOUNT_ID', 'B2_ACCOUNT_KEY'):
            if getattr(self, key):
                env[key] = getattr(self, key)
        if self.RESTIC_PASSWORD_FILE:
            env.pop('RESTIC_PASSWORD', None)
        elif self.RESTIC_PASSWORD:
            env['RESTIC_PASSWORD'] = self.RESTIC_PASSWORD
        return env


class LocalConfig(Config):
    """Local drive mirror configuration"""

    MODE = 'local'
    BACKUP_LABEL = 'Local backup'

    def __init__(self, environ=None):
        super().__init__(environ)
        self.LOCAL_BACKUP_ROOT = self.environ.get('LOCAL_BACKUP_ROOT') or None

    def validate(self):
        super().validate()
        if not self.LOCAL_BACKUP_ROOT:
            raise ConfigError("LOCAL_BACKUP_ROOT is required")


# Configuration dictionary
config = {
    'offsite': OffsiteConfig,
    'local': LocalConfig,
    'default': OffsiteConfig
}
