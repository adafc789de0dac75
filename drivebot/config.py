"""
Runtime configuration for the Drive relay bot.

Values come from environment variables (a local .env file is loaded
first) and are read once at startup.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Mapping, Optional

from dotenv import load_dotenv

from drivebot.errors import ConfigError

BOT_TOKEN_PATTERN = re.compile(r'^\d+:[A-Za-z0-9_-]{35}$')
TRUE_VALUES = ('1', 'true', 'yes', 'on')


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{key} must be a valid integer, got: {value!r}")


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def _get_id_set(env: Mapping[str, str], key: str) -> FrozenSet[int]:
    raw = env.get(key, '')
    ids = set()
    for part in raw.split(','):
        part = part.strip()
        if not part:
            continue
        try:
            ids.add(int(part))
        except ValueError:
            raise ConfigError(f"{key} must be a comma separated list of user ids, got: {part!r}")
    return frozenset(ids)


@dataclass(frozen=True)
class Settings:
    """Immutable process configuration"""
    token: str
    api_id: int
    api_hash: str
    max_file_size_mb: int = 50
    download_timeout_ms: int = 30000
    temp_dir: Path = Path('./temp').resolve()
    max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 5000
    confirm_page_max_bytes: int = 1024 * 1024
    cleanup_interval_minutes: int = 30
    cleanup_max_age_hours: int = 1
    admin_user_ids: FrozenSet[int] = field(default_factory=frozenset)
    max_links_per_message: int = 5
    log_level: str = 'INFO'
    log_file: Optional[str] = None
    enable_error_details: bool = False

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def download_timeout(self) -> float:
        """Per-request timeout in seconds"""
        return self.download_timeout_ms / 1000

    @property
    def retry_base_delay(self) -> float:
        return self.retry_base_delay_ms / 1000

    @property
    def retry_max_delay(self) -> float:
        return self.retry_max_delay_ms / 1000

    @property
    def cleanup_interval(self) -> float:
        return self.cleanup_interval_minutes * 60

    @property
    def cleanup_max_age(self) -> float:
        return self.cleanup_max_age_hours * 3600

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Settings':
        """Build settings from the environment.

        When ``env`` is omitted the process environment is used, after
        loading a ``.env`` file from the working directory if one exists.
        """
        if env is None:
            load_dotenv()
            env = os.environ

        missing = [key for key in ('TOKEN', 'API_ID', 'API_HASH') if not env.get(key)]
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "API_ID and API_HASH are issued at https://my.telegram.org"
            )

        log_file = env.get('LOG_FILE') or None

        return cls(
            token=env['TOKEN'],
            api_id=_get_int(env, 'API_ID', 0),
            api_hash=env['API_HASH'],
            max_file_size_mb=_get_int(env, 'MAX_FILE_SIZE_MB', 50),
            download_timeout_ms=_get_int(env, 'DOWNLOAD_TIMEOUT_MS', 30000),
            temp_dir=Path(env.get('TEMP_DIR') or './temp').resolve(),
            max_retries=_get_int(env, 'MAX_RETRIES', 3),
            retry_base_delay_ms=_get_int(env, 'RETRY_BASE_DELAY_MS', 1000),
            retry_max_delay_ms=_get_int(env, 'RETRY_MAX_DELAY_MS', 5000),
            confirm_page_max_bytes=_get_int(env, 'CONFIRM_PAGE_MAX_BYTES', 1024 * 1024),
            cleanup_interval_minutes=_get_int(env, 'CLEANUP_INTERVAL_MINUTES', 30),
            cleanup_max_age_hours=_get_int(env, 'CLEANUP_MAX_AGE_HOURS', 1),
            admin_user_ids=_get_id_set(env, 'ADMIN_USER_IDS'),
            max_links_per_message=_get_int(env, 'MAX_LINKS_PER_MESSAGE', 5),
            log_level=(env.get('LOG_LEVEL') or 'INFO').upper(),
            log_file=log_file,
            enable_error_details=_get_bool(env, 'ENABLE_ERROR_DETAILS', False),
        )

    def validate(self) -> 'Settings':
        if not 1 <= self.max_file_size_mb <= 2000:
            raise ConfigError("MAX_FILE_SIZE_MB must be between 1 and 2000")
        if self.download_timeout_ms <= 0:
            raise ConfigError("DOWNLOAD_TIMEOUT_MS must be a positive number")
        if self.max_retries < 1:
            raise ConfigError("MAX_RETRIES must be at least 1")
        if self.retry_base_delay_ms < 0 or self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ConfigError("RETRY_MAX_DELAY_MS must not be smaller than RETRY_BASE_DELAY_MS")
        if self.confirm_page_max_bytes <= 0:
            raise ConfigError("CONFIRM_PAGE_MAX_BYTES must be a positive number")
        if self.cleanup_interval_minutes <= 0 or self.cleanup_max_age_hours <= 0:
            raise ConfigError("Cleanup interval and max age must be positive")
        if self.max_links_per_message < 1:
            raise ConfigError("MAX_LINKS_PER_MESSAGE must be at least 1")
        if not BOT_TOKEN_PATTERN.match(self.token):
            raise ConfigError("TOKEN format is invalid")
        return self

    def summary(self) -> Dict[str, object]:
        """Configuration summary safe to log (no secrets)"""
        return {
            'max_file_size_mb': self.max_file_size_mb,
            'download_timeout_ms': self.download_timeout_ms,
            'temp_dir': str(self.temp_dir),
            'max_retries': self.max_retries,
            'cleanup_interval_minutes': self.cleanup_interval_minutes,
            'cleanup_max_age_hours': self.cleanup_max_age_hours,
            'admins': len(self.admin_user_ids),
            'log_level': self.log_level,
            'error_details': self.enable_error_details,
            'token_set': bool(self.token),
        }
