from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024
DEFAULT_TRASH_RETENTION_DAYS = 30


@dataclass(frozen=True)
class Settings:
    """
    Storage settings loaded from environment variables.

    Env vars:
    - BOXLOG_SUBSTRATE: 'memory' (default) or 'sqlite'
    - BOXLOG_SQLITE_PATH: path to the sqlite file backing the key-value store. Default './data/boxlog.db'
    - BOXLOG_KEY_PREFIX: prefix for the collection keys. Default 'boxlog_'
    - BOXLOG_QUOTA_BYTES: ceiling for the total stored footprint. Default 5 MiB
    - BOXLOG_TRASH_RETENTION_DAYS: days a soft-deleted row is kept before it can be purged. Default 30
    """

    substrate: str = "memory"
    sqlite_path: str = "./data/boxlog.db"
    key_prefix: str = "boxlog_"
    quota_bytes: int = DEFAULT_QUOTA_BYTES
    trash_retention_days: int = DEFAULT_TRASH_RETENTION_DAYS

    @property
    def events_key(self) -> str:
        return f"{self.key_prefix}events"

    @property
    def logs_key(self) -> str:
        return f"{self.key_prefix}logs"

    @property
    def tags_key(self) -> str:
        return f"{self.key_prefix}tags"

    @property
    def version_key(self) -> str:
        return f"{self.key_prefix}version"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_positive_int(value: str, default: int) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return storage settings loaded from environment variables."""
    substrate = _get_env("BOXLOG_SUBSTRATE", "memory").strip().lower()
    if substrate not in {"memory", "sqlite"}:
        # Fallback to memory if unsupported
        substrate = "memory"

    return Settings(
        substrate=substrate,
        sqlite_path=_get_env("BOXLOG_SQLITE_PATH", "./data/boxlog.db").strip(),
        key_prefix=_get_env("BOXLOG_KEY_PREFIX", "boxlog_").strip(),
        quota_bytes=_parse_positive_int(
            _get_env("BOXLOG_QUOTA_BYTES", str(DEFAULT_QUOTA_BYTES)), DEFAULT_QUOTA_BYTES
        ),
        trash_retention_days=_parse_positive_int(
            _get_env("BOXLOG_TRASH_RETENTION_DAYS", str(DEFAULT_TRASH_RETENTION_DAYS)),
            DEFAULT_TRASH_RETENTION_DAYS,
        ),
    )
