"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "Stamp"


DATA_DIR = get_default_data_dir(APP_NAME)
STORAGE_DIR = DATA_DIR / "storage"
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, STORAGE_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "stamp.db"
CHECKPOINT_PATH = STORAGE_DIR / "sync_state.json"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class SupabaseSettings:
    url: str = ""
    key: str = ""
    entries_table: str = "stamps"
    favorites_table: str = "favorites"
    photo_bucket: str = "stamp-photos"
    photo_storage: bool = True

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.key)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SupabaseSettings":
        environ = dict(env if env is not None else os.environ)
        return cls(
            url=(environ.get("STAMP_SUPABASE_URL") or "").strip().rstrip("/"),
            key=(environ.get("STAMP_SUPABASE_KEY") or "").strip(),
            entries_table=environ.get("STAMP_SUPABASE_TABLE") or cls.entries_table,
            favorites_table=environ.get("STAMP_SUPABASE_FAVORITES_TABLE") or cls.favorites_table,
            photo_bucket=environ.get("STAMP_SUPABASE_BUCKET") or cls.photo_bucket,
            photo_storage=_env_flag(environ, "STAMP_PHOTO_STORAGE", True),
        )


SUPABASE = SupabaseSettings.from_env()


@dataclass(frozen=True)
class SyncSettings:
    status_reset_delay_sec: float = 2.0
    photo_jpeg_quality: int = 70
    request_timeout_sec: float = 30.0
    checkpoint_path: Path = CHECKPOINT_PATH
    log_path: Path = SYNC_LOG_PATH
    log_max_bytes: int = 1_000_000
    log_backup_count: int = 3
    user_agent: str = f"{APP_NAME}-sync/1.0"


SYNC = SyncSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "STORAGE_DIR",
    "LOG_DIR",
    "DB_PATH",
    "CHECKPOINT_PATH",
    "SYNC_LOG_PATH",
    "SUPABASE",
    "SYNC",
    "SupabaseSettings",
    "SyncSettings",
    "get_default_data_dir",
]
