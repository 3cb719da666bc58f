# src/timetracker/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- Components never read the environment themselves; the composition root injects values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TIMETRACKER"

DEFAULT_IMPORT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_RETENTION_DAYS = 365
DEFAULT_NOTIFICATION_THRESHOLD_SECONDS = 60


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_optional_path(name: str) -> Path | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    kv_db_path: Path
    handles_db_path: Path

    # ---- Advanced (file) backend ----
    file_backend_enabled: bool
    data_file: Path | None

    # ---- Limits ----
    import_max_bytes: int
    retention_days: int
    notification_threshold_seconds: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "timetracker").strip() or "timetracker"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/timetracker"))
        kv_db_path = _env_path(_k("KV_DB_PATH"), data_dir / "kv.sqlite3")
        handles_db_path = _env_path(_k("HANDLES_DB_PATH"), data_dir / "handles.sqlite3")

        file_backend_enabled = _env_bool(_k("FILE_BACKEND"), True)
        data_file = _env_optional_path(_k("DATA_FILE"))

        # Limits: never accept non-positive values from the environment.
        import_max_bytes = max(1, _env_int(_k("IMPORT_MAX_BYTES"), DEFAULT_IMPORT_MAX_BYTES))
        retention_days = max(1, _env_int(_k("RETENTION_DAYS"), DEFAULT_RETENTION_DAYS))
        notification_threshold_seconds = max(
            1,
            _env_int(_k("NOTIFICATION_THRESHOLD_SECONDS"), DEFAULT_NOTIFICATION_THRESHOLD_SECONDS),
        )

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            kv_db_path=kv_db_path,
            handles_db_path=handles_db_path,
            file_backend_enabled=file_backend_enabled,
            data_file=data_file,
            import_max_bytes=import_max_bytes,
            retention_days=retention_days,
            notification_threshold_seconds=notification_threshold_seconds,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
