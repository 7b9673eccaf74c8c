# src/vectask/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

- One Settings object for the whole app.
- No secrets required at import time: without a calendar token the engine
  runs local-only and calendar reconciliation reports "noop".
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "VECTASK"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
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


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path
    prefs_path: Path

    # ---- Calendar ----
    calendar_enabled: bool
    calendar_base_url: str
    calendar_token: str | None
    calendar_time_zone: str | None
    calendar_timeout_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/vectask"))
        token = _env(_k("CALENDAR_TOKEN")).strip() or None
        time_zone = _env(_k("CALENDAR_TIME_ZONE")).strip() or None

        return Settings(
            app_name=_env(_k("APP_NAME"), "vectask") or "vectask",
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            data_dir=data_dir,
            tasks_db_path=_env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3"),
            prefs_path=_env_path(_k("PREFS_PATH"), data_dir / "prefs.json"),
            # Calendar sync defaults to on whenever a token is configured.
            calendar_enabled=_env_bool(_k("CALENDAR_ENABLED"), token is not None),
            calendar_base_url=_env(_k("CALENDAR_BASE_URL"), "https://www.googleapis.com/calendar/v3"),
            calendar_token=token,
            calendar_time_zone=time_zone,
            calendar_timeout_seconds=max(1.0, _env_float(_k("CALENDAR_TIMEOUT_SECONDS"), 15.0)),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
