# src/taskflow/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets and no running store required at import time.
- Every knob has a sane local default so `taskflow` starts with zero setup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKFLOW"

STORE_BACKENDS = ("sqlite", "memory")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


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

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    store_db_path: Path

    # ---- Entity store ----
    store_backend: str
    store_poll_seconds: float
    store_timeout_seconds: float
    resubscribe_delay_seconds: float

    # ---- Administration ----
    admin_email: str
    admin_recipient: str

    # ---- Sync / views ----
    optimistic_writes: bool
    view_refresh_seconds: float

    # ---- Console connector ----
    console_enabled: bool

    # ---- Local identity (used by LocalIdentityProvider) ----
    user_id: str
    user_email: str
    user_name: str
    user_avatar_uri: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskflow").strip() or "taskflow"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskflow"))
        store_db_path = _env_path(_k("STORE_DB_PATH"), data_dir / "store.sqlite3")

        store_backend = _env(_k("STORE_BACKEND"), "sqlite").strip().lower()
        if store_backend not in STORE_BACKENDS:
            store_backend = "sqlite"

        # Clamp timings so a typo in .env can not produce a busy loop.
        store_poll_seconds = max(0.05, _env_float(_k("STORE_POLL_SECONDS"), 1.0))
        store_timeout_seconds = max(0.1, _env_float(_k("STORE_TIMEOUT_SECONDS"), 10.0))
        resubscribe_delay_seconds = max(0.1, _env_float(_k("RESUBSCRIBE_DELAY_SECONDS"), 5.0))

        admin_email = _env(_k("ADMIN_EMAIL"), "").strip().lower()
        admin_recipient = _env(_k("ADMIN_RECIPIENT"), "admin").strip() or "admin"

        optimistic_writes = _env_bool(_k("OPTIMISTIC_WRITES"), True)
        view_refresh_seconds = max(1.0, _env_float(_k("VIEW_REFRESH_SECONDS"), 30.0))

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        user_email = _env(_k("USER_EMAIL"), "").strip()
        user_id = _env(_k("USER_ID"), "").strip() or (user_email or "local-user")
        user_name = _env(_k("USER_NAME"), "").strip() or user_id
        user_avatar_uri = _env(_k("USER_AVATAR_URI"), "").strip()

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            store_db_path=store_db_path,
            store_backend=store_backend,
            store_poll_seconds=store_poll_seconds,
            store_timeout_seconds=store_timeout_seconds,
            resubscribe_delay_seconds=resubscribe_delay_seconds,
            admin_email=admin_email,
            admin_recipient=admin_recipient,
            optimistic_writes=optimistic_writes,
            view_refresh_seconds=view_refresh_seconds,
            console_enabled=console_enabled,
            user_id=user_id,
            user_email=user_email,
            user_name=user_name,
            user_avatar_uri=user_avatar_uri,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
