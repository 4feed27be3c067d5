# src/shadowflow/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (token/user may be absent until sign-in).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "SHADOWFLOW"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_optional(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


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
    data_dir: Path
    console_enabled: bool

    # ---- Task API ----
    api_base_url: str
    http_timeout_seconds: float

    # ---- Change feed ----
    realtime_url: str
    api_key: str | None
    heartbeat_seconds: float
    feed_auto_reconnect: bool
    reconnect_delay_seconds: float

    # ---- Session ----
    access_token: str | None
    user_id: str | None

    # ---- Validation ----
    max_title_length: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "ShadowFlow") or "ShadowFlow"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/shadowflow"))
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        api_base_url = _env(_k("API_BASE_URL"), "http://localhost:3000/api").rstrip("/")
        http_timeout_seconds = _env_float(_k("HTTP_TIMEOUT_SECONDS"), 10.0)

        # Realtime endpoint of the hosted database, e.g. wss://<project>.supabase.co/realtime/v1
        realtime_url = _env(_k("REALTIME_URL"), "ws://localhost:54321/realtime/v1").rstrip("/")
        api_key = _env_optional(_k("API_KEY"))
        heartbeat_seconds = _env_float(_k("HEARTBEAT_SECONDS"), 30.0)
        feed_auto_reconnect = _env_bool(_k("FEED_AUTO_RECONNECT"), False)
        reconnect_delay_seconds = _env_float(_k("RECONNECT_DELAY_SECONDS"), 5.0)

        access_token = _env_optional(_k("ACCESS_TOKEN"))
        user_id = _env_optional(_k("USER_ID"))

        max_title_length = _env_int(_k("MAX_TITLE_LENGTH"), 200)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            console_enabled=console_enabled,
            api_base_url=api_base_url,
            http_timeout_seconds=max(0.5, http_timeout_seconds),
            realtime_url=realtime_url,
            api_key=api_key,
            heartbeat_seconds=max(1.0, heartbeat_seconds),
            feed_auto_reconnect=feed_auto_reconnect,
            reconnect_delay_seconds=max(0.0, reconnect_delay_seconds),
            access_token=access_token,
            user_id=user_id,
            max_title_length=max(1, max_title_length),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
