# src/productivity_quest/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (source credentials are checked lazily,
  when a sync actually needs them).
- Components take settings by injection; get_settings() is only the default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "PQ"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


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


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


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

    # ---- Local data ----
    data_dir: Path
    db_path: Path
    default_timezone: str
    run_migrations_on_start: bool

    # ---- Sync tuning ----
    sync_page_size: int
    sync_max_pages: int
    fetch_timeout_seconds: float
    http_connect_timeout: float
    http_read_timeout: float

    # ---- Notion (structured-database source) ----
    notion_api_key: str | None
    notion_database_id: str | None
    notion_base_url: str
    notion_api_version: str
    notion_title_property: str
    notion_due_property: str
    notion_importance_property: str
    notion_duration_property: str

    # ---- Google Calendar ----
    google_access_token: str | None
    google_calendar_id: str
    google_calendar_base_url: str

    # ---- Progression ----
    milestone_levels: list[int]

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "productivity-quest")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/quest"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "quest.sqlite3")
        default_timezone = _env(_k("DEFAULT_TIMEZONE"), "America/New_York")
        run_migrations_on_start = _env_bool(_k("RUN_MIGRATIONS_ON_START"), True)

        # Notion caps page_size at 100.
        sync_page_size = max(1, min(100, _env_int(_k("SYNC_PAGE_SIZE"), 100)))
        sync_max_pages = max(1, _env_int(_k("SYNC_MAX_PAGES"), 20))
        fetch_timeout_seconds = _env_float(_k("FETCH_TIMEOUT_SECONDS"), 30.0)
        http_connect_timeout = _env_float(_k("HTTP_CONNECT_TIMEOUT"), 5.0)
        http_read_timeout = _env_float(_k("HTTP_READ_TIMEOUT"), 20.0)

        notion_api_key = _first_env(_k("NOTION_API_KEY"), "NOTION_INTEGRATION_SECRET", default=None)
        notion_database_id = _first_env(_k("NOTION_DATABASE_ID"), default=None)
        notion_base_url = _env(_k("NOTION_BASE_URL"), "https://api.notion.com/v1")
        notion_api_version = _env(_k("NOTION_API_VERSION"), "2022-06-28")
        notion_title_property = _env(_k("NOTION_TITLE_PROPERTY"), "Task")
        notion_due_property = _env(_k("NOTION_DUE_PROPERTY"), "Due")
        notion_importance_property = _env(_k("NOTION_IMPORTANCE_PROPERTY"), "Importance")
        notion_duration_property = _env(_k("NOTION_DURATION_PROPERTY"), "Duration")

        google_access_token = _first_env(_k("GOOGLE_ACCESS_TOKEN"), default=None)
        google_calendar_id = _env(_k("GOOGLE_CALENDAR_ID"), "primary")
        google_calendar_base_url = _env(
            _k("GOOGLE_CALENDAR_BASE_URL"), "https://www.googleapis.com/calendar/v3"
        )

        milestone_levels: list[int] = []
        for raw in _env_list(_k("MILESTONE_LEVELS"), ["10", "25", "99"]):
            try:
                milestone_levels.append(int(raw))
            except ValueError:
                continue

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            default_timezone=default_timezone,
            run_migrations_on_start=run_migrations_on_start,
            sync_page_size=sync_page_size,
            sync_max_pages=sync_max_pages,
            fetch_timeout_seconds=fetch_timeout_seconds,
            http_connect_timeout=http_connect_timeout,
            http_read_timeout=http_read_timeout,
            notion_api_key=notion_api_key,
            notion_database_id=notion_database_id,
            notion_base_url=notion_base_url,
            notion_api_version=notion_api_version,
            notion_title_property=notion_title_property,
            notion_due_property=notion_due_property,
            notion_importance_property=notion_importance_property,
            notion_duration_property=notion_duration_property,
            google_access_token=google_access_token,
            google_calendar_id=google_calendar_id,
            google_calendar_base_url=google_calendar_base_url,
            milestone_levels=sorted(set(milestone_levels)),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
