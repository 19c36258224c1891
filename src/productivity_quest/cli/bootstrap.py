# src/productivity_quest/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures the local (gitignored) data directory exists,
- creates the base schema and runs startup migrations,
- wires stores, reward service and sync service into AppContext.

Source adapters are registered as factories, so missing credentials only
surface (as ConfigurationError) when that source is actually synced.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import get_settings
from ..core.ports import ExternalSourceAdapter
from ..core.state import AppContext
from ..rewards.progression import DEFAULT_MILESTONE_LEVELS
from ..rewards.service import RewardService
from ..skills.skill_store import SkillStore
from ..sources.google_calendar import GoogleCalendarSource
from ..sources.notion import NotionSource
from ..storage.database import Database
from ..storage.migrations import REFERENCE_TIMEZONE, default_migrations, run_migrations
from ..sync.reconciler import SyncReconciler
from ..sync.service import AdapterFactory, SyncService
from ..tasks.task_models import SourceKind
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)


def build_adapter_factories(settings) -> dict[str, AdapterFactory]:
    def _notion() -> ExternalSourceAdapter:
        return NotionSource.from_settings(settings)

    def _calendar() -> ExternalSourceAdapter:
        return GoogleCalendarSource.from_settings(settings)

    return {
        SourceKind.NOTION.value: _notion,
        SourceKind.GOOGLE_CALENDAR.value: _calendar,
    }


def create_app_context(
    *,
    settings=None,
    adapters: dict[str, AdapterFactory] | None = None,
) -> AppContext:
    """
    Create AppContext from the provided settings.

    If settings is None, falls back to get_settings(). Tests inject both
    settings and fake adapter factories.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    default_tz = getattr(settings, "default_timezone", REFERENCE_TIMEZONE)
    db = Database(settings.db_path)

    report = None
    if getattr(settings, "run_migrations_on_start", True):
        report = run_migrations(db, default_migrations(default_tz))

    task_store = TaskStore(db, default_timezone=default_tz)
    skill_store = SkillStore(
        db, milestone_levels=getattr(settings, "milestone_levels", None) or DEFAULT_MILESTONE_LEVELS
    )
    reconciler = SyncReconciler(task_store)
    sync = SyncService(
        reconciler,
        adapters if adapters is not None else build_adapter_factories(settings),
        mark_synced=task_store.mark_synced,
        max_pages=int(getattr(settings, "sync_max_pages", 20)),
    )

    logger.info("App context ready (db=%s)", db.path)
    return AppContext(
        settings=settings,
        database=db,
        task_store=task_store,
        skill_store=skill_store,
        rewards=RewardService(task_store, skill_store),
        reconciler=reconciler,
        sync=sync,
        migration_report=report,
    )
