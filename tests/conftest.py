# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from productivity_quest.rewards.service import RewardService
from productivity_quest.skills.skill_store import SkillStore
from productivity_quest.storage.database import Database
from productivity_quest.storage.migrations import run_migrations
from productivity_quest.sync.reconciler import SyncReconciler
from productivity_quest.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the bootstrap and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the developer's .env.
    """
    return SimpleNamespace(
        app_name="pq-test",
        log_level="WARNING",
        data_dir=tmp_path / "data",
        db_path=tmp_path / "data" / "quest.sqlite3",
        default_timezone="America/New_York",
        run_migrations_on_start=True,
        sync_page_size=100,
        sync_max_pages=5,
        fetch_timeout_seconds=5.0,
        http_connect_timeout=1.0,
        http_read_timeout=1.0,
        notion_api_key=None,
        notion_database_id=None,
        notion_base_url="https://api.notion.test/v1",
        notion_api_version="2022-06-28",
        notion_title_property="Task",
        notion_due_property="Due",
        notion_importance_property="Importance",
        notion_duration_property="Duration",
        google_access_token=None,
        google_calendar_id="primary",
        google_calendar_base_url="https://calendar.test/v3",
        milestone_levels=[10, 25, 99],
    )


@pytest.fixture()
def db(tmp_path: Path) -> Database:
    """Fully migrated database."""
    database = Database(tmp_path / "quest.sqlite3")
    report = run_migrations(database)
    assert report.ok
    return database


@pytest.fixture()
def task_store(db: Database) -> TaskStore:
    return TaskStore(db)


@pytest.fixture()
def skill_store(db: Database) -> SkillStore:
    return SkillStore(db)


@pytest.fixture()
def rewards(task_store: TaskStore, skill_store: SkillStore) -> RewardService:
    return RewardService(task_store, skill_store)


@pytest.fixture()
def reconciler(task_store: TaskStore) -> SyncReconciler:
    return SyncReconciler(task_store)
