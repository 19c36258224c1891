# src/productivity_quest/storage/database.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class Database:
    """
    Handle to the single relational store.

    Thread-safety:
    - every operation opens its own SQLite connection (no shared cursors)
    - writes that must not interleave use transaction(), which takes the
      SQLite write lock up front (BEGIN IMMEDIATE)

    Only the base tables are created here. Contract columns that older
    databases may lack are added by storage.migrations at startup.
    """

    def __init__(self, db_path: str | Path | None) -> None:
        if db_path is None or str(db_path).strip() == "":
            raise ConfigurationError("Database path is not set. Set PQ_DB_PATH in your .env.")
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.ensure_base_schema()
        logger.info("Database ready db=%s", self._db_path)

    @property
    def path(self) -> Path:
        return self._db_path

    # ---- connections ----

    def connect(self, *, autocommit: bool = False) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=30.0,
            isolation_level=None if autocommit else "",
        )
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextlib.contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write section: BEGIN IMMEDIATE ... COMMIT (ROLLBACK on error)."""
        conn = self.connect(autocommit=True)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # ---- schema ----

    def ensure_base_schema(self) -> None:
        with self.session() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    created_at REAL NOT NULL,
                    gold_total INTEGER NOT NULL DEFAULT 0,
                    tasks_completed INTEGER NOT NULL DEFAULT 0,
                    last_synced_at REAL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    importance TEXT,
                    duration INTEGER NOT NULL DEFAULT 30,
                    due_at REAL,
                    due_date TEXT,
                    due_timezone TEXT,
                    scheduled_at REAL,
                    skills TEXT NOT NULL DEFAULT '[]',
                    recycled INTEGER NOT NULL DEFAULT 0,
                    recycled_at REAL,
                    recycled_reason TEXT,
                    source_kind TEXT,
                    external_id TEXT,
                    gold_value INTEGER,
                    completed_at REAL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS skills (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    icon TEXT NOT NULL DEFAULT ''
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS user_skills (
                    user_id TEXT NOT NULL,
                    skill_name TEXT NOT NULL,
                    level INTEGER NOT NULL DEFAULT 1,
                    xp INTEGER NOT NULL DEFAULT 0,
                    total_xp INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (user_id, skill_name)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    id TEXT PRIMARY KEY,
                    applied_at REAL NOT NULL
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id, recycled)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_external ON tasks(user_id, source_kind, external_id)"
            )
            conn.commit()

    def table_columns(self, conn: sqlite3.Connection, table: str) -> set[str]:
        cur = conn.execute(f"PRAGMA table_info({table})")
        return {row["name"] for row in cur.fetchall()}
