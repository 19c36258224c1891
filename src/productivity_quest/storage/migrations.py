# src/productivity_quest/storage/migrations.py

"""
Additive startup migrations.

Each migration is Pending until its id is recorded in schema_migrations,
then Applied. Migrations only ever add (a column with a default, an index)
and backfill NULLs; nothing is dropped or rewritten.

Concurrency: every migration runs inside BEGIN IMMEDIATE, so two processes
starting at the same time apply it one after the other. The second one sees
the column (or hits "duplicate column name", which is treated as applied).

run_migrations() never raises: a failing migration is logged, reported as
FAILED and the remaining migrations still run.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import MigrationError
from .database import Database

logger = logging.getLogger(__name__)

REFERENCE_TIMEZONE = "America/New_York"


class MigrationStatus(StrEnum):
    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Migration:
    id: str
    table: str
    column: str | None = None
    decl: str = ""
    backfill_sql: str | None = None
    index_sql: str | None = None
    description: str = ""


@dataclass(slots=True)
class MigrationResult:
    id: str
    status: MigrationStatus
    changed: bool = False
    error: str | None = None


@dataclass(slots=True)
class MigrationReport:
    results: list[MigrationResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.status == MigrationStatus.APPLIED for r in self.results)

    @property
    def failed(self) -> list[MigrationResult]:
        return [r for r in self.results if r.status == MigrationStatus.FAILED]

    @property
    def newly_applied(self) -> list[str]:
        return [r.id for r in self.results if r.status == MigrationStatus.APPLIED and r.changed]


def _sql_literal(s: str) -> str:
    return "'" + s.replace("'", "''") + "'"


def default_migrations(default_timezone: str = REFERENCE_TIMEZONE) -> tuple[Migration, ...]:
    try:
        ZoneInfo(default_timezone)
        tz = default_timezone
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown default timezone %r; using %s", default_timezone, REFERENCE_TIMEZONE)
        tz = REFERENCE_TIMEZONE
    tz_lit = _sql_literal(tz)

    return (
        Migration(
            id="0001_tasks_campaign",
            table="tasks",
            column="campaign",
            decl="TEXT DEFAULT 'unassigned'",
            backfill_sql="UPDATE tasks SET campaign = 'unassigned' WHERE campaign IS NULL",
            description="Campaign tag on tasks",
        ),
        Migration(
            id="0002_users_timezone",
            table="users",
            column="timezone",
            decl=f"TEXT DEFAULT {tz_lit}",
            backfill_sql=f"UPDATE users SET timezone = {tz_lit} WHERE timezone IS NULL",
            description="Per-user IANA time zone",
        ),
        Migration(
            id="0003_user_skills_completed_milestones",
            table="user_skills",
            column="completed_milestones",
            decl="TEXT DEFAULT '[]'",
            backfill_sql=(
                "UPDATE user_skills SET completed_milestones = '[]' WHERE completed_milestones IS NULL"
            ),
            description="Completed milestone ids per user skill",
        ),
        Migration(
            id="0004_user_skills_constellation_milestones",
            table="user_skills",
            column="constellation_milestones",
            decl="TEXT DEFAULT '[]'",
            backfill_sql=(
                "UPDATE user_skills SET constellation_milestones = '[]' "
                "WHERE constellation_milestones IS NULL"
            ),
            description="Custom constellation milestone nodes per user skill",
        ),
        Migration(
            id="0005_tasks_external_identity_unique",
            table="tasks",
            index_sql=(
                "CREATE UNIQUE INDEX IF NOT EXISTS ux_tasks_external_identity "
                "ON tasks(user_id, source_kind, external_id) "
                "WHERE source_kind IS NOT NULL AND external_id IS NOT NULL AND recycled = 0"
            ),
            description="At most one live task per external identity",
        ),
    )


def applied_migration_ids(db: Database) -> set[str]:
    with db.session() as conn:
        cur = conn.execute("SELECT id FROM schema_migrations")
        return {str(row["id"]) for row in cur.fetchall()}


def pending_migrations(
    db: Database, migrations: Sequence[Migration] | None = None
) -> list[Migration]:
    migrations = default_migrations() if migrations is None else migrations
    done = applied_migration_ids(db)
    return [m for m in migrations if m.id not in done]


def _apply(db: Database, conn: sqlite3.Connection, m: Migration) -> bool:
    """Apply one migration on an open transaction. Returns True if anything changed."""
    row = conn.execute("SELECT 1 FROM schema_migrations WHERE id = ?", (m.id,)).fetchone()
    if row is not None:
        return False

    if m.column:
        cols = db.table_columns(conn, m.table)
        if m.column not in cols:
            try:
                conn.execute(f"ALTER TABLE {m.table} ADD COLUMN {m.column} {m.decl}")
                logger.info("Migration %s: added column %s.%s", m.id, m.table, m.column)
            except sqlite3.OperationalError as exc:
                if "duplicate column" not in str(exc).lower():
                    raise
                logger.debug("Migration %s: column %s.%s already exists", m.id, m.table, m.column)

    if m.backfill_sql:
        cur = conn.execute(m.backfill_sql)
        if cur.rowcount and cur.rowcount > 0:
            logger.info("Migration %s: backfilled %s row(s)", m.id, cur.rowcount)

    if m.index_sql:
        conn.execute(m.index_sql)

    conn.execute(
        "INSERT OR IGNORE INTO schema_migrations(id, applied_at) VALUES (?, ?)",
        (m.id, time.time()),
    )
    return True


def apply_migration(db: Database, m: Migration) -> bool:
    """Apply a single migration; raises MigrationError on failure."""
    try:
        with db.transaction() as conn:
            return _apply(db, conn, m)
    except sqlite3.Error as exc:
        raise MigrationError(f"Migration {m.id} failed: {exc}", migration_id=m.id) from exc


def run_migrations(
    db: Database, migrations: Sequence[Migration] | None = None
) -> MigrationReport:
    """Run every migration; safe to call repeatedly and from several processes at once."""
    migrations = default_migrations() if migrations is None else migrations
    report = MigrationReport()

    logger.info("Running startup migrations (%d registered)...", len(migrations))
    for m in migrations:
        try:
            changed = apply_migration(db, m)
        except MigrationError as exc:
            logger.exception("Startup migration failed: %s", m.id)
            report.results.append(
                MigrationResult(id=m.id, status=MigrationStatus.FAILED, error=str(exc))
            )
            continue
        report.results.append(MigrationResult(id=m.id, status=MigrationStatus.APPLIED, changed=changed))

    if report.failed:
        logger.warning(
            "Startup migrations finished with %d failure(s); continuing in degraded mode",
            len(report.failed),
        )
    else:
        logger.info("Startup migrations completed (%d newly applied)", len(report.newly_applied))
    return report
