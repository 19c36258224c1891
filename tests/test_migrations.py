# tests/test_migrations.py

from __future__ import annotations

import threading
from pathlib import Path

from productivity_quest.storage.database import Database
from productivity_quest.storage.migrations import (
    Migration,
    MigrationStatus,
    default_migrations,
    pending_migrations,
    run_migrations,
)
from productivity_quest.tasks.task_store import TaskStore


def _columns(db: Database, table: str) -> set[str]:
    with db.session() as conn:
        return db.table_columns(conn, table)


def test_old_database_gets_contract_columns(tmp_path: Path) -> None:
    db = Database(tmp_path / "old.sqlite3")
    with db.session() as conn:
        conn.execute("INSERT INTO users(id, created_at) VALUES ('u1', 0)")
        conn.commit()
    assert "campaign" not in _columns(db, "tasks")
    assert "timezone" not in _columns(db, "users")

    report = run_migrations(db)

    assert report.ok
    assert len(report.newly_applied) == len(default_migrations())
    assert "campaign" in _columns(db, "tasks")
    assert {"completed_milestones", "constellation_milestones"} <= _columns(db, "user_skills")
    # Existing rows are backfilled with the reference zone.
    assert TaskStore(db).get_user_timezone("u1") == "America/New_York"
    assert pending_migrations(db) == []


def test_rerunning_migrations_is_a_noop(tmp_path: Path) -> None:
    db = Database(tmp_path / "q.sqlite3")
    run_migrations(db)
    again = run_migrations(db)
    assert again.ok
    assert again.newly_applied == []


def test_column_added_by_another_process_is_accepted(tmp_path: Path) -> None:
    db = Database(tmp_path / "q.sqlite3")
    with db.session() as conn:
        conn.execute("ALTER TABLE tasks ADD COLUMN campaign TEXT DEFAULT 'unassigned'")
        conn.commit()

    report = run_migrations(db)
    assert report.ok
    assert "0001_tasks_campaign" not in {m.id for m in pending_migrations(db)}


def test_failed_migration_is_reported_not_raised(tmp_path: Path) -> None:
    db = Database(tmp_path / "q.sqlite3")
    broken = Migration(id="0000_broken", table="no_such_table", column="x", decl="TEXT")

    report = run_migrations(db, [broken, *default_migrations()])

    assert not report.ok
    assert [r.id for r in report.failed] == ["0000_broken"]
    assert report.failed[0].status is MigrationStatus.FAILED
    # Later migrations still ran.
    assert "campaign" in _columns(db, "tasks")
    assert [m.id for m in pending_migrations(db, [broken])] == ["0000_broken"]


def test_custom_default_timezone_is_used_for_backfill(tmp_path: Path) -> None:
    db = Database(tmp_path / "q.sqlite3")
    with db.session() as conn:
        conn.execute("INSERT INTO users(id, created_at) VALUES ('u2', 0)")
        conn.commit()
    run_migrations(db, default_migrations("Europe/Berlin"))
    assert TaskStore(db, default_timezone="UTC").get_user_timezone("u2") == "Europe/Berlin"


def test_concurrent_runs_apply_each_migration_once(tmp_path: Path) -> None:
    path = tmp_path / "shared.sqlite3"
    handles = [Database(path) for _ in range(4)]
    barrier = threading.Barrier(len(handles))
    reports = []

    def worker(db: Database) -> None:
        barrier.wait()
        reports.append(run_migrations(db))

    threads = [threading.Thread(target=worker, args=(h,)) for h in handles]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(reports) == len(handles)
    assert all(r.ok for r in reports)
    applied = [res.id for r in reports for res in r.newly_applied]
    assert sorted(applied) == sorted(m.id for m in default_migrations())
    assert "campaign" in _columns(handles[0], "tasks")
    assert pending_migrations(handles[0]) == []
