# src/productivity_quest/tasks/task_store.py

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..errors import DataIntegrityError, ValidationError
from ..sources.dates import NormalizedDue, is_valid_zone
from ..storage.database import Database
from ..storage.migrations import REFERENCE_TIMEZONE
from .task_models import (
    DEFAULT_CAMPAIGN,
    DEFAULT_DURATION_MINUTES,
    RecycleReason,
    Task,
    TaskCounts,
    UserProgress,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class LinkAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class LinkOutcome:
    task_id: int
    action: LinkAction


@dataclass(frozen=True, slots=True)
class ExternalFields:
    """Fields an external source is allowed to set on a task."""

    title: str
    due: NormalizedDue | None
    duration: int | None = None
    importance: str | None = None


def _row_get(row: sqlite3.Row, name: str, default: Any = None) -> Any:
    # Contract columns may be missing while a migration is degraded.
    return row[name] if name in row.keys() else default


class TaskStore:
    """
    SQLite task and user-balance store.

    Thread-safety:
    - each method opens its own SQLite connection
    - methods named *_in(conn, ...) run on a caller-owned transaction
    - external links (source_kind, external_id) are created under the write
      lock, so a concurrent create/create for the same identity cannot produce
      two tasks
    """

    def __init__(self, db: Database, *, default_timezone: str = REFERENCE_TIMEZONE) -> None:
        self._db = db
        self._default_timezone = default_timezone if is_valid_zone(default_timezone) else REFERENCE_TIMEZONE

    @property
    def db(self) -> Database:
        return self._db

    # ---- low-level helpers ----

    @staticmethod
    def _skills_to_str(skills: Iterable[str] | None) -> str:
        clean = [s.strip() for s in (skills or []) if s and s.strip()]
        return json.dumps(clean, ensure_ascii=False)

    @staticmethod
    def _str_to_skills(s: str | None) -> list[str]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except ValueError:
            return []
        return [str(x) for x in val] if isinstance(val, list) else []

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            importance=row["importance"],
            duration=int(row["duration"] or 0),
            due_at=float(row["due_at"]) if row["due_at"] is not None else None,
            due_date=row["due_date"],
            due_timezone=row["due_timezone"],
            scheduled_at=float(row["scheduled_at"]) if row["scheduled_at"] is not None else None,
            skills=self._str_to_skills(row["skills"]),
            campaign=str(_row_get(row, "campaign") or DEFAULT_CAMPAIGN),
            recycled=bool(row["recycled"]),
            recycled_at=row["recycled_at"],
            recycled_reason=row["recycled_reason"],
            source_kind=row["source_kind"],
            external_id=row["external_id"],
            gold_value=int(row["gold_value"]) if row["gold_value"] is not None else None,
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            version=int(row["version"] or 0),
        )

    @staticmethod
    def _validated_duration(duration: int) -> int:
        if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
            raise ValidationError(f"duration must be a non-negative number of minutes, got {duration!r}")
        return duration

    # ---- users ----

    def ensure_user(self, user_id: str, *, timezone: str | None = None) -> None:
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        if timezone is not None and not is_valid_zone(timezone):
            raise ValidationError(f"unknown time zone: {timezone!r}")

        with self._db.session() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO users(id, created_at) VALUES (?, ?)",
                (user_id, time.time()),
            )
            conn.commit()
        if timezone is not None:
            self.set_user_timezone(user_id, timezone)

    def set_user_timezone(self, user_id: str, timezone: str) -> None:
        if not is_valid_zone(timezone):
            raise ValidationError(f"unknown time zone: {timezone!r}")
        with self._db.session() as conn:
            conn.execute("UPDATE users SET timezone = ? WHERE id = ?", (timezone.strip(), user_id))
            conn.commit()

    def get_user_timezone(self, user_id: str) -> str:
        """The user's recorded zone, else the configured default (never the host zone)."""
        with self._db.session() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        tz = _row_get(row, "timezone") if row is not None else None
        if tz and is_valid_zone(tz):
            return str(tz)
        return self._default_timezone

    def get_user_progress(self, user_id: str) -> UserProgress | None:
        with self._db.session() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return UserProgress(
            user_id=str(row["id"]),
            gold_total=int(row["gold_total"] or 0),
            tasks_completed=int(row["tasks_completed"] or 0),
            timezone=self.get_user_timezone(user_id),
        )

    def credit_completion_in(self, conn: sqlite3.Connection, user_id: str, amount: int) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO users(id, created_at) VALUES (?, ?)",
            (user_id, time.time()),
        )
        conn.execute(
            """
            UPDATE users
            SET gold_total = gold_total + ?,
                tasks_completed = tasks_completed + 1
            WHERE id = ?
            """,
            (int(amount), user_id),
        )

    def mark_synced(self, user_id: str, now_ts: float | None = None) -> None:
        ts = time.time() if now_ts is None else float(now_ts)
        with self._db.session() as conn:
            conn.execute("INSERT OR IGNORE INTO users(id, created_at) VALUES (?, ?)", (user_id, ts))
            conn.execute("UPDATE users SET last_synced_at = ? WHERE id = ?", (ts, user_id))
            conn.commit()

    # ---- tasks: create / read ----

    def add_task(
        self,
        user_id: str,
        *,
        title: str,
        description: str = "",
        importance: str | None = None,
        duration: int = DEFAULT_DURATION_MINUTES,
        due: NormalizedDue | None = None,
        scheduled_at: float | None = None,
        skills: Iterable[str] | None = None,
        campaign: str = DEFAULT_CAMPAIGN,
        source_kind: str | None = None,
        external_id: str | None = None,
    ) -> int:
        if not title or not title.strip():
            raise ValidationError("title is required")
        duration = self._validated_duration(duration)
        if (source_kind is None) != (external_id is None):
            raise ValidationError("source_kind and external_id must be set together")

        with self._db.transaction() as conn:
            if source_kind is not None and external_id is not None:
                existing = self._find_live_external_in(conn, user_id, source_kind, external_id)
                if existing is not None:
                    logger.warning(
                        "Rejected duplicate external task user=%s source=%s external_id=%s (existing id=%s)",
                        user_id,
                        source_kind,
                        external_id,
                        existing.id,
                    )
                    raise DataIntegrityError(
                        f"task for {source_kind}:{external_id} already exists (id={existing.id})",
                        source_kind=source_kind,
                        external_id=external_id,
                    )
            return self._insert_in(
                conn,
                user_id=user_id,
                title=title.strip(),
                description=description or "",
                importance=importance,
                duration=duration,
                due=due,
                scheduled_at=scheduled_at,
                skills=skills,
                campaign=(campaign or DEFAULT_CAMPAIGN).strip() or DEFAULT_CAMPAIGN,
                source_kind=source_kind,
                external_id=external_id,
            )

    def _insert_in(
        self,
        conn: sqlite3.Connection,
        *,
        user_id: str,
        title: str,
        description: str,
        importance: str | None,
        duration: int,
        due: NormalizedDue | None,
        scheduled_at: float | None,
        skills: Iterable[str] | None,
        campaign: str,
        source_kind: str | None,
        external_id: str | None,
    ) -> int:
        now = time.time()
        try:
            cur = conn.execute(
                """
                INSERT INTO tasks(
                    user_id, title, description, importance, duration,
                    due_at, due_date, due_timezone, scheduled_at, skills, campaign,
                    source_kind, external_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    title,
                    description,
                    importance,
                    duration,
                    due.epoch if due is not None else None,
                    due.all_day_date if due is not None else None,
                    due.timezone if due is not None else None,
                    scheduled_at,
                    self._skills_to_str(skills),
                    campaign,
                    source_kind,
                    external_id,
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if source_kind is None or external_id is None:
                raise
            raise DataIntegrityError(
                f"task for {source_kind}:{external_id} already exists",
                source_kind=source_kind,
                external_id=external_id,
            ) from exc

        rowid = cur.lastrowid
        if rowid is None:
            raise RuntimeError("SQLite did not return lastrowid for tasks insert")
        task_id = int(rowid)
        logger.debug("Task added id=%s user=%s source=%s external_id=%s", task_id, user_id, source_kind, external_id)
        return task_id

    def get_task(self, task_id: int) -> Task | None:
        with self._db.session() as conn:
            return self.get_task_in(conn, task_id)

    def get_task_in(self, conn: sqlite3.Connection, task_id: int) -> Task | None:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
        return self._row_to_task(row) if row else None

    def list_active_tasks(self, user_id: str, limit: int = 200) -> list[Task]:
        with self._db.session() as conn:
            cur = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE user_id = ? AND recycled = 0
                ORDER BY COALESCE(due_at, created_at) ASC, id ASC
                    LIMIT ?
                """,
                (user_id, int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]

    def list_recycled_tasks(self, user_id: str, limit: int = 200) -> list[Task]:
        with self._db.session() as conn:
            cur = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE user_id = ? AND recycled = 1
                ORDER BY recycled_at DESC, id DESC
                    LIMIT ?
                """,
                (user_id, int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]

    def list_external_tasks(self, user_id: str, source_kind: str) -> list[Task]:
        with self._db.session() as conn:
            cur = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE user_id = ? AND source_kind = ? AND external_id IS NOT NULL
                ORDER BY id ASC
                """,
                (user_id, source_kind),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]

    def find_by_external(self, user_id: str, source_kind: str, external_id: str) -> Task | None:
        with self._db.session() as conn:
            return self._find_external_in(conn, user_id, source_kind, external_id)

    def _find_external_in(
        self, conn: sqlite3.Connection, user_id: str, source_kind: str, external_id: str
    ) -> Task | None:
        # Live rows first; a recycled import still counts as "already imported".
        row = conn.execute(
            """
            SELECT *
            FROM tasks
            WHERE user_id = ? AND source_kind = ? AND external_id = ?
            ORDER BY recycled ASC, id ASC
                LIMIT 1
            """,
            (user_id, source_kind, external_id),
        ).fetchone()
        return self._row_to_task(row) if row else None

    def _find_live_external_in(
        self, conn: sqlite3.Connection, user_id: str, source_kind: str, external_id: str
    ) -> Task | None:
        row = conn.execute(
            """
            SELECT *
            FROM tasks
            WHERE user_id = ? AND source_kind = ? AND external_id = ? AND recycled = 0
            ORDER BY id ASC
                LIMIT 1
            """,
            (user_id, source_kind, external_id),
        ).fetchone()
        return self._row_to_task(row) if row else None

    def count_tasks_by_state(self, user_id: str) -> TaskCounts:
        """Diagnostic counter: active vs recycled tasks for one user."""
        with self._db.session() as conn:
            row = conn.execute(
                """
                SELECT
                    COALESCE(SUM(CASE WHEN recycled = 0 THEN 1 ELSE 0 END), 0) AS active,
                    COALESCE(SUM(CASE WHEN recycled = 1 THEN 1 ELSE 0 END), 0) AS recycled,
                    COALESCE(SUM(CASE WHEN completed_at IS NOT NULL THEN 1 ELSE 0 END), 0) AS completed,
                    COUNT(*) AS total
                FROM tasks
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
        return TaskCounts(
            active=int(row["active"]),
            recycled=int(row["recycled"]),
            completed=int(row["completed"]),
            total=int(row["total"]),
        )

    # ---- tasks: user edits ----

    def update_task_fields(
        self,
        task_id: int,
        *,
        title: str | None = None,
        description: str | None = None,
        importance: Any = _UNSET,
        duration: int | None = None,
        due: Any = _UNSET,
        scheduled_at: Any = _UNSET,
        skills: Iterable[str] | None = None,
        campaign: str | None = None,
    ) -> None:
        """Edit user-owned fields. Completion, reward and origin are not editable here."""
        fields: list[str] = []
        params: list[Any] = []

        if title is not None:
            if not title.strip():
                raise ValidationError("title must not be empty")
            fields.append("title = ?")
            params.append(title.strip())

        if description is not None:
            fields.append("description = ?")
            params.append(description)

        if importance is not _UNSET:
            fields.append("importance = ?")
            params.append(importance)

        if duration is not None:
            fields.append("duration = ?")
            params.append(self._validated_duration(duration))

        if due is not _UNSET:
            fields.extend(["due_at = ?", "due_date = ?", "due_timezone = ?"])
            params.extend(
                [
                    due.epoch if due is not None else None,
                    due.all_day_date if due is not None else None,
                    due.timezone if due is not None else None,
                ]
            )

        if scheduled_at is not _UNSET:
            fields.append("scheduled_at = ?")
            params.append(scheduled_at)

        if skills is not None:
            fields.append("skills = ?")
            params.append(self._skills_to_str(skills))

        if campaign is not None:
            fields.append("campaign = ?")
            params.append(campaign.strip() or DEFAULT_CAMPAIGN)

        if not fields:
            return

        fields.extend(["updated_at = ?", "version = version + 1"])
        params.append(time.time())
        params.append(int(task_id))

        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"
        with self._db.session() as conn:
            conn.execute(sql, params)
            conn.commit()

    def recycle_task(self, task_id: int, reason: RecycleReason = RecycleReason.DELETED) -> bool:
        with self._db.transaction() as conn:
            return self.recycle_task_in(conn, task_id, reason)

    def recycle_task_in(self, conn: sqlite3.Connection, task_id: int, reason: RecycleReason) -> bool:
        now = time.time()
        cur = conn.execute(
            """
            UPDATE tasks
            SET recycled = 1, recycled_at = ?, recycled_reason = ?,
                updated_at = ?, version = version + 1
            WHERE id = ? AND recycled = 0
            """,
            (now, reason.value, now, int(task_id)),
        )
        return cur.rowcount == 1

    def restore_task(self, task_id: int) -> bool:
        """
        Bring a recycled task back. Rewards already granted stay granted.

        Raises DataIntegrityError if another live task holds the same external identity.
        """
        with self._db.transaction() as conn:
            task = self.get_task_in(conn, task_id)
            if task is None or not task.recycled:
                return False
            if task.source_kind is not None and task.external_id is not None:
                other = self._find_live_external_in(conn, task.user_id, task.source_kind, task.external_id)
                if other is not None:
                    raise DataIntegrityError(
                        f"cannot restore task {task_id}: {task.source_kind}:{task.external_id} "
                        f"is already linked to task {other.id}",
                        source_kind=task.source_kind,
                        external_id=task.external_id,
                    )
            conn.execute(
                """
                UPDATE tasks
                SET recycled = 0, recycled_at = NULL, recycled_reason = NULL,
                    updated_at = ?, version = version + 1
                WHERE id = ?
                """,
                (time.time(), int(task_id)),
            )
            return True

    # ---- completion (caller-owned transaction) ----

    def claim_completion_in(
        self,
        conn: sqlite3.Connection,
        task: Task,
        *,
        gold_value: int,
        now_ts: float,
    ) -> bool:
        """
        Atomically set completion fields once.

        Only succeeds if the row is still uncompleted and at the version the
        caller read; a concurrent duplicate completion gets False.
        """
        cur = conn.execute(
            """
            UPDATE tasks
            SET completed_at = ?, gold_value = ?, updated_at = ?, version = version + 1
            WHERE id = ?
              AND completed_at IS NULL
              AND version = ?
            """,
            (float(now_ts), int(gold_value), float(now_ts), int(task.id), int(task.version)),
        )
        return cur.rowcount == 1

    # ---- external links ----

    def link_external(
        self,
        user_id: str,
        source_kind: str,
        external_id: str,
        fields: ExternalFields,
    ) -> LinkOutcome:
        """
        Create or refresh the task linked to (source_kind, external_id).

        Existing tasks only get title and due fields refreshed; completion,
        reward, recycled flag and user edits to other fields are kept.
        """
        if not external_id or not external_id.strip():
            raise ValidationError("external_id is required")
        title = (fields.title or "").strip() or "Untitled Task"

        with self._db.transaction() as conn:
            existing = self._find_external_in(conn, user_id, source_kind, external_id)
            if existing is None:
                task_id = self._insert_in(
                    conn,
                    user_id=user_id,
                    title=title,
                    description="",
                    importance=fields.importance,
                    duration=fields.duration if fields.duration is not None else DEFAULT_DURATION_MINUTES,
                    due=fields.due,
                    scheduled_at=None,
                    skills=None,
                    campaign=DEFAULT_CAMPAIGN,
                    source_kind=source_kind,
                    external_id=external_id,
                )
                return LinkOutcome(task_id=task_id, action=LinkAction.CREATED)

            due = fields.due
            new_due_at = due.epoch if due is not None else None
            new_due_date = due.all_day_date if due is not None else None
            new_due_tz = due.timezone if due is not None else None

            if (
                existing.title == title
                and existing.due_at == new_due_at
                and existing.due_date == new_due_date
                and existing.due_timezone == new_due_tz
            ):
                return LinkOutcome(task_id=existing.id, action=LinkAction.UNCHANGED)

            conn.execute(
                """
                UPDATE tasks
                SET title = ?, due_at = ?, due_date = ?, due_timezone = ?,
                    updated_at = ?, version = version + 1
                WHERE id = ?
                """,
                (title, new_due_at, new_due_date, new_due_tz, time.time(), existing.id),
            )
            return LinkOutcome(task_id=existing.id, action=LinkAction.UPDATED)

    def delete_external_tasks_except(
        self,
        user_id: str,
        source_kind: str,
        keep_external_ids: Iterable[str],
    ) -> list[Task]:
        """Hard-delete this source's linked tasks whose external id is not in keep. Returns the deleted rows."""
        keep = {k for k in keep_external_ids if k}
        with self._db.transaction() as conn:
            cur = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE user_id = ? AND source_kind = ? AND external_id IS NOT NULL
                ORDER BY id ASC
                """,
                (user_id, source_kind),
            )
            doomed = [self._row_to_task(r) for r in cur.fetchall() if r["external_id"] not in keep]
            if doomed:
                ids = [t.id for t in doomed]
                ph = ",".join("?" for _ in ids)
                conn.execute(f"DELETE FROM tasks WHERE id IN ({ph})", ids)
            return doomed
