# src/productivity_quest/skills/skill_store.py

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from ..errors import ValidationError
from ..rewards.progression import (
    DEFAULT_MILESTONE_LEVELS,
    ConstellationNode,
    ProgressUpdate,
    SkillProgress,
    apply_experience,
    complete_milestone,
    normalize_constellation,
)
from ..storage.database import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Skill:
    id: int
    name: str
    icon: str


@dataclass(frozen=True, slots=True)
class UserSkill:
    user_id: str
    skill_name: str
    progress: SkillProgress
    constellation: tuple[ConstellationNode, ...] = ()

    @property
    def level(self) -> int:
        return self.progress.level

    @property
    def xp(self) -> int:
        return self.progress.xp


def _row_get(row: sqlite3.Row, name: str, default: Any = None) -> Any:
    return row[name] if name in row.keys() else default


class SkillStore:
    """
    Skill definitions plus per-user progression rows.

    UserSkill rows are created lazily on the first XP award (or first
    milestone edit). They are never deleted. All read-modify-write paths run
    under the write lock so concurrent awards cannot lose XP.
    """

    def __init__(self, db: Database, *, milestone_levels: Iterable[int] = DEFAULT_MILESTONE_LEVELS) -> None:
        self._db = db
        self._milestone_levels = tuple(sorted(set(int(x) for x in milestone_levels)))

    @property
    def milestone_levels(self) -> tuple[int, ...]:
        return self._milestone_levels

    # ---- json helpers ----

    @staticmethod
    def _load_list(s: str | None) -> list[Any]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except ValueError:
            logger.warning("Corrupt JSON list in user_skills; treating as empty")
            return []
        return val if isinstance(val, list) else []

    def _row_to_user_skill(self, row: sqlite3.Row) -> UserSkill:
        milestones = [str(x) for x in self._load_list(_row_get(row, "completed_milestones"))]
        nodes: list[ConstellationNode] = []
        for raw in self._load_list(_row_get(row, "constellation_milestones")):
            if not isinstance(raw, Mapping):
                continue
            try:
                nodes.append(ConstellationNode.from_dict(raw))
            except ValidationError:
                logger.warning("Skipping malformed constellation node %r", raw)
        return UserSkill(
            user_id=str(row["user_id"]),
            skill_name=str(row["skill_name"]),
            progress=SkillProgress(
                level=max(1, int(row["level"] or 1)),
                xp=max(0, int(row["xp"] or 0)),
                total_xp=max(0, int(row["total_xp"] or 0)),
                completed_milestones=tuple(dict.fromkeys(milestones)),
            ),
            constellation=tuple(nodes),
        )

    # ---- skill definitions ----

    def add_skill(self, name: str, icon: str = "") -> int:
        name = (name or "").strip()
        if not name:
            raise ValidationError("skill name is required")
        with self._db.session() as conn:
            conn.execute("INSERT OR IGNORE INTO skills(name, icon) VALUES (?, ?)", (name, icon or ""))
            conn.commit()
            row = conn.execute("SELECT id FROM skills WHERE name = ?", (name,)).fetchone()
            return int(row["id"])

    def set_skill_icon(self, name: str, icon: str) -> None:
        with self._db.session() as conn:
            conn.execute("UPDATE skills SET icon = ? WHERE name = ?", (icon or "", name))
            conn.commit()

    def list_skills(self) -> list[Skill]:
        with self._db.session() as conn:
            cur = conn.execute("SELECT id, name, icon FROM skills ORDER BY name ASC")
            return [Skill(id=int(r["id"]), name=str(r["name"]), icon=str(r["icon"] or "")) for r in cur.fetchall()]

    # ---- user skills ----

    def get_user_skill(self, user_id: str, skill_name: str) -> UserSkill | None:
        with self._db.session() as conn:
            return self._load_in(conn, user_id, skill_name)

    def list_user_skills(self, user_id: str) -> list[UserSkill]:
        with self._db.session() as conn:
            cur = conn.execute(
                "SELECT * FROM user_skills WHERE user_id = ? ORDER BY skill_name ASC",
                (user_id,),
            )
            return [self._row_to_user_skill(r) for r in cur.fetchall()]

    def _load_in(self, conn: sqlite3.Connection, user_id: str, skill_name: str) -> UserSkill | None:
        row = conn.execute(
            "SELECT * FROM user_skills WHERE user_id = ? AND skill_name = ?",
            (user_id, skill_name),
        ).fetchone()
        return self._row_to_user_skill(row) if row else None

    def _ensure_in(self, conn: sqlite3.Connection, user_id: str, skill_name: str) -> UserSkill:
        existing = self._load_in(conn, user_id, skill_name)
        if existing is not None:
            return existing
        now = time.time()
        conn.execute("INSERT OR IGNORE INTO skills(name) VALUES (?)", (skill_name,))
        conn.execute(
            """
            INSERT INTO user_skills(user_id, skill_name, level, xp, total_xp, created_at, updated_at)
            VALUES (?, ?, 1, 0, 0, ?, ?)
            """,
            (user_id, skill_name, now, now),
        )
        logger.info("UserSkill created user=%s skill=%s", user_id, skill_name)
        created = self._load_in(conn, user_id, skill_name)
        if created is None:
            raise RuntimeError(f"user_skills row vanished for {user_id}/{skill_name}")
        return created

    def _save_progress_in(
        self, conn: sqlite3.Connection, user_id: str, skill_name: str, progress: SkillProgress
    ) -> None:
        conn.execute(
            """
            UPDATE user_skills
            SET level = ?, xp = ?, total_xp = ?, completed_milestones = ?, updated_at = ?
            WHERE user_id = ? AND skill_name = ?
            """,
            (
                progress.level,
                progress.xp,
                progress.total_xp,
                json.dumps(list(progress.completed_milestones), ensure_ascii=False),
                time.time(),
                user_id,
                skill_name,
            ),
        )

    def award_xp_in(
        self, conn: sqlite3.Connection, user_id: str, skill_name: str, delta: int
    ) -> ProgressUpdate:
        """Apply XP on the caller's transaction (creates the UserSkill row on first award)."""
        skill_name = (skill_name or "").strip()
        if not skill_name:
            raise ValidationError("skill name is required")
        current = self._ensure_in(conn, user_id, skill_name)
        update = apply_experience(current.progress, delta, milestone_levels=self._milestone_levels)
        if update.after != update.before:
            self._save_progress_in(conn, user_id, skill_name, update.after)
        if update.leveled_up:
            logger.info(
                "Level up user=%s skill=%s %s -> %s milestones=%s",
                user_id,
                skill_name,
                update.before.level,
                update.after.level,
                list(update.unlocked_milestones),
            )
        return update

    def award_xp(self, user_id: str, skill_name: str, delta: int) -> ProgressUpdate:
        with self._db.transaction() as conn:
            return self.award_xp_in(conn, user_id, skill_name, delta)

    def complete_milestone(self, user_id: str, skill_name: str, milestone_id: str) -> bool:
        """Mark a milestone completed. Returns False if it already was."""
        with self._db.transaction() as conn:
            current = self._ensure_in(conn, user_id, skill_name)
            progress, added = complete_milestone(current.progress, milestone_id)
            if added:
                self._save_progress_in(conn, user_id, skill_name, progress)
                logger.info("Milestone completed user=%s skill=%s id=%s", user_id, skill_name, milestone_id)
            return added

    def set_constellation(
        self,
        user_id: str,
        skill_name: str,
        nodes: Iterable[ConstellationNode | Mapping[str, Any]],
    ) -> tuple[ConstellationNode, ...]:
        """Replace the user's custom milestone nodes. Completed milestone ids are untouched."""
        clean = normalize_constellation(nodes)
        payload = json.dumps([n.to_dict() for n in clean], ensure_ascii=False)
        with self._db.transaction() as conn:
            self._ensure_in(conn, user_id, skill_name)
            conn.execute(
                """
                UPDATE user_skills
                SET constellation_milestones = ?, updated_at = ?
                WHERE user_id = ? AND skill_name = ?
                """,
                (payload, time.time(), user_id, skill_name),
            )
        return clean
