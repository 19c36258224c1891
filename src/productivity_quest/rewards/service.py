# src/productivity_quest/rewards/service.py

"""
Task completion.

complete_task() runs as one write-locked transaction:
  claim the task (completed_at IS NULL, version unchanged)
  -> store gold computed by compute_gold()
  -> credit the user
  -> split compute_xp() across the task's skills and apply the ledger
  -> move the task to the recycling bin (reason "completed")

A concurrent duplicate completion loses the claim and awards nothing.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from ..skills.skill_store import SkillStore
from ..tasks.task_models import RecycleReason, Task
from ..tasks.task_store import TaskStore
from .gold import compute_gold, compute_xp, split_xp
from .progression import ProgressUpdate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RewardPreview:
    gold: int
    xp_total: int
    xp_per_skill: int
    skills: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class SkillAward:
    skill_name: str
    update: ProgressUpdate


@dataclass(frozen=True, slots=True)
class CompletionResult:
    task_id: int
    gold_awarded: int
    xp_total: int
    completed_at: float
    skill_awards: tuple[SkillAward, ...] = field(default_factory=tuple)

    @property
    def level_ups(self) -> list[SkillAward]:
        return [a for a in self.skill_awards if a.update.leveled_up]


def preview_reward(task: Task) -> RewardPreview:
    """Same numbers complete_task() will store, computed without touching the store."""
    skills = tuple(dict.fromkeys(s for s in task.skills if s))
    xp_total = compute_xp(task.importance, task.duration)
    return RewardPreview(
        gold=compute_gold(task.importance, task.duration),
        xp_total=xp_total,
        xp_per_skill=split_xp(xp_total, len(skills)),
        skills=skills,
    )


class RewardService:
    def __init__(
        self,
        task_store: TaskStore,
        skill_store: SkillStore,
        *,
        recycle_on_complete: bool = True,
    ) -> None:
        self._tasks = task_store
        self._skills = skill_store
        self._recycle_on_complete = recycle_on_complete

    def preview(self, user_id: str, task_id: int) -> RewardPreview | None:
        task = self._tasks.get_task(task_id)
        if task is None or task.user_id != user_id:
            return None
        return preview_reward(task)

    def complete_task(
        self, user_id: str, task_id: int, *, now_ts: float | None = None
    ) -> CompletionResult | None:
        """
        Complete a task once. Returns None if the task does not exist, belongs
        to another user, is recycled, or was already completed.
        """
        now_ts = time.time() if now_ts is None else float(now_ts)

        with self._tasks.db.transaction() as conn:
            task = self._tasks.get_task_in(conn, task_id)
            if task is None or task.user_id != user_id:
                logger.info("complete_task: task %s not found for user=%s", task_id, user_id)
                return None
            if task.recycled or task.is_completed:
                logger.info("complete_task: task %s already completed or recycled", task_id)
                return None

            reward = preview_reward(task)

            if not self._tasks.claim_completion_in(conn, task, gold_value=reward.gold, now_ts=now_ts):
                logger.info("complete_task: lost completion claim for task %s", task_id)
                return None

            self._tasks.credit_completion_in(conn, user_id, reward.gold)

            awards: list[SkillAward] = []
            for skill_name in reward.skills:
                update = self._skills.award_xp_in(conn, user_id, skill_name, reward.xp_per_skill)
                awards.append(SkillAward(skill_name=skill_name, update=update))

            if self._recycle_on_complete:
                self._tasks.recycle_task_in(conn, task.id, RecycleReason.COMPLETED)

        logger.info(
            "Task completed id=%s user=%s gold=%s xp=%s skills=%s",
            task_id,
            user_id,
            reward.gold,
            reward.xp_total,
            list(reward.skills),
        )
        return CompletionResult(
            task_id=task_id,
            gold_awarded=reward.gold,
            xp_total=reward.xp_total,
            completed_at=now_ts,
            skill_awards=tuple(awards),
        )
