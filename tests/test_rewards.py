# tests/test_rewards.py

from __future__ import annotations

import threading

from productivity_quest.rewards.service import RewardService
from productivity_quest.skills.skill_store import SkillStore
from productivity_quest.tasks.task_models import RecycleReason
from productivity_quest.tasks.task_store import TaskStore


def test_complete_task_awards_gold_and_xp(
    task_store: TaskStore, skill_store: SkillStore, rewards: RewardService
) -> None:
    tid = task_store.add_task("u1", title="Deep work", importance="Pareto", duration=40, skills=["Focus", "Code"])
    preview = rewards.preview("u1", tid)
    assert preview is not None and preview.gold == 46

    assert skill_store.get_user_skill("u1", "Focus") is None

    result = rewards.complete_task("u1", tid, now_ts=1_700_000_000.0)
    assert result is not None
    assert result.gold_awarded == preview.gold
    assert [a.skill_name for a in result.skill_awards] == ["Focus", "Code"]

    task = task_store.get_task(tid)
    assert task is not None
    assert task.gold_value == 46
    assert task.completed_at == 1_700_000_000.0
    assert task.recycled and task.recycled_reason == RecycleReason.COMPLETED.value

    progress = task_store.get_user_progress("u1")
    assert progress is not None
    assert (progress.gold_total, progress.tasks_completed) == (46, 1)

    focus = skill_store.get_user_skill("u1", "Focus")
    assert focus is not None
    assert focus.progress.total_xp == preview.xp_per_skill


def test_completing_twice_awards_once(task_store: TaskStore, rewards: RewardService) -> None:
    tid = task_store.add_task("u1", title="Once", duration=20)
    assert rewards.complete_task("u1", tid) is not None
    assert rewards.complete_task("u1", tid) is None
    assert task_store.get_user_progress("u1").gold_total == 21


def test_concurrent_completion_awards_once(task_store: TaskStore, rewards: RewardService) -> None:
    tid = task_store.add_task("u1", title="Race", duration=20, skills=["Speed"])
    barrier = threading.Barrier(4)
    results = []

    def worker() -> None:
        barrier.wait()
        results.append(rewards.complete_task("u1", tid))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert len([r for r in results if r is not None]) == 1
    assert task_store.get_user_progress("u1").gold_total == 21


def test_other_users_task_cannot_be_completed(task_store: TaskStore, rewards: RewardService) -> None:
    tid = task_store.add_task("u1", title="Mine")
    assert rewards.complete_task("u2", tid) is None
    assert rewards.preview("u2", tid) is None
    assert task_store.get_task(tid).completed_at is None


def test_large_award_levels_up_and_unlocks_milestones(skill_store: SkillStore) -> None:
    update = skill_store.award_xp("u1", "Strength", 5000)
    assert update.levels_gained > 1
    assert "level-10" in update.unlocked_milestones

    stored = skill_store.get_user_skill("u1", "Strength")
    assert stored is not None
    assert stored.level == update.after.level
    assert stored.progress.has_milestone("level-10")


def test_milestones_and_constellation(skill_store: SkillStore) -> None:
    assert skill_store.complete_milestone("u1", "Music", "first-gig")
    assert not skill_store.complete_milestone("u1", "Music", "first-gig")

    skill_store.set_constellation(
        "u1",
        "Music",
        [
            {"id": "b", "position": {"x": 1, "y": 9}, "title": "Album"},
            {"id": "a", "position": {"x": 1, "y": 1}, "title": "Single"},
        ],
    )
    music = skill_store.get_user_skill("u1", "Music")
    assert music is not None
    assert [n.id for n in music.constellation] == ["a", "b"]
    assert music.progress.completed_milestones == ("first-gig",)


def test_skill_catalog_and_user_skills(skill_store: SkillStore) -> None:
    skill_store.add_skill("Cooking", icon="pan")
    skill_store.set_skill_icon("Cooking", "chef")
    skill_store.award_xp("u1", "Reading", 10)

    catalog = {s.name: s.icon for s in skill_store.list_skills()}
    assert catalog["Cooking"] == "chef"
    # First award registers the skill lazily.
    assert "Reading" in catalog

    [reading] = skill_store.list_user_skills("u1")
    assert reading.skill_name == "Reading"
    assert reading.xp == 10
    assert reading.progress.xp_to_next_level == 102
    assert 0.09 < reading.progress.progress_fraction < 0.1


def test_level_ups_lists_only_leveled_skills(task_store: TaskStore, rewards: RewardService) -> None:
    tid = task_store.add_task("u1", title="Marathon", importance="Pareto", duration=600, skills=["Run", "Grit"])
    result = rewards.complete_task("u1", tid)
    assert result is not None
    assert {a.skill_name for a in result.level_ups} == {"Run", "Grit"}
    assert task_store.list_active_tasks("u1") == []
