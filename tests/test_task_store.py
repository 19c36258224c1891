# tests/test_task_store.py

from __future__ import annotations

import pytest

from productivity_quest.errors import DataIntegrityError, ValidationError
from productivity_quest.sources.dates import normalize_due
from productivity_quest.tasks.task_models import DEFAULT_CAMPAIGN, RecycleReason, UserProgress
from productivity_quest.tasks.task_store import ExternalFields, LinkAction, TaskStore


def test_add_get_update_task(task_store: TaskStore) -> None:
    tid = task_store.add_task("u1", title="  Write report ", importance="High", duration=45, skills=["Writing"])
    task = task_store.get_task(tid)
    assert task is not None
    assert task.title == "Write report"
    assert task.campaign == DEFAULT_CAMPAIGN
    assert task.skills == ["Writing"]
    assert not task.is_completed and not task.is_external

    due = normalize_due("2025-03-14", user_timezone="Europe/Paris")
    task_store.update_task_fields(tid, title="Write the report", due=due, campaign="Work")
    updated = task_store.get_task(tid)
    assert updated is not None
    assert updated.title == "Write the report"
    assert updated.due_date == "2025-03-14"
    assert updated.due_timezone == "Europe/Paris"
    assert updated.campaign == "Work"
    assert updated.version > task.version

    task_store.update_task_fields(tid, due=None)
    cleared = task_store.get_task(tid)
    assert cleared is not None and cleared.due_at is None and cleared.due_date is None


def test_add_task_validates_input(task_store: TaskStore) -> None:
    with pytest.raises(ValidationError):
        task_store.add_task("u1", title="   ")
    with pytest.raises(ValidationError):
        task_store.add_task("u1", title="x", duration=-5)
    with pytest.raises(ValidationError):
        task_store.add_task("u1", title="x", source_kind="notion")


def test_duplicate_live_external_task_is_rejected(task_store: TaskStore) -> None:
    task_store.add_task("u1", title="A", source_kind="notion", external_id="page-1")
    with pytest.raises(DataIntegrityError) as ei:
        task_store.add_task("u1", title="A again", source_kind="notion", external_id="page-1")
    assert ei.value.external_id == "page-1"

    # Same id from another user or another source is a different identity.
    task_store.add_task("u2", title="A", source_kind="notion", external_id="page-1")
    task_store.add_task("u1", title="A", source_kind="google_calendar", external_id="page-1")


def test_recycle_restore_and_counts(task_store: TaskStore) -> None:
    a = task_store.add_task("u1", title="A")
    task_store.add_task("u1", title="B")
    assert task_store.recycle_task(a)
    assert not task_store.recycle_task(a)

    counts = task_store.count_tasks_by_state("u1")
    assert (counts.active, counts.recycled, counts.total) == (1, 1, 2)
    assert [t.title for t in task_store.list_recycled_tasks("u1")] == ["A"]
    assert task_store.get_task(a).recycled_reason == RecycleReason.DELETED.value

    assert task_store.restore_task(a)
    assert task_store.count_tasks_by_state("u1").recycled == 0


def test_restore_conflicting_external_task_is_rejected(task_store: TaskStore) -> None:
    old = task_store.add_task("u1", title="Old", source_kind="notion", external_id="p1")
    task_store.recycle_task(old)
    # A recycled import keeps its identity, so linking again updates it instead of duplicating.
    fields = ExternalFields(title="Old (renamed)", due=None)
    outcome = task_store.link_external("u1", "notion", "p1", fields)
    assert outcome.task_id == old
    assert outcome.action is LinkAction.UPDATED
    assert task_store.get_task(old).recycled

    task_store.add_task("u1", title="New", source_kind="notion", external_id="p1")
    with pytest.raises(DataIntegrityError):
        task_store.restore_task(old)


def test_user_timezone_defaults_and_validation(task_store: TaskStore) -> None:
    assert task_store.get_user_timezone("ghost") == "America/New_York"
    task_store.ensure_user("u1", timezone="Asia/Tokyo")
    assert task_store.get_user_timezone("u1") == "Asia/Tokyo"
    with pytest.raises(ValidationError):
        task_store.set_user_timezone("u1", "Mars/Olympus")
    assert task_store.get_user_progress("ghost") is None
    assert task_store.get_user_progress("u1").gold_total == 0


def test_due_datetime_is_shown_in_task_zone(task_store: TaskStore) -> None:
    due = normalize_due("2025-03-14", user_timezone="America/Los_Angeles")
    tid = task_store.add_task("u1", title="Taxes", due=due)
    [task] = task_store.list_active_tasks("u1")
    assert task.id == tid
    shown = task.due_datetime()
    assert shown is not None
    assert (shown.year, shown.month, shown.day, shown.hour) == (2025, 3, 14, 0)
    assert str(shown.tzinfo) == "America/Los_Angeles"


def test_user_progress_shape(task_store: TaskStore) -> None:
    task_store.ensure_user("u1")
    progress = task_store.get_user_progress("u1")
    assert progress is not None
    assert set(UserProgress.__slots__) == {"user_id", "gold_total", "tasks_completed", "timezone"}
    with task_store.db.session() as conn:
        assert "gold_spent" not in task_store.db.table_columns(conn, "users")
