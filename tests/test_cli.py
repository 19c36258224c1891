# tests/test_cli.py

from __future__ import annotations

from types import SimpleNamespace

import pytest

from productivity_quest.cli.bootstrap import create_app_context
from productivity_quest.cli.main import EXIT_ERROR, EXIT_OK, EXIT_USAGE, main
from productivity_quest.sync.service import SyncState

from .fakes import FakeSource, record


@pytest.fixture()
def run(settings: SimpleNamespace):
    sources: dict[str, FakeSource] = {}

    def factory(*, settings):
        return create_app_context(
            settings=settings,
            adapters={kind: (lambda k=kind: sources[k]) for kind in ("notion", "google_calendar")},
        )

    def _run(*argv: str) -> int:
        return main(list(argv), settings=settings, context_factory=factory)

    _run.sources = sources  # type: ignore[attr-defined]
    return _run


def test_bootstrap_runs_migrations(settings: SimpleNamespace) -> None:
    ctx = create_app_context(settings=settings)
    assert ctx.migration_report is not None and ctx.migration_report.ok
    assert settings.db_path.exists()
    # Real adapters without credentials only fail when used.
    assert ctx.sync.sync_source("u1", "notion").state is SyncState.NOT_CONFIGURED


def test_migrate_is_repeatable(run, capsys) -> None:
    assert run("migrate") == EXIT_OK
    assert run("migrate") == EXIT_OK
    out = capsys.readouterr().out
    assert "0001_tasks_campaign: applied" in out


def test_gold_preview(run, capsys) -> None:
    assert run("gold-preview", "Pareto", "40") == EXIT_OK
    assert "Total: 46 gold" in capsys.readouterr().out
    assert run("gold-preview", "Medium", "-5") == EXIT_ERROR


def test_sync_count_purge_complete(run, capsys, settings: SimpleNamespace) -> None:
    run.sources["google_calendar"] = FakeSource(
        "google_calendar",
        [
            [
                record("e1", "Dentist", source_kind="google_calendar", duration=20),
                record("e2", "Gym", source_kind="google_calendar"),
            ]
        ],
    )
    assert run("sync", "u1", "calendar") == EXIT_OK
    assert "created=2" in capsys.readouterr().out

    assert run("task-count", "u1") == EXIT_OK
    assert "active: 2" in capsys.readouterr().out

    run.sources["google_calendar"] = FakeSource(
        "google_calendar", [[record("e1", "Dentist", source_kind="google_calendar")]]
    )
    assert run("purge", "u1", "google_calendar") == EXIT_OK
    assert "removed #" in capsys.readouterr().out

    ctx = create_app_context(settings=settings)
    task = ctx.task_store.find_by_external("u1", "google_calendar", "e1")
    assert task is not None
    assert run("complete", "u1", str(task.id)) == EXIT_OK
    assert "completed: +21 gold" in capsys.readouterr().out
    assert run("complete", "u1", str(task.id)) == EXIT_ERROR


def test_failed_sync_exits_with_error(run, capsys) -> None:
    run.sources["notion"] = FakeSource("notion", [[record("p1")]], fail_on_page=0)
    assert run("sync", "u1", "notion") == EXIT_ERROR
    assert "unreachable" in capsys.readouterr().err


def test_usage_errors(run) -> None:
    assert run() == EXIT_USAGE
    assert run("complete", "u1", "not-a-number") == EXIT_USAGE
    assert run("sync", "u1", "dropbox") == EXIT_USAGE


def test_purge_takes_no_title_filter(run, settings: SimpleNamespace) -> None:
    run.sources["notion"] = FakeSource("notion", [[record("p1", "Gym"), record("p2", "Taxes")]])
    assert run("sync", "u1", "notion", "--contains", "Gym") == EXIT_OK
    assert run("purge", "u1", "notion", "--contains", "Gym") == EXIT_USAGE

    ctx = create_app_context(settings=settings)
    assert ctx.task_store.find_by_external("u1", "notion", "p1") is not None
