# src/productivity_quest/cli/main.py

"""
CLI entrypoint (`pq`).

Initializes logging, builds AppContext, then runs one subcommand:
migrate, task-count, sync, purge, complete, gold-preview.

Exit codes: 0 success, 1 handled error (message on stderr), 2 usage error.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable, Sequence

from ..cli.bootstrap import create_app_context
from ..config import get_settings
from ..core.state import AppContext
from ..errors import QuestError
from ..logging_setup import setup_logging
from ..rewards.gold import compute_gold, explain_gold
from ..sources.models import FetchFilter
from ..storage.migrations import default_migrations, run_migrations
from ..sync.service import SyncRequest, SyncState, run_sync_cycle
from ..tasks.task_models import SourceKind

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


def _out(text: str) -> None:
    print(text)


def _err(text: str) -> None:
    print(text, file=sys.stderr)


def _cmd_migrate(ctx: AppContext, args: argparse.Namespace) -> int:
    default_tz = getattr(ctx.settings, "default_timezone", "America/New_York")
    report = run_migrations(ctx.database, default_migrations(default_tz))
    for r in report.results:
        suffix = f" ({r.error})" if r.error else (" (new)" if r.changed else "")
        _out(f"{r.id}: {r.status.value}{suffix}")
    return EXIT_OK if report.ok else EXIT_ERROR


def _cmd_task_count(ctx: AppContext, args: argparse.Namespace) -> int:
    counts = ctx.task_store.count_tasks_by_state(args.user_id)
    _out(f"active: {counts.active}")
    _out(f"recycled: {counts.recycled}")
    _out(f"completed: {counts.completed}")
    _out(f"total: {counts.total}")
    return EXIT_OK


def _filter_from_args(ctx: AppContext, args: argparse.Namespace) -> FetchFilter:
    return FetchFilter(
        title_contains=tuple(getattr(args, "contains", None) or ()),
        page_size=int(getattr(ctx.settings, "sync_page_size", 100)),
    )


def _cmd_sync(ctx: AppContext, args: argparse.Namespace) -> int:
    kind = SourceKind.parse(args.source).value
    request = SyncRequest(source_kind=kind, filter=_filter_from_args(ctx, args))
    timeout = float(getattr(ctx.settings, "fetch_timeout_seconds", 30.0))
    report = asyncio.run(run_sync_cycle(ctx.sync, args.user_id, [request], timeout=timeout))[0]
    counts = report.result.as_dict()
    _out(f"{report.source_kind}: {report.state.value} (pages: {report.pages})")
    _out(", ".join(f"{k}={v}" for k, v in counts.items()))
    if report.error:
        _err(report.error)
    if report.state is SyncState.NEEDS_RECONNECT:
        _err("Reconnect the source (check the token and sharing) and try again.")
    return EXIT_OK if report.ok else EXIT_ERROR


def _cmd_purge(ctx: AppContext, args: argparse.Namespace) -> int:
    report = ctx.sync.purge_missing(args.user_id, args.source, _filter_from_args(ctx, args))
    if report.state is not SyncState.OK or report.purge is None:
        _err(f"{report.source_kind}: {report.state.value}: {report.error or 'nothing purged'}")
        return EXIT_ERROR
    for p in report.purge.removed:
        _out(f"removed #{p.task_id} [{p.external_id}] {p.title}")
    _out(f"{report.source_kind}: removed {report.purge.count} task(s), {report.fetched} still remote")
    return EXIT_OK


def _cmd_complete(ctx: AppContext, args: argparse.Namespace) -> int:
    result = ctx.rewards.complete_task(args.user_id, args.task_id)
    if result is None:
        _err(f"Task {args.task_id} cannot be completed (missing, recycled or already completed).")
        return EXIT_ERROR
    _out(f"Task {result.task_id} completed: +{result.gold_awarded} gold, +{result.xp_total} xp")
    for award in result.skill_awards:
        u = award.update
        line = f"  {award.skill_name}: +{u.xp_applied} xp, level {u.after.level}"
        if u.leveled_up:
            line += f" (LEVEL UP +{u.levels_gained})"
        _out(line)
        for m in u.unlocked_milestones:
            _out(f"    milestone unlocked: {m}")
    return EXIT_OK


def _cmd_gold_preview(ctx: AppContext | None, args: argparse.Namespace) -> int:
    _out(explain_gold(args.tier, args.duration))
    _out(f"Total: {compute_gold(args.tier, args.duration)} gold")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pq", description="Productivity quest task engine")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("migrate", help="Run schema migrations (safe to repeat)")
    sp.set_defaults(handler=_cmd_migrate)

    sp = sub.add_parser("task-count", help="Show active/recycled task counts")
    sp.add_argument("user_id")
    sp.set_defaults(handler=_cmd_task_count)

    sp = sub.add_parser("sync", help="Import/update tasks from an external source")
    sp.add_argument("user_id")
    sp.add_argument("source", help="notion | google_calendar (alias: calendar)")
    sp.add_argument("--contains", action="append", metavar="TEXT", help="Title filter (repeatable)")
    sp.set_defaults(handler=_cmd_sync)

    # No filter options: purge needs the complete remote set.
    sp = sub.add_parser("purge", help="Remove imported tasks missing from the source")
    sp.add_argument("user_id")
    sp.add_argument("source", help="notion | google_calendar (alias: calendar)")
    sp.set_defaults(handler=_cmd_purge)

    sp = sub.add_parser("complete", help="Complete a task and award gold/xp")
    sp.add_argument("user_id")
    sp.add_argument("task_id", type=int)
    sp.set_defaults(handler=_cmd_complete)

    sp = sub.add_parser("gold-preview", help="Explain the gold reward for a tier and duration")
    sp.add_argument("tier")
    sp.add_argument("duration", type=float)
    sp.set_defaults(handler=_cmd_gold_preview, needs_context=False)

    return p


def main(
    argv: Sequence[str] | None = None,
    *,
    settings=None,
    context_factory: Callable[..., AppContext] = create_app_context,
) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_USAGE if e.code else EXIT_OK

    if settings is None:
        settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    setup_logging(
        log_dir=getattr(settings, "data_dir", ".local/quest"),
        console_level=getattr(logging, level_name, logging.INFO),
    )

    try:
        ctx = context_factory(settings=settings) if getattr(args, "needs_context", True) else None
        return int(args.handler(ctx, args))
    except QuestError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        _err(f"error: {e}")
        return EXIT_ERROR
    except ValueError as e:
        # Unknown source kind, malformed tier/duration.
        _err(f"error: {e}")
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
