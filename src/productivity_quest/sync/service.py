# src/productivity_quest/sync/service.py

"""
Sync orchestration.

SyncService turns "sync this user's <source>" into fetch + reconcile and
reports the outcome as a SyncReport instead of raising:
- ok               every page fetched and reconciled
- needs_reconnect  the source rejected the credentials or sharing (401/403/404)
- failed           transient fetch error, task store error or timeout;
                   committed pages are kept
- not_configured   the source has no credentials in settings
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from ..core.ports import ExternalSourceAdapter
from ..errors import ConfigurationError, ExternalApiError
from ..sources.models import FetchFilter, fetch_all
from ..tasks.task_models import SourceKind
from .reconciler import PurgeResult, ReconcileResult, SyncReconciler

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[], ExternalSourceAdapter]


class SyncState(StrEnum):
    OK = "ok"
    NEEDS_RECONNECT = "needs_reconnect"
    FAILED = "failed"
    NOT_CONFIGURED = "not_configured"


@dataclass(slots=True)
class SyncReport:
    source_kind: str
    state: SyncState
    result: ReconcileResult = field(default_factory=ReconcileResult)
    pages: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is SyncState.OK


@dataclass(slots=True)
class PurgeReport:
    source_kind: str
    state: SyncState
    purge: PurgeResult | None = None
    fetched: int = 0
    error: str | None = None


@dataclass(frozen=True, slots=True)
class SyncRequest:
    source_kind: str
    filter: FetchFilter = field(default_factory=FetchFilter)


def _state_for(exc: ExternalApiError) -> SyncState:
    return SyncState.NEEDS_RECONNECT if exc.needs_reconnect else SyncState.FAILED


def _narrows(flt: FetchFilter) -> bool:
    terms = [t for t in flt.title_contains if t and t.strip()]
    return bool(terms) or flt.cursor is not None or flt.time_min is not None or flt.time_max is not None


class SyncService:
    def __init__(
        self,
        reconciler: SyncReconciler,
        adapters: Mapping[str, AdapterFactory],
        *,
        mark_synced: Callable[[str], None] | None = None,
        max_pages: int = 20,
    ) -> None:
        self._reconciler = reconciler
        self._adapters = dict(adapters)
        self._mark_synced = mark_synced
        self._max_pages = max(1, int(max_pages))

    @property
    def reconciler(self) -> SyncReconciler:
        return self._reconciler

    def _open(self, source_kind: str) -> ExternalSourceAdapter:
        factory = self._adapters.get(source_kind)
        if factory is None:
            raise ConfigurationError(f"No adapter registered for source {source_kind!r}")
        return factory()

    def sync_source(self, user_id: str, source_kind: str, flt: FetchFilter | None = None) -> SyncReport:
        kind = SourceKind.parse(source_kind).value
        report = SyncReport(source_kind=kind, state=SyncState.OK)
        started = time.monotonic()

        try:
            adapter = self._open(kind)
        except ConfigurationError as e:
            logger.info("Sync: %s not configured: %s", kind, e)
            report.state = SyncState.NOT_CONFIGURED
            report.error = str(e)
            return report

        try:
            for page in fetch_all(adapter, flt, max_pages=self._max_pages):
                report.pages += 1
                report.result.merge(self._reconciler.reconcile(user_id, kind, page.records))
            if self._mark_synced is not None:
                self._mark_synced(user_id)
        except ExternalApiError as e:
            report.state = _state_for(e)
            report.error = str(e)
            logger.warning(
                "Sync: %s failed after %d page(s) for user=%s (%s): %s",
                kind,
                report.pages,
                user_id,
                report.state.value,
                e,
            )
        except sqlite3.Error as e:
            # e.g. a startup migration failed and the tasks table lacks a column.
            report.state = SyncState.FAILED
            report.error = f"task store error: {e}"
            logger.error("Sync: %s store failure for user=%s: %s", kind, user_id, e, exc_info=True)
        finally:
            adapter.close()

        logger.info(
            "Sync: %s user=%s state=%s pages=%d %s in %.2fs",
            kind,
            user_id,
            report.state.value,
            report.pages,
            report.result.as_dict(),
            time.monotonic() - started,
        )
        return report

    def purge_missing(self, user_id: str, source_kind: str, flt: FetchFilter | None = None) -> PurgeReport:
        """
        Fetch the complete latest set for the source, then purge tasks that
        are no longer in it. Any fetch failure aborts before deleting anything.
        Only page_size is honoured from flt; title terms, time bounds and a
        starting cursor are refused.
        """
        kind = SourceKind.parse(source_kind).value
        if flt is not None and _narrows(flt):
            # A filtered fetch is not the complete remote set.
            msg = f"refusing to purge {kind} from a filtered fetch (title, time bounds or cursor)"
            logger.warning("Purge: %s", msg)
            return PurgeReport(source_kind=kind, state=SyncState.FAILED, error=msg)

        try:
            adapter = self._open(kind)
        except ConfigurationError as e:
            return PurgeReport(source_kind=kind, state=SyncState.NOT_CONFIGURED, error=str(e))

        latest: set[str] = set()
        truncated = False
        try:
            for page in fetch_all(adapter, flt, max_pages=self._max_pages):
                latest.update(r.external_id for r in page.records if r.external_id)
                truncated = page.has_more
        except ExternalApiError as e:
            logger.warning("Purge: fetch for %s failed, nothing removed: %s", kind, e)
            return PurgeReport(source_kind=kind, state=_state_for(e), error=str(e))
        finally:
            adapter.close()

        if truncated:
            # An incomplete set would purge tasks that still exist remotely.
            msg = f"{kind} has more than {self._max_pages} page(s); refusing to purge from a partial set"
            logger.warning("Purge: %s", msg)
            return PurgeReport(source_kind=kind, state=SyncState.FAILED, fetched=len(latest), error=msg)

        try:
            result = self._reconciler.purge(user_id, kind, latest)
        except sqlite3.Error as e:
            logger.error("Purge: %s store failure for user=%s: %s", kind, user_id, e, exc_info=True)
            return PurgeReport(
                source_kind=kind, state=SyncState.FAILED, fetched=len(latest), error=f"task store error: {e}"
            )
        return PurgeReport(source_kind=kind, state=SyncState.OK, purge=result, fetched=len(latest))


async def run_sync_cycle(
    service: SyncService,
    user_id: str,
    requests: Iterable[SyncRequest],
    *,
    timeout: float = 60.0,
) -> list[SyncReport]:
    """
    Sync several sources concurrently, each in a worker thread.

    A source that exceeds timeout gets a FAILED report; the others are not
    affected. The timed-out worker thread is not killed, but everything it
    already committed stays committed.
    """
    reqs = list(requests)

    async def _one(req: SyncRequest) -> SyncReport:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(service.sync_source, user_id, req.source_kind, req.filter),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Sync: %s timed out after %.1fs for user=%s", req.source_kind, timeout, user_id)
            return SyncReport(
                source_kind=req.source_kind,
                state=SyncState.FAILED,
                error=f"timed out after {timeout:.1f}s",
            )

    return list(await asyncio.gather(*(_one(r) for r in reqs)))
