# tests/fakes.py

from __future__ import annotations

from collections.abc import Callable, Sequence

from productivity_quest.errors import ExternalApiError
from productivity_quest.sources.models import FetchFilter, FetchPage, RemoteRecord


def record(
    external_id: str,
    title: str = "Imported",
    *,
    source_kind: str = "notion",
    due: str | None = None,
    due_tz: str | None = None,
    duration: int | None = None,
    importance: str | None = None,
) -> RemoteRecord:
    return RemoteRecord(
        source_kind=source_kind,
        external_id=external_id,
        title=title,
        due_start=due,
        due_timezone=due_tz,
        duration_hint=duration,
        importance_hint=importance,
    )


class FakeSource:
    """
    Deterministic ExternalSourceAdapter for unit tests.

    - serves pre-built pages, following the cursor "p<N>"
    - can raise ExternalApiError on a given page index
    - captures filters for assertions
    """

    def __init__(
        self,
        kind: str,
        pages: Sequence[Sequence[RemoteRecord]],
        *,
        fail_on_page: int | None = None,
        error: ExternalApiError | None = None,
        on_fetch: Callable[[], None] | None = None,
    ) -> None:
        self.kind = kind
        self.pages = [tuple(p) for p in pages] or [()]
        self.fail_on_page = fail_on_page
        self.error = error or ExternalApiError(f"{kind} is unreachable", source_kind=kind)
        self.on_fetch = on_fetch
        self.filters: list[FetchFilter] = []
        self.closed = False

    def fetch(self, flt: FetchFilter) -> FetchPage:
        self.filters.append(flt)
        if self.on_fetch is not None:
            self.on_fetch()
        idx = int(flt.cursor[1:]) if flt.cursor else 0
        if self.fail_on_page is not None and idx == self.fail_on_page:
            raise self.error
        nxt = f"p{idx + 1}" if idx + 1 < len(self.pages) else None
        return FetchPage(records=self.pages[idx], next_cursor=nxt)

    def close(self) -> None:
        self.closed = True
