# src/productivity_quest/sources/models.py

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.ports import ExternalSourceAdapter

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass(frozen=True, slots=True)
class RemoteRecord:
    """
    One item fetched from an external source, already mapped out of the
    source's payload shape.

    due_start is kept raw ("2025-03-14" or "2025-03-14T09:00:00-07:00");
    due_timezone is the zone the source attached to it, if any.
    """

    source_kind: str
    external_id: str
    title: str
    due_start: str | None = None
    due_timezone: str | None = None
    duration_hint: int | None = None
    importance_hint: str | None = None


@dataclass(frozen=True, slots=True)
class FetchFilter:
    title_contains: tuple[str, ...] = ()
    page_size: int = MAX_PAGE_SIZE
    cursor: str | None = None
    time_min: datetime | None = None
    time_max: datetime | None = None

    @property
    def clamped_page_size(self) -> int:
        return max(1, min(MAX_PAGE_SIZE, int(self.page_size)))

    def with_cursor(self, cursor: str | None) -> FetchFilter:
        return replace(self, cursor=cursor)


@dataclass(frozen=True, slots=True)
class FetchPage:
    records: tuple[RemoteRecord, ...] = field(default_factory=tuple)
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None

    def __iter__(self) -> Iterator[RemoteRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


def fetch_all(
    adapter: ExternalSourceAdapter,
    flt: FetchFilter | None = None,
    *,
    max_pages: int = 20,
) -> Iterator[FetchPage]:
    """
    Follow cursors explicitly, one adapter.fetch() per page.

    Stops after max_pages so a misbehaving source cannot loop forever.
    Errors from the adapter propagate to the caller between pages.
    """
    current = flt or FetchFilter()
    for page_no in range(1, max(1, int(max_pages)) + 1):
        page = adapter.fetch(current)
        yield page
        if not page.has_more:
            return
        current = current.with_cursor(page.next_cursor)
        if page_no == max_pages:
            logger.warning(
                "fetch_all: stopping %s after %d pages (more results available)",
                getattr(adapter, "kind", "?"),
                max_pages,
            )
