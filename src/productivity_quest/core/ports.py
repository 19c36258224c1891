# src/productivity_quest/core/ports.py

"""
Ports (interfaces) used by the sync core.

The reconciler depends on these Protocols instead of concrete adapters or
stores, which keeps sources swappable and makes testing easier.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from ..sources.models import FetchFilter, FetchPage
from ..tasks.task_models import Task
from ..tasks.task_store import ExternalFields, LinkOutcome


class ExternalSourceAdapter(Protocol):
    """
    One external task source.

    fetch() returns at most filter.page_size records plus a cursor for the
    next page; callers paginate explicitly. Failures raise ExternalApiError.
    """

    kind: str

    def fetch(self, flt: FetchFilter) -> FetchPage: ...

    def close(self) -> None: ...


class ExternalTaskRepo(Protocol):
    def get_user_timezone(self, user_id: str) -> str: ...

    def link_external(
        self,
        user_id: str,
        source_kind: str,
        external_id: str,
        fields: ExternalFields,
    ) -> LinkOutcome: ...

    def delete_external_tasks_except(
        self,
        user_id: str,
        source_kind: str,
        keep_external_ids: Iterable[str],
    ) -> list[Task]: ...
