# src/productivity_quest/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_CAMPAIGN = "unassigned"
DEFAULT_DURATION_MINUTES = 30


class SourceKind(StrEnum):
    """External systems tasks can be imported from."""

    NOTION = "notion"
    GOOGLE_CALENDAR = "google_calendar"

    @classmethod
    def parse(cls, raw: str) -> SourceKind:
        s = (raw or "").strip().lower().replace("-", "_")
        aliases = {"calendar": cls.GOOGLE_CALENDAR, "gcal": cls.GOOGLE_CALENDAR, "google": cls.GOOGLE_CALENDAR}
        if s in aliases:
            return aliases[s]
        return cls(s)


class RecycleReason(StrEnum):
    COMPLETED = "completed"
    DELETED = "deleted"


@dataclass(slots=True)
class Task:
    id: int
    user_id: str
    title: str
    description: str
    importance: str | None
    duration: int

    # due_at is the UTC instant (epoch seconds). For all-day items due_date keeps
    # the calendar date and due_at is local midnight in due_timezone.
    due_at: float | None
    due_date: str | None
    due_timezone: str | None
    scheduled_at: float | None

    skills: list[str] = field(default_factory=list)
    campaign: str = DEFAULT_CAMPAIGN

    recycled: bool = False
    recycled_at: float | None = None
    recycled_reason: str | None = None

    source_kind: str | None = None
    external_id: str | None = None

    gold_value: int | None = None
    completed_at: float | None = None

    created_at: float = 0.0
    updated_at: float = 0.0
    version: int = 0

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def is_external(self) -> bool:
        return self.source_kind is not None and self.external_id is not None

    def due_datetime(self) -> datetime | None:
        """Due instant as an aware datetime, shown in the task's own zone when known."""
        if self.due_at is None:
            return None
        tz: timezone | ZoneInfo = timezone.utc
        if self.due_timezone:
            try:
                tz = ZoneInfo(self.due_timezone)
            except (ZoneInfoNotFoundError, ValueError):
                tz = timezone.utc
        return datetime.fromtimestamp(self.due_at, tz=tz)


@dataclass(frozen=True, slots=True)
class TaskCounts:
    active: int
    recycled: int
    completed: int
    total: int


@dataclass(frozen=True, slots=True)
class UserProgress:
    user_id: str
    gold_total: int
    tasks_completed: int
    timezone: str
