# src/productivity_quest/sources/dates.py

"""
Due-date normalization for imported records.

Rules:
- a value with an explicit offset ("Z", "+02:00", ...) is stored as that instant
- a date-only value ("2025-03-14") is that calendar date in the owning user's
  zone, i.e. local midnight there, via the explicit CalendarDate pair
- a date-time without offset is read in the zone the source attached to it,
  else in the user's zone

The host's local zone is never consulted: every datetime built here is aware.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class DueParseError(ValueError):
    """The remote due value could not be understood."""


def resolve_zone(name: str | None) -> ZoneInfo:
    if not name or not str(name).strip():
        raise DueParseError("time zone is required")
    try:
        return ZoneInfo(str(name).strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise DueParseError(f"unknown time zone: {name!r}") from exc


def is_valid_zone(name: str | None) -> bool:
    try:
        resolve_zone(name)
    except DueParseError:
        return False
    return True


@dataclass(frozen=True, slots=True)
class CalendarDate:
    """A calendar date that only becomes an instant together with a zone."""

    day: date
    zone: str

    def start_instant(self) -> datetime:
        return datetime.combine(self.day, time.min, tzinfo=resolve_zone(self.zone))


@dataclass(frozen=True, slots=True)
class NormalizedDue:
    at: datetime  # always aware
    timezone: str
    all_day_date: str | None = None

    @property
    def epoch(self) -> float:
        return self.at.timestamp()

    @property
    def is_all_day(self) -> bool:
        return self.all_day_date is not None


def normalize_due(
    start: str | None,
    *,
    user_timezone: str,
    source_timezone: str | None = None,
) -> NormalizedDue | None:
    """
    Normalize a remote due value. Returns None when there is no value;
    raises DueParseError when there is one but it cannot be parsed.
    """
    if start is None:
        return None
    raw = str(start).strip()
    if not raw:
        return None

    user_zone = resolve_zone(user_timezone)

    if _DATE_ONLY_RE.match(raw):
        try:
            day = date.fromisoformat(raw)
        except ValueError as exc:
            raise DueParseError(f"invalid date: {raw!r}") from exc
        cal = CalendarDate(day=day, zone=user_zone.key)
        return NormalizedDue(at=cal.start_instant(), timezone=cal.zone, all_day_date=day.isoformat())

    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise DueParseError(f"invalid date-time: {raw!r}") from exc

    display_zone = user_zone
    if source_timezone:
        try:
            display_zone = resolve_zone(source_timezone)
        except DueParseError:
            logger.debug("Ignoring unknown source time zone %r", source_timezone)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=display_zone)

    return NormalizedDue(at=parsed, timezone=display_zone.key)
