# src/productivity_quest/sources/google_calendar.py

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from ..errors import ConfigurationError
from ..tasks.task_models import SourceKind
from .http import build_http_client, check_response, json_body, translate_errors
from .models import FetchFilter, FetchPage, RemoteRecord

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Event"


def _rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        raise ValueError("time bounds must be timezone-aware")
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _duration_minutes(start: Mapping[str, Any], end: Mapping[str, Any]) -> int | None:
    s = start.get("dateTime")
    e = end.get("dateTime")
    if not s or not e:
        return None
    try:
        minutes = (datetime.fromisoformat(str(e)) - datetime.fromisoformat(str(s))).total_seconds() / 60.0
    except (TypeError, ValueError):
        return None
    return int(round(minutes)) if minutes >= 0 else None


def map_event(event: Mapping[str, Any]) -> RemoteRecord | None:
    """Map one events.list item; None for cancelled events or events without an id."""
    event_id = str(event.get("id") or "").strip()
    if not event_id or event.get("status") == "cancelled":
        return None

    start = event.get("start") if isinstance(event.get("start"), Mapping) else {}
    end = event.get("end") if isinstance(event.get("end"), Mapping) else {}

    due_start: str | None = None
    due_tz: str | None = None
    if start.get("dateTime"):
        due_start = str(start["dateTime"])
        due_tz = str(start["timeZone"]) if start.get("timeZone") else None
    elif start.get("date"):
        # All-day event: a calendar date, resolved later in the user's zone.
        due_start = str(start["date"])

    return RemoteRecord(
        source_kind=SourceKind.GOOGLE_CALENDAR.value,
        external_id=event_id,
        title=str(event.get("summary") or "").strip() or DEFAULT_TITLE,
        due_start=due_start,
        due_timezone=due_tz,
        duration_hint=_duration_minutes(start, end),
    )


class GoogleCalendarSource:
    kind = SourceKind.GOOGLE_CALENDAR.value

    def __init__(
        self,
        *,
        access_token: str | None,
        calendar_id: str = "primary",
        base_url: str = "https://www.googleapis.com/calendar/v3",
        client: httpx.Client | None = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 20.0,
    ) -> None:
        if not access_token or not str(access_token).strip():
            raise ConfigurationError(
                "Google Calendar access token is not set. Set PQ_GOOGLE_ACCESS_TOKEN in your .env."
            )
        self._token = str(access_token).strip()
        self._calendar_id = (calendar_id or "primary").strip() or "primary"
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or build_http_client(connect_timeout=connect_timeout, read_timeout=read_timeout)

    @classmethod
    def from_settings(cls, settings: Any, *, client: httpx.Client | None = None) -> GoogleCalendarSource:
        return cls(
            access_token=getattr(settings, "google_access_token", None),
            calendar_id=getattr(settings, "google_calendar_id", "primary"),
            base_url=getattr(settings, "google_calendar_base_url", "https://www.googleapis.com/calendar/v3"),
            client=client,
            connect_timeout=float(getattr(settings, "http_connect_timeout", 5.0)),
            read_timeout=float(getattr(settings, "http_read_timeout", 20.0)),
        )

    def build_params(self, flt: FetchFilter) -> dict[str, str]:
        params: dict[str, str] = {
            "maxResults": str(flt.clamped_page_size),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        terms = [t.strip() for t in flt.title_contains if t and t.strip()]
        # q also matches description and location, so titles are re-checked in fetch().
        # A disjunction cannot be expressed in q at all.
        if len(terms) == 1:
            params["q"] = terms[0]
        if flt.cursor:
            params["pageToken"] = flt.cursor
        if flt.time_min is not None:
            params["timeMin"] = _rfc3339(flt.time_min)
        if flt.time_max is not None:
            params["timeMax"] = _rfc3339(flt.time_max)
        return params

    def fetch(self, flt: FetchFilter) -> FetchPage:
        url = f"{self._base_url}/calendars/{quote(self._calendar_id, safe='')}/events"
        headers = {"Authorization": f"Bearer {self._token}"}
        logger.debug("Calendar: listing events calendar=%s cursor=%s", self._calendar_id, flt.cursor)

        with translate_errors(self.kind):
            response = self._client.get(url, params=self.build_params(flt), headers=headers)
        check_response(response, source_kind=self.kind)
        body = json_body(response, source_kind=self.kind)

        terms = [t.strip().lower() for t in flt.title_contains if t and t.strip()]
        records: list[RemoteRecord] = []
        for event in body.get("items") or []:
            if not isinstance(event, Mapping):
                continue
            record = map_event(event)
            if record is None:
                continue
            if terms and not any(t in record.title.lower() for t in terms):
                continue
            records.append(record)

        next_token = body.get("nextPageToken")
        logger.info("Calendar: fetched %d record(s) has_more=%s", len(records), bool(next_token))
        return FetchPage(records=tuple(records), next_cursor=str(next_token) if next_token else None)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
