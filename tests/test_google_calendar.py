# tests/test_google_calendar.py

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from productivity_quest.errors import ConfigurationError, ExternalApiError
from productivity_quest.sources.google_calendar import GoogleCalendarSource, map_event
from productivity_quest.sources.models import FetchFilter


def _source(handler, calendar_id: str = "primary") -> GoogleCalendarSource:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return GoogleCalendarSource(
        access_token="tok",
        calendar_id=calendar_id,
        base_url="https://calendar.test/v3",
        client=client,
    )


EVENTS = [
    {
        "id": "e1",
        "status": "confirmed",
        "summary": "Standup",
        "start": {"dateTime": "2025-03-14T09:00:00-07:00", "timeZone": "America/Los_Angeles"},
        "end": {"dateTime": "2025-03-14T09:15:00-07:00"},
    },
    {"id": "e2", "summary": "Holiday", "start": {"date": "2025-03-17"}, "end": {"date": "2025-03-18"}},
    {"id": "e3", "status": "cancelled"},
    {"id": "e4", "summary": "", "start": {"date": "2025-03-20"}},
]


def test_request_params_and_mapping() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"items": EVENTS, "nextPageToken": "tok-2"})

    source = _source(handler, calendar_id="team@group.calendar.google.com")
    page = source.fetch(FetchFilter(page_size=50, time_min=datetime(2025, 3, 1, tzinfo=timezone.utc)))

    req = seen[0]
    assert req.method == "GET"
    assert req.url.path == "/v3/calendars/team@group.calendar.google.com/events"
    assert req.headers["Authorization"] == "Bearer tok"
    params = req.url.params
    assert params["singleEvents"] == "true"
    assert params["orderBy"] == "startTime"
    assert params["maxResults"] == "50"
    assert params["timeMin"] == "2025-03-01T00:00:00Z"

    assert page.next_cursor == "tok-2"
    assert [r.external_id for r in page] == ["e1", "e2", "e4"]
    standup, holiday, untitled = page.records
    assert standup.due_timezone == "America/Los_Angeles"
    assert standup.duration_hint == 15
    assert standup.source_kind == "google_calendar"
    assert holiday.due_start == "2025-03-17"
    assert holiday.duration_hint is None
    assert untitled.title == "Untitled Event"


def test_several_terms_are_filtered_locally() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"items": EVENTS})

    page = _source(handler).fetch(FetchFilter(title_contains=("STANDUP", "holiday"), cursor="tok-2"))
    assert "q" not in seen[0].url.params
    assert seen[0].url.params["pageToken"] == "tok-2"
    assert [r.title for r in page] == ["Standup", "Holiday"]
    assert not page.has_more


def test_cancelled_and_idless_events_are_skipped() -> None:
    assert map_event({"id": "x", "status": "cancelled"}) is None
    assert map_event({"summary": "no id"}) is None


def test_missing_token_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        GoogleCalendarSource(access_token=None)


def test_unauthorized_needs_reconnect() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"code": 401, "message": "Invalid Credentials"}})

    with pytest.raises(ExternalApiError) as ei:
        _source(handler).fetch(FetchFilter())
    assert ei.value.needs_reconnect
    assert "Invalid Credentials" in str(ei.value)


def test_network_error_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ExternalApiError) as ei:
        _source(handler).fetch(FetchFilter())
    assert not ei.value.needs_reconnect
    assert ei.value.status_code is None


def test_single_term_is_rechecked_against_titles() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        # q also matches descriptions and locations.
        items = [
            {"id": "e1", "summary": "Gym session", "start": {"date": "2025-03-14"}},
            {"id": "e2", "summary": "Taxes", "description": "after gym", "start": {"date": "2025-03-15"}},
        ]
        return httpx.Response(200, json={"items": items})

    page = _source(handler).fetch(FetchFilter(title_contains=("gym",)))
    assert seen[0].url.params["q"] == "gym"
    assert [r.external_id for r in page] == ["e1"]
