# src/productivity_quest/sources/notion.py

"""
Notion (structured-database) source.

Pages come back keyed by user-defined property names, so every field goes
through NotionPropertyMap / map_page() with explicit fallbacks instead of
ad hoc lookups at call sites.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import ConfigurationError
from ..tasks.task_models import SourceKind
from .http import build_http_client, check_response, json_body, translate_errors
from .models import FetchFilter, FetchPage, RemoteRecord

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Task"

_HEX32_RE = re.compile(r"^[a-f0-9]{32}$", re.IGNORECASE)
_URL_ID_RE = re.compile(r"([a-f0-9]{32})(?:[?#]|$)", re.IGNORECASE)


def normalize_database_id(raw: str | None) -> str:
    """
    Accept a database URL, a dashed id or a bare 32-hex id; return the dashed
    8-4-4-4-12 form the API expects.
    """
    s = (raw or "").strip()
    if not s:
        raise ConfigurationError("Notion database id is not set. Set PQ_NOTION_DATABASE_ID in your .env.")

    compact = s.replace("-", "")
    if not _HEX32_RE.match(compact):
        m = _URL_ID_RE.search(s)
        if not m:
            raise ConfigurationError(
                "Invalid Notion database id or URL. Provide the database URL or its 32-character id."
            )
        compact = m.group(1)

    compact = compact.lower()
    return f"{compact[:8]}-{compact[8:12]}-{compact[12:16]}-{compact[16:20]}-{compact[20:]}"


@dataclass(frozen=True, slots=True)
class NotionPropertyMap:
    """Names of the database properties we read. Missing properties fall back to defaults."""

    title: str = "Task"
    due: str = "Due"
    importance: str = "Importance"
    duration: str = "Duration"


def _plain_text(items: Any) -> str:
    if not isinstance(items, list):
        return ""
    parts: list[str] = []
    for item in items:
        if isinstance(item, Mapping):
            text = item.get("plain_text")
            if text is None and isinstance(item.get("text"), Mapping):
                text = item["text"].get("content")
            if text:
                parts.append(str(text))
    return "".join(parts).strip()


def _extract_title(props: Mapping[str, Any], name: str) -> str:
    prop = props.get(name)
    if isinstance(prop, Mapping):
        text = _plain_text(prop.get("title"))
        if text:
            return text
    # The configured name may be wrong; every database has exactly one title property.
    for value in props.values():
        if isinstance(value, Mapping) and value.get("type") == "title":
            text = _plain_text(value.get("title"))
            if text:
                return text
    return DEFAULT_TITLE


def _extract_due(props: Mapping[str, Any], name: str) -> tuple[str | None, str | None]:
    prop = props.get(name)
    if not isinstance(prop, Mapping):
        return None, None
    date = prop.get("date")
    if not isinstance(date, Mapping):
        return None, None
    start = date.get("start")
    tz = date.get("time_zone")
    return (str(start) if start else None), (str(tz) if tz else None)


def _extract_select(props: Mapping[str, Any], name: str) -> str | None:
    prop = props.get(name)
    if not isinstance(prop, Mapping):
        return None
    select = prop.get("select")
    if isinstance(select, Mapping) and select.get("name"):
        return str(select["name"])
    return None


def _extract_number(props: Mapping[str, Any], name: str) -> int | None:
    prop = props.get(name)
    if not isinstance(prop, Mapping):
        return None
    value = prop.get("number")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value) if value >= 0 else None


def map_page(page: Mapping[str, Any], prop_map: NotionPropertyMap) -> RemoteRecord | None:
    """Map one query result page; None for archived pages or pages without an id."""
    page_id = str(page.get("id") or "").strip()
    if not page_id:
        return None
    if page.get("archived") or page.get("in_trash"):
        return None

    props = page.get("properties")
    if not isinstance(props, Mapping):
        props = {}

    due_start, due_tz = _extract_due(props, prop_map.due)
    return RemoteRecord(
        source_kind=SourceKind.NOTION.value,
        external_id=page_id,
        title=_extract_title(props, prop_map.title),
        due_start=due_start,
        due_timezone=due_tz,
        duration_hint=_extract_number(props, prop_map.duration),
        importance_hint=_extract_select(props, prop_map.importance),
    )


class NotionSource:
    kind = SourceKind.NOTION.value

    def __init__(
        self,
        *,
        api_key: str | None,
        database_id: str | None,
        property_map: NotionPropertyMap | None = None,
        base_url: str = "https://api.notion.com/v1",
        api_version: str = "2022-06-28",
        client: httpx.Client | None = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 20.0,
    ) -> None:
        if not api_key or not str(api_key).strip():
            raise ConfigurationError("Notion API key is not set. Set PQ_NOTION_API_KEY in your .env.")
        self._api_key = str(api_key).strip()
        self._database_id = normalize_database_id(database_id)
        self._props = property_map or NotionPropertyMap()
        self._base_url = base_url.rstrip("/")
        self._api_version = api_version
        self._owns_client = client is None
        self._client = client or build_http_client(connect_timeout=connect_timeout, read_timeout=read_timeout)

    @classmethod
    def from_settings(cls, settings: Any, *, client: httpx.Client | None = None) -> NotionSource:
        return cls(
            api_key=getattr(settings, "notion_api_key", None),
            database_id=getattr(settings, "notion_database_id", None),
            property_map=NotionPropertyMap(
                title=getattr(settings, "notion_title_property", "Task"),
                due=getattr(settings, "notion_due_property", "Due"),
                importance=getattr(settings, "notion_importance_property", "Importance"),
                duration=getattr(settings, "notion_duration_property", "Duration"),
            ),
            base_url=getattr(settings, "notion_base_url", "https://api.notion.com/v1"),
            api_version=getattr(settings, "notion_api_version", "2022-06-28"),
            client=client,
            connect_timeout=float(getattr(settings, "http_connect_timeout", 5.0)),
            read_timeout=float(getattr(settings, "http_read_timeout", 20.0)),
        )

    @property
    def database_id(self) -> str:
        return self._database_id

    def build_query(self, flt: FetchFilter) -> dict[str, Any]:
        body: dict[str, Any] = {"page_size": flt.clamped_page_size}
        terms = [t for t in flt.title_contains if t and t.strip()]
        if terms:
            body["filter"] = {
                "or": [{"property": self._props.title, "title": {"contains": t}} for t in terms]
            }
        if flt.cursor:
            body["start_cursor"] = flt.cursor
        return body

    def fetch(self, flt: FetchFilter) -> FetchPage:
        url = f"{self._base_url}/databases/{self._database_id}/query"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Notion-Version": self._api_version,
            "Content-Type": "application/json",
        }
        logger.debug("Notion: querying database=%s cursor=%s", self._database_id, flt.cursor)

        with translate_errors(self.kind):
            response = self._client.post(url, json=self.build_query(flt), headers=headers)
        check_response(response, source_kind=self.kind)
        body = json_body(response, source_kind=self.kind)

        records: list[RemoteRecord] = []
        for page in body.get("results") or []:
            if not isinstance(page, Mapping):
                continue
            record = map_page(page, self._props)
            if record is not None:
                records.append(record)

        next_cursor = body.get("next_cursor") if body.get("has_more") else None
        logger.info("Notion: fetched %d record(s) has_more=%s", len(records), next_cursor is not None)
        return FetchPage(records=tuple(records), next_cursor=str(next_cursor) if next_cursor else None)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
