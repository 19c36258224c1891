# src/productivity_quest/sources/http.py

"""Shared httpx plumbing for external sources: timeouts and error translation."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from typing import Any

import httpx

from ..errors import ExternalApiError

logger = logging.getLogger(__name__)

# 404 is included: both APIs answer 404 when the database/calendar is not
# shared with the credentials, which only the user can fix.
_RECONNECT_STATUSES = {401, 403, 404}


def make_timeout(connect_s: float, read_s: float) -> httpx.Timeout:
    return httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s)


def build_http_client(*, connect_timeout: float = 5.0, read_timeout: float = 20.0) -> httpx.Client:
    return httpx.Client(timeout=make_timeout(connect_timeout, read_timeout))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        # Notion: {"code": ..., "message": ...}; Google: {"error": {"message": ...}}
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if body.get("message"):
            return str(body["message"])
    return response.reason_phrase


def check_response(response: httpx.Response, *, source_kind: str) -> None:
    if response.is_success:
        return
    status = response.status_code
    message = _error_message(response)
    needs_reconnect = status in _RECONNECT_STATUSES
    if status == 429:
        message = f"rate limited: {message}"
    raise ExternalApiError(
        f"{source_kind} returned HTTP {status}: {message}",
        source_kind=source_kind,
        status_code=status,
        needs_reconnect=needs_reconnect,
    )


def json_body(response: httpx.Response, *, source_kind: str) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise ExternalApiError(f"{source_kind} returned invalid JSON", source_kind=source_kind) from exc
    if not isinstance(body, dict):
        raise ExternalApiError(f"{source_kind} returned an unexpected payload", source_kind=source_kind)
    return body


@contextlib.contextmanager
def translate_errors(source_kind: str) -> Iterator[None]:
    """Turn httpx transport failures into ExternalApiError."""
    try:
        yield
    except httpx.TimeoutException as exc:
        logger.info("%s: request timed out", source_kind)
        raise ExternalApiError(f"{source_kind} request timed out", source_kind=source_kind) from exc
    except httpx.TransportError as exc:
        logger.info("%s: network error (%s)", source_kind, exc.__class__.__name__)
        raise ExternalApiError(
            f"{source_kind} is unreachable: {exc.__class__.__name__}", source_kind=source_kind
        ) from exc
