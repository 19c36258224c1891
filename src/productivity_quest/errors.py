# src/productivity_quest/errors.py

"""
Error taxonomy.

Every error the engine raises on purpose derives from QuestError, so callers
(CLI, sync service) can tell handled failures from programming bugs.
"""

from __future__ import annotations


class QuestError(Exception):
    """Base class for handled failures."""


class ConfigurationError(QuestError):
    """Missing store connection or source credentials."""


class ValidationError(QuestError, ValueError):
    """Rejected input at a calculator/ledger boundary (negative duration, negative XP, ...)."""


class ExternalApiError(QuestError):
    """
    An external source could not be read.

    needs_reconnect=True means retrying will not help until the user fixes
    credentials or sharing (401/403/404); otherwise the failure is transient.
    """

    def __init__(
        self,
        message: str,
        *,
        source_kind: str | None = None,
        status_code: int | None = None,
        needs_reconnect: bool = False,
    ) -> None:
        super().__init__(message)
        self.source_kind = source_kind
        self.status_code = status_code
        self.needs_reconnect = needs_reconnect


class DataIntegrityError(QuestError):
    """A second task for an already-linked external identity was rejected."""

    def __init__(self, message: str, *, source_kind: str, external_id: str) -> None:
        super().__init__(message)
        self.source_kind = source_kind
        self.external_id = external_id


class MigrationError(QuestError):
    def __init__(self, message: str, *, migration_id: str) -> None:
        super().__init__(message)
        self.migration_id = migration_id
