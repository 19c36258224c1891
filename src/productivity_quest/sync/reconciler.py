# src/productivity_quest/sync/reconciler.py

"""
Merge fetched RemoteRecords into the task store.

Reconciliation is per record: each record is linked in its own short
transaction, so a failure on record N keeps records 1..N-1. Nothing here
deletes tasks; purge() is a separate, caller-invoked operation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..core.ports import ExternalTaskRepo
from ..errors import DataIntegrityError, QuestError
from ..rewards.gold import ImportanceTier
from ..sources.dates import DueParseError, NormalizedDue, normalize_due
from ..sources.models import RemoteRecord
from ..tasks.task_store import ExternalFields, LinkAction

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    # Imported without a due date because the remote value could not be read.
    due_skipped: int = 0
    conflicts: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.unchanged + self.skipped

    def merge(self, other: ReconcileResult) -> None:
        self.created += other.created
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.skipped += other.skipped
        self.due_skipped += other.due_skipped
        self.conflicts.extend(other.conflicts)

    def as_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "due_skipped": self.due_skipped,
        }


@dataclass(frozen=True, slots=True)
class PurgedTask:
    task_id: int
    external_id: str
    title: str


@dataclass(frozen=True, slots=True)
class PurgeResult:
    source_kind: str
    removed: tuple[PurgedTask, ...] = ()

    @property
    def count(self) -> int:
        return len(self.removed)


class SyncReconciler:
    def __init__(self, repo: ExternalTaskRepo) -> None:
        self._repo = repo

    def _normalize(self, record: RemoteRecord, user_tz: str) -> tuple[NormalizedDue | None, bool]:
        try:
            return normalize_due(record.due_start, user_timezone=user_tz, source_timezone=record.due_timezone), False
        except DueParseError as e:
            logger.info(
                "Sync: %s/%s has unreadable due %r (%s); importing without due date",
                record.source_kind,
                record.external_id,
                record.due_start,
                e,
            )
            return None, True

    def reconcile(self, user_id: str, source_kind: str, records: Iterable[RemoteRecord]) -> ReconcileResult:
        result = ReconcileResult()
        user_tz = self._repo.get_user_timezone(user_id)

        for record in records:
            external_id = (record.external_id or "").strip()
            if not external_id:
                result.skipped += 1
                continue
            if record.source_kind and record.source_kind != source_kind:
                logger.warning(
                    "Sync: record %s belongs to %s, not %s; skipping",
                    external_id,
                    record.source_kind,
                    source_kind,
                )
                result.skipped += 1
                continue

            due, due_failed = self._normalize(record, user_tz)
            if due_failed:
                result.due_skipped += 1

            tier = ImportanceTier.from_label(record.importance_hint)
            fields = ExternalFields(
                title=record.title,
                due=due,
                duration=record.duration_hint,
                importance=tier.value if tier is not None else None,
            )

            try:
                outcome = self._repo.link_external(user_id, source_kind, external_id, fields)
            except DataIntegrityError as e:
                logger.warning("Sync: integrity conflict for %s/%s: %s", source_kind, external_id, e)
                result.skipped += 1
                result.conflicts.append(external_id)
                continue
            except QuestError as e:
                logger.warning("Sync: could not apply %s/%s: %s", source_kind, external_id, e)
                result.skipped += 1
                continue

            if outcome.action is LinkAction.CREATED:
                result.created += 1
            elif outcome.action is LinkAction.UPDATED:
                result.updated += 1
            else:
                result.unchanged += 1

        logger.info("Sync: reconciled %s for user=%s: %s", source_kind, user_id, result.as_dict())
        return result

    def purge(self, user_id: str, source_kind: str, latest_external_ids: Iterable[str]) -> PurgeResult:
        """
        Delete this source's linked tasks whose external id is absent from
        latest_external_ids. Tasks of other sources and manual tasks are untouched.
        """
        removed = self._repo.delete_external_tasks_except(user_id, source_kind, latest_external_ids)
        purged = tuple(
            PurgedTask(task_id=t.id, external_id=t.external_id or "", title=t.title) for t in removed
        )
        for p in purged:
            logger.info("Purge: removed task %d (%s %s) %r", p.task_id, source_kind, p.external_id, p.title)
        logger.info("Purge: %d task(s) removed for user=%s source=%s", len(purged), user_id, source_kind)
        return PurgeResult(source_kind=source_kind, removed=purged)
