# src/productivity_quest/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..rewards.service import RewardService
from ..skills.skill_store import SkillStore
from ..storage.database import Database
from ..storage.migrations import MigrationReport
from ..sync.reconciler import SyncReconciler
from ..sync.service import SyncService
from ..tasks.task_store import TaskStore


@dataclass
class AppContext:
    # Settings object (Settings or a test SimpleNamespace).
    settings: object

    database: Database
    task_store: TaskStore
    skill_store: SkillStore
    rewards: RewardService
    reconciler: SyncReconciler
    sync: SyncService

    migration_report: MigrationReport | None = None
