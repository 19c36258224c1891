# src/productivity_quest/rewards/gold.py

"""
Reward calculator.

Gold = BASE_GOLD x (duration / TIME_DIVISOR) x (1 + tier bonus)
XP   = XP_BASE   x (duration / XP_TIME_DIVISOR) x (1 + tier XP bonus)

Both are rounded half-up to an integer by the same helper, so a preview
computed before saving a task always equals the value stored at completion.
"""

from __future__ import annotations

import math
from enum import StrEnum

from ..errors import ValidationError

BASE_GOLD = 20
TIME_DIVISOR = 20

XP_BASE = 15
XP_TIME_DIVISOR = 15


class ImportanceTier(StrEnum):
    """Ordered importance labels (lowest first)."""

    LOW = "Low"
    MED_LOW = "Med-Low"
    MEDIUM = "Medium"
    MED_HIGH = "Med-High"
    HIGH = "High"
    PARETO = "Pareto"

    @classmethod
    def from_label(cls, raw: str | None) -> ImportanceTier | None:
        """Tolerant parse; None for empty or unknown labels."""
        if raw is None:
            return None
        s = str(raw).strip()
        if not s:
            return None
        try:
            return cls(s)
        except ValueError:
            pass
        folded = s.lower().replace("_", "-").replace(" ", "-")
        for tier in cls:
            if tier.value.lower() == folded:
                return tier
        return None


GOLD_BONUSES: dict[ImportanceTier, float] = {
    ImportanceTier.LOW: 0.0,
    ImportanceTier.MED_LOW: 0.03,
    ImportanceTier.MEDIUM: 0.05,
    ImportanceTier.MED_HIGH: 0.07,
    ImportanceTier.HIGH: 0.10,
    ImportanceTier.PARETO: 0.15,
}

XP_BONUSES: dict[ImportanceTier, float] = {
    ImportanceTier.LOW: 0.0,
    ImportanceTier.MED_LOW: 0.05,
    ImportanceTier.MEDIUM: 0.10,
    ImportanceTier.MED_HIGH: 0.15,
    ImportanceTier.HIGH: 0.20,
    ImportanceTier.PARETO: 0.30,
}


def _validated_duration(duration_minutes: float) -> float:
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, (int, float)):
        raise ValidationError(f"duration must be a number of minutes, got {duration_minutes!r}")
    d = float(duration_minutes)
    if not math.isfinite(d):
        raise ValidationError(f"duration must be finite, got {duration_minutes!r}")
    if d < 0:
        raise ValidationError(f"duration must be non-negative, got {duration_minutes!r}")
    return d


def _bonus(table: dict[ImportanceTier, float], tier: str | ImportanceTier | None) -> float:
    parsed = tier if isinstance(tier, ImportanceTier) else ImportanceTier.from_label(tier)
    if parsed is None:
        return table[ImportanceTier.MEDIUM]
    return table[parsed]


def round_half_up(value: float) -> int:
    # Inputs are never negative here (duration is validated first).
    return int(math.floor(value + 0.5))


def compute_gold(tier: str | ImportanceTier | None, duration_minutes: float) -> int:
    """Gold for completing a task; unknown or missing tiers count as Medium."""
    d = _validated_duration(duration_minutes)
    time_weight = d / TIME_DIVISOR
    return round_half_up(BASE_GOLD * time_weight * (1 + _bonus(GOLD_BONUSES, tier)))


def compute_xp(tier: str | ImportanceTier | None, duration_minutes: float) -> int:
    """Total skill XP for a task, before splitting among its skills."""
    d = _validated_duration(duration_minutes)
    time_weight = d / XP_TIME_DIVISOR
    return round_half_up(XP_BASE * time_weight * (1 + _bonus(XP_BONUSES, tier)))


def split_xp(total_xp: int, n_skills: int) -> int:
    if n_skills <= 0:
        return 0
    if total_xp < 0:
        raise ValidationError(f"xp must be non-negative, got {total_xp!r}")
    return round_half_up(total_xp / n_skills)


def explain_gold(tier: str | ImportanceTier | None, duration_minutes: float) -> str:
    d = _validated_duration(duration_minutes)
    parsed = tier if isinstance(tier, ImportanceTier) else ImportanceTier.from_label(tier)
    label = parsed.value if parsed is not None else ImportanceTier.MEDIUM.value
    bonus = _bonus(GOLD_BONUSES, tier)
    time_weight = d / TIME_DIVISOR
    gold = compute_gold(tier, d)
    return "\n".join(
        [
            "Gold calculation:",
            f"- Base: {BASE_GOLD}",
            f"- Duration: {d:g} minutes",
            f"- Time weight: {d:g} / {TIME_DIVISOR} = {time_weight:.2f}",
            f"- Importance: {label}",
            f"- Priority bonus: {bonus * 100:.0f}%",
            f"- Formula: {BASE_GOLD} x {time_weight:.2f} x (1 + {bonus:g}) = {gold}",
        ]
    )
