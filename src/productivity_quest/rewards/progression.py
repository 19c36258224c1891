# src/productivity_quest/rewards/progression.py

"""
Progression ledger (pure arithmetic, no I/O).

Per (user, skill) state is a SkillProgress value:
- level >= 1
- xp: experience inside the current level, 0 <= xp < xp_required(level + 1)
- completed_milestones: ordered ids, only ever appended to

xp_required(level) = BASE_XP                                  for level <= 1
                   = floor(BASE_XP * (1 + GROWTH_RATE)^(level-1)) otherwise

The curve is evaluated in exact rational arithmetic, so it stays defined
(and strictly increasing) at any level.

Moving from level L to L+1 costs xp_required(L+1). A single award may
cross any number of thresholds.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from fractions import Fraction
from typing import Any

from ..errors import ValidationError

BASE_XP = 100
GROWTH_RATE = Fraction(2, 100)
_RATIO = 1 + GROWTH_RATE

DEFAULT_MILESTONE_LEVELS: tuple[int, ...] = (10, 25, 99)


def xp_required(level: int) -> int:
    if level <= 1:
        return BASE_XP
    return math.floor(BASE_XP * _RATIO ** (level - 1))


def _requirements_after(level: int) -> Iterator[int]:
    """
    Yield xp_required(level + 1), xp_required(level + 2), ...

    Keeps the exact remainder between steps instead of re-raising the ratio
    to a growing power, so a huge award costs linear work per level.
    """
    num, den = _RATIO.numerator, _RATIO.denominator
    k = max(1, level)
    scale = den ** k
    q, r = divmod(BASE_XP * num ** k, scale)
    while True:
        yield q
        # BASE_XP * ratio^(k+1) = (num * (q * scale + r)) / (den * scale)
        q, b = divmod(num * q, den)
        r = b * scale + num * r
        scale *= den
        carry, r = divmod(r, scale)
        q += carry


def level_milestone_id(level: int) -> str:
    return f"level-{int(level)}"


@dataclass(frozen=True, slots=True)
class SkillProgress:
    level: int = 1
    xp: int = 0
    total_xp: int = 0
    completed_milestones: tuple[str, ...] = ()

    @property
    def xp_to_next_level(self) -> int:
        return xp_required(self.level + 1)

    @property
    def progress_fraction(self) -> float:
        need = self.xp_to_next_level
        return self.xp / need if need > 0 else 0.0

    def has_milestone(self, milestone_id: str) -> bool:
        return milestone_id in self.completed_milestones


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """What a single award did to a skill."""

    before: SkillProgress
    after: SkillProgress
    xp_applied: int
    levels_gained: int = 0
    unlocked_milestones: tuple[str, ...] = field(default_factory=tuple)

    @property
    def leveled_up(self) -> bool:
        return self.levels_gained > 0


def _validated_delta(delta: int) -> int:
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError(f"xp delta must be an integer, got {delta!r}")
    if delta < 0:
        raise ValidationError(f"xp delta must be non-negative, got {delta!r}")
    return delta


def apply_experience(
    progress: SkillProgress,
    delta: int,
    *,
    milestone_levels: Iterable[int] = DEFAULT_MILESTONE_LEVELS,
) -> ProgressUpdate:
    """
    Add delta XP and cascade level-ups.

    Level milestones are unlocked for every milestone level in (old, new].
    """
    delta = _validated_delta(delta)
    if delta == 0:
        return ProgressUpdate(before=progress, after=progress, xp_applied=0)

    level = max(1, int(progress.level))
    xp = max(0, int(progress.xp)) + delta

    for need in _requirements_after(level):
        if xp < need:
            break
        xp -= need
        level += 1

    completed = list(progress.completed_milestones)
    unlocked: list[str] = []
    for lvl in sorted(set(milestone_levels)):
        if progress.level < lvl <= level:
            mid = level_milestone_id(lvl)
            if mid not in completed:
                completed.append(mid)
                unlocked.append(mid)

    after = replace(
        progress,
        level=level,
        xp=xp,
        total_xp=int(progress.total_xp) + delta,
        completed_milestones=tuple(completed),
    )
    return ProgressUpdate(
        before=progress,
        after=after,
        xp_applied=delta,
        levels_gained=level - progress.level,
        unlocked_milestones=tuple(unlocked),
    )


def complete_milestone(progress: SkillProgress, milestone_id: str) -> tuple[SkillProgress, bool]:
    """Mark a milestone completed. Returns (progress, added); re-completing is a no-op."""
    mid = (milestone_id or "").strip()
    if not mid:
        raise ValidationError("milestone id is required")
    if mid in progress.completed_milestones:
        return progress, False
    return replace(progress, completed_milestones=(*progress.completed_milestones, mid)), True


# ---- constellation (user-authored milestone nodes) ----


@dataclass(frozen=True, slots=True)
class ConstellationNode:
    id: str
    x: float
    y: float
    title: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "position": {"x": self.x, "y": self.y}, "title": self.title}

    @staticmethod
    def from_dict(raw: Mapping[str, Any]) -> ConstellationNode:
        pos = raw.get("position")
        if not isinstance(pos, Mapping):
            # Older rows stored x/y at the top level.
            pos = raw
        try:
            x = float(pos.get("x", 0.0))
            y = float(pos.get("y", 0.0))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid constellation position: {pos!r}") from exc
        return ConstellationNode(
            id=str(raw.get("id") or "").strip(),
            x=x,
            y=y,
            title=str(raw.get("title") or "").strip(),
        )


def normalize_constellation(
    nodes: Iterable[ConstellationNode | Mapping[str, Any]],
) -> tuple[ConstellationNode, ...]:
    """Validate a user-submitted node list and order it top to bottom (by y)."""
    out: list[ConstellationNode] = []
    seen: set[str] = set()
    for n in nodes:
        node = n if isinstance(n, ConstellationNode) else ConstellationNode.from_dict(n)
        if not node.id:
            raise ValidationError("constellation node id is required")
        if not node.title:
            raise ValidationError(f"constellation node {node.id!r} needs a title")
        if node.id in seen:
            raise ValidationError(f"duplicate constellation node id: {node.id!r}")
        seen.add(node.id)
        out.append(node)
    out.sort(key=lambda node: node.y)
    return tuple(out)
