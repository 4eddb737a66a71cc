"""
Level table — 35 polynomial levels grouped into rank tiers.

XP curve: BASE_XP × level^1.5. Early levels come fast, later ones need
sustained effort. Level 1 = 0 XP, level 2 = 141 XP, level 10 = 1,581 XP,
level 35 = 10,353 XP.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

BASE_XP = 50
MAX_LEVEL = 35


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (Python's round() is banker's rounding)."""
    return int(math.floor(value + 0.5))


def xp_required(level: int) -> int:
    """Total XP needed to reach ``level``."""
    if level <= 1:
        return 0
    return round_half_up(BASE_XP * math.pow(level, 1.5))


# ── Rank tiers ────────────────────────────────────────────────────


@dataclass(frozen=True)
class RankTier:
    tier: int
    min_level: int
    max_level: int
    name: str
    color: str
    icon: str

    def contains(self, level: int) -> bool:
        return self.min_level <= level <= self.max_level


RANK_TIERS: tuple[RankTier, ...] = (
    RankTier(1, 1, 5, "Novice", "#8B9DAF", "🐾"),
    RankTier(2, 6, 10, "Apprentice", "#2ecc71", "🌿"),
    RankTier(3, 11, 15, "Adept", "#3498db", "💎"),
    RankTier(4, 16, 20, "Veteran", "#9b59b6", "🔮"),
    RankTier(5, 21, 25, "Champion", "#e67e22", "🏆"),
    RankTier(6, 26, 30, "Legend", "#e74c3c", "🔥"),
    RankTier(7, 31, 34, "Mythic", "#a855f7", "⚡"),
    RankTier(8, 35, 35, "Panther Ascendant", "#f1c40f", "👑"),
)


def get_rank_tier(level: int) -> RankTier:
    """Tier containing ``level``. Out-of-range levels clamp to the first/last tier."""
    if level > MAX_LEVEL:
        return RANK_TIERS[-1]
    for tier in RANK_TIERS:
        if tier.contains(level):
            return tier
    return RANK_TIERS[0]


@dataclass(frozen=True)
class TierMilestone:
    level: int
    tier_name: str
    xp_required: int


def get_next_tier_milestone(level: int) -> Optional[TierMilestone]:
    """Entry point of the tier after the one ``level`` belongs to, or None at the top tier."""
    current = get_rank_tier(level)
    for tier in RANK_TIERS:
        if tier.tier == current.tier + 1:
            return TierMilestone(
                level=tier.min_level,
                tier_name=tier.name,
                xp_required=xp_required(tier.min_level),
            )
    return None


# ── Level definitions ─────────────────────────────────────────────


@dataclass(frozen=True)
class LevelDefinition:
    level: int
    xp_required: int
    name: str  # e.g. "Apprentice 2"
    tier: int
    tier_name: str
    tier_icon: str
    tier_color: str

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "xpRequired": self.xp_required,
            "name": self.name,
            "tier": self.tier,
            "tierName": self.tier_name,
            "tierIcon": self.tier_icon,
            "tierColor": self.tier_color,
        }


def _build_levels() -> tuple[LevelDefinition, ...]:
    levels = []
    for level in range(1, MAX_LEVEL + 1):
        tier = get_rank_tier(level)
        levels.append(LevelDefinition(
            level=level,
            xp_required=xp_required(level),
            name=f"{tier.name} {level - tier.min_level + 1}",
            tier=tier.tier,
            tier_name=tier.name,
            tier_icon=tier.icon,
            tier_color=tier.color,
        ))
    return tuple(levels)


LEVELS: tuple[LevelDefinition, ...] = _build_levels()


# ── Level lookup ──────────────────────────────────────────────────


@dataclass(frozen=True)
class LevelInfo:
    current: LevelDefinition
    next: Optional[LevelDefinition]
    xp_in_level: int
    xp_for_next: int
    progress: float  # 0..1, 1.0 at max level

    @property
    def level(self) -> int:
        return self.current.level

    @property
    def tier_name(self) -> str:
        return self.current.tier_name


def _clamp_xp(total_xp) -> int:
    try:
        value = float(total_xp)
    except (TypeError, ValueError):
        return 0
    if math.isnan(value) or value < 0:
        return 0
    if math.isinf(value):
        return LEVELS[-1].xp_required
    return int(value)


def get_level_info(total_xp) -> LevelInfo:
    """Resolve the level for a running XP total.

    Negative, NaN or non-numeric totals are treated as 0; +inf as max level.
    """
    xp = _clamp_xp(total_xp)
    current = LEVELS[0]
    nxt: Optional[LevelDefinition] = LEVELS[1]
    for idx in range(len(LEVELS) - 1, -1, -1):
        if xp >= LEVELS[idx].xp_required:
            current = LEVELS[idx]
            nxt = LEVELS[idx + 1] if idx + 1 < len(LEVELS) else None
            break

    xp_in_level = xp - current.xp_required
    xp_for_next = nxt.xp_required - current.xp_required if nxt else 0
    if nxt and xp_for_next > 0:
        progress = min(xp_in_level / xp_for_next, 1.0)
    else:
        progress = 1.0
    return LevelInfo(
        current=current,
        next=nxt,
        xp_in_level=xp_in_level,
        xp_for_next=xp_for_next,
        progress=progress,
    )


def level_for_xp(total_xp) -> int:
    return get_level_info(total_xp).current.level
