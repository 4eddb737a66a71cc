"""
Badge definitions and evaluation.

Each badge is a pure predicate over ``(record, level)``. The catalogue is a
fixed tuple; nothing registers badges at runtime.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Optional

from levels import level_for_xp
from progress import StudentProgressRecord

RARITIES = ("common", "uncommon", "rare", "epic", "legendary")

RARITY_COLORS = {
    "common": {"bg": "#3a3a4a", "border": "#555", "label": "Common"},
    "uncommon": {"bg": "#1a3a2a", "border": "#2ecc71", "label": "Uncommon"},
    "rare": {"bg": "#1a2a4a", "border": "#3498db", "label": "Rare"},
    "epic": {"bg": "#2a1a4a", "border": "#9b59b6", "label": "Epic"},
    "legendary": {"bg": "#3a2a1a", "border": "#f39c12", "label": "Legendary"},
}


@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    description: str
    icon: str
    rarity: str
    evaluate: Callable[[StudentProgressRecord, int], bool]
    hidden: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "rarity": self.rarity,
            "hidden": self.hidden,
        }


BADGES: tuple[Badge, ...] = (
    Badge("first_lesson", "First Steps", "Complete your first lesson", "📘", "common",
          lambda r, lvl: r.lessons_completed >= 1),
    Badge("five_lessons", "Bookworm", "Complete 5 lessons", "📚", "common",
          lambda r, lvl: r.lessons_completed >= 5),
    Badge("ten_lessons", "Scholar", "Complete 10 lessons", "🎓", "uncommon",
          lambda r, lvl: r.lessons_completed >= 10),
    Badge("perfect_score", "Perfectionist", "Get 100% on any lesson", "💯", "uncommon",
          lambda r, lvl: r.has_perfect_lesson is True),
    Badge("three_streak", "On Fire", "Reach a 3-day streak", "🔥", "common",
          lambda r, lvl: r.current_streak >= 3),
    Badge("seven_streak", "Unstoppable", "Reach a 7-day streak", "⚡", "uncommon",
          lambda r, lvl: r.current_streak >= 7),
    Badge("thirty_streak", "Streak Royalty", "Reach a 30-day streak", "👑", "legendary",
          lambda r, lvl: r.current_streak >= 30),
    Badge("fifty_questions", "Quiz Machine", "Answer 50 questions", "✅", "common",
          lambda r, lvl: r.total_answered >= 50),
    Badge("hundred_questions", "Centurion", "Answer 100 questions", "🏆", "uncommon",
          lambda r, lvl: r.total_answered >= 100),
    Badge("five_hundred_questions", "Panther Power", "Answer 500 questions", "🐾", "rare",
          lambda r, lvl: r.total_answered >= 500),
    Badge("level_five", "Rising Star", "Reach Level 5", "⬆️", "uncommon",
          lambda r, lvl: lvl >= 5),
    Badge("level_ten", "Journeyman", "Reach Level 10", "🌿", "rare",
          lambda r, lvl: lvl >= 10),
    Badge("level_twenty", "Veteran", "Reach Level 20", "🔮", "epic",
          lambda r, lvl: lvl >= 20),
    Badge("level_thirty_five", "Panther Elite", "Reach Level 35, the pinnacle", "👑", "legendary",
          lambda r, lvl: lvl >= 35),
    # Hidden
    Badge("night_owl", "Night Owl", "Complete a lesson after 9 PM", "🦉", "rare",
          lambda r, lvl: r.has_night_owl is True, hidden=True),
    Badge("early_bird", "Early Bird", "Complete a lesson before 7 AM", "🐦", "rare",
          lambda r, lvl: r.has_early_bird is True, hidden=True),
    Badge("speed_demon", "Speed Demon", "Answer 10 questions correctly in under 2 minutes", "⚡", "epic",
          lambda r, lvl: r.has_speed_demon is True, hidden=True),
)

BADGES_BY_ID = {b.id: b for b in BADGES}


def evaluate_badges(record: StudentProgressRecord, level: Optional[int] = None) -> list[str]:
    """Ids of every badge whose predicate holds for ``record``, in catalogue order."""
    if level is None:
        level = level_for_xp(record.total_xp)
    return [b.id for b in BADGES if b.evaluate(record, level)]


def visible_badges(badge_ids: Iterable[str], include_hidden: bool = False) -> list[Badge]:
    """Badge definitions for display. Hidden badges are dropped unless asked for."""
    result = []
    for badge_id in badge_ids:
        badge = BADGES_BY_ID.get(badge_id)
        if badge is None:
            continue
        if badge.hidden and not include_hidden:
            continue
        result.append(badge)
    return result
