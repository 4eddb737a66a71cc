"""
Perk catalog — level-gated classroom privileges.

Passive perks are always on once unlocked. Consumable perks carry a
per-semester allowance that is spent through the redemption workflow
(redemptions.py). Each course may replace the default catalog with its own;
the catalog document is last-writer-wins and lives apart from the usage
counters on student records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Optional, Union

from audit import log_event
from db_stores import CourseSettingsDB
from errors import NotFoundError, ValidationError
from levels import MAX_LEVEL

logger = logging.getLogger(__name__)

PERK_TYPES = ("passive", "consumable")
PERKS_DOC = "perks"


@dataclass(frozen=True)
class Perk:
    id: str
    unlock_level: int
    type: str = "passive"
    uses_per_semester: Optional[int] = None  # None = unlimited
    enabled: bool = True
    name: str = ""
    description: str = ""
    icon: str = ""
    tier: int = 0
    category: str = ""

    @property
    def is_consumable(self) -> bool:
        return self.type == "consumable"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "unlockLevel": self.unlock_level,
            "tier": self.tier,
            "icon": self.icon,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "usesPerSemester": self.uses_per_semester,
            "category": self.category,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Perk:
        """Build a Perk from a stored document (camelCase) or keyword-style dict (snake_case)."""
        def pick(camel: str, snake: str, default=None):
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        try:
            return cls(
                id=str(data["id"]),
                unlock_level=int(pick("unlockLevel", "unlock_level", 1)),
                type=pick("type", "type", "passive"),
                uses_per_semester=pick("usesPerSemester", "uses_per_semester"),
                enabled=pick("enabled", "enabled", True) is not False,
                name=pick("name", "name", ""),
                description=pick("description", "description", ""),
                icon=pick("icon", "icon", ""),
                tier=int(pick("tier", "tier", 0) or 0),
                category=pick("category", "category", ""),
            )
        except KeyError as e:
            raise ValidationError("perk is missing an id") from e
        except (TypeError, ValueError) as e:
            raise ValidationError(f"malformed perk {data.get('id')!r}: {e}") from e


DEFAULT_PERKS: tuple[Perk, ...] = (
    Perk("seating_choice", 5, "passive", None, tier=1, icon="💺", name="Seating Choice",
         description="Choose your seat for the week", category="comfort"),
    Perk("background_music", 10, "passive", None, tier=2, icon="🎵", name="DJ Privileges",
         description="Pick background music during independent work", category="comfort"),
    Perk("early_dismissal", 15, "consumable", 1, tier=3, icon="🚪", name="Early Dismissal Pass",
         description="Leave class 2 minutes early", category="privilege"),
    Perk("design_question", 20, "consumable", 2, tier=4, icon="✏️", name="Question Designer",
         description="Design a quiz question for the class", category="academic"),
    Perk("homework_pass", 25, "consumable", 1, tier=5, icon="🎟️", name="Homework Pass",
         description="Skip one homework assignment", category="academic"),
    Perk("bonus_xp_aura", 30, "consumable", 2, tier=6, icon="✨", name="XP Aura",
         description="Earn 10% bonus XP on all activities for a week", category="progression"),
    Perk("mentor_status", 35, "passive", None, tier=7, icon="👑", name="Mentor Status",
         description="Help design next unit's activities & earn bonus XP for helping peers",
         category="leadership"),
)

PerkLike = Union[Perk, Mapping[str, Any]]

_CAMEL_KEYS = {"unlock_level": "unlockLevel", "uses_per_semester": "usesPerSemester"}


# ── Catalog validation & queries ─────────────────────────────────────


def _coerce(perk: PerkLike) -> Perk:
    return perk if isinstance(perk, Perk) else Perk.from_dict(perk)


def validate_catalog(perks: Iterable[PerkLike]) -> list[Perk]:
    """Normalise and check a perk list. Raises ValidationError on the first problem."""
    catalog = [_coerce(p) for p in perks]
    seen: set[str] = set()
    for perk in catalog:
        if not perk.id:
            raise ValidationError("perk id must be non-empty")
        if perk.id in seen:
            raise ValidationError(f"duplicate perk id {perk.id!r}")
        seen.add(perk.id)
        if perk.type not in PERK_TYPES:
            raise ValidationError(f"perk {perk.id!r} has unknown type {perk.type!r}")
        if not 1 <= perk.unlock_level <= MAX_LEVEL:
            raise ValidationError(f"perk {perk.id!r} unlock level must be within 1..{MAX_LEVEL}")
        if perk.uses_per_semester is not None:
            if isinstance(perk.uses_per_semester, bool) or not isinstance(perk.uses_per_semester, int):
                raise ValidationError(f"perk {perk.id!r} uses per semester must be an integer")
            if perk.uses_per_semester < 0:
                raise ValidationError(f"perk {perk.id!r} uses per semester must be non-negative")
    return catalog


def _catalog_or_default(catalog: Optional[Iterable[PerkLike]]) -> list[Perk]:
    if catalog is None:
        return list(DEFAULT_PERKS)
    return [_coerce(p) for p in catalog]


def find_perk(perk_id: str, catalog: Optional[Iterable[PerkLike]] = None) -> Optional[Perk]:
    for perk in _catalog_or_default(catalog):
        if perk.id == perk_id:
            return perk
    return None


def get_unlocked_perks(level: int, catalog: Optional[Iterable[PerkLike]] = None) -> list[Perk]:
    """Enabled perks whose unlock level is at or below ``level``."""
    return [p for p in _catalog_or_default(catalog) if p.enabled and level >= p.unlock_level]


def get_next_perk(level: int, catalog: Optional[Iterable[PerkLike]] = None) -> Optional[Perk]:
    """The enabled perk with the lowest unlock level above ``level``, or None."""
    upcoming = [p for p in _catalog_or_default(catalog) if p.enabled and level < p.unlock_level]
    if not upcoming:
        return None
    return min(upcoming, key=lambda p: p.unlock_level)


def can_use_perk(
    perk_id: str,
    usage: Optional[Mapping[str, int]] = None,
    catalog: Optional[Iterable[PerkLike]] = None,
) -> bool:
    """True if the perk is an enabled consumable with allowance left.

    Passive perks are never "used", so they always return False here. A
    consumable without a per-semester allowance can be used without limit.
    """
    perk = find_perk(perk_id, catalog)
    if perk is None or not perk.enabled or not perk.is_consumable:
        return False
    if perk.uses_per_semester is None:
        return True
    used = (usage or {}).get(perk_id, 0)
    return used < perk.uses_per_semester


# ── Course catalog persistence ───────────────────────────────────────


def load_course_perks(course_id: str) -> list[Perk]:
    """The course's saved catalog, or the defaults when none was saved."""
    doc = CourseSettingsDB(course_id).get(PERKS_DOC)
    if not doc or doc.get("perks") is None:
        return list(DEFAULT_PERKS)
    return [Perk.from_dict(p) for p in doc["perks"]]


def save_course_perks(course_id: str, perks: Iterable[PerkLike], actor: Optional[str] = None) -> list[Perk]:
    """Validate and replace the course's whole catalog."""
    if not course_id:
        raise ValidationError("course_id is required")
    catalog = validate_catalog(perks)
    CourseSettingsDB(course_id).put(PERKS_DOC, {"perks": [p.to_dict() for p in catalog]})
    logger.info("Saved perk catalog (%d perks)", len(catalog), extra={"course_id": course_id})
    log_event("perks.save", actor=actor, course_id=course_id, detail=f"{len(catalog)} perks")
    return catalog


def add_course_perk(course_id: str, perk: PerkLike, actor: Optional[str] = None) -> list[Perk]:
    new_perk = _coerce(perk)
    catalog = load_course_perks(course_id)
    if any(p.id == new_perk.id for p in catalog):
        raise ValidationError(f"perk {new_perk.id!r} already exists")
    return save_course_perks(course_id, catalog + [new_perk], actor=actor)


def update_course_perk(course_id: str, perk_id: str, changes: Mapping[str, Any],
                       actor: Optional[str] = None) -> list[Perk]:
    """Apply field changes (snake_case or camelCase keys) to one perk."""
    catalog = load_course_perks(course_id)
    for idx, perk in enumerate(catalog):
        if perk.id == perk_id:
            merged = perk.to_dict()
            for key, value in changes.items():
                merged[_CAMEL_KEYS.get(key, key)] = value
            merged["id"] = perk_id
            catalog[idx] = Perk.from_dict(merged)
            break
    else:
        raise NotFoundError(f"perk {perk_id!r} not found in course {course_id!r}")
    return save_course_perks(course_id, catalog, actor=actor)


def remove_course_perk(course_id: str, perk_id: str, actor: Optional[str] = None) -> list[Perk]:
    catalog = load_course_perks(course_id)
    remaining = [p for p in catalog if p.id != perk_id]
    if len(remaining) == len(catalog):
        raise NotFoundError(f"perk {perk_id!r} not found in course {course_id!r}")
    return save_course_perks(course_id, remaining, actor=actor)

