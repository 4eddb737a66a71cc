"""
Record types and gamification defaults.

One progress record per student (optionally per course). The record is persisted as a
JSON document whose keys follow the camelCase layout the web client reads
(``totalXP``, ``activityDates`` ...); in Python it is a plain dataclass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

MAX_STREAK_FREEZES = 3
FREEZE_MILESTONE_DAYS = 7

# ── Default XP values (used when no course-specific config exists) ──

DEFAULT_XP_VALUES = {
    "mc_correct": 20,
    "mc_incorrect": 5,
    "short_answer": 15,
    "chat_message": 5,
    "lesson_complete": 50,
    "perfect_lesson": 100,
    "streak_bonus": 25,
}

DEFAULT_BEHAVIOR_REWARDS = [
    {"id": "participation", "label": "Brave Participation", "xp": 10, "icon": "🙋"},
    {"id": "helping_peer", "label": "Helped a Peer", "xp": 15, "icon": "🤝"},
    {"id": "great_question", "label": "Great Question", "xp": 10, "icon": "💡"},
    {"id": "teamwork", "label": "Outstanding Teamwork", "xp": 15, "icon": "⭐"},
    {"id": "on_task", "label": "Stayed On Task", "xp": 5, "icon": "🎯"},
]

DEFAULT_MULTIPLIER_CONFIG = {
    "streakMultipliers": {
        5: 1.25,
        10: 1.5,
        20: 1.75,
        30: 2.0,
    },
    "qualityMultipliers": {
        "satisfactory": 1.0,
        "proficient": 1.25,
        "exemplary": 1.5,
    },
}


# ── Student progress record ───────────────────────────────────────

# python attribute -> document key
_DOC_KEYS = {
    "total_xp": "totalXP",
    "activity_dates": "activityDates",
    "current_streak": "currentStreak",
    "longest_streak": "longestStreak",
    "streak_freezes": "streakFreezes",
    "badges": "badges",
    "perk_usage": "perkUsage",
    "lessons_completed": "lessonsCompleted",
    "total_answered": "totalAnswered",
    "total_correct": "totalCorrect",
    "has_perfect_lesson": "hasPerfectLesson",
    "has_night_owl": "hasNightOwl",
    "has_early_bird": "hasEarlyBird",
    "has_speed_demon": "hasSpeedDemon",
    "last_xp_source": "lastXPSource",
    "last_xp_amount": "lastXPAmount",
    "last_xp_at": "lastXPAt",
    "last_updated": "lastUpdated",
}
_ATTR_BY_DOC_KEY = {v: k for k, v in _DOC_KEYS.items()}

COUNTER_FIELDS = ("lessons_completed", "total_answered", "total_correct")
FLAG_FIELDS = ("has_perfect_lesson", "has_night_owl", "has_early_bird", "has_speed_demon")


@dataclass
class StudentProgressRecord:
    student_id: str
    course_id: Optional[str] = None
    total_xp: int = 0
    activity_dates: list[str] = field(default_factory=list)  # ISO dates, one per day
    current_streak: int = 0
    longest_streak: int = 0
    streak_freezes: int = 0
    badges: list[str] = field(default_factory=list)
    perk_usage: dict[str, int] = field(default_factory=dict)
    lessons_completed: int = 0
    total_answered: int = 0
    total_correct: int = 0
    has_perfect_lesson: bool = False
    has_night_owl: bool = False
    has_early_bird: bool = False
    has_speed_demon: bool = False
    last_xp_source: str = ""
    last_xp_amount: int = 0
    last_xp_at: str = ""
    last_updated: str = ""
    version: int = 0  # storage CAS token, 0 = never written
    extra: dict[str, Any] = field(default_factory=dict)  # unknown document keys, kept on write

    def record_activity(self, day_iso: str) -> bool:
        """Add ``day_iso`` to the activity dates. Returns True if it was new."""
        if day_iso in self.activity_dates:
            return False
        self.activity_dates.append(day_iso)
        return True

    def to_document(self) -> dict[str, Any]:
        doc = dict(self.extra)
        for attr, key in _DOC_KEYS.items():
            value = getattr(self, attr)
            if isinstance(value, (list, dict)):
                value = type(value)(value)
            doc[key] = value
        return doc

    @classmethod
    def from_document(
        cls,
        student_id: str,
        course_id: Optional[str],
        doc: Optional[dict[str, Any]],
        version: int = 0,
    ) -> StudentProgressRecord:
        record = cls(student_id=student_id, course_id=course_id, version=version)
        for key, value in (doc or {}).items():
            attr = _ATTR_BY_DOC_KEY.get(key)
            if attr is None:
                record.extra[key] = value
            elif value is not None:
                setattr(record, attr, value)
        # older documents may carry duplicate days
        record.activity_dates = list(dict.fromkeys(record.activity_dates))
        return record


def normalise_update_key(key: str) -> Optional[str]:
    """Map a snake_case or camelCase field name to a record attribute, or None."""
    if key in _DOC_KEYS:
        return key
    return _ATTR_BY_DOC_KEY.get(key)


# ── Perk redemption request ───────────────────────────────────────

PERK_REQUEST_STATUSES = ("pending", "approved", "denied")


@dataclass
class PerkRequest:
    """A student's request to redeem a perk. ``pending`` moves to exactly one terminal state."""

    id: str
    course_id: str
    student_id: str
    perk_id: str
    student_name: str = ""
    status: str = "pending"
    requested_at: str = ""
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.status != "pending"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "courseId": self.course_id,
            "studentUid": self.student_id,
            "studentName": self.student_name,
            "perkId": self.perk_id,
            "status": self.status,
            "requestedAt": self.requested_at,
            "resolvedAt": self.resolved_at,
            "resolvedBy": self.resolved_by,
        }
