"""
XP ledger — awards, progress reads, stat merges and the leaderboard.

Every write goes through ProgressStoreDB.update(), a read-mutate-write that
is replayed on version conflict, so concurrent awards to the same student
both land. Validation always happens before the store is touched.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

from flask import current_app

from badges import evaluate_badges
from db_stores import ProgressStoreDB
from errors import ValidationError
from levels import level_for_xp, get_level_info, round_half_up
from multipliers import load_xp_config, resolve_active_multiplier, streak_multiplier
from progress import (
    COUNTER_FIELDS,
    FLAG_FIELDS,
    FREEZE_MILESTONE_DAYS,
    MAX_STREAK_FREEZES,
    StudentProgressRecord,
    normalise_update_key,
)
from streaks import calculate_streak, to_calendar_date

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def activity_day(now: datetime | date) -> str:
    """The calendar day an award at ``now`` is filed under."""
    return (now.date() if isinstance(now, datetime) else now).isoformat()


def _refresh_streak(record: StudentProgressRecord, now: datetime) -> None:
    record.current_streak = calculate_streak(record.activity_dates, now)
    record.longest_streak = max(record.longest_streak, record.current_streak)


def _require_id(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return value


def _require_amount(value: Any, name: str = "base_amount") -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number")
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f"{name} must be finite")
    if value < 0:
        raise ValidationError(f"{name} must be non-negative")
    return value


# ── Awards ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AwardResult:
    new_total: int
    awarded: int
    multiplier: float
    current_streak: int
    streak_freezes: int
    level_up: Optional[int] = None  # new level when the award crossed a threshold


def award_xp(
    student_id: str,
    base_amount: float,
    source: str,
    course_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> AwardResult:
    """Grant XP to a student and record today's activity.

    The live multiplier event for ``course_id`` scales the award (1.0 when
    there is none). With APPLY_STREAK_MULTIPLIER_ON_AWARD set, the course's
    streak tier also applies, judged on the streak including today.
    """
    _require_id(student_id, "student_id")
    _require_amount(base_amount)
    _require_id(source, "source")
    now = now or _utcnow()
    today = activity_day(now)

    event_multiplier = resolve_active_multiplier(course_id, now=now)
    apply_streak = current_app.config.get("APPLY_STREAK_MULTIPLIER_ON_AWARD", False)
    multiplier_config = load_xp_config(course_id).multiplier_config if apply_streak else None

    def mutate(record: StudentProgressRecord) -> tuple[float, int, Optional[int]]:
        old_level = level_for_xp(record.total_xp)
        new_day = record.record_activity(today)
        _refresh_streak(record, now)

        multiplier = event_multiplier
        if apply_streak:
            multiplier *= streak_multiplier(record.current_streak, multiplier_config)
        awarded = round_half_up(base_amount * multiplier)

        record.total_xp = int(record.total_xp) + awarded
        if (new_day and record.current_streak > 0
                and record.current_streak % FREEZE_MILESTONE_DAYS == 0
                and record.streak_freezes < MAX_STREAK_FREEZES):
            record.streak_freezes = min(record.streak_freezes + 1, MAX_STREAK_FREEZES)
        record.last_xp_source = source
        record.last_xp_amount = awarded
        record.last_xp_at = now.isoformat()
        record.last_updated = now.isoformat()

        new_level = level_for_xp(record.total_xp)
        return multiplier, awarded, new_level if new_level > old_level else None

    record, (multiplier, awarded, level_up) = ProgressStoreDB(student_id, course_id).update(mutate)
    logger.info(
        "Awarded %d XP (%s, base=%s, x%g) -> total %d",
        awarded, source, base_amount, multiplier, record.total_xp,
        extra={"student_id": student_id, "course_id": course_id},
    )
    if level_up:
        logger.info("Level up to %d", level_up, extra={"student_id": student_id, "course_id": course_id})
    return AwardResult(
        new_total=record.total_xp,
        awarded=awarded,
        multiplier=multiplier,
        current_streak=record.current_streak,
        streak_freezes=record.streak_freezes,
        level_up=level_up,
    )


def award_action_xp(
    student_id: str,
    action: str,
    course_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> AwardResult:
    """Award the configured XP for an action key such as ``mc_correct``."""
    config = load_xp_config(course_id)
    if action not in config.xp_values:
        raise ValidationError(f"unknown XP action {action!r}")
    return award_xp(student_id, config.xp_values[action], action, course_id, now=now)


def award_behavior_xp(
    student_id: str,
    reward_id: str,
    course_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> AwardResult:
    """Award a teacher behavior reward from the course roster (source ``behavior:<id>``)."""
    reward = load_xp_config(course_id).behavior_reward(reward_id)
    if reward is None:
        raise ValidationError(f"unknown behavior reward {reward_id!r}")
    return award_xp(student_id, reward.get("xp", 0), f"behavior:{reward_id}", course_id, now=now)


# ── Reads ────────────────────────────────────────────────────────────


def get_student_progress(
    student_id: str,
    course_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> StudentProgressRecord:
    """The student's record with streak fields evaluated at ``now``. Nothing is written."""
    _require_id(student_id, "student_id")
    record = ProgressStoreDB(student_id, course_id).get()
    _refresh_streak(record, now or _utcnow())
    return record


@dataclass(frozen=True)
class LeaderboardEntry:
    student_id: str
    total_xp: int
    level: int
    tier_name: str
    current_streak: int
    badges: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.student_id,
            "totalXP": self.total_xp,
            "level": self.level,
            "tierName": self.tier_name,
            "currentStreak": self.current_streak,
            "badges": list(self.badges),
        }


def get_leaderboard(
    course_id: Optional[str] = None,
    limit: int = 50,
    exclude: Iterable[str] = (),
    *,
    now: Optional[datetime] = None,
) -> list[LeaderboardEntry]:
    """Students ranked by total XP, highest first. ``exclude`` drops ids (e.g. teachers)."""
    if limit < 0:
        raise ValidationError("limit must be non-negative")
    now = now or _utcnow()
    skip = set(exclude)
    entries = []
    for record in ProgressStoreDB.list_for_course(course_id):
        if record.student_id in skip:
            continue
        info = get_level_info(record.total_xp)
        entries.append(LeaderboardEntry(
            student_id=record.student_id,
            total_xp=int(record.total_xp),
            level=info.level,
            tier_name=info.tier_name,
            current_streak=calculate_streak(record.activity_dates, now),
            badges=tuple(record.badges),
        ))
    entries.sort(key=lambda e: (-e.total_xp, e.student_id))
    return entries[:limit]


# ── Stat merges & badges ─────────────────────────────────────────────


@dataclass
class GamificationUpdate:
    record: StudentProgressRecord
    badges: list[str] = field(default_factory=list)  # earned by the merged record
    new_badges: list[str] = field(default_factory=list)  # earned now, absent before


# Derived or written only by award_xp.
_READ_ONLY_FIELDS = frozenset({
    "current_streak", "longest_streak", "last_xp_source", "last_xp_amount", "last_xp_at", "last_updated",
})


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _validate_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    clean: dict[str, Any] = {}
    for key, value in updates.items():
        attr = normalise_update_key(key)
        if attr is None:
            raise ValidationError(f"unknown progress field {key!r}")
        if attr in _READ_ONLY_FIELDS:
            raise ValidationError(f"{key!r} cannot be set directly")

        if attr in COUNTER_FIELDS or attr == "total_xp":
            if not _is_count(value):
                raise ValidationError(f"{key!r} must be a non-negative integer")
        elif attr == "streak_freezes":
            if not _is_count(value) or value > MAX_STREAK_FREEZES:
                raise ValidationError(f"{key!r} must be between 0 and {MAX_STREAK_FREEZES}")
        elif attr in FLAG_FIELDS:
            if not isinstance(value, bool):
                raise ValidationError(f"{key!r} must be a boolean")
        elif attr == "activity_dates":
            days = []
            for item in value or ():
                day = to_calendar_date(item)
                if day is None:
                    raise ValidationError(f"unparseable activity date {item!r}")
                days.append(day.isoformat())
            value = days
        elif attr == "badges":
            if isinstance(value, str) or not all(isinstance(b, str) for b in value):
                raise ValidationError("badges must be a list of badge ids")
            value = list(value)
        elif attr == "perk_usage":
            if not isinstance(value, Mapping) or not all(_is_count(v) for v in value.values()):
                raise ValidationError("perk_usage counts must be non-negative integers")
            value = dict(value)
        clean[attr] = value
    return clean


def update_student_gamification(
    student_id: str,
    updates: Mapping[str, Any],
    course_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> GamificationUpdate:
    """Merge stat updates into the student's record and evaluate badges.

    Counters and flags are overwritten; activity dates, badges and perk usage
    are merged into what is stored. Stored badges only ever grow.
    """
    _require_id(student_id, "student_id")
    clean = _validate_updates(updates)
    now = now or _utcnow()

    def mutate(record: StudentProgressRecord) -> tuple[list[str], list[str]]:
        if "total_xp" in clean and clean["total_xp"] < record.total_xp:
            raise ValidationError("total_xp cannot decrease")
        prior = set(record.badges)
        for attr, value in clean.items():
            if attr == "activity_dates":
                for day in value:
                    record.record_activity(day)
            elif attr == "badges":
                record.badges = list(dict.fromkeys(record.badges + value))
            elif attr == "perk_usage":
                record.perk_usage = {**record.perk_usage, **value}
            else:
                setattr(record, attr, value)
        _refresh_streak(record, now)

        earned = evaluate_badges(record)
        new = [b for b in earned if b not in prior]
        record.badges = record.badges + [b for b in new if b not in record.badges]
        record.last_updated = now.isoformat()
        return earned, new

    record, (earned, new) = ProgressStoreDB(student_id, course_id).update(mutate)
    if new:
        logger.info("New badges: %s", ", ".join(new), extra={"student_id": student_id, "course_id": course_id})
    return GamificationUpdate(record=record, badges=earned, new_badges=new)
