"""
XP multipliers — course XP config, streak tiers and teacher-triggered events.

A multiplier event ("Double XP for the next hour") is stored on the course's
xpConfig document. There is no scheduler: an event is live while
``now <= expires_at`` and simply stops applying afterwards.
"""

from __future__ import annotations

import copy
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from audit import log_event
from db_stores import CourseSettingsDB
from errors import ValidationError
from levels import LEVELS, round_half_up
from progress import DEFAULT_BEHAVIOR_REWARDS, DEFAULT_MULTIPLIER_CONFIG, DEFAULT_XP_VALUES

logger = logging.getLogger(__name__)

XP_CONFIG_DOC = "xpConfig"

# Keys save_xp_config accepts. levelThresholds is derived from the global
# level table and activeMultiplier is owned by set/clear_active_multiplier.
_WRITABLE_KEYS = ("xpValues", "behaviorRewards", "multiplierConfig")
_READ_ONLY_KEYS = ("levelThresholds", "activeMultiplier", "updatedAt")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _parse_instant(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


# ── Multiplier events ────────────────────────────────────────────────


@dataclass(frozen=True)
class MultiplierEvent:
    value: float
    label: str
    started_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return as_utc(now) <= self.expires_at

    def remaining(self, now: datetime) -> timedelta:
        return max(self.expires_at - as_utc(now), timedelta(0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "label": self.label,
            "startedAt": self.started_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional[MultiplierEvent]:
        """Parse a stored event. Malformed documents are treated as no event."""
        if not data:
            return None
        expires_at = _parse_instant(data.get("expiresAt"))
        value = data.get("value")
        if expires_at is None or not _is_number(value) or value <= 0:
            logger.warning("Ignoring malformed multiplier event: %r", data)
            return None
        started_at = _parse_instant(data.get("startedAt")) or expires_at
        return cls(
            value=float(value),
            label=data.get("label") or f"{value:g}x XP",
            started_at=started_at,
            expires_at=expires_at,
        )


# ── Course XP config ─────────────────────────────────────────────────


@dataclass
class XPConfig:
    xp_values: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_XP_VALUES))
    behavior_rewards: list[dict] = field(default_factory=lambda: copy.deepcopy(DEFAULT_BEHAVIOR_REWARDS))
    multiplier_config: dict = field(default_factory=lambda: copy.deepcopy(DEFAULT_MULTIPLIER_CONFIG))
    active_multiplier: Optional[MultiplierEvent] = None

    @property
    def level_thresholds(self) -> list[int]:
        return [lvl.xp_required for lvl in LEVELS]

    def behavior_reward(self, reward_id: str) -> Optional[dict]:
        for reward in self.behavior_rewards:
            if reward.get("id") == reward_id:
                return reward
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "xpValues": dict(self.xp_values),
            "behaviorRewards": copy.deepcopy(self.behavior_rewards),
            "multiplierConfig": copy.deepcopy(self.multiplier_config),
            "levelThresholds": self.level_thresholds,
            "activeMultiplier": self.active_multiplier.to_dict() if self.active_multiplier else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> XPConfig:
        """Stored document → config. Missing or empty sections fall back to the defaults."""
        data = data or {}
        config = cls()
        if data.get("xpValues"):
            config.xp_values = dict(data["xpValues"])
        if data.get("behaviorRewards"):
            config.behavior_rewards = list(data["behaviorRewards"])
        if data.get("multiplierConfig"):
            config.multiplier_config = dict(data["multiplierConfig"])
        config.active_multiplier = MultiplierEvent.from_dict(data.get("activeMultiplier"))
        return config


def _validate_config_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    clean: dict[str, Any] = {}
    for key, value in updates.items():
        if key in _READ_ONLY_KEYS:
            continue
        if key not in _WRITABLE_KEYS:
            raise ValidationError(f"unknown xpConfig key {key!r}")
        clean[key] = value

    xp_values = clean.get("xpValues")
    if xp_values is not None:
        if not isinstance(xp_values, Mapping):
            raise ValidationError("xpValues must be a mapping of action to XP")
        for action, amount in xp_values.items():
            if not _is_number(amount) or amount < 0:
                raise ValidationError(f"xpValues[{action!r}] must be a non-negative number")

    rewards = clean.get("behaviorRewards")
    if rewards is not None:
        if isinstance(rewards, (str, bytes, Mapping)):
            raise ValidationError("behaviorRewards must be a list")
        seen = set()
        for reward in rewards:
            if not isinstance(reward, Mapping) or not reward.get("id"):
                raise ValidationError("each behavior reward needs an id")
            if reward["id"] in seen:
                raise ValidationError(f"duplicate behavior reward {reward['id']!r}")
            seen.add(reward["id"])
            if not _is_number(reward.get("xp")) or reward["xp"] < 0:
                raise ValidationError(f"behavior reward {reward['id']!r} needs a non-negative xp")

    mult_config = clean.get("multiplierConfig")
    if mult_config is not None:
        if not isinstance(mult_config, Mapping):
            raise ValidationError("multiplierConfig must be a mapping")
        for threshold, factor in (mult_config.get("streakMultipliers") or {}).items():
            try:
                int(threshold)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"streak threshold {threshold!r} is not an integer") from e
            if not _is_number(factor) or factor <= 0:
                raise ValidationError(f"streak multiplier for {threshold!r} must be positive")
        # JSON object keys are strings; store them that way up front
        mult_config = dict(mult_config)
        if "streakMultipliers" in mult_config:
            mult_config["streakMultipliers"] = {
                str(int(k)): v for k, v in (mult_config["streakMultipliers"] or {}).items()
            }
        clean["multiplierConfig"] = mult_config
    return clean


def load_xp_config(course_id: Optional[str]) -> XPConfig:
    """The course's XP config, with defaults for anything never saved."""
    if not course_id:
        return XPConfig()
    return XPConfig.from_dict(CourseSettingsDB(course_id).get(XP_CONFIG_DOC))


def save_xp_config(course_id: str, updates: Union[Mapping[str, Any], XPConfig],
                   actor: Optional[str] = None) -> XPConfig:
    """Merge-write the given sections into the course's xpConfig document.

    ``levelThresholds`` and ``activeMultiplier`` are ignored here; the first is
    a view of the global level table and the second belongs to the event
    functions below.
    """
    if not course_id:
        raise ValidationError("course_id is required")
    if isinstance(updates, XPConfig):
        updates = updates.to_dict()
    clean = _validate_config_updates(updates)
    doc = CourseSettingsDB(course_id).merge(XP_CONFIG_DOC, clean)
    log_event("xp_config.save", actor=actor, course_id=course_id, detail=",".join(sorted(clean)))
    return XPConfig.from_dict(doc)


# ── Event controller ─────────────────────────────────────────────────


def set_active_multiplier(
    course_id: str,
    multiplier: float,
    duration_minutes: float,
    label: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    actor: Optional[str] = None,
) -> MultiplierEvent:
    """Start a multiplier event, replacing whatever event the course had."""
    if not course_id:
        raise ValidationError("course_id is required")
    if not _is_number(multiplier) or multiplier <= 0:
        raise ValidationError("multiplier must be a finite number greater than 0")
    if not _is_number(duration_minutes) or duration_minutes <= 0:
        raise ValidationError("duration_minutes must be a finite number greater than 0")

    started_at = as_utc(now or utcnow())
    try:
        expires_at = started_at + timedelta(minutes=duration_minutes)
    except OverflowError as e:
        raise ValidationError("duration_minutes is too large") from e
    event = MultiplierEvent(
        value=float(multiplier),
        label=label or f"{multiplier:g}x XP",
        started_at=started_at,
        expires_at=expires_at,
    )
    CourseSettingsDB(course_id).merge(XP_CONFIG_DOC, {"activeMultiplier": event.to_dict()})
    logger.info("Multiplier %s set until %s", event.label, event.expires_at.isoformat(),
                extra={"course_id": course_id})
    log_event("multiplier.set", actor=actor, course_id=course_id,
              detail=f"{event.value:g}x for {duration_minutes:g}m")
    return event


def clear_active_multiplier(course_id: str, *, actor: Optional[str] = None) -> None:
    if not course_id:
        raise ValidationError("course_id is required")
    CourseSettingsDB(course_id).merge(XP_CONFIG_DOC, {"activeMultiplier": None})
    log_event("multiplier.clear", actor=actor, course_id=course_id)


def get_active_multiplier(course_id: Optional[str], *, now: Optional[datetime] = None) -> Optional[MultiplierEvent]:
    """The course's event if it is still live at ``now``, else None."""
    if not course_id:
        return None
    event = load_xp_config(course_id).active_multiplier
    if event is None or not event.is_live(now or utcnow()):
        return None
    return event


def resolve_active_multiplier(course_id: Optional[str], *, now: Optional[datetime] = None) -> float:
    event = get_active_multiplier(course_id, now=now)
    return event.value if event else 1.0


def streak_multiplier(current_streak: int, multiplier_config: Optional[Mapping[str, Any]]) -> float:
    """Factor for the highest streak threshold reached. Thresholds never stack."""
    table = (multiplier_config or {}).get("streakMultipliers") or {}
    thresholds = sorted(((int(k), v) for k, v in table.items()), reverse=True)
    for threshold, factor in thresholds:
        if current_streak >= threshold:
            return float(factor)
    return 1.0


def calculate_effective_xp(
    base_xp: float,
    config: Union[XPConfig, Mapping[str, Any], None],
    current_streak: int = 0,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Preview the XP an award would grant: streak tier × live event, rounded half-up."""
    if config is None:
        config = XPConfig()
    elif not isinstance(config, XPConfig):
        config = XPConfig.from_dict(config)

    multiplier = streak_multiplier(current_streak, config.multiplier_config)
    event = config.active_multiplier
    if event is not None and event.is_live(now or utcnow()):
        multiplier *= event.value
    return round_half_up(base_xp * multiplier)
