"""
Business-day streak calculation.

Weekends (Sat/Sun) never count toward a streak and never break one. A streak
is the run of consecutive weekdays with activity, anchored at "today" (or the
last weekday when today falls on a weekend) with a one-weekday grace window.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Optional, Union

ActivityInstant = Union[date, datetime, str]


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def previous_weekday(day: date) -> date:
    """The closest Mon–Fri strictly before ``day``."""
    prev = day - timedelta(days=1)
    while is_weekend(prev):
        prev -= timedelta(days=1)
    return prev


def reference_day(now: datetime | date) -> date:
    """Today, or the previous weekday if today is Saturday/Sunday."""
    today = now.date() if isinstance(now, datetime) else now
    while is_weekend(today):
        today -= timedelta(days=1)
    return today


def to_calendar_date(value: ActivityInstant) -> Optional[date]:
    """Normalise an activity instant to a calendar date, or None if unparseable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return None
    return None


def business_days(activity: Iterable[ActivityInstant]) -> list[date]:
    """Distinct weekday activity dates, newest first."""
    days = {d for d in (to_calendar_date(a) for a in activity or ()) if d is not None}
    return sorted((d for d in days if not is_weekend(d)), reverse=True)


def calculate_streak(activity: Iterable[ActivityInstant], now: datetime | date) -> int:
    """Count consecutive business days of activity ending at the reference day.

    The streak is alive if the most recent weekday activity is the reference
    day or the weekday just before it; a gap of two or more weekdays resets
    it to 0.
    """
    days = business_days(activity)
    if not days:
        return 0

    today = reference_day(now)
    if days[0] != today and days[0] != previous_weekday(today):
        return 0

    streak = 1
    for newer, older in zip(days, days[1:]):
        if older != previous_weekday(newer):
            break
        streak += 1
    return streak
