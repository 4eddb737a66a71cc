"""Tests for multipliers.py — XP config, streak tiers, timed events."""

from datetime import datetime, timedelta

import pytest

from audit import recent_events
from errors import ValidationError
from levels import LEVELS
from multipliers import (
    MultiplierEvent,
    XPConfig,
    calculate_effective_xp,
    clear_active_multiplier,
    get_active_multiplier,
    load_xp_config,
    resolve_active_multiplier,
    save_xp_config,
    set_active_multiplier,
    streak_multiplier,
)
from progress import DEFAULT_MULTIPLIER_CONFIG, DEFAULT_XP_VALUES


class TestStreakMultiplier:
    @pytest.mark.parametrize("streak,expected", [
        (0, 1.0), (4, 1.0), (5, 1.25), (9, 1.25), (10, 1.5), (29, 1.75), (30, 2.0), (365, 2.0),
    ])
    def test_default_tiers(self, streak, expected):
        assert streak_multiplier(streak, DEFAULT_MULTIPLIER_CONFIG) == expected

    def test_string_keys(self):
        config = {"streakMultipliers": {"3": 1.1, "12": 3}}
        assert streak_multiplier(12, config) == 3.0
        assert streak_multiplier(11, config) == 1.1

    def test_missing_table(self):
        assert streak_multiplier(50, None) == 1.0
        assert streak_multiplier(50, {}) == 1.0


class TestEffectiveXP:
    def test_defaults(self):
        assert calculate_effective_xp(20, None) == 20
        assert calculate_effective_xp(20, None, current_streak=10) == 30

    def test_live_event_stacks_with_streak(self, now):
        event = MultiplierEvent(2.0, "2x XP", now, now + timedelta(hours=1))
        config = XPConfig(active_multiplier=event)
        assert calculate_effective_xp(10, config, 5, now=now) == 25
        assert calculate_effective_xp(10, config, 5, now=now + timedelta(hours=2)) == 13

    def test_accepts_document(self):
        doc = {"multiplierConfig": {"streakMultipliers": {"1": 1.5}}}
        assert calculate_effective_xp(3, doc, current_streak=1) == 5


class TestMultiplierEvent:
    def test_expiry_boundary_inclusive(self, now):
        event = MultiplierEvent(3.0, "3x", now, now + timedelta(minutes=60))
        assert event.is_live(now + timedelta(minutes=60))
        assert not event.is_live(now + timedelta(minutes=60, seconds=1))

    def test_naive_now_is_utc(self, now):
        event = MultiplierEvent(3.0, "3x", now, now + timedelta(minutes=60))
        assert event.is_live(datetime(2026, 3, 18, 15, 30))

    def test_remaining_never_negative(self, now):
        event = MultiplierEvent(3.0, "3x", now, now + timedelta(minutes=10))
        assert event.remaining(now + timedelta(minutes=4)) == timedelta(minutes=6)
        assert event.remaining(now + timedelta(hours=1)) == timedelta(0)

    @pytest.mark.parametrize("doc", [
        {"value": 2},
        {"value": 0, "expiresAt": "2026-03-18T16:00:00+00:00"},
        {"value": "2", "expiresAt": "2026-03-18T16:00:00+00:00"},
        {"value": 2, "expiresAt": "tomorrow"},
    ])
    def test_malformed_documents_ignored(self, doc):
        assert MultiplierEvent.from_dict(doc) is None

    def test_round_trip_through_document(self, now):
        event = MultiplierEvent(1.5, "Lab day", now, now + timedelta(minutes=45))
        assert MultiplierEvent.from_dict(event.to_dict()) == event


class TestXPConfigPersistence:
    def test_defaults_without_course(self, app):
        with app.app_context():
            config = load_xp_config(None)
            assert config.xp_values == DEFAULT_XP_VALUES
            assert config.active_multiplier is None
            assert config.level_thresholds == [lvl.xp_required for lvl in LEVELS]

    def test_save_merges_sections(self, app, course_id):
        with app.app_context():
            save_xp_config(course_id, {"xpValues": {"mc_correct": 7}}, actor="t1")
            save_xp_config(course_id, {"behaviorRewards": [{"id": "tidy", "label": "Tidy", "xp": 4}]})
            config = load_xp_config(course_id)
            assert config.xp_values == {"mc_correct": 7}
            assert config.behavior_reward("tidy")["xp"] == 4
            assert config.behavior_reward("participation") is None
            assert recent_events(course_id)[1]["action"] == "xp_config.save"

    def test_streak_thresholds_stored_as_strings(self, app, course_id):
        with app.app_context():
            config = save_xp_config(course_id, {"multiplierConfig": {"streakMultipliers": {3: 1.2}}})
            assert config.multiplier_config["streakMultipliers"] == {"3": 1.2}
            assert streak_multiplier(3, load_xp_config(course_id).multiplier_config) == 1.2

    def test_read_only_keys_ignored(self, app, course_id, now):
        with app.app_context():
            set_active_multiplier(course_id, 2, 30, now=now)
            save_xp_config(course_id, {"levelThresholds": [0, 1], "activeMultiplier": None,
                                       "xpValues": {"mc_correct": 9}})
            config = load_xp_config(course_id)
            assert config.active_multiplier is not None
            assert config.level_thresholds[1] == 141

    def test_save_full_config_object(self, app, course_id):
        with app.app_context():
            config = XPConfig()
            config.xp_values["mc_correct"] = 30
            saved = save_xp_config(course_id, config)
            assert saved.xp_values["mc_correct"] == 30

    @pytest.mark.parametrize("updates", [
        {"bonusPoints": 5},
        {"xpValues": {"mc_correct": -1}},
        {"xpValues": [1, 2]},
        {"behaviorRewards": [{"id": "a", "xp": 1}, {"id": "a", "xp": 2}]},
        {"behaviorRewards": [{"label": "no id", "xp": 1}]},
        {"multiplierConfig": {"streakMultipliers": {"five": 2}}},
        {"multiplierConfig": {"streakMultipliers": {"5": 0}}},
    ])
    def test_rejects(self, app, course_id, updates):
        with app.app_context():
            with pytest.raises(ValidationError):
                save_xp_config(course_id, updates)

    def test_save_requires_course(self, app):
        with app.app_context():
            with pytest.raises(ValidationError):
                save_xp_config("", {"xpValues": {}})


class TestEventController:
    def test_set_and_get(self, app, course_id, now):
        with app.app_context():
            event = set_active_multiplier(course_id, 3, 60, now=now, actor="t1")
            assert event.label == "3x XP"
            assert event.expires_at == now + timedelta(minutes=60)
            live = get_active_multiplier(course_id, now=now + timedelta(minutes=30))
            assert live == event
            assert recent_events(course_id)[0]["action"] == "multiplier.set"

    def test_expires_without_clearing(self, app, course_id, now):
        with app.app_context():
            set_active_multiplier(course_id, 3, 60, now=now)
            later = now + timedelta(minutes=61)
            assert get_active_multiplier(course_id, now=later) is None
            assert resolve_active_multiplier(course_id, now=later) == 1.0
            # still stored until replaced or cleared
            assert load_xp_config(course_id).active_multiplier is not None

    def test_new_event_replaces_old(self, app, course_id, now):
        with app.app_context():
            set_active_multiplier(course_id, 3, 60, now=now)
            set_active_multiplier(course_id, 1.5, 10, "Quiz rush", now=now)
            assert resolve_active_multiplier(course_id, now=now) == 1.5
            assert get_active_multiplier(course_id, now=now).label == "Quiz rush"

    def test_clear(self, app, course_id, now):
        with app.app_context():
            set_active_multiplier(course_id, 3, 60, now=now)
            clear_active_multiplier(course_id, actor="t1")
            assert get_active_multiplier(course_id, now=now) is None

    def test_event_does_not_touch_other_sections(self, app, course_id, now):
        with app.app_context():
            save_xp_config(course_id, {"xpValues": {"mc_correct": 7}})
            set_active_multiplier(course_id, 2, 5, now=now)
            assert load_xp_config(course_id).xp_values == {"mc_correct": 7}

    @pytest.mark.parametrize("multiplier,duration", [
        (0, 60), (-2, 60), (float("nan"), 60), (True, 60), (2, 0), (2, -5), (2, float("inf")),
        (2, 1e10),
    ])
    def test_rejects_bad_events(self, app, course_id, now, multiplier, duration):
        with app.app_context():
            with pytest.raises(ValidationError):
                set_active_multiplier(course_id, multiplier, duration, now=now)
            assert get_active_multiplier(course_id, now=now) is None

    def test_no_course_no_event(self, app, now):
        with app.app_context():
            assert get_active_multiplier(None, now=now) is None
            assert resolve_active_multiplier("", now=now) == 1.0
