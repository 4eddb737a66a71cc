"""Tests for levels.py — XP curve, level lookup, rank tiers."""

import math

import pytest

from levels import (
    LEVELS,
    MAX_LEVEL,
    RANK_TIERS,
    get_level_info,
    get_next_tier_milestone,
    get_rank_tier,
    level_for_xp,
    round_half_up,
    xp_required,
)


class TestXPCurve:
    def test_level_one_is_free(self):
        assert xp_required(1) == 0
        assert LEVELS[0].xp_required == 0

    def test_known_thresholds(self):
        assert xp_required(2) == 141
        assert xp_required(5) == 559
        assert xp_required(10) == 1581
        assert xp_required(35) == 10353

    def test_strictly_increasing(self):
        thresholds = [lvl.xp_required for lvl in LEVELS]
        assert len(thresholds) == MAX_LEVEL
        assert all(a < b for a, b in zip(thresholds, thresholds[1:]))

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4
        assert round_half_up(2.4999) == 2
        assert round_half_up(0) == 0

    def test_level_names_follow_tiers(self):
        assert LEVELS[0].name == "Novice 1"
        assert LEVELS[5].name == "Apprentice 1"
        assert LEVELS[34].name == "Panther Ascendant 1"
        assert LEVELS[33].tier_name == "Mythic"

    def test_to_dict_uses_document_keys(self):
        d = LEVELS[1].to_dict()
        assert d["xpRequired"] == 141
        assert d["tierName"] == "Novice"


class TestLevelInfo:
    def test_zero_xp(self):
        info = get_level_info(0)
        assert info.level == 1
        assert info.next.level == 2
        assert info.xp_in_level == 0
        assert info.xp_for_next == 141
        assert info.progress == 0

    def test_exact_threshold_belongs_to_that_level(self):
        assert level_for_xp(141) == 2
        assert level_for_xp(140) == 1
        assert level_for_xp(1581) == 10

    def test_progress_ratio(self):
        info = get_level_info(141 + 50)
        assert info.level == 2
        assert info.xp_in_level == 50
        assert info.progress == pytest.approx(50 / (xp_required(3) - 141))

    def test_max_level(self):
        info = get_level_info(10353)
        assert info.level == MAX_LEVEL
        assert info.next is None
        assert info.progress == 1.0
        assert get_level_info(10 ** 9).level == MAX_LEVEL

    @pytest.mark.parametrize("bad", [-5, float("nan"), None, "lots"])
    def test_invalid_totals_clamp_to_zero(self, bad):
        info = get_level_info(bad)
        assert info.level == 1
        assert info.xp_in_level == 0

    def test_infinity_is_max_level(self):
        assert get_level_info(math.inf).level == MAX_LEVEL

    def test_every_threshold_starts_its_level(self):
        for lvl in LEVELS:
            assert get_level_info(lvl.xp_required).current.level == lvl.level
            if lvl.xp_required > 0:
                assert get_level_info(lvl.xp_required - 1).current.level == lvl.level - 1

    def test_total_falls_inside_current_band(self):
        for total in range(0, LEVELS[-1].xp_required + 500, 7):
            info = get_level_info(total)
            assert info.current.xp_required <= total
            if info.next is not None:
                assert total < info.next.xp_required
                assert 0 <= info.progress < 1
            else:
                assert info.level == MAX_LEVEL


class TestRankTiers:
    def test_eight_tiers(self):
        assert len(RANK_TIERS) == 8
        assert [t.name for t in RANK_TIERS][-1] == "Panther Ascendant"

    def test_tier_boundaries(self):
        assert get_rank_tier(5).name == "Novice"
        assert get_rank_tier(6).name == "Apprentice"
        assert get_rank_tier(30).name == "Legend"
        assert get_rank_tier(31).name == "Mythic"
        assert get_rank_tier(34).name == "Mythic"
        assert get_rank_tier(35).name == "Panther Ascendant"

    def test_out_of_range_clamps(self):
        assert get_rank_tier(0).tier == 1
        assert get_rank_tier(99).tier == 8

    def test_next_milestone(self):
        m = get_next_tier_milestone(3)
        assert m.level == 6
        assert m.tier_name == "Apprentice"
        assert m.xp_required == xp_required(6)

    def test_no_milestone_past_last_tier(self):
        assert get_next_tier_milestone(35) is None
        assert get_next_tier_milestone(32).level == 35
