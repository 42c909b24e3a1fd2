"""Unit tests for net scores, match points, stroke play points and bye points."""

from types import SimpleNamespace

import pytest

from golfleague.errors import ValidationError
from golfleague.golf_calc import (
    MATCH_POINT_POOL,
    StrokePlayEntry,
    calculate_bye_points,
    calculate_net_score,
    calculate_stroke_play_points,
    dnp_counts,
    generate_point_scale,
    resolve_point_scale,
    scores_tied,
    suggest_match_points,
    validate_match_points,
    weeks_played,
)
from golfleague.schemas import ScoringPolicy


class TestNetScore:

    def test_gross_minus_handicap(self):
        assert calculate_net_score(40, 5) == 35

    def test_negative_net_propagates(self):
        assert calculate_net_score(30, 40) == -10

    def test_rounded_to_one_decimal(self):
        assert calculate_net_score(40.25, 2) == pytest.approx(38.3)


class TestMatchPoints:

    @pytest.mark.parametrize("net_a,net_b,expected", [
        (38, 42, (15, 5)),
        (42, 38, (5, 15)),
        (40, 40, (10, 10)),
        (39, 40, (12, 8)),
        (30, 40, (16, 4)),
        (40.0, 40.02, (10, 10)),
    ])
    def test_suggested_split(self, net_a, net_b, expected):
        assert suggest_match_points(net_a, net_b) == expected

    @pytest.mark.parametrize("net_a,net_b", [(30, 45), (38.5, 39.0), (35, 36), (-2, 10)])
    def test_suggestion_always_sums_to_pool(self, net_a, net_b):
        a, b = suggest_match_points(net_a, net_b)
        assert a + b == MATCH_POINT_POOL

    def test_lower_net_wins(self):
        a, b = suggest_match_points(38.5, 39.0)
        assert a > b

    def test_non_finite_input_splits_evenly(self):
        assert suggest_match_points(float("nan"), 40) == (10, 10)

    def test_valid_submission(self):
        validate_match_points(14, 6)

    def test_submission_must_sum_to_twenty(self):
        with pytest.raises(ValidationError, match="add up to 20"):
            validate_match_points(12, 9)

    def test_negative_points_rejected(self):
        with pytest.raises(ValidationError, match="team_a_points"):
            validate_match_points(-1, 21)


class TestPointScale:

    def test_linear(self):
        assert generate_point_scale("linear", 4) == [4, 3, 2, 1]

    def test_weighted_extends_with_ones(self):
        assert generate_point_scale("weighted", 12) == [15, 12, 10, 8, 6, 5, 4, 3, 2, 1, 1, 1]

    def test_pga_style(self):
        assert generate_point_scale("pga_style", 3) == [25, 20, 16]

    def test_no_teams(self):
        assert generate_point_scale("linear", 0) == []

    def test_short_custom_scale_is_padded(self):
        policy = ScoringPolicy(point_scale=(10, 6))
        assert resolve_point_scale(policy, 4) == [10, 6, 0, 0]


class TestStrokePlayPoints:

    def entries(self, *nets):
        return [StrokePlayEntry(team_id=i + 1, net_score=n) for i, n in enumerate(nets)]

    def test_split_ties(self):
        results = calculate_stroke_play_points(
            self.entries(36, 38, 38, 40), [10, 8, 6, 4], ScoringPolicy(tie_mode="split"), 35
        )
        assert [r.position for r in results] == [1, 2, 2, 4]
        assert [r.points for r in results] == [10, 7, 7, 4]

    def test_same_ties(self):
        results = calculate_stroke_play_points(
            self.entries(36, 38, 38, 40), [10, 8, 6, 4], ScoringPolicy(tie_mode="same"), 35
        )
        assert [r.points for r in results] == [10, 8, 8, 4]

    def test_split_group_sums_to_occupied_slots(self):
        scale = [10, 8, 6, 4]
        results = calculate_stroke_play_points(
            self.entries(36, 36, 36, 40), scale, ScoringPolicy(), 35
        )
        assert sum(r.points for r in results[:3]) == pytest.approx(sum(scale[:3]))

    def test_near_ties_share_position(self):
        results = calculate_stroke_play_points(
            self.entries(36.0, 36.02), [10, 6], ScoringPolicy(), 35
        )
        assert [r.position for r in results] == [1, 1]
        assert [r.points for r in results] == [8, 8]

    def test_dnp_gets_points_plus_penalty(self):
        entries = [
            StrokePlayEntry(1, 36),
            StrokePlayEntry(2, 0, is_dnp=True),
        ]
        policy = ScoringPolicy(dnp_points=2, dnp_penalty=-1, bonus_show=1)
        results = calculate_stroke_play_points(entries, [10, 6], policy, 35)
        dnp = results[1]
        assert dnp.position == 0
        assert dnp.points == 1
        assert dnp.bonus_points == 0

    def test_bonuses(self):
        policy = ScoringPolicy(bonus_show=1, bonus_beat=2)
        results = calculate_stroke_play_points(self.entries(34, 36), [10, 6], policy, 35)
        assert results[0].bonus_points == 3
        assert results[1].bonus_points == 1
        assert results[0].total_points == 13

    def test_results_follow_input_order(self):
        results = calculate_stroke_play_points(self.entries(40, 36), [10, 6], ScoringPolicy(), 35)
        assert [r.team_id for r in results] == [1, 2]
        assert [r.position for r in results] == [2, 1]

    def test_scores_tied_tolerance(self):
        assert scores_tied(40, 40.02)
        assert not scores_tied(40, 40.1)

    def test_weeks_played_and_dnp_counts(self):
        records = [
            SimpleNamespace(team_id=1, is_dnp=False),
            SimpleNamespace(team_id=1, is_dnp=True),
            SimpleNamespace(team_id=1, is_dnp=False),
            SimpleNamespace(team_id=2, is_dnp=True),
        ]
        assert weeks_played(records) == {1: 2, 2: 0}
        assert dnp_counts(records) == {1: 1, 2: 1}


class TestByePoints:

    def test_zero(self):
        assert calculate_bye_points(ScoringPolicy(bye_points_mode="zero")) == 0

    def test_flat(self):
        policy = ScoringPolicy(bye_points_mode="flat", bye_points_flat=10)
        assert calculate_bye_points(policy) == 10

    def test_league_average(self):
        policy = ScoringPolicy(bye_points_mode="league_average")
        assert calculate_bye_points(policy, week_match_points=[(15, 5), (12, 8)]) == 10

    def test_league_average_without_matches(self):
        policy = ScoringPolicy(bye_points_mode="league_average")
        assert calculate_bye_points(policy) == 0

    def test_team_average_rounded_to_tenth(self):
        policy = ScoringPolicy(bye_points_mode="team_average")
        assert calculate_bye_points(policy, team_match_points=[15, 12, 8]) == pytest.approx(11.7)

    def test_team_average_without_matches(self):
        policy = ScoringPolicy(bye_points_mode="team_average")
        assert calculate_bye_points(policy, team_match_points=[]) == 0
