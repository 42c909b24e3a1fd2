"""Unit tests for the replay/fold steps of the league recalculation."""

from types import SimpleNamespace

import pytest

from golfleague.errors import ComputationError
from golfleague.recalc import (
    MatchResult,
    fold_match_results,
    replay_byes,
    replay_matchups,
    replay_weekly_scores,
)
from golfleague.schemas import HandicapPolicy, ScoringPolicy


def matchup(id, week, a, b, gross_a, gross_b, **kw):
    fields = dict(
        id=id, week_number=week,
        team_a_id=a, team_a_gross=gross_a, team_a_handicap=0.0, team_a_net=0.0,
        team_a_points=0.0, team_a_is_sub=False,
        team_b_id=b, team_b_gross=gross_b, team_b_handicap=0.0, team_b_net=0.0,
        team_b_points=0.0, team_b_is_sub=False,
        is_forfeit=False, forfeit_team_id=None, points_overridden=False,
    )
    fields.update(kw)
    return SimpleNamespace(**fields)


def weekly(id, week, team, gross, **kw):
    fields = dict(
        id=id, week_number=week, team_id=team, gross_score=gross, handicap=0.0,
        net_score=0.0, points=0.0, bonus_points=0.0, position=0, is_sub=False, is_dnp=False,
    )
    fields.update(kw)
    return SimpleNamespace(**fields)


class TestReplayMatchups:

    def test_week_one_keeps_manual_handicaps(self):
        m = matchup(1, 1, 1, 2, 40, 44, team_a_handicap=5, team_b_handicap=7)
        replay_matchups([m], HandicapPolicy())
        assert (m.team_a_handicap, m.team_b_handicap) == (5, 7)
        assert (m.team_a_net, m.team_b_net) == (35, 37)
        assert (m.team_a_points, m.team_b_points) == (13, 7)

    def test_later_weeks_use_earlier_gross(self):
        rows = [
            matchup(1, 1, 1, 2, 40, 44, team_a_handicap=5, team_b_handicap=7),
            matchup(2, 2, 1, 2, 41, 45),
        ]
        replay_matchups(rows, HandicapPolicy())
        assert (rows[1].team_a_handicap, rows[1].team_b_handicap) == (4, 8)
        assert (rows[1].team_a_points, rows[1].team_b_points) == (10, 10)

    def test_substitute_never_enters_history(self):
        rows = [
            matchup(1, 1, 1, 2, 40, 44, team_a_handicap=5, team_b_handicap=7),
            matchup(2, 2, 1, 2, 60, 44, team_a_is_sub=True, team_a_handicap=3),
            matchup(3, 3, 1, 2, 41, 44),
        ]
        replay_matchups(rows, HandicapPolicy())
        assert rows[1].team_a_handicap == 3
        # solo [40] cuenta para el equipo 1
        assert rows[2].team_a_handicap == 4

    def test_forfeit_passes_through(self):
        rows = [
            matchup(1, 1, 1, 2, 0, 0, is_forfeit=True, forfeit_team_id=2,
                    team_a_points=20.0, team_b_points=0.0),
            matchup(2, 2, 1, 2, 41, 45),
        ]
        results = replay_matchups(rows, HandicapPolicy(default_handicap=2))
        assert (rows[0].team_a_points, rows[0].team_b_points) == (20, 0)
        assert results[0].forfeit_team_id == 2
        # el forfeit no añade nada al historial -> hándicap por defecto
        assert (rows[1].team_a_handicap, rows[1].team_b_handicap) == (2, 2)

    def test_overridden_points_survive(self):
        m = matchup(1, 2, 1, 2, 41, 45, points_overridden=True,
                    team_a_points=6.0, team_b_points=14.0)
        replay_matchups([m], HandicapPolicy())
        assert (m.team_a_points, m.team_b_points) == (6, 14)
        assert m.team_a_net == 41

    def test_non_finite_value_names_record(self):
        m = matchup(7, 2, 1, 2, float("nan"), 45)
        with pytest.raises(ComputationError) as exc:
            replay_matchups([m], HandicapPolicy())
        assert exc.value.record == "matchup 7"
        assert "matchup 7" in str(exc.value)


class TestFold:

    def test_wins_losses_ties_and_points(self):
        totals = fold_match_results([
            MatchResult(1, 1, 13, 2, 7),
            MatchResult(2, 1, 10, 2, 10),
            MatchResult(3, 1, 20, 3, 0, forfeit_team_id=3),
        ])
        assert totals[1].total_points == 43
        assert (totals[1].wins, totals[1].losses, totals[1].ties) == (2, 0, 1)
        assert (totals[2].wins, totals[2].losses, totals[2].ties) == (0, 1, 1)
        assert (totals[3].wins, totals[3].losses) == (0, 1)


class TestWeeklyReplay:

    def test_points_and_history(self):
        rows = [
            weekly(1, 1, 1, 40, handicap=0),
            weekly(2, 1, 2, 44, handicap=0),
            weekly(3, 2, 1, 41),
            weekly(4, 2, 2, 45),
            weekly(5, 2, 3, 0, is_dnp=True),
        ]
        points = replay_weekly_scores(rows, HandicapPolicy(), ScoringPolicy(dnp_points=1))
        assert rows[2].handicap == 4
        assert rows[3].handicap == 8
        assert (rows[0].position, rows[0].points) == (1, 2)
        assert rows[4].position == 0
        # semana 2: 37 vs 37 empatan y reparten (2 + 1) / 2
        assert points == {1: 3.5, 2: 2.5, 3: 1}

    def test_hybrid_scales_field_points(self):
        rows = [weekly(1, 1, 1, 40), weekly(2, 1, 2, 44)]
        scoring = ScoringPolicy(scoring_type="hybrid", hybrid_field_weight=0.5)
        replay_weekly_scores(rows, HandicapPolicy(), scoring)
        assert (rows[0].points, rows[1].points) == (1, 0.5)


class TestByes:

    def test_team_average_uses_earlier_matches(self):
        results = [MatchResult(1, 1, 13, 2, 7), MatchResult(3, 1, 12, 2, 8)]
        bye = SimpleNamespace(id=1, week_number=2, team_id=1, points=0.0)
        points = replay_byes([bye], results, ScoringPolicy(bye_points_mode="team_average"))
        assert bye.points == 13
        assert points == {1: 13}

    def test_flat(self):
        bye = SimpleNamespace(id=1, week_number=2, team_id=4, points=0.0)
        replay_byes([bye], [], ScoringPolicy())
        assert bye.points == 10
