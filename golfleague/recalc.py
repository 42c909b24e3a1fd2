"""
Recálculo completo de una liga.

Se lee la política UNA vez, se reproducen todos los partidos en orden
(semana, orden de inserción) acumulando historiales en memoria, y se
reescriben partidos, vueltas semanales, byes y agregados de equipo.
Quien llama pone la transacción y el lock de la liga (ver crud).
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from . import models
from .errors import ComputationError
from .golf_calc import (
    StrokePlayEntry,
    calculate_bye_points,
    calculate_net_score,
    calculate_stroke_play_points,
    match_outcome,
    resolve_point_scale,
    suggest_match_points,
)
from .handicap import ScoreHistoryEntry, calculate_handicap
from .schemas import HandicapPolicy, ScoringPolicy

logger = logging.getLogger(__name__)


@dataclass
class TeamTotals:
    total_points: float = 0.0
    wins: int = 0
    losses: int = 0
    ties: int = 0


@dataclass(frozen=True)
class RecalcSummary:
    matchups: int
    weekly_scores: int
    byes: int
    teams: int


@dataclass(frozen=True)
class MatchResult:
    week_number: int
    team_a_id: int
    team_a_points: float
    team_b_id: int
    team_b_points: float
    forfeit_team_id: Optional[int] = None


def _check(value: float, what: str, record: str) -> float:
    if value is None or not math.isfinite(value):
        raise ComputationError(f"Invalid {what} calculation for {record}", record=record)
    return value


#---------------------------------------------------------------------------------
# ---------------------------------- Match play ----------------------------------
# --------------------------------------------------------------------------------

def _side_handicap(m, side: str, histories, policy: HandicapPolicy) -> float:
    # semana 1 y sustitutos: se respeta el hándicap manual
    if m.week_number == 1 or getattr(m, f"team_{side}_is_sub"):
        return getattr(m, f"team_{side}_handicap")
    team_id = getattr(m, f"team_{side}_id")
    return calculate_handicap(histories[team_id], policy, m.week_number)


def replay_matchups(matchups, policy: HandicapPolicy) -> list[MatchResult]:
    """
    Reproduce los partidos (ya ordenados) y actualiza cada fila en sitio.
    Devuelve los resultados en memoria para plegar los agregados.
    """
    histories = defaultdict(list)
    results = []

    for m in matchups:
        record = f"matchup {m.id}"

        if m.is_forfeit:
            results.append(MatchResult(
                m.week_number,
                m.team_a_id, _check(m.team_a_points, "points", record),
                m.team_b_id, _check(m.team_b_points, "points", record),
                forfeit_team_id=m.forfeit_team_id,
            ))
            continue

        hcp_a = _check(_side_handicap(m, "a", histories, policy), "handicap", record)
        hcp_b = _check(_side_handicap(m, "b", histories, policy), "handicap", record)
        net_a = _check(calculate_net_score(m.team_a_gross, hcp_a), "net score", record)
        net_b = _check(calculate_net_score(m.team_b_gross, hcp_b), "net score", record)

        if m.points_overridden:
            pts_a, pts_b = m.team_a_points, m.team_b_points
        else:
            pts_a, pts_b = suggest_match_points(net_a, net_b)
        _check(pts_a, "points", record)
        _check(pts_b, "points", record)

        m.team_a_handicap, m.team_a_net, m.team_a_points = hcp_a, net_a, pts_a
        m.team_b_handicap, m.team_b_net, m.team_b_points = hcp_b, net_b, pts_b

        if not m.team_a_is_sub:
            histories[m.team_a_id].append(ScoreHistoryEntry(m.team_a_gross, False, m.week_number))
        if not m.team_b_is_sub:
            histories[m.team_b_id].append(ScoreHistoryEntry(m.team_b_gross, False, m.week_number))

        results.append(MatchResult(m.week_number, m.team_a_id, pts_a, m.team_b_id, pts_b))

    return results


def fold_match_results(results: list[MatchResult]) -> dict[int, TeamTotals]:
    totals = defaultdict(TeamTotals)
    for r in results:
        a, b = totals[r.team_a_id], totals[r.team_b_id]
        a.total_points += r.team_a_points
        b.total_points += r.team_b_points

        if r.forfeit_team_id is not None:
            winner, loser = (b, a) if r.forfeit_team_id == r.team_a_id else (a, b)
            winner.wins += 1
            loser.losses += 1
            continue

        outcome = match_outcome(r.team_a_points, r.team_b_points)
        if outcome == "a":
            a.wins += 1
            b.losses += 1
        elif outcome == "b":
            b.wins += 1
            a.losses += 1
        else:
            a.ties += 1
            b.ties += 1
    return totals


#---------------------------------------------------------------------------------
# ---------------------------------- Stroke play ---------------------------------
# --------------------------------------------------------------------------------

def replay_weekly_scores(
    rows,
    policy: HandicapPolicy,
    scoring: ScoringPolicy,
) -> dict[int, float]:
    """
    Recalcula hándicap, neto y puntos de cada semana de stroke play.
    El historial de cada equipo solo crece al terminar la semana.
    """
    by_week = defaultdict(list)
    for r in rows:
        by_week[r.week_number].append(r)

    hybrid = scoring.scoring_type == "hybrid"
    histories = defaultdict(list)
    points = defaultdict(float)

    for week in sorted(by_week):
        week_rows = by_week[week]
        entries = []
        for r in week_rows:
            record = f"weekly score {r.id}"
            if r.is_dnp:
                r.handicap, r.net_score = 0.0, 0.0
            else:
                if week != 1 and not r.is_sub:
                    r.handicap = calculate_handicap(histories[r.team_id], policy, week)
                _check(r.handicap, "handicap", record)
                r.net_score = _check(calculate_net_score(r.gross_score, r.handicap), "net score", record)
            entries.append(StrokePlayEntry(r.team_id, r.net_score, r.gross_score, r.is_dnp))

        playing = sum(1 for e in entries if not e.is_dnp)
        custom = scoring.hybrid_field_point_scale if hybrid and scoring.hybrid_field_point_scale else None
        scale = resolve_point_scale(scoring, playing, custom)
        results = calculate_stroke_play_points(entries, scale, scoring, policy.base_score)

        for r, res in zip(week_rows, results):
            record = f"weekly score {r.id}"
            rank_points = res.points
            if hybrid and not r.is_dnp:
                rank_points = rank_points * scoring.hybrid_field_weight
            r.position = res.position
            r.points = _check(rank_points, "points", record)
            r.bonus_points = _check(res.bonus_points, "points", record)
            points[r.team_id] += r.points + r.bonus_points

        for r in week_rows:
            if not r.is_dnp and not r.is_sub:
                histories[r.team_id].append(ScoreHistoryEntry(r.gross_score, False, week))

    return points


#---------------------------------------------------------------------------------
# -------------------------------------- Bye -------------------------------------
# --------------------------------------------------------------------------------

def replay_byes(byes, results: list[MatchResult], scoring: ScoringPolicy) -> dict[int, float]:
    """Puntos de bye a partir de los resultados EN MEMORIA, nunca releyendo filas."""
    points = defaultdict(float)
    for bye in byes:
        week_pts = [
            (r.team_a_points, r.team_b_points)
            for r in results if r.week_number == bye.week_number
        ]
        team_pts = []
        for r in results:
            if r.week_number > bye.week_number:
                continue
            if r.team_a_id == bye.team_id:
                team_pts.append(r.team_a_points)
            elif r.team_b_id == bye.team_id:
                team_pts.append(r.team_b_points)

        bye.points = _check(
            calculate_bye_points(scoring, week_pts, team_pts), "bye points", f"bye {bye.id}"
        )
        points[bye.team_id] += bye.points
    return points


#---------------------------------------------------------------------------------
# ---------------------------------- Orquestación --------------------------------
# --------------------------------------------------------------------------------

def recalculate_league(
    db: Session,
    league: models.League,
    policy: Optional[HandicapPolicy] = None,
    scoring: Optional[ScoringPolicy] = None,
) -> RecalcSummary:
    """
    Reescribe todo el histórico de la liga. No hace commit: se ejecuta
    dentro de la transacción de quien llama y cualquier ComputationError
    la deshace entera.
    """
    policy = policy or league.handicap_policy()
    scoring = scoring or league.scoring_policy()

    matchups = (
        db.query(models.Matchup)
        .filter(models.Matchup.league_id == league.id)
        .order_by(models.Matchup.week_number, models.Matchup.id)
        .all()
    )
    weekly = (
        db.query(models.WeeklyScore)
        .filter(models.WeeklyScore.league_id == league.id)
        .order_by(models.WeeklyScore.week_number, models.WeeklyScore.id)
        .all()
    )
    byes = (
        db.query(models.ByeWeek)
        .filter(models.ByeWeek.league_id == league.id)
        .order_by(models.ByeWeek.week_number, models.ByeWeek.id)
        .all()
    )
    teams = db.query(models.Team).filter(models.Team.league_id == league.id).all()

    logger.info(
        "Recalculating league %s: %d matchups, %d weekly scores, %d byes",
        league.id, len(matchups), len(weekly), len(byes),
    )

    results = replay_matchups(matchups, policy)
    totals = fold_match_results(results)
    stroke_points = replay_weekly_scores(weekly, policy, scoring)
    bye_points = replay_byes(byes, results, scoring)

    for team in teams:
        t = totals.get(team.id, TeamTotals())
        total = t.total_points + stroke_points.get(team.id, 0.0) + bye_points.get(team.id, 0.0)
        team.total_points = _check(round(total, 4), "total points", f"team {team.id}")
        team.wins, team.losses, team.ties = t.wins, t.losses, t.ties

    db.flush()

    logger.info("League %s recalculated (%d teams)", league.id, len(teams))
    return RecalcSummary(len(matchups), len(weekly), len(byes), len(teams))

