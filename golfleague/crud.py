import logging
import math
from collections import defaultdict
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .db import atomic, league_lock
from .errors import (
    ActionResult, ComputationError, ConcurrencyConflict, LeagueError, NotFoundError, ValidationError,
)
from .golf_calc import (
    MATCH_POINT_POOL,
    StrokePlayEntry,
    calculate_bye_points,
    calculate_net_score,
    calculate_stroke_play_points,
    dnp_counts,
    match_outcome,
    resolve_point_scale,
    scores_tied,
    suggest_match_points,
    validate_match_points,
    weeks_played,
)
from .handicap import (
    ScoreHistoryEntry, apply_preset, calculate_handicap, clamp_handicap, describe_calculation,
)
from .recalc import recalculate_league

logger = logging.getLogger(__name__)


def _action(name: str, fn: Callable) -> ActionResult:
    """Frontera de las acciones de admin: ninguna LeagueError sale de aquí."""
    try:
        return ActionResult.ok(fn())
    except LeagueError as e:
        logger.warning("%s failed (%s): %s", name, e.kind, e)
        return ActionResult.fail(e)


#---------------------------------------------------------------------------------
# ------------------------------- Ligas y equipos --------------------------------
# --------------------------------------------------------------------------------

def get_leagues(db: Session):
    return db.query(models.League).order_by(models.League.name).all()


def get_league(db: Session, league_id: int):
    return db.query(models.League).filter(models.League.id == league_id).first()


def create_league(db: Session, data: schemas.LeagueCreate):
    league = models.League(**data.model_dump())
    db.add(league)
    db.commit()
    db.refresh(league)
    return league


def get_teams(db: Session, league_id: int):
    return (
        db.query(models.Team)
        .filter(models.Team.league_id == league_id)
        .order_by(models.Team.name)
        .all()
    )


def get_team(db: Session, league_id: int, team_id: int):
    return (
        db.query(models.Team)
        .filter(models.Team.league_id == league_id, models.Team.id == team_id)
        .first()
    )


def create_team(db: Session, league_id: int, data: schemas.TeamCreate):
    team = models.Team(league_id=league_id, **data.model_dump())
    db.add(team)
    db.commit()
    db.refresh(team)
    return team


def _require_league(db: Session, league_id: int) -> models.League:
    league = get_league(db, league_id)
    if not league:
        raise NotFoundError(f"League {league_id} not found")
    return league


def _require_team(db: Session, league_id: int, team_id: int) -> models.Team:
    team = get_team(db, league_id, team_id)
    if not team:
        raise NotFoundError(f"Team {team_id} not found in league {league_id}")
    return team


#---------------------------------------------------------------------------------
# ----------------------------- Historial y semanas ------------------------------
# --------------------------------------------------------------------------------

def team_match_history(db: Session, league_id: int, team_id: int, before_week: int):
    """Gross de match play del equipo en semanas ANTERIORES (sin sustitutos ni forfeits)."""
    rows = (
        db.query(models.Matchup)
        .filter(
            models.Matchup.league_id == league_id,
            models.Matchup.week_number < before_week,
            models.Matchup.is_forfeit.is_(False),
            or_(models.Matchup.team_a_id == team_id, models.Matchup.team_b_id == team_id),
        )
        .order_by(models.Matchup.week_number, models.Matchup.id)
        .all()
    )
    history = []
    for m in rows:
        side = "a" if m.team_a_id == team_id else "b"
        if not getattr(m, f"team_{side}_is_sub"):
            history.append(ScoreHistoryEntry(getattr(m, f"team_{side}_gross"), False, m.week_number))
    return history


def team_stroke_history(db: Session, league_id: int, team_id: int, before_week: int):
    rows = (
        db.query(models.WeeklyScore)
        .filter(
            models.WeeklyScore.league_id == league_id,
            models.WeeklyScore.team_id == team_id,
            models.WeeklyScore.week_number < before_week,
            models.WeeklyScore.is_dnp.is_(False),
            models.WeeklyScore.is_sub.is_(False),
        )
        .order_by(models.WeeklyScore.week_number, models.WeeklyScore.id)
        .all()
    )
    return [ScoreHistoryEntry(r.gross_score, False, r.week_number) for r in rows]


def current_match_week(db: Session, league_id: int) -> int:
    """Siguiente semana de match play (1 si aún no hay partidos)."""
    last = (
        db.query(models.Matchup.week_number)
        .filter(models.Matchup.league_id == league_id)
        .order_by(models.Matchup.week_number.desc())
        .first()
    )
    return (last[0] + 1) if last else 1


def current_stroke_week(db: Session, league_id: int) -> int:
    last = (
        db.query(models.WeeklyScore.week_number)
        .filter(models.WeeklyScore.league_id == league_id)
        .order_by(models.WeeklyScore.week_number.desc())
        .first()
    )
    return (last[0] + 1) if last else 1


def _manual_or_computed(manual, is_sub, week_number, history, policy, field):
    # semana 1 y sustitutos: hándicap manual obligatorio
    if week_number == 1 or is_sub:
        if manual is None:
            raise ValidationError("handicap must be entered manually for week 1 and substitutes", field=field)
        return clamp_handicap(manual, policy)
    if manual is not None:
        return clamp_handicap(manual, policy)
    return calculate_handicap(history, policy, week_number)


#---------------------------------------------------------------------------------
# ---------------------------------- Match play ----------------------------------
# --------------------------------------------------------------------------------

def _preview_matchup(db: Session, league_id: int, data: schemas.MatchupPreviewIn):
    league = _require_league(db, league_id)
    policy = league.handicap_policy()
    team_a = _require_team(db, league_id, data.team_a_id)
    team_b = _require_team(db, league_id, data.team_b_id)
    if team_a.id == team_b.id:
        raise ValidationError("a team cannot play itself", field="team_b_id")

    hcp_a = _manual_or_computed(
        data.team_a_handicap, data.team_a_is_sub, data.week_number,
        team_match_history(db, league_id, team_a.id, data.week_number), policy, "team_a_handicap",
    )
    hcp_b = _manual_or_computed(
        data.team_b_handicap, data.team_b_is_sub, data.week_number,
        team_match_history(db, league_id, team_b.id, data.week_number), policy, "team_b_handicap",
    )
    net_a = calculate_net_score(data.team_a_gross, hcp_a)
    net_b = calculate_net_score(data.team_b_gross, hcp_b)
    pts_a, pts_b = suggest_match_points(net_a, net_b)

    return schemas.MatchupPreview(
        week_number=data.week_number,
        is_week_one=data.week_number == 1,
        team_a_id=team_a.id, team_a_name=team_a.name,
        team_a_gross=data.team_a_gross, team_a_handicap=hcp_a, team_a_net=net_a,
        team_a_points=pts_a, team_a_is_sub=data.team_a_is_sub,
        team_b_id=team_b.id, team_b_name=team_b.name,
        team_b_gross=data.team_b_gross, team_b_handicap=hcp_b, team_b_net=net_b,
        team_b_points=pts_b, team_b_is_sub=data.team_b_is_sub,
    )


def preview_matchup(db: Session, league_id: int, data: schemas.MatchupPreviewIn) -> ActionResult:
    """Sin efectos: se puede repetir cuantas veces se quiera."""
    return _action("preview_matchup", lambda: _preview_matchup(db, league_id, data))


def _busy_team_ids(db: Session, league_id: int, week_number: int, team_ids: list[int]) -> set[int]:
    rows = (
        db.query(models.Matchup)
        .filter(
            models.Matchup.league_id == league_id,
            models.Matchup.week_number == week_number,
            or_(models.Matchup.team_a_id.in_(team_ids), models.Matchup.team_b_id.in_(team_ids)),
        )
        .all()
    )
    busy = {tid for m in rows for tid in (m.team_a_id, m.team_b_id)}
    byes = (
        db.query(models.ByeWeek.team_id)
        .filter(
            models.ByeWeek.league_id == league_id,
            models.ByeWeek.week_number == week_number,
            models.ByeWeek.team_id.in_(team_ids),
        )
        .all()
    )
    busy.update(b[0] for b in byes)
    return busy & set(team_ids)


def _ensure_free(db: Session, league_id: int, week_number: int, teams: list) -> None:
    busy = _busy_team_ids(db, league_id, week_number, [t.id for t in teams])
    if busy:
        raise ConcurrencyConflict(week_number, [t.name for t in teams if t.id in busy])


def _apply_result(team_a, team_b, pts_a: float, pts_b: float) -> None:
    team_a.total_points += pts_a
    team_b.total_points += pts_b
    outcome = match_outcome(pts_a, pts_b)
    if outcome == "a":
        team_a.wins += 1
        team_b.losses += 1
    elif outcome == "b":
        team_b.wins += 1
        team_a.losses += 1
    else:
        team_a.ties += 1
        team_b.ties += 1


def _require_finite(values: dict) -> None:
    for field, value in values.items():
        if value is None or not math.isfinite(value):
            raise ValidationError("must be a finite number", field=field)


def _insert_or_conflict(db: Session, week_number: int, teams: list, insert: Callable):
    # el UNIQUE de la tabla cubre la carrera entre dos envíos simultáneos
    try:
        return insert()
    except IntegrityError as e:
        raise ConcurrencyConflict(week_number, [t.name for t in teams]) from e


def _submit_matchup(db: Session, league_id: int, data: schemas.MatchupSubmitIn):
    _require_finite({
        f: getattr(data, f) for f in (
            "team_a_gross", "team_a_handicap", "team_a_points",
            "team_b_gross", "team_b_handicap", "team_b_points",
        )
    })
    validate_match_points(data.team_a_points, data.team_b_points)

    def insert():
        with league_lock(db, league_id), atomic(db):
            league = _require_league(db, league_id)
            team_a = _require_team(db, league_id, data.team_a_id)
            team_b = _require_team(db, league_id, data.team_b_id)
            _ensure_free(db, league_id, data.week_number, [team_a, team_b])

            net_a = calculate_net_score(data.team_a_gross, data.team_a_handicap)
            net_b = calculate_net_score(data.team_b_gross, data.team_b_handicap)
            suggested = suggest_match_points(net_a, net_b)
            overridden = data.points_overridden or suggested != (data.team_a_points, data.team_b_points)

            m = models.Matchup(
                league_id=league_id,
                week_number=data.week_number,
                team_a_id=team_a.id,
                team_a_gross=data.team_a_gross,
                team_a_handicap=data.team_a_handicap,
                team_a_net=net_a,
                team_a_points=data.team_a_points,
                team_a_is_sub=data.team_a_is_sub,
                team_b_id=team_b.id,
                team_b_gross=data.team_b_gross,
                team_b_handicap=data.team_b_handicap,
                team_b_net=net_b,
                team_b_points=data.team_b_points,
                team_b_is_sub=data.team_b_is_sub,
                points_overridden=overridden,
            )
            db.add(m)
            _apply_result(team_a, team_b, data.team_a_points, data.team_b_points)
            db.flush()
            _refresh_byes(db, league, data.week_number)
            return m

    teams = [t for t in (get_team(db, league_id, data.team_a_id), get_team(db, league_id, data.team_b_id)) if t]
    m = _insert_or_conflict(db, data.week_number, teams, insert)
    logger.info("Matchup %s recorded for league %s week %s", m.id, league_id, data.week_number)
    return matchup_to_dict(m)


def submit_matchup(db: Session, league_id: int, data: schemas.MatchupSubmitIn) -> ActionResult:
    return _action("submit_matchup", lambda: _submit_matchup(db, league_id, data))


def _submit_forfeit(db: Session, league_id: int, data: schemas.ForfeitIn):
    def insert():
        with league_lock(db, league_id), atomic(db):
            league = _require_league(db, league_id)
            winner = _require_team(db, league_id, data.winning_team_id)
            loser = _require_team(db, league_id, data.forfeiting_team_id)
            _ensure_free(db, league_id, data.week_number, [winner, loser])

            # sin gross / hándicap / neto: 20 para el ganador, 0 para quien no se presenta
            m = models.Matchup(
                league_id=league_id,
                week_number=data.week_number,
                team_a_id=winner.id,
                team_a_points=float(MATCH_POINT_POOL),
                team_b_id=loser.id,
                team_b_points=0.0,
                is_forfeit=True,
                forfeit_team_id=loser.id,
            )
            db.add(m)
            winner.total_points += MATCH_POINT_POOL
            winner.wins += 1
            loser.losses += 1
            db.flush()
            _refresh_byes(db, league, data.week_number)
            return m

    teams = [t for t in (get_team(db, league_id, data.winning_team_id), get_team(db, league_id, data.forfeiting_team_id)) if t]
    m = _insert_or_conflict(db, data.week_number, teams, insert)
    logger.info("Forfeit %s recorded for league %s week %s", m.id, league_id, data.week_number)
    return matchup_to_dict(m)


def submit_forfeit(db: Session, league_id: int, data: schemas.ForfeitIn) -> ActionResult:
    return _action("submit_forfeit", lambda: _submit_forfeit(db, league_id, data))


def _delete_matchup(db: Session, league_id: int, matchup_id: int):
    with league_lock(db, league_id), atomic(db):
        league = _require_league(db, league_id)
        m = (
            db.query(models.Matchup)
            .filter(models.Matchup.league_id == league_id, models.Matchup.id == matchup_id)
            .first()
        )
        if not m:
            raise NotFoundError(f"Matchup {matchup_id} not found")
        db.delete(m)
        db.flush()
        # los hándicaps de semanas posteriores dependen de este partido
        return recalculate_league(db, league)


def delete_matchup(db: Session, league_id: int, matchup_id: int) -> ActionResult:
    return _action("delete_matchup", lambda: _delete_matchup(db, league_id, matchup_id))


def get_matchups(db: Session, league_id: int, week_number: Optional[int] = None):
    q = db.query(models.Matchup).filter(models.Matchup.league_id == league_id)
    if week_number is not None:
        q = q.filter(models.Matchup.week_number == week_number)
    return q.order_by(models.Matchup.week_number, models.Matchup.id).all()


def matchup_to_dict(m: models.Matchup) -> dict:
    return {
        "id": m.id,
        "week_number": m.week_number,
        "team_a_id": m.team_a_id,
        "team_a_name": m.team_a.name if m.team_a else None,
        "team_a_gross": m.team_a_gross,
        "team_a_handicap": m.team_a_handicap,
        "team_a_net": m.team_a_net,
        "team_a_points": m.team_a_points,
        "team_a_is_sub": m.team_a_is_sub,
        "team_b_id": m.team_b_id,
        "team_b_name": m.team_b.name if m.team_b else None,
        "team_b_gross": m.team_b_gross,
        "team_b_handicap": m.team_b_handicap,
        "team_b_net": m.team_b_net,
        "team_b_points": m.team_b_points,
        "team_b_is_sub": m.team_b_is_sub,
        "is_forfeit": m.is_forfeit,
        "forfeit_team_id": m.forfeit_team_id,
        "points_overridden": m.points_overridden,
    }


#---------------------------------------------------------------------------------
# ---------------------------------- Stroke play ---------------------------------
# --------------------------------------------------------------------------------

def _check_unique_teams(team_ids: list[int]) -> None:
    seen = set()
    for tid in team_ids:
        if tid in seen:
            raise ValidationError(f"team {tid} appears more than once", field="scores")
        seen.add(tid)


def _preview_weekly_scores(db: Session, league_id: int, data: schemas.WeeklyScoresPreviewIn):
    league = _require_league(db, league_id)
    policy = league.handicap_policy()
    scoring = league.scoring_policy()
    _check_unique_teams([s.team_id for s in data.scores])

    rows = []
    for s in data.scores:
        team = _require_team(db, league_id, s.team_id)
        if s.is_dnp:
            hcp, net = 0.0, 0.0
        else:
            hcp = _manual_or_computed(
                s.manual_handicap, s.is_sub, data.week_number,
                team_stroke_history(db, league_id, team.id, data.week_number), policy,
                f"scores.{team.id}.manual_handicap",
            )
            net = calculate_net_score(s.gross_score, hcp)
        rows.append((team, s, hcp, net))

    entries = [StrokePlayEntry(t.id, net, s.gross_score, s.is_dnp) for t, s, _, net in rows]
    playing = sum(1 for e in entries if not e.is_dnp)
    hybrid = scoring.scoring_type == "hybrid"
    custom = scoring.hybrid_field_point_scale if hybrid and scoring.hybrid_field_point_scale else None
    scale = resolve_point_scale(scoring, playing, custom)
    results = calculate_stroke_play_points(entries, scale, scoring, policy.base_score)

    preview = []
    for (team, s, hcp, net), res in zip(rows, results):
        points = res.points * scoring.hybrid_field_weight if hybrid and not s.is_dnp else res.points
        preview.append(schemas.WeeklyScorePreviewEntry(
            team_id=team.id,
            team_name=team.name,
            gross_score=s.gross_score,
            handicap=hcp,
            net_score=net,
            position=res.position,
            points=points,
            bonus_points=res.bonus_points,
            total_points=points + res.bonus_points,
            is_sub=s.is_sub,
            is_dnp=s.is_dnp,
        ))

    # jugando por posición, DNP al final
    preview.sort(key=lambda e: (e.is_dnp, e.position))
    return schemas.WeeklyScorePreview(
        week_number=data.week_number,
        is_week_one=data.week_number == 1,
        scores=preview,
    )


def preview_weekly_scores(db: Session, league_id: int, data: schemas.WeeklyScoresPreviewIn) -> ActionResult:
    return _action("preview_weekly_scores", lambda: _preview_weekly_scores(db, league_id, data))


def _submit_weekly_scores(db: Session, league_id: int, data: schemas.WeeklyScoresSubmitIn):
    for s in data.scores:
        _require_finite({
            f"scores.{s.team_id}.{f}": getattr(s, f)
            for f in ("gross_score", "handicap", "points", "bonus_points")
        })
    _check_unique_teams([s.team_id for s in data.scores])

    def insert():
        with league_lock(db, league_id), atomic(db):
            _require_league(db, league_id)
            teams = {s.team_id: _require_team(db, league_id, s.team_id) for s in data.scores}

            existing = (
                db.query(models.WeeklyScore.team_id)
                .filter(
                    models.WeeklyScore.league_id == league_id,
                    models.WeeklyScore.week_number == data.week_number,
                    models.WeeklyScore.team_id.in_(list(teams)),
                )
                .all()
            )
            if existing:
                busy = {e[0] for e in existing}
                raise ConcurrencyConflict(
                    data.week_number, [teams[tid].name for tid in teams if tid in busy]
                )

            rows = []
            for s in data.scores:
                net = 0.0 if s.is_dnp else calculate_net_score(s.gross_score, s.handicap)
                row = models.WeeklyScore(
                    league_id=league_id,
                    week_number=data.week_number,
                    team_id=s.team_id,
                    gross_score=s.gross_score,
                    handicap=0.0 if s.is_dnp else s.handicap,
                    net_score=net,
                    points=s.points,
                    bonus_points=s.bonus_points,
                    position=0 if s.is_dnp else s.position,
                    is_sub=s.is_sub,
                    is_dnp=s.is_dnp,
                )
                db.add(row)
                teams[s.team_id].total_points += s.points + s.bonus_points
                rows.append(row)
            db.flush()
            return rows

    teams = [t for t in (get_team(db, league_id, s.team_id) for s in data.scores) if t]
    rows = _insert_or_conflict(db, data.week_number, teams, insert)
    logger.info("%d weekly scores recorded for league %s week %s", len(rows), league_id, data.week_number)
    return [weekly_score_to_dict(r) for r in rows]


def submit_weekly_scores(db: Session, league_id: int, data: schemas.WeeklyScoresSubmitIn) -> ActionResult:
    return _action("submit_weekly_scores", lambda: _submit_weekly_scores(db, league_id, data))


def _delete_weekly_scores(db: Session, league_id: int, week_number: int):
    with league_lock(db, league_id), atomic(db):
        league = _require_league(db, league_id)
        deleted = (
            db.query(models.WeeklyScore)
            .filter(
                models.WeeklyScore.league_id == league_id,
                models.WeeklyScore.week_number == week_number,
            )
            .delete(synchronize_session="fetch")
        )
        if not deleted:
            raise NotFoundError(f"No weekly scores for week {week_number}")
        db.flush()
        return recalculate_league(db, league)


def delete_weekly_scores(db: Session, league_id: int, week_number: int) -> ActionResult:
    return _action("delete_weekly_scores", lambda: _delete_weekly_scores(db, league_id, week_number))


def get_weekly_scores(db: Session, league_id: int, week_number: Optional[int] = None):
    q = db.query(models.WeeklyScore).filter(models.WeeklyScore.league_id == league_id)
    if week_number is not None:
        q = q.filter(models.WeeklyScore.week_number == week_number)
    return q.order_by(models.WeeklyScore.week_number, models.WeeklyScore.position).all()


def weekly_score_to_dict(r: models.WeeklyScore) -> dict:
    return {
        "id": r.id,
        "week_number": r.week_number,
        "team_id": r.team_id,
        "team_name": r.team.name if r.team else None,
        "gross_score": r.gross_score,
        "handicap": r.handicap,
        "net_score": r.net_score,
        "points": r.points,
        "bonus_points": r.bonus_points,
        "position": r.position,
        "is_sub": r.is_sub,
        "is_dnp": r.is_dnp,
    }


#---------------------------------------------------------------------------------
# -------------------------------------- Bye -------------------------------------
# --------------------------------------------------------------------------------

def _bye_points(db: Session, league_id: int, scoring, week_number: int, team_id: int) -> float:
    week_pts = [
        (m.team_a_points, m.team_b_points)
        for m in get_matchups(db, league_id, week_number)
    ]
    team_pts = []
    for m in get_matchups(db, league_id):
        if m.week_number > week_number:
            continue
        if m.team_a_id == team_id:
            team_pts.append(m.team_a_points)
        elif m.team_b_id == team_id:
            team_pts.append(m.team_b_points)
    return calculate_bye_points(scoring, week_pts, team_pts)


def _refresh_byes(db: Session, league: models.League, from_week: int) -> None:
    """Un partido nuevo cambia las medias de los byes de esa semana y posteriores."""
    scoring = league.scoring_policy()
    if scoring.bye_points_mode not in ("league_average", "team_average"):
        return
    byes = (
        db.query(models.ByeWeek)
        .filter(models.ByeWeek.league_id == league.id, models.ByeWeek.week_number >= from_week)
        .all()
    )
    for bye in byes:
        points = _bye_points(db, league.id, scoring, bye.week_number, bye.team_id)
        if points != bye.points:
            bye.team.total_points += points - bye.points
            bye.points = points
    db.flush()


def _record_bye(db: Session, league_id: int, data: schemas.ByeIn):
    def insert():
        with league_lock(db, league_id), atomic(db):
            league = _require_league(db, league_id)
            scoring = league.scoring_policy()
            team = _require_team(db, league_id, data.team_id)
            _ensure_free(db, league_id, data.week_number, [team])

            points = _bye_points(db, league_id, scoring, data.week_number, team.id)
            bye = models.ByeWeek(
                league_id=league_id, week_number=data.week_number, team_id=team.id, points=points
            )
            db.add(bye)
            team.total_points += points
            db.flush()
            return {"id": bye.id, "week_number": bye.week_number, "team_id": team.id, "points": points}

    teams = [t for t in (get_team(db, league_id, data.team_id),) if t]
    return _insert_or_conflict(db, data.week_number, teams, insert)


def record_bye(db: Session, league_id: int, data: schemas.ByeIn) -> ActionResult:
    """
    Sin hándicap ni neto: solo los puntos del modo de bye configurado.
    Las medias se rehacen cuando llegan partidos de esa semana (ver _refresh_byes).
    """
    return _action("record_bye", lambda: _record_bye(db, league_id, data))


#---------------------------------------------------------------------------------
# ------------------------------ Cambios de política -----------------------------
# --------------------------------------------------------------------------------

def _update_policies(db: Session, league_id: int, build_handicap=None, build_scoring=None):
    """
    Política nueva + recálculo completo, bajo el lock de la liga y en una
    sola transacción. Si algo no es finito no se guarda NADA.
    """
    with league_lock(db, league_id):
        try:
            with atomic(db):
                league = _require_league(db, league_id)
                policy = build_handicap(league.handicap_policy()) if build_handicap else league.handicap_policy()
                scoring = build_scoring(league.scoring_policy()) if build_scoring else league.scoring_policy()
                league.apply_handicap_policy(policy)
                league.apply_scoring_policy(scoring)
                return recalculate_league(db, league, policy, scoring)
        except ComputationError as e:
            logger.error("Recalculation of league %s aborted: %s", league_id, e)
            raise


def update_handicap_policy(db: Session, league_id: int, changes: dict) -> ActionResult:
    """Valida, guarda y recalcula toda la liga en una sola transacción."""
    def build(current):
        return schemas.parse_handicap_policy({**current.model_dump(), **changes})

    return _action("update_handicap_policy", lambda: _update_policies(db, league_id, build_handicap=build))


def update_scoring_policy(db: Session, league_id: int, changes: dict) -> ActionResult:
    def build(current):
        return schemas.parse_scoring_policy({**current.model_dump(), **changes})

    return _action("update_scoring_policy", lambda: _update_policies(db, league_id, build_scoring=build))


def apply_handicap_preset(db: Session, league_id: int, preset: str) -> ActionResult:
    def build(current):
        return apply_preset(preset, current)

    return _action("apply_handicap_preset", lambda: _update_policies(db, league_id, build_handicap=build))


def recalculate(db: Session, league_id: int) -> ActionResult:
    """Recálculo manual (mismo camino que un cambio de política)."""
    return _action("recalculate", lambda: _update_policies(db, league_id))


#---------------------------------------------------------------------------------
# -------------------------------- Clasificación ---------------------------------
# --------------------------------------------------------------------------------

def _head_to_head(group_ids: set[int], matchups) -> dict[int, float]:
    pts = defaultdict(float)
    for m in matchups:
        if m.team_a_id in group_ids and m.team_b_id in group_ids:
            pts[m.team_a_id] += m.team_a_points
            pts[m.team_b_id] += m.team_b_points
    return pts


def _net_differential(matchups) -> dict[int, float]:
    diff = defaultdict(float)
    for m in matchups:
        if m.is_forfeit:
            continue
        diff[m.team_a_id] += m.team_b_net - m.team_a_net
        diff[m.team_b_id] += m.team_a_net - m.team_b_net
    return diff


def _played_weeks(matchups, weekly) -> dict[int, set]:
    """Semanas distintas jugadas: un híbrido tiene partido y vuelta la misma semana."""
    weeks = defaultdict(set)
    for m in matchups:
        for side in ("a", "b"):
            team_id = getattr(m, f"team_{side}_id")
            if m.is_forfeit and m.forfeit_team_id == team_id:
                continue
            weeks[team_id].add(m.week_number)
    for r in weekly:
        if not r.is_dnp:
            weeks[r.team_id].add(r.week_number)
    return weeks


def compute_leaderboard(db: Session, league_id: int):
    """
    Clasificación:
    - puntos totales (o puntos por semana jugada si la liga prorratea)
    - victorias
    - puntos en los cruces directos entre los empatados
    - diferencial de netos
    DNP y umbral de max_dnp solo se muestran, no penalizan.
    """
    league = _require_league(db, league_id)
    scoring = league.scoring_policy()
    teams = get_teams(db, league_id)
    matchups = get_matchups(db, league_id)
    weekly = get_weekly_scores(db, league_id)

    played = weeks_played(weekly)
    dnps = dnp_counts(weekly)
    net_diff = _net_differential(matchups)
    played_weeks = _played_weeks(matchups, weekly)
    matches = defaultdict(int)
    for m in matchups:
        matches[m.team_a_id] += 1
        matches[m.team_b_id] += 1

    rows = []
    for t in teams:
        weeks = len(played_weeks.get(t.id, ()))
        rows.append({
            "team_id": t.id,
            "team_name": t.name,
            "total_points": t.total_points,
            "wins": t.wins,
            "losses": t.losses,
            "ties": t.ties,
            "matches_played": matches.get(t.id, 0),
            "weeks_played": played.get(t.id, 0),
            "points_per_week": round(t.total_points / weeks, 2) if weeks else 0.0,
            "dnp_count": dnps.get(t.id, 0),
            "over_max_dnp": scoring.max_dnp is not None and dnps.get(t.id, 0) > scoring.max_dnp,
            "net_differential": round(net_diff.get(t.id, 0.0), 1),
        })

    sort_field = "points_per_week" if scoring.pro_rate else "total_points"
    rows.sort(key=lambda r: (-r[sort_field], -r["wins"]))

    # desempate por cruces directos dentro de cada grupo empatado
    ordered = []
    i = 0
    while i < len(rows):
        j = i + 1
        while (
            j < len(rows)
            and scores_tied(rows[j][sort_field], rows[i][sort_field])
            and rows[j]["wins"] == rows[i]["wins"]
        ):
            j += 1
        group = rows[i:j]
        if len(group) > 1:
            h2h = _head_to_head({r["team_id"] for r in group}, matchups)
            group.sort(key=lambda r: (-h2h.get(r["team_id"], 0.0), -r["net_differential"]))
        ordered.extend(group)
        i = j

    for pos, row in enumerate(ordered, start=1):
        row["position"] = pos
    return ordered


def handicap_history(db: Session, league_id: int):
    """
    Evolución semanal del hándicap por equipo.
    Las semanas con sustituto se muestran, pero no cuentan para el actual.
    """
    league = _require_league(db, league_id)
    policy = league.handicap_policy()
    teams = get_teams(db, league_id)

    weeks = defaultdict(list)
    for m in get_matchups(db, league_id):
        if m.is_forfeit:
            continue
        weeks[m.team_a_id].append({"week_number": m.week_number, "handicap": m.team_a_handicap, "gross": m.team_a_gross, "is_sub": m.team_a_is_sub})
        weeks[m.team_b_id].append({"week_number": m.week_number, "handicap": m.team_b_handicap, "gross": m.team_b_gross, "is_sub": m.team_b_is_sub})
    for r in get_weekly_scores(db, league_id):
        if r.is_dnp:
            continue
        weeks[r.team_id].append({"week_number": r.week_number, "handicap": r.handicap, "gross": r.gross_score, "is_sub": r.is_sub})

    out = []
    for t in teams:
        entries = sorted(weeks.get(t.id, []), key=lambda e: e["week_number"])
        history = [ScoreHistoryEntry(e["gross"], e["is_sub"], e["week_number"]) for e in entries]
        next_week = (entries[-1]["week_number"] + 1) if entries else 1
        out.append({
            "team_id": t.id,
            "team_name": t.name,
            "weeks": entries,
            "current_handicap": calculate_handicap(history, policy, next_week),
        })
    return out


def team_matchup_history(db: Session, league_id: int, team_id: int):
    _require_team(db, league_id, team_id)
    rows = (
        db.query(models.Matchup)
        .filter(
            models.Matchup.league_id == league_id,
            or_(models.Matchup.team_a_id == team_id, models.Matchup.team_b_id == team_id),
        )
        .order_by(models.Matchup.week_number, models.Matchup.id)
        .all()
    )
    return [matchup_to_dict(m) for m in rows]


def explain_team_handicap(db: Session, league_id: int, team_id: int):
    """Hándicap que tendría el equipo la próxima semana, con los pasos del cálculo."""
    league = _require_league(db, league_id)
    policy = league.handicap_policy()
    team = _require_team(db, league_id, team_id)

    if league.scoring_policy().scoring_type == "stroke_play":
        week = current_stroke_week(db, league_id)
        history = team_stroke_history(db, league_id, team.id, week)
    else:
        week = current_match_week(db, league_id)
        history = team_match_history(db, league_id, team.id, week)

    return {
        "team_id": team.id,
        "team_name": team.name,
        "week_number": week,
        "handicap": calculate_handicap(history, policy, week),
        "steps": describe_calculation(history, policy, week),
    }
