# golfleague/routers/public.py

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from golfleague import crud
from golfleague.db import get_db
from golfleague.errors import NotFoundError

router = APIRouter()


def _league_or_404(db: Session, league_id: int):
    league = crud.get_league(db, league_id)
    if not league:
        raise HTTPException(status_code=404, detail="Liga no encontrada")
    return league


@router.get("/leagues")
def public_leagues(db: Session = Depends(get_db)):
    return [{"id": l.id, "name": l.name} for l in crud.get_leagues(db)]


@router.get("/leagues/{league_id}")
def public_league(league_id: int, db: Session = Depends(get_db)):
    league = _league_or_404(db, league_id)
    scoring = league.scoring_policy()
    return {
        "id": league.id,
        "name": league.name,
        "scoring_type": scoring.scoring_type,
        "current_week": {
            "match_play": crud.current_match_week(db, league_id),
            "stroke_play": crud.current_stroke_week(db, league_id),
        },
        "teams": [{"id": t.id, "name": t.name} for t in crud.get_teams(db, league_id)],
    }


@router.get("/leagues/{league_id}/leaderboard")
def public_leaderboard(league_id: int, db: Session = Depends(get_db)):
    _league_or_404(db, league_id)
    return crud.compute_leaderboard(db, league_id)


@router.get("/leagues/{league_id}/history")
def public_history(league_id: int, week: int | None = None, db: Session = Depends(get_db)):
    _league_or_404(db, league_id)
    return {
        "matchups": [crud.matchup_to_dict(m) for m in crud.get_matchups(db, league_id, week)],
        "weekly_scores": [crud.weekly_score_to_dict(r) for r in crud.get_weekly_scores(db, league_id, week)],
    }


@router.get("/leagues/{league_id}/handicap-history")
def public_handicap_history(league_id: int, db: Session = Depends(get_db)):
    _league_or_404(db, league_id)
    return crud.handicap_history(db, league_id)


@router.get("/leagues/{league_id}/teams/{team_id}/history")
def public_team_history(league_id: int, team_id: int, db: Session = Depends(get_db)):
    try:
        return crud.team_matchup_history(db, league_id, team_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/leagues/{league_id}/teams/{team_id}/handicap")
def public_team_handicap(league_id: int, team_id: int, db: Session = Depends(get_db)):
    try:
        return crud.explain_team_handicap(db, league_id, team_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
