import os
from dataclasses import asdict, is_dataclass

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from . import crud, schemas
from .db import Base, engine, get_db
from .errors import ActionResult
from .handicap import HANDICAP_PRESETS
from .logging_config import setup_logging
from .routers import public

setup_logging()

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Golf League")
app.include_router(public.router, prefix="/public")

ADMIN_KEY = os.getenv("ADMIN_KEY", "")  # en local puedes dejarlo vacío si quieres


# ================================================================================
# =============================== PASSWORD ADMIN =================================
# ================================================================================

def _is_admin(request: Request) -> bool:
    if not ADMIN_KEY:
        return True  # modo dev
    key = request.cookies.get("admin_key") or request.headers.get("X-Admin-Key")
    return key == ADMIN_KEY


@app.post("/admin/login")
def admin_login(data: schemas.AdminLogin):
    if ADMIN_KEY and data.key != ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Clave incorrecta")

    resp = JSONResponse({"ok": True})
    resp.set_cookie(
        "admin_key",
        data.key,
        httponly=True,
        samesite="lax",
        max_age=60 * 60 * 12,  # 12 horas
    )
    return resp


@app.post("/admin/logout")
def admin_logout():
    resp = JSONResponse({"ok": True})
    resp.delete_cookie("admin_key")
    return resp


@app.middleware("http")
async def admin_guard(request: Request, call_next):
    path = request.url.path

    # Solo proteger /admin... (login/logout libres)
    if path.startswith("/admin") and path not in ("/admin/login", "/admin/logout"):
        if not _is_admin(request):
            return JSONResponse({"detail": "Admin auth required"}, status_code=401)

    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # sin "input": un Infinity recibido no se puede devolver como JSON
    errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
    return JSONResponse({"detail": errors}, status_code=422)


@app.get("/", include_in_schema=False)
def root():
    return RedirectResponse(url="/public/leagues")


# ---------------------------------------------------------------------------------

STATUS_BY_KIND = {
    "validation": 422,
    "conflict": 409,
    "computation": 500,
    "not_found": 404,
}


def _plain(data):
    if isinstance(data, BaseModel):
        return data.model_dump()
    if is_dataclass(data):
        return asdict(data)
    return data


def unwrap(result: ActionResult):
    """ActionResult -> cuerpo JSON, o HTTPException con el código de su tipo de error."""
    if result.success:
        return _plain(result.data)
    raise HTTPException(
        status_code=STATUS_BY_KIND.get(result.kind, 400),
        detail={"error": result.error, "kind": result.kind},
    )


def _league_or_404(db: Session, league_id: int):
    league = crud.get_league(db, league_id)
    if not league:
        raise HTTPException(status_code=404, detail="Liga no encontrada")
    return league


#--------------------------------------------------------------------------------
#------------------------------ ADMIN: LEAGUES ----------------------------------
#--------------------------------------------------------------------------------

@app.get("/admin/leagues")
def admin_leagues(db: Session = Depends(get_db)):
    return [{"id": l.id, "name": l.name} for l in crud.get_leagues(db)]


@app.post("/admin/leagues", status_code=201)
def admin_create_league(data: schemas.LeagueCreate, db: Session = Depends(get_db)):
    league = crud.create_league(db, data)
    return {"id": league.id, "name": league.name}


@app.post("/admin/leagues/{league_id}/teams", status_code=201)
def admin_create_team(league_id: int, data: schemas.TeamCreate, db: Session = Depends(get_db)):
    _league_or_404(db, league_id)
    team = crud.create_team(db, league_id, data)
    return {"id": team.id, "name": team.name, "league_id": team.league_id}


#--------------------------------------------------------------------------------
#------------------------------ ADMIN: SETTINGS ---------------------------------
#--------------------------------------------------------------------------------

@app.get("/admin/leagues/{league_id}/settings")
def admin_settings(league_id: int, db: Session = Depends(get_db)):
    league = _league_or_404(db, league_id)
    return {
        "handicap": league.handicap_policy().model_dump(),
        "scoring": league.scoring_policy().model_dump(),
        "presets": [asdict(p) for p in HANDICAP_PRESETS],
    }


@app.put("/admin/leagues/{league_id}/settings/handicap")
def admin_update_handicap(league_id: int, changes: dict = Body(...), db: Session = Depends(get_db)):
    return unwrap(crud.update_handicap_policy(db, league_id, changes))


@app.put("/admin/leagues/{league_id}/settings/scoring")
def admin_update_scoring(league_id: int, changes: dict = Body(...), db: Session = Depends(get_db)):
    return unwrap(crud.update_scoring_policy(db, league_id, changes))


@app.post("/admin/leagues/{league_id}/settings/handicap/preset/{preset}")
def admin_apply_preset(league_id: int, preset: str, db: Session = Depends(get_db)):
    return unwrap(crud.apply_handicap_preset(db, league_id, preset))


@app.post("/admin/leagues/{league_id}/recalculate")
def admin_recalculate(league_id: int, db: Session = Depends(get_db)):
    return unwrap(crud.recalculate(db, league_id))


#--------------------------------------------------------------------------------
#------------------------------ ADMIN: MATCH PLAY -------------------------------
#--------------------------------------------------------------------------------

@app.post("/admin/leagues/{league_id}/matchups/preview")
def admin_preview_matchup(league_id: int, data: schemas.MatchupPreviewIn, db: Session = Depends(get_db)):
    return unwrap(crud.preview_matchup(db, league_id, data))


@app.post("/admin/leagues/{league_id}/matchups", status_code=201)
def admin_submit_matchup(league_id: int, data: schemas.MatchupSubmitIn, db: Session = Depends(get_db)):
    return unwrap(crud.submit_matchup(db, league_id, data))


@app.post("/admin/leagues/{league_id}/forfeits", status_code=201)
def admin_submit_forfeit(league_id: int, data: schemas.ForfeitIn, db: Session = Depends(get_db)):
    return unwrap(crud.submit_forfeit(db, league_id, data))


@app.delete("/admin/leagues/{league_id}/matchups/{matchup_id}")
def admin_delete_matchup(league_id: int, matchup_id: int, db: Session = Depends(get_db)):
    return unwrap(crud.delete_matchup(db, league_id, matchup_id))


#--------------------------------------------------------------------------------
#------------------------------ ADMIN: STROKE PLAY ------------------------------
#--------------------------------------------------------------------------------

@app.post("/admin/leagues/{league_id}/weekly-scores/preview")
def admin_preview_weekly(league_id: int, data: schemas.WeeklyScoresPreviewIn, db: Session = Depends(get_db)):
    return unwrap(crud.preview_weekly_scores(db, league_id, data))


@app.post("/admin/leagues/{league_id}/weekly-scores", status_code=201)
def admin_submit_weekly(league_id: int, data: schemas.WeeklyScoresSubmitIn, db: Session = Depends(get_db)):
    return unwrap(crud.submit_weekly_scores(db, league_id, data))


@app.delete("/admin/leagues/{league_id}/weekly-scores/{week_number}")
def admin_delete_weekly(league_id: int, week_number: int, db: Session = Depends(get_db)):
    return unwrap(crud.delete_weekly_scores(db, league_id, week_number))


@app.post("/admin/leagues/{league_id}/byes", status_code=201)
def admin_record_bye(league_id: int, data: schemas.ByeIn, db: Session = Depends(get_db)):
    return unwrap(crud.record_bye(db, league_id, data))
