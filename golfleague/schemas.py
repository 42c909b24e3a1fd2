from typing import Literal, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ValidationError


# --------------------------------------------------------------------------------
# ---------------------------------- Políticas -----------------------------------
# --------------------------------------------------------------------------------

Rounding = Literal["floor", "round", "ceil"]
ScoreSelection = Literal["all", "last_n", "best_of_last"]
ScoringType = Literal["match_play", "stroke_play", "hybrid"]
TieMode = Literal["split", "same"]
PointPreset = Literal["linear", "weighted", "pga_style", "custom"]
ByePointsMode = Literal["zero", "flat", "league_average", "team_average"]

MAX_COMBINED_DROPS = 20


class HandicapPolicy(BaseModel):
    """Reglas de hándicap de una liga. Inmutable: se construye una vez por operación."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # fórmula base
    base_score: float = Field(35.0, ge=0, le=200)
    multiplier: float = Field(0.9, ge=0, le=5)
    rounding: Rounding = "floor"
    default_handicap: float = Field(0.0, ge=-50, le=100)
    max_handicap: Optional[float] = Field(9.0, ge=0, le=200)
    min_handicap: Optional[float] = Field(None, ge=-50, le=100)

    # selección de vueltas
    score_selection: ScoreSelection = "all"
    score_count: Optional[int] = Field(None, ge=1, le=100)
    best_of: Optional[int] = Field(None, ge=1, le=100)
    last_of: Optional[int] = Field(None, ge=1, le=100)
    drop_highest: int = Field(0, ge=0, le=50)
    drop_lowest: int = Field(0, ge=0, le=50)

    # ponderación
    use_weighting: bool = False
    weight_recent: float = Field(1.5, ge=0, le=10)
    weight_decay: float = Field(0.9, ge=0, le=2)

    # vueltas excepcionales
    cap_exceptional: bool = False
    exceptional_cap: Optional[float] = Field(None, ge=0, le=200)

    # reglas temporales
    prov_weeks: int = Field(0, ge=0, le=52)
    prov_multiplier: float = Field(1.0, ge=0, le=5)
    freeze_week: Optional[int] = Field(None, ge=1, le=52)
    use_trend: bool = False
    trend_weight: float = Field(0.1, ge=0, le=1)

    @model_validator(mode="after")
    def check_consistency(self):
        if self.drop_highest + self.drop_lowest > MAX_COMBINED_DROPS:
            raise ValueError(
                f"drop_highest + drop_lowest: combined drop count cannot exceed {MAX_COMBINED_DROPS}"
            )
        if (
            self.max_handicap is not None
            and self.min_handicap is not None
            and self.max_handicap < self.min_handicap
        ):
            raise ValueError("max_handicap: must be greater than or equal to min_handicap")
        if self.score_selection == "last_n" and self.score_count is None:
            raise ValueError("score_count: required when score_selection is last_n")
        if self.score_selection == "best_of_last":
            if self.best_of is None or self.last_of is None:
                raise ValueError("best_of/last_of: both required when score_selection is best_of_last")
            if self.best_of > self.last_of:
                raise ValueError("best_of: must be less than or equal to last_of")
        if self.cap_exceptional and self.exceptional_cap is None:
            raise ValueError("exceptional_cap: required when cap_exceptional is enabled")
        return self


class ScoringPolicy(BaseModel):
    """Reglas de puntos (match play / stroke play / híbrido) y de semanas de descanso."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    scoring_type: ScoringType = "match_play"
    point_preset: PointPreset = "linear"
    point_scale: Optional[tuple[float, ...]] = None
    bonus_show: float = Field(0.0, ge=0)
    bonus_beat: float = Field(0.0, ge=0)
    dnp_points: float = Field(0.0, ge=0)
    dnp_penalty: float = Field(0.0, le=0)
    max_dnp: Optional[int] = Field(None, ge=1)
    tie_mode: TieMode = "split"
    pro_rate: bool = False
    hybrid_field_weight: float = Field(0.5, ge=0, le=1)
    hybrid_field_point_scale: Optional[tuple[float, ...]] = None
    bye_points_mode: ByePointsMode = "flat"
    bye_points_flat: float = Field(10.0, ge=0)

    @field_validator("point_scale", "hybrid_field_point_scale")
    @classmethod
    def check_descending(cls, v):
        if v is None:
            return v
        for value in v:
            if value < 0:
                raise ValueError("point scale values cannot be negative")
        for prev, cur in zip(v, v[1:]):
            if cur >= prev:
                raise ValueError("point scale must be strictly descending (highest points first)")
        return v


def _translate(exc: pydantic.ValidationError) -> ValidationError:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()) if part != "__root__")
    msg = err.get("msg", "invalid value")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return ValidationError(msg, field=loc or None)


def parse_handicap_policy(data: dict) -> HandicapPolicy:
    """Valida un diccionario de ajustes y devuelve la política inmutable."""
    try:
        return HandicapPolicy(**data)
    except pydantic.ValidationError as e:
        raise _translate(e) from e


def parse_scoring_policy(data: dict) -> ScoringPolicy:
    try:
        return ScoringPolicy(**data)
    except pydantic.ValidationError as e:
        raise _translate(e) from e


# --------------------------------------------------------------------------------
# ------------------------------ Ligas y equipos ---------------------------------
# --------------------------------------------------------------------------------

class LeagueCreate(BaseModel):
    name: str = Field(..., min_length=1)


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1)


# --------------------------------------------------------------------------------
# --------------------------------- Match play -----------------------------------
# --------------------------------------------------------------------------------

class MatchupPreviewIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    week_number: int = Field(..., ge=1)
    team_a_id: int
    team_a_gross: float = Field(..., ge=0)
    team_a_handicap: Optional[float] = None  # manual (semana 1 / sustituto)
    team_a_is_sub: bool = False
    team_b_id: int
    team_b_gross: float = Field(..., ge=0)
    team_b_handicap: Optional[float] = None
    team_b_is_sub: bool = False


class MatchupPreview(BaseModel):
    week_number: int
    is_week_one: bool
    team_a_id: int
    team_a_name: str
    team_a_gross: float
    team_a_handicap: float
    team_a_net: float
    team_a_points: float
    team_a_is_sub: bool
    team_b_id: int
    team_b_name: str
    team_b_gross: float
    team_b_handicap: float
    team_b_net: float
    team_b_points: float
    team_b_is_sub: bool


class MatchupSubmitIn(BaseModel):
    # sin Infinity / NaN
    model_config = ConfigDict(allow_inf_nan=False)

    week_number: int = Field(..., ge=1)
    team_a_id: int
    team_a_gross: float = Field(..., ge=0)
    team_a_handicap: float
    team_a_points: float = Field(..., ge=0)
    team_a_is_sub: bool = False
    team_b_id: int
    team_b_gross: float = Field(..., ge=0)
    team_b_handicap: float
    team_b_points: float = Field(..., ge=0)
    team_b_is_sub: bool = False
    points_overridden: bool = False

    @model_validator(mode="after")
    def different_teams(self):
        if self.team_a_id == self.team_b_id:
            raise ValueError("team_b_id: a team cannot play itself")
        return self


class ForfeitIn(BaseModel):
    week_number: int = Field(..., ge=1)
    winning_team_id: int
    forfeiting_team_id: int

    @model_validator(mode="after")
    def different_teams(self):
        if self.winning_team_id == self.forfeiting_team_id:
            raise ValueError("forfeiting_team_id: winning team and forfeiting team must be different")
        return self


# --------------------------------------------------------------------------------
# -------------------------------- Stroke play -----------------------------------
# --------------------------------------------------------------------------------

class WeeklyScoreInput(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    team_id: int
    gross_score: float = Field(0, ge=0)
    is_sub: bool = False
    is_dnp: bool = False
    manual_handicap: Optional[float] = None


class WeeklyScoresPreviewIn(BaseModel):
    week_number: int = Field(..., ge=1)
    scores: list[WeeklyScoreInput]


class WeeklyScorePreviewEntry(BaseModel):
    team_id: int
    team_name: str
    gross_score: float
    handicap: float
    net_score: float
    position: int
    points: float
    bonus_points: float
    total_points: float
    is_sub: bool
    is_dnp: bool


class WeeklyScorePreview(BaseModel):
    week_number: int
    is_week_one: bool
    scores: list[WeeklyScorePreviewEntry]


class WeeklyScoreSubmitEntry(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    team_id: int
    gross_score: float = Field(0, ge=0)
    handicap: float = 0
    points: float = 0
    bonus_points: float = 0
    position: int = Field(0, ge=0)
    is_sub: bool = False
    is_dnp: bool = False


class WeeklyScoresSubmitIn(BaseModel):
    week_number: int = Field(..., ge=1)
    scores: list[WeeklyScoreSubmitEntry] = Field(..., min_length=1)


# --------------------------------------------------------------------------------
# ------------------------------------ Bye ---------------------------------------
# --------------------------------------------------------------------------------

class ByeIn(BaseModel):
    week_number: int = Field(..., ge=1)
    team_id: int


class AdminLogin(BaseModel):
    key: str
