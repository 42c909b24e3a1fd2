from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base
from .schemas import HandicapPolicy, ScoringPolicy, parse_handicap_policy, parse_scoring_policy


# columna del modelo -> campo de HandicapPolicy
HANDICAP_COLUMNS = {
    "handicap_base_score": "base_score",
    "handicap_multiplier": "multiplier",
    "handicap_rounding": "rounding",
    "handicap_default": "default_handicap",
    "handicap_max": "max_handicap",
    "handicap_min": "min_handicap",
    "handicap_score_selection": "score_selection",
    "handicap_score_count": "score_count",
    "handicap_best_of": "best_of",
    "handicap_last_of": "last_of",
    "handicap_drop_highest": "drop_highest",
    "handicap_drop_lowest": "drop_lowest",
    "handicap_use_weighting": "use_weighting",
    "handicap_weight_recent": "weight_recent",
    "handicap_weight_decay": "weight_decay",
    "handicap_cap_exceptional": "cap_exceptional",
    "handicap_exceptional_cap": "exceptional_cap",
    "handicap_prov_weeks": "prov_weeks",
    "handicap_prov_multiplier": "prov_multiplier",
    "handicap_freeze_week": "freeze_week",
    "handicap_use_trend": "use_trend",
    "handicap_trend_weight": "trend_weight",
}

SCORING_COLUMNS = {
    "scoring_type": "scoring_type",
    "stroke_play_point_preset": "point_preset",
    "stroke_play_point_scale": "point_scale",
    "stroke_play_bonus_show": "bonus_show",
    "stroke_play_bonus_beat": "bonus_beat",
    "stroke_play_dnp_points": "dnp_points",
    "stroke_play_dnp_penalty": "dnp_penalty",
    "stroke_play_max_dnp": "max_dnp",
    "stroke_play_tie_mode": "tie_mode",
    "stroke_play_pro_rate": "pro_rate",
    "hybrid_field_weight": "hybrid_field_weight",
    "hybrid_field_point_scale": "hybrid_field_point_scale",
    "bye_points_mode": "bye_points_mode",
    "bye_points_flat": "bye_points_flat",
}

_NULLABLE_KEYS = {
    "max_handicap", "min_handicap", "score_count", "best_of", "last_of",
    "exceptional_cap", "freeze_week", "point_scale", "max_dnp", "hybrid_field_point_scale",
}


class League(Base):
    __tablename__ = "leagues"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # ---- hándicap ----
    handicap_base_score = Column(Float, nullable=False, default=35.0)
    handicap_multiplier = Column(Float, nullable=False, default=0.9)
    handicap_rounding = Column(String, nullable=False, default="floor")
    handicap_default = Column(Float, nullable=False, default=0.0)
    handicap_max = Column(Float, nullable=True, default=9.0)
    handicap_min = Column(Float, nullable=True)
    handicap_score_selection = Column(String, nullable=False, default="all")
    handicap_score_count = Column(Integer, nullable=True)
    handicap_best_of = Column(Integer, nullable=True)
    handicap_last_of = Column(Integer, nullable=True)
    handicap_drop_highest = Column(Integer, nullable=False, default=0)
    handicap_drop_lowest = Column(Integer, nullable=False, default=0)
    handicap_use_weighting = Column(Boolean, nullable=False, default=False)
    handicap_weight_recent = Column(Float, nullable=False, default=1.5)
    handicap_weight_decay = Column(Float, nullable=False, default=0.9)
    handicap_cap_exceptional = Column(Boolean, nullable=False, default=False)
    handicap_exceptional_cap = Column(Float, nullable=True)
    handicap_prov_weeks = Column(Integer, nullable=False, default=0)
    handicap_prov_multiplier = Column(Float, nullable=False, default=1.0)
    handicap_freeze_week = Column(Integer, nullable=True)
    handicap_use_trend = Column(Boolean, nullable=False, default=False)
    handicap_trend_weight = Column(Float, nullable=False, default=0.1)

    # ---- puntos ----
    scoring_type = Column(String, nullable=False, default="match_play")
    stroke_play_point_preset = Column(String, nullable=False, default="linear")
    stroke_play_point_scale = Column(JSON, nullable=True)  # lista descendente
    stroke_play_bonus_show = Column(Float, nullable=False, default=0.0)
    stroke_play_bonus_beat = Column(Float, nullable=False, default=0.0)
    stroke_play_dnp_points = Column(Float, nullable=False, default=0.0)
    stroke_play_dnp_penalty = Column(Float, nullable=False, default=0.0)
    stroke_play_max_dnp = Column(Integer, nullable=True)
    stroke_play_tie_mode = Column(String, nullable=False, default="split")
    stroke_play_pro_rate = Column(Boolean, nullable=False, default=False)
    hybrid_field_weight = Column(Float, nullable=False, default=0.5)
    hybrid_field_point_scale = Column(JSON, nullable=True)
    bye_points_mode = Column(String, nullable=False, default="flat")
    bye_points_flat = Column(Float, nullable=False, default=10.0)

    teams = relationship("Team", back_populates="league", cascade="all, delete-orphan")

    def _values(self, columns: dict) -> dict:
        data = {}
        for column, key in columns.items():
            value = getattr(self, column)
            if value is None:
                # objeto aún sin flush -> default de la columna
                default = self.__table__.c[column].default
                if default is not None and default.is_scalar:
                    value = default.arg
            data[key] = tuple(value) if isinstance(value, list) else value
        return {k: v for k, v in data.items() if v is not None or k in _NULLABLE_KEYS}

    def handicap_policy(self) -> HandicapPolicy:
        """Foto inmutable de la política de hándicap (una por operación)."""
        return parse_handicap_policy(self._values(HANDICAP_COLUMNS))

    def scoring_policy(self) -> ScoringPolicy:
        return parse_scoring_policy(self._values(SCORING_COLUMNS))

    def apply_handicap_policy(self, policy: HandicapPolicy) -> None:
        values = policy.model_dump()
        for column, key in HANDICAP_COLUMNS.items():
            setattr(self, column, values[key])

    def apply_scoring_policy(self, policy: ScoringPolicy) -> None:
        values = policy.model_dump()
        for column, key in SCORING_COLUMNS.items():
            value = values[key]
            setattr(self, column, list(value) if isinstance(value, tuple) else value)


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (UniqueConstraint("league_id", "name", name="uq_team_league_name"),)

    id = Column(Integer, primary_key=True, index=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False, index=True)
    name = Column(String, nullable=False)

    # agregados: los reescribe entero el recálculo
    total_points = Column(Float, nullable=False, default=0.0)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    ties = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    league = relationship("League", back_populates="teams")


class Matchup(Base):
    __tablename__ = "matchups"
    __table_args__ = (
        UniqueConstraint("league_id", "week_number", "team_a_id", "team_b_id", name="uq_matchup_week_teams"),
    )

    id = Column(Integer, primary_key=True, index=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False, index=True)
    week_number = Column(Integer, nullable=False, index=True)

    team_a_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    team_a_gross = Column(Float, nullable=False, default=0.0)
    team_a_handicap = Column(Float, nullable=False, default=0.0)
    team_a_net = Column(Float, nullable=False, default=0.0)
    team_a_points = Column(Float, nullable=False, default=0.0)
    team_a_is_sub = Column(Boolean, nullable=False, default=False)

    team_b_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    team_b_gross = Column(Float, nullable=False, default=0.0)
    team_b_handicap = Column(Float, nullable=False, default=0.0)
    team_b_net = Column(Float, nullable=False, default=0.0)
    team_b_points = Column(Float, nullable=False, default=0.0)
    team_b_is_sub = Column(Boolean, nullable=False, default=False)

    is_forfeit = Column(Boolean, nullable=False, default=False)
    forfeit_team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    points_overridden = Column(Boolean, nullable=False, default=False)

    played_at = Column(DateTime, default=datetime.utcnow)

    team_a = relationship("Team", foreign_keys=[team_a_id])
    team_b = relationship("Team", foreign_keys=[team_b_id])


class WeeklyScore(Base):
    __tablename__ = "weekly_scores"
    __table_args__ = (
        UniqueConstraint("league_id", "week_number", "team_id", name="uq_weekly_score_week_team"),
    )

    id = Column(Integer, primary_key=True, index=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False, index=True)
    week_number = Column(Integer, nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)

    gross_score = Column(Float, nullable=False, default=0.0)
    handicap = Column(Float, nullable=False, default=0.0)
    net_score = Column(Float, nullable=False, default=0.0)
    points = Column(Float, nullable=False, default=0.0)
    bonus_points = Column(Float, nullable=False, default=0.0)
    position = Column(Integer, nullable=False, default=0)  # 0 = DNP

    is_sub = Column(Boolean, nullable=False, default=False)
    is_dnp = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    team = relationship("Team")


class ByeWeek(Base):
    __tablename__ = "bye_weeks"
    __table_args__ = (
        UniqueConstraint("league_id", "week_number", "team_id", name="uq_bye_week_team"),
    )

    id = Column(Integer, primary_key=True, index=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False, index=True)
    week_number = Column(Integer, nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    points = Column(Float, nullable=False, default=0.0)

    team = relationship("Team")
