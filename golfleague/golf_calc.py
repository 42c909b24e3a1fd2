import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import ValidationError
from .schemas import ScoringPolicy

logger = logging.getLogger(__name__)

MATCH_POINT_POOL = 20
TIE_EPSILON = 0.05


def round_half_up(value: float, decimals: int = 0) -> float:
    if not math.isfinite(value):
        return value
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def scores_tied(a: float, b: float) -> bool:
    return abs(a - b) < TIE_EPSILON


#---------------------------------------------------------------------------------
# ------------------------------------- Neto -------------------------------------
# --------------------------------------------------------------------------------

def calculate_net_score(gross: float, handicap: float) -> float:
    # sin suelo: un neto negativo es válido
    return round_half_up(gross - handicap, 1)


#---------------------------------------------------------------------------------
# ---------------------------------- Match play ----------------------------------
# --------------------------------------------------------------------------------

def suggest_match_points(net_a: float, net_b: float) -> tuple[float, float]:
    """
    Reparto sugerido de los 20 puntos (el admin lo puede cambiar).
    Empate -> 10/10. Si no, el ganador se lleva 11 + margen, con tope 16:
    1 golpe 12/8, 4 golpes 15/5, 10 golpes 16/4.
    """
    if not (math.isfinite(net_a) and math.isfinite(net_b)):
        logger.warning("Non-finite net scores (%s, %s), suggesting an even split", net_a, net_b)
        return 10.0, 10.0

    if scores_tied(net_a, net_b):
        return 10.0, 10.0

    margin = round_half_up(abs(net_a - net_b))
    winner = float(min(16, 11 + margin))
    loser = MATCH_POINT_POOL - winner
    if net_a < net_b:
        return winner, loser
    return loser, winner


def validate_match_points(points_a: float, points_b: float) -> None:
    """Un resultado aceptado siempre suma exactamente 20."""
    for name, value in (("team_a_points", points_a), ("team_b_points", points_b)):
        if not math.isfinite(value) or value < 0:
            raise ValidationError("points must be a non-negative number", field=name)
    if abs(points_a + points_b - MATCH_POINT_POOL) > 1e-9:
        raise ValidationError(
            f"points must add up to {MATCH_POINT_POOL} (got {points_a:g} + {points_b:g})",
            field="points",
        )


def match_outcome(points_a: float, points_b: float) -> str:
    """"a", "b" o "tie" según quién se llevó más puntos."""
    if points_a > points_b:
        return "a"
    if points_b > points_a:
        return "b"
    return "tie"


#---------------------------------------------------------------------------------
# ---------------------------------- Stroke play ---------------------------------
# --------------------------------------------------------------------------------

BASE_SCALES = {
    "weighted": [15, 12, 10, 8, 6, 5, 4, 3, 2, 1],
    "pga_style": [25, 20, 16, 13, 10, 8, 6, 4, 3, 2, 1],
}


def generate_point_scale(preset: str, team_count: int) -> list[float]:
    """linear: n..1; weighted / pga_style: tabla fija y luego 1 punto."""
    if team_count <= 0:
        return []
    base = BASE_SCALES.get(preset)
    if base is None:
        return [float(team_count - i) for i in range(team_count)]
    scale = base[:team_count] + [1] * max(0, team_count - len(base))
    return [float(p) for p in scale]


def resolve_point_scale(
    policy: ScoringPolicy,
    playing_count: int,
    custom: Optional[Iterable[float]] = None,
) -> list[float]:
    """
    Escala efectiva para una semana: la personalizada si existe, si no la del preset.
    Si tiene menos posiciones que equipos jugando se rellena con ceros.
    """
    if custom is None:
        custom = policy.point_scale
    scale = list(custom) if custom else generate_point_scale(policy.point_preset, playing_count)
    if len(scale) < playing_count:
        logger.warning(
            "Point scale has %d entries but %d teams are playing, padding with zeros",
            len(scale), playing_count,
        )
        scale += [0.0] * (playing_count - len(scale))
    return scale


@dataclass(frozen=True)
class StrokePlayEntry:
    team_id: int
    net_score: float
    gross_score: float = 0.0
    is_dnp: bool = False


@dataclass(frozen=True)
class StrokePlayResult:
    team_id: int
    position: int  # 0 = DNP
    points: float
    bonus_points: float

    @property
    def total_points(self) -> float:
        return self.points + self.bonus_points


def calculate_stroke_play_points(
    entries: list[StrokePlayEntry],
    scale: list[float],
    policy: ScoringPolicy,
    base_score: float,
) -> list[StrokePlayResult]:
    """
    Reparte puntos por posición (neto más bajo = 1º).

    - Empates (|Δ| < 0.05) comparten posición.
      split: media de los huecos que ocupan; same: el valor del mejor hueco.
    - Bonus solo para quien juega: bonus_show siempre, bonus_beat si neto < base.
    - DNP: dnp_points + dnp_penalty, posición 0, sin bonus.
    """
    playing = sorted((e for e in entries if not e.is_dnp), key=lambda e: e.net_score)
    slots = list(scale) + [0.0] * max(0, len(playing) - len(scale))

    results = {}
    i = 0
    while i < len(playing):
        group = [playing[i]]
        j = i + 1
        while j < len(playing) and scores_tied(playing[j].net_score, playing[i].net_score):
            group.append(playing[j])
            j += 1

        occupied = slots[i:j]
        if policy.tie_mode == "same":
            points = float(occupied[0])
        else:
            points = sum(occupied) / len(occupied)

        for e in group:
            bonus = policy.bonus_show
            if e.net_score < base_score:
                bonus += policy.bonus_beat
            results[e.team_id] = StrokePlayResult(e.team_id, i + 1, points, float(bonus))
        i = j

    for e in entries:
        if e.is_dnp:
            results[e.team_id] = StrokePlayResult(
                e.team_id, 0, float(policy.dnp_points + policy.dnp_penalty), 0.0
            )

    return [results[e.team_id] for e in entries]


def weeks_played(records) -> dict[int, int]:
    """Semanas jugadas (no DNP) por equipo, para el prorrateo."""
    counts = {}
    for r in records:
        counts.setdefault(r.team_id, 0)
        if not r.is_dnp:
            counts[r.team_id] += 1
    return counts


def dnp_counts(records) -> dict[int, int]:
    counts = {}
    for r in records:
        counts.setdefault(r.team_id, 0)
        if r.is_dnp:
            counts[r.team_id] += 1
    return counts


#---------------------------------------------------------------------------------
# -------------------------------------- Bye -------------------------------------
# --------------------------------------------------------------------------------

def calculate_bye_points(
    policy: ScoringPolicy,
    week_match_points: Iterable[tuple[float, float]] = (),
    team_match_points: Iterable[float] = (),
) -> float:
    """
    Puntos para un equipo sin rival esa semana.

    week_match_points: (puntos A, puntos B) de los partidos de esa misma semana.
    team_match_points: puntos del propio equipo en sus partidos de la temporada.
    """
    mode = policy.bye_points_mode
    if mode == "zero":
        return 0.0
    if mode == "flat":
        return float(policy.bye_points_flat)
    if mode == "league_average":
        matches = list(week_match_points)
        if not matches:
            return 0.0
        total = sum(a + b for a, b in matches)
        return round_half_up(total / (len(matches) * 2), 1)
    if mode == "team_average":
        pts = list(team_match_points)
        if not pts:
            return 0.0
        return round_half_up(sum(pts) / len(pts), 1)
    raise ValidationError(f"unknown bye points mode '{mode}'", field="bye_points_mode")
