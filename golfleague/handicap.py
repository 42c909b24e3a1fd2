"""
Cálculo de hándicap de equipo a partir del historial de vueltas.

Todo es puro: historial + HandicapPolicy + semana objetivo -> número.
La semana 1 y los sustitutos nunca pasan por aquí (hándicap manual).
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from .errors import ValidationError
from .schemas import HandicapPolicy, parse_handicap_policy


@dataclass(frozen=True)
class ScoreHistoryEntry:
    gross: float
    is_sub: bool = False
    week: Optional[int] = None


History = Iterable[Union[ScoreHistoryEntry, float, int]]


def _entries(history: History) -> list[ScoreHistoryEntry]:
    out = []
    for i, h in enumerate(history):
        if isinstance(h, ScoreHistoryEntry):
            out.append(h if h.week is not None else ScoreHistoryEntry(h.gross, h.is_sub, i + 1))
        else:
            out.append(ScoreHistoryEntry(float(h), False, i + 1))
    return out


def valid_scores(entries: Iterable[ScoreHistoryEntry]) -> list[float]:
    """Gross válidos en orden cronológico: sin sustitutos, finitos y > 0."""
    return [
        e.gross for e in entries
        if not e.is_sub and math.isfinite(e.gross) and e.gross > 0
    ]


#---------------------------------------------------------------------------------
# ------------------------------ Selección de vueltas ----------------------------
# --------------------------------------------------------------------------------

def _drop(scores: list[float], count: int, highest: bool) -> list[float]:
    if count <= 0:
        return scores
    order = sorted(range(len(scores)), key=lambda i: scores[i], reverse=highest)
    removed = set(order[:count])
    return [s for i, s in enumerate(scores) if i not in removed]


def select_scores(scores: list[float], policy: HandicapPolicy) -> list[float]:
    """
    Aplica el método de selección y luego descarta los peores / mejores.
    Se mantiene siempre el orden cronológico (lo necesita la ponderación).
    """
    if not scores:
        return []

    selected = list(scores)

    if policy.score_selection == "last_n" and policy.score_count:
        selected = selected[-policy.score_count:]

    elif policy.score_selection == "best_of_last" and policy.best_of and policy.last_of:
        recent = selected[-policy.last_of:]
        keep = min(policy.best_of, len(recent))
        best = set(sorted(range(len(recent)), key=lambda i: recent[i])[:keep])
        selected = [s for i, s in enumerate(recent) if i in best]

    drops = policy.drop_highest + policy.drop_lowest
    if drops and drops >= len(selected):
        return []

    selected = _drop(selected, policy.drop_highest, highest=True)
    selected = _drop(selected, policy.drop_lowest, highest=False)
    return selected


def cap_exceptional_scores(scores: list[float], policy: HandicapPolicy) -> list[float]:
    if not policy.cap_exceptional or policy.exceptional_cap is None:
        return list(scores)
    return [min(s, policy.exceptional_cap) for s in scores]


def weighted_average(scores: list[float], policy: HandicapPolicy) -> float:
    """Media simple, o ponderada weight_recent * weight_decay^edad (edad 0 = la más reciente)."""
    if not scores:
        return 0.0
    if not policy.use_weighting or len(scores) == 1:
        return sum(scores) / len(scores)

    n = len(scores)
    total = 0.0
    weights = 0.0
    for i, s in enumerate(scores):
        w = policy.weight_recent * policy.weight_decay ** (n - 1 - i)
        total += s * w
        weights += w
    if weights == 0:
        return sum(scores) / n
    return total / weights


def trend_adjustment(scores: list[float], policy: HandicapPolicy) -> float:
    """
    Positivo si el equipo mejora (las vueltas recientes son más bajas).
    Con número impar de vueltas la del medio no cuenta.
    """
    if not policy.use_trend or len(scores) < 3:
        return 0.0
    half = len(scores) // 2
    older = scores[:half]
    newer = scores[-half:]
    older_avg = sum(older) / len(older)
    newer_avg = sum(newer) / len(newer)
    return (older_avg - newer_avg) * policy.trend_weight


#---------------------------------------------------------------------------------
# ------------------------------ Redondeo y límites ------------------------------
# --------------------------------------------------------------------------------

def apply_rounding(value: float, mode: str) -> float:
    # quitamos ruido de coma flotante (7 * 0.9 = 6.300000000000001)
    value = round(value, 9)
    if mode == "ceil":
        return float(math.ceil(value))
    if mode == "round":
        return float(math.floor(value + 0.5))
    return float(math.floor(value))


def clamp_handicap(value: float, policy: HandicapPolicy) -> float:
    if policy.max_handicap is not None and value > policy.max_handicap:
        value = policy.max_handicap
    if policy.min_handicap is not None and value < policy.min_handicap:
        value = policy.min_handicap
    return value


def is_provisional(policy: HandicapPolicy, target_week: Optional[int]) -> bool:
    return (
        target_week is not None
        and policy.prov_weeks > 0
        and target_week <= policy.prov_weeks
    )


def calculate_handicap(
    history: History,
    policy: HandicapPolicy,
    target_week: Optional[int] = None,
) -> float:
    """
    Hándicap para `target_week` usando solo el historial recibido
    (que debe contener únicamente semanas anteriores).
    """
    entries = _entries(history)

    if policy.freeze_week is not None and target_week is not None and target_week > policy.freeze_week:
        frozen = [e for e in entries if e.week < policy.freeze_week]
        return calculate_handicap(frozen, policy, policy.freeze_week)

    scores = select_scores(valid_scores(entries), policy)
    if not scores:
        return policy.default_handicap

    scores = cap_exceptional_scores(scores, policy)
    avg = weighted_average(scores, policy)

    raw = (avg - policy.base_score) * policy.multiplier
    raw -= trend_adjustment(scores, policy)

    result = clamp_handicap(apply_rounding(raw, policy.rounding), policy)

    if is_provisional(policy, target_week):
        result = round(result * policy.prov_multiplier, 2)

    return result


#---------------------------------------------------------------------------------
# ------------------------------------ Presets -----------------------------------
# --------------------------------------------------------------------------------

@dataclass(frozen=True)
class HandicapPreset:
    name: str
    label: str
    description: str
    settings: dict = field(default_factory=dict)


HANDICAP_PRESETS = [
    HandicapPreset(
        "simple", "Simple Average",
        "Average of every score, (avg - base) x multiplier, rounded down.",
        {},
    ),
    HandicapPreset(
        "usga_style", "Best of Recent",
        "Best 4 of the last 8 scores with a 0.96 multiplier.",
        {"score_selection": "best_of_last", "best_of": 4, "last_of": 8, "multiplier": 0.96},
    ),
    HandicapPreset(
        "forgiving", "Forgiving",
        "Last 5 scores with the worst one dropped.",
        {"score_selection": "last_n", "score_count": 5, "drop_highest": 1},
    ),
    HandicapPreset(
        "competitive", "Competitive",
        "Every score, recent rounds weighted more heavily.",
        {"use_weighting": True, "weight_recent": 1.3, "weight_decay": 0.95},
    ),
    HandicapPreset(
        "strict", "Strict",
        "Max 18, blow-up rounds capped at 50, improving teams adjusted down.",
        {
            "max_handicap": 18,
            "cap_exceptional": True,
            "exceptional_cap": 50,
            "use_trend": True,
            "trend_weight": 0.15,
        },
    ),
    HandicapPreset(
        "custom", "Custom",
        "Keep the current settings and tune them by hand.",
        {},
    ),
]


def get_preset(name: str) -> Optional[HandicapPreset]:
    return next((p for p in HANDICAP_PRESETS if p.name == name), None)


def apply_preset(name: str, current: Optional[HandicapPolicy] = None) -> HandicapPolicy:
    """
    Los presets parten SIEMPRE de los valores por defecto, no de los actuales.
    "custom" devuelve la política actual tal cual.
    """
    preset = get_preset(name)
    if preset is None:
        raise ValidationError(f"unknown preset '{name}'", field="preset")

    if preset.name == "custom":
        return current if current is not None else HandicapPolicy()

    return parse_handicap_policy(dict(preset.settings))


#---------------------------------------------------------------------------------
# ----------------------------- Explicación paso a paso --------------------------
# --------------------------------------------------------------------------------

def _fmt(x: float) -> str:
    return f"{x:.2f}".rstrip("0").rstrip(".")


def describe_calculation(
    history: History,
    policy: HandicapPolicy,
    target_week: Optional[int] = None,
) -> list[str]:
    """Lista legible de los pasos que lleva al hándicap (para la ficha del equipo)."""
    entries = _entries(history)
    steps = []

    if policy.freeze_week is not None and target_week is not None and target_week > policy.freeze_week:
        steps.append(f"Handicap frozen as of week {policy.freeze_week}")
        entries = [e for e in entries if e.week < policy.freeze_week]
        target_week = policy.freeze_week

    all_scores = valid_scores(entries)
    scores = select_scores(all_scores, policy)
    if not scores:
        steps.append(f"No scores available, using default handicap of {_fmt(policy.default_handicap)}")
        return steps

    if policy.score_selection == "last_n" and policy.score_count:
        steps.append(f"Using last {policy.score_count} scores")
    elif policy.score_selection == "best_of_last" and policy.best_of and policy.last_of:
        steps.append(f"Using best {policy.best_of} of last {policy.last_of} scores")
    else:
        steps.append(f"Using all {len(all_scores)} scores")

    if policy.drop_highest:
        steps.append(f"Dropped {policy.drop_highest} highest score(s)")
    if policy.drop_lowest:
        steps.append(f"Dropped {policy.drop_lowest} lowest score(s)")

    capped = cap_exceptional_scores(scores, policy)
    if capped != scores:
        steps.append(f"Capped exceptional scores at {_fmt(policy.exceptional_cap)}")

    avg = weighted_average(capped, policy)
    if policy.use_weighting and len(capped) > 1:
        steps.append(
            f"Weighted average (recent {_fmt(policy.weight_recent)}, decay {_fmt(policy.weight_decay)}): {_fmt(avg)}"
        )
    else:
        steps.append(f"Simple average of {len(capped)} score(s): {_fmt(avg)}")

    raw = (avg - policy.base_score) * policy.multiplier
    steps.append(
        f"Formula: ({_fmt(avg)} - {_fmt(policy.base_score)}) x {_fmt(policy.multiplier)} = {_fmt(raw)}"
    )

    adj = trend_adjustment(capped, policy)
    if adj:
        raw -= adj
        steps.append(f"Trend adjustment: {_fmt(-adj)} -> {_fmt(raw)}")

    rounded = apply_rounding(raw, policy.rounding)
    steps.append(f"Rounded ({policy.rounding}): {_fmt(rounded)}")

    clamped = clamp_handicap(rounded, policy)
    if clamped != rounded:
        bound = "maximum" if clamped < rounded else "minimum"
        steps.append(f"Capped at {bound} of {_fmt(clamped)}")

    if is_provisional(policy, target_week):
        final = round(clamped * policy.prov_multiplier, 2)
        steps.append(f"Provisional week x {_fmt(policy.prov_multiplier)}: {_fmt(final)}")

    return steps
