# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Composite financial health score (0-100).

Four dimensions are scored independently with threshold buckets, each
clamped to [0, 100], then averaged with fixed weights:

    rentabilite 0.30   EBE margin, net margin, gross margin
    liquidite   0.25   BFR in days, customer and supplier delays, stock rotation
    solvabilite 0.25   debt ratio, self-financing capacity
    activite    0.20   trend, revenue and EBE evolution

A ratio that could not be computed contributes no points.
"""

from dataclasses import dataclass
from typing import Optional

from .ratios import RatioSet
from .trends import TrendEvaluation

WEIGHTS: dict[str, float] = {
    "rentabilite": 0.30,
    "liquidite": 0.25,
    "solvabilite": 0.25,
    "activite": 0.20,
}

_INTERPRETATIONS: tuple[tuple[int, str], ...] = (
    (
        80,
        "Excellente santé financière. L'entreprise présente de solides "
        "performances et une structure financière robuste.",
    ),
    (
        60,
        "Bonne santé financière. L'entreprise est performante avec quelques "
        "points d'amélioration possibles.",
    ),
    (
        40,
        "Santé financière moyenne. Vigilance requise sur certains indicateurs.",
    ),
    (
        20,
        "Santé financière fragile. Risques identifiés nécessitant une "
        "attention particulière.",
    ),
    (
        0,
        "Situation financière critique. Risques majeurs identifiés.",
    ),
)


@dataclass(frozen=True)
class HealthScore:
    overall: int
    breakdown: dict[str, int]
    interpretation: str


def _bucket(value: Optional[float], table: tuple[tuple[float, int], ...]) -> int:
    """Points of the first (threshold, points) pair with value >= threshold."""
    if value is None:
        return 0
    for threshold, points in table:
        if value >= threshold:
            return points
    return 0


def _clamp(score: float) -> int:
    return int(round(max(0.0, min(100.0, score))))


def score_rentabilite(ratios: RatioSet) -> int:
    score = 0
    score += _bucket(
        ratios.get("marge_ebe_pct"), ((15, 40), (10, 30), (5, 20), (0, 10))
    )
    score += _bucket(
        ratios.get("marge_nette_pct"), ((8, 40), (5, 30), (2, 20), (0, 10))
    )
    score += _bucket(
        ratios.get("marge_brute_pct"), ((50, 20), (30, 15), (15, 10), (0, 5))
    )
    return _clamp(score)


def score_liquidite(ratios: RatioSet) -> int:
    score = 50

    bfr = ratios.get("bfr_jours_ca")
    if bfr is not None:
        if bfr < 0:
            score += 30
        elif bfr < 30:
            score += 20
        elif bfr < 60:
            score += 10
        else:
            score -= 10

    clients = ratios.get("delai_clients_jours")
    if clients is not None and clients > 0:
        if clients <= 30:
            score += 20
        elif clients <= 60:
            score += 10
        else:
            score -= 10

    suppliers = ratios.get("delai_fournisseurs_jours")
    if suppliers is not None and suppliers > 0:
        score += _bucket(suppliers, ((60, 20), (45, 15), (30, 10)))

    rotation = ratios.get("rotation_stocks_jours")
    if rotation is not None and rotation > 0:
        if rotation <= 30:
            score += 10
        elif rotation <= 60:
            score += 5

    return _clamp(score)


def score_solvabilite(ratios: RatioSet) -> int:
    score = 50

    debt = ratios.get("taux_endettement_pct")
    if debt is not None:
        if debt <= 50:
            score += 40
        elif debt <= 100:
            score += 30
        elif debt <= 150:
            score += 15
        elif debt <= 200:
            score += 5
        else:
            score -= 20

    caf = ratios.get("capacite_autofinancement")
    if caf is not None:
        if caf > 50000:
            score += 40
        elif caf > 20000:
            score += 30
        elif caf > 0:
            score += 15
        else:
            score -= 10

    return _clamp(score)


def score_activite(trend: TrendEvaluation) -> int:
    score = 50

    if trend.tendance == "croissance":
        score += 40
    elif trend.tendance == "stable":
        score += 20
    else:
        score -= 20

    ca = trend.ca_evolution_pct
    if ca > 20:
        score += 30
    elif ca > 10:
        score += 20
    elif ca > 5:
        score += 15
    elif ca > 0:
        score += 10
    elif ca < -10:
        score -= 20

    ebe = trend.ebe_evolution_pct
    if ebe > 20:
        score += 30
    elif ebe > 10:
        score += 20
    elif ebe > 0:
        score += 10
    elif ebe < -10:
        score -= 20

    return _clamp(score)


def interpret(overall: int) -> str:
    for threshold, text in _INTERPRETATIONS:
        if overall >= threshold:
            return text
    return _INTERPRETATIONS[-1][1]


def compute_health_score(ratios: RatioSet, trend: TrendEvaluation) -> HealthScore:
    """Score the four dimensions and combine them with WEIGHTS."""
    breakdown = {
        "rentabilite": score_rentabilite(ratios),
        "liquidite": score_liquidite(ratios),
        "solvabilite": score_solvabilite(ratios),
        "activite": score_activite(trend),
    }
    overall = _clamp(sum(breakdown[k] * w for k, w in WEIGHTS.items()))
    return HealthScore(
        overall=overall,
        breakdown=breakdown,
        interpretation=interpret(overall),
    )


def empty_health_score(
    reason: str = "Données insuffisantes pour calculer le score.",
) -> HealthScore:
    """Health score of a session without usable accounting data."""
    return HealthScore(
        overall=0,
        breakdown={key: 0 for key in WEIGHTS},
        interpretation=reason,
    )
