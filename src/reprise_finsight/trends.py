# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""Multi-year evolution of revenue, EBE and net result."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Optional

from .sig import SIGRecord

# Revenue evolution beyond which the trend is no longer "stable".
TREND_THRESHOLD_PCT = 5.0


@dataclass(frozen=True)
class TrendEvaluation:
    """
    Evolution between the earliest and the latest available year.

    Attributes
    ----------
    years :
        Years analyzed, ascending.
    ca_evolution_pct, ebe_evolution_pct, rn_evolution_pct :
        Evolution of revenue, EBE and net result (percent, 1 decimal).
    tendance :
        'croissance', 'stable' or 'declin' (driven by revenue).
    yearly_growth :
        Revenue growth of each year against the previous one.
    commentaire :
        One-sentence French summary.
    """

    years: tuple[int, ...]
    ca_evolution_pct: float
    ebe_evolution_pct: float
    rn_evolution_pct: float
    tendance: str
    yearly_growth: dict[int, Optional[float]] = field(default_factory=dict)
    commentaire: str = ""

    @property
    def first_year(self) -> Optional[int]:
        return self.years[0] if self.years else None

    @property
    def last_year(self) -> Optional[int]:
        return self.years[-1] if self.years else None


def evolution_pct(first: float, last: float) -> float:
    """
    Relative evolution from `first` to `last`, in percent (1 decimal).

    A zero starting value gives 100 when the last value is positive, else 0.
    """
    if first == 0:
        return 100.0 if last > 0 else 0.0
    return round((last - first) / abs(first) * 100, 1)


def _fmt(pct: float) -> str:
    return f"{pct:+.1f}%"


def analyze_trends(sig_by_year: Mapping[int, SIGRecord]) -> TrendEvaluation:
    """Compare the earliest and the latest SIG records."""
    years = tuple(sorted(sig_by_year))

    if not years:
        return TrendEvaluation(
            years=(),
            ca_evolution_pct=0.0,
            ebe_evolution_pct=0.0,
            rn_evolution_pct=0.0,
            tendance="stable",
            commentaire="Aucune donnée SIG disponible.",
        )

    if len(years) == 1:
        return TrendEvaluation(
            years=years,
            ca_evolution_pct=0.0,
            ebe_evolution_pct=0.0,
            rn_evolution_pct=0.0,
            tendance="stable",
            yearly_growth={years[0]: None},
            commentaire=(
                f"Une seule année disponible ({years[0]}) : "
                "évolution impossible à calculer."
            ),
        )

    first = sig_by_year[years[0]]
    last = sig_by_year[years[-1]]

    ca_evo = evolution_pct(first.chiffre_affaires, last.chiffre_affaires)
    ebe_evo = evolution_pct(first.ebe, last.ebe)
    rn_evo = evolution_pct(first.resultat_net, last.resultat_net)

    if ca_evo > TREND_THRESHOLD_PCT:
        tendance = "croissance"
    elif ca_evo < -TREND_THRESHOLD_PCT:
        tendance = "declin"
    else:
        tendance = "stable"

    yearly_growth: dict[int, Optional[float]] = {years[0]: None}
    for previous, current in zip(years, years[1:]):
        yearly_growth[current] = evolution_pct(
            sig_by_year[previous].chiffre_affaires,
            sig_by_year[current].chiffre_affaires,
        )

    periode = f"{years[0]}-{years[-1]}"
    figures = f"CA {_fmt(ca_evo)}, EBE {_fmt(ebe_evo)}, RN {_fmt(rn_evo)}"
    if tendance == "croissance":
        commentaire = f"Croissance soutenue sur {periode} : {figures}."
    elif tendance == "declin":
        commentaire = f"Déclin sur {periode} : {figures}."
    else:
        commentaire = f"Activité stable sur {periode} : {figures}."

    return TrendEvaluation(
        years=years,
        ca_evolution_pct=ca_evo,
        ebe_evolution_pct=ebe_evo,
        rn_evolution_pct=rn_evo,
        tendance=tendance,
        yearly_growth=yearly_growth,
        commentaire=commentaire,
    )
