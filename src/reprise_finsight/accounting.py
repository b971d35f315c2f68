# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Accounting stage of Reprise FinSight.

Runs, in order:

1. extraction of the fiscal documents into per-year records,
2. the SIG cascade of every year,
3. the EBE normalization of the latest year,
4. the ratios of the latest year,
5. the multi-year trend,
6. the sector benchmark,
7. the health score,
8. the accounting alerts (rentabilite, tresorerie, endettement, activite).

A session without any usable accounting document does not raise: it yields
a minimal output with a zero health score and a critical alert so that the
downstream stages can still run in degraded mode.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from .benchmark import SectorBenchmark, compare_to_sector
from .config import AnalysisSettings, ReferenceTables
from .extraction import ExtractionResult, FiscalYearRecord, extract_fiscal_years
from .health import HealthScore, compute_health_score, empty_health_score
from .models import (
    SEVERITY_RANK,
    Alert,
    Anomaly,
    BusinessInfo,
    FiscalDocument,
    UserOverrides,
)
from .ratios import RatioSet, build_ratio_variables, compute_ratios
from .retraitement import EbeRetraitement, compute_retraitement
from .sig import SIGRecord, compute_sig_series
from .trends import TrendEvaluation, analyze_trends

LOGGER = logging.getLogger(__name__)

NO_DOCUMENT_MESSAGE = "Aucun document comptable fourni"


@dataclass(frozen=True)
class AccountingOutput:
    """
    Everything the Accounting Engine produces for one session.

    Attributes
    ----------
    years_analyzed :
        Fiscal years with extracted figures, ascending.
    sig :
        SIG cascade per year.
    retraitement :
        Normalized EBE of the latest year (None without data).
    ratios :
        Ratios of the latest year (None without data).
    trend :
        Evolution between the earliest and the latest year.
    benchmark :
        Latest-year ratios against the sector averages (None without data).
    health :
        Composite health score.
    alerts :
        Accounting alerts, most severe first.
    anomalies :
        Extraction and calculation problems.
    limitations :
        Reasons why the analysis is less reliable.
    extraction :
        Raw extraction result (records per year).
    """

    years_analyzed: tuple[int, ...]
    sig: dict[int, SIGRecord]
    retraitement: Optional[EbeRetraitement]
    ratios: Optional[RatioSet]
    trend: TrendEvaluation
    benchmark: Optional[SectorBenchmark]
    health: HealthScore
    alerts: tuple[Alert, ...] = ()
    anomalies: tuple[Anomaly, ...] = ()
    limitations: tuple[str, ...] = ()
    extraction: Optional[ExtractionResult] = field(default=None, repr=False)

    @property
    def has_data(self) -> bool:
        return bool(self.years_analyzed)

    @property
    def latest_year(self) -> Optional[int]:
        return self.years_analyzed[-1] if self.years_analyzed else None

    @property
    def latest_sig(self) -> Optional[SIGRecord]:
        if not self.years_analyzed:
            return None
        return self.sig[self.years_analyzed[-1]]

    @property
    def records(self) -> tuple[FiscalYearRecord, ...]:
        return self.extraction.records if self.extraction is not None else ()

    @property
    def latest_record(self) -> Optional[FiscalYearRecord]:
        records = self.records
        return records[-1] if records else None


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


def accounting_alerts(
    ratios: RatioSet,
    trend: TrendEvaluation,
    benchmark: Optional[SectorBenchmark],
) -> tuple[Alert, ...]:
    """Threshold alerts on the latest-year ratios and the trend."""
    alerts: list[Alert] = []

    marge_ebe = ratios.get("marge_ebe_pct")
    if marge_ebe is not None and marge_ebe < 0:
        alerts.append(
            Alert(
                level="critical",
                category="rentabilite",
                message=f"EBE négatif : marge EBE de {marge_ebe:.1f}%",
                impact="L'exploitation ne couvre pas ses charges courantes",
                recommendation="Identifier les postes de charges à réduire",
            )
        )

    marge_nette = ratios.get("marge_nette_pct")
    if marge_nette is not None and marge_nette < 0:
        alerts.append(
            Alert(
                level="critical",
                category="rentabilite",
                message=f"Résultat net déficitaire : marge nette de {marge_nette:.1f}%",
                impact="L'entreprise détruit de la valeur",
                recommendation="Analyser les charges financières et exceptionnelles",
            )
        )

    endettement = ratios.get("taux_endettement_pct")
    if endettement is not None and endettement > 200:
        alerts.append(
            Alert(
                level="critical",
                category="endettement",
                message=f"Taux d'endettement élevé : {endettement:.0f}% des capitaux propres",
                impact="Capacité d'emprunt du repreneur réduite",
                recommendation="Vérifier les dettes reprises lors de la cession",
            )
        )

    if benchmark is not None:
        for comparison in benchmark.comparisons:
            if comparison.position != "inferieur":
                continue
            category = (
                "tresorerie" if comparison.ratio.endswith("_jours") else "rentabilite"
            )
            if comparison.ratio == "taux_endettement_pct":
                category = "endettement"
            alerts.append(
                Alert(
                    level="warning",
                    category=category,
                    message=(
                        f"{comparison.label} inférieur(e) au secteur : "
                        f"{comparison.value:g} contre {comparison.sector_average:g} "
                        f"({comparison.deviation_pct:+.1f}%)"
                    ),
                    impact="Performance en retrait par rapport aux entreprises du secteur",
                    recommendation="Comprendre l'origine de l'écart avec le secteur",
                )
            )

    if trend.tendance == "declin":
        alerts.append(
            Alert(
                level="warning",
                category="activite",
                message=f"Chiffre d'affaires en baisse de {abs(trend.ca_evolution_pct):.1f}%",
                impact="Activité en perte de vitesse",
                recommendation="Identifier les causes de la baisse d'activité",
            )
        )
    elif trend.ca_evolution_pct > 15:
        alerts.append(
            Alert(
                level="info",
                category="activite",
                message=(
                    "Forte croissance du chiffre d'affaires : "
                    f"+{trend.ca_evolution_pct:.1f}%"
                ),
            )
        )

    return tuple(sorted(alerts, key=lambda a: SEVERITY_RANK.get(a.level, 3)))


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


def degraded_output(
    reason: str = NO_DOCUMENT_MESSAGE,
    extraction: Optional[ExtractionResult] = None,
) -> AccountingOutput:
    """Minimal output of a session without usable accounting figures."""
    return AccountingOutput(
        years_analyzed=(),
        sig={},
        retraitement=None,
        ratios=None,
        trend=analyze_trends({}),
        benchmark=None,
        health=empty_health_score(),
        alerts=(
            Alert(
                level="critical",
                category="activite",
                message=reason,
                impact="Aucune analyse financière possible",
                recommendation=(
                    "Fournir les bilans et comptes de résultat des 3 derniers exercices"
                ),
            ),
        ),
        anomalies=extraction.anomalies if extraction is not None else (),
        limitations=(reason,),
        extraction=extraction,
    )


def analyze_records(
    extraction: ExtractionResult,
    business: BusinessInfo,
    overrides: Optional[UserOverrides],
    tables: ReferenceTables,
    settings: AnalysisSettings,
) -> AccountingOutput:
    """Run the accounting computations on already-extracted records."""
    if not extraction.records:
        return degraded_output(extraction=extraction)

    # 1) SIG of every year
    sig = compute_sig_series(extraction.records)
    years = tuple(sig)
    latest_record = extraction.records[-1]
    latest_sig = sig[latest_record.year]

    anomalies = list(extraction.anomalies)
    for record in sig.values():
        for warning in record.warnings:
            anomalies.append(
                Anomaly(
                    type="donnee_manquante",
                    severity="warning",
                    description=f"{record.year} : {warning}",
                    values={"year": record.year},
                )
            )

    # 2) EBE normalization (latest year)
    retraitement = compute_retraitement(latest_record, latest_sig, overrides)

    # 3) Ratios (latest year)
    variables = build_ratio_variables(latest_record, latest_sig, settings.vat_rate)
    ratios = compute_ratios(variables, tables.ratio_rules, latest_record.year)

    # 4) Trend, benchmark, health
    trend = analyze_trends(sig)
    benchmark = compare_to_sector(
        ratios,
        business.sector_activity_code,
        tables.sector_benchmarks,
        settings.benchmark_band_pct,
    )
    health = compute_health_score(ratios, trend)

    limitations: list[str] = []
    if len(years) < 3:
        limitations.append(
            f"Seulement {len(years)} exercice(s) disponible(s) : "
            "l'analyse de tendance est moins fiable."
        )
    limitations.extend(benchmark.limitations)
    if latest_sig.missing:
        limitations.append(
            f"Postes non trouvés pour {latest_sig.year} : {', '.join(latest_sig.missing)}"
        )

    return AccountingOutput(
        years_analyzed=years,
        sig=sig,
        retraitement=retraitement,
        ratios=ratios,
        trend=trend,
        benchmark=benchmark,
        health=health,
        alerts=accounting_alerts(ratios, trend, benchmark),
        anomalies=tuple(anomalies),
        limitations=tuple(limitations),
        extraction=extraction,
    )


def run_accounting(
    documents: Sequence[FiscalDocument],
    business: BusinessInfo,
    overrides: Optional[UserOverrides],
    tables: ReferenceTables,
    settings: AnalysisSettings,
) -> AccountingOutput:
    """
    Run the whole Accounting Engine on a set of extracted documents.

    An empty document set, or one without any dated accounting document,
    returns the degraded output instead of raising.
    """
    if not documents:
        LOGGER.warning("No fiscal document supplied, accounting runs degraded")
        return degraded_output()

    extraction = extract_fiscal_years(documents)
    if not extraction.records:
        LOGGER.warning(
            "No usable accounting document, accounting runs degraded",
            extra={"documents": len(documents)},
        )
        return degraded_output(
            "Aucune donnée comptable exploitable dans les documents fournis",
            extraction,
        )

    output = analyze_records(extraction, business, overrides, tables, settings)
    LOGGER.info(
        "Accounting analysis completed",
        extra={
            "years": list(output.years_analyzed),
            "health": output.health.overall,
            "alerts": len(output.alerts),
        },
    )
    return output
