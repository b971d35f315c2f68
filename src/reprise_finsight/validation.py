# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Validation stage of Reprise FinSight.

The Validation Engine reads the outputs of the three previous stages and
produces:

1. Coherence checks
   ----------------
   Cross-stage equality and tolerance tests (revenue of the documents vs
   SIG revenue, SIG EBE vs the EBE the valuation started from, health score
   vs preferred valuation method...). Each check is 'ok', 'warning' or
   'error'. Inconsistencies are reported, never raised.

2. Anomalies
   ---------
   Threshold rules over the documents, the SIG, the ratios, the valuation
   methods and the rent.

3. Confidence score
   ----------------
   completeness (35 %), reliability (40 %) and recency (25 %), each 0-100.
   A session without any document scores 0 with a blocking point.

4. Deterministic alerts
   --------------------
   The rule engine of :mod:`reprise_finsight.alerts` applied to a metric
   snapshot of the state, plus the "points de vigilance" summary.

Every function here is pure: the same inputs always give the same output.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from .accounting import AccountingOutput
from .alerts import (
    DeterministicAlert,
    build_metric_snapshot,
    evaluate_alerts,
    points_vigilance,
)
from .config import AlertRule
from .errors import CalculationError, CrossStageInconsistencyError
from .extraction import normalize_label, parse_amount
from .models import SEVERITY_RANK, Anomaly, FiscalDocument
from .real_estate import RealEstateOutput
from .valuation import ValuationSynthesis

LOGGER = logging.getLogger(__name__)

CONFIDENCE_WEIGHTS: dict[str, float] = {
    "completeness": 0.35,
    "reliability": 0.40,
    "recency": 0.25,
}

# Age of the latest fiscal year (reference year - latest year) -> points.
RECENCY_POINTS: dict[int, int] = {0: 100, 1: 90, 2: 70, 3: 50, 4: 30}
RECENCY_FLOOR = 10

# Relative tolerances (percent) of the coherence checks.
REVENUE_ERROR_PCT = 10.0
REVENUE_WARNING_PCT = 2.0
EBE_TOLERANCE_PCT = 5.0
CA_TOLERANCE_PCT = 5.0

# Cascade identity tolerance (euros).
CASCADE_TOLERANCE = 1.0


@dataclass(frozen=True)
class CoherenceCheck:
    name: str
    status: str
    details: str
    sources: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfidenceScore:
    """
    Overall trust in the analysis.

    Attributes
    ----------
    overall :
        Weighted average of the three sub-scores, 0-100.
    completeness, reliability, recency :
        Sub-scores, 0-100.
    breakdown :
        Per-stage availability score ('extraction', 'comptabilite',
        'valorisation', 'immobilier'), 0-100.
    points_bloquants :
        Problems that prevent a meaningful analysis.
    """

    overall: int
    completeness: int
    reliability: int
    recency: int
    breakdown: dict[str, int]
    points_bloquants: tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationOutput:
    coherence_checks: tuple[CoherenceCheck, ...]
    anomalies: tuple[Anomaly, ...]
    confidence: ConfidenceScore
    alerts: tuple[DeterministicAlert, ...]
    points_vigilance: tuple[str, ...] = ()
    metrics: dict[str, object] = field(default_factory=dict, repr=False)

    def count(self, status: str) -> int:
        return sum(1 for c in self.coherence_checks if c.status == status)


# ---------------------------------------------------------------------------
# Coherence checks
# ---------------------------------------------------------------------------


def _deviation_pct(value: float, reference: float) -> float:
    return abs(value - reference) / abs(reference) * 100


def reported_revenue(
    documents: Sequence[FiscalDocument], year: int
) -> Optional[float]:
    """
    Revenue line found in the raw tables of the documents of `year`.

    Only table rows are scanned, so that a key figure picked by the
    extractor can be checked against the statement it came from.
    """
    for document in documents:
        if not document.is_accounting or document.year != year:
            continue
        for table in document.tables:
            for row in table:
                if len(row) < 2:
                    continue
                label = normalize_label(row[0])
                if "chiffre" not in label or "affaires" not in label:
                    continue
                try:
                    amount = parse_amount(row[1])
                except CalculationError:
                    continue
                if amount is not None and amount > 0:
                    return amount
    return None


def _tolerance_check(
    name: str,
    value: float,
    reference: float,
    error_pct: Optional[float],
    warning_pct: Optional[float],
    what: str,
    sources: tuple[str, ...],
) -> CoherenceCheck:
    deviation = _deviation_pct(value, reference)
    if error_pct is not None and deviation > error_pct:
        status = "error"
    elif warning_pct is not None and deviation > warning_pct:
        status = "warning"
    else:
        return CoherenceCheck(
            name=name,
            status="ok",
            details=f"{what} cohérent ({value:,.0f} € / {reference:,.0f} €)",
            sources=sources,
        )

    problem = CrossStageInconsistencyError(
        f"{what} : écart de {deviation:.1f}% ({value:,.0f} € contre {reference:,.0f} €)"
    )
    return CoherenceCheck(
        name=name, status=status, details=str(problem), sources=sources
    )


def coherence_checks(
    documents: Sequence[FiscalDocument],
    accounting: Optional[AccountingOutput],
    valuation: Optional[ValuationSynthesis],
) -> tuple[CoherenceCheck, ...]:
    """
    Run the cross-stage checks, in a fixed order.

    Checks that do not apply (no reported revenue, no valuation...) are
    omitted rather than reported as 'ok'.
    """
    checks: list[CoherenceCheck] = []

    # 1) Documents present
    if documents:
        checks.append(
            CoherenceCheck(
                "presence_documents",
                "ok",
                f"{len(documents)} document(s) fourni(s)",
                ("extraction",),
            )
        )
    else:
        checks.append(
            CoherenceCheck(
                "presence_documents",
                "error",
                "Aucun document fourni",
                ("extraction",),
            )
        )

    # 2) Accounting present
    if accounting is not None and accounting.has_data:
        checks.append(
            CoherenceCheck(
                "presence_comptabilite",
                "ok",
                f"Analyse comptable disponible "
                f"({len(accounting.years_analyzed)} exercice(s))",
                ("comptabilite",),
            )
        )
    else:
        checks.append(
            CoherenceCheck(
                "presence_comptabilite",
                "error",
                "Analyse comptable non disponible",
                ("comptabilite",),
            )
        )
        return tuple(checks)

    # 3) Years consistency
    document_years = sorted(
        {d.year for d in documents if d.is_accounting and d.year is not None}
    )
    not_analyzed = [y for y in document_years if y not in accounting.years_analyzed]
    if not_analyzed:
        checks.append(
            CoherenceCheck(
                "coherence_annees",
                "warning",
                "Exercices présents dans les documents mais non analysés : "
                + ", ".join(str(y) for y in not_analyzed),
                ("extraction", "comptabilite"),
            )
        )
    else:
        checks.append(
            CoherenceCheck(
                "coherence_annees",
                "ok",
                "Exercices analysés : "
                + ", ".join(str(y) for y in accounting.years_analyzed),
                ("extraction", "comptabilite"),
            )
        )

    latest = accounting.latest_sig

    # 4) Reported revenue vs SIG revenue
    reported = reported_revenue(documents, latest.year)
    if reported is not None:
        checks.append(
            _tolerance_check(
                "coherence_ca_extraction_sig",
                latest.chiffre_affaires,
                reported,
                REVENUE_ERROR_PCT,
                REVENUE_WARNING_PCT,
                "CA des SIG vs CA des documents",
                ("extraction", "comptabilite"),
            )
        )

    # 5) Reported EBE vs SIG EBE
    reported_ebe = latest.reported.get("ebe")
    if reported_ebe:
        checks.append(
            _tolerance_check(
                "coherence_ebe_document_sig",
                latest.ebe,
                reported_ebe,
                None,
                EBE_TOLERANCE_PCT,
                "EBE calculé vs EBE déclaré",
                ("extraction", "comptabilite"),
            )
        )

    if valuation is None:
        return tuple(checks)

    # 6) SIG EBE vs the accounting EBE the valuation started from. Skipped
    # when that figure is a multi-year average.
    averaged_ebe = (
        accounting.retraitement is None and len(accounting.years_analyzed) >= 3
    )
    if latest.ebe > 0 and not averaged_ebe:
        checks.append(
            _tolerance_check(
                "coherence_ebe_comptabilite_valorisation",
                valuation.ebe_comptable_reference,
                latest.ebe,
                EBE_TOLERANCE_PCT,
                None,
                "EBE de la valorisation vs EBE des SIG",
                ("comptabilite", "valorisation"),
            )
        )

    # 7) SIG revenue vs valuation revenue reference
    if latest.chiffre_affaires > 0 and valuation.ca_reference > 0:
        checks.append(
            _tolerance_check(
                "coherence_ca_comptabilite_valorisation",
                valuation.ca_reference,
                latest.chiffre_affaires,
                None if valuation.ca_averaged else CA_TOLERANCE_PCT,
                CA_TOLERANCE_PCT if valuation.ca_averaged else None,
                "CA de référence de la valorisation vs CA des SIG",
                ("comptabilite", "valorisation"),
            )
        )

    # 8) Health score vs preferred method
    health = accounting.health.overall
    method = valuation.preferred_method
    if health < 40 and method == "ebe":
        status, details = (
            "warning",
            f"Score de santé faible ({health}/100) mais valorisation par l'EBE "
            "retenue : vérifier la pertinence",
        )
    elif health >= 70 and method == "patrimoniale":
        status, details = (
            "warning",
            f"Bonne santé financière ({health}/100) mais valorisation "
            "patrimoniale retenue : vérifier la pertinence",
        )
    else:
        status, details = (
            "ok",
            f"Méthode '{method}' cohérente avec le score de santé ({health}/100)",
        )
    checks.append(
        CoherenceCheck(
            "coherence_sante_valorisation",
            status,
            details,
            ("comptabilite", "valorisation"),
        )
    )

    return tuple(checks)


# ---------------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------------


def _document_anomalies(
    documents: Sequence[FiscalDocument],
    accounting: Optional[AccountingOutput],
) -> list[Anomaly]:
    if not documents:
        return [
            Anomaly(
                type="donnee_manquante",
                severity="critical",
                description="Aucun document comptable n'a été fourni ou extrait",
                recommendation=(
                    "Fournir les bilans et comptes de résultat des 3 derniers exercices"
                ),
            )
        ]

    anomalies: list[Anomaly] = []
    types = {d.document_type for d in documents}
    if not types & {"bilan", "liasse_fiscale"}:
        anomalies.append(
            Anomaly(
                type="donnee_manquante",
                severity="critical",
                description="Aucun bilan comptable n'a été fourni",
                recommendation="Demander les bilans des 3 derniers exercices",
            )
        )
    if not types & {"compte_resultat", "liasse_fiscale", "compta"}:
        anomalies.append(
            Anomaly(
                type="donnee_manquante",
                severity="critical",
                description="Aucun compte de résultat n'a été fourni",
                recommendation="Demander les comptes de résultat des 3 derniers exercices",
            )
        )

    years = accounting.years_analyzed if accounting is not None else ()
    if len(years) < 2:
        anomalies.append(
            Anomaly(
                type="donnee_manquante",
                severity="warning",
                description=(
                    "Moins de 2 années de données disponibles : "
                    "analyse de tendance limitée"
                ),
                values={"annees": list(years)},
                recommendation="Demander les documents des exercices précédents",
            )
        )
    return anomalies


def _sig_anomalies(accounting: AccountingOutput) -> list[Anomaly]:
    anomalies: list[Anomaly] = []
    for year, sig in accounting.sig.items():
        revenue = sig.chiffre_affaires
        ebe = sig.ebe
        net = sig.resultat_net
        achats = sig.inputs.get("achats_marchandises", 0.0)

        if net > revenue:
            anomalies.append(
                Anomaly(
                    type="incoherence",
                    severity="critical",
                    description=f"{year} : résultat net supérieur au chiffre d'affaires",
                    values={"resultat_net": net, "chiffre_affaires": revenue},
                    recommendation="Vérifier l'extraction du compte de résultat",
                )
            )

        marge = sig.value("marge_commerciale")
        if marge < -1000 and achats > 0:
            anomalies.append(
                Anomaly(
                    type="incoherence",
                    severity="warning",
                    description=f"{year} : marge commerciale fortement négative",
                    values={"marge_commerciale": marge, "achats_marchandises": achats},
                    recommendation="Vérifier les achats et la variation de stock",
                )
            )

        if ebe > 10000 and net < -2 * ebe:
            anomalies.append(
                Anomaly(
                    type="incoherence",
                    severity="warning",
                    description=(
                        f"{year} : EBE positif ({ebe:,.0f} €) mais résultat net "
                        f"très négatif ({net:,.0f} €)"
                    ),
                    values={"ebe": ebe, "resultat_net": net},
                    recommendation="Analyser les charges financières et exceptionnelles",
                )
            )

        # Cascade identities.
        expected_marge = revenue - achats
        if abs(marge - expected_marge) > CASCADE_TOLERANCE:
            anomalies.append(
                Anomaly(
                    type="calcul_errone",
                    severity="warning",
                    description=f"{year} : marge commerciale incohérente avec CA et achats",
                    values={"attendu": expected_marge, "calcule": marge},
                )
            )
        expected_net = (
            sig.value("resultat_courant")
            + sig.inputs.get("resultat_exceptionnel", 0.0)
            - sig.inputs.get("impots", 0.0)
        )
        if abs(net - expected_net) > CASCADE_TOLERANCE:
            anomalies.append(
                Anomaly(
                    type="calcul_errone",
                    severity="warning",
                    description=f"{year} : résultat net incohérent avec la formule",
                    values={"attendu": expected_net, "calcule": net},
                )
            )
    return anomalies


# (ratio, upper threshold, severity, description)
_RATIO_RULES: tuple[tuple[str, float, str, str], ...] = (
    (
        "marge_brute_pct",
        100,
        "critical",
        "Marge brute supérieure à 100% (impossible)",
    ),
    ("marge_ebe_pct", 50, "warning", "Marge EBE très élevée (>50%) : à vérifier"),
    (
        "delai_clients_jours",
        180,
        "warning",
        "Délai clients supérieur à 6 mois : risque de créances irrécouvrables",
    ),
    (
        "taux_endettement_pct",
        300,
        "critical",
        "Endettement extrêmement élevé (>300%) : situation financière très fragile",
    ),
    (
        "bfr_jours_ca",
        120,
        "warning",
        "BFR très élevé (>4 mois de CA) : risque de tension de trésorerie",
    ),
)


def _ratio_anomalies(accounting: AccountingOutput) -> list[Anomaly]:
    ratios = accounting.ratios
    if ratios is None:
        return []

    anomalies: list[Anomaly] = []
    for key, threshold, severity, description in _RATIO_RULES:
        value = ratios.get(key)
        if value is not None and value > threshold:
            anomalies.append(
                Anomaly(
                    type="valeur_aberrante",
                    severity=severity,
                    description=description,
                    values={key: value},
                )
            )

    caf = ratios.get("capacite_autofinancement")
    if caf is not None and caf < 0:
        anomalies.append(
            Anomaly(
                type="valeur_aberrante",
                severity="critical",
                description="Capacité d'autofinancement négative : entreprise non rentable",
                values={"capacite_autofinancement": caf},
            )
        )
    return anomalies


def _valuation_anomalies(valuation: ValuationSynthesis) -> list[Anomaly]:
    anomalies: list[Anomaly] = []

    ebe_method = valuation.method("ebe")
    if ebe_method is not None and valuation.ebe_comptable_reference < 0:
        anomalies.append(
            Anomaly(
                type="incoherence",
                severity="warning",
                description=(
                    "Méthode de valorisation par l'EBE utilisée alors que "
                    "l'EBE est négatif"
                ),
                values={"ebe_reference": valuation.ebe_comptable_reference},
                recommendation="Privilégier la méthode patrimoniale",
            )
        )

    medians = [m.median for m in valuation.methods if m.median > 0]
    if len(medians) >= 2 and max(medians) > 2 * min(medians):
        anomalies.append(
            Anomaly(
                type="valeur_aberrante",
                severity="warning",
                description=(
                    "Écart très important entre les méthodes de valorisation (>100%)"
                ),
                values={"min": min(medians), "max": max(medians)},
                recommendation="Justifier le choix de la méthode retenue",
            )
        )
    return anomalies


def _rent_anomalies(
    accounting: Optional[AccountingOutput],
    real_estate: RealEstateOutput,
) -> list[Anomaly]:
    latest = accounting.latest_sig if accounting is not None else None
    rent = real_estate.loyer_annuel
    if latest is None or rent is None or latest.chiffre_affaires <= 0:
        return []
    if rent <= latest.chiffre_affaires * 0.3:
        return []
    return [
        Anomaly(
            type="valeur_aberrante",
            severity="warning",
            description="Loyer très élevé par rapport au CA (>30%)",
            values={"loyer_annuel": rent, "chiffre_affaires": latest.chiffre_affaires},
            recommendation="Renégocier le bail ou étudier l'achat des murs",
        )
    ]


def detect_anomalies(
    documents: Sequence[FiscalDocument],
    accounting: Optional[AccountingOutput],
    valuation: Optional[ValuationSynthesis],
    real_estate: Optional[RealEstateOutput],
) -> tuple[Anomaly, ...]:
    """Apply every anomaly rule; the result is sorted by severity, stably."""
    anomalies = _document_anomalies(documents, accounting)
    if accounting is not None:
        anomalies.extend(accounting.anomalies)
        anomalies.extend(_sig_anomalies(accounting))
        anomalies.extend(_ratio_anomalies(accounting))
    if valuation is not None:
        anomalies.extend(_valuation_anomalies(valuation))
    if real_estate is not None:
        anomalies.extend(_rent_anomalies(accounting, real_estate))
    return tuple(sorted(anomalies, key=lambda a: SEVERITY_RANK.get(a.severity, 3)))


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------


def recency_score(latest_year: Optional[int], reference_year: int) -> int:
    if latest_year is None:
        return 0
    age = max(0, reference_year - latest_year)
    return RECENCY_POINTS.get(age, RECENCY_FLOOR)


def reliability_score(
    alerts: Sequence[DeterministicAlert],
    checks: Sequence[CoherenceCheck],
    anomalies: Sequence[Anomaly],
) -> int:
    score = 100
    score -= 15 * sum(1 for a in alerts if a.severity == "critical")
    score -= 5 * sum(1 for a in alerts if a.severity == "warning")
    score -= 10 * sum(1 for c in checks if c.status == "error")
    score -= 3 * sum(1 for c in checks if c.status == "warning")
    score -= 12 * sum(1 for a in anomalies if a.severity == "critical")
    score -= 4 * sum(1 for a in anomalies if a.severity == "warning")
    return max(0, min(100, score))


def confidence_score(
    documents: Sequence[FiscalDocument],
    accounting: Optional[AccountingOutput],
    valuation: Optional[ValuationSynthesis],
    real_estate: Optional[RealEstateOutput],
    alerts: Sequence[DeterministicAlert],
    checks: Sequence[CoherenceCheck],
    anomalies: Sequence[Anomaly],
    reference_year: int,
) -> ConfidenceScore:
    """
    Combine completeness, reliability and recency into one 0-100 score.

    Without usable accounting data (no document, or documents from which no
    fiscal year could be read) the score is 0 and the reason is listed in
    ``points_bloquants``.
    """
    has_accounting = accounting is not None and accounting.has_data
    breakdown = {
        "extraction": 100 if documents else 0,
        "comptabilite": accounting.health.overall if has_accounting else 0,
        "valorisation": valuation.confidence if valuation is not None else 0,
        "immobilier": real_estate.score.total if real_estate is not None else 0,
    }

    if not has_accounting:
        if documents:
            reason = "Aucune donnée comptable exploitable dans les documents fournis"
        else:
            reason = (
                "Aucun document fourni : l'analyse financière ne peut pas être réalisée"
            )
        return ConfidenceScore(
            overall=0,
            completeness=0,
            reliability=0,
            recency=0,
            breakdown=breakdown,
            points_bloquants=(reason,),
        )

    completeness = 60
    if valuation is not None and valuation.median > 0:
        completeness += 20
    if real_estate is not None and real_estate.lease is not None:
        completeness += 20

    reliability = reliability_score(alerts, checks, anomalies)
    recency = recency_score(accounting.latest_year, reference_year)

    overall = round(
        completeness * CONFIDENCE_WEIGHTS["completeness"]
        + reliability * CONFIDENCE_WEIGHTS["reliability"]
        + recency * CONFIDENCE_WEIGHTS["recency"]
    )

    blocking = tuple(f"{c.name} : {c.details}" for c in checks if c.status == "error")

    return ConfidenceScore(
        overall=max(0, min(100, int(overall))),
        completeness=completeness,
        reliability=reliability,
        recency=recency,
        breakdown=breakdown,
        points_bloquants=blocking,
    )


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


def run_validation(
    documents: Sequence[FiscalDocument],
    accounting: Optional[AccountingOutput],
    valuation: Optional[ValuationSynthesis],
    real_estate: Optional[RealEstateOutput],
    rules: Sequence[AlertRule],
    reference_year: int,
) -> ValidationOutput:
    """Run the Validation Engine over the outputs of the previous stages."""
    checks = coherence_checks(documents, accounting, valuation)
    anomalies = detect_anomalies(documents, accounting, valuation, real_estate)

    snapshot = build_metric_snapshot(
        accounting, valuation, real_estate, documents, reference_year
    )
    alerts = evaluate_alerts(rules, snapshot)

    confidence = confidence_score(
        documents,
        accounting,
        valuation,
        real_estate,
        alerts,
        checks,
        anomalies,
        reference_year,
    )

    LOGGER.info(
        "Validation completed",
        extra={
            "confidence": confidence.overall,
            "alerts": len(alerts),
            "anomalies": len(anomalies),
            "errors": sum(1 for c in checks if c.status == "error"),
        },
    )

    return ValidationOutput(
        coherence_checks=checks,
        anomalies=anomalies,
        confidence=confidence,
        alerts=alerts,
        points_vigilance=points_vigilance(alerts),
        metrics=snapshot,
    )
