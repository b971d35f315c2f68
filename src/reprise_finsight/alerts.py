# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Deterministic alert rule engine.

Alerts are produced in two steps:

1. ``build_metric_snapshot()`` flattens the outputs of the previous stages
   into a dict of named metrics (ratios, trend, valuation, lease, data
   availability). A metric that could not be computed is simply absent.
2. ``evaluate_alerts()`` evaluates the ``when`` condition of every rule of
   ``data/alert_rules.toml`` over that snapshot with the safe expression
   evaluator of :mod:`reprise_finsight.ratios`.

A rule whose condition references an absent metric does not fire. The
output only depends on the snapshot and the rules: the same state always
yields the same alerts in the same order (severity, then rule file order).
Nothing here reads the clock; the reference year comes from the settings.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional

from .accounting import AccountingOutput
from .config import AlertRule
from .models import SEVERITY_RANK, FiscalDocument
from .ratios import MissingVariableError, safe_eval
from .real_estate import RealEstateOutput
from .valuation import ValuationSynthesis

LOGGER = logging.getLogger(__name__)

MAX_POINTS_VIGILANCE = 5


@dataclass(frozen=True)
class DeterministicAlert:
    """One fired rule, with its templates filled from the snapshot."""

    id: str
    category: str
    severity: str
    title: str
    message: str
    impact: str = ""
    recommendation: str = ""


# ---------------------------------------------------------------------------
# Metric snapshot
# ---------------------------------------------------------------------------


def _trend_metrics(accounting: AccountingOutput, snapshot: dict[str, Any]) -> None:
    trend = accounting.trend
    snapshot["years_count"] = len(accounting.years_analyzed)
    if len(accounting.years_analyzed) < 2:
        return
    snapshot["ca_evolution_pct"] = trend.ca_evolution_pct
    snapshot["ca_evolution_abs"] = abs(trend.ca_evolution_pct)
    snapshot["ebe_evolution_pct"] = trend.ebe_evolution_pct
    snapshot["ebe_evolution_abs"] = abs(trend.ebe_evolution_pct)
    snapshot["tendance"] = trend.tendance


def _accounting_metrics(
    accounting: AccountingOutput, snapshot: dict[str, Any]
) -> None:
    _trend_metrics(accounting, snapshot)

    if accounting.ratios is not None:
        for key, value in accounting.ratios.values.items():
            if value is not None:
                snapshot[key] = value

    latest = accounting.latest_sig
    if latest is not None:
        snapshot["resultat_net"] = latest.resultat_net
        snapshot["chiffre_affaires"] = latest.chiffre_affaires
        snapshot["latest_year"] = latest.year
        snapshot["previous_year"] = latest.year - 1

    benchmark = accounting.benchmark
    if benchmark is not None:
        snapshot["sector_label"] = benchmark.sector_label
        for comparison in benchmark.comparisons:
            if comparison.ratio in ("marge_ebe_pct", "taux_endettement_pct"):
                snapshot[f"bench_{comparison.ratio}"] = comparison.sector_average


def _valuation_metrics(
    valuation: ValuationSynthesis, snapshot: dict[str, Any]
) -> None:
    medians = [m.median for m in valuation.methods if m.median > 0]
    if len(medians) >= 2:
        snapshot["method_max"] = max(medians)
        snapshot["method_min"] = min(medians)
        snapshot["method_spread_ratio"] = max(medians) / min(medians)

    snapshot["valuation_high"] = valuation.high
    snapshot["ebe_reference"] = valuation.ebe_comptable_reference

    ebe_method = valuation.method("ebe")
    if ebe_method is not None:
        snapshot["valo_ebe"] = ebe_method.median

    comparison = valuation.price_comparison
    if comparison is not None:
        snapshot["asking_price"] = comparison.asking_price
        if valuation.high > 0:
            snapshot["price_excess_pct"] = round(
                (comparison.asking_price - valuation.high) / valuation.high * 100, 1
            )


def _real_estate_metrics(
    real_estate: RealEstateOutput,
    snapshot: dict[str, Any],
) -> None:
    snapshot["bail_present"] = real_estate.lease is not None
    if real_estate.loyer_annuel is not None:
        snapshot["loyer_annuel"] = real_estate.loyer_annuel
        revenue = snapshot.get("chiffre_affaires") or 0
        if revenue > 0:
            snapshot["loyer_ca_pct"] = round(
                real_estate.loyer_annuel / revenue * 100, 1
            )
    lease = real_estate.lease
    if lease is not None and lease.duree_restante_mois is not None:
        snapshot["bail_mois_restants"] = lease.duree_restante_mois


def build_metric_snapshot(
    accounting: Optional[AccountingOutput],
    valuation: Optional[ValuationSynthesis],
    real_estate: Optional[RealEstateOutput],
    documents: Sequence[FiscalDocument],
    reference_year: int,
) -> dict[str, Any]:
    """
    Flatten the stage outputs into the metrics used by the alert rules.

    Only metrics that could be computed are present. See the header of
    ``data/alert_rules.toml`` for how rules use them.
    """
    types = {doc.document_type for doc in documents}
    snapshot: dict[str, Any] = {
        "reference_year": reference_year,
        "has_bilan": bool(types & {"bilan", "liasse_fiscale"}),
        "has_compte_resultat": bool(
            types & {"compte_resultat", "liasse_fiscale", "compta"}
        ),
        "years_count": 0,
    }

    if accounting is not None:
        _accounting_metrics(accounting, snapshot)
    if valuation is not None:
        _valuation_metrics(valuation, snapshot)
    if real_estate is not None:
        _real_estate_metrics(real_estate, snapshot)
    else:
        snapshot["bail_present"] = False

    return snapshot


# ---------------------------------------------------------------------------
# Rule evaluation
# ---------------------------------------------------------------------------


def _render(template: str, snapshot: Mapping[str, Any]) -> str:
    """Fill a message template, keeping the raw text when a metric is absent."""
    try:
        return template.format(**snapshot)
    except (KeyError, IndexError, ValueError):
        return template


def rule_fires(rule: AlertRule, snapshot: Mapping[str, Any]) -> bool:
    """
    Evaluate the condition of one rule.

    A condition referencing an absent metric is False. An invalid
    condition is logged and treated as False.
    """
    try:
        return bool(safe_eval(rule.when, snapshot, allow_logic=True))
    except MissingVariableError:
        return False
    except (ValueError, TypeError, ZeroDivisionError) as exc:
        LOGGER.warning(
            "Alert rule condition could not be evaluated",
            extra={"rule": rule.id, "condition": rule.when, "error": str(exc)},
        )
        return False


def evaluate_alerts(
    rules: Sequence[AlertRule], snapshot: Mapping[str, Any]
) -> tuple[DeterministicAlert, ...]:
    """
    Apply every rule to the snapshot.

    Returns the fired alerts sorted by severity (critical first), then by
    their position in the rule file.
    """
    fired: list[tuple[int, int, DeterministicAlert]] = []
    for position, rule in enumerate(rules):
        if not rule_fires(rule, snapshot):
            continue
        alert = DeterministicAlert(
            id=rule.id,
            category=rule.category,
            severity=rule.severity,
            title=rule.title,
            message=_render(rule.message, snapshot),
            impact=_render(rule.impact, snapshot),
            recommendation=_render(rule.recommendation, snapshot),
        )
        rank = SEVERITY_RANK.get(rule.severity, len(SEVERITY_RANK))
        fired.append((rank, position, alert))

    fired.sort(key=lambda item: (item[0], item[1]))
    return tuple(alert for _, _, alert in fired)


def points_vigilance(
    alerts: Sequence[DeterministicAlert], limit: int = MAX_POINTS_VIGILANCE
) -> tuple[str, ...]:
    """Titles of the first `limit` critical or warning alerts."""
    points = [
        f"{alert.title} : {alert.message}"
        for alert in alerts
        if alert.severity != "info"
    ]
    return tuple(points[:limit])
