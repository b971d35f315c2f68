# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Valuation stage of Reprise FinSight.

1. Methods
   -------
   Every method shares the same contract::

       method(accounting, coefficients, overrides) -> ValuationMethodResult

   - ``ebe_multiple_method``: reference EBE x sector EBE multiples.
   - ``revenue_method``: reference revenue x sector revenue percentages.
   - ``patrimonial_method``: net assets + revaluation + goodwill
     (1.5 x reference EBE), with a +/-10 % range.

   Regulated retail businesses (tabac / presse) are valued with the
   two-block hybrid method instead (see hybrid.py). The classical methods
   can still be attached to the result for reference, never blended.

2. Synthesis
   ---------
   The classical results are blended with fixed weights:

   - EBE preferred:        0.70 EBE, 0.20 revenue, 0.10 patrimonial
   - patrimonial preferred: 0.60 patrimonial, 0.30 revenue, 0.10 EBE

   The patrimonial method is preferred when the reference EBE is not
   positive or when the net assets exceed twice the EBE valuation.

3. Price comparison and negotiation
   --------------------------------
   The asking price is compared with the median estimate; a deviation
   within the configured band (inclusive) is the market price. Negotiation
   arguments for the buyer and the seller are derived from the deviation
   and from the accounting findings.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from .accounting import AccountingOutput
from .config import AnalysisSettings, ReferenceTables, ValuationCoefficientRow
from .errors import UnknownSectorError
from .hybrid import HybridValuation, compute_hybrid_valuation, is_regulated_retail
from .models import BusinessInfo, UserOverrides

LOGGER = logging.getLogger(__name__)

GOODWILL_EBE_MULTIPLE = 1.5
PATRIMONIAL_RANGE = (0.9, 1.0, 1.1)
REFERENCE_YEARS = 3

WEIGHTS_EBE_PREFERRED: dict[str, float] = {
    "ebe": 0.70,
    "ca": 0.20,
    "patrimoniale": 0.10,
}
WEIGHTS_PATRIMONIAL_PREFERRED: dict[str, float] = {
    "patrimoniale": 0.60,
    "ca": 0.30,
    "ebe": 0.10,
}
WEIGHTS_HYBRID: dict[str, float] = {"hybride": 1.0}

_WEIGHT_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ValuationMethodResult:
    """
    Output of one valuation method.

    Attributes
    ----------
    method :
        'ebe', 'ca', 'patrimoniale' or 'hybride'.
    low, median, high :
        Estimated range (euros).
    justification :
        How the figures were obtained (French).
    details :
        Intermediate figures (reference values, coefficients...).
    """

    method: str
    low: float
    median: float
    high: float
    justification: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceComparison:
    asking_price: float
    median_estimate: float
    deviation_pct: float
    category: str
    message: str


@dataclass(frozen=True)
class ValuationSynthesis:
    """
    Recommended valuation of the business.

    Attributes
    ----------
    preferred_method :
        'ebe', 'patrimoniale' or 'hybride'.
    preference_reason :
        Why that method drives the blend.
    weights :
        Blend weights per method name (sum to 1).
    low, median, high :
        Recommended range.
    methods :
        Results blended into the range.
    price_comparison :
        Asking price against the median estimate (None without asking price).
    arguments_acheteur, arguments_vendeur :
        Negotiation arguments for each side.
    confidence :
        Confidence in the valuation, 0-100.
    limitations :
        Reasons why the valuation is less reliable.
    classical_reference :
        Classical methods computed for comparison on a regulated retail
        business (never blended).
    """

    preferred_method: str
    preference_reason: str
    weights: dict[str, float]
    low: float
    median: float
    high: float
    methods: tuple[ValuationMethodResult, ...]
    price_comparison: Optional[PriceComparison]
    arguments_acheteur: tuple[str, ...]
    arguments_vendeur: tuple[str, ...]
    confidence: int
    limitations: tuple[str, ...]
    sector_code: str
    sector_label: str
    sector_matched: bool
    ebe_reference: float
    ebe_comptable_reference: float
    ca_reference: float
    ca_averaged: bool
    actif_net: Optional[float]
    hybrid: Optional[HybridValuation] = None
    classical_reference: tuple[ValuationMethodResult, ...] = ()

    def method(self, name: str) -> Optional[ValuationMethodResult]:
        for result in self.methods + self.classical_reference:
            if result.method == name:
                return result
        return None


# ---------------------------------------------------------------------------
# Reference figures
# ---------------------------------------------------------------------------


def _latest_values(accounting: AccountingOutput, attr: str) -> list[float]:
    years = accounting.years_analyzed[-REFERENCE_YEARS:]
    return [getattr(accounting.sig[y], attr) for y in years]


def _reference(accounting: AccountingOutput, attr: str) -> tuple[float, bool]:
    """3-year average of a SIG figure, else the latest value."""
    if not accounting.years_analyzed:
        return 0.0, False
    if len(accounting.years_analyzed) >= REFERENCE_YEARS:
        values = _latest_values(accounting, attr)
        return float(round(sum(values) / len(values))), True
    return float(getattr(accounting.latest_sig, attr)), False


def ebe_reference(accounting: AccountingOutput) -> tuple[float, float, str]:
    """
    Return (reference EBE, accounting EBE, source).

    The reference is the normalized EBE when a retraitement exists, else the
    3-year average EBE, else the latest EBE.
    """
    if accounting.retraitement is not None:
        return (
            accounting.retraitement.ebe_normatif,
            accounting.retraitement.ebe_comptable,
            "ebe_normatif",
        )
    value, averaged = _reference(accounting, "ebe")
    return value, value, "moyenne_3_ans" if averaged else "dernier_exercice"


def ca_reference(accounting: AccountingOutput) -> tuple[float, bool]:
    """Return (reference revenue, averaged over 3 years)."""
    return _reference(accounting, "chiffre_affaires")


def actif_net(accounting: AccountingOutput) -> Optional[float]:
    """
    Net assets of the latest year: total assets - total debts.

    Total assets fall back to fixed assets + stocks + receivables + cash.
    None when no balance-sheet asset was extracted.
    """
    record = accounting.latest_record
    if record is None:
        return None

    total_actif = record.total_actif
    if total_actif is None:
        parts = (
            record.immobilisations,
            record.stocks,
            record.creances_clients,
            record.disponibilites,
        )
        if all(p is None for p in parts):
            return None
        total_actif = sum(p or 0.0 for p in parts)

    return float(total_actif) - float(record.total_dettes or 0.0)


def _fmt_eur(value: float) -> str:
    return f"{value:,.0f} €".replace(",", " ")


# ---------------------------------------------------------------------------
# Methods
# ---------------------------------------------------------------------------


def ebe_multiple_method(
    accounting: AccountingOutput,
    coefficients: ValuationCoefficientRow,
    overrides: Optional[UserOverrides] = None,
) -> ValuationMethodResult:
    """Reference EBE multiplied by the sector (low, median, high) multiples."""
    reference, comptable, source = ebe_reference(accounting)
    low, median, high = (round(reference * m) for m in coefficients.ebe_multiple)

    justification = (
        f"Multiple d'EBE : EBE de référence {_fmt_eur(reference)} "
        f"({source.replace('_', ' ')}), coefficients secteur "
        f"« {coefficients.label} » {coefficients.ebe_multiple[0]:g}x à "
        f"{coefficients.ebe_multiple[2]:g}x."
    )
    if coefficients.factors:
        justification += f" Facteurs valorisants : {', '.join(coefficients.factors)}."

    return ValuationMethodResult(
        method="ebe",
        low=float(low),
        median=float(median),
        high=float(high),
        justification=justification,
        details={
            "ebe_reference": reference,
            "ebe_comptable": comptable,
            "source": source,
            "coefficients": coefficients.ebe_multiple,
        },
    )


def revenue_method(
    accounting: AccountingOutput,
    coefficients: ValuationCoefficientRow,
    overrides: Optional[UserOverrides] = None,
) -> ValuationMethodResult:
    """Reference revenue multiplied by the sector (low, median, high) percentages."""
    reference, averaged = ca_reference(accounting)
    low, median, high = (round(reference * p / 100) for p in coefficients.ca_percentage)

    return ValuationMethodResult(
        method="ca",
        low=float(low),
        median=float(median),
        high=float(high),
        justification=(
            f"Pourcentage du CA : CA de référence {_fmt_eur(reference)} "
            f"({'moyenne 3 ans' if averaged else 'dernier exercice'}), "
            f"{coefficients.ca_percentage[0]:g}% à {coefficients.ca_percentage[2]:g}% "
            f"selon le secteur « {coefficients.label} »."
        ),
        details={
            "ca_reference": reference,
            "averaged": averaged,
            "percentages": coefficients.ca_percentage,
        },
    )


def patrimonial_method(
    accounting: AccountingOutput,
    coefficients: ValuationCoefficientRow,
    overrides: Optional[UserOverrides] = None,
) -> ValuationMethodResult:
    """Net assets + revaluation delta + goodwill, with a +/-10 % range."""
    overrides = overrides or UserOverrides()
    reference, _, _ = ebe_reference(accounting)
    net_assets = actif_net(accounting)
    goodwill = GOODWILL_EBE_MULTIPLE * reference if reference > 0 else 0.0
    value = (net_assets or 0.0) + overrides.revaluation_delta + goodwill

    low, median, high = (round(value * k) for k in PATRIMONIAL_RANGE)

    justification = (
        f"Méthode patrimoniale : actif net "
        f"{_fmt_eur(net_assets) if net_assets is not None else 'non disponible'}"
        f", réévaluation {_fmt_eur(overrides.revaluation_delta)}, "
        f"goodwill {_fmt_eur(goodwill)} ({GOODWILL_EBE_MULTIPLE:g} x EBE de référence)."
    )

    return ValuationMethodResult(
        method="patrimoniale",
        low=float(low),
        median=float(median),
        high=float(high),
        justification=justification,
        details={
            "actif_net": net_assets,
            "revaluation_delta": overrides.revaluation_delta,
            "goodwill": goodwill,
        },
    )


MethodFunc = Callable[
    [AccountingOutput, ValuationCoefficientRow, Optional[UserOverrides]],
    ValuationMethodResult,
]

CLASSICAL_METHODS: tuple[MethodFunc, ...] = (
    ebe_multiple_method,
    revenue_method,
    patrimonial_method,
)


def hybrid_method_result(hybrid: HybridValuation) -> ValuationMethodResult:
    """Express a hybrid valuation with the common method contract."""
    justification = (
        f"Méthode hybride Tabac/Presse/FDJ ({hybrid.description}) : "
        f"commissions nettes {_fmt_eur(hybrid.regulated.base)} x "
        f"{hybrid.regulated.coefficients[0]:g}-{hybrid.regulated.coefficients[2]:g}"
        f" + CA boutique {_fmt_eur(hybrid.commercial.base)} x "
        f"{hybrid.commercial.coefficients[0]:g}-{hybrid.commercial.coefficients[2]:g}%."
    )
    if hybrid.error:
        justification = hybrid.error
    return ValuationMethodResult(
        method="hybride",
        low=hybrid.low,
        median=hybrid.median,
        high=hybrid.high,
        justification=justification,
        details={"location_type": hybrid.location_type, "error": hybrid.error},
    )


# ---------------------------------------------------------------------------
# Synthesis helpers
# ---------------------------------------------------------------------------


def validate_weights(weights: Mapping[str, float]) -> None:
    """
    Raises:
        ValueError: if the weights do not sum to 1 (+/- 1e-6).
    """
    total = sum(weights.values())
    if abs(total - 1.0) > _WEIGHT_TOLERANCE:
        raise ValueError(f"Valuation weights must sum to 1, got {total}.")


def blend(
    methods: Sequence[ValuationMethodResult], weights: Mapping[str, float]
) -> tuple[float, float, float]:
    """Weighted (low, median, high) of the methods named in `weights`."""
    validate_weights(weights)
    by_name = {m.method: m for m in methods}
    missing = set(weights) - set(by_name)
    if missing:
        raise ValueError(f"No result for weighted method(s): {sorted(missing)}")

    low = sum(by_name[name].low * w for name, w in weights.items())
    median = sum(by_name[name].median * w for name, w in weights.items())
    high = sum(by_name[name].high * w for name, w in weights.items())
    return float(round(low)), float(round(median)), float(round(high))


def choose_preferred_method(
    reference_ebe: float,
    net_assets: Optional[float],
    ebe_method: ValuationMethodResult,
) -> tuple[str, str]:
    """Return (preferred method, reason) for the classical blend."""
    if reference_ebe <= 0:
        return "patrimoniale", "EBE de référence nul ou négatif"
    if net_assets is not None and net_assets > 2 * ebe_method.median:
        return (
            "patrimoniale",
            "Actif net supérieur au double de la valorisation par l'EBE",
        )
    return "ebe", "Entreprise rentable : le multiple d'EBE est la référence du marché"


def compare_price(
    asking_price: Optional[float],
    median_estimate: float,
    band_pct: float = 15.0,
) -> Optional[PriceComparison]:
    """
    Compare the asking price with the median estimate.

    The deviation is rounded to one decimal, then classified:
    below -band is 'sous-evalue', above +band is 'sur-evalue', anything in
    between (bounds included) is 'prix marche'.
    """
    if asking_price is None or asking_price <= 0 or median_estimate <= 0:
        return None

    deviation = round((asking_price - median_estimate) / median_estimate * 100, 1)
    if deviation < -band_pct:
        category = "sous-evalue"
        message = f"Prix demandé inférieur de {abs(deviation):.1f}% à l'estimation médiane"
    elif deviation > band_pct:
        category = "sur-evalue"
        message = f"Prix demandé supérieur de {deviation:.1f}% à l'estimation médiane"
    else:
        category = "prix marche"
        message = f"Prix demandé cohérent avec le marché ({deviation:+.1f}%)"

    return PriceComparison(
        asking_price=float(asking_price),
        median_estimate=median_estimate,
        deviation_pct=deviation,
        category=category,
        message=message,
    )


def negotiation_arguments(
    accounting: AccountingOutput,
    comparison: Optional[PriceComparison],
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Return (buyer arguments, seller arguments)."""
    buyer: list[str] = []
    seller: list[str] = []

    for alert in accounting.alerts:
        if alert.level == "critical":
            buyer.append(alert.message)

    trend = accounting.trend
    if trend.tendance == "declin":
        buyer.append(f"Tendance négative du CA : {trend.ca_evolution_pct:.1f}%")
    elif trend.tendance == "croissance":
        seller.append(f"Tendance positive du CA : +{trend.ca_evolution_pct:.1f}%")

    retraitement = accounting.retraitement
    if (
        retraitement is not None
        and retraitement.ebe_normatif < retraitement.ebe_comptable
    ):
        buyer.append(
            f"EBE normatif ({_fmt_eur(retraitement.ebe_normatif)}) inférieur à "
            f"l'EBE comptable ({_fmt_eur(retraitement.ebe_comptable)})"
        )

    if accounting.has_data and accounting.health.overall >= 70:
        seller.append(
            f"Bonne santé financière : score {accounting.health.overall}/100"
        )

    if accounting.benchmark is not None:
        above = accounting.benchmark.count("superieur")
        if above >= 3:
            seller.append(f"{above} ratios supérieurs à la moyenne du secteur")

    if comparison is not None:
        gap = _fmt_eur(abs(comparison.asking_price - comparison.median_estimate))
        if comparison.category == "sur-evalue":
            buyer.append(comparison.message)
            buyer.append(f"Marge de négociation possible : {gap}")
        elif comparison.category == "sous-evalue":
            seller.append(comparison.message)
            seller.append("Opportunité d'achat en dessous du marché")

    if not buyer:
        buyer.append(
            "Aucun point faible majeur : négocier sur la base de l'estimation médiane"
        )
    if not seller:
        seller.append("Aucun argument de valorisation particulier pour le vendeur")

    return tuple(buyer), tuple(seller)


def valuation_confidence(accounting: AccountingOutput, sector_matched: bool) -> int:
    """Confidence in the valuation (0-100), from a base of 50."""
    score = 50
    if len(accounting.years_analyzed) >= 3:
        score += 20
    if sector_matched:
        score += 15
    if accounting.trend.tendance == "croissance":
        score += 10
    elif accounting.trend.tendance == "declin":
        score -= 5
    if accounting.health.overall >= 60:
        score += 5
    reference, _, _ = ebe_reference(accounting)
    if reference <= 0:
        score -= 10
    return max(0, min(100, score))


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


def run_valuation(
    accounting: AccountingOutput,
    business: BusinessInfo,
    overrides: Optional[UserOverrides],
    tables: ReferenceTables,
    settings: AnalysisSettings,
) -> ValuationSynthesis:
    """
    Value the business and compare the asking price.

    Regulated retail businesses get the hybrid valuation only, plus the
    classical methods under ``classical_reference`` when
    ``settings.compare_classical`` is set.
    """
    overrides = overrides or UserOverrides()
    coefficients, matched = tables.valuation_coefficients.lookup(
        business.sector_activity_code
    )

    limitations: list[str] = []
    if len(accounting.years_analyzed) < 3:
        limitations.append(
            "Moins de 3 exercices disponibles : références calculées sur "
            "les données existantes"
        )
    if not matched:
        LOGGER.warning(
            "Unknown activity code, using default valuation coefficients",
            extra={"activity_code": business.sector_activity_code},
        )
        limitations.append(
            str(
                UnknownSectorError(
                    business.sector_activity_code, tables.valuation_coefficients.name
                )
            )
        )

    reference, comptable, _ = ebe_reference(accounting)
    ca_ref, ca_averaged = ca_reference(accounting)
    net_assets = actif_net(accounting)
    if net_assets is None:
        limitations.append("Actif net non disponible (bilan non extrait)")
    if not overrides.asking_price:
        limitations.append("Prix demandé non renseigné : pas de comparaison de prix")

    classical = tuple(
        method(accounting, coefficients, overrides) for method in CLASSICAL_METHODS
    )

    hybrid: Optional[HybridValuation] = None
    classical_reference: tuple[ValuationMethodResult, ...] = ()

    # 1) Regulated retail: the hybrid method replaces the classical blend.
    if is_regulated_retail(business.sector_activity_code, tables.tabac_coefficients):
        hybrid = compute_hybrid_valuation(
            accounting.latest_record,
            business.location,
            overrides,
            tables.tabac_coefficients,
        )
        if hybrid.error:
            limitations.append(hybrid.error)
        methods: tuple[ValuationMethodResult, ...] = (hybrid_method_result(hybrid),)
        weights = dict(WEIGHTS_HYBRID)
        preferred = "hybride"
        reason = "Commerce réglementé (tabac/presse) : méthode hybride spécifique"
        if settings.compare_classical:
            classical_reference = classical

    # 2) Classical blend.
    else:
        methods = classical
        preferred, reason = choose_preferred_method(reference, net_assets, classical[0])
        weights = dict(
            WEIGHTS_EBE_PREFERRED
            if preferred == "ebe"
            else WEIGHTS_PATRIMONIAL_PREFERRED
        )

    low, median, high = blend(methods, weights)

    comparison = compare_price(overrides.asking_price, median, settings.price_band_pct)
    buyer, seller = negotiation_arguments(accounting, comparison)

    LOGGER.info(
        "Valuation completed",
        extra={"preferred_method": preferred, "median": median},
    )

    return ValuationSynthesis(
        preferred_method=preferred,
        preference_reason=reason,
        weights=weights,
        low=low,
        median=median,
        high=high,
        methods=methods,
        price_comparison=comparison,
        arguments_acheteur=buyer,
        arguments_vendeur=seller,
        confidence=valuation_confidence(accounting, matched),
        limitations=tuple(limitations),
        sector_code=coefficients.code,
        sector_label=coefficients.label,
        sector_matched=matched,
        ebe_reference=reference,
        ebe_comptable_reference=comptable,
        ca_reference=ca_ref,
        ca_averaged=ca_averaged,
        actif_net=net_assets,
        hybrid=hybrid,
        classical_reference=classical_reference,
    )
