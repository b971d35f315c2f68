# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Five-year business plan after the acquisition.

Year 0 is the current situation (reference revenue, normalized EBE). The
following years apply the buyer's hypotheses:

    year 1     revenue x (1 + opening-hours impact)
    year 2     year 1 x (1 + renovation impact)
    years 3-5  previous year x (1 + recurring growth)

Costs are split into variable costs (purchases, proportional to revenue)
and fixed costs (salaries + rent + other external charges), so that
EBE = revenue x (1 - variable ratio) - fixed costs.

The acquisition is financed by a personal contribution and an amortizing
loan (constant monthly payments). Bank indicators are computed on the
projected figures: debt coverage ratio, self-financing capacity, break-even
revenue, return on investment and payback period.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy_financial as npf
import pandas as pd

from .accounting import AccountingOutput
from .models import ProjectionHypotheses, UserOverrides
from .real_estate import RealEstateOutput
from .valuation import ValuationSynthesis, ca_reference

LOGGER = logging.getLogger(__name__)

PROJECTION_YEARS = 5
DEFAULT_CONTRIBUTION_RATIO = 0.30
INCOME_TAX_RATE = 0.25
SOCIAL_CHARGES_RATE = 0.15

# (min coverage ratio, min ROI %, appreciation), best first.
APPRECIATION_THRESHOLDS: tuple[tuple[float, float, str], ...] = (
    (2.0, 25.0, "excellent"),
    (1.5, 15.0, "bon"),
    (1.2, 10.0, "acceptable"),
)

_YEAR_LABELS = {0: "Actuel (cédant)", 1: "Reprise", 2: "Consolidation"}


@dataclass(frozen=True)
class ProjectionYear:
    """Projected figures of one year (annual euros)."""

    annee: int
    label: str
    chiffre_affaires: float
    charges_variables: float
    salaires: float
    loyer: float
    autres_charges: float
    ebe: float
    annuite_emprunt: float
    reste_apres_dette: float

    @property
    def charges_fixes(self) -> float:
        return self.salaires + self.loyer + self.autres_charges


@dataclass(frozen=True)
class Financing:
    """
    How the acquisition is paid for.

    Attributes
    ----------
    prix_achat :
        Price of the business (defaults to the recommended valuation).
    montant_travaux :
        Works budget (defaults to the high estimate of mandatory works).
    subventions :
        Grants deducted from the investment.
    investissement_total :
        prix_achat + montant_travaux - subventions.
    apport_personnel :
        Buyer's own contribution (defaults to 30 % of price + works).
    montant_emprunte :
        investissement_total - apport_personnel (never negative).
    taux_pct, duree_mois :
        Loan rate (percent per year) and duration (months).
    mensualite, annuite :
        Monthly payment and its annual total.
    """

    prix_achat: float
    montant_travaux: float
    subventions: float
    investissement_total: float
    apport_personnel: float
    montant_emprunte: float
    taux_pct: float
    duree_mois: int
    mensualite: float
    annuite: float


@dataclass(frozen=True)
class BankIndicators:
    """
    Lender-style viability indicators.

    ``ratio_couverture_dette`` is None when nothing is borrowed;
    ``delai_retour_mois`` is None when the projected cash after debt is not
    positive.
    """

    ratio_couverture_dette: Optional[float]
    capacite_autofinancement: float
    point_mort: Optional[float]
    rentabilite_capitaux_pct: float
    delai_retour_mois: Optional[float]
    appreciation: str


@dataclass(frozen=True)
class BusinessPlanProjection:
    years: tuple[ProjectionYear, ...]
    financing: Optional[Financing]
    indicators: Optional[BankIndicators]
    hypotheses: ProjectionHypotheses
    taux_charges_variables: float = 0.0
    synthese: str = ""
    recommandations: tuple[str, ...] = ()
    error: Optional[str] = None

    def year(self, annee: int) -> Optional[ProjectionYear]:
        for projected in self.years:
            if projected.annee == annee:
                return projected
        return None


# ---------------------------------------------------------------------------
# Loan
# ---------------------------------------------------------------------------


def monthly_payment(principal: float, annual_rate_pct: float, months: int) -> float:
    """
    Constant monthly payment of an amortizing loan (``numpy_financial.pmt``).

    A zero rate gives a linear repayment P / n.

    Raises:
        ValueError: if `months` is not positive or the principal is negative.
    """
    if months <= 0:
        raise ValueError(f"Loan duration must be positive, got {months} months.")
    if principal < 0:
        raise ValueError(f"Loan principal must not be negative, got {principal}.")
    if principal == 0:
        return 0.0

    rate = annual_rate_pct / 100 / 12
    if rate == 0:
        return principal / months
    return float(npf.pmt(rate, months, -principal))


def amortization_schedule(
    principal: float, annual_rate_pct: float, months: int
) -> pd.DataFrame:
    """
    Yearly amortization table of the loan.

    Columns: annee, mensualites, interets, capital_rembourse, capital_restant.
    """
    columns = [
        "annee",
        "mensualites",
        "interets",
        "capital_rembourse",
        "capital_restant",
    ]
    payment = monthly_payment(principal, annual_rate_pct, months)
    if payment == 0:
        return pd.DataFrame(columns=columns)

    rate = annual_rate_pct / 100 / 12
    remaining = principal
    rows: list[dict[str, float]] = []
    for month in range(1, months + 1):
        interest = remaining * rate
        repaid = min(payment - interest, remaining)
        remaining -= repaid
        year = (month - 1) // 12 + 1
        if not rows or rows[-1]["annee"] != year:
            rows.append(
                {
                    "annee": year,
                    "mensualites": 0.0,
                    "interets": 0.0,
                    "capital_rembourse": 0.0,
                    "capital_restant": 0.0,
                }
            )
        row = rows[-1]
        row["mensualites"] += payment
        row["interets"] += interest
        row["capital_rembourse"] += repaid
        row["capital_restant"] = max(0.0, remaining)

    df = pd.DataFrame(rows, columns=columns)
    df["annee"] = df["annee"].astype(int)
    return df.round(2)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


def _current_rent(
    accounting: AccountingOutput, real_estate: Optional[RealEstateOutput]
) -> float:
    if real_estate is not None and real_estate.loyer_annuel:
        return float(real_estate.loyer_annuel)
    record = accounting.latest_record
    return float(record.loyer or 0.0) if record is not None else 0.0


def _negotiated_rent(
    current: float,
    hypotheses: ProjectionHypotheses,
    overrides: UserOverrides,
    real_estate: Optional[RealEstateOutput],
) -> float:
    """Explicit hypothesis, else declared monthly rent, else realistic scenario."""
    if hypotheses.loyer_negocie_annuel and hypotheses.loyer_negocie_annuel > 0:
        return float(hypotheses.loyer_negocie_annuel)
    if overrides.loyer_negocie_mensuel and overrides.loyer_negocie_mensuel > 0:
        return float(overrides.loyer_negocie_mensuel) * 12
    if real_estate is not None and real_estate.rent_simulation is not None:
        for scenario in real_estate.rent_simulation.scenarios:
            if scenario.name == "realiste":
                return float(scenario.nouveau_loyer_annuel)
    return current


def build_financing(
    hypotheses: ProjectionHypotheses,
    valuation: Optional[ValuationSynthesis],
    real_estate: Optional[RealEstateOutput],
) -> Financing:
    """Resolve the investment and the loan from the hypotheses and the defaults."""
    price = hypotheses.prix_achat
    if price is None:
        price = valuation.median if valuation is not None else 0.0
    works = hypotheses.montant_travaux
    if works is None:
        works = (
            real_estate.renovation.obligatoire_haut if real_estate is not None else 0.0
        )

    total = price + works - hypotheses.subventions
    contribution = hypotheses.apport_personnel
    if contribution is None:
        contribution = round((price + works) * DEFAULT_CONTRIBUTION_RATIO)
    borrowed = max(0.0, total - contribution)

    payment = monthly_payment(
        borrowed, hypotheses.taux_emprunt_pct, hypotheses.duree_emprunt_mois
    )
    return Financing(
        prix_achat=float(price),
        montant_travaux=float(works),
        subventions=float(hypotheses.subventions),
        investissement_total=float(total),
        apport_personnel=float(contribution),
        montant_emprunte=float(borrowed),
        taux_pct=hypotheses.taux_emprunt_pct,
        duree_mois=hypotheses.duree_emprunt_mois,
        mensualite=round(payment, 2),
        annuite=float(round(payment * 12)),
    )


# ---------------------------------------------------------------------------
# Indicators
# ---------------------------------------------------------------------------


def appreciate(coverage: Optional[float], roi_pct: float) -> str:
    """'excellent', 'bon', 'acceptable' or 'difficile'. No loan counts as covered."""
    for min_coverage, min_roi, label in APPRECIATION_THRESHOLDS:
        covered = coverage is None or coverage >= min_coverage
        if covered and roi_pct >= min_roi:
            return label
    return "difficile"


def bank_indicators(
    years: tuple[ProjectionYear, ...],
    financing: Financing,
    variable_ratio: float,
) -> BankIndicators:
    """Indicators on year 1 (first full year) and the average of years 2-5."""
    year1 = years[1]

    coverage: Optional[float] = None
    if financing.annuite > 0:
        coverage = round(year1.ebe / financing.annuite, 2)

    caf = float(round(year1.ebe * (1 - INCOME_TAX_RATE - SOCIAL_CHARGES_RATE)))

    break_even: Optional[float] = None
    if variable_ratio < 1:
        break_even = float(round(year1.charges_fixes / (1 - variable_ratio)))

    later = [y.reste_apres_dette for y in years[2:]]
    average_cash = sum(later) / len(later) if later else 0.0

    investment = financing.investissement_total
    roi = round(average_cash / investment * 100, 1) if investment > 0 else 0.0

    payback: Optional[float] = None
    if investment > 0 and average_cash > 0:
        payback = round(investment / (average_cash / 12), 1)

    return BankIndicators(
        ratio_couverture_dette=coverage,
        capacite_autofinancement=caf,
        point_mort=break_even,
        rentabilite_capitaux_pct=roi,
        delai_retour_mois=payback,
        appreciation=appreciate(coverage, roi),
    )


def _recommendations(
    indicators: BankIndicators, year1: ProjectionYear
) -> tuple[str, ...]:
    notes: list[str] = []

    coverage = indicators.ratio_couverture_dette
    if coverage is not None:
        if coverage < 1.2:
            notes.append(
                "Ratio de couverture trop faible (< 1,2x) : augmenter l'apport "
                "ou réduire le prix d'achat"
            )
        elif coverage < 1.5:
            notes.append(
                "Ratio de couverture juste (1,2-1,5x) : négocier le prix ou le "
                "loyer pour sécuriser le financement"
            )
        elif coverage >= 2.0:
            notes.append(
                "Excellent ratio de couverture (>= 2x) : dossier bancaire solide"
            )

    if indicators.rentabilite_capitaux_pct < 10:
        notes.append(
            "Rentabilité faible (< 10%) : revoir les leviers de croissance "
            "ou réduire l'investissement"
        )
    elif indicators.rentabilite_capitaux_pct >= 25:
        notes.append("Excellente rentabilité des capitaux investis (>= 25%)")

    if indicators.point_mort is not None and year1.chiffre_affaires > 0:
        share = indicators.point_mort / year1.chiffre_affaires * 100
        if share > 90:
            notes.append(
                "Point mort élevé (> 90% du CA) : faible marge de sécurité en cas "
                "de baisse d'activité"
            )
        elif share < 70:
            notes.append("Point mort confortable (< 70% du CA)")

    if not notes:
        notes.append("Business plan équilibré : suivre les hypothèses retenues")
    return tuple(notes)


def _summary(years: tuple[ProjectionYear, ...], indicators: BankIndicators) -> str:
    first, last = years[1], years[-1]
    coverage = indicators.ratio_couverture_dette
    coverage_text = (
        "sans emprunt" if coverage is None else f"couverture de {coverage:.2f}x"
    )
    return (
        f"CA projeté de {first.chiffre_affaires:,.0f} € (année 1) à "
        f"{last.chiffre_affaires:,.0f} € (année {last.annee}), EBE de "
        f"{first.ebe:,.0f} € à {last.ebe:,.0f} €. Profil bancaire "
        f"'{indicators.appreciation}' : {coverage_text}, rentabilité de "
        f"{indicators.rentabilite_capitaux_pct:.1f}%."
    )


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


def run_projection(
    accounting: Optional[AccountingOutput],
    valuation: Optional[ValuationSynthesis],
    real_estate: Optional[RealEstateOutput],
    overrides: Optional[UserOverrides],
) -> BusinessPlanProjection:
    """
    Project years 0 to 5 and compute the bank indicators.

    Without accounting figures the projection is empty and ``error`` says
    why; nothing is raised.
    """
    overrides = overrides or UserOverrides()
    hypotheses = overrides.projection

    if accounting is None or not accounting.has_data:
        LOGGER.warning("No accounting data, business plan not computed")
        return BusinessPlanProjection(
            years=(),
            financing=None,
            indicators=None,
            hypotheses=hypotheses,
            error="Données comptables manquantes : projection impossible",
        )

    latest = accounting.latest_sig
    financing = build_financing(hypotheses, valuation, real_estate)

    # 1) Year 0
    revenue0, _ = ca_reference(accounting)
    ebe0 = (
        accounting.retraitement.ebe_normatif
        if accounting.retraitement is not None
        else latest.ebe
    )
    latest_revenue = latest.chiffre_affaires
    purchases = latest.inputs.get("achats_marchandises", 0.0)
    variable_ratio = purchases / latest_revenue if latest_revenue > 0 else 0.0

    salaries0 = latest.inputs.get("charges_personnel", 0.0)
    rent0 = _current_rent(accounting, real_estate)
    other = max(0.0, latest.inputs.get("charges_externes", 0.0) - rent0)

    years: list[ProjectionYear] = [
        ProjectionYear(
            annee=0,
            label=_YEAR_LABELS[0],
            chiffre_affaires=float(revenue0),
            charges_variables=float(round(revenue0 * variable_ratio)),
            salaires=salaries0,
            loyer=rent0,
            autres_charges=other,
            ebe=float(ebe0),
            annuite_emprunt=0.0,
            reste_apres_dette=float(ebe0),
        )
    ]

    # 2) Years 1-5
    salaries = max(
        0.0, salaries0 - hypotheses.salaires_supprimes + hypotheses.salaires_ajoutes
    )
    rent = _negotiated_rent(rent0, hypotheses, overrides, real_estate)

    revenue = float(revenue0)
    for annee in range(1, PROJECTION_YEARS + 1):
        if annee == 1:
            revenue *= 1 + hypotheses.impact_horaires
        elif annee == 2:
            revenue *= 1 + hypotheses.impact_travaux_annee2
        else:
            revenue *= 1 + hypotheses.croissance_recurrente
        revenue_rounded = float(round(revenue))

        variable = float(round(revenue_rounded * variable_ratio))
        ebe = revenue_rounded - variable - (salaries + rent + other)
        annuity = financing.annuite if (annee - 1) * 12 < financing.duree_mois else 0.0
        years.append(
            ProjectionYear(
                annee=annee,
                label=_YEAR_LABELS.get(annee, "Croisière"),
                chiffre_affaires=revenue_rounded,
                charges_variables=variable,
                salaires=salaries,
                loyer=rent,
                autres_charges=other,
                ebe=float(round(ebe)),
                annuite_emprunt=annuity,
                reste_apres_dette=float(round(ebe - annuity)),
            )
        )

    projected = tuple(years)
    indicators = bank_indicators(projected, financing, variable_ratio)

    LOGGER.info(
        "Business plan computed",
        extra={
            "investment": financing.investissement_total,
            "coverage": indicators.ratio_couverture_dette,
            "appreciation": indicators.appreciation,
        },
    )

    return BusinessPlanProjection(
        years=projected,
        financing=financing,
        indicators=indicators,
        hypotheses=hypotheses,
        taux_charges_variables=round(variable_ratio, 4),
        synthese=_summary(projected, indicators),
        recommandations=_recommendations(indicators, projected[1]),
    )


def projection_dataframe(plan: BusinessPlanProjection) -> pd.DataFrame:
    """One row per projected year, for rendering."""
    columns = [
        "annee",
        "label",
        "chiffre_affaires",
        "charges_variables",
        "charges_fixes",
        "ebe",
        "annuite_emprunt",
        "reste_apres_dette",
    ]
    rows = [
        {
            "annee": y.annee,
            "label": y.label,
            "chiffre_affaires": y.chiffre_affaires,
            "charges_variables": y.charges_variables,
            "charges_fixes": y.charges_fixes,
            "ebe": y.ebe,
            "annuite_emprunt": y.annuite_emprunt,
            "reste_apres_dette": y.reste_apres_dette,
        }
        for y in plan.years
    ]
    return pd.DataFrame(rows, columns=columns)
