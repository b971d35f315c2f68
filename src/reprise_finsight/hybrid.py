# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Two-block valuation of regulated retail businesses (tabac / presse / FDJ).

A tobacconist's goodwill is not driven by its EBE but by the commissions
paid by the State and the lottery operators, plus the margin of the free
"boutique" activity. The value is the sum of two blocks:

    regulated block  = net commissions x commission coefficient (2.0 - 3.2)
    commercial block = boutique revenue x boutique percentage (12 - 25 %)

Both ranges depend on the location type of the shop (urban premium,
city centre, outskirts, rural, tourist area, transit hub, student area).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import TabacCoefficientRow, TabacTable, normalize_activity_code
from .extraction import FiscalYearRecord, normalize_label
from .models import LocationInfo, UserOverrides

LOGGER = logging.getLogger(__name__)

_TRANSIT_KEYWORDS = ("gare", "autoroute", "aeroport")


@dataclass(frozen=True)
class ValuationBlock:
    """One additive block of the hybrid valuation."""

    base: float
    coefficients: tuple[float, float, float]
    low: float
    median: float
    high: float


@dataclass(frozen=True)
class HybridValuation:
    """
    Result of the regulated-retail valuation.

    Attributes
    ----------
    location_type :
        Location type used to pick the coefficients.
    description :
        Description of that location type.
    regulated :
        Net commissions x commission coefficient.
    commercial :
        Boutique revenue x boutique percentage.
    low, median, high :
        Sum of the two blocks.
    factors :
        Value drivers of the location type.
    error :
        Why the valuation is zero, when it is.
    """

    location_type: str
    description: str
    regulated: ValuationBlock
    commercial: ValuationBlock
    low: float
    median: float
    high: float
    factors: tuple[str, ...] = ()
    error: Optional[str] = None


def is_regulated_retail(activity_code: str, table: TabacTable) -> bool:
    """True when the normalized activity code is one of the table's codes."""
    return normalize_activity_code(activity_code) in table.activity_codes


def detect_location_type(location: LocationInfo, table: TabacTable) -> str:
    """
    Classify the shop location.

    Checked in order: transit hub nearby, tourist area, university nearby,
    population and zone together, zone alone. Falls back to the table's
    default type.
    """
    zone = normalize_label(location.zone).replace("-", " ").replace("_", " ")
    proximite = " ".join(normalize_label(p) for p in location.proximite)
    population = location.population

    def _known(name: str) -> Optional[str]:
        return name if name in table.rows else None

    candidate: Optional[str] = None

    if any(word in proximite for word in _TRANSIT_KEYWORDS):
        candidate = _known("tabac_transit")
    elif location.tourisme or "touristique" in zone:
        candidate = _known("tabac_touristique")
    elif "universite" in proximite:
        candidate = _known("tabac_etudiant")

    if candidate is None and population:
        if population > 100000 and zone == "centre ville":
            candidate = _known("tabac_urbain_premium")
        elif population >= 20000 and zone == "centre ville":
            candidate = _known("tabac_centre_ville")
        elif population >= 10000 and zone == "peripherie":
            candidate = _known("tabac_peripherie")
        elif population < 10000:
            candidate = _known("tabac_rural")

    if candidate is None and zone:
        if "centre" in zone:
            candidate = _known("tabac_centre_ville")
        elif "peripherie" in zone:
            candidate = _known("tabac_peripherie")
        elif "rural" in zone:
            candidate = _known("tabac_rural")

    return candidate or table.default_type


def _block(
    base: float, coefficients: tuple[float, float, float], divisor: float
) -> ValuationBlock:
    low, median, high = (round(base * c / divisor) for c in coefficients)
    return ValuationBlock(
        base=base,
        coefficients=coefficients,
        low=float(low),
        median=float(median),
        high=float(high),
    )


def _zero_block() -> ValuationBlock:
    return ValuationBlock(
        base=0.0, coefficients=(0.0, 0.0, 0.0), low=0.0, median=0.0, high=0.0
    )


def compute_hybrid_valuation(
    record: Optional[FiscalYearRecord],
    location: LocationInfo,
    overrides: Optional[UserOverrides],
    table: TabacTable,
) -> HybridValuation:
    """
    Value a regulated retail business with the two-block method.

    Net commissions come from the buyer's input, else from the commissions
    line of the latest fiscal year. Boutique revenue is only taken from the
    buyer's input. Without commissions the valuation is zero and ``error``
    says why; no estimate is made.
    """
    overrides = overrides or UserOverrides()
    location_type = detect_location_type(location, table)
    row: TabacCoefficientRow = table.rows[location_type]

    commissions = overrides.commissions_nettes
    if commissions is None and record is not None:
        commissions = record.commissions
    commissions = float(commissions or 0.0)

    if commissions <= 0:
        LOGGER.warning(
            "Net commissions unavailable, hybrid valuation is zero",
            extra={"location_type": location_type},
        )
        return HybridValuation(
            location_type=location_type,
            description=row.description,
            regulated=_zero_block(),
            commercial=_zero_block(),
            low=0.0,
            median=0.0,
            high=0.0,
            factors=row.factors,
            error="Commissions nettes non disponibles : valorisation impossible",
        )

    regulated = _block(commissions, row.commission_coefficients, 1.0)

    boutique = float(overrides.boutique_revenue or 0.0)
    if boutique > 0:
        commercial = _block(boutique, row.boutique_percentages, 100.0)
    else:
        commercial = _zero_block()

    return HybridValuation(
        location_type=location_type,
        description=row.description,
        regulated=regulated,
        commercial=commercial,
        low=regulated.low + commercial.low,
        median=regulated.median + commercial.median,
        high=regulated.high + commercial.high,
        factors=row.factors,
    )
