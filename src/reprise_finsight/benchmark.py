# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Sector benchmarking of financial ratios.

Each ratio of the latest year is compared with the average of the sector
the business belongs to (looked up by activity code in the sector
benchmark table). A ratio is:

- ``similaire`` when its deviation from the average stays within the band
  (±10 % by default, inclusive),
- ``superieur`` / ``inferieur`` otherwise, where "superieur" always means
  "better than the sector". For inverse ratios (stock rotation, customer
  payment delay, BFR in days, debt ratio) a higher value is worse.

Unknown activity codes fall back to the DEFAULT row and add a limitation.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import BENCHMARK_RATIOS, SectorTable
from .errors import UnknownSectorError
from .ratios import RatioSet

LOGGER = logging.getLogger(__name__)

INVERSE_RATIOS = frozenset(
    {
        "rotation_stocks_jours",
        "delai_clients_jours",
        "bfr_jours_ca",
        "taux_endettement_pct",
    }
)

# Ratios that are meaningless when the underlying balance item is zero.
POSITIVE_ONLY_RATIOS = frozenset(
    {"rotation_stocks_jours", "delai_clients_jours", "delai_fournisseurs_jours"}
)

RATIO_LABELS: dict[str, str] = {
    "marge_brute_pct": "Marge brute",
    "marge_ebe_pct": "Marge EBE",
    "marge_nette_pct": "Marge nette",
    "taux_va_pct": "Taux de valeur ajoutée",
    "rotation_stocks_jours": "Rotation des stocks",
    "delai_clients_jours": "Délai clients",
    "delai_fournisseurs_jours": "Délai fournisseurs",
    "bfr_jours_ca": "BFR en jours de CA",
    "taux_endettement_pct": "Taux d'endettement",
}


@dataclass(frozen=True)
class BenchmarkComparison:
    ratio: str
    label: str
    value: float
    sector_average: float
    position: str
    deviation_pct: float


@dataclass(frozen=True)
class SectorBenchmark:
    """
    Ratios of the business compared with its sector.

    Attributes
    ----------
    activity_code :
        Activity code as declared for the business.
    sector_code :
        Code of the benchmark row used ('DEFAULT' when unknown).
    sector_label :
        Label of the benchmark row.
    matched :
        False when the DEFAULT row was used.
    comparisons :
        One entry per comparable ratio, in BENCHMARK_RATIOS order.
    limitations :
        Reasons why the comparison is less reliable.
    """

    activity_code: str
    sector_code: str
    sector_label: str
    matched: bool
    comparisons: tuple[BenchmarkComparison, ...]
    limitations: tuple[str, ...] = ()

    def position_of(self, ratio: str) -> Optional[str]:
        for comparison in self.comparisons:
            if comparison.ratio == ratio:
                return comparison.position
        return None

    def count(self, position: str) -> int:
        return sum(1 for c in self.comparisons if c.position == position)


def classify_position(
    ratio: str, value: float, average: float, band_pct: float = 10.0
) -> tuple[str, float]:
    """
    Return (position, deviation_pct) of one ratio against its sector average.

    Raises:
        ValueError: if the sector average is zero.
    """
    if average == 0:
        raise ValueError(f"Sector average of {ratio!r} is zero.")

    deviation = round((value - average) / abs(average) * 100, 1)
    if abs(deviation) <= band_pct:
        return "similaire", deviation

    better = deviation > 0
    if ratio in INVERSE_RATIOS:
        better = not better
    return ("superieur" if better else "inferieur"), deviation


def compare_to_sector(
    ratios: RatioSet,
    activity_code: str,
    table: SectorTable,
    band_pct: float = 10.0,
) -> SectorBenchmark:
    """Compare a RatioSet with the sector row matching `activity_code`."""
    row, matched = table.lookup(activity_code)

    limitations: list[str] = []
    if not matched:
        problem = UnknownSectorError(activity_code, table.name)
        limitations.append(str(problem))
        LOGGER.warning(
            "Unknown activity code, using default sector benchmark",
            extra={"activity_code": activity_code, "table": table.name},
        )

    comparisons: list[BenchmarkComparison] = []
    for key in BENCHMARK_RATIOS:
        value = ratios.get(key)
        average = row.ratios.get(key)
        if value is None or average is None or average == 0:
            continue
        if key in POSITIVE_ONLY_RATIOS and value <= 0:
            continue

        position, deviation = classify_position(key, value, average, band_pct)
        comparisons.append(
            BenchmarkComparison(
                ratio=key,
                label=RATIO_LABELS.get(key, key),
                value=value,
                sector_average=average,
                position=position,
                deviation_pct=deviation,
            )
        )

    return SectorBenchmark(
        activity_code=activity_code,
        sector_code=row.code,
        sector_label=row.label,
        matched=matched,
        comparisons=tuple(comparisons),
        limitations=tuple(limitations),
    )
