# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Soldes Intermédiaires de Gestion (SIG) for Reprise FinSight.

The SIG cascade turns one year of extracted line items into the French
intermediate management balances, each line derived from the previous one:

    marge_commerciale     = CA - achats de marchandises
    valeur_ajoutee        = marge_commerciale - charges externes
    ebe                   = valeur_ajoutee - charges de personnel
                            - charges de l'exploitant
    resultat_exploitation = ebe - dotations aux amortissements
    resultat_courant      = resultat_exploitation + resultat financier
    resultat_net          = resultat_courant + resultat exceptionnel - impots

Every line stores its value and its share of revenue. Missing inputs count
as 0 and are listed in ``SIGRecord.missing``; they never abort the
computation. Cascade values are always computed (never copied from a
document), so the identity above holds for every record. Aggregates a
document reports on its own are kept aside in ``SIGRecord.reported`` for
the coherence checks.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .extraction import FiscalYearRecord

# (key, label) in cascade order.
SIG_LINES: tuple[tuple[str, str], ...] = (
    ("chiffre_affaires", "Chiffre d'affaires"),
    ("marge_commerciale", "Marge commerciale"),
    ("valeur_ajoutee", "Valeur ajoutée"),
    ("ebe", "Excédent brut d'exploitation"),
    ("resultat_exploitation", "Résultat d'exploitation"),
    ("resultat_courant", "Résultat courant avant impôts"),
    ("resultat_net", "Résultat net"),
)

# Inputs of the cascade, named after the FiscalYearRecord fields.
SIG_INPUTS: tuple[str, ...] = (
    "achats_marchandises",
    "charges_externes",
    "charges_personnel",
    "charges_exploitant",
    "dotations_amortissements",
    "resultat_financier",
    "resultat_exceptionnel",
    "impots",
)

# A commercial margin this close to revenue usually means purchases were
# not extracted.
MARGIN_WARNING_RATIO = 0.95


@dataclass(frozen=True)
class SIGLine:
    value: float
    pct_of_revenue: Optional[float]


@dataclass(frozen=True)
class SIGRecord:
    """
    SIG cascade for one fiscal year.

    Attributes
    ----------
    year :
        Fiscal year.
    lines :
        SIG line key -> SIGLine, in cascade order (see SIG_LINES).
    inputs :
        Values used for each cascade input (0.0 when missing).
    reported :
        Aggregates reported directly by the documents ('ebe',
        'resultat_net'), used only for coherence checks.
    missing :
        Inputs that were absent from the documents.
    warnings :
        Plausibility warnings raised while computing the cascade.
    """

    year: int
    lines: dict[str, SIGLine]
    inputs: dict[str, float]
    reported: dict[str, float]
    missing: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    def value(self, key: str) -> float:
        return self.lines[key].value

    @property
    def chiffre_affaires(self) -> float:
        return self.value("chiffre_affaires")

    @property
    def ebe(self) -> float:
        return self.value("ebe")

    @property
    def resultat_net(self) -> float:
        return self.value("resultat_net")


def _pct(value: float, revenue: float) -> Optional[float]:
    if revenue == 0:
        return None
    return round(value / revenue * 100, 2)


def compute_sig(record: FiscalYearRecord) -> SIGRecord:
    """
    Compute the SIG cascade for one fiscal year.

    Revenue falls back to the sales of goods when the total revenue line was
    not extracted.
    """
    # 1) Collect inputs, defaulting missing ones to 0.
    revenue_raw = record.chiffre_affaires
    if revenue_raw is None:
        revenue_raw = record.ventes_marchandises

    missing: list[str] = []
    if revenue_raw is None:
        missing.append("chiffre_affaires")
    revenue = float(revenue_raw or 0.0)

    inputs: dict[str, float] = {}
    for name in SIG_INPUTS:
        if name == "charges_personnel":
            raw = record.personnel_total
        else:
            raw = getattr(record, name)
        if raw is None:
            if name != "charges_exploitant":
                missing.append(name)
            raw = 0.0
        inputs[name] = float(raw)

    # 2) Cascade.
    marge_commerciale = revenue - inputs["achats_marchandises"]
    valeur_ajoutee = marge_commerciale - inputs["charges_externes"]
    ebe = valeur_ajoutee - inputs["charges_personnel"] - inputs["charges_exploitant"]
    resultat_exploitation = ebe - inputs["dotations_amortissements"]
    resultat_courant = resultat_exploitation + inputs["resultat_financier"]
    resultat_net = (
        resultat_courant + inputs["resultat_exceptionnel"] - inputs["impots"]
    )

    values = {
        "chiffre_affaires": revenue,
        "marge_commerciale": marge_commerciale,
        "valeur_ajoutee": valeur_ajoutee,
        "ebe": ebe,
        "resultat_exploitation": resultat_exploitation,
        "resultat_courant": resultat_courant,
        "resultat_net": resultat_net,
    }
    lines = {
        key: SIGLine(value=values[key], pct_of_revenue=_pct(values[key], revenue))
        for key, _ in SIG_LINES
    }

    # 3) Plausibility warnings.
    warnings: list[str] = []
    if (
        revenue > 0
        and marge_commerciale >= revenue * MARGIN_WARNING_RATIO
        and record.achats_marchandises is None
    ):
        warnings.append(
            f"Marge commerciale ({marge_commerciale:.0f}) proche du CA "
            f"({revenue:.0f}) : achats de marchandises probablement non extraits."
        )

    reported = {
        key: float(getattr(record, key))
        for key in ("ebe", "resultat_net")
        if getattr(record, key) is not None
    }

    return SIGRecord(
        year=record.year,
        lines=lines,
        inputs=inputs,
        reported=reported,
        missing=tuple(missing),
        warnings=tuple(warnings),
    )


def compute_sig_series(records: Iterable[FiscalYearRecord]) -> dict[int, SIGRecord]:
    """Compute the SIG of every year, keyed by year (ascending)."""
    return {r.year: compute_sig(r) for r in sorted(records, key=lambda r: r.year)}


def sig_dataframe(records: Sequence[SIGRecord]) -> pd.DataFrame:
    """
    Build a long-format DataFrame of SIG lines.

    Columns: year, key, label, value, pct_of_revenue. Rows are ordered by
    year, then by cascade order.
    """
    rows = []
    for record in sorted(records, key=lambda r: r.year):
        for key, label in SIG_LINES:
            line = record.lines[key]
            rows.append(
                {
                    "year": record.year,
                    "key": key,
                    "label": label,
                    "value": round(line.value, 2),
                    "pct_of_revenue": line.pct_of_revenue,
                }
            )
    columns = ["year", "key", "label", "value", "pct_of_revenue"]
    return pd.DataFrame(rows, columns=columns)
