# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
EBE normalization (retraitement) for Reprise FinSight.

The accounting EBE of the latest year reflects how the seller ran the
business. The normalized EBE (EBE normatif) reflects what a buyer can
expect to earn: it adds back costs that disappear with the sale, deducts
new costs the buyer plans, and neutralizes one-off items.

Adjustments are applied in a fixed order:

1. salaire_dirigeant            (+) owner's pay reintegrated
2. suppression_personnel_cedant (+) whole payroll when no staff is kept
3. salaries_non_repris          (+) payroll of staff not kept
4. salaires_saisonniers         (-) seasonal hires planned by the buyer
5. nouvelle_structure_rh        (-) buyer's staffing cost estimate
6. normalisation_loyer          (+/-) rent renegotiation
7. loyer_logement               (+) owner's private housing in the rent
8. charges_exceptionnelles      (+) one-off charges reintegrated
9. produits_exceptionnels       (-) one-off income removed

    ebe_normatif = ebe_comptable + sum(adjustment amounts)
"""

from dataclasses import dataclass
from typing import Optional

from .extraction import FiscalYearRecord
from .models import UserOverrides
from .sig import SIGRecord

# Standard pay of a majority manager, used when the accounts show staff
# costs but no owner remuneration.
OWNER_SALARY_ESTIMATE = 35000.0


@dataclass(frozen=True)
class Adjustment:
    """
    One signed EBE adjustment.

    Attributes
    ----------
    type :
        Adjustment identifier (see module docstring).
    description :
        Short French label.
    montant :
        Signed amount added to the accounting EBE (annual euros).
    source :
        'comptabilite' (from the documents), 'saisie_utilisateur' (buyer
        input) or 'estimation' (standard estimate).
    justification :
        Why the adjustment applies.
    """

    type: str
    description: str
    montant: float
    source: str
    justification: str = ""


@dataclass(frozen=True)
class EbeRetraitement:
    """Accounting EBE, its adjustments and the resulting normalized EBE."""

    year: int
    ebe_comptable: float
    adjustments: tuple[Adjustment, ...]
    total_adjustments: float
    ebe_normatif: float
    ecart_pct: Optional[float]


def _owner_salary(
    record: FiscalYearRecord, sig: SIGRecord, overrides: UserOverrides
) -> Optional[Adjustment]:
    if (record.charges_exploitant or 0.0) > 0:
        return Adjustment(
            type="salaire_dirigeant",
            description="Réintégration salaire dirigeant (charges exploitant)",
            montant=float(record.charges_exploitant),
            source="comptabilite",
            justification="Rémunération de l'exploitant extraite des comptes",
        )
    if (overrides.salaire_dirigeant or 0.0) > 0:
        return Adjustment(
            type="salaire_dirigeant",
            description="Réintégration salaire dirigeant",
            montant=float(overrides.salaire_dirigeant),
            source="saisie_utilisateur",
            justification="Montant fourni par le repreneur",
        )
    if sig.inputs.get("charges_personnel", 0.0) > 0:
        return Adjustment(
            type="salaire_dirigeant",
            description="Réintégration salaire dirigeant (estimation)",
            montant=OWNER_SALARY_ESTIMATE,
            source="estimation",
            justification="Estimation standard gérant majoritaire (35 000 €/an)",
        )
    return None


def compute_retraitement(
    record: FiscalYearRecord,
    sig: SIGRecord,
    overrides: Optional[UserOverrides] = None,
) -> EbeRetraitement:
    """
    Normalize the EBE of one fiscal year (normally the latest).

    Args:
        record: Extracted line items of the reference year.
        sig: SIG cascade of the same year.
        overrides: Buyer inputs; missing values disable the matching
            adjustments.

    Returns:
        An EbeRetraitement whose ``ebe_normatif`` equals the accounting EBE
        plus the sum of the adjustment amounts. ``ecart_pct`` is None when
        the accounting EBE is zero.
    """
    overrides = overrides or UserOverrides()
    adjustments: list[Adjustment] = []

    # 1) Owner's salary
    owner = _owner_salary(record, sig, overrides)
    if owner is not None:
        adjustments.append(owner)

    # 2) Whole payroll removed when the buyer keeps no staff
    if overrides.reprise_salaries is False:
        payroll = record.personnel_total or 0.0
        if payroll > 0:
            adjustments.append(
                Adjustment(
                    type="suppression_personnel_cedant",
                    description="Suppression personnel cédant",
                    montant=payroll,
                    source="comptabilite",
                    justification=(
                        "Pas de reprise du personnel : économie sur la masse salariale"
                    ),
                )
            )

    # 3) Staff not retained
    staff = overrides.salaries_non_repris
    if staff is not None and staff.masse_salariale_annuelle > 0:
        adjustments.append(
            Adjustment(
                type="salaries_non_repris",
                description=f"Masse salariale de {staff.nombre} salarié(s) non repris",
                montant=staff.masse_salariale_annuelle,
                source="saisie_utilisateur",
                justification=staff.motif or "Salariés non repris par le repreneur",
            )
        )

    # 4) Seasonal hires
    if (overrides.salaires_saisonniers or 0.0) > 0:
        adjustments.append(
            Adjustment(
                type="salaires_saisonniers",
                description="Salaires saisonniers prévus par le repreneur",
                montant=-float(overrides.salaires_saisonniers),
                source="saisie_utilisateur",
                justification="Coût additionnel absent des comptes actuels",
            )
        )

    # 5) Buyer's staffing structure
    if (overrides.frais_personnel_n1 or 0.0) > 0:
        adjustments.append(
            Adjustment(
                type="nouvelle_structure_rh",
                description="Nouvelle structure RH",
                montant=-float(overrides.frais_personnel_n1),
                source="saisie_utilisateur",
                justification="Estimation des frais de personnel N+1 par le repreneur",
            )
        )

    # 6) Rent renegotiation
    current_rent = overrides.loyer_actuel_mensuel
    negotiated_rent = overrides.loyer_negocie_mensuel
    if current_rent is not None and negotiated_rent is not None:
        delta = (current_rent - negotiated_rent) * 12
        if delta != 0:
            adjustments.append(
                Adjustment(
                    type="normalisation_loyer",
                    description="Normalisation loyer",
                    montant=delta,
                    source="saisie_utilisateur",
                    justification=(
                        f"Passage de {current_rent:.0f} € à {negotiated_rent:.0f} €/mois"
                    ),
                )
            )

    # 7) Owner's private housing paid through the business
    if (overrides.loyer_logement_perso_mensuel or 0.0) > 0:
        adjustments.append(
            Adjustment(
                type="loyer_logement",
                description="Loyer logement personnel (avantage en nature)",
                montant=float(overrides.loyer_logement_perso_mensuel) * 12,
                source="saisie_utilisateur",
                justification="Avantage en nature du gérant inclus dans les charges",
            )
        )

    # 8-9) One-off items
    exceptional = record.resultat_exceptionnel or 0.0
    if exceptional < 0:
        adjustments.append(
            Adjustment(
                type="charges_exceptionnelles",
                description="Réintégration charges exceptionnelles",
                montant=abs(exceptional),
                source="comptabilite",
                justification="Charges non récurrentes à neutraliser",
            )
        )
    elif exceptional > 0:
        adjustments.append(
            Adjustment(
                type="produits_exceptionnels",
                description="Déduction produits exceptionnels",
                montant=-exceptional,
                source="comptabilite",
                justification="Produits non récurrents à neutraliser",
            )
        )

    ebe_comptable = sig.ebe
    total = sum(a.montant for a in adjustments)
    ecart_pct = round(total / ebe_comptable * 100, 1) if ebe_comptable != 0 else None

    return EbeRetraitement(
        year=record.year,
        ebe_comptable=ebe_comptable,
        adjustments=tuple(adjustments),
        total_adjustments=total,
        ebe_normatif=ebe_comptable + total,
        ecart_pct=ecart_pct,
    )
