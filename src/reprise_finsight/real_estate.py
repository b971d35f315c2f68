# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Real-estate stage of Reprise FinSight.

1. Lease
   -----
   Lease terms come from a document of type 'bail' (regex heuristics on
   its raw text), else from the buyer's manual terms. The annual rent is
   taken, in priority order, from the manual input, the lease document and
   the rent line of the latest income statement. The rent per m² is
   compared with a market reference:

       ecart > +20 %  -> desavantageux
       ecart < -20 %  -> avantageux
       otherwise      -> marche

2. Droit au bail
   -------------
   ``coefficient x annual rent`` with a coefficient of 2.0 adjusted by the
   appreciation, the remaining duration, the lease type and the assignment
   clause, clamped to [1, 3]. When the business value is known, the result
   is averaged with ``15-25 % x business value``.

3. Buy-vs-rent
   -----------
   Gross yield = rent / price; net yield = gross x 0.85. Above 7 % buying
   the walls is recommended, between 5 % and 7 % (inclusive) the price
   should be negotiated, below 5 % renting is better.

4. Renovation and composite score
   ------------------------------
   Works are estimated from the premises condition and surface. The
   composite score adds a lease score (0-40), a renovation score (0-30)
   and a property score (0-30), capped at 100.

The stage never fails for lack of a lease: it returns a reduced score.
"""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .extraction import normalize_label, parse_amount
from .errors import CalculationError
from .models import (
    BusinessInfo,
    FiscalDocument,
    LeaseTerms,
    UserOverrides,
    WorkItem,
    parse_date,
)

LOGGER = logging.getLogger(__name__)

COMMERCIAL_LEASE = "commercial_3_6_9"
DEROGATORY_LEASE = "derogatoire"
COMMERCIAL_LEASE_YEARS = 9

APPRECIATION_BAND_PCT = 20.0
NET_YIELD_FACTOR = 0.85
BUY_THRESHOLD_PCT = 7.0
NEGOTIATE_THRESHOLD_PCT = 5.0
OVERPRICED_RATIO = 1.15

# Market rents, euros per m² per year.
MARKET_RENTS: dict[str, dict[str, float]] = {
    "tabac": {"centre-ville": 250, "peripherie": 180, "rural": 120},
    "restauration": {"centre-ville": 350, "peripherie": 220, "rural": 150},
    "commerce de detail": {"centre-ville": 280, "peripherie": 200, "rural": 130},
    "default": {"centre-ville": 250, "peripherie": 180, "rural": 120},
}

# Walls prices, euros per m².
WALLS_PRICES: dict[str, float] = {
    "paris": 10000,
    "grande_ville": 3500,
    "ville_moyenne": 2000,
    "ville_petite": 1500,
    "rural": 800,
    "default": 2500,
}
_BIG_CITY_POSTCODES = ("69", "13", "33", "31", "44", "59", "67")

# (low, high) renovation costs.
_WORKS_PER_SQM = {
    "electricite": (80, 120),
    "peinture_sols": (50, 80),
    "rafraichissement": (30, 50),
}
_WORKS_FLAT = {
    "plomberie": (3000, 6000),
    "diagnostic_electrique": (2000, 4000),
    "accessibilite": (8000, 15000),
    "securite_incendie": (2000, 5000),
}
ERP_SURFACE_THRESHOLD_M2 = 50.0


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeaseRecord:
    """
    Commercial lease of the premises.

    Attributes
    ----------
    source :
        'document' (lease document) or 'saisie_utilisateur' (manual terms).
    loyer_annuel_hc :
        Annual rent excluding charges, after the rent priority rules.
    loyer_source :
        Where the rent comes from: 'saisie_utilisateur', 'document' or
        'comptabilite'.
    duree_restante_mois :
        Months left until ``date_fin`` at the reference date (None when the
        end date is unknown).
    loyer_m2, loyer_marche_m2, ecart_marche_pct :
        Rent per m², market reference per m² and deviation (percent).
    appreciation :
        'avantageux', 'marche' or 'desavantageux'.
    appreciation_evaluee :
        False when rent or surface was missing and 'marche' was assumed.
    """

    source: str
    lease_type: Optional[str]
    bailleur: Optional[str]
    date_signature: Optional[date]
    date_effet: Optional[date]
    date_fin: Optional[date]
    loyer_annuel_hc: Optional[float]
    loyer_source: Optional[str]
    charges_annuelles: Optional[float]
    surface_m2: Optional[float]
    depot_garantie: Optional[float]
    clause_cession: Optional[str]
    duree_restante_mois: Optional[int]
    loyer_m2: Optional[float]
    loyer_marche_m2: float
    loyer_marche_source: str
    ecart_marche_pct: Optional[float]
    appreciation: str
    appreciation_evaluee: bool


@dataclass(frozen=True)
class RentScenario:
    name: str
    description: str
    nouveau_loyer_annuel: float
    economie_annuelle: float
    probabilite: int


@dataclass(frozen=True)
class RentSimulation:
    """Rent renegotiation scenarios against the market rent."""

    loyer_actuel_annuel: float
    loyer_marche_annuel: float
    ecart_annuel: float
    scenarios: tuple[RentScenario, ...]


@dataclass(frozen=True)
class DroitAuBail:
    coefficient: float
    valeur_methode_loyer: float
    pourcentage: Optional[float]
    valeur_methode_pourcentage: Optional[float]
    valeur_estimee: float
    methode: str
    facteurs_valorisants: tuple[str, ...] = ()
    facteurs_devalorisants: tuple[str, ...] = ()


@dataclass(frozen=True)
class PropertyPurchaseAnalysis:
    """
    Buying the walls instead of renting them.

    Attributes
    ----------
    prix :
        Asking price of the walls, else the estimated value.
    valeur_estimee :
        Surface x zone price per m² (None without surface).
    rentabilite_brute_pct, rentabilite_nette_pct :
        Gross yield (rent / price) and net yield (gross x 0.85).
    recommandation :
        'acheter', 'negocier' or 'louer'.
    """

    surface_m2: Optional[float]
    prix_m2_zone: float
    valeur_estimee: Optional[float]
    prix: float
    rentabilite_brute_pct: float
    rentabilite_nette_pct: float
    recommandation: str
    arguments: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkEstimate:
    description: str
    estimation_basse: float
    estimation_haute: float
    urgence: str
    type: str


@dataclass(frozen=True)
class RenovationEstimate:
    """Mandatory and recommended works with their cost ranges."""

    condition: str
    surface_m2: Optional[float]
    items: tuple[WorkEstimate, ...]
    obligatoire_bas: float
    obligatoire_haut: float
    recommande_bas: float
    recommande_haut: float

    @property
    def total_bas(self) -> float:
        return self.obligatoire_bas + self.recommande_bas

    @property
    def total_haut(self) -> float:
        return self.obligatoire_haut + self.recommande_haut


@dataclass(frozen=True)
class RealEstateScore:
    total: int
    bail: int
    travaux: int
    murs: int


@dataclass(frozen=True)
class RealEstateOutput:
    """Everything the Real-Estate Engine produces for one session."""

    lease: Optional[LeaseRecord]
    loyer_annuel: Optional[float]
    loyer_source: Optional[str]
    rent_simulation: Optional[RentSimulation]
    droit_au_bail: DroitAuBail
    property: Optional[PropertyPurchaseAnalysis]
    renovation: RenovationEstimate
    score: RealEstateScore
    limitations: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Lease
# ---------------------------------------------------------------------------

_DATE_RE = re.compile(r"(\d{2}/\d{2}/\d{4})")
_BAILLEUR_RE = re.compile(r"BAILLEUR\s*:\s*([A-ZÀ-Ü][A-ZÀ-Ü \-']+)", re.IGNORECASE)
_LOYER_RE = re.compile(
    r"loyer.*?(\d[\d \u00a0\u202f.,]*)\s*(?:€|euros?)", re.IGNORECASE
)
_SURFACE_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*m[²2]", re.IGNORECASE)
_DEPOT_RE = re.compile(
    r"d[ée]p[ôo]t.*?(\d[\d \u00a0\u202f.,]*)\s*(?:€|euros?)", re.IGNORECASE
)
_CHARGES_RE = re.compile(
    r"charges.*?(\d[\d \u00a0\u202f.,]*)\s*(?:€|euros?)", re.IGNORECASE
)


def _amount(text: str) -> Optional[float]:
    try:
        return parse_amount(text.strip().rstrip(".,"))
    except CalculationError:
        return None


def parse_lease_text(text: str) -> LeaseTerms:
    """
    Read lease terms from the raw text of a lease document.

    The first two DD/MM/YYYY dates are the signature and effective dates.
    A rent stated in a text mentioning "mensuel" is converted to annual.
    """
    lowered = normalize_label(text)

    lease_type: Optional[str] = None
    if "bail commercial" in lowered or "3-6-9" in lowered or "3/6/9" in lowered:
        lease_type = COMMERCIAL_LEASE
    elif "derogatoire" in lowered or "precaire" in lowered:
        lease_type = DEROGATORY_LEASE

    bailleur = None
    match = _BAILLEUR_RE.search(text)
    if match:
        bailleur = match.group(1).strip()

    dates = [parse_date(d) for d in _DATE_RE.findall(text)]
    date_signature = dates[0] if len(dates) >= 2 else None
    date_effet = dates[1] if len(dates) >= 2 else None

    loyer = None
    match = _LOYER_RE.search(text)
    if match:
        loyer = _amount(match.group(1))
        if loyer is not None and "mensuel" in lowered:
            loyer *= 12

    surface = None
    match = _SURFACE_RE.search(text)
    if match:
        surface = float(match.group(1).replace(",", "."))

    depot = None
    match = _DEPOT_RE.search(text)
    if match:
        depot = _amount(match.group(1))

    charges = None
    match = _CHARGES_RE.search(text)
    if match:
        charges = _amount(match.group(1))

    clause = None
    if "cession libre" in lowered or "libre cession" in lowered:
        clause = "cession libre"
    elif "agrement" in lowered:
        clause = "agrément du bailleur"

    return LeaseTerms(
        lease_type=lease_type,
        bailleur=bailleur,
        date_signature=date_signature,
        date_effet=date_effet,
        loyer_annuel_hc=loyer,
        charges_annuelles=charges,
        surface_m2=surface,
        depot_garantie=depot,
        clause_cession=clause,
    )


def _add_years(start: date, years: int) -> date:
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        # 29 February
        return start.replace(year=start.year + years, day=28)


def remaining_months(end: Optional[date], reference: date) -> Optional[int]:
    """Whole 30-day months between the reference date and the lease end."""
    if end is None:
        return None
    return max(0, (end - reference).days // 30)


def activity_family(business: BusinessInfo) -> str:
    """Family of the market-rent table the business belongs to."""
    code = business.sector_activity_code.strip()
    label = normalize_label(business.activity_label)
    if code.startswith(("47.26", "47.62")) or "tabac" in label:
        return "tabac"
    if code.startswith("56") or any(w in label for w in ("restaura", "bar", "cafe")):
        return "restauration"
    if code.startswith("47") or "commerce" in label:
        return "commerce de detail"
    return "default"


def zone_category(business: BusinessInfo) -> str:
    zone = normalize_label(business.location.zone)
    if "periph" in zone:
        return "peripherie"
    if "rural" in zone or "village" in zone:
        return "rural"
    return "centre-ville"


def market_rent_sqm(
    business: BusinessInfo, overrides: UserOverrides
) -> tuple[float, str]:
    """Return (market rent per m² per year, source)."""
    if overrides.market_rent_sqm:
        return float(overrides.market_rent_sqm), "saisie_utilisateur"
    family = MARKET_RENTS.get(activity_family(business), MARKET_RENTS["default"])
    return float(family[zone_category(business)]), "bareme"


def classify_rent(ecart_pct: float) -> str:
    if ecart_pct > APPRECIATION_BAND_PCT:
        return "desavantageux"
    if ecart_pct < -APPRECIATION_BAND_PCT:
        return "avantageux"
    return "marche"


def _manual_rent(overrides: UserOverrides) -> Optional[float]:
    if overrides.lease is not None and overrides.lease.loyer_annuel_hc:
        return float(overrides.lease.loyer_annuel_hc)
    if overrides.loyer_actuel_mensuel:
        return float(overrides.loyer_actuel_mensuel) * 12
    return None


def resolve_rent(
    overrides: UserOverrides,
    document_terms: Optional[LeaseTerms],
    accounting_rent: Optional[float],
) -> tuple[Optional[float], Optional[str]]:
    """Annual rent and its source: manual input, lease document, accounts."""
    manual = _manual_rent(overrides)
    if manual:
        return manual, "saisie_utilisateur"
    if document_terms is not None and document_terms.loyer_annuel_hc:
        return float(document_terms.loyer_annuel_hc), "document"
    if accounting_rent:
        return float(accounting_rent), "comptabilite"
    return None, None


def build_lease(
    documents: Sequence[FiscalDocument],
    business: BusinessInfo,
    overrides: UserOverrides,
    reference: date,
    accounting_rent: Optional[float] = None,
) -> Optional[LeaseRecord]:
    """
    Build the lease record, or None when there is neither a lease document
    nor manual lease terms.
    """
    lease_doc = next((d for d in documents if d.document_type == "bail"), None)
    document_terms = parse_lease_text(lease_doc.raw_text) if lease_doc else None

    if document_terms is not None:
        terms, source = document_terms, "document"
    elif overrides.lease is not None:
        terms, source = overrides.lease, "saisie_utilisateur"
    else:
        return None

    manual = overrides.lease
    surface = terms.surface_m2 or (manual.surface_m2 if manual else None)
    lease_type = terms.lease_type or (manual.lease_type if manual else None)
    date_effet = terms.date_effet or (manual.date_effet if manual else None)
    date_fin = terms.date_fin or (manual.date_fin if manual else None)
    if date_fin is None and date_effet is not None and lease_type == COMMERCIAL_LEASE:
        date_fin = _add_years(date_effet, COMMERCIAL_LEASE_YEARS)

    rent, rent_source = resolve_rent(overrides, document_terms, accounting_rent)
    market_sqm, market_source = market_rent_sqm(business, overrides)

    loyer_m2 = None
    ecart = None
    evaluated = False
    appreciation = "marche"
    if rent and surface:
        loyer_m2 = round(rent / surface, 2)
        market_annual = surface * market_sqm
        ecart = round((rent - market_annual) / market_annual * 100, 1)
        appreciation = classify_rent(ecart)
        evaluated = True

    return LeaseRecord(
        source=source,
        lease_type=lease_type,
        bailleur=terms.bailleur or (manual.bailleur if manual else None),
        date_signature=(
            terms.date_signature or (manual.date_signature if manual else None)
        ),
        date_effet=date_effet,
        date_fin=date_fin,
        loyer_annuel_hc=rent,
        loyer_source=rent_source,
        charges_annuelles=terms.charges_annuelles
        or (manual.charges_annuelles if manual else None),
        surface_m2=surface,
        depot_garantie=(
            terms.depot_garantie or (manual.depot_garantie if manual else None)
        ),
        clause_cession=(
            terms.clause_cession or (manual.clause_cession if manual else None)
        ),
        duree_restante_mois=remaining_months(date_fin, reference),
        loyer_m2=loyer_m2,
        loyer_marche_m2=market_sqm,
        loyer_marche_source=market_source,
        ecart_marche_pct=ecart,
        appreciation=appreciation,
        appreciation_evaluee=evaluated,
    )


# ---------------------------------------------------------------------------
# Rent simulation and droit au bail
# ---------------------------------------------------------------------------


def simulate_rent(lease: LeaseRecord) -> Optional[RentSimulation]:
    """
    Renegotiation scenarios: 30 %, 60 % or 100 % of the overpayment is
    recovered. A rent at or below the market is kept (the pessimistic case
    is a 50 % catch-up imposed by the landlord).
    """
    if not lease.loyer_annuel_hc or not lease.surface_m2:
        return None

    current = lease.loyer_annuel_hc
    market = round(lease.surface_m2 * lease.loyer_marche_m2)
    gap = current - market

    if gap > 0:
        scenarios = (
            RentScenario(
                "pessimiste",
                "Renégociation difficile, faible réduction",
                round(current - gap * 0.3),
                round(gap * 0.3),
                30,
            ),
            RentScenario(
                "realiste",
                "Renégociation réussie, réduction modérée",
                round(current - gap * 0.6),
                round(gap * 0.6),
                50,
            ),
            RentScenario(
                "optimiste",
                "Renégociation excellente, alignement marché",
                market,
                gap,
                20,
            ),
        )
    else:
        increase = abs(gap) * 0.5
        scenarios = (
            RentScenario(
                "pessimiste",
                "Augmentation imposée par le bailleur",
                round(current + increase),
                -round(increase),
                30,
            ),
            RentScenario("realiste", "Maintien du loyer actuel", current, 0.0, 50),
            RentScenario(
                "optimiste", "Maintien long terme du loyer avantageux", current, 0.0, 20
            ),
        )

    return RentSimulation(
        loyer_actuel_annuel=current,
        loyer_marche_annuel=market,
        ecart_annuel=gap,
        scenarios=scenarios,
    )


def estimate_droit_au_bail(
    lease: Optional[LeaseRecord],
    business_value: Optional[float] = None,
) -> DroitAuBail:
    """
    Estimate the value of the lease right.

    Without a lease (or its rent) the estimate is 0.
    """
    if lease is None or not lease.loyer_annuel_hc:
        return DroitAuBail(
            coefficient=0.0,
            valeur_methode_loyer=0.0,
            pourcentage=None,
            valeur_methode_pourcentage=None,
            valeur_estimee=0.0,
            methode="Bail non disponible",
        )

    up: list[str] = []
    down: list[str] = []
    coefficient = 2.0

    # 1) Appreciation against the market
    if lease.appreciation == "avantageux":
        coefficient += 0.5
        up.append("Loyer inférieur au marché")
    elif lease.appreciation == "desavantageux":
        coefficient -= 0.5
        down.append("Loyer supérieur au marché")

    # 2) Remaining duration
    months = lease.duree_restante_mois
    if months is not None and months >= 72:
        coefficient += 0.3
        up.append(f"Longue durée restante ({round(months / 12)} ans)")
    elif months is not None and months < 24:
        coefficient -= 0.3
        down.append(f"Durée restante courte ({round(months / 12)} ans)")

    # 3) Lease type
    if lease.lease_type == COMMERCIAL_LEASE:
        coefficient += 0.2
        up.append("Bail 3-6-9 avec statut protecteur")
    elif lease.lease_type == DEROGATORY_LEASE:
        coefficient -= 0.4
        down.append("Bail dérogatoire sans protection")

    # 4) Assignment clause
    if lease.clause_cession and "libre" in lease.clause_cession.lower():
        coefficient += 0.2
        up.append("Cession libre du bail")

    coefficient = round(max(1.0, min(3.0, coefficient)), 2)
    rent_value = float(round(lease.loyer_annuel_hc * coefficient))
    methode = (
        f"Méthode du loyer : {coefficient:.1f} années x "
        f"{lease.loyer_annuel_hc:,.0f} €"
    )

    pourcentage = None
    pct_value = None
    estimate = rent_value
    if business_value and business_value > 0:
        pourcentage = 20.0
        if lease.appreciation == "avantageux":
            pourcentage = 25.0
        elif lease.appreciation == "desavantageux":
            pourcentage = 15.0
        pct_value = float(round(business_value * pourcentage / 100))
        estimate = float(round((rent_value + pct_value) / 2))
        methode = (
            f"Moyenne méthode loyer ({rent_value:,.0f} €) et méthode "
            f"pourcentage ({pct_value:,.0f} €)"
        )

    return DroitAuBail(
        coefficient=coefficient,
        valeur_methode_loyer=rent_value,
        pourcentage=pourcentage,
        valeur_methode_pourcentage=pct_value,
        valeur_estimee=estimate,
        methode=methode.replace(",", " "),
        facteurs_valorisants=tuple(up),
        facteurs_devalorisants=tuple(down),
    )


# ---------------------------------------------------------------------------
# Buy-vs-rent
# ---------------------------------------------------------------------------


def walls_price_sqm(business: BusinessInfo, overrides: UserOverrides) -> float:
    """Price per m² of the walls: manual input, postcode, then zone."""
    if overrides.property_price_sqm:
        return float(overrides.property_price_sqm)
    postcode = business.location.code_postal.strip()
    if postcode.startswith("75"):
        return WALLS_PRICES["paris"]
    if postcode.startswith(_BIG_CITY_POSTCODES):
        return WALLS_PRICES["grande_ville"]
    if zone_category(business) == "rural":
        return WALLS_PRICES["rural"]
    return WALLS_PRICES["default"]


def recommend_purchase(gross_yield_pct: float) -> str:
    if gross_yield_pct > BUY_THRESHOLD_PCT:
        return "acheter"
    if gross_yield_pct >= NEGOTIATE_THRESHOLD_PCT:
        return "negocier"
    return "louer"


def analyze_property_purchase(
    rent_annual: Optional[float],
    price: Optional[float] = None,
    surface_m2: Optional[float] = None,
    price_sqm: float = WALLS_PRICES["default"],
) -> Optional[PropertyPurchaseAnalysis]:
    """
    Compare buying the walls with renting them.

    The price is the asking price when given, else surface x price per m².
    Returns None when neither the rent nor a price can be determined.
    """
    if not rent_annual or rent_annual <= 0:
        return None

    estimate = float(round(surface_m2 * price_sqm)) if surface_m2 else None
    prix = price if price and price > 0 else estimate
    if not prix:
        return None

    # Classified on the unrounded yield; only the stored figures are rounded.
    raw_yield = rent_annual / prix * 100
    gross = round(raw_yield, 1)
    net = round(raw_yield * NET_YIELD_FACTOR, 1)
    recommendation = recommend_purchase(raw_yield)

    arguments: list[str] = []
    if recommendation == "acheter":
        arguments.append(f"Rentabilité brute attractive ({gross:.1f}%)")
    elif recommendation == "negocier":
        arguments.append("Achat possible si négociation du prix à la baisse")
    else:
        arguments.append(
            f"Rentabilité brute faible ({gross:.1f}%) : location préférable"
        )

    if estimate:
        if prix > estimate * OVERPRICED_RATIO:
            excess = round((prix - estimate) / estimate * 100)
            arguments.append(f"Prix demandé supérieur de {excess}% à l'estimation")
            if recommendation == "acheter":
                recommendation = "negocier"
        elif prix < estimate * (2 - OVERPRICED_RATIO):
            discount = round((estimate - prix) / estimate * 100)
            arguments.append(f"Prix demandé inférieur de {discount}% à l'estimation")

    return PropertyPurchaseAnalysis(
        surface_m2=surface_m2,
        prix_m2_zone=price_sqm,
        valeur_estimee=estimate,
        prix=float(prix),
        rentabilite_brute_pct=gross,
        rentabilite_nette_pct=net,
        recommandation=recommendation,
        arguments=tuple(arguments),
    )


# ---------------------------------------------------------------------------
# Renovation
# ---------------------------------------------------------------------------


def normalize_condition(value: Optional[str]) -> str:
    """Map a free-form condition to 'bon', 'moyen', 'mauvais' or 'non_evalue'."""
    text = normalize_label(value)
    if not text:
        return "non_evalue"
    if any(w in text for w in ("mauvais", "vetuste", "degrade", "renover")):
        return "mauvais"
    if any(w in text for w in ("moyen", "correct", "passable", "usage")):
        return "moyen"
    if any(w in text for w in ("bon", "excellent", "neuf", "tres bon")):
        return "bon"
    return "non_evalue"


def estimate_renovation(
    condition: str,
    surface_m2: Optional[float],
    custom_works: Sequence[WorkItem] = (),
) -> RenovationEstimate:
    """Itemized works from the premises condition and surface."""
    surface = surface_m2 or 0.0
    items: list[WorkEstimate] = []

    def _per_sqm(key: str, description: str, urgence: str, kind: str) -> None:
        low, high = _WORKS_PER_SQM[key]
        items.append(
            WorkEstimate(
                description,
                float(round(low * surface)),
                float(round(high * surface)),
                urgence,
                kind,
            )
        )

    def _flat(key: str, description: str, urgence: str, kind: str) -> None:
        low, high = _WORKS_FLAT[key]
        items.append(WorkEstimate(description, float(low), float(high), urgence, kind))

    if condition == "mauvais":
        if surface:
            _per_sqm(
                "electricite",
                "Mise aux normes électrique",
                "immediat",
                "obligatoire",
            )
        _flat("plomberie", "Réfection plomberie", "immediat", "obligatoire")
        if surface:
            _per_sqm("peinture_sols", "Peinture et sols", "12_mois", "recommande")
    elif condition == "moyen":
        _flat(
            "diagnostic_electrique",
            "Diagnostic et reprises électriques",
            "immediat",
            "obligatoire",
        )
        if surface:
            _per_sqm("rafraichissement", "Rafraîchissement", "12_mois", "recommande")

    if surface >= ERP_SURFACE_THRESHOLD_M2:
        _flat("accessibilite", "Accessibilité PMR (ERP)", "immediat", "obligatoire")
        _flat(
            "securite_incendie",
            "Sécurité incendie (ERP)",
            "immediat",
            "obligatoire",
        )

    for work in custom_works:
        items.append(
            WorkEstimate(
                work.description,
                work.estimation_basse,
                work.estimation_haute,
                work.urgence,
                work.type,
            )
        )

    mandatory = [i for i in items if i.type == "obligatoire"]
    recommended = [i for i in items if i.type != "obligatoire"]
    return RenovationEstimate(
        condition=condition,
        surface_m2=surface_m2,
        items=tuple(items),
        obligatoire_bas=float(sum(i.estimation_basse for i in mandatory)),
        obligatoire_haut=float(sum(i.estimation_haute for i in mandatory)),
        recommande_bas=float(sum(i.estimation_basse for i in recommended)),
        recommande_haut=float(sum(i.estimation_haute for i in recommended)),
    )


# ---------------------------------------------------------------------------
# Score
# ---------------------------------------------------------------------------


def score_lease(lease: Optional[LeaseRecord]) -> int:
    if lease is None:
        return 0
    score = {"avantageux": 40, "marche": 25, "desavantageux": 10}[lease.appreciation]
    if lease.duree_restante_mois is not None and lease.duree_restante_mois > 60:
        score += 10
    if lease.lease_type == COMMERCIAL_LEASE:
        score += 5
    return min(40, score)


def score_renovation(renovation: RenovationEstimate) -> int:
    score = {"bon": 30, "moyen": 20, "mauvais": 5}.get(renovation.condition, 10)
    if renovation.obligatoire_haut < 10000:
        score += 10
    return min(30, score)


def score_property(analysis: Optional[PropertyPurchaseAnalysis]) -> int:
    if analysis is None:
        return 0
    score = {"acheter": 30, "negocier": 20, "louer": 10}[analysis.recommandation]
    if analysis.rentabilite_brute_pct > BUY_THRESHOLD_PCT:
        score += 10
    if analysis.valeur_estimee and analysis.prix < analysis.valeur_estimee:
        score += 5
    return min(30, score)


def composite_score(
    lease: Optional[LeaseRecord],
    renovation: RenovationEstimate,
    analysis: Optional[PropertyPurchaseAnalysis],
) -> RealEstateScore:
    bail = score_lease(lease)
    travaux = score_renovation(renovation)
    murs = score_property(analysis)
    return RealEstateScore(
        total=min(100, bail + travaux + murs), bail=bail, travaux=travaux, murs=murs
    )


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


def run_real_estate(
    documents: Sequence[FiscalDocument],
    business: BusinessInfo,
    overrides: Optional[UserOverrides],
    reference: date,
    accounting_rent: Optional[float] = None,
    business_value: Optional[float] = None,
) -> RealEstateOutput:
    """
    Run the Real-Estate Engine.

    Args:
        documents: All session documents (the 'bail' one is used).
        business: Business identity and location.
        overrides: Buyer inputs (lease terms, walls price, condition...).
        reference: Date the remaining lease duration is measured from.
        accounting_rent: Rent line of the latest income statement.
        business_value: Median business valuation, for the droit au bail
            cross-check.
    """
    overrides = overrides or UserOverrides()
    limitations: list[str] = []

    lease = build_lease(documents, business, overrides, reference, accounting_rent)
    if lease is None:
        LOGGER.warning("No lease available, real-estate analysis runs degraded")
        limitations.append("Bail non fourni : analyse du bail impossible")
        rent, rent_source = resolve_rent(overrides, None, accounting_rent)
    else:
        rent, rent_source = lease.loyer_annuel_hc, lease.loyer_source
        if not lease.appreciation_evaluee:
            limitations.append(
                "Loyer ou surface manquant : loyer supposé au prix du marché"
            )

    surface = lease.surface_m2 if lease is not None else None
    if surface is None and overrides.lease is not None:
        surface = overrides.lease.surface_m2

    property_analysis = analyze_property_purchase(
        rent,
        overrides.property_price,
        surface,
        walls_price_sqm(business, overrides),
    )
    if property_analysis is None:
        limitations.append(
            "Option d'achat des murs non évaluable (loyer ou prix manquant)"
        )

    condition = normalize_condition(overrides.condition_vision or overrides.etat_local)
    renovation = estimate_renovation(condition, surface, overrides.custom_works)
    if condition == "non_evalue":
        limitations.append("État du local non renseigné")

    return RealEstateOutput(
        lease=lease,
        loyer_annuel=rent,
        loyer_source=rent_source,
        rent_simulation=simulate_rent(lease) if lease is not None else None,
        droit_au_bail=estimate_droit_au_bail(lease, business_value),
        property=property_analysis,
        renovation=renovation,
        score=composite_score(lease, renovation, property_analysis),
        limitations=tuple(limitations),
    )
