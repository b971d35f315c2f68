# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Input records and shared value objects for Reprise FinSight.

This module holds the types exchanged with external collaborators and the
small records shared by several engines:

1. Inputs
   ------
   - ``FiscalDocument``: one already-parsed accounting document (the output
     of the upstream vision/OCR extractor): filename, document type, fiscal
     year, raw tables and key/value pairs.
   - ``BusinessInfo``: identity of the business for sale and its activity
     code (drives every sector lookup), with optional location hints.
   - ``UserOverrides``: everything the buyer may declare manually (lease
     terms, rent renegotiation, staff retention, asking price, business-plan
     hypotheses). Overrides always take precedence over extracted values.

2. Shared records
   --------------
   - ``Alert``: a finding raised by the Accounting Engine (level + message).
   - ``Anomaly``: a detected data/calculation problem (type + severity).

3. JSON conversion
   ---------------
   ``to_jsonable()`` converts any record tree (dataclasses, tuples, dates,
   paths, enums) into plain JSON-compatible structures with stable field
   names, so every stage output can be serialized directly.

Inputs accept both the snake_case field names used in Python and the
camelCase names used by the upstream extractor (``documentType``,
``keyValues``, ``sectorActivityCode``...).
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

# Document types produced by the extractor. "bail" and "autre" carry no
# accounting figures.
DOCUMENT_TYPES: tuple[str, ...] = (
    "bilan",
    "compte_resultat",
    "liasse_fiscale",
    "compta",
    "bail",
    "autre",
)
NON_ACCOUNTING_TYPES = frozenset({"bail", "autre"})

SEVERITIES: tuple[str, ...] = ("critical", "warning", "info")
SEVERITY_RANK: dict[str, int] = {name: rank for rank, name in enumerate(SEVERITIES)}


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key among `keys` (snake_case or camelCase)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def opt_float(value: Any) -> Optional[float]:
    """Coerce to float, returning None when the value is missing or invalid."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def opt_int(value: Any) -> Optional[int]:
    """Coerce to int, returning None when the value is missing or invalid."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def opt_bool(value: Any) -> Optional[bool]:
    """Coerce common truthy/falsy spellings to bool, None when unknown."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"true", "oui", "yes", "1"}:
        return True
    if text in {"false", "non", "no", "0"}:
        return False
    return None


def parse_date(value: Any) -> Optional[date]:
    """
    Parse an ISO (YYYY-MM-DD) or French (DD/MM/YYYY) date.

    Returns None for empty or unparsable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass

    parts = text.split("/")
    if len(parts) == 3:
        try:
            day, month, year = (int(p) for p in parts)
            return date(year, month, day)
        except ValueError:
            return None
    return None


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FiscalDocument:
    """
    One accounting document as produced by the upstream extractor.

    Attributes
    ----------
    filename :
        Original file name (used in messages only).
    document_type :
        One of DOCUMENT_TYPES.
    year :
        Fiscal year covered by the document, or None when unknown.
    tables :
        Raw tables, each a list of rows; a row is a list of cells where the
        first cell is the label and the second the amount.
    key_values :
        Key figures read directly by the extractor (label -> amount).
    raw_text :
        Plain text of the document (used for lease documents).
    """

    filename: str
    document_type: str
    year: Optional[int] = None
    tables: list[list[list[Any]]] = field(default_factory=list)
    key_values: dict[str, Any] = field(default_factory=dict)
    raw_text: str = ""

    @property
    def is_accounting(self) -> bool:
        return self.document_type not in NON_ACCOUNTING_TYPES

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FiscalDocument":
        if not isinstance(data, Mapping):
            raise TypeError("FiscalDocument.from_dict expects a mapping.")

        doc_type = str(_pick(data, "document_type", "documentType", default="autre"))
        if doc_type not in DOCUMENT_TYPES:
            doc_type = "autre"

        tables_raw = _pick(data, "tables", default=[]) or []
        tables: list[list[list[Any]]] = []
        for table in tables_raw:
            # Extractors emit either bare row lists or {"rows": [...]} tables.
            rows = table.get("rows", []) if isinstance(table, Mapping) else table
            if isinstance(rows, list):
                tables.append([list(r) for r in rows if isinstance(r, (list, tuple))])

        key_values = _pick(data, "key_values", "keyValues", default={}) or {}
        if not isinstance(key_values, Mapping):
            key_values = {}

        return cls(
            filename=str(_pick(data, "filename", default="")),
            document_type=doc_type,
            year=opt_int(_pick(data, "year")),
            tables=tables,
            key_values=dict(key_values),
            raw_text=str(_pick(data, "raw_text", "rawText", default="")),
        )


@dataclass(frozen=True)
class LocationInfo:
    """Location hints used by the regulated-retail and real-estate rules."""

    zone: str = ""
    population: Optional[int] = None
    proximite: tuple[str, ...] = ()
    tourisme: bool = False
    code_postal: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LocationInfo":
        proximite = _pick(data, "proximite", default=()) or ()
        if isinstance(proximite, str):
            proximite = (proximite,)
        return cls(
            zone=str(_pick(data, "zone", default="")),
            population=opt_int(_pick(data, "population")),
            proximite=tuple(str(p) for p in proximite),
            tourisme=bool(opt_bool(_pick(data, "tourisme")) or False),
            code_postal=str(_pick(data, "code_postal", "codePostal", default="")),
        )


@dataclass(frozen=True)
class BusinessInfo:
    """Identity of the business and its activity (NAF) code."""

    name: str = ""
    siret: str = ""
    sector_activity_code: str = ""
    activity_label: str = ""
    location: LocationInfo = field(default_factory=LocationInfo)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BusinessInfo":
        if not isinstance(data, Mapping):
            raise TypeError("BusinessInfo.from_dict expects a mapping.")
        location_raw = _pick(data, "location", default={}) or {}
        return cls(
            name=str(_pick(data, "name", default="")),
            siret=str(_pick(data, "siret", default="")),
            sector_activity_code=str(
                _pick(
                    data,
                    "sector_activity_code",
                    "sectorActivityCode",
                    "nafCode",
                    default="",
                )
            ),
            activity_label=str(
                _pick(data, "activity_label", "activityLabel", default="")
            ),
            location=(
                LocationInfo.from_dict(location_raw)
                if isinstance(location_raw, Mapping)
                else LocationInfo()
            ),
        )


@dataclass(frozen=True)
class LeaseTerms:
    """Commercial lease terms declared manually by the buyer."""

    lease_type: Optional[str] = None
    bailleur: Optional[str] = None
    date_signature: Optional[date] = None
    date_effet: Optional[date] = None
    date_fin: Optional[date] = None
    loyer_annuel_hc: Optional[float] = None
    charges_annuelles: Optional[float] = None
    surface_m2: Optional[float] = None
    depot_garantie: Optional[float] = None
    clause_cession: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LeaseTerms":
        return cls(
            lease_type=_pick(data, "lease_type", "type"),
            bailleur=_pick(data, "bailleur"),
            date_signature=parse_date(_pick(data, "date_signature")),
            date_effet=parse_date(_pick(data, "date_effet")),
            date_fin=parse_date(_pick(data, "date_fin")),
            loyer_annuel_hc=opt_float(_pick(data, "loyer_annuel_hc")),
            charges_annuelles=opt_float(_pick(data, "charges_annuelles")),
            surface_m2=opt_float(_pick(data, "surface_m2")),
            depot_garantie=opt_float(_pick(data, "depot_garantie")),
            clause_cession=_pick(data, "clause_cession"),
        )


@dataclass(frozen=True)
class NonRetainedStaff:
    """Employees the buyer will not keep after the sale."""

    nombre: int
    masse_salariale_annuelle: float
    motif: str = ""


@dataclass(frozen=True)
class WorkItem:
    """A renovation work item declared by the buyer."""

    description: str
    estimation_basse: float
    estimation_haute: float
    urgence: str = "12_mois"
    type: str = "recommande"


@dataclass(frozen=True)
class ProjectionHypotheses:
    """
    Buyer hypotheses for the 5-year business plan.

    Rates are decimals (0.10 = +10 %) except the loan rate which is a
    percentage (4.5 = 4.5 %). None means "use the default".
    """

    prix_achat: Optional[float] = None
    montant_travaux: Optional[float] = None
    subventions: float = 0.0
    apport_personnel: Optional[float] = None
    taux_emprunt_pct: float = 4.5
    duree_emprunt_mois: int = 84
    impact_horaires: float = 0.10
    impact_travaux_annee2: float = 0.10
    croissance_recurrente: float = 0.03
    salaires_supprimes: float = 0.0
    salaires_ajoutes: float = 0.0
    loyer_negocie_annuel: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProjectionHypotheses":
        defaults = cls()
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            default = getattr(defaults, f.name)
            if f.name == "duree_emprunt_mois":
                value = opt_int(data[f.name])
            else:
                value = opt_float(data[f.name])
            kwargs[f.name] = default if value is None else value
        return cls(**kwargs)


@dataclass(frozen=True)
class UserOverrides:
    """
    Manual inputs from the buyer, merged over extracted values.

    Monthly amounts are suffixed ``_mensuel``; everything else is annual.
    """

    lease: Optional[LeaseTerms] = None
    loyer_actuel_mensuel: Optional[float] = None
    loyer_negocie_mensuel: Optional[float] = None
    loyer_logement_perso_mensuel: Optional[float] = None
    reprise_salaries: Optional[bool] = None
    salaries_non_repris: Optional[NonRetainedStaff] = None
    salaires_saisonniers: Optional[float] = None
    frais_personnel_n1: Optional[float] = None
    salaire_dirigeant: Optional[float] = None
    asking_price: Optional[float] = None
    revaluation_delta: float = 0.0
    property_price: Optional[float] = None
    property_price_sqm: Optional[float] = None
    market_rent_sqm: Optional[float] = None
    etat_local: Optional[str] = None
    condition_vision: Optional[str] = None
    custom_works: tuple[WorkItem, ...] = ()
    commissions_nettes: Optional[float] = None
    boutique_revenue: Optional[float] = None
    projection: ProjectionHypotheses = field(default_factory=ProjectionHypotheses)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserOverrides":
        if not isinstance(data, Mapping):
            raise TypeError("UserOverrides.from_dict expects a mapping.")

        lease_raw = _pick(data, "lease")
        staff_raw = _pick(data, "salaries_non_repris")
        works_raw = _pick(data, "custom_works", default=()) or ()
        projection_raw = _pick(data, "projection", default={}) or {}

        staff: Optional[NonRetainedStaff] = None
        staff_count = (
            opt_int(staff_raw.get("nombre")) if isinstance(staff_raw, Mapping) else None
        )
        if staff_count is not None and staff_count > 0:
            staff = NonRetainedStaff(
                nombre=staff_count,
                masse_salariale_annuelle=opt_float(
                    staff_raw.get("masse_salariale_annuelle")
                )
                or 0.0,
                motif=str(staff_raw.get("motif") or ""),
            )

        works: list[WorkItem] = []
        for item in works_raw:
            if not isinstance(item, Mapping):
                continue
            works.append(
                WorkItem(
                    description=str(item.get("description", "")),
                    estimation_basse=opt_float(item.get("estimation_basse")) or 0.0,
                    estimation_haute=opt_float(item.get("estimation_haute")) or 0.0,
                    urgence=str(item.get("urgence") or "12_mois"),
                    type=str(item.get("type") or "recommande"),
                )
            )

        return cls(
            lease=(
                LeaseTerms.from_dict(lease_raw)
                if isinstance(lease_raw, Mapping)
                else None
            ),
            loyer_actuel_mensuel=opt_float(_pick(data, "loyer_actuel_mensuel")),
            loyer_negocie_mensuel=opt_float(_pick(data, "loyer_negocie_mensuel")),
            loyer_logement_perso_mensuel=opt_float(
                _pick(data, "loyer_logement_perso_mensuel")
            ),
            reprise_salaries=opt_bool(_pick(data, "reprise_salaries")),
            salaries_non_repris=staff,
            salaires_saisonniers=opt_float(_pick(data, "salaires_saisonniers")),
            frais_personnel_n1=opt_float(_pick(data, "frais_personnel_n1")),
            salaire_dirigeant=opt_float(_pick(data, "salaire_dirigeant")),
            asking_price=opt_float(_pick(data, "asking_price", "prix_demande")),
            revaluation_delta=opt_float(_pick(data, "revaluation_delta")) or 0.0,
            property_price=opt_float(_pick(data, "property_price")),
            property_price_sqm=opt_float(_pick(data, "property_price_sqm")),
            market_rent_sqm=opt_float(_pick(data, "market_rent_sqm")),
            etat_local=_pick(data, "etat_local"),
            condition_vision=_pick(data, "condition_vision"),
            custom_works=tuple(works),
            commissions_nettes=opt_float(_pick(data, "commissions_nettes")),
            boutique_revenue=opt_float(_pick(data, "boutique_revenue")),
            projection=(
                ProjectionHypotheses.from_dict(projection_raw)
                if isinstance(projection_raw, Mapping)
                else ProjectionHypotheses()
            ),
        )


# ---------------------------------------------------------------------------
# Shared records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Alert:
    """
    A finding raised by the Accounting Engine.

    ``category`` is one of 'rentabilite', 'tresorerie', 'endettement' or
    'activite'.
    """

    level: str
    category: str
    message: str
    impact: str = ""
    recommendation: str = ""


@dataclass(frozen=True)
class Anomaly:
    """
    A detected data or calculation problem.

    Attributes
    ----------
    type :
        'donnee_manquante', 'incoherence', 'valeur_aberrante' or 'calcul_errone'.
    severity :
        'critical', 'warning' or 'info'.
    description :
        Human-readable French description.
    values :
        Figures involved in the problem.
    recommendation :
        Suggested follow-up for the buyer.
    """

    type: str
    severity: str
    description: str
    values: dict[str, Any] = field(default_factory=dict)
    recommendation: str = ""


# ---------------------------------------------------------------------------
# JSON conversion
# ---------------------------------------------------------------------------


def to_jsonable(obj: Any) -> Any:
    """
    Convert a record tree into JSON-compatible data.

    Dataclasses become dicts (field order preserved), tuples become lists,
    dates become ISO strings, mapping keys become strings.
    """
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, Mapping):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        items = sorted(obj) if isinstance(obj, (set, frozenset)) else obj
        return [to_jsonable(v) for v in items]
    return obj
