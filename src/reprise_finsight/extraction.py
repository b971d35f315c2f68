# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Conversion of extracted documents into per-year accounting records.

The upstream extractor delivers each document as raw tables and key/value
pairs with French labels ("Chiffre d'affaires net", "Dotations aux
amortissements", ...). This module:

- recognises line items from their labels (lower-cased, accent-insensitive
  keyword rules, evaluated in a fixed priority order),
- parses French-formatted amounts ("1 234,56 €", "(12 000)", "450-"),
- merges all documents of the same fiscal year into one
  ``FiscalYearRecord`` (first document wins for each field),
- reports what could not be used as ``Anomaly`` records instead of
  raising.
"""

import logging
import re
import unicodedata
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, fields, replace
from typing import Any, Optional

from .errors import CalculationError
from .models import Anomaly, FiscalDocument

LOGGER = logging.getLogger(__name__)

# Income-statement inputs of the SIG cascade. A year lacking one of them
# lists it in FiscalYearRecord.missing.
INCOME_STATEMENT_FIELDS: tuple[str, ...] = (
    "chiffre_affaires",
    "achats_marchandises",
    "charges_externes",
    "charges_personnel",
    "dotations_amortissements",
    "resultat_financier",
    "resultat_exceptionnel",
    "impots",
)

# (field, keyword groups). A label matches when every keyword of at least
# one group appears in it. Rules are tried in order; the first match wins.
_LABEL_RULES: tuple[tuple[str, tuple[tuple[str, ...], ...]], ...] = (
    ("chiffre_affaires", (("chiffre", "affaires"),)),
    ("achats_marchandises", (("achats", "marchandises"),)),
    ("ventes_marchandises", (("ventes", "marchandises"),)),
    ("charges_externes", (("charges", "externes"), ("autres achats",))),
    ("impots", (("impot", "societes"), ("impot", "benefices"))),
    ("impots_taxes", (("impots", "taxes"),)),
    ("charges_sociales", (("charges sociales",),)),
    ("salaires", (("salaires",),)),
    ("charges_personnel", (("charges", "personnel"),)),
    ("charges_exploitant", (("exploitant",),)),
    ("dotations_amortissements", (("dotation", "amortissement"),)),
    ("resultat_financier", (("resultat", "financier"),)),
    ("resultat_exceptionnel", (("resultat", "exceptionnel"),)),
    ("ebe", (("excedent brut",),)),
    ("resultat_net", (("resultat net",), ("benefice",))),
    ("loyer", (("loyer",),)),
    ("commissions", (("commissions",),)),
    ("dettes_fournisseurs", (("dettes", "fournisseurs"),)),
    ("creances_clients", (("creances", "clients"),)),
    ("total_actif", (("total", "actif"),)),
    ("total_dettes", (("total", "dettes"),)),
    ("capitaux_propres", (("capitaux propres",),)),
    ("immobilisations", (("immobilisations",),)),
    ("stocks", (("stock",),)),
    ("disponibilites", (("disponibilites",), ("tresorerie",))),
    ("effectif", (("effectif",),)),
)

# Tried after _LABEL_RULES. A value matched here is replaced by a later label
# of the same document matching a rule above (a detail debt line listed
# before the "Total dettes" row).
_FALLBACK_LABEL_RULES: tuple[tuple[str, tuple[tuple[str, ...], ...]], ...] = (
    ("total_dettes", (("dettes",),)),
)

# "150.000" or "1.250.000": dots grouping thousands, no decimal part.
_DOT_THOUSANDS = re.compile(r"^\d{1,3}(\.\d{3})+$")

# Labels that contain a keyword above but describe something else.
_IGNORED_LABEL_WORDS: tuple[str, ...] = ("variation",)


@dataclass(frozen=True)
class FiscalYearRecord:
    """
    One fiscal year of extracted line items (annual euros).

    Income statement fields feed the SIG cascade; ``ebe`` and
    ``resultat_net`` are aggregates reported directly by a document and are
    only used for coherence checks. Balance-sheet fields feed the ratios and
    the asset-based valuation.
    """

    year: int

    # Income statement
    chiffre_affaires: Optional[float] = None
    ventes_marchandises: Optional[float] = None
    achats_marchandises: Optional[float] = None
    charges_externes: Optional[float] = None
    impots_taxes: Optional[float] = None
    salaires: Optional[float] = None
    charges_sociales: Optional[float] = None
    charges_personnel: Optional[float] = None
    charges_exploitant: Optional[float] = None
    dotations_amortissements: Optional[float] = None
    resultat_financier: Optional[float] = None
    resultat_exceptionnel: Optional[float] = None
    impots: Optional[float] = None
    loyer: Optional[float] = None
    commissions: Optional[float] = None

    # Aggregates reported by the documents themselves
    ebe: Optional[float] = None
    resultat_net: Optional[float] = None

    # Balance sheet
    immobilisations: Optional[float] = None
    stocks: Optional[float] = None
    creances_clients: Optional[float] = None
    disponibilites: Optional[float] = None
    total_actif: Optional[float] = None
    dettes_fournisseurs: Optional[float] = None
    total_dettes: Optional[float] = None
    capitaux_propres: Optional[float] = None
    effectif: Optional[float] = None

    sources: tuple[str, ...] = ()
    document_types: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()

    def get(self, name: str, default: float = 0.0) -> float:
        """Return a numeric field, or `default` when it was not extracted."""
        value = getattr(self, name, None)
        return default if value is None else float(value)

    @property
    def personnel_total(self) -> Optional[float]:
        """Personnel costs: the reported total, else salaries + social charges."""
        if self.charges_personnel is not None:
            return self.charges_personnel
        if self.salaires is None and self.charges_sociales is None:
            return None
        return (self.salaires or 0.0) + (self.charges_sociales or 0.0)


NUMERIC_FIELDS: tuple[str, ...] = tuple(
    f.name
    for f in fields(FiscalYearRecord)
    if f.name not in {"year", "sources", "document_types", "missing"}
)


@dataclass(frozen=True)
class ExtractionResult:
    """Per-year records (ascending years) plus extraction anomalies."""

    records: tuple[FiscalYearRecord, ...]
    anomalies: tuple[Anomaly, ...] = ()
    document_types: tuple[str, ...] = ()
    skipped_documents: tuple[str, ...] = field(default_factory=tuple)

    @property
    def years(self) -> list[int]:
        return [r.year for r in self.records]

    @property
    def latest(self) -> Optional[FiscalYearRecord]:
        return self.records[-1] if self.records else None


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_label(label: Any) -> str:
    """Lower-case, accent-free, single-spaced version of a label."""
    text = _strip_accents(str(label or "")).lower()
    text = text.replace("'", " ").replace("’", " ")
    return re.sub(r"\s+", " ", text).strip()


def match_label(label: Any) -> Optional[str]:
    """
    Return the record field a French accounting label refers to.

    Examples
    --------
    >>> match_label("Chiffre d'affaires net")
    'chiffre_affaires'
    >>> match_label("Dotations aux amortissements")
    'dotations_amortissements'
    """
    field_name, _ = _match_label_rule(label)
    return field_name


def _match_label_rule(label: Any) -> tuple[Optional[str], bool]:
    """Return (field, matched by a fallback rule) for a label."""
    text = normalize_label(label)
    if not text or any(word in text for word in _IGNORED_LABEL_WORDS):
        return None, False

    if text.replace(" ", "_") in NUMERIC_FIELDS:
        return text.replace(" ", "_"), False

    for rules, fallback in ((_LABEL_RULES, False), (_FALLBACK_LABEL_RULES, True)):
        for field_name, groups in rules:
            for keywords in groups:
                if all(k in text for k in keywords):
                    return field_name, fallback
    return None, False


def parse_amount(value: Any) -> Optional[float]:
    """
    Parse a French-formatted amount.

    Spaces (including non-breaking ones), currency marks and thousands dots
    are removed, the decimal comma becomes a dot, and parentheses or a
    trailing minus sign mean a negative amount. Empty cells give None.

    Raises:
        CalculationError: if the text is not a number.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise CalculationError(f"Invalid amount: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    for token in ("€", "EUR", "eur", "\u00a0", "\u202f", " "):
        text = text.replace(token, "")
    if text in {"", "-"}:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    if text.endswith("-"):
        negative = True
        text = text[:-1]

    if ("," in text and "." in text) or _DOT_THOUSANDS.match(text):
        text = text.replace(".", "")
    text = text.replace(",", ".")

    try:
        amount = float(text)
    except ValueError as exc:
        raise CalculationError(f"Invalid amount: {value!r}") from exc

    return -amount if negative else amount


# ---------------------------------------------------------------------------
# Document -> fields
# ---------------------------------------------------------------------------


def _iter_items(document: FiscalDocument) -> Iterable[tuple[Any, Any]]:
    """Yield (label, raw value) pairs: key/values first, then table rows."""
    yield from document.key_values.items()
    for table in document.tables:
        for row in table:
            if len(row) >= 2:
                yield row[0], row[1]


def _extract_document(
    document: FiscalDocument,
) -> tuple[dict[str, float], list[Anomaly]]:
    values: dict[str, float] = {}
    from_fallback: set[str] = set()
    anomalies: list[Anomaly] = []

    for label, raw in _iter_items(document):
        field_name, fallback = _match_label_rule(label)
        if field_name is None:
            continue
        if field_name in values and (fallback or field_name not in from_fallback):
            continue
        try:
            amount = parse_amount(raw)
        except CalculationError as exc:
            anomalies.append(
                Anomaly(
                    type="calcul_errone",
                    severity="warning",
                    description=(
                        f"Valeur illisible pour '{label}' dans {document.filename} "
                        f"({document.year}) : {exc}"
                    ),
                    values={"libelle": str(label), "valeur": str(raw)},
                    recommendation="Vérifier la qualité de l'extraction du document.",
                )
            )
            continue
        if amount is not None:
            values[field_name] = amount
            if fallback:
                from_fallback.add(field_name)
            else:
                from_fallback.discard(field_name)

    return values, anomalies


def extract_fiscal_years(documents: Sequence[FiscalDocument]) -> ExtractionResult:
    """
    Merge extracted documents into one record per fiscal year.

    Documents of type 'bail' or 'autre' are ignored; documents without a
    year are skipped with an info anomaly. For each field, the first
    document (in input order) providing it wins.
    """
    anomalies: list[Anomaly] = []
    skipped: list[str] = []
    per_year: dict[int, dict[str, Any]] = {}

    for document in documents:
        if not document.is_accounting:
            continue

        if document.year is None:
            skipped.append(document.filename)
            anomalies.append(
                Anomaly(
                    type="donnee_manquante",
                    severity="info",
                    description=(
                        f"Document {document.filename} ignoré : exercice non identifié."
                    ),
                    values={"document": document.filename},
                    recommendation="Préciser l'exercice couvert par le document.",
                )
            )
            continue

        values, doc_anomalies = _extract_document(document)
        anomalies.extend(doc_anomalies)

        bucket = per_year.setdefault(
            document.year, {"sources": [], "document_types": []}
        )
        bucket["sources"].append(document.filename)
        if document.document_type not in bucket["document_types"]:
            bucket["document_types"].append(document.document_type)
        for key, amount in values.items():
            bucket.setdefault(key, amount)

    records: list[FiscalYearRecord] = []
    for year in sorted(per_year):
        bucket = per_year[year]
        record = FiscalYearRecord(
            year=year,
            sources=tuple(bucket.pop("sources")),
            document_types=tuple(bucket.pop("document_types")),
            **bucket,
        )
        missing = tuple(
            name
            for name in INCOME_STATEMENT_FIELDS
            if (
                record.personnel_total is None
                if name == "charges_personnel"
                else getattr(record, name) is None
            )
        )
        records.append(replace(record, missing=missing))

    if skipped:
        LOGGER.warning(
            "Skipped documents without fiscal year",
            extra={"documents": skipped},
        )

    types_seen: list[str] = []
    for document in documents:
        if document.document_type not in types_seen:
            types_seen.append(document.document_type)

    return ExtractionResult(
        records=tuple(records),
        anomalies=tuple(anomalies),
        document_types=tuple(types_seen),
        skipped_documents=tuple(skipped),
    )


def record_from_mapping(year: int, values: Mapping[str, Any]) -> FiscalYearRecord:
    """Build a record from already-clean figures (tests, manual input)."""
    kwargs = {
        k: float(v)
        for k, v in values.items()
        if k in NUMERIC_FIELDS and v is not None
    }
    return FiscalYearRecord(year=year, **kwargs)
