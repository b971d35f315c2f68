import pytest

from conftest import make_document
from reprise_finsight.errors import CalculationError
from reprise_finsight.extraction import (
    extract_fiscal_years,
    match_label,
    parse_amount,
    record_from_mapping,
)
from reprise_finsight.models import FiscalDocument


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1 234,56 €", 1234.56),
        ("1 234,56", 1234.56),
        ("(12 000)", -12000.0),
        ("450-", -450.0),
        ("1.234,50", 1234.5),
        ("150.000", 150000.0),
        ("1.250.000", 1250000.0),
        ("12.50", 12.5),
        (1500, 1500.0),
        ("", None),
        ("-", None),
        (None, None),
    ],
)
def test_parse_amount_french_formats(raw, expected):
    """French amounts: spaces, decimal comma, parentheses and trailing minus."""
    assert parse_amount(raw) == expected


def test_parse_amount_rejects_text():
    with pytest.raises(CalculationError):
        parse_amount("n/a")


@pytest.mark.parametrize(
    "label, field_name",
    [
        ("Chiffre d'affaires net", "chiffre_affaires"),
        ("Autres achats et charges externes", "charges_externes"),
        ("Charges de personnel", "charges_personnel"),
        ("Dotations aux amortissements", "dotations_amortissements"),
        ("Résultat financier", "resultat_financier"),
        ("Résultat exceptionnel", "resultat_exceptionnel"),
        ("Impôts sur les bénéfices", "impots"),
        ("Loyers et charges locatives", "loyer"),
        ("Total actif", "total_actif"),
        ("Total dettes", "total_dettes"),
        ("Capitaux propres", "capitaux_propres"),
        ("Disponibilités", "disponibilites"),
        ("chiffre_affaires", "chiffre_affaires"),
    ],
)
def test_match_label_maps_french_labels(label, field_name):
    assert match_label(label) == field_name


def test_match_label_ignores_unrelated_and_variation_lines():
    assert match_label("Variation de stocks") is None
    assert match_label("Divers") is None
    assert match_label("") is None


def test_extract_merges_documents_of_the_same_year():
    """The first document providing a field wins; others only fill the gaps."""
    income = make_document(
        2024,
        {"Chiffre d'affaires net": 500000, "Charges de personnel": 80000},
        document_type="compte_resultat",
    )
    balance = make_document(
        2024,
        {"Chiffre d'affaires net": 999999, "Total actif": 250000},
        document_type="bilan",
    )

    result = extract_fiscal_years([income, balance])

    assert result.years == [2024]
    record = result.latest
    assert record.chiffre_affaires == 500000
    assert record.charges_personnel == 80000
    assert record.total_actif == 250000
    assert record.document_types == ("compte_resultat", "bilan")
    assert len(record.sources) == 2


def test_total_debt_row_wins_over_detail_debt_lines():
    doc = make_document(
        2024,
        {
            "Emprunts et dettes financières": 50000,
            "Dettes fournisseurs": 20000,
            "Dettes fiscales et sociales": 10000,
            "Total dettes": 80000,
        },
        document_type="bilan",
    )

    record = extract_fiscal_years([doc]).latest

    assert record.total_dettes == 80000
    assert record.dettes_fournisseurs == 20000


def test_detail_debt_line_used_without_total_row():
    doc = make_document(
        2024,
        {"Emprunts et dettes financières": 50000, "Dettes fiscales": 10000},
        document_type="bilan",
    )

    assert extract_fiscal_years([doc]).latest.total_dettes == 50000


def test_extract_skips_lease_and_undated_documents():
    lease = FiscalDocument(filename="bail.pdf", document_type="bail", raw_text="Bail")
    undated = FiscalDocument(
        filename="scan.pdf",
        document_type="compte_resultat",
        tables=[[["Chiffre d'affaires", 100000]]],
    )
    dated = make_document(2023, {"Chiffre d'affaires": 200000})

    result = extract_fiscal_years([lease, undated, dated])

    assert result.years == [2023]
    assert result.skipped_documents == ("scan.pdf",)
    assert any(a.severity == "info" for a in result.anomalies)


def test_extract_reports_unreadable_amounts_without_failing():
    doc = make_document(
        2024, {"Chiffre d'affaires": "illisible", "Charges de personnel": "80 000"}
    )

    result = extract_fiscal_years([doc])

    record = result.latest
    assert record.chiffre_affaires is None
    assert record.charges_personnel == 80000
    assert "chiffre_affaires" in record.missing
    assert [a.type for a in result.anomalies] == ["calcul_errone"]


def test_records_are_sorted_by_year(documents):
    result = extract_fiscal_years(list(reversed(documents)))
    assert result.years == [2022, 2023, 2024]


def test_record_from_mapping_ignores_unknown_fields():
    record = record_from_mapping(
        2024, {"chiffre_affaires": "1000", "foo": 3, "stocks": None}
    )
    assert record.chiffre_affaires == 1000.0
    assert record.stocks is None
    assert not hasattr(record, "foo")
