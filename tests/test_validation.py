from datetime import date

from conftest import BALANCE_SHEET, INCOME_STATEMENTS
from reprise_finsight.accounting import degraded_output, run_accounting
from reprise_finsight.models import FiscalDocument, UserOverrides
from reprise_finsight.real_estate import run_real_estate
from reprise_finsight.validation import (
    coherence_checks,
    recency_score,
    reliability_score,
    run_validation,
)
from reprise_finsight.valuation import run_valuation


def full_validation(documents, business, tables, settings, overrides=None):
    overrides = overrides or UserOverrides()
    accounting = run_accounting(documents, business, overrides, tables, settings)
    valuation = run_valuation(accounting, business, overrides, tables, settings)
    real_estate = run_real_estate(
        documents,
        business,
        overrides,
        reference=date(settings.reference_year, 1, 1),
        accounting_rent=accounting.latest_record.loyer,
        business_value=valuation.median,
    )
    return run_validation(
        documents,
        accounting,
        valuation,
        real_estate,
        tables.alert_rules,
        settings.reference_year,
    )


def test_consistent_session(documents, restaurant, tables, settings):
    output = full_validation(documents, restaurant, tables, settings)

    names = [c.name for c in output.coherence_checks]
    assert names[:4] == [
        "presence_documents",
        "presence_comptabilite",
        "coherence_annees",
        "coherence_ca_extraction_sig",
    ]
    assert "coherence_ebe_comptabilite_valorisation" in names
    assert "coherence_ca_comptabilite_valorisation" in names
    assert output.count("error") == 0
    assert 0 < output.confidence.overall <= 100
    assert output.confidence.points_bloquants == ()
    assert output.metrics["years_count"] == 3


def test_empty_session_has_zero_confidence(tables):
    output = run_validation([], degraded_output(), None, None, tables.alert_rules, 2025)

    assert output.confidence.overall == 0
    assert len(output.confidence.points_bloquants) == 1


def test_lease_only_session_has_zero_confidence(restaurant, tables, settings):
    lease = FiscalDocument(
        filename="bail.pdf",
        document_type="bail",
        raw_text="BAIL COMMERCIAL 3-6-9\nLoyer annuel : 24 000 € HT",
    )
    accounting = run_accounting([lease], restaurant, None, tables, settings)

    output = run_validation(
        [lease], accounting, None, None, tables.alert_rules, settings.reference_year
    )

    assert accounting.has_data is False
    assert output.confidence.overall == 0
    assert output.confidence.completeness == 0
    assert output.confidence.points_bloquants == (
        "Aucune donnée comptable exploitable dans les documents fournis",
    )
    assert [c.status for c in output.coherence_checks] == ["error", "error"]
    assert all(0 <= v <= 100 for v in output.confidence.breakdown.values())
    assert {"DATA_001", "DATA_002"} <= {a.id for a in output.alerts}


def test_revenue_mismatch_between_key_figures_and_tables(restaurant, tables, settings):
    items = {**INCOME_STATEMENTS[2024], **BALANCE_SHEET}
    doc = FiscalDocument(
        filename="liasse_2024.pdf",
        document_type="liasse_fiscale",
        year=2024,
        key_values={"chiffre_affaires": 600000},
        tables=[[[label, amount] for label, amount in items.items()]],
    )
    accounting = run_accounting([doc], restaurant, None, tables, settings)

    checks = {c.name: c for c in coherence_checks([doc], accounting, None)}

    assert accounting.latest_sig.chiffre_affaires == 600000
    assert checks["coherence_ca_extraction_sig"].status == "error"


def test_reported_ebe_checked_with_tolerance(restaurant, tables, settings):
    items = {**INCOME_STATEMENTS[2024], "Excédent brut d'exploitation": 66000}
    doc = FiscalDocument(
        filename="cr_2024.pdf",
        document_type="compte_resultat",
        year=2024,
        tables=[[[label, amount] for label, amount in items.items()]],
    )
    accounting = run_accounting([doc], restaurant, None, tables, settings)

    checks = {c.name: c for c in coherence_checks([doc], accounting, None)}

    # 60000 computed against 66000 declared: 9.1 % off
    assert checks["coherence_ebe_document_sig"].status == "warning"


def test_recency_score():
    assert recency_score(2025, 2025) == 100
    assert recency_score(2024, 2025) == 90
    assert recency_score(2010, 2025) == 10
    assert recency_score(None, 2025) == 0


def test_reliability_score_is_bounded():
    assert reliability_score([], [], []) == 100
