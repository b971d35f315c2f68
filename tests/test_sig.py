import pytest

from reprise_finsight.extraction import record_from_mapping
from reprise_finsight.sig import (
    SIG_LINES,
    compute_sig,
    compute_sig_series,
    sig_dataframe,
)


def make_record(year=2024, **values):
    base = {
        "chiffre_affaires": 500000,
        "achats_marchandises": 300000,
        "charges_externes": 60000,
        "charges_personnel": 80000,
        "dotations_amortissements": 10000,
        "resultat_financier": -2000,
        "resultat_exceptionnel": 0,
        "impots": 12000,
    }
    base.update(values)
    return record_from_mapping(year, base)


def test_commercial_margin_and_percentage():
    sig = compute_sig(make_record())

    assert sig.value("marge_commerciale") == 200000
    assert sig.lines["marge_commerciale"].pct_of_revenue == 40.0
    assert sig.lines["chiffre_affaires"].pct_of_revenue == 100.0


def test_cascade_identities():
    """Each SIG line is the previous one minus (or plus) its input."""
    sig = compute_sig(make_record())

    assert sig.value("valeur_ajoutee") == 140000
    assert sig.ebe == 60000
    assert sig.value("resultat_exploitation") == 50000
    assert sig.value("resultat_courant") == 48000
    assert sig.resultat_net == 36000
    assert sig.missing == ()
    assert list(sig.lines) == [key for key, _ in SIG_LINES]


def test_owner_remuneration_is_deducted_from_ebe():
    sig = compute_sig(make_record(charges_exploitant=20000))
    assert sig.ebe == 40000


def test_personnel_total_from_salaries_and_social_charges():
    record = record_from_mapping(
        2024,
        {
            "chiffre_affaires": 100000,
            "salaires": 30000,
            "charges_sociales": 12000,
        },
    )
    sig = compute_sig(record)
    assert sig.inputs["charges_personnel"] == 42000


def test_missing_inputs_default_to_zero_and_are_listed():
    record = record_from_mapping(2024, {"chiffre_affaires": 100000})

    sig = compute_sig(record)

    assert sig.ebe == 100000
    assert "achats_marchandises" in sig.missing
    assert "charges_exploitant" not in sig.missing
    # Margin equal to revenue without purchases: flagged as suspicious.
    assert len(sig.warnings) == 1


def test_revenue_falls_back_to_sales_of_goods():
    record = record_from_mapping(
        2024, {"ventes_marchandises": 80000, "achats_marchandises": 50000}
    )
    sig = compute_sig(record)

    assert sig.chiffre_affaires == 80000
    assert sig.value("marge_commerciale") == 30000
    assert "chiffre_affaires" not in sig.missing


def test_zero_revenue_gives_no_percentages():
    sig = compute_sig(record_from_mapping(2024, {"charges_externes": 1000}))

    assert sig.chiffre_affaires == 0
    assert "chiffre_affaires" in sig.missing
    assert all(line.pct_of_revenue is None for line in sig.lines.values())


def test_reported_aggregates_are_kept_apart():
    sig = compute_sig(make_record(ebe=61000))
    assert sig.reported == {"ebe": 61000.0}
    assert sig.ebe == 60000


def test_sig_dataframe_is_long_format_and_ordered():
    series = compute_sig_series(
        [make_record(2024), make_record(2023, chiffre_affaires=450000)]
    )
    df = sig_dataframe(list(series.values()))

    assert list(df.columns) == ["year", "key", "label", "value", "pct_of_revenue"]
    assert len(df) == 2 * len(SIG_LINES)
    assert df["year"].iloc[0] == 2023
    ebe_2024 = df[(df["year"] == 2024) & (df["key"] == "ebe")]["value"].iloc[0]
    assert ebe_2024 == pytest.approx(60000)
