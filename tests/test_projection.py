from datetime import date

import pytest

from reprise_finsight.accounting import degraded_output, run_accounting
from reprise_finsight.models import ProjectionHypotheses, UserOverrides
from reprise_finsight.projection import (
    PROJECTION_YEARS,
    amortization_schedule,
    appreciate,
    monthly_payment,
    projection_dataframe,
    run_projection,
)
from reprise_finsight.real_estate import run_real_estate
from reprise_finsight.valuation import run_valuation


def project(documents, business, tables, settings, overrides):
    accounting = run_accounting(documents, business, overrides, tables, settings)
    valuation = run_valuation(accounting, business, overrides, tables, settings)
    real_estate = run_real_estate(
        documents,
        business,
        overrides,
        date(2025, 1, 1),
        accounting_rent=accounting.latest_record.loyer,
    )
    return run_projection(accounting, valuation, real_estate, overrides)


# ---------------------------------------------------------------------------
# Loan
# ---------------------------------------------------------------------------


def test_zero_rate_is_linear():
    assert monthly_payment(120000, 0, 120) == 1000


def test_monthly_payment_formula():
    assert monthly_payment(100000, 6, 12) == pytest.approx(8606.64, abs=0.01)


def test_monthly_payment_rejects_bad_inputs():
    with pytest.raises(ValueError):
        monthly_payment(100000, 4.5, 0)
    with pytest.raises(ValueError):
        monthly_payment(-1, 4.5, 84)


def test_nothing_borrowed_means_no_payment():
    assert monthly_payment(0, 4.5, 84) == 0
    assert amortization_schedule(0, 4.5, 84).empty


def test_amortization_schedule_repays_the_principal():
    df = amortization_schedule(120000, 4.5, 84)

    assert list(df["annee"]) == [1, 2, 3, 4, 5, 6, 7]
    assert df["capital_rembourse"].sum() == pytest.approx(120000, abs=1)
    assert df["capital_restant"].iloc[-1] == pytest.approx(0, abs=1)


@pytest.mark.parametrize(
    "coverage, roi, expected",
    [
        (None, 30.0, "excellent"),
        (2.5, 30.0, "excellent"),
        (1.6, 30.0, "bon"),
        (1.3, 12.0, "acceptable"),
        (1.0, 50.0, "difficile"),
    ],
)
def test_appreciation(coverage, roi, expected):
    assert appreciate(coverage, roi) == expected


# ---------------------------------------------------------------------------
# Business plan
# ---------------------------------------------------------------------------


def test_no_accounting_data_gives_error_not_exception():
    for accounting in (None, degraded_output()):
        plan = run_projection(accounting, None, None, None)
        assert plan.years == ()
        assert plan.indicators is None
        assert plan.error == "Données comptables manquantes : projection impossible"


def test_five_year_plan(documents, restaurant, tables, settings):
    plan = project(documents, restaurant, tables, settings, UserOverrides())

    assert [y.annee for y in plan.years] == list(range(PROJECTION_YEARS + 1))
    year0, year1, year2 = plan.years[:3]
    assert year0.chiffre_affaires == 480000
    assert year0.ebe == 95000
    assert year0.annuite_emprunt == 0
    # +10 % opening hours, then +10 % works
    assert year1.chiffre_affaires == 528000
    assert year2.chiffre_affaires == 580800
    assert plan.taux_charges_variables == 0.6

    financing = plan.financing
    assert financing.prix_achat == pytest.approx(290950)
    assert financing.apport_personnel == round(290950 * 0.3)
    assert financing.montant_emprunte == pytest.approx(
        financing.investissement_total - financing.apport_personnel
    )

    indicators = plan.indicators
    assert indicators.ratio_couverture_dette == round(year1.ebe / financing.annuite, 2)
    assert plan.error is None
    assert plan.synthese


def test_without_loan_coverage_is_not_applicable(
    documents, restaurant, tables, settings
):
    overrides = UserOverrides(
        projection=ProjectionHypotheses(prix_achat=200000, apport_personnel=250000)
    )

    plan = project(documents, restaurant, tables, settings, overrides)

    assert plan.financing.montant_emprunte == 0
    assert plan.indicators.ratio_couverture_dette is None
    assert all(y.annuite_emprunt == 0 for y in plan.years)


def test_projection_dataframe(documents, restaurant, tables, settings):
    plan = project(documents, restaurant, tables, settings, UserOverrides())

    df = projection_dataframe(plan)

    assert len(df) == PROJECTION_YEARS + 1
    assert "reste_apres_dette" in df.columns
    assert df["charges_fixes"].iloc[1] == plan.years[1].charges_fixes
