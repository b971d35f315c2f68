from dataclasses import replace

import pytest

from reprise_finsight.accounting import AccountingOutput, run_accounting
from reprise_finsight.config import ValuationCoefficientRow
from reprise_finsight.extraction import ExtractionResult, record_from_mapping
from reprise_finsight.health import empty_health_score
from reprise_finsight.models import UserOverrides
from reprise_finsight.retraitement import EbeRetraitement
from reprise_finsight.sig import compute_sig
from reprise_finsight.trends import analyze_trends
from reprise_finsight.valuation import (
    WEIGHTS_EBE_PREFERRED,
    WEIGHTS_HYBRID,
    WEIGHTS_PATRIMONIAL_PREFERRED,
    ValuationMethodResult,
    blend,
    choose_preferred_method,
    compare_price,
    ebe_multiple_method,
    patrimonial_method,
    revenue_method,
    run_valuation,
    validate_weights,
)

TABAC_ROW = ValuationCoefficientRow(
    code="47.26",
    label="Tabac",
    ebe_multiple=(2.5, 3.5, 4.5),
    ca_percentage=(50.0, 65.0, 80.0),
)


def make_accounting(ebe_normatif=120000.0, **values):
    """Single-year AccountingOutput with a given normalized EBE."""
    record = record_from_mapping(2024, {"chiffre_affaires": 400000, **values})
    sig = compute_sig(record)
    return AccountingOutput(
        years_analyzed=(2024,),
        sig={2024: sig},
        retraitement=EbeRetraitement(
            year=2024,
            ebe_comptable=sig.ebe,
            adjustments=(),
            total_adjustments=ebe_normatif - sig.ebe,
            ebe_normatif=ebe_normatif,
            ecart_pct=None,
        ),
        ratios=None,
        trend=analyze_trends({2024: sig}),
        benchmark=None,
        health=empty_health_score(),
        extraction=ExtractionResult(records=(record,)),
    )


def method(name, low, median, high):
    return ValuationMethodResult(name, low, median, high, justification="")


# ---------------------------------------------------------------------------
# Individual methods
# ---------------------------------------------------------------------------


def test_ebe_multiple_method():
    result = ebe_multiple_method(make_accounting(120000), TABAC_ROW)

    assert result.method == "ebe"
    assert (result.low, result.median, result.high) == (300000, 420000, 540000)
    assert result.details["source"] == "ebe_normatif"


def test_revenue_method_uses_latest_revenue_below_three_years():
    result = revenue_method(make_accounting(), TABAC_ROW)

    assert result.median == 260000
    assert result.details["averaged"] is False


def test_patrimonial_method_adds_goodwill_and_revaluation():
    accounting = make_accounting(100000, total_actif=300000, total_dettes=200000)

    overrides = UserOverrides(revaluation_delta=10000)

    result = patrimonial_method(accounting, TABAC_ROW, overrides)

    # 100000 net assets + 10000 revaluation + 1.5 x 100000 goodwill
    assert result.median == 260000
    assert result.low == 234000
    assert result.high == 286000


def test_patrimonial_method_without_balance_sheet():
    result = patrimonial_method(make_accounting(0), TABAC_ROW)
    assert result.median == 0
    assert result.details["actif_net"] is None


# ---------------------------------------------------------------------------
# Synthesis helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "weights", [WEIGHTS_EBE_PREFERRED, WEIGHTS_PATRIMONIAL_PREFERRED, WEIGHTS_HYBRID]
)
def test_weight_sets_sum_to_one(weights):
    assert sum(weights.values()) == pytest.approx(1.0)
    validate_weights(weights)


def test_validate_weights_rejects_bad_sum():
    with pytest.raises(ValueError):
        validate_weights({"ebe": 0.5, "ca": 0.4})


def test_blend_weighted_average():
    methods = [
        method("ebe", 100, 200, 300),
        method("ca", 50, 100, 150),
        method("patrimoniale", 0, 100, 200),
    ]
    assert blend(methods, WEIGHTS_EBE_PREFERRED) == (80.0, 170.0, 260.0)


def test_blend_requires_every_weighted_method():
    with pytest.raises(ValueError):
        blend([method("ebe", 1, 2, 3)], WEIGHTS_EBE_PREFERRED)


def test_preferred_method_rules():
    ebe = method("ebe", 0, 100000, 0)
    assert choose_preferred_method(-1, 50000, ebe)[0] == "patrimoniale"
    assert choose_preferred_method(30000, 250000, ebe)[0] == "patrimoniale"
    assert choose_preferred_method(30000, 200000, ebe)[0] == "ebe"
    assert choose_preferred_method(30000, None, ebe)[0] == "ebe"


@pytest.mark.parametrize(
    "asking, category",
    [
        (114000, "prix marche"),
        (115000, "prix marche"),
        (115010, "prix marche"),
        (115100, "sur-evalue"),
        (85000, "prix marche"),
        (84900, "sous-evalue"),
    ],
)
def test_price_comparison_band_is_inclusive(asking, category):
    comparison = compare_price(asking, 100000, 15.0)
    assert comparison.category == category


def test_price_comparison_needs_a_price():
    assert compare_price(None, 100000) is None
    assert compare_price(0, 100000) is None
    assert compare_price(100000, 0) is None


# ---------------------------------------------------------------------------
# Full stage
# ---------------------------------------------------------------------------


def test_classical_valuation_of_a_restaurant(documents, restaurant, tables, settings):
    overrides = UserOverrides(asking_price=300000)
    accounting = run_accounting(documents, restaurant, overrides, tables, settings)

    synthesis = run_valuation(accounting, restaurant, overrides, tables, settings)

    assert synthesis.sector_matched is True
    assert synthesis.preferred_method == "ebe"
    assert synthesis.weights == WEIGHTS_EBE_PREFERRED
    assert synthesis.method("ebe").median == 285000
    assert synthesis.method("ca").median == 336000
    assert synthesis.method("patrimoniale").median == 242500
    assert synthesis.ca_averaged is True
    assert synthesis.median == pytest.approx(290950)
    assert synthesis.low <= synthesis.median <= synthesis.high
    assert synthesis.price_comparison.category == "prix marche"
    assert synthesis.hybrid is None
    assert synthesis.classical_reference == ()


def test_unknown_sector_falls_back_to_default(documents, restaurant, tables, settings):
    business = replace(restaurant, sector_activity_code="99.99Z")
    accounting = run_accounting(documents, business, None, tables, settings)

    synthesis = run_valuation(accounting, business, None, tables, settings)

    assert synthesis.sector_matched is False
    assert synthesis.sector_code == "DEFAULT"
    assert any("DEFAULT" in text for text in synthesis.limitations)


def test_regulated_retail_uses_hybrid_only(documents, tabac, tables, settings):
    overrides = UserOverrides(commissions_nettes=100000)
    accounting = run_accounting(documents, tabac, overrides, tables, settings)

    synthesis = run_valuation(accounting, tabac, overrides, tables, settings)

    assert synthesis.preferred_method == "hybride"
    assert [m.method for m in synthesis.methods] == ["hybride"]
    assert synthesis.weights == WEIGHTS_HYBRID
    assert synthesis.median == 265000
    assert synthesis.classical_reference == ()


def test_regulated_retail_classical_comparison(documents, tabac, tables, settings):
    overrides = UserOverrides(commissions_nettes=100000)
    accounting = run_accounting(documents, tabac, overrides, tables, settings)
    compare = replace(settings, compare_classical=True)

    synthesis = run_valuation(accounting, tabac, overrides, tables, compare)

    methods = [m.method for m in synthesis.classical_reference]
    assert methods == ["ebe", "ca", "patrimoniale"]
    # Reference methods never change the hybrid figure.
    assert synthesis.median == 265000
    assert synthesis.method("ebe") is not None
