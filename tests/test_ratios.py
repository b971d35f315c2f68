import pytest

from reprise_finsight.config import RatioRule
from reprise_finsight.extraction import record_from_mapping
from reprise_finsight.ratios import (
    MissingVariableError,
    build_ratio_variables,
    compute_ratios,
    safe_eval,
)
from reprise_finsight.sig import compute_sig


def test_safe_eval_arithmetic():
    variables = {"a": 10, "b": 4}
    assert safe_eval("a / b * 100", variables) == 250.0
    assert safe_eval("-(a - b) ** 2", variables) == -36.0


def test_safe_eval_missing_variable():
    with pytest.raises(MissingVariableError):
        safe_eval("a + c", {"a": 1})
    # None counts as missing.
    with pytest.raises(MissingVariableError):
        safe_eval("a", {"a": None})


def test_safe_eval_rejects_unsafe_constructs():
    with pytest.raises(ValueError):
        safe_eval("__import__('os')", {})
    with pytest.raises(ValueError):
        safe_eval("a.b", {"a": 1})
    with pytest.raises(ValueError):
        safe_eval("a > 1", {"a": 2})
    with pytest.raises(ValueError):
        safe_eval("1 +", {})


def test_safe_eval_division_by_zero():
    with pytest.raises(ZeroDivisionError):
        safe_eval("a / b", {"a": 1, "b": 0})


def test_safe_eval_logic_mode():
    snapshot = {"x": 3, "flag": True, "tendance": "declin"}
    assert safe_eval("0 < x < 5", snapshot, allow_logic=True) is True
    assert safe_eval("x > 1 and not flag", snapshot, allow_logic=True) is False
    assert safe_eval("tendance == 'declin'", snapshot, allow_logic=True) is True
    assert safe_eval("abs(x - 10) > 5", snapshot, allow_logic=True) is True


def test_logic_mode_reports_missing_metric_in_any_operand():
    with pytest.raises(MissingVariableError):
        safe_eval("x > 100 and missing > 1", {"x": 3}, allow_logic=True)


def test_compute_ratios_from_record():
    record = record_from_mapping(
        2024,
        {
            "chiffre_affaires": 500000,
            "achats_marchandises": 300000,
            "charges_externes": 60000,
            "charges_personnel": 80000,
            "stocks": 20000,
            "total_dettes": 150000,
            "capitaux_propres": 100000,
        },
    )
    variables = build_ratio_variables(record, compute_sig(record), 0.20)
    rules = (
        RatioRule(
            "marge_ebe_pct",
            "Marge d'EBE (%)",
            "ebe / chiffre_affaires * 100",
            "percent",
        ),
        RatioRule("rotation", "Rotation", "stocks / achats_marchandises * 365", "days"),
        RatioRule(
            "endettement", "Endettement", "dettes / capitaux_propres * 100", "percent"
        ),
        RatioRule(
            "delai_clients", "Délai clients", "creances_clients / ca_ttc * 365", "days"
        ),
        RatioRule("ca", "CA", "chiffre_affaires", "amount"),
    )

    ratios = compute_ratios(variables, rules, 2024)

    assert ratios.year == 2024
    assert ratios.get("marge_ebe_pct") == 12.0
    assert ratios.get("rotation") == 24
    assert ratios.get("endettement") == 150.0
    assert ratios.get("delai_clients") is None
    assert ratios.get("ca") == 500000
    assert variables["ca_ttc"] == pytest.approx(600000)
    assert variables["bfr"] == 20000


def test_packaged_ratio_rules_load(tables):
    keys = [rule.key for rule in tables.ratio_rules]
    assert "marge_ebe_pct" in keys
    assert "taux_endettement_pct" in keys
