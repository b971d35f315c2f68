import pytest

from reprise_finsight.benchmark import classify_position, compare_to_sector
from reprise_finsight.extraction import record_from_mapping
from reprise_finsight.health import compute_health_score, empty_health_score, interpret
from reprise_finsight.ratios import RatioResult, RatioSet
from reprise_finsight.sig import compute_sig
from reprise_finsight.trends import analyze_trends, evolution_pct


def sig_for(year, revenue, ebe_costs=0.0):
    return compute_sig(
        record_from_mapping(
            year, {"chiffre_affaires": revenue, "charges_externes": ebe_costs}
        )
    )


def ratio_set(**values):
    return RatioSet(
        year=2024,
        results=tuple(RatioResult(k, k, v, "percent") for k, v in values.items()),
    )


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "first, last, tendance",
    [
        (100000, 106000, "croissance"),
        (100000, 105000, "stable"),
        (100000, 95000, "stable"),
        (100000, 94000, "declin"),
    ],
)
def test_trend_threshold_is_five_percent(first, last, tendance):
    trend = analyze_trends({2022: sig_for(2022, first), 2024: sig_for(2024, last)})
    assert trend.tendance == tendance


def test_single_year_has_no_evolution():
    trend = analyze_trends({2024: sig_for(2024, 100000)})

    assert trend.tendance == "stable"
    assert trend.ca_evolution_pct == 0.0
    assert trend.yearly_growth == {2024: None}


def test_yearly_growth_and_comment():
    trend = analyze_trends(
        {
            2022: sig_for(2022, 100000),
            2023: sig_for(2023, 110000),
            2024: sig_for(2024, 121000),
        }
    )
    assert trend.yearly_growth == {2022: None, 2023: 10.0, 2024: 10.0}
    assert trend.ca_evolution_pct == 21.0
    assert "2022-2024" in trend.commentaire


def test_evolution_from_zero():
    assert evolution_pct(0, 100) == 100.0
    assert evolution_pct(0, -5) == 0.0
    assert evolution_pct(-100, -50) == 50.0


# ---------------------------------------------------------------------------
# Sector benchmark
# ---------------------------------------------------------------------------


def test_classify_position_band_and_inverse_ratios():
    assert classify_position("marge_ebe_pct", 13.0, 12.0) == ("similaire", 8.3)
    assert classify_position("marge_ebe_pct", 15.0, 12.0)[0] == "superieur"
    # Lower debt than the sector is better.
    assert classify_position("taux_endettement_pct", 50.0, 100.0)[0] == "superieur"
    assert classify_position("delai_clients_jours", 10.0, 3.0)[0] == "inferieur"


def test_classify_position_rejects_zero_average():
    with pytest.raises(ValueError):
        classify_position("marge_ebe_pct", 10.0, 0.0)


def test_compare_to_known_sector(tables):
    ratios = ratio_set(
        marge_ebe_pct=12.0, taux_endettement_pct=150.0, marge_brute_pct=None
    )

    bench = compare_to_sector(ratios, "56.10A", tables.sector_benchmarks)

    assert bench.matched is True
    assert bench.sector_code == "56.10"
    assert bench.position_of("marge_ebe_pct") == "similaire"
    assert bench.position_of("taux_endettement_pct") == "inferieur"
    assert bench.position_of("marge_brute_pct") is None
    assert bench.limitations == ()


def test_unknown_sector_uses_default_row(tables):
    bench = compare_to_sector(
        ratio_set(marge_ebe_pct=10.0), "99.99Z", tables.sector_benchmarks
    )

    assert bench.matched is False
    assert bench.sector_code == "DEFAULT"
    assert len(bench.limitations) == 1


# ---------------------------------------------------------------------------
# Health score
# ---------------------------------------------------------------------------


def test_health_score_is_bounded_and_weighted():
    good = ratio_set(
        marge_ebe_pct=20.0,
        marge_nette_pct=10.0,
        marge_brute_pct=60.0,
        bfr_jours_ca=-10.0,
        taux_endettement_pct=40.0,
        capacite_autofinancement=80000.0,
    )
    growth = analyze_trends({2022: sig_for(2022, 100000), 2024: sig_for(2024, 130000)})

    score = compute_health_score(good, growth)

    assert set(score.breakdown) == {
        "rentabilite",
        "liquidite",
        "solvabilite",
        "activite",
    }
    assert all(0 <= v <= 100 for v in score.breakdown.values())
    assert score.breakdown["rentabilite"] == 100
    assert 80 <= score.overall <= 100
    assert score.interpretation == interpret(score.overall)


def test_health_score_of_empty_ratios_stays_in_range():
    score = compute_health_score(ratio_set(), analyze_trends({}))
    assert 0 <= score.overall <= 100
    assert score.breakdown["rentabilite"] == 0


def test_empty_health_score():
    score = empty_health_score()
    assert score.overall == 0
    assert all(v == 0 for v in score.breakdown.values())
