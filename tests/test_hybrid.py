import pytest

from reprise_finsight.extraction import record_from_mapping
from reprise_finsight.hybrid import (
    compute_hybrid_valuation,
    detect_location_type,
    is_regulated_retail,
)
from reprise_finsight.models import LocationInfo, UserOverrides

CENTRE = LocationInfo(zone="centre-ville", population=50000)


def test_regulated_retail_codes(tables):
    assert is_regulated_retail("47.26Z", tables.tabac_coefficients)
    assert is_regulated_retail("47.62", tables.tabac_coefficients)
    assert not is_regulated_retail("56.10A", tables.tabac_coefficients)


@pytest.mark.parametrize(
    "location, expected",
    [
        (LocationInfo(proximite=("Gare SNCF",), population=50000), "tabac_transit"),
        (LocationInfo(tourisme=True), "tabac_touristique"),
        (LocationInfo(proximite=("Université",)), "tabac_etudiant"),
        (LocationInfo(zone="centre-ville", population=150000), "tabac_urbain_premium"),
        (CENTRE, "tabac_centre_ville"),
        (LocationInfo(zone="peripherie", population=15000), "tabac_peripherie"),
        (LocationInfo(population=3000), "tabac_rural"),
        (LocationInfo(), "tabac_centre_ville"),
    ],
)
def test_detect_location_type(location, expected, tables):
    assert detect_location_type(location, tables.tabac_coefficients) == expected


def test_commissions_only(tables):
    result = compute_hybrid_valuation(
        None,
        CENTRE,
        UserOverrides(commissions_nettes=100000),
        tables.tabac_coefficients,
    )

    assert result.location_type == "tabac_centre_ville"
    assert result.median == 265000
    assert result.commercial.median == 0
    assert result.error is None


def test_commissions_and_boutique(tables):
    overrides = UserOverrides(commissions_nettes=100000, boutique_revenue=100000)

    result = compute_hybrid_valuation(
        None, CENTRE, overrides, tables.tabac_coefficients
    )

    assert result.regulated.median == 265000
    assert result.commercial.median == 20000
    assert result.median == 285000
    assert result.low == result.regulated.low + result.commercial.low
    assert result.low <= result.median <= result.high


def test_commissions_read_from_accounts(tables):
    record = record_from_mapping(2024, {"commissions": 80000})

    result = compute_hybrid_valuation(record, CENTRE, None, tables.tabac_coefficients)

    assert result.regulated.base == 80000
    assert result.median == 212000


def test_no_commissions_gives_zero_and_error(tables):
    result = compute_hybrid_valuation(
        record_from_mapping(2024, {"chiffre_affaires": 300000}),
        CENTRE,
        UserOverrides(boutique_revenue=100000),
        tables.tabac_coefficients,
    )

    assert (result.low, result.median, result.high) == (0, 0, 0)
    assert result.error
