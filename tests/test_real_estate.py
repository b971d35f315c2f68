from dataclasses import replace
from datetime import date

import pytest

from reprise_finsight.models import FiscalDocument, LeaseTerms, UserOverrides
from reprise_finsight.real_estate import (
    analyze_property_purchase,
    estimate_droit_au_bail,
    parse_lease_text,
    recommend_purchase,
    remaining_months,
    run_real_estate,
    simulate_rent,
)

REFERENCE = date(2025, 1, 1)

LEASE_TEXT = """BAIL COMMERCIAL 3-6-9
Signé le 15/03/2019, prise d'effet le 01/04/2019.
BAILLEUR : SCI DU PORT
Loyer annuel : 24 000 € HT
Surface : 85 m²
Dépôt de garantie : 6 000 €
Cession libre du bail."""


# ---------------------------------------------------------------------------
# Buy-vs-rent
# ---------------------------------------------------------------------------


def test_gross_yield_above_seven_percent_means_buy():
    analysis = analyze_property_purchase(18000, 200000)

    assert analysis.rentabilite_brute_pct == 9.0
    assert analysis.recommandation == "acheter"
    assert analysis.rentabilite_nette_pct < analysis.rentabilite_brute_pct


@pytest.mark.parametrize(
    "gross, expected",
    [(7.1, "acheter"), (7.0, "negocier"), (5.0, "negocier"), (4.9, "louer")],
)
def test_recommendation_thresholds(gross, expected):
    assert recommend_purchase(gross) == expected


@pytest.mark.parametrize(
    "rent, stored_yield, expected",
    [(14070, 7.0, "acheter"), (9920, 5.0, "louer")],
)
def test_recommendation_uses_unrounded_yield(rent, stored_yield, expected):
    analysis = analyze_property_purchase(rent, 200000)

    assert analysis.rentabilite_brute_pct == stored_yield
    assert analysis.recommandation == expected


def test_price_estimated_from_surface():
    analysis = analyze_property_purchase(12000, None, surface_m2=80, price_sqm=2500)

    assert analysis.valeur_estimee == 200000
    assert analysis.prix == 200000
    assert analysis.rentabilite_brute_pct == 6.0
    assert analysis.recommandation == "negocier"


def test_overpriced_walls_downgrade_buy_to_negotiate():
    analysis = analyze_property_purchase(18000, 240000, surface_m2=80, price_sqm=2500)

    assert analysis.rentabilite_brute_pct == 7.5
    assert analysis.recommandation == "negocier"


def test_no_rent_or_price_gives_no_analysis():
    assert analyze_property_purchase(None, 200000) is None
    assert analyze_property_purchase(12000) is None


# ---------------------------------------------------------------------------
# Lease
# ---------------------------------------------------------------------------


def test_parse_lease_text():
    terms = parse_lease_text(LEASE_TEXT)

    assert terms.lease_type == "commercial_3_6_9"
    assert terms.bailleur == "SCI DU PORT"
    assert terms.date_signature == date(2019, 3, 15)
    assert terms.date_effet == date(2019, 4, 1)
    assert terms.loyer_annuel_hc == 24000
    assert terms.surface_m2 == 85
    assert terms.depot_garantie == 6000
    assert terms.clause_cession == "cession libre"


def test_monthly_rent_in_lease_text_is_annualized():
    terms = parse_lease_text("Bail dérogatoire. Loyer mensuel : 1 500 €")
    assert terms.lease_type == "derogatoire"
    assert terms.loyer_annuel_hc == 18000


def test_remaining_months():
    assert remaining_months(date(2029, 1, 1), REFERENCE) == 48
    assert remaining_months(date(2020, 1, 1), REFERENCE) == 0
    assert remaining_months(None, REFERENCE) is None


def test_manual_commercial_lease(restaurant, lease_overrides):
    output = run_real_estate([], restaurant, lease_overrides, REFERENCE)

    lease = output.lease
    assert lease.source == "saisie_utilisateur"
    # Nine years after the effective date.
    assert lease.date_fin == date(2029, 1, 1)
    assert lease.duree_restante_mois == 48
    assert lease.loyer_m2 == 300
    assert lease.loyer_marche_m2 == 350
    assert lease.ecart_marche_pct == -14.3
    assert lease.appreciation == "marche"
    assert lease.appreciation_evaluee is True
    assert output.loyer_annuel == 24000
    assert output.loyer_source == "saisie_utilisateur"


def test_lease_document_is_used(restaurant):
    bail = FiscalDocument(
        filename="bail.pdf", document_type="bail", raw_text=LEASE_TEXT
    )

    output = run_real_estate([bail], restaurant, None, REFERENCE)

    assert output.lease.source == "document"
    assert output.lease.date_fin == date(2028, 4, 1)
    assert output.loyer_source == "document"
    assert output.droit_au_bail.valeur_estimee > 0


def test_without_lease_analysis_is_degraded(restaurant):
    output = run_real_estate([], restaurant, None, REFERENCE)

    assert output.lease is None
    assert output.loyer_annuel is None
    assert output.rent_simulation is None
    assert output.property is None
    assert output.droit_au_bail.valeur_estimee == 0
    assert any("Bail non fourni" in text for text in output.limitations)
    assert 0 <= output.score.total <= 100


def test_accounting_rent_is_used_without_lease(restaurant):
    output = run_real_estate([], restaurant, None, REFERENCE, accounting_rent=24000)

    assert output.lease is None
    assert output.loyer_annuel == 24000
    assert output.loyer_source == "comptabilite"


def test_rent_simulation_below_market(restaurant, lease_overrides):
    lease = run_real_estate([], restaurant, lease_overrides, REFERENCE).lease

    simulation = simulate_rent(lease)

    assert simulation.loyer_marche_annuel == 28000
    names = [s.name for s in simulation.scenarios]
    assert names == ["pessimiste", "realiste", "optimiste"]
    assert simulation.scenarios[0].nouveau_loyer_annuel == 26000
    assert simulation.scenarios[1].nouveau_loyer_annuel == 24000
    assert sum(s.probabilite for s in simulation.scenarios) == 100


def test_rent_simulation_above_market(restaurant, lease_overrides):
    overrides = replace(
        lease_overrides, lease=replace(lease_overrides.lease, loyer_annuel_hc=36000)
    )
    lease = run_real_estate([], restaurant, overrides, REFERENCE).lease

    simulation = simulate_rent(lease)

    assert lease.appreciation == "desavantageux"
    rents = [s.nouveau_loyer_annuel for s in simulation.scenarios]
    assert rents == [33600, 31200, 28000]


def test_droit_au_bail_blends_rent_and_percentage(restaurant, lease_overrides):
    lease = run_real_estate([], restaurant, lease_overrides, REFERENCE).lease

    rent_only = estimate_droit_au_bail(lease)
    blended = estimate_droit_au_bail(lease, business_value=290950)

    # 2.0 base + 0.2 for a 3-6-9 lease
    assert rent_only.coefficient == 2.2
    assert rent_only.valeur_estimee == 52800
    assert blended.valeur_methode_pourcentage == 58190
    assert blended.valeur_estimee == 55495


def test_droit_au_bail_without_lease():
    assert estimate_droit_au_bail(None).valeur_estimee == 0


def test_walls_purchase_with_lease_surface(restaurant):
    overrides = UserOverrides(
        lease=LeaseTerms(loyer_annuel_hc=18000, surface_m2=80), property_price=200000
    )
    output = run_real_estate([], restaurant, overrides, REFERENCE)

    assert output.property.recommandation == "acheter"
    assert output.property.valeur_estimee == 200000
