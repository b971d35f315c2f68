import json
from datetime import date
from pathlib import Path

import pytest

from reprise_finsight.config import AnalysisSettings, load_reference_tables
from reprise_finsight.models import (
    BusinessInfo,
    FiscalDocument,
    LeaseTerms,
    LocationInfo,
    UserOverrides,
)

# Income statement figures of a small restaurant, one dict per year.
# EBE 2024 = 500000 - 300000 - 60000 - 80000 = 60000
INCOME_STATEMENTS = {
    2022: {
        "Chiffre d'affaires net": 460000,
        "Achats de marchandises": 280000,
        "Autres achats et charges externes": 57000,
        "Charges de personnel": 76000,
        "Dotations aux amortissements": 10000,
        "Résultat financier": -2500,
        "Résultat exceptionnel": 0,
        "Impôts sur les bénéfices": 8000,
        "Loyers et charges locatives": 24000,
    },
    2023: {
        "Chiffre d'affaires net": 480000,
        "Achats de marchandises": 290000,
        "Autres achats et charges externes": 58000,
        "Charges de personnel": 78000,
        "Dotations aux amortissements": 10000,
        "Résultat financier": -2000,
        "Résultat exceptionnel": 0,
        "Impôts sur les bénéfices": 10000,
        "Loyers et charges locatives": 24000,
    },
    2024: {
        "Chiffre d'affaires net": 500000,
        "Achats de marchandises": 300000,
        "Autres achats et charges externes": 60000,
        "Charges de personnel": 80000,
        "Dotations aux amortissements": 10000,
        "Résultat financier": -2000,
        "Résultat exceptionnel": 0,
        "Impôts sur les bénéfices": 12000,
        "Loyers et charges locatives": 24000,
    },
}

BALANCE_SHEET = {
    "Total actif": 250000,
    "Total dettes": 150000,
    "Capitaux propres": 100000,
    "Stocks": 20000,
    "Créances clients": 5000,
    "Dettes fournisseurs": 30000,
    "Disponibilités": 40000,
}


def make_document(year, items, document_type="liasse_fiscale", filename=None):
    """Build a FiscalDocument whose single table holds (label, amount) rows."""
    return FiscalDocument(
        filename=filename or f"{document_type}_{year}.pdf",
        document_type=document_type,
        year=year,
        tables=[[[label, amount] for label, amount in items.items()]],
    )


def make_documents(years=(2022, 2023, 2024)):
    """One liasse fiscale per year (income statement + balance sheet)."""
    return [
        make_document(year, {**INCOME_STATEMENTS[year], **BALANCE_SHEET})
        for year in years
    ]


@pytest.fixture(scope="session")
def tables():
    return load_reference_tables()


@pytest.fixture
def settings():
    return AnalysisSettings(reference_year=2025)


@pytest.fixture
def restaurant():
    return BusinessInfo(
        name="Le Bistrot du Port",
        siret="12345678900012",
        sector_activity_code="56.10A",
        activity_label="Restauration traditionnelle",
        location=LocationInfo(
            zone="centre-ville", population=50000, code_postal="35000"
        ),
    )


@pytest.fixture
def tabac():
    return BusinessInfo(
        name="Tabac de la Gare",
        siret="98765432100011",
        sector_activity_code="47.26Z",
        activity_label="Tabac presse",
        location=LocationInfo(
            zone="centre-ville", population=50000, code_postal="35000"
        ),
    )


@pytest.fixture
def documents():
    return make_documents()


@pytest.fixture
def lease_overrides():
    return UserOverrides(
        lease=LeaseTerms(
            lease_type="commercial_3_6_9",
            date_effet=date(2020, 1, 1),
            loyer_annuel_hc=24000,
            surface_m2=80,
        )
    )


@pytest.fixture
def session_file(tmp_path: Path) -> Path:
    """Write a session input bundle for the three-year restaurant."""
    bundle = {
        "documents": [
            {
                "filename": f"liasse_{year}.pdf",
                "document_type": "liasse_fiscale",
                "year": year,
                "tables": [
                    {
                        "rows": [
                            [label, amount]
                            for label, amount in {
                                **INCOME_STATEMENTS[year],
                                **BALANCE_SHEET,
                            }.items()
                        ]
                    }
                ],
            }
            for year in (2022, 2023, 2024)
        ],
        "business_info": {
            "name": "Le Bistrot du Port",
            "siret": "12345678900012",
            "sector_activity_code": "56.10A",
            "location": {"zone": "centre-ville", "population": 50000},
        },
        "overrides": {"asking_price": 300000},
    }
    path = tmp_path / "session.json"
    path.write_text(json.dumps(bundle, ensure_ascii=False), encoding="utf-8")
    return path
