from pathlib import Path

import pytest

from reprise_finsight.report_store import (
    ReportStoreConfig,
    init_database,
    list_reports,
    load_report,
    save_report,
)


def make_tmp_store(tmp_path: Path) -> ReportStoreConfig:
    """Helper to build a report store config pointing to a temporary SQLite file."""
    return ReportStoreConfig(
        engine="sqlite", path=tmp_path / "store" / "reports.sqlite"
    )


def make_payload(name, siret=None, confidence=72, median=290950.0):
    return {
        "inputs": {
            "business_info": {
                "name": name,
                "siret": siret,
                "sector_activity_code": "56.10A",
            }
        },
        "sections_included": ["accounting", "valuation", "validation"],
        "valuation": {"median": median},
        "validation": {"confidence": {"overall": confidence}},
    }


def test_init_database_is_idempotent(tmp_path: Path):
    cfg = make_tmp_store(tmp_path)

    init_database(cfg)
    init_database(cfg)

    assert cfg.path.exists()


def test_save_and_load_round_trip(tmp_path: Path):
    cfg = make_tmp_store(tmp_path)
    payload = make_payload("Le Bistrot du Port", siret="12345678900012")

    report_id = save_report(cfg, payload)
    stored = load_report(cfg, report_id)

    assert stored.id == report_id
    assert stored.business_name == "Le Bistrot du Port"
    assert stored.siret == "12345678900012"
    assert stored.activity_code == "56.10A"
    assert stored.sections == ("accounting", "valuation", "validation")
    assert stored.confidence == 72
    assert stored.median_valuation == 290950.0
    assert stored.payload == payload
    assert stored.created_at.tzinfo is not None


def test_summary_columns_tolerate_missing_sections(tmp_path: Path):
    cfg = make_tmp_store(tmp_path)

    payload = {"inputs": {"business_info": {"name": "Sans données"}}}

    report_id = save_report(cfg, payload)
    stored = load_report(cfg, report_id)

    assert stored.sections == ()
    assert stored.confidence is None
    assert stored.median_valuation is None


def test_list_reports_newest_first(tmp_path: Path):
    cfg = make_tmp_store(tmp_path)
    save_report(cfg, make_payload("Premier"))
    save_report(cfg, make_payload("Second", confidence=40))

    df = list_reports(cfg)

    assert list(df["business_name"]) == ["Second", "Premier"]
    assert list(df["confidence"]) == [40, 72]


def test_list_reports_empty(tmp_path: Path):
    df = list_reports(make_tmp_store(tmp_path))

    assert df.empty
    assert list(df.columns) == [
        "id",
        "created_at",
        "business_name",
        "siret",
        "confidence",
        "median_valuation",
    ]


def test_load_unknown_report(tmp_path: Path):
    assert load_report(make_tmp_store(tmp_path), 42) is None


def test_unsupported_engine(tmp_path: Path):
    cfg = ReportStoreConfig(engine="postgres", path=tmp_path / "reports.db")

    with pytest.raises(ValueError, match="Unsupported report store engine"):
        init_database(cfg)
