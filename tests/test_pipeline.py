import json
import time

import pytest

import reprise_finsight.report_store as report_store
from reprise_finsight.errors import StageError
from reprise_finsight.models import UserOverrides
from reprise_finsight.pipeline import (
    STAGE_ORDER,
    AccountingStage,
    CancelToken,
    ProjectionStage,
    StageResult,
    ValuationStage,
    analyze,
    compute_sections,
    merge_delta,
    new_state,
    report_payload,
    run_pipeline,
    with_asking_price,
)
from reprise_finsight.report_store import ReportStoreConfig, load_report


class ExplodingStage:
    name = "exploding"

    def run(self, state):
        raise ZeroDivisionError("division by zero")


class CancellingStage:
    name = "cancelling"

    def __init__(self, token):
        self.token = token

    def run(self, state):
        self.token.cancel()
        return StageResult()


class PartialStage:
    """Produces a delta together with an error marker."""

    name = "partial"

    def __init__(self, value):
        self.value = value

    def run(self, state):
        return StageResult(
            delta={"valuation": self.value},
            error=StageError("partial", "CalculationError", "Partial output"),
        )


def test_full_run_fills_every_section(documents, restaurant, tables, settings):
    state = analyze(documents, restaurant, None, tables, settings)

    assert state.sections_included == list(STAGE_ORDER)
    assert state.stage_errors == []
    assert state.cancelled is False
    assert state.valuation.median > 0
    assert state.real_estate.loyer_source == "comptabilite"
    assert 0 < state.validation.confidence.overall <= 100
    assert state.validation.metrics["marge_ebe_pct"] == 12.0
    assert len(state.projection.years) == 6


def test_zero_documents_degrades_without_raising(restaurant, tables, settings):
    state = analyze([], restaurant, None, tables, settings)

    assert state.sections_included == ["validation"]
    assert state.validation.confidence.overall == 0

    errors = {e.stage: e for e in state.stage_errors}
    assert errors["accounting"].kind == "MissingInputError"
    assert errors["accounting"].recoverable is False
    assert errors["projection"].message == (
        "Données comptables manquantes : projection impossible"
    )


def test_exception_in_a_stage_does_not_stop_the_run(
    documents, restaurant, tables, settings
):
    state = new_state(documents, restaurant, None, tables, settings)

    run_pipeline(state, stages=(AccountingStage(), ExplodingStage(), ValuationStage()))

    assert len(state.stage_errors) == 1
    error = state.stage_errors[0]
    assert error.stage == "exploding"
    assert error.kind == "ZeroDivisionError"
    assert error.recoverable is True
    assert state.valuation is not None
    assert state.sections_included == ["accounting", "valuation"]


def test_delta_is_merged_even_with_an_error(documents, restaurant, tables, settings):
    state = new_state(documents, restaurant, None, tables, settings)
    valuation = analyze(documents, restaurant, None, tables, settings).valuation

    run_pipeline(state, stages=(PartialStage(valuation),))

    assert state.valuation is valuation
    assert [e.kind for e in state.stage_errors] == ["CalculationError"]


def test_cancellation_skips_remaining_stages(documents, restaurant, tables, settings):
    token = CancelToken()
    state = new_state(documents, restaurant, None, tables, settings)

    run_pipeline(
        state,
        stages=(
            AccountingStage(),
            CancellingStage(token),
            ValuationStage(),
            ProjectionStage(),
        ),
        cancel_token=token,
    )

    assert state.cancelled is True
    assert state.skipped_stages == ["valuation", "projection"]
    assert state.valuation is None
    assert state.sections_included == ["accounting"]


def test_merge_delta_last_write_wins(documents, restaurant, tables, settings):
    state = new_state(documents, restaurant, None, tables, settings)
    first = analyze(documents, restaurant, None, tables, settings)
    second = analyze(documents[1:], restaurant, None, tables, settings)

    merge_delta(state, {"accounting": first.accounting})
    merge_delta(state, {"accounting": second.accounting})

    assert state.accounting is second.accounting
    assert compute_sections(state) == ["accounting"]


def test_merge_delta_rejects_inputs_and_unknown_slices(
    documents, restaurant, tables, settings
):
    state = new_state(documents, restaurant, None, tables, settings)

    with pytest.raises(ValueError, match="cannot overwrite"):
        merge_delta(state, {"documents": ()})
    with pytest.raises(ValueError, match="Unknown"):
        merge_delta(state, {"comparables": []})


def test_with_asking_price():
    overrides = UserOverrides(asking_price=250000)

    assert with_asking_price(overrides, None) is overrides
    assert with_asking_price(overrides, 300000).asking_price == 300000
    assert overrides.asking_price == 250000


# ---------------------------------------------------------------------------
# Report payload and persistence
# ---------------------------------------------------------------------------


def test_report_payload_is_json_and_filterable(documents, restaurant, tables, settings):
    state = analyze(documents, restaurant, None, tables, settings)

    payload = report_payload(state, sections=["valuation", "projection"])

    assert "valuation" in payload
    assert "projection" in payload
    assert "accounting" not in payload
    assert payload["sections_included"] == list(STAGE_ORDER)
    assert payload["inputs"]["business_info"]["name"] == "Le Bistrot du Port"
    assert [d["year"] for d in payload["inputs"]["documents"]] == [2022, 2023, 2024]
    json.dumps(payload, ensure_ascii=False)


def test_report_is_persisted(tmp_path, documents, restaurant, tables, settings):
    cfg = ReportStoreConfig(engine="sqlite", path=tmp_path / "reports.sqlite")

    state = analyze(documents, restaurant, None, tables, settings, report_store=cfg)

    assert state.report_id == 1
    stored = load_report(cfg, 1)
    assert stored.business_name == "Le Bistrot du Port"
    assert stored.sections == STAGE_ORDER
    assert stored.median_valuation == pytest.approx(state.valuation.median)


def test_report_store_timeout_is_recorded(
    monkeypatch, tmp_path, documents, restaurant, tables, settings
):
    def slow_save(cfg, payload):
        time.sleep(0.5)
        return 1

    monkeypatch.setattr(report_store, "save_report", slow_save)
    cfg = ReportStoreConfig(
        engine="sqlite", path=tmp_path / "reports.sqlite", timeout_seconds=0.05
    )

    state = analyze(documents, restaurant, None, tables, settings, report_store=cfg)

    assert state.report_id is None
    assert state.sections_included == list(STAGE_ORDER)
    assert [(e.stage, e.kind) for e in state.stage_errors] == [
        ("report_store", "ReportTimeoutError")
    ]


def test_unsupported_engine_is_recorded(
    tmp_path, documents, restaurant, tables, settings
):
    cfg = ReportStoreConfig(engine="postgres", path=tmp_path / "reports.db")

    state = analyze(documents, restaurant, None, tables, settings, report_store=cfg)

    assert state.report_id is None
    assert state.stage_errors[-1].stage == "report_store"
    assert state.stage_errors[-1].kind == "ValueError"
