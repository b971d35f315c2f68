# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Analysis pipeline for Reprise FinSight.

This module ties the five engines together for one analysis session:

    accounting -> valuation -> real_estate -> validation -> projection

Each stage reads what it needs from an :class:`AnalysisState` and returns a
:class:`StageResult` made of:

- a *delta*: mapping of slice name -> value, merged into the state,
- an optional :class:`~reprise_finsight.errors.StageError` marker.

The orchestrator (:func:`run_pipeline`) applies the following rules:

1. Deltas are merged unconditionally (last write wins per slice), even when
   an error accompanies them.
2. Exceptions escaping a stage are caught, logged and recorded as a
   recoverable ``StageError``; the next stage still runs.
3. A cancel token is checked after every stage. Once cancelled, the
   remaining stages are skipped and listed in ``skipped_stages``.
4. ``sections_included`` lists the non-empty output slices in stage order.
5. Optionally, the final JSON payload is saved to the report store. A
   store failure or timeout is recorded but never fails the run.

Stages are plain classes following the :class:`Stage` protocol, so callers
(or tests) can pass their own sequence.
"""

import logging
import sqlite3
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields, replace
from datetime import date
from typing import Any, Optional, Protocol

from .accounting import AccountingOutput, degraded_output, run_accounting
from .config import AnalysisSettings, ReferenceTables
from .errors import (
    MissingInputError,
    PipelineCancelled,
    ReportTimeoutError,
    StageError,
)
from .models import BusinessInfo, FiscalDocument, UserOverrides, to_jsonable
from .projection import BusinessPlanProjection, run_projection
from .real_estate import RealEstateOutput, run_real_estate
from .report_store import ReportStoreConfig, save_report_with_timeout
from .validation import ValidationOutput, run_validation
from .valuation import ValuationSynthesis, run_valuation

LOGGER = logging.getLogger(__name__)

STAGE_ORDER = ("accounting", "valuation", "real_estate", "validation", "projection")

# ---------------------------------------------------------------------------
# State and stage contracts
# ---------------------------------------------------------------------------


@dataclass
class AnalysisState:
    """
    Mutable state of one analysis session, owned by the orchestrator.

    Attributes
    ----------
    documents, business, overrides :
        Session inputs.
    tables :
        Reference tables loaded once at the start of the session.
    settings :
        Global analysis parameters.
    accounting, valuation, real_estate, validation, projection :
        Stage outputs (None until the stage has produced them).
    stage_errors :
        Error markers recorded by the orchestrator, in stage order.
    sections_included :
        Names of the non-empty output slices, filled at the end of the run.
    skipped_stages :
        Stages not executed because the session was cancelled.
    cancelled :
        True when the session was aborted between two stages.
    report_id :
        Identifier of the saved report, when persistence was requested and
        succeeded.
    """

    documents: tuple[FiscalDocument, ...]
    business: BusinessInfo
    overrides: UserOverrides
    tables: ReferenceTables
    settings: AnalysisSettings

    accounting: Optional[AccountingOutput] = None
    valuation: Optional[ValuationSynthesis] = None
    real_estate: Optional[RealEstateOutput] = None
    validation: Optional[ValidationOutput] = None
    projection: Optional[BusinessPlanProjection] = None

    stage_errors: list[StageError] = field(default_factory=list)
    sections_included: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    cancelled: bool = False
    report_id: Optional[int] = None

    @property
    def reference_date(self) -> date:
        """Reference date of the analysis (January 1st of the reference year)."""
        return date(self.settings.reference_year, 1, 1)


OUTPUT_SLICES = STAGE_ORDER


@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage: slices to merge and an optional error marker."""

    delta: Mapping[str, Any] = field(default_factory=dict)
    error: Optional[StageError] = None


class Stage(Protocol):
    name: str

    def run(self, state: AnalysisState) -> StageResult:
        ...


class CancelToken:
    """
    Cooperative cancellation flag for one session.

    The orchestrator checks it between stages; engines never look at it.
    Setting it from another thread is safe.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled("Analysis session cancelled.")


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def _accounting_or_degraded(state: AnalysisState) -> AccountingOutput:
    if state.accounting is not None:
        return state.accounting
    return degraded_output("Analyse comptable indisponible")


class AccountingStage:
    name = "accounting"

    def run(self, state: AnalysisState) -> StageResult:
        output = run_accounting(
            state.documents,
            state.business,
            state.overrides,
            state.tables,
            state.settings,
        )
        error = None
        if not output.has_data:
            # Downstream stages still run, in degraded mode.
            error = StageError.from_exception(
                self.name,
                MissingInputError("Aucune donnée comptable exploitable."),
                recoverable=False,
            )
        return StageResult(delta={"accounting": output}, error=error)


class ValuationStage:
    name = "valuation"

    def run(self, state: AnalysisState) -> StageResult:
        synthesis = run_valuation(
            _accounting_or_degraded(state),
            state.business,
            state.overrides,
            state.tables,
            state.settings,
        )
        return StageResult(delta={"valuation": synthesis})


class RealEstateStage:
    name = "real_estate"

    def run(self, state: AnalysisState) -> StageResult:
        accounting_rent = None
        if state.accounting is not None and state.accounting.latest_record is not None:
            accounting_rent = state.accounting.latest_record.loyer

        business_value = None
        if state.valuation is not None and state.valuation.median > 0:
            business_value = state.valuation.median

        output = run_real_estate(
            state.documents,
            state.business,
            state.overrides,
            reference=state.reference_date,
            accounting_rent=accounting_rent,
            business_value=business_value,
        )
        return StageResult(delta={"real_estate": output})


class ValidationStage:
    name = "validation"

    def run(self, state: AnalysisState) -> StageResult:
        output = run_validation(
            state.documents,
            state.accounting,
            state.valuation,
            state.real_estate,
            state.tables.alert_rules,
            state.settings.reference_year,
        )
        return StageResult(delta={"validation": output})


class ProjectionStage:
    name = "projection"

    def run(self, state: AnalysisState) -> StageResult:
        plan = run_projection(
            state.accounting,
            state.valuation,
            state.real_estate,
            state.overrides,
        )
        error = None
        if plan.error:
            error = StageError(
                stage=self.name,
                kind=MissingInputError.__name__,
                message=plan.error,
            )
        return StageResult(delta={"projection": plan}, error=error)


def default_stages() -> tuple[Stage, ...]:
    """The five engines in their dependency order."""
    return (
        AccountingStage(),
        ValuationStage(),
        RealEstateStage(),
        ValidationStage(),
        ProjectionStage(),
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

_STATE_FIELDS = frozenset(f.name for f in fields(AnalysisState))


def merge_delta(state: AnalysisState, delta: Mapping[str, Any]) -> None:
    """
    Merge a stage delta into the state (last write wins per slice).

    Raises
    ------
    ValueError
        If the delta names an unknown slice.
    """
    for name, value in delta.items():
        if name not in OUTPUT_SLICES:
            if name in _STATE_FIELDS:
                raise ValueError(f"Stage deltas cannot overwrite {name!r}.")
            raise ValueError(f"Unknown state slice: {name!r}.")
        setattr(state, name, value)


def _is_present(name: str, value: Any) -> bool:
    if value is None:
        return False
    if name == "accounting":
        return value.has_data
    if name == "valuation":
        return value.median > 0
    if name == "real_estate":
        return value.lease is not None or value.loyer_annuel is not None
    if name == "projection":
        return bool(value.years)
    return True


def compute_sections(state: AnalysisState) -> list[str]:
    """Names of the non-empty output slices, in stage order."""
    return [name for name in OUTPUT_SLICES if _is_present(name, getattr(state, name))]


def _run_stage(stage: Stage, state: AnalysisState) -> None:
    LOGGER.info("Stage started", extra={"stage": stage.name})
    try:
        result = stage.run(state)
    except Exception as exc:
        LOGGER.error(
            "Stage failed",
            extra={"stage": stage.name, "error": str(exc)},
            exc_info=exc,
        )
        state.stage_errors.append(StageError.from_exception(stage.name, exc))
        return

    try:
        merge_delta(state, result.delta)
    except ValueError as exc:
        LOGGER.error(
            "Stage returned an invalid delta",
            extra={"stage": stage.name, "error": str(exc)},
        )
        state.stage_errors.append(StageError.from_exception(stage.name, exc))

    if result.error is not None:
        LOGGER.warning(
            "Stage completed with an error",
            extra={
                "stage": stage.name,
                "kind": result.error.kind,
                "error": result.error.message,
            },
        )
        state.stage_errors.append(result.error)
    else:
        LOGGER.info("Stage finished", extra={"stage": stage.name})


def run_pipeline(
    state: AnalysisState,
    stages: Optional[Sequence[Stage]] = None,
    cancel_token: Optional[CancelToken] = None,
    report_store: Optional[ReportStoreConfig] = None,
) -> AnalysisState:
    """
    Run the stages sequentially over `state` and return it.

    Args:
        state: Fresh session state (inputs set, outputs empty).
        stages: Stages to run; defaults to :func:`default_stages`.
        cancel_token: Checked after every stage.
        report_store: When given, the final payload is saved there within
            ``report_store.timeout_seconds``.

    Returns:
        The same state object, completed.
    """
    stages = tuple(stages) if stages is not None else default_stages()

    LOGGER.info(
        "Analysis started",
        extra={
            "business": state.business.name,
            "documents": len(state.documents),
            "stages": len(stages),
        },
    )

    for index, stage in enumerate(stages):
        _run_stage(stage, state)

        if cancel_token is None:
            continue
        try:
            cancel_token.raise_if_cancelled()
        except PipelineCancelled:
            state.cancelled = True
            state.skipped_stages = [s.name for s in stages[index + 1 :]]
            LOGGER.warning(
                "Analysis cancelled",
                extra={"after_stage": stage.name, "skipped": state.skipped_stages},
            )
            break

    state.sections_included = compute_sections(state)

    if report_store is not None:
        persist_report(state, report_store)

    LOGGER.info(
        "Analysis finished",
        extra={
            "sections": state.sections_included,
            "errors": len(state.stage_errors),
            "cancelled": state.cancelled,
        },
    )
    return state


def persist_report(state: AnalysisState, cfg: ReportStoreConfig) -> Optional[int]:
    """
    Save the report payload; failures are recorded on the state, not raised.
    """
    try:
        report_id = save_report_with_timeout(cfg, report_payload(state))
    except ReportTimeoutError as exc:
        LOGGER.error("Report persistence timed out", extra={"error": str(exc)})
        state.stage_errors.append(StageError.from_exception("report_store", exc))
        return None
    except (sqlite3.Error, OSError, ValueError) as exc:
        LOGGER.error(
            "Report persistence failed",
            extra={"error": str(exc)},
            exc_info=exc,
        )
        state.stage_errors.append(StageError.from_exception("report_store", exc))
        return None

    state.report_id = report_id
    return report_id


# ---------------------------------------------------------------------------
# Entry points and serialization
# ---------------------------------------------------------------------------


def new_state(
    documents: Sequence[FiscalDocument],
    business: BusinessInfo,
    overrides: Optional[UserOverrides],
    tables: ReferenceTables,
    settings: AnalysisSettings,
) -> AnalysisState:
    return AnalysisState(
        documents=tuple(documents),
        business=business,
        overrides=overrides or UserOverrides(),
        tables=tables,
        settings=settings,
    )


def analyze(
    documents: Sequence[FiscalDocument],
    business: BusinessInfo,
    overrides: Optional[UserOverrides],
    tables: ReferenceTables,
    settings: AnalysisSettings,
    cancel_token: Optional[CancelToken] = None,
    report_store: Optional[ReportStoreConfig] = None,
) -> AnalysisState:
    """Build a fresh state for one session and run the default stages on it."""
    state = new_state(documents, business, overrides, tables, settings)
    return run_pipeline(state, cancel_token=cancel_token, report_store=report_store)


def with_asking_price(
    overrides: UserOverrides, asking_price: Optional[float]
) -> UserOverrides:
    """Return overrides with the asking price replaced (None keeps the current one)."""
    if asking_price is None:
        return overrides
    return replace(overrides, asking_price=float(asking_price))


def report_payload(
    state: AnalysisState, sections: Optional[Sequence[str]] = None
) -> dict[str, Any]:
    """
    Serialize the state into the JSON report.

    Args:
        state: Completed session state.
        sections: Restrict the stage outputs to these slices (the manifest
            still reflects what the run produced).
    """
    wanted = set(sections) if sections is not None else set(OUTPUT_SLICES)
    payload: dict[str, Any] = {
        "inputs": {
            "business_info": to_jsonable(state.business),
            "documents": [
                {
                    "filename": doc.filename,
                    "document_type": doc.document_type,
                    "year": doc.year,
                }
                for doc in state.documents
            ],
            "overrides": to_jsonable(state.overrides),
        },
        "settings": to_jsonable(state.settings),
        "sections_included": list(state.sections_included),
        "stage_errors": to_jsonable(state.stage_errors),
        "skipped_stages": list(state.skipped_stages),
        "cancelled": state.cancelled,
    }
    for name in OUTPUT_SLICES:
        if name in wanted:
            payload[name] = to_jsonable(getattr(state, name))
    return payload
