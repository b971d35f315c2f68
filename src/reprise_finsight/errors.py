# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Error taxonomy for Reprise FinSight.

Business-data problems (no documents, unknown sector, malformed tables,
inconsistent figures across stages) are *not* meant to escape the engines.
Engines capture them and turn them into result content: degraded records,
``limitations`` entries or :class:`~reprise_finsight.models.Anomaly` items.

The exception classes below exist so that this capture is explicit and
uniform:

- an engine raises one of them internally (or builds one to describe a
  problem) and converts it at its public boundary,
- the orchestrator converts any exception escaping a stage into a
  :class:`StageError` marker stored in the analysis state.

Only programming-contract violations (wrong argument types, impossible
configuration) are left to propagate as ``TypeError``/``ValueError``.
"""

from dataclasses import dataclass


class FinSightError(Exception):
    """Base class for all domain errors raised by Reprise FinSight."""


class MissingInputError(FinSightError):
    """No usable accounting input: the stage degrades instead of aborting."""


class UnknownSectorError(FinSightError):
    """Activity code absent from a reference table: generic row is used."""

    def __init__(self, code: str, table: str) -> None:
        super().__init__(
            f"Activity code {code!r} not found in {table}; using DEFAULT row."
        )
        self.code = code
        self.table = table


class CalculationError(FinSightError):
    """Malformed or contradictory extracted figures."""


class CrossStageInconsistencyError(FinSightError):
    """Two stages disagree on a shared figure (reported, never thrown)."""


class PipelineCancelled(FinSightError):
    """Raised by a cancel token checkpoint when a session is aborted."""


class ReportTimeoutError(FinSightError):
    """Persisting the final report did not complete within the timeout."""


class TableLoadTimeoutError(FinSightError):
    """Loading the reference tables did not complete within the timeout."""


@dataclass(frozen=True)
class StageError:
    """
    Stage-scoped error marker recorded in the analysis state.

    Attributes
    ----------
    stage:
        Name of the stage that failed ('accounting', 'valuation', ...).
    kind:
        Exception class name (e.g. 'MissingInputError', 'ZeroDivisionError').
    message:
        Human-readable description.
    recoverable:
        True when downstream stages can still run (always the case for
        business-data problems).
    """

    stage: str
    kind: str
    message: str
    recoverable: bool = True

    @classmethod
    def from_exception(
        cls, stage: str, exc: BaseException, recoverable: bool = True
    ) -> "StageError":
        """Build a marker from an exception caught by the orchestrator."""
        return cls(
            stage=stage,
            kind=type(exc).__name__,
            message=str(exc) or type(exc).__name__,
            recoverable=recoverable,
        )
