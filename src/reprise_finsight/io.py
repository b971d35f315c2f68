# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Input and output files of an analysis session.

A session input bundle is a JSON object:

    {
      "documents": [ {filename, document_type, year, tables, key_values}, ... ],
      "business_info": {name, siret, sector_activity_code, activity_label},
      "overrides": { ... }            (optional)
    }

The report written by :func:`write_report` is the JSON payload built by
:func:`reprise_finsight.pipeline.report_payload`.
"""

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Optional, Union

from .models import BusinessInfo, FiscalDocument, UserOverrides
from .pipeline import AnalysisState, report_payload

LOGGER = logging.getLogger(__name__)


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Session input not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Session input {path} must contain a JSON object.")
    return data


def load_session_input(
    path: Union[str, Path],
) -> tuple[list[FiscalDocument], BusinessInfo, UserOverrides]:
    """
    Load documents, business identity and buyer overrides from a JSON file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file is not valid JSON or a section has the wrong shape.
    """
    path = Path(path)
    data = _read_json(path)

    documents_raw = data.get("documents") or []
    if not isinstance(documents_raw, list):
        raise ValueError("'documents' must be a list.")
    business_raw = data.get("business_info") or data.get("businessInfo") or {}
    overrides_raw = data.get("overrides") or {}

    try:
        documents = [FiscalDocument.from_dict(d) for d in documents_raw]
        business = BusinessInfo.from_dict(business_raw)
        overrides = UserOverrides.from_dict(overrides_raw)
    except TypeError as exc:
        raise ValueError(f"Malformed session input {path}: {exc}") from exc

    LOGGER.info(
        "Session input loaded",
        extra={
            "path": str(path),
            "documents": len(documents),
            "business": business.name,
        },
    )
    return documents, business, overrides


def write_report(
    state: AnalysisState,
    path: Union[str, Path],
    sections: Optional[Sequence[str]] = None,
) -> Path:
    """Write the JSON report of a completed session and return its path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = report_payload(state, sections)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    LOGGER.info("Report written", extra={"path": str(path)})
    return path
