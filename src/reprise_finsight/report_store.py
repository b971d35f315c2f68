# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Report store for Reprise FinSight.

Finished analyses are persisted as JSON payloads in a small SQLite
database so that they can be listed and displayed again later (``show``
command of the CLI).

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) reports
   One row per finished analysis session.

   Columns:
   - id                INTEGER PRIMARY KEY AUTOINCREMENT
   - created_at        TEXT    NOT NULL (ISO datetime, UTC)
   - business_name     TEXT    NOT NULL
   - siret             TEXT
   - activity_code     TEXT
   - sections          TEXT    NOT NULL  -- comma-separated sections_included
   - confidence        INTEGER           -- overall confidence score
   - median_valuation  REAL              -- recommended median valuation
   - payload           TEXT    NOT NULL  -- full JSON report

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- All timestamps are stored as ISO-8601 text (UTC).
- Foreign key enforcement is explicitly enabled (no foreign key yet).
- Schema creation is idempotent and runs before every access.
"""

import json
import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from .errors import ReportTimeoutError

LOGGER = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReportStoreConfig:
    """
    Report store configuration.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    timeout_seconds:
        Upper bound of one save operation, enforced by the orchestrator.
    """

    engine: str
    path: Path
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class StoredReport:
    id: int
    created_at: datetime
    business_name: str
    siret: Optional[str]
    activity_code: Optional[str]
    sections: tuple[str, ...]
    confidence: Optional[int]
    median_valuation: Optional[float]
    payload: dict[str, Any]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: ReportStoreConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported report store engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _connect(cfg: ReportStoreConfig) -> sqlite3.Connection:
    """
    Open a SQLite connection with foreign keys enabled.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    conn = sqlite3.connect(cfg.path)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _create_schema_if_needed(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS reports (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at       TEXT    NOT NULL,
            business_name    TEXT    NOT NULL,
            siret            TEXT,
            activity_code    TEXT,
            sections         TEXT    NOT NULL,
            confidence       INTEGER,
            median_valuation REAL,
            payload          TEXT    NOT NULL
        );
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_reports_siret ON reports(siret);"
    )
    conn.commit()


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _dig(payload: dict[str, Any], *keys: str) -> Any:
    value: Any = payload
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def init_database(cfg: ReportStoreConfig) -> None:
    """
    Initialize the report store schema if needed.

    - Creates the SQLite file (and its parent directory) if missing.
    - Creates the `reports` table if missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    sqlite3.Error
        If schema creation fails.
    """
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(cfg)
    try:
        _create_schema_if_needed(conn)
    finally:
        conn.close()


def save_report(cfg: ReportStoreConfig, payload: dict[str, Any]) -> int:
    """
    Store a JSON report payload and return its id.

    The summary columns (business name, confidence, median valuation,
    sections) are read from the payload as produced by
    ``pipeline.report_payload``.
    """
    init_database(cfg)

    business = _dig(payload, "inputs", "business_info") or {}
    sections = payload.get("sections_included") or []
    confidence = _dig(payload, "validation", "confidence", "overall")
    median = _dig(payload, "valuation", "median")

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO reports (
                created_at, business_name, siret, activity_code, sections,
                confidence, median_valuation, payload
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                _now_utc_iso(),
                str(business.get("name") or ""),
                business.get("siret") or None,
                business.get("sector_activity_code") or None,
                ",".join(sections),
                confidence,
                median,
                json.dumps(payload, ensure_ascii=False),
            ),
        )
        report_id = int(cur.lastrowid)
        conn.commit()
    finally:
        conn.close()

    LOGGER.info(
        "Report saved",
        extra={"report_id": report_id, "path": str(cfg.path)},
    )
    return report_id


def save_report_with_timeout(
    cfg: ReportStoreConfig,
    payload: dict[str, Any],
    timeout_seconds: Optional[float] = None,
) -> int:
    """
    Run :func:`save_report` in a worker thread bounded by a timeout.

    The timeout defaults to ``cfg.timeout_seconds``. When it expires the
    call returns immediately with :class:`ReportTimeoutError`; the worker
    is not interrupted and may still complete the write later.

    Raises
    ------
    ReportTimeoutError
        If the save did not finish in time.
    ValueError, sqlite3.Error
        Propagated from :func:`save_report`.
    """
    timeout = cfg.timeout_seconds if timeout_seconds is None else timeout_seconds

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="report-store")
    try:
        future = executor.submit(save_report, cfg, payload)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout as exc:
            raise ReportTimeoutError(
                f"Saving the report to {cfg.path} took longer than {timeout:g}s."
            ) from exc
    finally:
        executor.shutdown(wait=False)


def load_report(cfg: ReportStoreConfig, report_id: int) -> Optional[StoredReport]:
    """Return the stored report with the given id, or None if it does not exist."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, created_at, business_name, siret, activity_code, sections,
                   confidence, median_valuation, payload
              FROM reports
             WHERE id = ?;
            """,
            (report_id,),
        )
        row = cur.fetchone()
    finally:
        conn.close()

    if row is None:
        return None

    (
        rid,
        created_at,
        business_name,
        siret,
        activity_code,
        sections,
        confidence,
        median,
        payload,
    ) = row
    return StoredReport(
        id=int(rid),
        created_at=datetime.fromisoformat(created_at),
        business_name=business_name,
        siret=siret,
        activity_code=activity_code,
        sections=tuple(s for s in sections.split(",") if s),
        confidence=None if confidence is None else int(confidence),
        median_valuation=None if median is None else float(median),
        payload=json.loads(payload),
    )


def list_reports(cfg: ReportStoreConfig) -> pd.DataFrame:
    """
    Return the stored reports, most recent first.

    Columns:
    - id
    - created_at
    - business_name
    - siret
    - confidence
    - median_valuation
    """
    init_database(cfg)

    columns = [
        "id",
        "created_at",
        "business_name",
        "siret",
        "confidence",
        "median_valuation",
    ]

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, created_at, business_name, siret, confidence, median_valuation
              FROM reports
             ORDER BY id DESC;
            """
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    if not rows:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(rows, columns=columns)
    df["created_at"] = pd.to_datetime(df["created_at"])
    return df
