# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for Reprise FinSight.

This module is responsible for:
- loading the main application configuration from a TOML file,
- loading the static reference tables (sector benchmarks, valuation
  coefficients, regulated-retail coefficients, ratio formulas and
  deterministic alert rules),
- exposing typed dataclasses used by the rest of the application.

Reference tables ship inside the package (``reprise_finsight/data``) and can
be replaced through the ``[tables]`` section of the application config.
They are loaded once per analysis session by ``load_reference_tables()``.
"""

import logging
import re
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    import tomli as tomllib  # type: ignore[import]

from .errors import TableLoadTimeoutError
from .report_store import ReportStoreConfig

LOGGER = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_CONFIG_FILENAME = "reprise_finsight_config.toml"
DEFAULT_ROW = "DEFAULT"

# Ratios compared against sector averages, in display order.
BENCHMARK_RATIOS: tuple[str, ...] = (
    "marge_brute_pct",
    "marge_ebe_pct",
    "marge_nette_pct",
    "taux_va_pct",
    "rotation_stocks_jours",
    "delai_clients_jours",
    "delai_fournisseurs_jours",
    "bfr_jours_ca",
    "taux_endettement_pct",
)


@dataclass(frozen=True)
class AnalysisSettings:
    """
    Global analysis parameters.

    Attributes
    ----------
    reference_year :
        Year the analysis is performed in. Feeds recency scoring and the
        data-age alert; fixing it makes runs fully reproducible.
    vat_rate :
        VAT rate used to derive VAT-inclusive revenue and purchases.
    price_band_pct :
        Half-width of the "prix marche" band in the price comparison.
    benchmark_band_pct :
        Half-width of the "similaire" band in the sector benchmark.
    compare_classical :
        When True, regulated-retail businesses also get the three classical
        valuation methods attached for reference (never blended).
    """

    reference_year: int
    vat_rate: float = 0.20
    price_band_pct: float = 15.0
    benchmark_band_pct: float = 10.0
    compare_classical: bool = False


@dataclass(frozen=True)
class TablePaths:
    """Locations of the reference tables (packaged defaults unless overridden)."""

    sector_benchmarks: Path = DATA_DIR / "sector_benchmarks.toml"
    valuation_coefficients: Path = DATA_DIR / "valuation_coefficients.toml"
    tabac_coefficients: Path = DATA_DIR / "tabac_coefficients.toml"
    ratio_rules: Path = DATA_DIR / "ratios_fr.toml"
    alert_rules: Path = DATA_DIR / "alert_rules.toml"
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    file: Optional[Path] = None


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for Reprise FinSight.

    This aggregates:
    - the analysis parameters,
    - the reference table locations,
    - the report store configuration (where finished reports are saved),
    - the logging options used by the CLI.
    """

    analysis: AnalysisSettings
    tables: TablePaths
    report: ReportStoreConfig
    logging: LoggingConfig
    source: Optional[Path] = None


# ---------------------------------------------------------------------------
# Reference table records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SectorBenchmarkRow:
    """Average ratios for one activity code."""

    code: str
    label: str
    ratios: dict[str, float]


@dataclass(frozen=True)
class ValuationCoefficientRow:
    """
    Valuation coefficients for one activity code.

    Attributes
    ----------
    ebe_multiple :
        (low, median, high) multiples applied to the reference EBE.
    ca_percentage :
        (low, median, high) percentages applied to the reference revenue.
    factors :
        Sector-specific value drivers, quoted in the justification.
    """

    code: str
    label: str
    ebe_multiple: tuple[float, float, float]
    ca_percentage: tuple[float, float, float]
    factors: tuple[str, ...] = ()


@dataclass(frozen=True)
class TabacCoefficientRow:
    """Two-block coefficients for one regulated-retail location type."""

    location_type: str
    description: str
    commission_coefficients: tuple[float, float, float]
    boutique_percentages: tuple[float, float, float]
    factors: tuple[str, ...] = ()


@dataclass(frozen=True)
class SectorTable:
    """
    Rows keyed by normalized activity code, with a mandatory DEFAULT row.

    Row order follows the TOML file; prefix lookups return the first match.
    """

    name: str
    rows: dict[str, Any]

    @property
    def default(self) -> Any:
        return self.rows[DEFAULT_ROW]

    def lookup(self, activity_code: str) -> tuple[Any, bool]:
        """
        Find the row for an activity code.

        Lookup order: exact code, then first row starting with the 4-char
        prefix, then the 2-char prefix, then DEFAULT.

        Returns
        -------
        (row, matched)
            ``matched`` is False when the DEFAULT row was used.
        """
        normalized = normalize_activity_code(activity_code)
        if not normalized:
            return self.default, False

        codes = [c for c in self.rows if c != DEFAULT_ROW]
        if normalized in self.rows and normalized != DEFAULT_ROW:
            return self.rows[normalized], True

        for prefix in (normalized[:4], normalized[:2]):
            for code in codes:
                if code.startswith(prefix):
                    return self.rows[code], True

        return self.default, False


@dataclass(frozen=True)
class TabacTable:
    """Regulated-retail coefficients keyed by location type."""

    activity_codes: tuple[str, ...]
    default_type: str
    rows: dict[str, TabacCoefficientRow]

    @property
    def default(self) -> TabacCoefficientRow:
        return self.rows[self.default_type]


@dataclass(frozen=True)
class RatioRule:
    """One ratio formula (see data/ratios_fr.toml)."""

    key: str
    label: str
    formula: str
    unit: str
    notes: str = ""


@dataclass(frozen=True)
class AlertRule:
    """One deterministic alert rule (see data/alert_rules.toml)."""

    id: str
    category: str
    severity: str
    when: str
    title: str
    message: str
    impact: str = ""
    recommendation: str = ""


@dataclass(frozen=True)
class ReferenceTables:
    """All static tables needed by one analysis session."""

    sector_benchmarks: SectorTable
    valuation_coefficients: SectorTable
    tabac_coefficients: TabacTable
    ratio_rules: tuple[RatioRule, ...]
    alert_rules: tuple[AlertRule, ...]
    sources: dict[str, Path] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------


def normalize_activity_code(code: Optional[str]) -> str:
    """
    Normalize an activity (NAF) code: letters and spaces are dropped.

    Examples
    --------
    >>> normalize_activity_code("47.26Z")
    '47.26'
    """
    if not code:
        return ""
    return re.sub(r"[A-Za-z\s]", "", str(code)).strip()


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        section = {}
    return section


def _float_or(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _triple(value: Any, what: str, path: Path) -> tuple[float, float, float]:
    """Parse a [low, median, high] list of numbers."""
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise ValueError(f"Invalid {what} in {path}: expected [low, median, high].")
    try:
        low, median, high = (float(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {what} in {path}: non-numeric value.") from exc
    return low, median, high


# ---------------------------------------------------------------------------
# Application config
# ---------------------------------------------------------------------------


def default_app_config(base_dir: Optional[Path] = None) -> AppConfig:
    """Configuration used when no config file is available."""
    base = (base_dir or Path.cwd()).resolve()
    return AppConfig(
        analysis=AnalysisSettings(reference_year=date.today().year),
        tables=TablePaths(),
        report=ReportStoreConfig(
            engine="sqlite",
            path=(base / "data/reports/reprise_finsight.sqlite").resolve(),
        ),
        logging=LoggingConfig(),
    )


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the Reprise FinSight application configuration from a TOML file.

    Expected top-level sections in the TOML file (all optional)
    -----------------------------------------------------------
    [analysis]
        reference_year, vat_rate, price_band_pct, benchmark_band_pct,
        compare_classical.

    [tables]
        Paths overriding the packaged reference tables: sector_benchmarks,
        valuation_coefficients, tabac_coefficients, ratio_rules,
        alert_rules, plus the timeout (seconds) applied when loading them.

    [report]
        Report store engine ("sqlite"), SQLite file path and the timeout
        (seconds) applied when saving a finished report.

    [logging]
        level and optional log file used by the CLI.

    Notes
    -----
    - All file paths in the TOML are resolved relative to the directory of
      the TOML file itself.
    - Values that cannot be coerced to the expected type are ignored and the
      default applies.

    Parameters
    ----------
    config_path :
        Path to the TOML configuration file. Defaults to
        ``reprise_finsight_config.toml`` in the current directory.

    Returns
    -------
    AppConfig
        Parsed application configuration.
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_FILENAME).resolve()
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)
    base_dir = config_file.parent
    defaults = default_app_config(base_dir)

    # 1) Analysis parameters
    analysis_section = _section(raw, "analysis")

    try:
        reference_year = int(
            analysis_section.get("reference_year", defaults.analysis.reference_year)
        )
    except (TypeError, ValueError):
        reference_year = defaults.analysis.reference_year

    analysis = AnalysisSettings(
        reference_year=reference_year,
        vat_rate=_float_or(analysis_section.get("vat_rate"), 0.20),
        price_band_pct=_float_or(analysis_section.get("price_band_pct"), 15.0),
        benchmark_band_pct=_float_or(
            analysis_section.get("benchmark_band_pct"), 10.0
        ),
        compare_classical=bool(analysis_section.get("compare_classical", False)),
    )

    # 2) Reference tables
    tables_section = _section(raw, "tables")

    def _resolve_table(key: str, default: Path) -> Path:
        rel = tables_section.get(key)
        if not rel:
            return default
        return (base_dir / str(rel)).resolve()

    tables = TablePaths(
        sector_benchmarks=_resolve_table(
            "sector_benchmarks", defaults.tables.sector_benchmarks
        ),
        valuation_coefficients=_resolve_table(
            "valuation_coefficients", defaults.tables.valuation_coefficients
        ),
        tabac_coefficients=_resolve_table(
            "tabac_coefficients", defaults.tables.tabac_coefficients
        ),
        ratio_rules=_resolve_table("ratio_rules", defaults.tables.ratio_rules),
        alert_rules=_resolve_table("alert_rules", defaults.tables.alert_rules),
        timeout_seconds=_float_or(tables_section.get("timeout_seconds"), 10.0),
    )

    # 3) Report store
    report_section = _section(raw, "report")

    report_path_raw = (
        report_section.get("path") or "data/reports/reprise_finsight.sqlite"
    )
    report = ReportStoreConfig(
        engine=str(report_section.get("engine") or "sqlite"),
        path=(base_dir / str(report_path_raw)).resolve(),
        timeout_seconds=_float_or(report_section.get("timeout_seconds"), 10.0),
    )

    # 4) Logging
    logging_section = _section(raw, "logging")

    log_file_raw = logging_section.get("file")
    logging_config = LoggingConfig(
        level=str(logging_section.get("level") or "INFO").upper(),
        file=(base_dir / str(log_file_raw)).resolve() if log_file_raw else None,
    )

    return AppConfig(
        analysis=analysis,
        tables=tables,
        report=report,
        logging=logging_config,
        source=config_file,
    )


# ---------------------------------------------------------------------------
# Reference tables
# ---------------------------------------------------------------------------


def _sector_rows(path: Path) -> Mapping[str, Any]:
    data = _load_toml(path)
    sectors = _section(data, "sectors")
    if DEFAULT_ROW not in sectors:
        raise ValueError(f"Reference table {path} has no [sectors.{DEFAULT_ROW}] row.")
    return sectors


def load_sector_benchmarks(path: Path) -> SectorTable:
    """
    Load average sector ratios.

    Each ``[sectors."<code>"]`` table holds a ``label`` and one number per
    ratio of BENCHMARK_RATIOS. Missing or non-numeric ratios are skipped.
    """
    rows: dict[str, SectorBenchmarkRow] = {}
    for code, cfg in _sector_rows(path).items():
        if not isinstance(cfg, Mapping):
            continue

        ratios: dict[str, float] = {}
        for key in BENCHMARK_RATIOS:
            try:
                ratios[key] = float(cfg[key])
            except (KeyError, TypeError, ValueError):
                continue

        key_code = str(code) if code == DEFAULT_ROW else normalize_activity_code(code)
        rows[key_code] = SectorBenchmarkRow(
            code=key_code,
            label=str(cfg.get("label") or key_code),
            ratios=ratios,
        )

    return SectorTable(name=path.name, rows=rows)


def load_valuation_coefficients(path: Path) -> SectorTable:
    """Load EBE multiples and revenue percentages per activity code."""
    rows: dict[str, ValuationCoefficientRow] = {}
    for code, cfg in _sector_rows(path).items():
        if not isinstance(cfg, Mapping):
            continue

        key_code = str(code) if code == DEFAULT_ROW else normalize_activity_code(code)
        rows[key_code] = ValuationCoefficientRow(
            code=key_code,
            label=str(cfg.get("label") or key_code),
            ebe_multiple=_triple(cfg.get("ebe_multiple"), "ebe_multiple", path),
            ca_percentage=_triple(cfg.get("ca_percentage"), "ca_percentage", path),
            factors=tuple(str(f) for f in cfg.get("factors") or ()),
        )

    return SectorTable(name=path.name, rows=rows)


def load_tabac_coefficients(path: Path) -> TabacTable:
    """
    Load the regulated-retail (tabac/presse/FDJ) coefficients.

    Raises:
        ValueError: if ``default_type`` does not name a defined location type.
    """
    data = _load_toml(path)
    types_section = _section(data, "types")

    rows: dict[str, TabacCoefficientRow] = {}
    for location_type, cfg in types_section.items():
        if not isinstance(cfg, Mapping):
            continue
        rows[str(location_type)] = TabacCoefficientRow(
            location_type=str(location_type),
            description=str(cfg.get("description") or ""),
            commission_coefficients=_triple(
                cfg.get("commission_coefficients"), "commission_coefficients", path
            ),
            boutique_percentages=_triple(
                cfg.get("boutique_percentages"), "boutique_percentages", path
            ),
            factors=tuple(str(f) for f in cfg.get("factors") or ()),
        )

    default_type = str(data.get("default_type") or "")
    if default_type not in rows:
        raise ValueError(f"Tabac table {path} has no valid default_type.")

    codes = data.get("activity_codes") or ()
    return TabacTable(
        activity_codes=tuple(normalize_activity_code(c) for c in codes),
        default_type=default_type,
        rows=rows,
    )


def load_ratio_rules(path: Path) -> tuple[RatioRule, ...]:
    """Load ``[ratios.<key>]`` formula definitions, in file order."""
    data = _load_toml(path)
    ratios_section = _section(data, "ratios")

    rules: list[RatioRule] = []
    for key, cfg in ratios_section.items():
        if not isinstance(cfg, Mapping) or not cfg.get("formula"):
            continue
        rules.append(
            RatioRule(
                key=str(key),
                label=str(cfg.get("label", key)),
                formula=str(cfg["formula"]),
                unit=str(cfg.get("unit", "amount")),
                notes=str(cfg.get("notes", "")),
            )
        )
    return tuple(rules)


def load_alert_rules(path: Path) -> tuple[AlertRule, ...]:
    """
    Load the ``[[rules]]`` array of deterministic alert rules, in file order.

    Raises:
        ValueError: if a rule lacks an id or condition, or if two rules share
        the same id.
    """
    data = _load_toml(path)
    raw_rules = data.get("rules") or []
    if not isinstance(raw_rules, list):
        raise ValueError(f"Invalid alert rules in {path}: expected [[rules]].")

    rules: list[AlertRule] = []
    seen: set[str] = set()
    for cfg in raw_rules:
        if not isinstance(cfg, Mapping):
            continue
        rule_id = str(cfg.get("id") or "")
        when = str(cfg.get("when") or "")
        if not rule_id or not when:
            raise ValueError(f"Alert rule without id or condition in {path}.")
        if rule_id in seen:
            raise ValueError(f"Duplicate alert rule id {rule_id!r} in {path}.")
        seen.add(rule_id)

        rules.append(
            AlertRule(
                id=rule_id,
                category=str(cfg.get("category") or "donnees"),
                severity=str(cfg.get("severity") or "info"),
                when=when,
                title=str(cfg.get("title") or rule_id),
                message=str(cfg.get("message") or ""),
                impact=str(cfg.get("impact") or ""),
                recommendation=str(cfg.get("recommendation") or ""),
            )
        )
    return tuple(rules)


def load_reference_tables(config: Optional[AppConfig] = None) -> ReferenceTables:
    """
    Load every reference table named by the configuration.

    This is the single table-loading I/O of an analysis session; engines
    only receive the resulting in-memory records.
    """
    paths = config.tables if config is not None else TablePaths()
    return ReferenceTables(
        sector_benchmarks=load_sector_benchmarks(paths.sector_benchmarks),
        valuation_coefficients=load_valuation_coefficients(
            paths.valuation_coefficients
        ),
        tabac_coefficients=load_tabac_coefficients(paths.tabac_coefficients),
        ratio_rules=load_ratio_rules(paths.ratio_rules),
        alert_rules=load_alert_rules(paths.alert_rules),
        sources={
            "sector_benchmarks": paths.sector_benchmarks,
            "valuation_coefficients": paths.valuation_coefficients,
            "tabac_coefficients": paths.tabac_coefficients,
            "ratio_rules": paths.ratio_rules,
            "alert_rules": paths.alert_rules,
        },
    )


def load_reference_tables_with_timeout(
    config: Optional[AppConfig] = None,
    timeout_seconds: Optional[float] = None,
) -> ReferenceTables:
    """
    Run :func:`load_reference_tables` in a worker thread bounded by a timeout.

    The timeout defaults to ``config.tables.timeout_seconds``.

    Raises
    ------
    TableLoadTimeoutError
        If the tables were not loaded in time.
    FileNotFoundError, ValueError
        Propagated from the table loaders.
    """
    paths = config.tables if config is not None else TablePaths()
    timeout = paths.timeout_seconds if timeout_seconds is None else timeout_seconds

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tables")
    try:
        future = executor.submit(load_reference_tables, config)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout as exc:
            LOGGER.error(
                "Reference tables not loaded in time",
                extra={"timeout_seconds": timeout},
            )
            raise TableLoadTimeoutError(
                f"Loading the reference tables took longer than {timeout:g}s."
            ) from exc
    finally:
        executor.shutdown(wait=False)
