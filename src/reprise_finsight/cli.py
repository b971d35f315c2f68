# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for Reprise FinSight.

The CLI is intentionally thin: it does not implement any financial logic
itself. It loads the configuration and the reference tables, reads a
session input bundle, runs the analysis pipeline and renders the results.


Commands
--------

``analyze INPUT.json``
    Run the five engines (accounting, valuation, real estate, validation,
    projection) on a session input bundle and print a summary: SIG table,
    EBE normalization, valuation, lease, confidence, alerts and the 5-year
    plan.

    Options:

    - ``--asking-price``: override the asking price of the bundle.
    - ``--compare-classical``: for regulated retail, also compute the
      classical methods for reference.
    - ``--output PATH``: write the JSON report.
    - ``--sections``: restrict the JSON report to some stage outputs.
    - ``--save``: store the report in the SQLite report store.

``show --report-id N``
    Print a stored report (or the list of stored reports without
    ``--report-id``).

``sectors``
    List the activity codes of the sector benchmark and valuation tables.


Configuration
-------------

By default the CLI reads ``reprise_finsight_config.toml`` in the current
directory. When that file does not exist, built-in defaults and the
packaged reference tables are used. ``--config PATH`` selects another file.


Usage:
    python -m reprise_finsight.cli analyze session.json --output report.json
    python -m reprise_finsight.cli show --report-id 3
    python -m reprise_finsight.cli --version
"""

import argparse
import json
import logging
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from . import __version__
from .config import (
    DEFAULT_CONFIG_FILENAME,
    AppConfig,
    default_app_config,
    load_app_config,
    load_reference_tables_with_timeout,
)
from .errors import TableLoadTimeoutError
from .io import load_session_input, write_report
from .pipeline import STAGE_ORDER, AnalysisState, analyze, with_asking_price
from .projection import projection_dataframe
from .report_store import list_reports, load_report
from .sig import sig_dataframe

LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Configure console logging and, optionally, a rotating log file.

    Engines only log; this is the single place where handlers are set.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: list[logging.Handler] = []
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    handlers.append(console)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=5_000_000,
                backupCount=3,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as exc:
            LOGGER.warning(
                "Unable to initialise file logging",
                extra={"path": str(log_file)},
                exc_info=exc,
            )

    logging.basicConfig(level=log_level, handlers=handlers, force=True)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="python -m reprise_finsight.cli",
        description=(
            "Reprise FinSight - Financial due-diligence pipeline for SMB "
            "acquisitions. Analyzes extracted accounting documents, values the "
            "business, reviews the lease and projects a 5-year business plan."
        ),
    )

    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of reprise_finsight and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the main TOML configuration file. If omitted, "
            f"'{DEFAULT_CONFIG_FILENAME}' in the current directory is used when present."
        ),
    )
    ap.add_argument(
        "--log-level",
        dest="log_level",
        help="Logging level (DEBUG, INFO, WARNING...). Overrides the config file.",
    )

    subparsers = ap.add_subparsers(
        dest="command",
        metavar="command",
        help="One of: analyze, show, sectors.",
    )

    # ------------------------------------------------------------------
    # analyze
    # ------------------------------------------------------------------
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Run the full analysis on a session input bundle (JSON).",
    )
    analyze_parser.add_argument(
        "input_path",
        metavar="INPUT",
        help="JSON file with 'documents', 'business_info' and optional 'overrides'.",
    )
    analyze_parser.add_argument(
        "--asking-price",
        dest="asking_price",
        type=float,
        help="Asking price of the seller (overrides the value of the bundle).",
    )
    analyze_parser.add_argument(
        "--compare-classical",
        dest="compare_classical",
        action="store_true",
        help=(
            "For regulated retail (tabac/presse), also compute the classical "
            "methods for comparison. They are never blended."
        ),
    )
    analyze_parser.add_argument(
        "--output",
        dest="output_path",
        help="Write the JSON report to this path.",
    )
    analyze_parser.add_argument(
        "--sections",
        nargs="+",
        choices=list(STAGE_ORDER),
        help="Stage outputs to include in the JSON report (default: all).",
    )
    analyze_parser.add_argument(
        "--save",
        action="store_true",
        help="Store the report in the SQLite report store.",
    )

    # ------------------------------------------------------------------
    # show
    # ------------------------------------------------------------------
    show_parser = subparsers.add_parser(
        "show",
        help="Show a stored report, or list stored reports.",
    )
    show_parser.add_argument(
        "--report-id",
        dest="report_id",
        type=int,
        help="Identifier of the report to show. If omitted, reports are listed.",
    )

    # ------------------------------------------------------------------
    # sectors
    # ------------------------------------------------------------------
    subparsers.add_parser(
        "sectors",
        help="List the activity codes known by the reference tables.",
    )

    return ap


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _fmt_eur(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"{value:,.0f} €".replace(",", " ")


def _print_title(title: str) -> None:
    print()
    print(title)
    print("-" * len(title))


def _render_accounting(state: AnalysisState) -> None:
    acc = state.accounting
    _print_title("Analyse comptable")
    if acc is None or not acc.has_data:
        print("Aucune donnée comptable exploitable.")
        return

    df = sig_dataframe([acc.sig[y] for y in acc.years_analyzed])
    table = df.pivot(index="label", columns="year", values="value")
    table = table.reindex(pd.unique(df["label"]))
    print(table.to_string())

    if acc.retraitement is not None:
        r = acc.retraitement
        print()
        print(f"EBE comptable {r.year} : {_fmt_eur(r.ebe_comptable)}")
        for adj in r.adjustments:
            print(f"  {adj.montant:+,.0f} €  {adj.description}".replace(",", " "))
        print(f"EBE normatif : {_fmt_eur(r.ebe_normatif)}")

    print()
    print(f"Tendance : {acc.trend.tendance} | Santé : {acc.health.overall}/100")


def _render_valuation(state: AnalysisState) -> None:
    val = state.valuation
    _print_title("Valorisation")
    if val is None:
        print("Valorisation indisponible.")
        return

    rows = [
        {
            "methode": m.method,
            "poids": val.weights.get(m.method, 0.0),
            "basse": m.low,
            "mediane": m.median,
            "haute": m.high,
        }
        for m in val.methods
    ]
    print(pd.DataFrame(rows).to_string(index=False))
    print()
    print(
        f"Fourchette : {_fmt_eur(val.low)} - {_fmt_eur(val.high)} "
        f"(médiane {_fmt_eur(val.median)}, méthode préférée : {val.preferred_method})"
    )
    if val.price_comparison is not None:
        pc = val.price_comparison
        print(
            f"Prix demandé : {_fmt_eur(pc.asking_price)} "
            f"({pc.deviation_pct:+.1f} %, {pc.category})"
        )
    if val.classical_reference:
        print("Méthodes classiques (référence) :")
        for m in val.classical_reference:
            print(f"  {m.method}: {_fmt_eur(m.median)}")


def _render_real_estate(state: AnalysisState) -> None:
    re_out = state.real_estate
    _print_title("Immobilier")
    if re_out is None:
        print("Analyse immobilière indisponible.")
        return
    source = re_out.loyer_source or "n/a"
    print(f"Loyer annuel : {_fmt_eur(re_out.loyer_annuel)} ({source})")
    if re_out.lease is not None and re_out.lease.duree_restante_mois is not None:
        print(f"Durée restante du bail : {re_out.lease.duree_restante_mois} mois")
    if re_out.property is not None:
        print(
            f"Achat des murs : rendement {re_out.property.rentabilite_brute_pct:.1f} % "
            f"-> {re_out.property.recommandation}"
        )
    print(f"Score immobilier : {re_out.score.total}/100")


def _render_validation(state: AnalysisState) -> None:
    val = state.validation
    _print_title("Validation")
    if val is None:
        print("Validation indisponible.")
        return
    print(f"Indice de confiance : {val.confidence.overall}/100")
    for reason in val.confidence.points_bloquants:
        print(f"  Point bloquant : {reason}")
    for alert in val.alerts:
        print(f"  [{alert.severity}] {alert.title}")


def _render_projection(state: AnalysisState) -> None:
    plan = state.projection
    _print_title("Business plan 5 ans")
    if plan is None or not plan.years:
        error = plan.error if plan is not None else None
        print(error or "Projection indisponible.")
        return
    print(projection_dataframe(plan).to_string(index=False))
    ind = plan.indicators
    print()
    coverage = ind.ratio_couverture_dette
    dscr = "n/a" if coverage is None else f"{coverage:.2f}"
    print(
        f"Couverture de la dette : {dscr} | "
        f"Rentabilité : {ind.rentabilite_capitaux_pct:.1f} % | "
        f"Appréciation : {ind.appreciation}"
    )


def _render_state(state: AnalysisState) -> None:
    print(f"Analyse de {state.business.name or 'entreprise sans nom'}")
    _render_accounting(state)
    _render_valuation(state)
    _render_real_estate(state)
    _render_validation(state)
    _render_projection(state)

    if state.stage_errors:
        _print_title("Erreurs")
        for err in state.stage_errors:
            print(f"  {err.stage}: {err.kind} - {err.message}")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _handle_analyze(args: argparse.Namespace, config: AppConfig) -> None:
    input_path = Path(args.input_path)
    documents, business, overrides = load_session_input(input_path)
    overrides = with_asking_price(overrides, args.asking_price)

    settings = config.analysis
    if args.compare_classical:
        settings = replace(settings, compare_classical=True)

    tables = load_reference_tables_with_timeout(config)
    state = analyze(
        documents,
        business,
        overrides,
        tables,
        settings,
        report_store=config.report if args.save else None,
    )

    _render_state(state)

    if args.output_path:
        path = write_report(state, args.output_path, args.sections)
        print()
        print(f"Rapport JSON écrit : {path}")
    if state.report_id is not None:
        print(f"Rapport enregistré (id {state.report_id})")


def _handle_show(args: argparse.Namespace, config: AppConfig) -> None:
    if args.report_id is None:
        df = list_reports(config.report)
        if df.empty:
            print("No stored reports.")
            return
        print(df.to_string(index=False))
        return

    report = load_report(config.report, args.report_id)
    if report is None:
        print(f"Report #{args.report_id} not found.")
        return
    print(
        f"Report #{report.id} - {report.business_name} "
        f"({report.created_at.isoformat()})"
    )
    print(json.dumps(report.payload, ensure_ascii=False, indent=2))


def _handle_sectors(config: AppConfig) -> None:
    tables = load_reference_tables_with_timeout(config)
    rows = []
    for code, row in tables.valuation_coefficients.rows.items():
        bench, matched = tables.sector_benchmarks.lookup(code)
        rows.append(
            {
                "code": code,
                "label": row.label,
                "ebe_multiple": "-".join(f"{m:g}" for m in row.ebe_multiple),
                "ca_pct": "-".join(f"{p:g}" for p in row.ca_percentage),
                "benchmark": bench.code if matched else "DEFAULT",
            }
        )
    print(pd.DataFrame(rows).to_string(index=False))
    print()
    print(
        "Commerce réglementé (méthode hybride) : "
        + ", ".join(tables.tabac_coefficients.activity_codes)
    )


def _load_config(config_path: Optional[str]) -> AppConfig:
    if config_path:
        return load_app_config(config_path)
    if Path(DEFAULT_CONFIG_FILENAME).is_file():
        return load_app_config()
    return default_app_config()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point for the Reprise FinSight CLI."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"reprise_finsight version {__version__}")
        return

    if args.command is None:
        parser.print_help()
        return

    try:
        config = _load_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    setup_logging(args.log_level or config.logging.level, config.logging.file)

    if args.command == "analyze":
        try:
            _handle_analyze(args, config)
        except (FileNotFoundError, ValueError, TableLoadTimeoutError) as exc:
            parser.error(str(exc))
    elif args.command == "show":
        _handle_show(args, config)
    elif args.command == "sectors":
        try:
            _handle_sectors(config)
        except (FileNotFoundError, ValueError, TableLoadTimeoutError) as exc:
            parser.error(str(exc))


if __name__ == "__main__":
    main()
