# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Reprise FinSight
----------------

A Python-based financial due-diligence pipeline for the acquisition of
French Small and Medium-sized Businesses (commerces, TPE/PME). Starting
from accounting documents already extracted by an upstream OCR/vision
step, it produces deterministic, serializable analysis records.

Main capabilities:
- Soldes Intermédiaires de Gestion (SIG) over up to 3 fiscal years,
- EBE normalization (retraitements) for the buyer's point of view,
- TOML-driven financial ratios, trends, sector benchmark and health score,
- valuation by EBE multiple, revenue percentage and net assets, with a
  dedicated hybrid method for regulated retail (tabac/presse),
- commercial lease review, droit au bail, buy-vs-rent and renovation budget,
- cross-stage coherence checks, anomalies, alerts and a confidence score,
- a 5-year business plan with loan amortization and bank indicators,
- a sequential, continue-on-error pipeline with optional SQLite persistence.

Reprise FinSight separates computation (engines), configuration and
reference data (TOML) and presentation (CLI), making it suitable for
scripting and for driving from an external narration layer.


Version: 0.1.0

Usage:
    python -m reprise_finsight.cli --help
"""

__all__ = ["pipeline", "config", "models", "io"]

__version__ = "0.1.0"
