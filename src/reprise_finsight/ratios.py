# Reprise FinSight - Financial due-diligence pipeline for SMB acquisitions
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Computation of financial ratios for Reprise FinSight.

1. Ratio variables
   ----------------
   Ratios are computed on the latest fiscal year from:
   - the SIG cascade of that year (sig.py),
   - the balance-sheet items extracted for that year (extraction.py),
   - VAT-inclusive revenue and purchases, derived with the configured VAT
     rate (invoices carry VAT, the income statement does not).

   ``build_ratio_variables(record, sig, vat_rate)`` returns the
   ``{variable -> float}`` mapping formulas are evaluated against.
   Balance-sheet items that were not extracted are left out, so every
   formula using them yields no value instead of a misleading zero.

2. Ratio formulas
   ---------------
   Formulas are defined in ``data/ratios_fr.toml`` (``[ratios.<key>]``
   sections with label, formula, unit and notes) and evaluated with a
   restricted AST evaluator: numeric literals, variables, arithmetic
   operators and parentheses only.

   ``compute_ratios(variables, rules)`` returns a ``RatioSet``. Ratios
   whose formula cannot be evaluated (missing variable, division by zero)
   have ``value=None``. Values are rounded by unit: percentages to one
   decimal, days to whole days, amounts to whole euros.

3. Safe expression evaluation
   ---------------------------
   The same evaluator, with ``allow_logic=True``, also accepts comparisons,
   ``and``/``or``/``not``, string literals and the ``abs``/``min``/``max``
   functions. The deterministic alert engine (alerts.py) uses it for rule
   conditions.
"""

import ast
import operator
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional

from .config import RatioRule
from .extraction import FiscalYearRecord
from .sig import SIGRecord

_ALLOWED_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Pow: operator.pow,
    ast.Mod: operator.mod,
}

_ALLOWED_COMPARISONS = {
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
}

_ALLOWED_FUNCTIONS = {
    "abs": abs,
    "min": min,
    "max": max,
}


class MissingVariableError(ValueError):
    """An expression references a variable absent from the mapping."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown variable in expression: {name!r}")
        self.name = name


@dataclass(frozen=True)
class RatioResult:
    """
    Computed ratio as returned by this module.

    Attributes:
        key: Internal identifier (e.g. 'marge_ebe_pct').
        label: Human-readable label for display (e.g. "Marge d'EBE (%)").
        value: Rounded value, or None if not computable.
        unit: Unit hint ('percent', 'days', 'amount').
        notes: Optional human-readable notes.
    """

    key: str
    label: str
    value: Optional[float]
    unit: str
    notes: str = ""


@dataclass(frozen=True)
class RatioSet:
    """All ratios of one fiscal year."""

    year: int
    results: tuple[RatioResult, ...]

    @property
    def values(self) -> dict[str, Optional[float]]:
        return {r.key: r.value for r in self.results}

    def get(self, key: str) -> Optional[float]:
        for result in self.results:
            if result.key == key:
                return result.value
        return None


def safe_eval(
    expr: str,
    variables: Mapping[str, Any],
    allow_logic: bool = False,
) -> Any:
    """
    Safely evaluate a simple expression using the given variables.

    Supported:
        - numeric literals
        - variable names (keys from `variables`)
        - binary operations: +, -, *, /, %, **
        - unary minus and plus
        - parentheses
    With ``allow_logic=True``, also:
        - comparisons (<, <=, >, >=, ==, !=), including chains (0 < x < 5)
        - boolean operators and/or/not, True/False and string literals
        - calls to abs(), min() and max()

    Args:
        expr: Expression string (e.g. "resultat_net + dotations_amortissements").
        variables: Mapping of variable names to values.
        allow_logic: Enable the condition syntax listed above.

    Returns:
        The evaluated value (float for arithmetic expressions).

    Raises:
        MissingVariableError: if a variable is not in `variables`.
        ValueError: if the expression contains unsupported constructs.
        ZeroDivisionError: on division by zero.
    """
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"Invalid expression syntax: {expr!r}") from exc

    def _eval(node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return _eval(node.body)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool):
                if allow_logic:
                    return node.value
            elif isinstance(node.value, (int, float)):
                return float(node.value)
            elif isinstance(node.value, str) and allow_logic:
                return node.value
            raise ValueError(f"Unsupported constant in expression: {node.value!r}")

        if isinstance(node, ast.Name):
            name = node.id
            if name not in variables or variables[name] is None:
                raise MissingVariableError(name)
            value = variables[name]
            if isinstance(value, (bool, str)):
                if not allow_logic:
                    raise ValueError(f"Non-numeric variable in expression: {name!r}")
                return value
            return float(value)

        if isinstance(node, ast.BinOp):
            left = _eval(node.left)
            right = _eval(node.right)
            op_type = type(node.op)
            if op_type not in _ALLOWED_OPERATORS:
                raise ValueError(f"Unsupported operator in expression: {op_type}")
            op_func = _ALLOWED_OPERATORS[op_type]
            return float(op_func(left, right))

        if isinstance(node, ast.UnaryOp):
            if allow_logic and isinstance(node.op, ast.Not):
                return not _eval(node.operand)
            if type(node.op) not in _ALLOWED_OPERATORS:
                raise ValueError(f"Unsupported unary operator: {node.op!r}")
            operand = _eval(node.operand)
            op_func = _ALLOWED_OPERATORS[type(node.op)]
            return float(op_func(operand))

        if allow_logic and isinstance(node, ast.Compare):
            left = _eval(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                if type(op) not in _ALLOWED_COMPARISONS:
                    raise ValueError(f"Unsupported comparison: {op!r}")
                right = _eval(comparator)
                if not _ALLOWED_COMPARISONS[type(op)](left, right):
                    return False
                left = right
            return True

        if allow_logic and isinstance(node, ast.BoolOp):
            # Every operand is evaluated so that a missing metric anywhere in
            # the condition is reported, whatever the short-circuit order.
            results = [bool(_eval(v)) for v in node.values]
            if isinstance(node.op, ast.And):
                return all(results)
            return any(results)

        if allow_logic and isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.keywords:
                raise ValueError("Unsupported function call in expression.")
            func = _ALLOWED_FUNCTIONS.get(node.func.id)
            if func is None:
                raise ValueError(f"Unsupported function: {node.func.id!r}")
            return float(func(*(_eval(a) for a in node.args)))

        raise ValueError(f"Unsupported expression node: {type(node).__name__}")

    return _eval(tree)


def build_ratio_variables(
    record: FiscalYearRecord,
    sig: SIGRecord,
    vat_rate: float = 0.20,
) -> dict[str, float]:
    """
    Build the variables available to ratio formulas for one year.

    SIG-derived values are always present; balance-sheet items only when
    extracted. BFR = stocks + créances clients - dettes fournisseurs, present
    when at least one of its components is.
    """
    revenue = sig.chiffre_affaires
    purchases = sig.inputs["achats_marchandises"]

    variables: dict[str, float] = {
        "chiffre_affaires": revenue,
        "ca_ttc": revenue * (1 + vat_rate),
        "achats_marchandises": purchases,
        "achats_ttc": purchases * (1 + vat_rate),
        "marge_commerciale": sig.value("marge_commerciale"),
        "valeur_ajoutee": sig.value("valeur_ajoutee"),
        "ebe": sig.ebe,
        "resultat_exploitation": sig.value("resultat_exploitation"),
        "resultat_net": sig.resultat_net,
        "dotations_amortissements": sig.inputs["dotations_amortissements"],
    }

    for name in (
        "stocks",
        "creances_clients",
        "dettes_fournisseurs",
        "capitaux_propres",
        "effectif",
    ):
        value = getattr(record, name)
        if value is not None:
            variables[name] = float(value)

    if record.total_dettes is not None:
        variables["dettes"] = float(record.total_dettes)

    bfr_parts = (record.stocks, record.creances_clients, record.dettes_fournisseurs)
    if any(v is not None for v in bfr_parts):
        variables["bfr"] = (
            (record.stocks or 0.0)
            + (record.creances_clients or 0.0)
            - (record.dettes_fournisseurs or 0.0)
        )

    return variables


def _round_by_unit(value: float, unit: str) -> float:
    if unit == "percent":
        return round(value, 1)
    if unit == "days":
        return int(round(value))
    if unit == "amount":
        return float(round(value))
    return round(value, 2)


def compute_ratios(
    variables: Mapping[str, float],
    rules: Sequence[RatioRule],
    year: int,
) -> RatioSet:
    """
    Compute every ratio rule against a variable mapping.

    Args:
        variables: Output of build_ratio_variables().
        rules: Ratio formulas, in display order.
        year: Fiscal year the variables belong to.

    Returns:
        A RatioSet with one RatioResult per rule. Ratios whose formula
        cannot be evaluated have value=None.
    """
    results: list[RatioResult] = []

    for rule in rules:
        value: Optional[float]
        try:
            # A formula may either reference a single variable or be a
            # full expression.
            if rule.formula in variables:
                raw = float(variables[rule.formula])
            else:
                raw = float(safe_eval(rule.formula, variables))
            value = _round_by_unit(raw, rule.unit)
        except Exception:
            value = None

        results.append(
            RatioResult(
                key=rule.key,
                label=rule.label,
                value=value,
                unit=rule.unit,
                notes=rule.notes,
            )
        )

    return RatioSet(year=year, results=tuple(results))
