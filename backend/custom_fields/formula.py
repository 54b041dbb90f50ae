"""
backend.custom_fields.formula: Calculated field evaluation.

Formulas reference other fields as ``{field_name}``.  After substitution
the expression is parsed with ``ast`` and only numeric literals, the four
arithmetic operators, unary plus/minus and parentheses are allowed.
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from typing import Any, List, Mapping, Optional

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def referenced_fields(formula: str) -> List[str]:
    """Field names used by ``formula`` in first-seen order."""
    seen: List[str] = []
    for name in PLACEHOLDER_RE.findall(formula or ""):
        if name not in seen:
            seen.append(name)
    return seen


def substitute(formula: str, context: Mapping[str, Any]) -> str:
    def _replace(match: "re.Match[str]") -> str:
        value = context.get(match.group(1))
        if value is None or value == "" or value is False:
            return "0"
        if value is True:
            return "1"
        return str(value)

    return PLACEHOLDER_RE.sub(_replace, formula)


def _eval_node(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        return _BIN_OPS[type(node.op)](_eval_node(node.left), _eval_node(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    raise ValueError(f"unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str) -> float:
    """Evaluate a plain arithmetic expression; raises ``ValueError``."""
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        raise ValueError(str(exc)) from exc
    try:
        return _eval_node(tree)
    except ZeroDivisionError as exc:
        raise ValueError("division by zero") from exc


def evaluate_formula(formula: str, context: Mapping[str, Any]) -> Optional[float]:
    """Substitute ``context`` into ``formula`` and evaluate it.

    Returns ``None`` for any formula that cannot be evaluated.
    """
    if not formula:
        return None
    expression = substitute(formula, context)
    try:
        return evaluate_expression(expression)
    except ValueError as exc:
        logger.debug("Formula %r rejected: %s", formula, exc)
        return None
