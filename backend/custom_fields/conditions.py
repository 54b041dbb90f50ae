"""
backend.custom_fields.conditions: Conditional visibility logic.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from backend.custom_fields.validation import is_empty
from backend.domain.enums import ConditionAction, ConditionOperator
from backend.domain.models import FieldState


def _as_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def check_condition(op: str, value: Any, expected: Any) -> bool:
    """True when ``value`` satisfies ``op`` against ``expected``.

    Unknown operators never match.
    """
    try:
        op = ConditionOperator(op)
    except ValueError:
        return False

    if op is ConditionOperator.EQUALS:
        return value == expected
    if op is ConditionOperator.NOT_EQUALS:
        return value != expected
    if op is ConditionOperator.CONTAINS:
        return _text(expected) in _text(value)
    if op is ConditionOperator.NOT_CONTAINS:
        return _text(expected) not in _text(value)
    if op is ConditionOperator.GREATER_THAN:
        return _as_number(value) > _as_number(expected)
    if op is ConditionOperator.LESS_THAN:
        return _as_number(value) < _as_number(expected)
    if op is ConditionOperator.IS_EMPTY:
        return is_empty(value)
    if op is ConditionOperator.IS_NOT_EMPTY:
        return not is_empty(value)
    if op is ConditionOperator.IN:
        return isinstance(expected, list) and value in expected
    if op is ConditionOperator.NOT_IN:
        return not isinstance(expected, list) or value not in expected
    return False


def evaluate_conditions(
    conditions: Iterable[Mapping[str, Any]],
    values: Mapping[str, Any],
    required: bool = False,
) -> FieldState:
    """
    Apply each ``{field_id, operator, value, action}`` rule.

    ``values`` maps field id to its current value.  ``show`` hides the field
    when its condition fails; the other actions fire when it holds.
    """
    state = FieldState(visible=True, required=bool(required), disabled=False)
    for cond in conditions or []:
        met = check_condition(cond.get("operator"), values.get(cond.get("field_id")), cond.get("value"))
        action = cond.get("action")
        if action == ConditionAction.SHOW.value and not met:
            state.visible = False
        elif action == ConditionAction.HIDE.value and met:
            state.visible = False
        elif action == ConditionAction.REQUIRE.value and met:
            state.required = True
        elif action == ConditionAction.DISABLE.value and met:
            state.disabled = True
    return state
