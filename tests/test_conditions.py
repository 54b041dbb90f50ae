"""Tests for backend.custom_fields.conditions."""

import pytest

from backend.custom_fields.conditions import check_condition, evaluate_conditions


class TestCheckCondition:
    @pytest.mark.parametrize("op,value,expected,result", [
        ("equals", "a", "a", True),
        ("equals", 1, "1", False),
        ("not_equals", "a", "b", True),
        ("contains", "enterprise plan", "plan", True),
        ("contains", None, "x", False),
        ("not_contains", "basic", "pro", True),
        ("greater_than", "10", 5, True),
        ("greater_than", "abc", 5, False),
        ("less_than", 3, 5, True),
        ("is_empty", "", None, True),
        ("is_empty", 0, None, False),
        ("is_not_empty", "x", None, True),
        ("in", "gold", ["gold", "silver"], True),
        ("in", "gold", "gold", False),
        ("not_in", "bronze", ["gold"], True),
        ("not_in", "gold", "not-a-list", True),
    ])
    def test_operators(self, op, value, expected, result):
        assert check_condition(op, value, expected) is result

    def test_unknown_operator_never_matches(self):
        assert check_condition("matches_regex", "a", "a") is False


class TestEvaluateConditions:
    def test_defaults(self):
        state = evaluate_conditions([], {}, required=True)
        assert state.to_dict() == {"visible": True, "required": True, "disabled": False}

    def test_show_hides_when_condition_fails(self):
        rules = [{"field_id": "tier", "operator": "equals", "value": "gold", "action": "show"}]
        assert evaluate_conditions(rules, {"tier": "silver"}).visible is False
        assert evaluate_conditions(rules, {"tier": "gold"}).visible is True

    def test_hide_require_disable_fire_when_condition_holds(self):
        rules = [
            {"field_id": "type", "operator": "equals", "value": "internal", "action": "hide"},
            {"field_id": "amount", "operator": "greater_than", "value": 1000, "action": "require"},
            {"field_id": "locked", "operator": "equals", "value": True, "action": "disable"},
        ]
        state = evaluate_conditions(rules, {"type": "internal", "amount": 5000, "locked": True})
        assert state.to_dict() == {"visible": False, "required": True, "disabled": True}

        state = evaluate_conditions(rules, {"type": "client", "amount": 10, "locked": False})
        assert state.to_dict() == {"visible": True, "required": False, "disabled": False}

    def test_missing_field_value_is_none(self):
        rules = [{"field_id": "notes", "operator": "is_empty", "action": "require"}]
        assert evaluate_conditions(rules, {}).required is True
