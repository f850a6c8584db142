"""Condition Evaluation — tests for field/operator/value tests over event data.

Tests cover:
    - Empty condition list always passes
    - Left-associative and/or chaining: [A, B(and), C(or)] == ((A and B) or C)
    - Operators: equality, ordering, text, null checks, in / not_in
    - Coercion per value_type (number, boolean, date, string)
    - Missing fields read as null
    - Malformed conditions fail alone without raising
    - Dotted and case-insensitive field lookup
    - Save-time validate_condition
"""

import pytest

from smartwms_automation.core.domain_types import (
    ConditionLogic,
    ConditionOperator,
    ValueType,
)
from smartwms_automation.core.errors import ConditionEvaluationError
from smartwms_automation.core.evaluate_conditions import (
    evaluate_condition,
    evaluate_conditions,
    resolve_field,
    validate_condition,
)
from smartwms_automation.core.rule_types import Condition

Op = ConditionOperator


def _cond(field, op, value="", value_type=None, logic=ConditionLogic.AND, order=0):
    return Condition(
        field=field, operator=op, value=value, value_type=value_type,
        logic=logic, order=order,
    )


# ─── Chaining ────────────────────────────────────────────────────

def test_empty_conditions_always_met():
    assert evaluate_conditions([], {"status": "Anything"}).conditions_met is True
    assert evaluate_conditions([], None).conditions_met is True


@pytest.mark.parametrize("a,b,c,expected", [
    (True, True, False, True),
    (True, False, False, False),
    (False, True, False, False),
    (False, False, True, True),
    (False, True, True, True),
    (True, False, True, True),
])
def test_chain_is_left_associative(a, b, c, expected):
    """[A, B(and), C(or)] evaluates as ((A and B) or C)."""
    data = {"a": "yes" if a else "no", "b": "yes" if b else "no", "c": "yes" if c else "no"}
    conditions = [
        _cond("a", Op.EQUALS, "yes", order=0),
        _cond("b", Op.EQUALS, "yes", logic=ConditionLogic.AND, order=1),
        _cond("c", Op.EQUALS, "yes", logic=ConditionLogic.OR, order=2),
    ]
    assert evaluate_conditions(conditions, data).conditions_met is expected


def test_or_does_not_bind_tighter_than_and():
    """[A(true), B(or, false), C(and, false)] == ((A or B) and C) == False."""
    conditions = [
        _cond("a", Op.EQUALS, "1", order=0),
        _cond("b", Op.EQUALS, "1", logic=ConditionLogic.OR, order=1),
        _cond("c", Op.EQUALS, "1", logic=ConditionLogic.AND, order=2),
    ]
    outcome = evaluate_conditions(conditions, {"a": 1, "b": 0, "c": 0})
    assert outcome.conditions_met is False


def test_first_condition_logic_is_ignored():
    conditions = [_cond("a", Op.EQUALS, "1", logic=ConditionLogic.OR)]
    assert evaluate_conditions(conditions, {"a": 2}).conditions_met is False


def test_conditions_run_in_order_field_not_list_position():
    conditions = [
        _cond("c", Op.EQUALS, "1", logic=ConditionLogic.OR, order=2),
        _cond("a", Op.EQUALS, "1", order=0),
        _cond("b", Op.EQUALS, "1", logic=ConditionLogic.AND, order=1),
    ]
    outcome = evaluate_conditions(conditions, {"a": 0, "b": 1, "c": 1})
    assert outcome.conditions_met is True
    assert [r.field for r in outcome.results] == ["a", "b", "c"]


# ─── Operators ───────────────────────────────────────────────────

@pytest.mark.parametrize("op,value,actual,expected", [
    (Op.EQUALS, "Cancelled", "cancelled", True),
    (Op.EQUALS, "10.50", 10.5, True),
    (Op.NOT_EQUALS, "Shipped", "Cancelled", True),
    (Op.GREATER_THAN, "5", 10, True),
    (Op.GREATER_THAN, "10", 10, False),
    (Op.GREATER_THAN_OR_EQUALS, "10", 10, True),
    (Op.LESS_THAN, "5", 4.99, True),
    (Op.LESS_THAN_OR_EQUALS, "5", 5, True),
    (Op.CONTAINS, "RUSH", "rush order", True),
    (Op.NOT_CONTAINS, "rush", "standard", True),
    (Op.STARTS_WITH, "so-", "SO-100", True),
    (Op.ENDS_WITH, "100", "SO-100", True),
    (Op.IN, "Pending, Cancelled", "cancelled", True),
    (Op.NOT_IN, "Pending,Cancelled", "Shipped", True),
    (Op.IN, "1,2,3", 4, False),
])
def test_operator(op, value, actual, expected):
    result = evaluate_condition(_cond("f", op, value), {"f": actual})
    assert result.passed is expected
    assert result.error is None


def test_numeric_comparison_is_not_lexical():
    result = evaluate_condition(_cond("qty", Op.GREATER_THAN, "9"), {"qty": "10"})
    assert result.passed is True


@pytest.mark.parametrize("actual,expected", [(None, True), ("", True), ("x", False)])
def test_is_null_ignores_value(actual, expected):
    result = evaluate_condition(_cond("f", Op.IS_NULL, "whatever"), {"f": actual})
    assert result.passed is expected


def test_is_not_null_on_missing_field():
    assert evaluate_condition(_cond("missing", Op.IS_NOT_NULL), {}).passed is False


def test_missing_field_fails_positive_operators():
    for op in (Op.EQUALS, Op.GREATER_THAN, Op.CONTAINS, Op.IN, Op.STARTS_WITH):
        assert evaluate_condition(_cond("missing", op, "1"), {}).passed is False


def test_missing_field_passes_negated_operators():
    for op in (Op.NOT_EQUALS, Op.NOT_CONTAINS, Op.NOT_IN):
        assert evaluate_condition(_cond("missing", op, "1"), {}).passed is True


# ─── Coercion ────────────────────────────────────────────────────

def test_boolean_value_type():
    cond = _cond("urgent", Op.EQUALS, "yes", value_type=ValueType.BOOLEAN)
    assert evaluate_condition(cond, {"urgent": True}).passed is True
    assert evaluate_condition(cond, {"urgent": "false"}).passed is False


def test_date_value_type_orders_chronologically():
    cond = _cond(
        "dueDate", Op.LESS_THAN, "2026-01-15T00:00:00Z", value_type=ValueType.DATE,
    )
    assert evaluate_condition(cond, {"dueDate": "2026-01-14T23:59:00"}).passed is True
    assert evaluate_condition(cond, {"dueDate": "2026-01-16"}).passed is False


def test_string_value_type_compares_text_not_numbers():
    cond = _cond("code", Op.EQUALS, "007", value_type=ValueType.STRING)
    assert evaluate_condition(cond, {"code": "007"}).passed is True
    assert evaluate_condition(cond, {"code": 7}).passed is False


def test_uncoercible_actual_fails_without_error():
    cond = _cond("qty", Op.GREATER_THAN, "5", value_type=ValueType.NUMBER)
    result = evaluate_condition(cond, {"qty": "lots"})
    assert result.passed is False
    assert result.error is None


# ─── Malformed conditions ────────────────────────────────────────

def test_unknown_operator_fails_only_that_condition():
    conditions = [
        _cond("a", "between", "1"),
        _cond("b", Op.EQUALS, "1", logic=ConditionLogic.OR, order=1),
    ]
    outcome = evaluate_conditions(conditions, {"a": 1, "b": 1})
    assert outcome.conditions_met is True
    assert outcome.results[0].passed is False
    assert "Unknown operator" in outcome.results[0].error


def test_uncoercible_expected_value_reports_error():
    cond = _cond("qty", Op.GREATER_THAN, "ten", value_type=ValueType.NUMBER)
    result = evaluate_condition(cond, {"qty": 11})
    assert result.passed is False
    assert "not a valid number" in result.error


def test_result_carries_actual_and_expected():
    result = evaluate_condition(_cond("status", Op.EQUALS, "Cancelled"), {"status": "Shipped"})
    assert result.to_dict() == {
        "field": "status",
        "operator": "equals",
        "expected_value": "Cancelled",
        "actual_value": "Shipped",
        "passed": False,
        "error": None,
    }


# ─── Field lookup ────────────────────────────────────────────────

def test_resolve_dotted_and_case_insensitive():
    data = {"Order": {"Customer": {"name": "Acme"}}, "lines": [{"sku": "A1"}]}
    assert resolve_field(data, "order.customer.Name") == "Acme"
    assert resolve_field(data, "lines.0.sku") == "A1"
    assert resolve_field(data, "lines.5.sku") is None
    assert resolve_field(data, "order.missing") is None


def test_exact_key_wins_over_case_insensitive():
    assert resolve_field({"status": "a", "Status": "b"}, "Status") == "b"


# ─── Save-time validation ────────────────────────────────────────

def test_validate_condition_accepts_well_formed():
    validate_condition(_cond("qty", Op.IN, "1, 2, 3", value_type=ValueType.NUMBER))
    validate_condition(_cond("notes", Op.IS_NULL, "ignored", value_type=ValueType.NUMBER))


def test_validate_condition_rejects_bad_list_item():
    with pytest.raises(ConditionEvaluationError):
        validate_condition(_cond("qty", Op.IN, "1, two", value_type=ValueType.NUMBER))


def test_validate_condition_rejects_unknown_operator():
    with pytest.raises(ConditionEvaluationError):
        validate_condition(_cond("qty", "between", "1"))
