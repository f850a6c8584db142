"""Condition Evaluation — pure field/operator/value tests over an event snapshot.

Invariants:
    - Empty condition list => conditions_met is True (unconditional rule)
    - Conditions run in `order`, left to right; each combines with the running
      result through its own logic: result = combine(result, cond_i, cond_i.logic).
      No parenthesization: [A, B(and), C(or)] == ((A and B) or C)
    - The first condition's logic is ignored (nothing to combine with)
    - Missing field => null. Null fails every positive operator and passes
      not_equals / not_contains / not_in
    - A malformed condition never raises out of evaluate_conditions: it is logged,
      counted as False, and its error is reported on its ConditionResult
    - is_null / is_not_null ignore the expected value; empty string counts as null

Design Decisions:
    - Decimal for numbers: "10.50" == 10.5 without float drift
    - Unset value_type compares numerically when both sides parse as numbers,
      otherwise as case-insensitive text
    - Naive dates are read as UTC
"""

import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from smartwms_automation.core.domain_types import (
    ConditionLogic,
    ConditionOperator,
    ValueType,
)
from smartwms_automation.core.errors import ConditionEvaluationError
from smartwms_automation.core.rule_types import (
    Condition,
    ConditionResult,
    EvaluationOutcome,
)

logger = logging.getLogger(__name__)

_TRUE = frozenset({"true", "1", "yes", "y", "on"})
_FALSE = frozenset({"false", "0", "no", "n", "off"})

_NULL_CHECKS = frozenset({ConditionOperator.IS_NULL, ConditionOperator.IS_NOT_NULL})
_NEGATED = frozenset({
    ConditionOperator.NOT_EQUALS,
    ConditionOperator.NOT_CONTAINS,
    ConditionOperator.NOT_IN,
})
_TEXT_OPS = frozenset({
    ConditionOperator.CONTAINS,
    ConditionOperator.NOT_CONTAINS,
    ConditionOperator.STARTS_WITH,
    ConditionOperator.ENDS_WITH,
})


# ─── Public API ──────────────────────────────────────────────────

def evaluate_conditions(
    conditions: Sequence[Condition], data: Mapping[str, Any] | None,
) -> EvaluationOutcome:
    """Evaluate conditions left-associatively against data. Pure, never raises."""
    if not conditions:
        return EvaluationOutcome(conditions_met=True, results=())

    ordered = sorted(conditions, key=lambda c: c.order)
    snapshot = data or {}
    results: list[ConditionResult] = []
    met = False
    for index, condition in enumerate(ordered):
        result = evaluate_condition(condition, snapshot)
        results.append(result)
        if index == 0:
            met = result.passed
        elif condition.logic == ConditionLogic.AND:
            met = met and result.passed
        else:
            met = met or result.passed
    return EvaluationOutcome(conditions_met=met, results=tuple(results))


def evaluate_condition(
    condition: Condition, data: Mapping[str, Any],
) -> ConditionResult:
    """Evaluate one condition. Malformed conditions yield passed=False + error."""
    actual = resolve_field(data, condition.field)
    try:
        passed = _apply_operator(condition, actual)
        error = None
    except ConditionEvaluationError as e:
        logger.warning(
            f"Condition on '{condition.field}' is malformed: {e.message}",
            extra={"error_code": e.code},
        )
        passed, error = False, e.message
    return ConditionResult(
        field=condition.field,
        operator=_operator_name(condition.operator),
        expected_value=condition.value,
        actual_value=_display(actual),
        passed=passed,
        error=error,
    )


def validate_condition(condition: Condition) -> None:
    """Save-time check: known operator and a value coercible to value_type."""
    op = condition.operator
    if not isinstance(op, ConditionOperator):
        raise ConditionEvaluationError(
            f"Unknown operator '{op}'", field=condition.field,
        )
    if op in _NULL_CHECKS or op in _TEXT_OPS:
        return
    if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        for item in condition.value.split(","):
            _coerce_expected(item.strip(), condition.value_type, condition.field)
        return
    _coerce_expected(condition.value, condition.value_type, condition.field)


def resolve_field(data: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path. Exact key first, then case-insensitive; missing => None."""
    if not path:
        return None
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part in current:
                current = current[part]
                continue
            folded = part.casefold()
            match = next(
                (k for k in current if isinstance(k, str) and k.casefold() == folded),
                None,
            )
            if match is None:
                return None
            current = current[match]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            idx = int(part)
            if idx >= len(current):
                return None
            current = current[idx]
        else:
            return None
    return current


# ─── Operator application ────────────────────────────────────────

def _apply_operator(condition: Condition, actual: Any) -> bool:
    op = condition.operator
    if not isinstance(op, ConditionOperator):
        raise ConditionEvaluationError(
            f"Unknown operator '{op}'", field=condition.field,
        )

    if op in _NULL_CHECKS:
        is_null = actual is None or (isinstance(actual, str) and actual == "")
        return is_null if op == ConditionOperator.IS_NULL else not is_null

    value_type = condition.value_type
    if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        expected_list = [
            _coerce_expected(item.strip(), value_type, condition.field)
            for item in condition.value.split(",")
        ]
        if _is_null(actual):
            return op in _NEGATED
        found = any(_equal(actual, e, value_type) for e in expected_list)
        return found if op == ConditionOperator.IN else not found

    if op in _TEXT_OPS:
        if _is_null(actual):
            return op in _NEGATED
        haystack = _text(actual).casefold()
        needle = condition.value.casefold()
        if op == ConditionOperator.CONTAINS:
            return needle in haystack
        if op == ConditionOperator.NOT_CONTAINS:
            return needle not in haystack
        if op == ConditionOperator.STARTS_WITH:
            return haystack.startswith(needle)
        return haystack.endswith(needle)

    expected = _coerce_expected(condition.value, value_type, condition.field)
    if _is_null(actual):
        return op in _NEGATED

    if op == ConditionOperator.EQUALS:
        return _equal(actual, expected, value_type)
    if op == ConditionOperator.NOT_EQUALS:
        return not _equal(actual, expected, value_type)

    cmp = _compare(actual, expected, value_type)
    if cmp is None:
        return False
    if op == ConditionOperator.GREATER_THAN:
        return cmp > 0
    if op == ConditionOperator.GREATER_THAN_OR_EQUALS:
        return cmp >= 0
    if op == ConditionOperator.LESS_THAN:
        return cmp < 0
    return cmp <= 0


def _equal(actual: Any, expected: Any, value_type: ValueType | None) -> bool:
    return _compare(actual, expected, value_type) == 0


def _compare(actual: Any, expected: Any, value_type: ValueType | None) -> int | None:
    """Three-way compare after coercion; None when actual cannot be coerced."""
    if value_type is None:
        left_num, right_num = _to_decimal(actual), _to_decimal(expected)
        if left_num is not None and right_num is not None:
            return _cmp(left_num, right_num)
        return _cmp(_text(actual).casefold(), _text(expected).casefold())

    left = _coerce(actual, value_type)
    if left is None:
        return None
    if value_type == ValueType.STRING:
        return _cmp(left.casefold(), expected.casefold())
    return _cmp(left, expected)


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


# ─── Coercion ────────────────────────────────────────────────────

def _coerce_expected(raw: str, value_type: ValueType | None, field: str) -> Any:
    """Coerce the rule-side value. Uncoercible => ConditionEvaluationError."""
    if value_type is None:
        return raw
    coerced = _coerce(raw, value_type)
    if coerced is None:
        raise ConditionEvaluationError(
            f"Value '{raw}' is not a valid {value_type.value}", field=field,
        )
    return coerced


def _coerce(value: Any, value_type: ValueType) -> Any:
    if value_type == ValueType.NUMBER:
        return _to_decimal(value)
    if value_type == ValueType.BOOLEAN:
        return _to_bool(value)
    if value_type == ValueType.DATE:
        return _to_datetime(value)
    return _text(value)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        folded = value.strip().casefold()
        if folded in _TRUE:
            return True
        if folded in _FALSE:
            return False
    return None


def _to_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _is_null(value: Any) -> bool:
    return value is None


def _display(value: Any) -> str | None:
    return None if value is None else _text(value)


def _operator_name(op: ConditionOperator | str) -> str:
    return op.value if isinstance(op, ConditionOperator) else str(op)
