"""Condition evaluation: one field/operator/value test against one transaction.

Evaluation never raises. Anything that cannot be compared (unparseable
number, malformed ``between`` pair, unknown operator) evaluates to False so
that a single bad condition cannot abort a batch scan.
"""

from collections.abc import Callable
from decimal import Decimal
from typing import Any

from fleetfin.schemas.transaction import TransactionIn
from fleetfin.schemas.transaction_rule import Condition

# Text substituted for absent values when the legacy comparison is enabled
ABSENT_AS_TEXT = "undefined"

FIELD_ACCESSORS: dict[str, Callable[[TransactionIn], Any]] = {
    "id": lambda txn: txn.id,
    "description": lambda txn: txn.description,
    "amount": lambda txn: txn.amount,
    "type": lambda txn: txn.type,
    "date": lambda txn: txn.date,
    "category": lambda txn: txn.category,
    "vendor": lambda txn: txn.vendor,
}


def resolve_field(transaction: TransactionIn, field: str) -> Any:
    """Return the transaction's value for ``field``, or None if unknown or unset."""
    accessor = FIELD_ACCESSORS.get(field)
    return accessor(transaction) if accessor else None


def as_text(value: Any) -> str:
    """Render a value for case-insensitive comparison (numbers without trailing zeros)."""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).lower()


def as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _equals(actual: str, expected: Any) -> bool:
    return actual == as_text(expected)


def _contains(actual: str, expected: Any) -> bool:
    return as_text(expected) in actual


def _starts_with(actual: str, expected: Any) -> bool:
    return actual.startswith(as_text(expected))


def _ends_with(actual: str, expected: Any) -> bool:
    return actual.endswith(as_text(expected))


def _greater_than(actual: str, expected: Any) -> bool:
    left, right = as_number(actual), as_number(expected)
    return left is not None and right is not None and left > right


def _less_than(actual: str, expected: Any) -> bool:
    left, right = as_number(actual), as_number(expected)
    return left is not None and right is not None and left < right


def _between(actual: str, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)) or len(expected) != 2:
        return False
    number = as_number(actual)
    low, high = as_number(expected[0]), as_number(expected[1])
    if number is None or low is None or high is None:
        return False
    return low <= number <= high


OPERATOR_TESTS: dict[str, Callable[[str, Any], bool]] = {
    "equals": _equals,
    "contains": _contains,
    "startsWith": _starts_with,
    "endsWith": _ends_with,
    "greaterThan": _greater_than,
    "lessThan": _less_than,
    "between": _between,
}


def evaluate_condition(
    transaction: TransactionIn,
    condition: Condition,
    *,
    absent_as_undefined: bool = False,
) -> bool:
    """Test one condition against one transaction.

    Both sides are compared as lower-cased text (or parsed as numbers for
    the numeric operators). An absent value never matches unless
    ``absent_as_undefined`` is set, in which case it is compared as the
    string ``"undefined"``.
    """
    test = OPERATOR_TESTS.get(condition.operator)
    if test is None:
        return False

    value = resolve_field(transaction, condition.field)
    if value is None:
        if not absent_as_undefined:
            return False
        value = ABSENT_AS_TEXT

    return test(as_text(value), condition.value)
