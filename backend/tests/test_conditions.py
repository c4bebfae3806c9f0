"""Condition evaluator tests."""

import pytest

from fleetfin.schemas.transaction import TransactionIn
from fleetfin.schemas.transaction_rule import Condition
from fleetfin.services.conditions import as_number, as_text, evaluate_condition


def txn(**overrides) -> TransactionIn:
    data = {
        "description": "Shell Fuel Purchase",
        "amount": "45.00",
        "type": "expense",
        "date": "2025-03-10",
        "vendor": "acme",
    }
    data.update(overrides)
    return TransactionIn(**data)


def cond(field: str, operator: str, value) -> Condition:
    return Condition(field=field, operator=operator, value=value)


@pytest.mark.parametrize(
    "operator,value",
    [
        ("equals", "ACME"),
        ("contains", "CM"),
        ("startsWith", "Ac"),
        ("endsWith", "ME"),
    ],
)
def test_string_operators_ignore_case(operator, value):
    assert evaluate_condition(txn(), cond("vendor", operator, value)) is True


def test_string_operator_mismatch():
    assert evaluate_condition(txn(), cond("description", "contains", "grocery")) is False


def test_equals_compares_amounts_without_trailing_zeros():
    assert evaluate_condition(txn(amount="45.00"), cond("amount", "equals", 45)) is True
    assert evaluate_condition(txn(amount="100"), cond("amount", "equals", "100")) is True


@pytest.mark.parametrize("operator", ["greaterThan", "lessThan"])
def test_numeric_operators_with_non_numeric_operand_are_false(operator):
    assert evaluate_condition(txn(), cond("description", operator, 10)) is False
    assert evaluate_condition(txn(), cond("amount", operator, "lots")) is False


def test_numeric_operators():
    assert evaluate_condition(txn(amount="45"), cond("amount", "greaterThan", 40)) is True
    assert evaluate_condition(txn(amount="45"), cond("amount", "greaterThan", "45")) is False
    assert evaluate_condition(txn(amount="-12.5"), cond("amount", "lessThan", 0)) is True


@pytest.mark.parametrize(
    "amount,expected",
    [("150", True), ("100", True), ("200", True), ("99", False), ("201", False)],
)
def test_between_is_inclusive(amount, expected):
    assert evaluate_condition(txn(amount=amount), cond("amount", "between", [100, 200])) is expected


def test_between_with_malformed_pair_is_false():
    assert evaluate_condition(txn(amount="150"), cond("amount", "between", [100])) is False
    assert evaluate_condition(txn(amount="150"), cond("amount", "between", "100-200")) is False


def test_unknown_operator_is_false():
    assert evaluate_condition(txn(), cond("vendor", "matchesRegex", "acme")) is False


def test_absent_field_never_matches_by_default():
    transaction = txn(category=None)
    assert evaluate_condition(transaction, cond("category", "equals", "undefined")) is False
    assert evaluate_condition(transaction, cond("notes", "contains", "x")) is False


def test_absent_field_compares_as_undefined_when_enabled():
    transaction = txn(category=None)
    condition = cond("category", "equals", "UNDEFINED")
    assert evaluate_condition(transaction, condition, absent_as_undefined=True) is True


def test_as_text_and_as_number():
    assert as_text(12.0) == "12"
    assert as_text("MiXeD") == "mixed"
    assert as_number("3.5") == 3.5
    assert as_number(True) is None
    assert as_number(None) is None
