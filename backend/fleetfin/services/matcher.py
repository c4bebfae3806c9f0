"""Composite rule matching.

A rule matches a transaction when every condition of its pattern holds
and every optional matcher present on the pattern (amount range, temporal
match, ...) is satisfied. Matchers that have no evaluation contract yet are
explicit no-ops registered under their ``MatcherKind``.
"""

from collections.abc import Callable, Iterable
from datetime import date, datetime
from enum import Enum
from typing import Any

import structlog

from fleetfin.models.transaction_rule import TransactionRule
from fleetfin.schemas.transaction import TransactionIn
from fleetfin.schemas.transaction_rule import (
    AmountRange,
    ConditionOutcome,
    MatchResult,
    Pattern,
    TemporalMatch,
)
from fleetfin.services.conditions import evaluate_condition

logger = structlog.get_logger()


class MatcherKind(str, Enum):
    """Optional pattern matchers; the value is the pattern attribute holding the spec."""

    AMOUNT_RANGE = "amount_range"
    TEMPORAL = "temporal_match"
    METADATA = "metadata_match"
    LOCATION = "location_match"
    VENDOR = "vendor_match"
    ACCOUNT_RELATIONS = "account_relations"
    FREQUENCY = "frequency_pattern"
    CUSTOM = "custom_match"


# ── Matchers ───────────────────────────────────────


def amount_in_range(transaction: TransactionIn, spec: AmountRange) -> bool:
    if spec.min is not None and transaction.amount < spec.min:
        return False
    if spec.max is not None and transaction.amount > spec.max:
        return False
    return True


def _weekday_sunday_first(moment: datetime) -> int:
    return (moment.weekday() + 1) % 7


def _minutes_since_midnight(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def _in_time_range(moment: datetime, spec: TemporalMatch) -> bool:
    if spec.start is None or spec.end is None:
        return False
    return spec.start <= _minutes_since_midnight(moment) <= spec.end


TEMPORAL_TESTS: dict[str, Callable[[datetime, TemporalMatch], bool]] = {
    "dayOfWeek": lambda moment, spec: _weekday_sunday_first(moment) == spec.value,
    "dayOfMonth": lambda moment, spec: moment.day == spec.value,
    "monthOfYear": lambda moment, spec: moment.month == spec.value,
    "timeRange": _in_time_range,
}


def temporal_matches(transaction: TransactionIn, spec: TemporalMatch) -> bool:
    """Check the transaction date against a temporal spec. Unknown types pass."""
    test = TEMPORAL_TESTS.get(spec.type)
    if test is None:
        return True
    return test(transaction.occurred_at, spec)


def not_yet_evaluated(transaction: TransactionIn, spec: Any) -> bool:
    """Matcher with no evaluation contract yet: always satisfied."""
    return True


MATCHERS: dict[MatcherKind, Callable[[TransactionIn, Any], bool]] = {
    MatcherKind.AMOUNT_RANGE: amount_in_range,
    MatcherKind.TEMPORAL: temporal_matches,
    MatcherKind.METADATA: not_yet_evaluated,
    MatcherKind.LOCATION: not_yet_evaluated,
    MatcherKind.VENDOR: not_yet_evaluated,
    MatcherKind.ACCOUNT_RELATIONS: not_yet_evaluated,
    MatcherKind.FREQUENCY: not_yet_evaluated,
    MatcherKind.CUSTOM: not_yet_evaluated,
}


# ── Rule matching ──────────────────────────────────


def _condition_outcomes(
    transaction: TransactionIn, pattern: Pattern, absent_as_undefined: bool
) -> list[ConditionOutcome]:
    return [
        ConditionOutcome(
            field=condition.field,
            operator=condition.operator,
            value=condition.value,
            matched=evaluate_condition(
                transaction, condition, absent_as_undefined=absent_as_undefined
            ),
        )
        for condition in pattern.conditions
    ]


def is_rule_active(rule: TransactionRule, on: date) -> bool:
    """A rule takes part in matching only when enabled and within its validity window."""
    if not rule.is_active:
        return False
    if rule.valid_from is not None and on < rule.valid_from:
        return False
    if rule.valid_until is not None and on > rule.valid_until:
        return False
    return True


def match_rule(
    transaction: TransactionIn,
    rule: TransactionRule,
    *,
    on: date,
    absent_as_undefined: bool = False,
) -> MatchResult | None:
    """Evaluate one rule against one transaction.

    Returns None when the rule is inactive or does not match. Raises
    ``ValueError`` (pydantic's ``ValidationError`` included) when the stored
    pattern cannot be loaded, ``ArithmeticError`` when a stored bound cannot
    be compared with the amount.
    """
    if not is_rule_active(rule, on):
        return None

    pattern = Pattern.model_validate(rule.pattern)
    outcomes = _condition_outcomes(transaction, pattern, absent_as_undefined)
    if not all(outcome.matched for outcome in outcomes):
        return None

    for kind in MatcherKind:
        spec = getattr(pattern, kind.value)
        if spec is not None and not MATCHERS[kind](transaction, spec):
            return None

    return MatchResult(
        rule_id=rule.id,
        name=rule.name,
        category=rule.category,
        confidence=rule.confidence_score,
        matched_conditions=outcomes,
    )


def explain_rule(
    transaction: TransactionIn,
    rule: TransactionRule,
    *,
    absent_as_undefined: bool = False,
) -> list[ConditionOutcome]:
    """Per-condition outcomes for a rule, whether or not it matches overall."""
    pattern = Pattern.model_validate(rule.pattern)
    return _condition_outcomes(transaction, pattern, absent_as_undefined)


def match_rules(
    transaction: TransactionIn,
    rules: Iterable[TransactionRule],
    *,
    on: date,
    absent_as_undefined: bool = False,
) -> list[MatchResult]:
    """Evaluate every rule, keeping input order. Malformed rules are logged and skipped."""
    matches = []
    for rule in rules:
        try:
            result = match_rule(
                transaction, rule, on=on, absent_as_undefined=absent_as_undefined
            )
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.warning("malformed_rule_skipped", rule_id=rule.id, error=str(e))
            continue
        if result is not None:
            matches.append(result)
    return matches
