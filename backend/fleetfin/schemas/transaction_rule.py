"""Transaction rule schemas.

``Pattern`` is deliberately permissive so that rules already stored can
always be loaded; ``Pattern.problems()`` is the strict check applied when a
rule is created, edited or generated.
"""

import math
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from fleetfin.schemas.transaction import TRANSACTION_FIELDS, TransactionIn

OPERATORS = ("equals", "contains", "startsWith", "endsWith", "greaterThan", "lessThan", "between")
TEMPORAL_TYPES = ("dayOfWeek", "dayOfMonth", "monthOfYear", "timeRange")

_TEMPORAL_BOUNDS = {
    "dayOfWeek": (0, 6),
    "dayOfMonth": (1, 31),
    "monthOfYear": (1, 12),
}
_MINUTES_PER_DAY = 24 * 60

ConditionValue = str | int | float | list[int | float]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ── Pattern ────────────────────────────────────────


class Condition(BaseModel):
    field: str
    operator: str
    value: ConditionValue


class AmountRange(BaseModel):
    min: float | None = None
    max: float | None = None


class TemporalMatch(BaseModel):
    type: str
    value: int | None = None
    start: int | None = None  # timeRange, minutes since midnight
    end: int | None = None

    model_config = {"extra": "allow"}


class Pattern(BaseModel):
    conditions: list[Condition] = Field(min_length=1)
    amount_range: AmountRange | None = None
    temporal_match: TemporalMatch | None = None
    # Accepted and stored, not evaluated yet
    metadata_match: Any = None
    location_match: Any = None
    vendor_match: Any = None
    account_relations: Any = None
    frequency_pattern: Any = None
    custom_match: Any = None

    def problems(self) -> list[str]:
        """List everything that makes this pattern unfit for a new rule."""
        found = []
        for index, condition in enumerate(self.conditions):
            problem = condition_problem(condition)
            if problem:
                found.append(f"condition {index}: {problem}")

        if self.amount_range is not None:
            low, high = self.amount_range.min, self.amount_range.max
            if any(bound is not None and not math.isfinite(bound) for bound in (low, high)):
                found.append("amount_range: bounds must be finite numbers")
            elif low is not None and high is not None and low > high:
                found.append("amount_range: min is greater than max")

        temporal = self.temporal_match
        if temporal is not None:
            if temporal.type in _TEMPORAL_BOUNDS:
                low, high = _TEMPORAL_BOUNDS[temporal.type]
                if temporal.value is None or not low <= temporal.value <= high:
                    found.append(f"temporal_match: {temporal.type} needs a value in [{low}, {high}]")
            elif temporal.type == "timeRange":
                if temporal.start is None or temporal.end is None:
                    found.append("temporal_match: timeRange needs start and end")
                elif not 0 <= temporal.start <= temporal.end < _MINUTES_PER_DAY:
                    found.append("temporal_match: timeRange bounds must satisfy 0 <= start <= end < 1440")
        return found


def condition_problem(condition: Condition) -> str | None:
    """Return why a condition is malformed, or None when it is well-formed."""
    if condition.field not in TRANSACTION_FIELDS:
        return f"unknown field {condition.field!r}"
    if condition.operator not in OPERATORS:
        return f"unknown operator {condition.operator!r}"
    value = condition.value
    numbers = value if isinstance(value, list) else [value]
    if any(isinstance(v, float) and not math.isfinite(v) for v in numbers):
        return "value must be a finite number"
    if condition.operator == "between":
        if not (isinstance(value, list) and len(value) == 2 and all(_is_number(v) for v in value)):
            return "between needs a [min, max] numeric pair"
        if value[0] > value[1]:
            return "between min is greater than max"
    elif isinstance(value, list):
        return f"{condition.operator} needs a single value"
    elif isinstance(value, str) and not value.strip():
        return "value is empty"
    return None


def _well_formed(pattern: Pattern | None) -> Pattern | None:
    if pattern is not None:
        found = pattern.problems()
        if found:
            raise ValueError("; ".join(found))
    return pattern


# ── Rule payloads ──────────────────────────────────


class RuleFields(BaseModel):
    """Fields shared by manually authored rules and generated drafts."""

    name: str
    description: str | None = None
    pattern: Pattern
    category: str
    priority: int = 0
    rule_type: str = "standard"
    tags: list[str] = []
    valid_from: date | None = None
    valid_until: date | None = None

    @field_validator("name", "category")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("pattern")
    @classmethod
    def _pattern_well_formed(cls, value: Pattern) -> Pattern:
        return _well_formed(value)

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(tag.strip() for tag in value if tag.strip()))

    @model_validator(mode="after")
    def _validity_window(self):
        if self.valid_from and self.valid_until and self.valid_from > self.valid_until:
            raise ValueError("valid_from must not be after valid_until")
        return self


class RuleCreate(RuleFields):
    """A user-authored rule.

    Confidence and provenance are not accepted from the caller: manual rules
    are always stored with ``confidence_score=1.0`` and ``is_ai_generated=False``.
    """


class RuleDraft(RuleFields):
    """A rule candidate proposed by the generation oracle."""

    confidence_score: float = Field(ge=0.0, le=1.0)
    recommendations: list[str] = []


class RuleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    pattern: Pattern | None = None
    category: str | None = None
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    priority: int | None = None
    rule_type: str | None = None
    tags: list[str] | None = None
    is_active: bool | None = None
    valid_from: date | None = None
    valid_until: date | None = None

    @field_validator("name", "category")
    @classmethod
    def _not_blank(cls, value: str | None) -> str | None:
        if value is not None:
            value = value.strip()
            if not value:
                raise ValueError("must not be empty")
        return value

    @field_validator("pattern")
    @classmethod
    def _pattern_well_formed(cls, value: Pattern | None) -> Pattern | None:
        return _well_formed(value)


class RuleResponse(BaseModel):
    id: str
    company_id: str
    name: str
    description: str | None
    pattern: dict
    category: str
    confidence_score: float
    is_ai_generated: bool
    recommendations: list[str] | None = None
    times_applied: int
    last_applied_at: datetime | None = None
    priority: int
    rule_type: str
    tags: list[str] | None = None
    is_active: bool
    valid_from: date | None = None
    valid_until: date | None = None
    version: int
    parent_rule_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ── Matching ───────────────────────────────────────


class ConditionOutcome(BaseModel):
    field: str
    operator: str
    value: ConditionValue
    matched: bool


class MatchResult(BaseModel):
    rule_id: str
    name: str
    category: str
    confidence: float
    matched_conditions: list[ConditionOutcome]


class TransactionTestRequest(BaseModel):
    transaction: TransactionIn


class TransactionTestResponse(BaseModel):
    matched_rules: list[MatchResult]


class RuleExplanation(BaseModel):
    """How one rule fares against a transaction, condition by condition."""

    rule_id: str
    name: str
    active: bool
    matched: bool
    conditions: list[ConditionOutcome]


# ── Generation & analysis ──────────────────────────


class GenerateRulesRequest(BaseModel):
    type: str = "rules"


class GeneratedRulesResponse(BaseModel):
    rules: list[RuleResponse]


class RecurringPattern(BaseModel):
    description: str = ""
    frequency: str = ""
    average_amount: float | None = None


class SeasonalPattern(BaseModel):
    description: str = ""
    period: str = ""
    trend: str = ""


class DetectedPatterns(BaseModel):
    recurring: list[RecurringPattern] = []
    seasonal: list[SeasonalPattern] = []

    model_config = {"extra": "allow"}


class AnalyzeTransactionsRequest(BaseModel):
    transactions: list[TransactionIn] = Field(min_length=1)
    type: str = Field(min_length=1)


class AnalysisResponse(BaseModel):
    rules: list[RuleDraft]
    patterns: DetectedPatterns | None = None
