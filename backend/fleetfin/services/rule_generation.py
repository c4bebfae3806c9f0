"""Rule generation adapter.

Builds a deterministic request from recent transactions, asks the oracle for
rules with bounded retries, and validates the answer before any rule can
reach the repository. One malformed rule rejects the whole answer.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from fleetfin.config import settings
from fleetfin.core.exceptions import InvalidOracleResponseError
from fleetfin.core.retry import RetryPolicy, run_with_retry
from fleetfin.schemas.transaction import TransactionIn
from fleetfin.schemas.transaction_rule import DetectedPatterns, RuleDraft
from fleetfin.services.rule_oracle import RuleOracle

logger = structlog.get_logger()


def oracle_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.llm_max_attempts,
        base_delay=settings.llm_retry_delay,
        timeout=settings.llm_timeout,
    )


@dataclass
class GenerationResult:
    rules: list[RuleDraft]
    patterns: DetectedPatterns | None = None


# ── Request ────────────────────────────────────────


def _recency_key(transaction: TransactionIn) -> datetime:
    moment = transaction.occurred_at
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def prepare_transactions(transactions: Sequence[TransactionIn], limit: int) -> list[dict]:
    """Newest ``limit`` transactions as JSON dicts, description and category lower-cased."""
    recent = sorted(transactions, key=_recency_key, reverse=True)[:limit]
    prepared = []
    for txn in recent:
        data = txn.model_dump(mode="json", exclude_none=True)
        data["amount"] = float(txn.amount)
        data["description"] = txn.description.lower()
        if txn.category:
            data["category"] = txn.category.lower()
        prepared.append(data)
    return prepared


# ── Response validation ────────────────────────────


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _rule_problem(rule: Any) -> str | None:
    if not isinstance(rule, dict):
        return "must be an object"
    name = rule.get("name")
    if not isinstance(name, str) or not name.strip():
        return "missing or invalid name"
    pattern = rule.get("pattern")
    if not isinstance(pattern, dict) or not isinstance(pattern.get("conditions"), list):
        return "missing or invalid pattern conditions"
    if not pattern["conditions"]:
        return "pattern needs at least one condition"
    category = rule.get("category")
    if not isinstance(category, str) or not category.strip():
        return "missing or invalid category"
    score = rule.get("confidence_score")
    if not _is_number(score) or not 0 <= score <= 1:
        return "invalid confidence score"
    return None


def _first_error(error: PydanticValidationError) -> str:
    err = error.errors()[0]
    location = ".".join(str(part) for part in err["loc"])
    return f"{location}: {err['msg']}" if location else err["msg"]


def validate_oracle_response(raw: Any) -> GenerationResult:
    """Turn the oracle's raw JSON into rule drafts, or raise for the whole batch."""
    if not isinstance(raw, dict):
        raise InvalidOracleResponseError("Invalid oracle response: expected a JSON object")
    rules = raw.get("rules")
    if not isinstance(rules, list):
        raise InvalidOracleResponseError("Invalid rules: must be an array")

    drafts = []
    for index, rule in enumerate(rules):
        problem = _rule_problem(rule)
        if problem is None:
            try:
                drafts.append(RuleDraft.model_validate(rule))
            except PydanticValidationError as e:
                problem = _first_error(e)
        if problem is not None:
            raise InvalidOracleResponseError(f"Invalid rule at index {index}: {problem}")

    patterns = None
    if raw.get("patterns") is not None:
        try:
            patterns = DetectedPatterns.model_validate(raw["patterns"])
        except PydanticValidationError as e:
            raise InvalidOracleResponseError(f"Invalid patterns: {_first_error(e)}") from e

    return GenerationResult(rules=drafts, patterns=patterns)


# ── Adapter ────────────────────────────────────────


class RuleGenerationAdapter:
    def __init__(
        self,
        oracle: RuleOracle,
        *,
        retry_policy: RetryPolicy | None = None,
        max_transactions: int | None = None,
    ):
        self.oracle = oracle
        self.retry_policy = retry_policy or oracle_retry_policy()
        self.max_transactions = max_transactions or settings.rule_generation_max_transactions

    def build_request(self, transactions: Sequence[TransactionIn], analysis_type: str) -> dict:
        return {
            "transactions": prepare_transactions(transactions, self.max_transactions),
            "type": analysis_type,
        }

    async def generate(
        self,
        transactions: Sequence[TransactionIn],
        analysis_type: str = "rules",
    ) -> GenerationResult:
        request = self.build_request(transactions, analysis_type)
        raw = await run_with_retry(
            lambda: self.oracle.generate(request),
            self.retry_policy,
            name="rule_generation",
        )
        result = validate_oracle_response(raw)
        logger.info(
            "rules_generated",
            analysis_type=analysis_type,
            transactions=len(request["transactions"]),
            rules=len(result.rules),
        )
        return result
