"""Rule generation adapter and service tests."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import FakeOracle, generated_rule
from fleetfin.core.exceptions import (
    InsufficientHistoryError,
    InvalidOracleResponseError,
    RateLimitedError,
    TransientInfraError,
)
from fleetfin.models import Transaction, TransactionRule
from fleetfin.schemas.transaction import TransactionIn
from fleetfin.services.rule_generation import (
    RuleGenerationAdapter,
    prepare_transactions,
    validate_oracle_response,
)
from fleetfin.services.rule_prompts import build_rule_prompt, transaction_stats
from fleetfin.services.rule_service import RuleService


def txn(day: int, **overrides) -> TransactionIn:
    data = {
        "id": f"t{day}",
        "description": f"SHELL Station {day}",
        "amount": "40.00",
        "type": "expense",
        "date": f"2025-03-{day:02d}",
        "category": "Fuel",
    }
    data.update(overrides)
    return TransactionIn(**data)


async def count_rules(db) -> int:
    return await db.scalar(select(func.count()).select_from(TransactionRule))


# ── Request ───────────────────────────────────────


def test_prepare_transactions_keeps_newest_lowercased():
    prepared = prepare_transactions([txn(3), txn(10), txn(7)], limit=2)

    assert [t["id"] for t in prepared] == ["t10", "t7"]
    assert prepared[0]["description"] == "shell station 10"
    assert prepared[0]["category"] == "fuel"
    assert prepared[0]["amount"] == 40.0


def test_prompt_includes_statistics_and_contract():
    transactions = prepare_transactions([txn(1), txn(2, category="Tolls", amount="10")], limit=10)
    stats = transaction_stats(transactions)
    prompt = build_rule_prompt({"transactions": transactions, "type": "rules"})

    assert stats["total"] == 2
    assert stats["date_range"] == "2025-03-01 to 2025-03-02"
    assert stats["average_amount"] == 25.0
    assert "Total Transactions: 2" in prompt
    assert "startsWith" in prompt
    assert '"confidence_score": number' in prompt


# ── Response validation ───────────────────────────


def test_valid_response_yields_drafts_and_patterns():
    result = validate_oracle_response(
        {
            "rules": [generated_rule()],
            "patterns": {"recurring": [{"description": "Weekly fuel", "frequency": "weekly"}]},
        }
    )

    assert result.rules[0].name == "Fuel purchases"
    assert result.rules[0].recommendations == ["Track fuel spend per vehicle"]
    assert result.patterns.recurring[0].frequency == "weekly"


@pytest.mark.parametrize(
    "broken,reason",
    [
        ({"confidence_score": None}, "invalid confidence score"),
        ({"confidence_score": 1.5}, "invalid confidence score"),
        ({"confidence_score": True}, "invalid confidence score"),
        ({"name": "  "}, "missing or invalid name"),
        ({"category": ""}, "missing or invalid category"),
        ({"pattern": {"conditions": "fuel"}}, "missing or invalid pattern conditions"),
        ({"pattern": {"conditions": []}}, "at least one condition"),
    ],
)
def test_one_malformed_rule_rejects_the_batch(broken, reason):
    raw = {"rules": [generated_rule(), generated_rule(**broken)]}

    with pytest.raises(InvalidOracleResponseError) as exc_info:
        validate_oracle_response(raw)

    assert "index 1" in exc_info.value.detail
    assert reason in exc_info.value.detail


def test_missing_confidence_score_rejects_the_batch():
    rule = generated_rule()
    del rule["confidence_score"]

    with pytest.raises(InvalidOracleResponseError, match="invalid confidence score"):
        validate_oracle_response({"rules": [rule]})


def test_unknown_field_or_operator_is_rejected():
    rule = generated_rule(
        pattern={"conditions": [{"field": "memo", "operator": "contains", "value": "x"}]}
    )
    with pytest.raises(InvalidOracleResponseError, match="unknown field"):
        validate_oracle_response({"rules": [rule]})


def test_rules_must_be_an_array():
    with pytest.raises(InvalidOracleResponseError, match="must be an array"):
        validate_oracle_response({"rules": {"name": "x"}})


# ── Adapter ───────────────────────────────────────


@pytest.mark.asyncio
async def test_adapter_retries_transient_oracle_failures(instant_policy, sleep):
    oracle = FakeOracle(TransientInfraError("network"), {"rules": [generated_rule()]})
    adapter = RuleGenerationAdapter(oracle, retry_policy=instant_policy(max_attempts=4))

    result = await adapter.generate([txn(1)], "rules")

    assert len(result.rules) == 1
    assert len(oracle.requests) == 2
    assert oracle.requests[0] == {"transactions": prepare_transactions([txn(1)], 100), "type": "rules"}
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_adapter_gives_up_after_retries(instant_policy):
    oracle = FakeOracle(RateLimitedError("slow down"))
    adapter = RuleGenerationAdapter(oracle, retry_policy=instant_policy(max_attempts=4))

    with pytest.raises(RateLimitedError):
        await adapter.generate([txn(1)], "rules")

    assert len(oracle.requests) == 4


@pytest.mark.asyncio
async def test_adapter_does_not_retry_invalid_answers(instant_policy):
    oracle = FakeOracle({"rules": "nope"})
    adapter = RuleGenerationAdapter(oracle, retry_policy=instant_policy(max_attempts=4))

    with pytest.raises(InvalidOracleResponseError):
        await adapter.generate([txn(1)], "rules")

    assert len(oracle.requests) == 1


# ── Service ───────────────────────────────────────


def _service(db, oracle, instant_policy) -> RuleService:
    adapter = RuleGenerationAdapter(oracle, retry_policy=instant_policy(max_attempts=4))
    return RuleService(db, adapter=adapter)


@pytest.mark.asyncio
async def test_generate_rules_persists_ai_rules(db, tenant, add_history, instant_policy):
    await add_history(tenant.company_id, 12)
    oracle = FakeOracle({"rules": [generated_rule(), generated_rule(name="Tolls", category="Tolls")]})

    rules = await _service(db, oracle, instant_policy).generate_rules(tenant.company_id)

    assert [r.name for r in rules] == ["Fuel purchases", "Tolls"]
    assert all(r.is_ai_generated for r in rules)
    assert rules[0].confidence_score == 0.9
    assert rules[0].recommendations == ["Track fuel spend per vehicle"]
    assert len(oracle.requests[0]["transactions"]) == 12
    assert await count_rules(db) == 2


@pytest.mark.asyncio
async def test_generation_with_missing_confidence_persists_nothing(db, tenant, add_history, instant_policy):
    await add_history(tenant.company_id, 12)
    incomplete = generated_rule(name="Tolls")
    del incomplete["confidence_score"]
    oracle = FakeOracle({"rules": [generated_rule(), incomplete]})

    with pytest.raises(InvalidOracleResponseError):
        await _service(db, oracle, instant_policy).generate_rules(tenant.company_id)

    assert await count_rules(db) == 0


@pytest.mark.asyncio
async def test_generation_requires_enough_history(db, tenant, add_history, instant_policy):
    await add_history(tenant.company_id, 9)
    oracle = FakeOracle({"rules": [generated_rule()]})

    with pytest.raises(InsufficientHistoryError) as exc_info:
        await _service(db, oracle, instant_policy).generate_rules(tenant.company_id)

    assert exc_info.value.found == 9
    assert oracle.requests == []


@pytest.mark.asyncio
async def test_generation_tolerates_ledger_rows_outside_request_rules(db, tenant, add_history, instant_policy):
    await add_history(tenant.company_id, 10)
    db.add_all(
        [
            Transaction(
                company_id=tenant.company_id,
                date=date(2024, 2, 1),
                description="",
                amount=Decimal("12.00"),
                type="expense",
            ),
            Transaction(
                company_id=tenant.company_id,
                date=date(2024, 2, 2),
                description="Card refund",
                amount=Decimal("-5.00"),
                type="refund",
            ),
        ]
    )
    await db.commit()
    oracle = FakeOracle({"rules": [generated_rule()]})

    rules = await _service(db, oracle, instant_policy).generate_rules(tenant.company_id)

    assert len(rules) == 1
    sent = oracle.requests[0]["transactions"]
    assert len(sent) == 12
    assert sent[0]["description"] == "card refund"
    assert sent[1]["description"] == ""
