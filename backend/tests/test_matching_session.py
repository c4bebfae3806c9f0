"""Matching session tests."""

from datetime import date

import pytest

from conftest import generated_rule
from fleetfin.core.exceptions import TransientInfraError, ValidationError
from fleetfin.models import TransactionRule
from fleetfin.schemas.transaction import TransactionIn
from fleetfin.services.matching_session import MatchingSession
from fleetfin.services.rule_repository import RuleRepository

SHELL_FUEL = TransactionIn(
    description="Shell Fuel Purchase",
    amount="45.00",
    type="expense",
    date="2025-03-10",
)


def fuel_rule(**overrides) -> dict:
    rule = generated_rule(
        name="Fuel",
        pattern={"conditions": [{"field": "description", "operator": "contains", "value": "fuel"}]},
        category="Fuel",
        confidence_score=0.9,
    )
    rule.update(overrides)
    return rule


@pytest.fixture
def repository(db, instant_policy):
    return RuleRepository(db, retry_policy=instant_policy())


def session_for(repository) -> MatchingSession:
    return MatchingSession(repository, clock=lambda: date(2025, 3, 10))


@pytest.mark.asyncio
async def test_shell_fuel_end_to_end(repository, tenant):
    await repository.insert_rules(tenant.company_id, [fuel_rule()])

    matches = await session_for(repository).test_transaction(tenant.company_id, SHELL_FUEL)

    assert len(matches) == 1
    assert matches[0].category == "Fuel"
    assert matches[0].confidence == 0.9
    assert matches[0].matched_conditions[0].matched is True


@pytest.mark.asyncio
async def test_all_matches_returned_in_repository_order(repository, tenant):
    rules = await repository.insert_rules(
        tenant.company_id,
        [
            fuel_rule(name="Fuel", confidence_score=0.5),
            fuel_rule(
                name="Expenses",
                category="Expense",
                confidence_score=0.99,
                priority=10,
                pattern={"conditions": [{"field": "type", "operator": "equals", "value": "expense"}]},
            ),
            fuel_rule(
                name="Groceries",
                category="Food",
                pattern={"conditions": [{"field": "description", "operator": "contains", "value": "market"}]},
            ),
        ],
    )
    expected = [r.id for r in await repository.fetch_active_rules(tenant.company_id)]

    matches = await session_for(repository).test_transaction(tenant.company_id, SHELL_FUEL)

    assert expected[0] == rules[1].id
    assert [m.rule_id for m in matches] == [i for i in expected if i != rules[2].id]


@pytest.mark.asyncio
async def test_disabled_and_expired_rules_do_not_match(repository, tenant):
    disabled, expired = await repository.insert_rules(
        tenant.company_id,
        [fuel_rule(name="Disabled"), fuel_rule(name="Expired", valid_until=date(2025, 3, 1))],
    )
    await repository.update_rule(tenant.company_id, disabled.id, {"is_active": False})

    matches = await session_for(repository).test_transaction(tenant.company_id, SHELL_FUEL)

    assert matches == []


@pytest.mark.asyncio
async def test_other_tenants_rules_are_invisible(repository, tenant, other_tenant):
    await repository.insert_rules(other_tenant.company_id, [fuel_rule()])

    matches = await session_for(repository).test_transaction(tenant.company_id, SHELL_FUEL)

    assert matches == []


@pytest.mark.asyncio
async def test_repository_failures_propagate():
    class DownRepository:
        async def fetch_active_rules(self, company_id):
            raise TransientInfraError("Database unavailable during fetch_active_rules")

    with pytest.raises(TransientInfraError):
        await MatchingSession(DownRepository()).test_transaction("company-1", SHELL_FUEL)


@pytest.mark.asyncio
async def test_explain_reports_every_condition_of_a_non_matching_rule(repository, tenant):
    [rule] = await repository.insert_rules(
        tenant.company_id,
        [
            fuel_rule(
                pattern={
                    "conditions": [
                        {"field": "description", "operator": "contains", "value": "fuel"},
                        {"field": "type", "operator": "equals", "value": "income"},
                    ]
                }
            )
        ],
    )

    explanation = session_for(repository).explain(rule, SHELL_FUEL)

    assert explanation.active is True
    assert explanation.matched is False
    assert [c.matched for c in explanation.conditions] == [True, False]


@pytest.mark.asyncio
async def test_explain_rejects_malformed_stored_pattern(repository):
    rule = TransactionRule(id="broken", company_id="c", name="Broken", pattern={"conditions": []}, is_active=True)

    with pytest.raises(ValidationError, match="malformed pattern"):
        session_for(repository).explain(rule, SHELL_FUEL)
