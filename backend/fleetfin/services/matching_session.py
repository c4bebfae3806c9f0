"""Matching session: test one transaction against a tenant's rule set."""

from collections.abc import Callable
from datetime import date, datetime, timezone

import structlog

from fleetfin.config import settings
from fleetfin.schemas.transaction import TransactionIn
from fleetfin.core.exceptions import ValidationError
from fleetfin.models.transaction_rule import TransactionRule
from fleetfin.schemas.transaction_rule import MatchResult, RuleExplanation
from fleetfin.services.matcher import explain_rule, is_rule_active, match_rule, match_rules
from fleetfin.services.rule_repository import RuleRepository

logger = structlog.get_logger()


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class MatchingSession:
    """Load the tenant's active rules once and evaluate them all.

    Results keep the order in which the repository returned the rules; a
    transaction may match any number of rules. Repository failures propagate
    unchanged (the repository has already retried transient ones).
    """

    def __init__(
        self,
        repository: RuleRepository,
        *,
        clock: Callable[[], date] = utc_today,
        absent_as_undefined: bool | None = None,
    ):
        self.repository = repository
        self.clock = clock
        if absent_as_undefined is None:
            absent_as_undefined = settings.rules_match_absent_as_undefined
        self.absent_as_undefined = absent_as_undefined

    async def test_transaction(self, company_id: str, transaction: TransactionIn) -> list[MatchResult]:
        rules = await self.repository.fetch_active_rules(company_id)
        matches = match_rules(
            transaction,
            rules,
            on=self.clock(),
            absent_as_undefined=self.absent_as_undefined,
        )
        logger.info(
            "transaction_tested",
            company_id=company_id,
            transaction_id=transaction.id,
            rules_count=len(rules),
            matched=len(matches),
        )
        return matches

    def explain(self, rule: TransactionRule, transaction: TransactionIn) -> RuleExplanation:
        """Per-condition outcomes for one rule, whether or not it matches overall."""
        today = self.clock()
        try:
            conditions = explain_rule(
                transaction, rule, absent_as_undefined=self.absent_as_undefined
            )
            result = match_rule(
                transaction, rule, on=today, absent_as_undefined=self.absent_as_undefined
            )
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.warning("malformed_rule_explained", rule_id=rule.id, error=str(e))
            raise ValidationError(f"Rule {rule.id} has a malformed pattern") from e

        return RuleExplanation(
            rule_id=rule.id,
            name=rule.name,
            active=is_rule_active(rule, today),
            matched=result is not None,
            conditions=conditions,
        )
