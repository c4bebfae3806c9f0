"""Transaction rule service.

Manages the rule lifecycle for a company (manual creation, edits, toggles,
deletion), tests transactions against the rule set, and turns transaction
history into AI-generated rules.
"""

from collections.abc import Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from fleetfin.config import settings
from fleetfin.core.exceptions import InsufficientHistoryError
from fleetfin.models.transaction_rule import TransactionRule
from fleetfin.schemas.transaction import TransactionIn
from fleetfin.schemas.transaction_rule import MatchResult, RuleCreate, RuleExplanation, RuleUpdate
from fleetfin.services.matching_session import MatchingSession
from fleetfin.services.rule_generation import GenerationResult, RuleGenerationAdapter
from fleetfin.services.rule_oracle import OpenAIRuleOracle, RuleOracle
from fleetfin.services.rule_repository import RuleRepository

logger = structlog.get_logger()


class RuleService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        oracle: RuleOracle | None = None,
        repository: RuleRepository | None = None,
        adapter: RuleGenerationAdapter | None = None,
    ):
        self.db = db
        self.repository = repository or RuleRepository(db)
        self._oracle = oracle
        self._adapter = adapter

    @property
    def adapter(self) -> RuleGenerationAdapter:
        if self._adapter is None:
            self._adapter = RuleGenerationAdapter(self._oracle or OpenAIRuleOracle())
        return self._adapter

    # ── CRUD ───────────────────────────────────────────

    async def list_rules(self, company_id: str) -> list[TransactionRule]:
        return await self.repository.list_rules(company_id)

    async def get_rule(self, company_id: str, rule_id: str) -> TransactionRule:
        return await self.repository.get_rule(company_id, rule_id)

    async def create_rule(self, company_id: str, data: RuleCreate) -> TransactionRule:
        """Create a user-authored rule (confidence 1.0, not AI generated)."""
        return await self.repository.insert_manual_rule(company_id, data)

    async def update_rule(self, company_id: str, rule_id: str, data: RuleUpdate) -> TransactionRule:
        return await self.repository.update_rule(
            company_id, rule_id, data.model_dump(exclude_unset=True)
        )

    async def set_active(self, company_id: str, rule_id: str, active: bool) -> TransactionRule:
        return await self.repository.update_rule(company_id, rule_id, {"is_active": active})

    async def delete_rule(self, company_id: str, rule_id: str) -> None:
        await self.repository.delete_rule(company_id, rule_id)

    # ── Matching ───────────────────────────────────────

    async def test_transaction(self, company_id: str, transaction: TransactionIn) -> list[MatchResult]:
        session = MatchingSession(self.repository)
        return await session.test_transaction(company_id, transaction)

    async def explain_rule(
        self, company_id: str, rule_id: str, transaction: TransactionIn
    ) -> RuleExplanation:
        rule = await self.repository.get_rule(company_id, rule_id)
        return MatchingSession(self.repository).explain(rule, transaction)

    # ── Generation ─────────────────────────────────────

    async def generate_rules(self, company_id: str, analysis_type: str = "rules") -> list[TransactionRule]:
        """Generate rules from the company's recent transactions and store them.

        Nothing is stored unless every generated rule is valid.
        """
        history = await self.repository.fetch_transaction_history(
            company_id, settings.rule_generation_max_transactions
        )
        required = settings.rule_generation_min_transactions
        if len(history) < required:
            raise InsufficientHistoryError(required=required, found=len(history))

        result = await self.adapter.generate(history, analysis_type)
        rules = await self.repository.insert_rules(company_id, result.rules, ai_generated=True)

        logger.info(
            "rules_generated_and_saved",
            company_id=company_id,
            history=len(history),
            saved=len(rules),
        )
        return rules

    async def analyze_transactions(
        self,
        transactions: Sequence[TransactionIn],
        analysis_type: str,
    ) -> GenerationResult:
        """Ask for rules and recurring/seasonal patterns without storing anything."""
        return await self.adapter.generate(transactions, analysis_type)
