"""Rule repository: tenant-scoped persistence of transaction rules.

Every read and write filters on ``company_id``. Transient database failures
are retried according to the repository's ``RetryPolicy``; the session is
rolled back before each new attempt.
"""

import re
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from fleetfin.config import settings
from fleetfin.core.exceptions import (
    NotFoundError,
    RuleBatchValidationError,
    TenantIsolationError,
    TransientInfraError,
    ValidationError,
)
from fleetfin.core.retry import RetryPolicy, run_with_retry
from fleetfin.models.transaction import Transaction
from fleetfin.models.transaction_rule import TransactionRule
from fleetfin.schemas.transaction import TransactionIn
from fleetfin.schemas.transaction_rule import Pattern, RuleCreate, RuleDraft, RuleFields

logger = structlog.get_logger()

T = TypeVar("T")

# PostgreSQL SQLSTATEs worth retrying: query_canceled, serialization_failure,
# deadlock_detected, and the whole connection-exception class (08xxx)
_TRANSIENT_SQLSTATES = {"57014", "40001", "40P01"}
_TRANSIENT_MESSAGE = re.compile(r"timeout|timed out|network|connection|database is locked", re.IGNORECASE)

UPDATABLE_FIELDS = {
    "name",
    "description",
    "pattern",
    "category",
    "confidence_score",
    "priority",
    "rule_type",
    "tags",
    "is_active",
    "valid_from",
    "valid_until",
}
_NON_NULLABLE_FIELDS = {"name", "pattern", "category", "confidence_score", "priority", "rule_type", "is_active"}


def database_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.db_max_attempts,
        base_delay=settings.db_retry_delay,
        timeout=settings.db_timeout,
    )


def is_transient_db_error(exc: DBAPIError) -> bool:
    """Classify a driver error as worth retrying (timeouts, dropped connections)."""
    if exc.connection_invalidated:
        return True
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate and (sqlstate in _TRANSIENT_SQLSTATES or sqlstate.startswith("08")):
        return True
    return isinstance(exc, OperationalError) and bool(_TRANSIENT_MESSAGE.search(str(exc.orig)))


def validate_drafts(drafts: Sequence[RuleDraft | dict]) -> list[RuleDraft]:
    """Validate a batch of drafts, rejecting the whole batch if any is malformed."""
    accepted: list[RuleDraft] = []
    rejected: dict[int, str] = {}
    for index, draft in enumerate(drafts):
        if isinstance(draft, RuleDraft):
            accepted.append(draft)
            continue
        try:
            accepted.append(RuleDraft.model_validate(draft))
        except PydanticValidationError as e:
            rejected[index] = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'rule'}: {err['msg']}" for err in e.errors()
            )
    if rejected:
        raise RuleBatchValidationError(rejected)
    return accepted


def _stored_pattern(pattern: Pattern) -> dict:
    return pattern.model_dump(mode="json", exclude_none=True)


def _to_transaction_in(record: Transaction) -> TransactionIn:
    # Ledger rows are trusted as stored; request-level checks (non-blank
    # description, known type) apply to submitted transactions only
    return TransactionIn.model_construct(
        id=record.id,
        description=record.description,
        amount=record.amount,
        type=record.type,
        date=record.date.isoformat(),
        category=record.category,
        vendor=record.vendor,
    )


class RuleRepository:
    def __init__(self, db: AsyncSession, retry_policy: RetryPolicy | None = None):
        self.db = db
        self.retry_policy = retry_policy or database_retry_policy()

    # ── Reads ──────────────────────────────────────────

    async def fetch_active_rules(self, company_id: str) -> list[TransactionRule]:
        """Active rules of a tenant, highest priority first, then oldest first."""

        async def query() -> list[TransactionRule]:
            result = await self.db.execute(
                select(TransactionRule)
                .where(
                    TransactionRule.company_id == company_id,
                    TransactionRule.is_active.is_(True),
                )
                .order_by(
                    TransactionRule.priority.desc(),
                    TransactionRule.created_at.asc(),
                    TransactionRule.id.asc(),
                )
            )
            return list(result.scalars().all())

        rules = await self._run("fetch_active_rules", query)
        self._ensure_tenant(company_id, rules)
        logger.debug("active_rules_fetched", company_id=company_id, count=len(rules))
        return rules

    async def list_rules(self, company_id: str) -> list[TransactionRule]:
        """All rules of a tenant, most confident first."""

        async def query() -> list[TransactionRule]:
            result = await self.db.execute(
                select(TransactionRule)
                .where(TransactionRule.company_id == company_id)
                .order_by(
                    TransactionRule.confidence_score.desc(),
                    TransactionRule.created_at.desc(),
                )
            )
            return list(result.scalars().all())

        rules = await self._run("list_rules", query)
        self._ensure_tenant(company_id, rules)
        return rules

    async def get_rule(self, company_id: str, rule_id: str) -> TransactionRule:
        """Fetch one rule of the tenant. Another tenant's rule is reported as not found."""
        return await self._run("get_rule", lambda: self._select_rule(company_id, rule_id))

    async def fetch_transaction_history(self, company_id: str, limit: int) -> list[TransactionIn]:
        """Most recent ledger transactions of a tenant, newest first."""

        async def query() -> list[Transaction]:
            result = await self.db.execute(
                select(Transaction)
                .where(Transaction.company_id == company_id)
                .order_by(Transaction.date.desc(), Transaction.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

        records = await self._run("fetch_transaction_history", query)
        self._ensure_tenant(company_id, records)
        return [_to_transaction_in(record) for record in records]

    # ── Writes ─────────────────────────────────────────

    async def insert_rules(
        self,
        company_id: str,
        drafts: Sequence[RuleDraft | dict],
        *,
        ai_generated: bool = True,
    ) -> list[TransactionRule]:
        """Insert a batch of drafts, all or nothing.

        Every draft is validated before anything is written; a
        ``RuleBatchValidationError`` lists each rejected index and why.
        """
        validated = validate_drafts(drafts)
        if not validated:
            return []

        async def write() -> list[TransactionRule]:
            rules = [
                self._build_rule(
                    company_id,
                    draft,
                    confidence_score=draft.confidence_score,
                    is_ai_generated=ai_generated,
                    recommendations=draft.recommendations or None,
                )
                for draft in validated
            ]
            self.db.add_all(rules)
            await self.db.flush()
            for rule in rules:
                await self.db.refresh(rule)
            return rules

        rules = await self._run("insert_rules", write)
        logger.info(
            "rules_inserted",
            company_id=company_id,
            count=len(rules),
            ai_generated=ai_generated,
        )
        return rules

    async def insert_manual_rule(self, company_id: str, data: RuleCreate) -> TransactionRule:
        """Insert a user-authored rule: full confidence, not AI generated."""

        async def write() -> TransactionRule:
            rule = self._build_rule(
                company_id,
                data,
                confidence_score=1.0,
                is_ai_generated=False,
                recommendations=None,
            )
            self.db.add(rule)
            await self.db.flush()
            await self.db.refresh(rule)
            return rule

        rule = await self._run("insert_manual_rule", write)
        logger.info("rule_created", company_id=company_id, rule_id=rule.id)
        return rule

    async def update_rule(self, company_id: str, rule_id: str, fields: dict[str, Any]) -> TransactionRule:
        """Apply a partial update and bump the rule version."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        nulls = sorted(key for key in fields.keys() & _NON_NULLABLE_FIELDS if fields[key] is None)
        if nulls:
            raise ValidationError(f"Field(s) cannot be null: {', '.join(nulls)}")
        if "pattern" in fields:
            pattern = Pattern.model_validate(fields["pattern"])
            problems = pattern.problems()
            if problems:
                raise ValidationError(f"Invalid pattern: {'; '.join(problems)}")
            fields = {**fields, "pattern": _stored_pattern(pattern)}

        async def write() -> TransactionRule:
            rule = await self._select_rule(company_id, rule_id)
            if (
                not rule.is_ai_generated
                and "confidence_score" in fields
                and fields["confidence_score"] != 1.0
            ):
                raise ValidationError("Manual rules always have confidence_score 1.0")
            for key, value in fields.items():
                setattr(rule, key, value)
            if rule.valid_from and rule.valid_until and rule.valid_from > rule.valid_until:
                raise ValidationError("valid_from must not be after valid_until")
            rule.version = (rule.version or 1) + 1
            await self.db.flush()
            await self.db.refresh(rule)
            return rule

        rule = await self._run("update_rule", write)
        logger.info(
            "rule_updated",
            company_id=company_id,
            rule_id=rule_id,
            fields=sorted(fields),
            version=rule.version,
        )
        return rule

    async def delete_rule(self, company_id: str, rule_id: str) -> None:
        async def write() -> None:
            rule = await self._select_rule(company_id, rule_id)
            await self.db.delete(rule)
            await self.db.flush()

        await self._run("delete_rule", write)
        logger.info("rule_deleted", company_id=company_id, rule_id=rule_id)

    # ── Helpers ────────────────────────────────────────

    async def _select_rule(self, company_id: str, rule_id: str) -> TransactionRule:
        result = await self.db.execute(
            select(TransactionRule).where(
                TransactionRule.id == rule_id,
                TransactionRule.company_id == company_id,
            )
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise NotFoundError("TransactionRule")
        return rule

    @staticmethod
    def _build_rule(
        company_id: str,
        fields: RuleFields,
        *,
        confidence_score: float,
        is_ai_generated: bool,
        recommendations: list[str] | None,
    ) -> TransactionRule:
        return TransactionRule(
            company_id=company_id,
            name=fields.name,
            description=fields.description,
            pattern=_stored_pattern(fields.pattern),
            category=fields.category,
            confidence_score=confidence_score,
            is_ai_generated=is_ai_generated,
            recommendations=recommendations,
            times_applied=0,
            priority=fields.priority,
            rule_type=fields.rule_type,
            tags=fields.tags,
            is_active=True,
            valid_from=fields.valid_from,
            valid_until=fields.valid_until,
            version=1,
        )

    async def _run(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        async def attempt() -> T:
            try:
                return await operation()
            except DBAPIError as e:
                if is_transient_db_error(e):
                    raise TransientInfraError(f"Database unavailable during {name}") from e
                raise

        return await run_with_retry(attempt, self.retry_policy, name=name, on_retry=self.db.rollback)

    @staticmethod
    def _ensure_tenant(company_id: str, rows: Sequence[Any]) -> None:
        leaked = [row.id for row in rows if row.company_id != company_id]
        if leaked:
            logger.error("tenant_isolation_violation", company_id=company_id, row_ids=leaked)
            raise TenantIsolationError("Query returned rows belonging to another company")
