"""Transaction rules API routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fleetfin.api.deps import Tenant, get_current_tenant, get_db, get_rule_oracle
from fleetfin.schemas.transaction_rule import (
    AnalysisResponse,
    AnalyzeTransactionsRequest,
    GeneratedRulesResponse,
    GenerateRulesRequest,
    RuleCreate,
    RuleExplanation,
    RuleResponse,
    RuleUpdate,
    TransactionTestRequest,
    TransactionTestResponse,
)
from fleetfin.services.rule_oracle import RuleOracle
from fleetfin.services.rule_service import RuleService

router = APIRouter()


@router.get("", response_model=list[RuleResponse])
async def list_rules(
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    """List the company's rules, most confident first."""
    service = RuleService(db)
    return await service.list_rules(tenant.company_id)


@router.post("", response_model=RuleResponse, status_code=201)
async def create_rule(
    data: RuleCreate,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    """Create a manual rule."""
    service = RuleService(db)
    return await service.create_rule(tenant.company_id, data)


# ── Matching & generation ──────────────────────────
# Declared before the /{rule_id} routes.


@router.post("/test", response_model=TransactionTestResponse)
async def test_transaction(
    data: TransactionTestRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    """Return every active rule the transaction satisfies."""
    service = RuleService(db)
    matches = await service.test_transaction(tenant.company_id, data.transaction)
    return TransactionTestResponse(matched_rules=matches)


@router.post("/generate", response_model=GeneratedRulesResponse, status_code=201)
async def generate_rules(
    data: GenerateRulesRequest | None = None,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    oracle: RuleOracle = Depends(get_rule_oracle),
):
    """Generate rules from the company's transaction history and store them."""
    service = RuleService(db, oracle=oracle)
    analysis_type = data.type if data else "rules"
    rules = await service.generate_rules(tenant.company_id, analysis_type)
    return GeneratedRulesResponse(rules=rules)


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze_transactions(
    data: AnalyzeTransactionsRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    oracle: RuleOracle = Depends(get_rule_oracle),
):
    """Propose rules and recurring patterns for the given transactions without storing them."""
    service = RuleService(db, oracle=oracle)
    result = await service.analyze_transactions(data.transactions, data.type)
    return AnalysisResponse(rules=result.rules, patterns=result.patterns)


# ── Single rule ────────────────────────────────────


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    service = RuleService(db)
    return await service.get_rule(tenant.company_id, rule_id)


@router.patch("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: str,
    data: RuleUpdate,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    """Update a rule. Every successful edit bumps its version."""
    service = RuleService(db)
    return await service.update_rule(tenant.company_id, rule_id, data)


@router.post("/{rule_id}/explain", response_model=RuleExplanation)
async def explain_rule(
    rule_id: str,
    data: TransactionTestRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    """Show which of the rule's conditions the transaction satisfies."""
    service = RuleService(db)
    return await service.explain_rule(tenant.company_id, rule_id, data.transaction)


@router.post("/{rule_id}/enable", response_model=RuleResponse)
async def enable_rule(
    rule_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    service = RuleService(db)
    return await service.set_active(tenant.company_id, rule_id, True)


@router.post("/{rule_id}/disable", response_model=RuleResponse)
async def disable_rule(
    rule_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    service = RuleService(db)
    return await service.set_active(tenant.company_id, rule_id, False)


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    """Delete a rule."""
    service = RuleService(db)
    await service.delete_rule(tenant.company_id, rule_id)
