"""Shared API dependencies."""

from fleetfin.core.database import get_db
from fleetfin.core.security import Tenant, get_current_tenant
from fleetfin.services.rule_oracle import OpenAIRuleOracle, RuleOracle


def get_rule_oracle() -> RuleOracle:
    """The generative model used for rule generation (overridden in tests)."""
    return OpenAIRuleOracle()


__all__ = ["Tenant", "get_db", "get_current_tenant", "get_rule_oracle"]
