"""Prompt contract for the rule generation oracle."""

import json
from collections import Counter

from fleetfin.schemas.transaction import TRANSACTION_FIELDS
from fleetfin.schemas.transaction_rule import OPERATORS, TEMPORAL_TYPES

SYSTEM_PROMPT = (
    "You are an AI financial analyst specializing in transaction pattern analysis "
    "and rule generation. Respond with JSON only, without markdown or commentary."
)

RESPONSE_FORMAT = """{
  "rules": [{
    "name": "string",
    "description": "string",
    "pattern": {
      "conditions": [{"field": "string", "operator": "string", "value": "string | number | [min, max]"}],
      "amount_range": {"min": number, "max": number},
      "temporal_match": {"type": "string", "value": number},
      "frequency_pattern": {"type": "string", "value": "any"}
    },
    "category": "string",
    "confidence_score": number,
    "recommendations": ["string"]
  }],
  "patterns": {
    "recurring": [{"description": "string", "frequency": "string", "average_amount": number}],
    "seasonal": [{"description": "string", "period": "string", "trend": "string"}]
  }
}"""


def transaction_stats(transactions: list[dict]) -> dict:
    """Summary figures quoted at the top of the prompt."""
    if not transactions:
        return {
            "total": 0,
            "date_range": "n/a",
            "average_amount": 0.0,
            "common_categories": [],
            "transaction_types": [],
        }

    days = sorted(str(txn["date"])[:10] for txn in transactions)
    amounts = [float(txn["amount"]) for txn in transactions]
    categories = Counter(txn["category"] for txn in transactions if txn.get("category"))
    types = list(dict.fromkeys(txn["type"] for txn in transactions))

    return {
        "total": len(transactions),
        "date_range": f"{days[0]} to {days[-1]}",
        "average_amount": round(sum(amounts) / len(amounts), 2),
        "common_categories": [name for name, _ in categories.most_common(5)],
        "transaction_types": types,
    }


def build_rule_prompt(request: dict) -> str:
    """Render the user prompt for a ``{transactions, type}`` generation request."""
    transactions = request["transactions"]
    stats = transaction_stats(transactions)

    return f"""Analyze these transactions and generate intelligent categorization rules for: {request["type"]}

Transaction Statistics:
- Total Transactions: {stats["total"]}
- Date Range: {stats["date_range"]}
- Average Amount: {stats["average_amount"]}
- Common Categories: {", ".join(stats["common_categories"]) or "none"}
- Transaction Types: {", ".join(stats["transaction_types"]) or "none"}

Raw Transaction Data: {json.dumps(transactions, separators=(",", ":"))}

Generate rules that consider:
1. Description patterns and keywords
2. Amount ranges and thresholds
3. Transaction frequencies
4. Seasonal patterns
5. Vendor relationships
6. Category correlations

Constraints:
- Condition fields must be one of: {", ".join(TRANSACTION_FIELDS)}
- Condition operators must be one of: {", ".join(OPERATORS)}
- "between" takes a [min, max] numeric pair
- temporal_match.type is one of: {", ".join(TEMPORAL_TYPES)} (dayOfWeek: 0=Sunday..6=Saturday, timeRange: start/end in minutes since midnight)
- confidence_score is a number between 0 and 1, based on how strongly the data supports the rule
- Every rule needs a non-empty name, category and at least one condition
- Rules should be specific enough to avoid false positives and general enough to catch variations

Return the rules in this format:
{RESPONSE_FORMAT}"""
