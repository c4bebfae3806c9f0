"""Transaction schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator

TransactionType = Literal["expense", "income", "transfer"]

# Attributes a rule condition may reference
TRANSACTION_FIELDS = ("id", "description", "amount", "type", "date", "category", "vendor")


def parse_transaction_date(value: str) -> datetime:
    """Parse an ISO-8601 date or date-time. Date-only values land at midnight."""
    return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))


class TransactionIn(BaseModel):
    """A transaction as submitted for rule testing or analysis."""

    id: str | int | None = None
    description: str = Field(min_length=1)
    amount: Decimal
    type: TransactionType
    date: str
    category: str | None = None
    vendor: str | None = None

    @field_validator("date")
    @classmethod
    def _iso_date(cls, value: str) -> str:
        try:
            parse_transaction_date(value)
        except ValueError as e:
            raise ValueError(f"date must be ISO-8601, got {value!r}") from e
        return value

    @property
    def occurred_at(self) -> datetime:
        return parse_transaction_date(self.date)
