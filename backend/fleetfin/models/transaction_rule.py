"""Transaction rule model."""

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fleetfin.models.base import Base, JSONType, TimestampMixin


class TransactionRule(Base, TimestampMixin):
    """A pattern rule that assigns a category to matching transactions.

    ``pattern`` holds the JSON pattern (conditions, amount range, temporal
    match and the not-yet-evaluated matchers). Rules are owned by a company;
    every query filters on ``company_id``.
    """

    __tablename__ = "transaction_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id: Mapped[str] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    pattern: Mapped[dict] = mapped_column(JSONType, nullable=False)
    category: Mapped[str] = mapped_column(String(255), nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_ai_generated: Mapped[bool] = mapped_column(Boolean, default=False)
    recommendations: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)

    # Usage telemetry, written by the accounting side
    times_applied: Mapped[int] = mapped_column(Integer, default=0)
    last_applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    priority: Mapped[int] = mapped_column(Integer, default=0)  # higher = listed first
    rule_type: Mapped[str] = mapped_column(String(50), default="standard")
    tags: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    valid_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    parent_rule_id: Mapped[str | None] = mapped_column(
        ForeignKey("transaction_rules.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        Index("idx_transaction_rules_company_active", "company_id", "is_active", "priority"),
    )
