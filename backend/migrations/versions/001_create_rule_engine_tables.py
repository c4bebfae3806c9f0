"""Create companies, profiles, transactions and transaction_rules tables.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("company_id", sa.String(36), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_profiles_company_id", "profiles", ["company_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("company_id", sa.String(36), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("category", sa.String(255), nullable=True),
        sa.Column("vendor", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_transactions_company_date", "transactions", ["company_id", "date"])

    op.create_table(
        "transaction_rules",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("company_id", sa.String(36), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("pattern", JSONB(), nullable=False),
        sa.Column("category", sa.String(255), nullable=False),
        sa.Column("confidence_score", sa.Float(), server_default="1.0", nullable=False),
        sa.Column("is_ai_generated", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("recommendations", JSONB(), nullable=True),
        sa.Column("times_applied", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("priority", sa.Integer(), server_default="0", nullable=False),
        sa.Column("rule_type", sa.String(50), server_default="standard", nullable=False),
        sa.Column("tags", JSONB(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("valid_from", sa.Date(), nullable=True),
        sa.Column("valid_until", sa.Date(), nullable=True),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.Column(
            "parent_rule_id",
            sa.String(36),
            sa.ForeignKey("transaction_rules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_transaction_rules_company_id", "transaction_rules", ["company_id"])
    op.create_index(
        "idx_transaction_rules_company_active",
        "transaction_rules",
        ["company_id", "is_active", "priority"],
    )


def downgrade() -> None:
    op.drop_index("idx_transaction_rules_company_active", table_name="transaction_rules")
    op.drop_index("ix_transaction_rules_company_id", table_name="transaction_rules")
    op.drop_table("transaction_rules")
    op.drop_index("idx_transactions_company_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_profiles_company_id", table_name="profiles")
    op.drop_table("profiles")
    op.drop_table("companies")
