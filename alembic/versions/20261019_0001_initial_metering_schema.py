"""Initial metering schema: accounts, agents, daily usage records

Revision ID: 001
Revises:
Create Date: 2026-10-19

Limits use -1 for unlimited. daily_usage_records is unique per
(account_id, usage_date) so increments can use ON CONFLICT DO UPDATE.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create metering tables and indexes."""
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        # Entitlement (-1 = unlimited)
        sa.Column("max_agents", sa.BigInteger, server_default="2", nullable=False),
        sa.Column("monthly_token_quota", sa.BigInteger, server_default="1000", nullable=False),
        sa.Column("subscription_tier", sa.String(50), server_default="free", nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("max_agents >= -1", name="ck_accounts_max_agents"),
        sa.CheckConstraint("monthly_token_quota >= -1", name="ck_accounts_token_quota"),
    )
    op.create_index("idx_accounts_subscription_tier", "accounts", ["subscription_tier"])
    op.create_index("idx_accounts_is_active", "accounts", ["is_active"])

    op.create_table(
        "agents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(36),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_agents_account_active", "agents", ["account_id", "is_active"])

    op.create_table(
        "daily_usage_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(36),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("usage_date", sa.Date, nullable=False),
        # Usage counters
        sa.Column("total_tokens", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("total_calls", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("total_duration_seconds", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("api_cost", sa.Numeric(18, 10), server_default="0", nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("account_id", "usage_date", name="uq_daily_usage_account_date"),
        sa.CheckConstraint(
            "total_tokens >= 0 AND total_calls >= 0 "
            "AND total_duration_seconds >= 0 AND api_cost >= 0",
            name="ck_daily_usage_non_negative",
        ),
    )
    op.create_index("idx_daily_usage_date", "daily_usage_records", ["usage_date"])


def downgrade() -> None:
    """Drop metering tables and indexes."""
    op.drop_index("idx_daily_usage_date", table_name="daily_usage_records")
    op.drop_table("daily_usage_records")
    op.drop_index("idx_agents_account_active", table_name="agents")
    op.drop_table("agents")
    op.drop_index("idx_accounts_is_active", table_name="accounts")
    op.drop_index("idx_accounts_subscription_tier", table_name="accounts")
    op.drop_table("accounts")
