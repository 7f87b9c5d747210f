"""
Account directory models: Accounts, Agents.

Accounts carry the entitlement fields read by the limit evaluator. Agents are
only counted here; their lifecycle belongs to the agent subsystem.
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from uuid import uuid4

from sqlalchemy import String, Boolean, BigInteger, CheckConstraint, ForeignKey, Index, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from metering_core.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountModel(Base):
    """
    Account table holding entitlement fields.

    ``max_agents`` and ``monthly_token_quota`` use -1 to mean unlimited.
    """

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    max_agents: Mapped[int] = mapped_column(BigInteger, default=2, nullable=False)
    monthly_token_quota: Mapped[int] = mapped_column(
        BigInteger, default=1000, nullable=False
    )
    subscription_tier: Mapped[str] = mapped_column(
        String(50), default="free", nullable=False
    )  # free, pro, enterprise
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    agents: Mapped[List["AgentModel"]] = relationship(
        back_populates="account", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_accounts_subscription_tier", "subscription_tier"),
        Index("idx_accounts_is_active", "is_active"),
        CheckConstraint("max_agents >= -1", name="ck_accounts_max_agents"),
        CheckConstraint("monthly_token_quota >= -1", name="ck_accounts_token_quota"),
    )

    def entitlement_row(self) -> Dict[str, Any]:
        """Raw entitlement fields as stored."""
        return {
            "id": self.id,
            "max_agents": self.max_agents,
            "monthly_token_quota": self.monthly_token_quota,
            "subscription_tier": self.subscription_tier,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Account(id='{self.id}', tier='{self.subscription_tier}')>"


class AgentModel(Base):
    """AI agent owned by an account."""

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    account: Mapped["AccountModel"] = relationship(back_populates="agents")

    __table_args__ = (
        Index("idx_agents_account_active", "account_id", "is_active"),
    )

    def __repr__(self):
        return f"<Agent(id='{self.id}', account='{self.account_id}')>"
