"""
SQLAlchemy model for per-account daily usage.

Tables:
- daily_usage_records: one row per (account, calendar day), incremented
  atomically with INSERT ... ON CONFLICT DO UPDATE
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Any
from uuid import uuid4

from sqlalchemy import (
    String,
    Date,
    DateTime,
    BigInteger,
    CheckConstraint,
    Numeric,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from metering_core.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DailyUsageRecordModel(Base):
    """
    Durable aggregate of one account's consumption for one calendar day.

    Created lazily on first recorded usage; counters only grow.
    """

    __tablename__ = "daily_usage_records"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Usage counters (atomic updates via SQL)
    total_tokens: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_calls: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_duration_seconds: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )
    api_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 10), default=Decimal("0"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("account_id", "usage_date", name="uq_daily_usage_account_date"),
        Index("idx_daily_usage_date", "usage_date"),
        CheckConstraint(
            "total_tokens >= 0 AND total_calls >= 0 "
            "AND total_duration_seconds >= 0 AND api_cost >= 0",
            name="ck_daily_usage_non_negative",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "account_id": self.account_id,
            "date": self.usage_date.isoformat(),
            "total_tokens": self.total_tokens,
            "total_calls": self.total_calls,
            "total_duration_seconds": self.total_duration_seconds,
            "api_cost": self.api_cost,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (
            f"<DailyUsageRecord(account='{self.account_id}', "
            f"date='{self.usage_date}', tokens={self.total_tokens})>"
        )


# Alias for consistency with other models
DailyUsageRecord = DailyUsageRecordModel
