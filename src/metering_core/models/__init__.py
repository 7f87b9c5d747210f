"""
SQLAlchemy 2.0 async models.

Account directory tables:
- Accounts: entitlement fields (max agents, token quota, tier, active flag)
- Agents: AI agents owned by an account

Usage tracking tables:
- DailyUsageRecords: per-account, per-day consumption totals
"""

from metering_core.models.base import Base
from metering_core.models.accounts import AccountModel, AgentModel
from metering_core.models.usage import DailyUsageRecordModel, DailyUsageRecord

__all__ = [
    # Base
    "Base",
    # Account directory models
    "AccountModel",
    "AgentModel",
    # Usage tracking models
    "DailyUsageRecordModel",
    "DailyUsageRecord",
]
