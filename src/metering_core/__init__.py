"""
Metering Core Library.

Usage metering and limit enforcement for the voice agent platform:
- SQLAlchemy models (accounts, agents, daily usage records)
- UsageLedger for atomic per-day usage recording and aggregation
- Cost calculator for per-provider cost estimates
- LimitEvaluator for agent, token and call limit decisions
- LimitsAdministration for reading/updating account limits
- DatabaseManager for async PostgreSQL connections (Cloud SQL + direct)
- Alembic migrations for schema management
"""

__version__ = "0.1.0"

# Re-export commonly used components
from metering_core.errors import (
    MeteringError,
    ValidationError,
    NotFoundError,
    DataIntegrityError,
    StoreError,
)
from metering_core.models import (
    Base,
    AccountModel,
    AgentModel,
    DailyUsageRecordModel,
    DailyUsageRecord,
)
from metering_core.entitlements import (
    SubscriptionTier,
    Limit,
    UNLIMITED,
    Entitlement,
    usage_percentage,
    get_upgrade_suggestion,
)
from metering_core.db import DatabaseManager, db, get_session
from metering_core.services import (
    UsageLedger,
    UsageDelta,
    LimitEvaluator,
    LimitCheckOptions,
    LimitsAdministration,
    ProviderUsage,
    calculate_costs,
    create_services,
)

__all__ = [
    # Version
    "__version__",
    # Errors
    "MeteringError",
    "ValidationError",
    "NotFoundError",
    "DataIntegrityError",
    "StoreError",
    # Models
    "Base",
    "AccountModel",
    "AgentModel",
    "DailyUsageRecordModel",
    "DailyUsageRecord",
    # Entitlements
    "SubscriptionTier",
    "Limit",
    "UNLIMITED",
    "Entitlement",
    "usage_percentage",
    "get_upgrade_suggestion",
    # Services
    "UsageLedger",
    "UsageDelta",
    "LimitEvaluator",
    "LimitCheckOptions",
    "LimitsAdministration",
    "ProviderUsage",
    "calculate_costs",
    "create_services",
    # Database
    "DatabaseManager",
    "db",
    "get_session",
]
