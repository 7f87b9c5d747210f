"""
metering_core services.

Usage recording, cost estimation, limit evaluation and limits administration.
Each service receives its collaborators explicitly; ``create_services`` wires
the SQL-backed defaults around one DatabaseManager.
"""

from dataclasses import dataclass

from metering_core.db import DatabaseManager
from metering_core.directory import SqlAccountDirectory, SqlAgentDirectory
from metering_core.services.cost_calculator import (
    CostRates,
    DEFAULT_COST_RATES,
    ProviderUsage,
    calculate_costs,
    estimate_tokens_from_duration,
)
from metering_core.services.usage_ledger import (
    UsageLedger,
    UsageDelta,
    DailyUsage,
    MonthlyUsage,
    UsageStats,
)
from metering_core.services.limit_evaluator import (
    LimitEvaluator,
    LimitCheckOptions,
    AgentLimitResult,
    TokenLimitResult,
    CallLimitResult,
    LimitViolation,
    EnforcementResult,
    BulkOperationResult,
)
from metering_core.services.limits_admin import LimitsAdministration, UserLimits


@dataclass
class MeteringServices:
    ledger: UsageLedger
    evaluator: LimitEvaluator
    admin: LimitsAdministration


def create_services(database: DatabaseManager) -> MeteringServices:
    """Wire the ledger, evaluator and administration around one database."""
    accounts = SqlAccountDirectory(database)
    agents = SqlAgentDirectory(database)
    ledger = UsageLedger(database)
    return MeteringServices(
        ledger=ledger,
        evaluator=LimitEvaluator(accounts, agents, ledger),
        admin=LimitsAdministration(accounts),
    )


__all__ = [
    # Cost calculator
    "CostRates",
    "DEFAULT_COST_RATES",
    "ProviderUsage",
    "calculate_costs",
    "estimate_tokens_from_duration",
    # Usage ledger
    "UsageLedger",
    "UsageDelta",
    "DailyUsage",
    "MonthlyUsage",
    "UsageStats",
    # Limit evaluator
    "LimitEvaluator",
    "LimitCheckOptions",
    "AgentLimitResult",
    "TokenLimitResult",
    "CallLimitResult",
    "LimitViolation",
    "EnforcementResult",
    "BulkOperationResult",
    # Limits administration
    "LimitsAdministration",
    "UserLimits",
    # Wiring
    "MeteringServices",
    "create_services",
]
