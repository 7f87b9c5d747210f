"""
Entitlements: subscription tiers, limits and their stored representation.

The store encodes "no ceiling" as -1. Inside this package a limit is always a
``Limit`` value (either ``Limit.of(n)`` or ``UNLIMITED``) so evaluator code
never does arithmetic on the sentinel. Conversion happens only in
``Limit.from_stored`` / ``Limit.to_stored``.
"""

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from metering_core.errors import DataIntegrityError

logger = logging.getLogger(__name__)

UNLIMITED_SENTINEL = -1


class SubscriptionTier(str, PyEnum):
    """Closed set of subscription tiers, ordered from most to least restrictive."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


MOST_RESTRICTIVE_TIER = SubscriptionTier.FREE
TIER_ORDER: Tuple[SubscriptionTier, ...] = (
    SubscriptionTier.FREE,
    SubscriptionTier.PRO,
    SubscriptionTier.ENTERPRISE,
)


def parse_tier(value: Any) -> SubscriptionTier:
    """Resolve a stored tier value, falling back to the most restrictive tier."""
    if isinstance(value, SubscriptionTier):
        return value
    if isinstance(value, str):
        try:
            return SubscriptionTier(value.strip().lower())
        except ValueError:
            pass
    logger.warning(
        f"Unrecognized subscription tier {value!r}, using '{MOST_RESTRICTIVE_TIER.value}'"
    )
    return MOST_RESTRICTIVE_TIER


@dataclass(frozen=True)
class Limit:
    """A usage ceiling; ``ceiling=None`` means unlimited."""

    ceiling: Optional[int] = None

    @classmethod
    def of(cls, ceiling: int) -> "Limit":
        if ceiling < 0:
            raise ValueError(f"Limit ceiling must be >= 0, got {ceiling}")
        return cls(ceiling)

    @classmethod
    def unlimited(cls) -> "Limit":
        return cls(None)

    @property
    def is_unlimited(self) -> bool:
        return self.ceiling is None

    @classmethod
    def from_stored(cls, value: Any, field_name: str) -> "Limit":
        """Decode a stored integer limit; anything malformed is an integrity error."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise DataIntegrityError(
                f"Malformed {field_name}: expected integer, got {value!r}",
                {"field": field_name, "value": repr(value)},
            )
        if value == UNLIMITED_SENTINEL:
            return UNLIMITED
        if value < 0:
            raise DataIntegrityError(
                f"Malformed {field_name}: negative limit {value}",
                {"field": field_name, "value": value},
            )
        return cls(value)

    def to_stored(self) -> int:
        return UNLIMITED_SENTINEL if self.ceiling is None else self.ceiling

    def remaining(self, used: int) -> int:
        """Headroom left (may be negative); the sentinel when unlimited."""
        if self.ceiling is None:
            return UNLIMITED_SENTINEL
        return self.ceiling - used

    def allows_another(self, used: int) -> bool:
        """Whether one more unit fits (``used < ceiling``)."""
        return self.ceiling is None or used < self.ceiling

    def would_exceed(self, used: int, requested: int) -> bool:
        """Whether ``used + requested`` goes past the ceiling."""
        return self.ceiling is not None and used + requested > self.ceiling


UNLIMITED = Limit.unlimited()


def _exhaustive(table: Mapping[SubscriptionTier, Any], name: str) -> None:
    missing = set(SubscriptionTier) - set(table)
    if missing:
        raise RuntimeError(f"{name} has no entry for tiers: {sorted(t.value for t in missing)}")


# Daily call ceilings
DAILY_CALL_LIMITS: Dict[SubscriptionTier, Limit] = {
    SubscriptionTier.FREE: Limit.of(10),
    SubscriptionTier.PRO: Limit.of(100),
    SubscriptionTier.ENTERPRISE: UNLIMITED,
}
_exhaustive(DAILY_CALL_LIMITS, "DAILY_CALL_LIMITS")

# Largest batch of calls a single bulk operation may schedule
BULK_CALL_LIMITS: Dict[SubscriptionTier, Limit] = {
    SubscriptionTier.FREE: Limit.of(10),
    SubscriptionTier.PRO: Limit.of(100),
    SubscriptionTier.ENTERPRISE: Limit.of(1000),
}
_exhaustive(BULK_CALL_LIMITS, "BULK_CALL_LIMITS")


def daily_call_limit(tier: Any) -> Limit:
    """Daily call ceiling for a tier; unknown tiers get the most restrictive one."""
    return DAILY_CALL_LIMITS[parse_tier(tier)]


@dataclass(frozen=True)
class TierPlan:
    """Default entitlement and display data for a subscription tier."""

    tier: SubscriptionTier
    name: str
    max_agents: Limit
    monthly_token_quota: Limit
    price: Decimal
    features: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "name": self.name,
            "max_agents": self.max_agents.to_stored(),
            "monthly_token_quota": self.monthly_token_quota.to_stored(),
            "daily_call_limit": DAILY_CALL_LIMITS[self.tier].to_stored(),
            "price": self.price,
            "features": list(self.features),
        }


TIER_CATALOG: Dict[SubscriptionTier, TierPlan] = {
    SubscriptionTier.FREE: TierPlan(
        tier=SubscriptionTier.FREE,
        name="Free",
        max_agents=Limit.of(2),
        monthly_token_quota=Limit.of(1000),
        price=Decimal("0"),
        features=("Basic AI agents", "Web calls only", "Community support"),
    ),
    SubscriptionTier.PRO: TierPlan(
        tier=SubscriptionTier.PRO,
        name="Pro",
        max_agents=Limit.of(10),
        monthly_token_quota=Limit.of(50000),
        price=Decimal("29"),
        features=("Advanced AI agents", "Phone calls", "Priority support", "Usage analytics"),
    ),
    SubscriptionTier.ENTERPRISE: TierPlan(
        tier=SubscriptionTier.ENTERPRISE,
        name="Enterprise",
        max_agents=Limit.of(100),
        monthly_token_quota=Limit.of(1000000),
        price=Decimal("299"),
        features=("Unlimited features", "Custom integrations", "Dedicated support", "SLA guarantee"),
    ),
}
_exhaustive(TIER_CATALOG, "TIER_CATALOG")


@dataclass(frozen=True)
class Entitlement:
    """Decoded entitlement of one account."""

    account_id: str
    max_agents: Limit
    monthly_token_quota: Limit
    subscription_tier: SubscriptionTier
    is_active: bool

    @classmethod
    def from_record(cls, account_id: str, record: Mapping[str, Any]) -> "Entitlement":
        """
        Decode a stored account row.

        Raises:
            DataIntegrityError: if any limit or flag is malformed
        """
        try:
            max_agents = Limit.from_stored(record.get("max_agents"), "max_agents")
            token_quota = Limit.from_stored(
                record.get("monthly_token_quota"), "monthly_token_quota"
            )
            is_active = record.get("is_active")
            if not isinstance(is_active, bool):
                raise DataIntegrityError(
                    f"Malformed is_active: expected boolean, got {is_active!r}",
                    {"field": "is_active", "value": repr(is_active)},
                )
        except DataIntegrityError as e:
            logger.error(f"Corrupt entitlement for account {account_id}: {e.message}")
            e.details["account_id"] = account_id
            raise

        return cls(
            account_id=account_id,
            max_agents=max_agents,
            monthly_token_quota=token_quota,
            subscription_tier=parse_tier(record.get("subscription_tier")),
            is_active=is_active,
        )

    @property
    def daily_call_limit(self) -> Limit:
        return DAILY_CALL_LIMITS[self.subscription_tier]

    @property
    def bulk_call_limit(self) -> Limit:
        return BULK_CALL_LIMITS[self.subscription_tier]


def usage_percentage(used: Union[int, float, Decimal], limit: Union[int, Limit]) -> float:
    """
    Percentage of ``limit`` consumed, rounded to one decimal.

    Unlimited (or negative) limits report 0; a zero limit reports 0 when
    nothing is used and infinity otherwise.
    """
    if isinstance(limit, Limit):
        if limit.is_unlimited:
            return 0.0
        limit = limit.ceiling
    if limit < 0:
        return 0.0
    used = max(0.0, float(used))
    if limit == 0:
        return 0.0 if used == 0 else math.inf
    return round(used / limit * 100, 1)


_LIMIT_TYPE_LABELS = {
    "agents": "agents",
    "tokens": "tokens per month",
    "calls": "calls per day",
}


def get_upgrade_suggestion(current_tier: Any, limit_type: str) -> Dict[str, Any]:
    """Suggest the next tier up for the given limit type (agents, tokens, calls)."""
    if limit_type not in _LIMIT_TYPE_LABELS:
        raise ValueError(f"Unknown limit type: {limit_type}")

    tier = parse_tier(current_tier)
    index = TIER_ORDER.index(tier)
    if index >= len(TIER_ORDER) - 1:
        return {
            "suggested_tier": None,
            "message": "You are already on the highest tier",
        }

    plan = TIER_CATALOG[TIER_ORDER[index + 1]]
    if limit_type == "agents":
        new_limit = plan.max_agents
    elif limit_type == "tokens":
        new_limit = plan.monthly_token_quota
    else:
        new_limit = DAILY_CALL_LIMITS[plan.tier]

    amount = "unlimited" if new_limit.is_unlimited else str(new_limit.ceiling)
    return {
        "suggested_tier": plan.tier.value,
        "tier_name": plan.name,
        "price": plan.price,
        "new_limit": new_limit.to_stored(),
        "message": f"Upgrade to {plan.name} for {amount} {_LIMIT_TYPE_LABELS[limit_type]}",
        "features": list(plan.features),
    }
