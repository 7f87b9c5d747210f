"""
LimitsAdministration - read/update of account entitlement fields.

Invoked out-of-band by account and billing management, never on the request
path of a metered action.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Mapping, Optional

from metering_core.directory import AccountDirectory
from metering_core.entitlements import (
    TIER_CATALOG,
    TIER_ORDER,
    UNLIMITED_SENTINEL,
    Entitlement,
    SubscriptionTier,
)
from metering_core.errors import NotFoundError, ValidationError, require_account_id

logger = logging.getLogger(__name__)


@dataclass
class UserLimits:
    """An account's entitlement as exposed to administrators."""

    max_agents: int  # -1 = unlimited
    monthly_token_quota: int  # -1 = unlimited
    subscription_tier: str
    is_active: bool
    daily_call_limit: int  # -1 = unlimited

    @classmethod
    def from_entitlement(cls, entitlement: Entitlement) -> "UserLimits":
        return cls(
            max_agents=entitlement.max_agents.to_stored(),
            monthly_token_quota=entitlement.monthly_token_quota.to_stored(),
            subscription_tier=entitlement.subscription_tier.value,
            is_active=entitlement.is_active,
            daily_call_limit=entitlement.daily_call_limit.to_stored(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LimitsAdministration:
    """Read and update per-account limits with validation."""

    LIMIT_FIELDS = ("max_agents", "monthly_token_quota")
    UPDATABLE_FIELDS = frozenset({*LIMIT_FIELDS, "subscription_tier", "is_active"})

    def __init__(self, accounts: AccountDirectory):
        self._accounts = accounts

    async def get_user_limits(self, account_id: str) -> UserLimits:
        """
        Current limits for an account.

        Raises:
            NotFoundError: no such account
            DataIntegrityError: stored limits are malformed
        """
        account_id = require_account_id(account_id)
        record = await self._accounts.get_account(account_id)
        if record is None:
            raise NotFoundError(f"Account not found: {account_id}", {"account_id": account_id})
        return UserLimits.from_entitlement(Entitlement.from_record(account_id, record))

    async def update_user_limits(self, account_id: str, patch: Optional[Mapping[str, Any]]) -> bool:
        """
        Partially update an account's limits.

        Numeric limits must be >= 0 or -1 (unlimited). Only the supplied
        fields are persisted.

        Returns:
            True on success
        """
        account_id = require_account_id(account_id)
        fields = self._validate_patch(patch)

        updated = await self._accounts.update_account(account_id, fields)
        if not updated:
            raise NotFoundError(f"Account not found: {account_id}", {"account_id": account_id})

        logger.info(f"Limits updated for account {account_id}: {fields}")
        return True

    async def change_subscription_tier(
        self, account_id: str, tier: Any, actor: Optional[str] = None
    ) -> UserLimits:
        """
        Move an account to a tier and apply that tier's default limits.

        Args:
            account_id: Account to change
            tier: Target tier name or SubscriptionTier
            actor: Who requested the change, recorded in the audit log
        """
        account_id = require_account_id(account_id)
        plan = TIER_CATALOG[self._validate_tier(tier)]
        # Raw row, so a tier change can still repair malformed stored limits
        record = await self._accounts.get_account(account_id)
        if record is None:
            raise NotFoundError(f"Account not found: {account_id}", {"account_id": account_id})
        previous_tier = record.get("subscription_tier")
        await self.update_user_limits(
            account_id,
            {
                "subscription_tier": plan.tier.value,
                "max_agents": plan.max_agents.to_stored(),
                "monthly_token_quota": plan.monthly_token_quota.to_stored(),
            },
        )
        logger.info(
            f"Subscription tier changed for account {account_id}: "
            f"{previous_tier} -> {plan.tier.value} (by {actor or 'system'})"
        )
        return await self.get_user_limits(account_id)

    @staticmethod
    def list_subscription_tiers() -> List[Dict[str, Any]]:
        """Tier catalog, most restrictive first."""
        return [TIER_CATALOG[tier].to_dict() for tier in TIER_ORDER]

    def _validate_patch(self, patch: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if patch is None:
            raise ValidationError("Limits data is required")
        if not isinstance(patch, Mapping):
            raise ValidationError("Limits data must be a mapping")
        if not patch:
            raise ValidationError("No limits to update")

        unknown = set(patch) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown limit fields: {sorted(unknown)}", {"fields": sorted(unknown)}
            )

        fields: Dict[str, Any] = {}
        for name in self.LIMIT_FIELDS:
            if name not in patch:
                continue
            value = patch[name]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(
                    f"Invalid limit value for {name}: {value!r}", {"field": name}
                )
            if value < 0 and value != UNLIMITED_SENTINEL:
                raise ValidationError(
                    f"Invalid limit value for {name}: {value}", {"field": name}
                )
            fields[name] = value

        if "subscription_tier" in patch:
            fields["subscription_tier"] = self._validate_tier(patch["subscription_tier"]).value

        if "is_active" in patch:
            if not isinstance(patch["is_active"], bool):
                raise ValidationError("is_active must be a boolean", {"field": "is_active"})
            fields["is_active"] = patch["is_active"]

        return fields

    @staticmethod
    def _validate_tier(tier: Any) -> SubscriptionTier:
        # Administrators must name a real tier; the restrictive fallback only
        # applies when reading stored data.
        try:
            return SubscriptionTier(tier)
        except ValueError:
            raise ValidationError(
                f"Invalid subscription tier: {tier!r}",
                {"allowed": [t.value for t in TIER_ORDER]},
            )
