"""
LimitEvaluator - allow/deny decisions against an account's entitlement.

Reads the entitlement from the account directory, the live agent count from
the agent directory and consumption from the usage ledger. Decisions are soft
limits: a check followed by a record is not transactional, so concurrent
requests may overshoot a quota slightly.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional, Union

from metering_core.config import MeteringConfig, metering_config
from metering_core.directory import AccountDirectory, AgentDirectory
from metering_core.entitlements import (
    Entitlement,
    get_upgrade_suggestion,
    usage_percentage,
)
from metering_core.errors import (
    DataIntegrityError,
    NotFoundError,
    ValidationError,
    require_account_id,
)
from metering_core.services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

INACTIVE_REASON = "Account is inactive"


@dataclass
class AgentLimitResult:
    """Result of agent limit check."""

    allowed: bool
    current_count: int
    limit: int  # -1 = unlimited
    remaining: int  # -1 = unlimited
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TokenLimitResult:
    """Result of monthly token quota check."""

    allowed: bool
    current_usage: int
    limit: int  # -1 = unlimited
    remaining: int  # -1 = unlimited
    would_exceed: bool
    percentage_used: float = 0.0
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CallLimitResult:
    """Result of daily call limit check."""

    allowed: bool
    current_calls: int
    daily_limit: int  # -1 = unlimited
    subscription_tier: str
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LimitViolation:
    type: str  # agents, tokens, calls
    detail: Dict[str, Any]
    exceeded: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "exceeded": self.exceeded, "detail": self.detail}


@dataclass
class EnforcementResult:
    """Combined result of several limit checks."""

    allowed: bool
    limits_checked: List[str] = field(default_factory=list)
    violations: List[LimitViolation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "limits_checked": list(self.limits_checked),
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass
class LimitCheckOptions:
    """Which checks enforce_user_limits should run."""

    check_agents: bool = False
    check_tokens: Optional[int] = None  # requested token count
    check_calls: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LimitCheckOptions":
        unknown = set(data) - {"check_agents", "check_tokens", "check_calls"}
        if unknown:
            raise ValidationError(f"Unknown limit checks: {sorted(unknown)}")
        options = cls(
            check_agents=data.get("check_agents", False),
            check_tokens=data.get("check_tokens"),
            check_calls=data.get("check_calls", False),
        )
        options.validate()
        return options

    def validate(self) -> None:
        if not isinstance(self.check_agents, bool):
            raise ValidationError("check_agents must be a boolean")
        if not isinstance(self.check_calls, bool):
            raise ValidationError("check_calls must be a boolean")
        if self.check_tokens is not None:
            _require_token_count(self.check_tokens)


@dataclass
class BulkOperationResult:
    """Result of validating a batch of calls before scheduling it."""

    allowed: bool
    estimated_calls: int
    total_estimated_tokens: int
    max_calls: int
    remaining_tokens: int  # -1 = unlimited
    reason: Optional[str] = None
    upgrade_suggestion: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _require_token_count(value: Any, label: str = "Token count") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer")
    if value < 0:
        raise ValidationError(f"{label} must be non-negative")
    return value


class LimitEvaluator:
    """
    Allow/deny decisions per resource type.

    Every check re-reads the store; nothing is cached between calls.
    Inactive accounts are denied regardless of quota.
    """

    def __init__(
        self,
        accounts: AccountDirectory,
        agents: AgentDirectory,
        ledger: UsageLedger,
        config: Optional[MeteringConfig] = None,
    ):
        self._accounts = accounts
        self._agents = agents
        self._ledger = ledger
        self._config = config or metering_config

    async def load_entitlement(self, account_id: str) -> Entitlement:
        """
        Fetch and decode an account's entitlement.

        Raises:
            ValidationError: empty account id
            NotFoundError: no such account
            DataIntegrityError: stored limits are malformed
        """
        account_id = require_account_id(account_id)
        record = await self._accounts.get_account(account_id)
        if record is None:
            raise NotFoundError(f"Account not found: {account_id}", {"account_id": account_id})
        return Entitlement.from_record(account_id, record)

    # ------------------------------------------------------------------
    # Single-resource checks
    # ------------------------------------------------------------------

    async def check_agent_limit(self, account_id: str) -> AgentLimitResult:
        """Can the account create one more agent?"""
        entitlement = await self.load_entitlement(account_id)
        return await self._evaluate_agents(entitlement)

    async def check_token_limit(self, account_id: str, requested_tokens: int) -> TokenLimitResult:
        """Would ``requested_tokens`` more tokens fit in this month's quota?"""
        account_id = require_account_id(account_id)
        requested_tokens = _require_token_count(requested_tokens)
        entitlement = await self.load_entitlement(account_id)
        return await self._evaluate_tokens(entitlement, requested_tokens)

    async def check_call_limit(self, account_id: str) -> CallLimitResult:
        """Can the account place one more call today?"""
        entitlement = await self.load_entitlement(account_id)
        return await self._evaluate_calls(entitlement)

    # ------------------------------------------------------------------
    # Combined check
    # ------------------------------------------------------------------

    async def enforce_user_limits(
        self,
        account_id: str,
        options: Union[LimitCheckOptions, Mapping[str, Any], None],
    ) -> EnforcementResult:
        """
        Run the requested checks (agents, tokens, calls, in that order).

        Args:
            account_id: Account ID
            options: LimitCheckOptions or mapping with check_agents,
                check_tokens (requested token count) and check_calls

        Returns:
            EnforcementResult listing the checks run and every violation
        """
        account_id = require_account_id(account_id)
        if options is None:
            raise ValidationError("Limits configuration is required")
        if isinstance(options, LimitCheckOptions):
            options.validate()
        elif isinstance(options, Mapping):
            options = LimitCheckOptions.from_mapping(options)
        else:
            raise ValidationError("Limits configuration must be a mapping")

        result = EnforcementResult(allowed=True)
        if not (options.check_agents or options.check_calls or options.check_tokens is not None):
            return result

        entitlement = await self.load_entitlement(account_id)

        if options.check_agents:
            result.limits_checked.append("agents")
            agents = await self._evaluate_agents(entitlement)
            if not agents.allowed:
                result.violations.append(LimitViolation("agents", agents.to_dict()))

        if options.check_tokens is not None:
            result.limits_checked.append("tokens")
            tokens = await self._evaluate_tokens(entitlement, options.check_tokens)
            if not tokens.allowed:
                result.violations.append(LimitViolation("tokens", tokens.to_dict()))

        if options.check_calls:
            result.limits_checked.append("calls")
            calls = await self._evaluate_calls(entitlement)
            if not calls.allowed:
                result.violations.append(LimitViolation("calls", calls.to_dict()))

        result.allowed = not result.violations
        if not result.allowed:
            logger.info(
                f"Limits exceeded for account {account_id}: "
                f"{[v.type for v in result.violations]}"
            )
        return result

    # ------------------------------------------------------------------
    # Reporting helpers
    # ------------------------------------------------------------------

    async def get_limits_with_warnings(self, account_id: str) -> Dict[str, Any]:
        """
        Current limits and usage with approaching/exceeded warnings.

        Warnings fire at the configured threshold (default 80%) and when a
        limit is reached. Unlimited resources never warn.
        """
        entitlement = await self.load_entitlement(account_id)
        agent_count = await self._count_agents(entitlement.account_id)
        month = await self._ledger.get_current_month_usage(entitlement.account_id)
        today = await self._ledger.get_daily_usage(
            entitlement.account_id, self._ledger.today()
        )

        resources = {
            "agents": (agent_count, entitlement.max_agents),
            "tokens": (month.total_tokens, entitlement.monthly_token_quota),
            "calls": (today.total_calls, entitlement.daily_call_limit),
        }
        labels = {
            "agents": "agent limit",
            "tokens": "monthly token quota",
            "calls": "daily call limit",
        }

        warnings: List[Dict[str, Any]] = []
        threshold = self._config.USAGE_WARNING_THRESHOLD
        for name, (used, limit) in resources.items():
            if limit.is_unlimited:
                continue
            percentage = usage_percentage(used, limit)
            if limit.remaining(used) <= 0:
                warnings.append({
                    "type": f"{name}_limit_exceeded",
                    "message": f"{labels[name].capitalize()} reached. Upgrade for more {name}.",
                    "current": used,
                    "limit": limit.to_stored(),
                    "suggestion": get_upgrade_suggestion(entitlement.subscription_tier, name),
                })
            elif percentage >= threshold:
                warnings.append({
                    "type": f"{name}_limit_warning",
                    "message": f"You're using {percentage:.1f}% of your {labels[name]}",
                    "current": used,
                    "limit": limit.to_stored(),
                    "suggestion": None,
                })

        return {
            "account_id": entitlement.account_id,
            "limits": {
                "max_agents": entitlement.max_agents.to_stored(),
                "monthly_token_quota": entitlement.monthly_token_quota.to_stored(),
                "daily_call_limit": entitlement.daily_call_limit.to_stored(),
                "subscription_tier": entitlement.subscription_tier.value,
                "is_active": entitlement.is_active,
            },
            "current_usage": {
                "agents": agent_count,
                "tokens_this_month": month.total_tokens,
                "calls_today": today.total_calls,
                "costs_this_month": month.total_cost,
            },
            "remaining": {
                name: limit.remaining(used) for name, (used, limit) in resources.items()
            },
            "usage_percentage": {
                name: usage_percentage(used, limit) for name, (used, limit) in resources.items()
            },
            "warnings": warnings,
            "has_warnings": bool(warnings),
        }

    async def validate_bulk_operation(
        self,
        account_id: str,
        estimated_calls: int = 1,
        estimated_tokens_per_call: int = 0,
    ) -> BulkOperationResult:
        """Check that a batch of calls fits the token quota and the tier's bulk ceiling."""
        account_id = require_account_id(account_id)
        estimated_calls = _require_token_count(estimated_calls, "Estimated calls")
        estimated_tokens_per_call = _require_token_count(
            estimated_tokens_per_call, "Estimated tokens per call"
        )
        total_tokens = estimated_calls * estimated_tokens_per_call

        entitlement = await self.load_entitlement(account_id)
        bulk_limit = entitlement.bulk_call_limit
        tokens = await self._evaluate_tokens(entitlement, total_tokens)

        result = BulkOperationResult(
            allowed=True,
            estimated_calls=estimated_calls,
            total_estimated_tokens=total_tokens,
            max_calls=bulk_limit.to_stored(),
            remaining_tokens=tokens.remaining,
        )
        tier = entitlement.subscription_tier
        if not entitlement.is_active:
            result.allowed = False
            result.reason = INACTIVE_REASON
        elif tokens.would_exceed:
            result.allowed = False
            result.reason = "Bulk operation would exceed monthly token quota"
            result.upgrade_suggestion = get_upgrade_suggestion(tier, "tokens")
        elif bulk_limit.would_exceed(0, estimated_calls):
            result.allowed = False
            result.reason = f"Bulk operation exceeds the call limit for the {tier.value} tier"
            result.upgrade_suggestion = get_upgrade_suggestion(tier, "calls")
        return result

    # ------------------------------------------------------------------
    # Evaluation against an already-loaded entitlement
    # ------------------------------------------------------------------

    async def _count_agents(self, account_id: str) -> int:
        count = await self._agents.count_active_agents(account_id)
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            logger.error(f"Agent directory returned {count!r} for account {account_id}")
            raise DataIntegrityError(
                f"Malformed active agent count: {count!r}", {"account_id": account_id}
            )
        return count

    async def _evaluate_agents(self, entitlement: Entitlement) -> AgentLimitResult:
        current = await self._count_agents(entitlement.account_id)
        limit = entitlement.max_agents
        result = AgentLimitResult(
            allowed=limit.allows_another(current),
            current_count=current,
            limit=limit.to_stored(),
            remaining=limit.remaining(current),
        )
        if not entitlement.is_active:
            result.allowed = False
            result.reason = INACTIVE_REASON
        elif not result.allowed:
            result.reason = f"Maximum agent limit reached ({current}/{limit.ceiling})"
        return result

    async def _evaluate_tokens(
        self, entitlement: Entitlement, requested_tokens: int
    ) -> TokenLimitResult:
        month = await self._ledger.get_current_month_usage(entitlement.account_id)
        current = month.total_tokens
        quota = entitlement.monthly_token_quota
        would_exceed = quota.would_exceed(current, requested_tokens)
        result = TokenLimitResult(
            allowed=not would_exceed,
            current_usage=current,
            limit=quota.to_stored(),
            remaining=quota.remaining(current),
            would_exceed=would_exceed,
            percentage_used=usage_percentage(current, quota),
        )
        if not entitlement.is_active:
            result.allowed = False
            result.reason = INACTIVE_REASON
        elif would_exceed:
            result.reason = (
                f"Monthly token quota exceeded: {current} used + {requested_tokens} "
                f"requested > {quota.ceiling}"
            )
        return result

    async def _evaluate_calls(self, entitlement: Entitlement) -> CallLimitResult:
        today = await self._ledger.get_daily_usage(
            entitlement.account_id, self._ledger.today()
        )
        current = today.total_calls
        limit = entitlement.daily_call_limit
        result = CallLimitResult(
            allowed=limit.allows_another(current),
            current_calls=current,
            daily_limit=limit.to_stored(),
            subscription_tier=entitlement.subscription_tier.value,
        )
        if not entitlement.is_active:
            result.allowed = False
            result.reason = INACTIVE_REASON
        elif not result.allowed:
            result.reason = f"Maximum daily call limit reached ({current}/{limit.ceiling})"
        return result
