"""
Tests for limits, tiers and entitlement decoding.
"""
import math

import pytest

from metering_core.entitlements import (
    BULK_CALL_LIMITS,
    DAILY_CALL_LIMITS,
    TIER_CATALOG,
    UNLIMITED,
    Entitlement,
    Limit,
    SubscriptionTier,
    daily_call_limit,
    get_upgrade_suggestion,
    parse_tier,
    usage_percentage,
)
from metering_core.errors import DataIntegrityError


class TestLimit:
    """Tests for the Limit value type."""

    def test_from_stored_sentinel_is_unlimited(self):
        limit = Limit.from_stored(-1, "max_agents")
        assert limit == UNLIMITED
        assert limit.is_unlimited
        assert limit.to_stored() == -1

    def test_from_stored_zero_is_a_real_ceiling(self):
        limit = Limit.from_stored(0, "max_agents")
        assert not limit.is_unlimited
        assert not limit.allows_another(0)

    @pytest.mark.parametrize("value", [None, "5", 2.5, True, -2])
    def test_from_stored_rejects_malformed(self, value):
        with pytest.raises(DataIntegrityError):
            Limit.from_stored(value, "monthly_token_quota")

    def test_of_rejects_negative(self):
        with pytest.raises(ValueError):
            Limit.of(-1)

    def test_remaining_and_boundaries(self):
        limit = Limit.of(5)
        assert limit.remaining(3) == 2
        assert limit.allows_another(4)
        assert not limit.allows_another(5)
        assert limit.would_exceed(5, 1)
        assert not limit.would_exceed(4, 1)

    def test_unlimited_never_exceeds(self):
        assert UNLIMITED.allows_another(10**12)
        assert not UNLIMITED.would_exceed(10**12, 10**12)
        assert UNLIMITED.remaining(42) == -1


class TestTiers:
    def test_parse_known_tiers(self):
        assert parse_tier("pro") is SubscriptionTier.PRO
        assert parse_tier(" Enterprise ") is SubscriptionTier.ENTERPRISE

    @pytest.mark.parametrize("value", ["platinum", "", None, 3])
    def test_unknown_tier_falls_back_to_free(self, value):
        assert parse_tier(value) is SubscriptionTier.FREE

    def test_daily_call_limits(self):
        assert daily_call_limit("free") == Limit.of(10)
        assert daily_call_limit("pro") == Limit.of(100)
        assert daily_call_limit("enterprise").is_unlimited
        assert daily_call_limit("mystery") == Limit.of(10)

    def test_tables_cover_every_tier(self):
        for table in (DAILY_CALL_LIMITS, BULK_CALL_LIMITS, TIER_CATALOG):
            assert set(table) == set(SubscriptionTier)


class TestEntitlementFromRecord:
    def test_decodes_row(self):
        entitlement = Entitlement.from_record(
            "acct-1",
            {
                "max_agents": -1,
                "monthly_token_quota": 5000,
                "subscription_tier": "pro",
                "is_active": True,
            },
        )
        assert entitlement.max_agents.is_unlimited
        assert entitlement.monthly_token_quota == Limit.of(5000)
        assert entitlement.daily_call_limit == Limit.of(100)
        assert entitlement.bulk_call_limit == Limit.of(100)

    def test_missing_limit_is_integrity_error(self):
        with pytest.raises(DataIntegrityError) as exc_info:
            Entitlement.from_record(
                "acct-1",
                {"monthly_token_quota": 10, "subscription_tier": "free", "is_active": True},
            )
        assert exc_info.value.details["account_id"] == "acct-1"
        assert exc_info.value.details["field"] == "max_agents"

    def test_non_boolean_active_flag_is_integrity_error(self):
        with pytest.raises(DataIntegrityError):
            Entitlement.from_record(
                "acct-1",
                {
                    "max_agents": 1,
                    "monthly_token_quota": 10,
                    "subscription_tier": "free",
                    "is_active": "yes",
                },
            )


class TestUsagePercentage:
    @pytest.mark.parametrize(
        "used, limit, expected",
        [
            (50, 200, 25.0),
            (1, 3, 33.3),
            (250, 200, 125.0),
            (500, -1, 0.0),
            (500, UNLIMITED, 0.0),
            (0, 0, 0.0),
            (-5, 100, 0.0),
        ],
    )
    def test_values(self, used, limit, expected):
        assert usage_percentage(used, limit) == expected

    def test_zero_limit_with_usage_is_infinite(self):
        assert math.isinf(usage_percentage(1, 0))


class TestUpgradeSuggestion:
    def test_free_to_pro(self):
        suggestion = get_upgrade_suggestion("free", "agents")
        assert suggestion["suggested_tier"] == "pro"
        assert suggestion["new_limit"] == 10
        assert suggestion["message"] == "Upgrade to Pro for 10 agents"

    def test_pro_to_enterprise_calls_unlimited(self):
        suggestion = get_upgrade_suggestion(SubscriptionTier.PRO, "calls")
        assert suggestion["suggested_tier"] == "enterprise"
        assert suggestion["new_limit"] == -1
        assert "unlimited calls per day" in suggestion["message"]

    def test_highest_tier(self):
        suggestion = get_upgrade_suggestion("enterprise", "tokens")
        assert suggestion["suggested_tier"] is None

    def test_unknown_limit_type(self):
        with pytest.raises(ValueError):
            get_upgrade_suggestion("free", "widgets")
