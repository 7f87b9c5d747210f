"""
Tests for limits administration.
"""
import logging

import pytest

from conftest import FakeAccountDirectory, account_row
from metering_core.errors import DataIntegrityError, NotFoundError, ValidationError
from metering_core.services import LimitsAdministration


class TestGetUserLimits:
    async def test_reads_stored_limits(self, admin, make_account):
        await make_account("acct-1", tier="pro", max_agents=-1, monthly_token_quota=50000)

        limits = await admin.get_user_limits("acct-1")

        assert limits.to_dict() == {
            "max_agents": -1,
            "monthly_token_quota": 50000,
            "subscription_tier": "pro",
            "is_active": True,
            "daily_call_limit": 100,
        }

    async def test_unknown_account(self, admin):
        with pytest.raises(NotFoundError):
            await admin.get_user_limits("ghost")

    async def test_malformed_stored_limits(self):
        admin = LimitsAdministration(
            FakeAccountDirectory({"acct-1": account_row(monthly_token_quota="plenty")})
        )

        with pytest.raises(DataIntegrityError):
            await admin.get_user_limits("acct-1")


class TestUpdateUserLimits:
    async def test_partial_update_persists_only_given_fields(self, admin, make_account):
        await make_account("acct-1", max_agents=2, monthly_token_quota=1000)

        assert await admin.update_user_limits("acct-1", {"max_agents": 10}) is True

        limits = await admin.get_user_limits("acct-1")
        assert limits.max_agents == 10
        assert limits.monthly_token_quota == 1000
        assert limits.subscription_tier == "free"

    async def test_unlimited_and_zero_accepted(self, admin, make_account):
        await make_account("acct-1")

        await admin.update_user_limits("acct-1", {"max_agents": 0, "monthly_token_quota": -1})

        limits = await admin.get_user_limits("acct-1")
        assert limits.max_agents == 0
        assert limits.monthly_token_quota == -1

    async def test_deactivate(self, admin, make_account):
        await make_account("acct-1")

        await admin.update_user_limits("acct-1", {"is_active": False})

        assert (await admin.get_user_limits("acct-1")).is_active is False

    @pytest.mark.parametrize(
        "patch, message",
        [
            (None, "Limits data is required"),
            ({}, "No limits to update"),
            ({"max_agents": -2}, "Invalid limit value for max_agents"),
            ({"monthly_token_quota": "lots"}, "Invalid limit value for monthly_token_quota"),
            ({"max_agents": True}, "Invalid limit value for max_agents"),
            ({"subscription_tier": "platinum"}, "Invalid subscription tier"),
            ({"is_active": "no"}, "is_active must be a boolean"),
            ({"email": "x@example.com"}, "Unknown limit fields"),
        ],
    )
    async def test_invalid_patch(self, admin, make_account, patch, message):
        await make_account("acct-1")

        with pytest.raises(ValidationError, match=message):
            await admin.update_user_limits("acct-1", patch)

    async def test_invalid_patch_changes_nothing(self, admin, make_account):
        await make_account("acct-1", max_agents=2)

        with pytest.raises(ValidationError):
            await admin.update_user_limits("acct-1", {"max_agents": 5, "monthly_token_quota": -7})

        assert (await admin.get_user_limits("acct-1")).max_agents == 2

    async def test_unknown_account(self, admin):
        with pytest.raises(NotFoundError):
            await admin.update_user_limits("ghost", {"max_agents": 1})


class TestSubscriptionTiers:
    async def test_change_tier_applies_plan_defaults(self, admin, make_account):
        await make_account("acct-1")

        limits = await admin.change_subscription_tier("acct-1", "enterprise")

        assert limits.subscription_tier == "enterprise"
        assert limits.max_agents == 100
        assert limits.monthly_token_quota == 1000000
        assert limits.daily_call_limit == -1

    async def test_change_tier_logs_actor_and_tiers(self, admin, make_account, caplog):
        await make_account("acct-1")

        with caplog.at_level(logging.INFO, logger="metering_core.services.limits_admin"):
            limits = await admin.change_subscription_tier("acct-1", "pro", actor="ops@example.com")

        assert limits.subscription_tier == "pro"
        assert "acct-1: free -> pro (by ops@example.com)" in caplog.text

    async def test_change_tier_without_actor_logs_system(self, admin, make_account, caplog):
        await make_account("acct-1", tier="pro")

        with caplog.at_level(logging.INFO, logger="metering_core.services.limits_admin"):
            await admin.change_subscription_tier("acct-1", "free")

        assert "pro -> free (by system)" in caplog.text

    async def test_change_tier_repairs_malformed_limits(self):
        accounts = FakeAccountDirectory({"acct-1": account_row(monthly_token_quota="plenty")})
        admin = LimitsAdministration(accounts)

        limits = await admin.change_subscription_tier("acct-1", "pro", actor="ops")

        assert limits.subscription_tier == "pro"
        assert accounts.rows["acct-1"]["monthly_token_quota"] == limits.monthly_token_quota

    async def test_change_tier_unknown_account(self, admin):
        with pytest.raises(NotFoundError):
            await admin.change_subscription_tier("ghost", "pro")

    async def test_change_to_unknown_tier(self, admin, make_account):
        await make_account("acct-1")

        with pytest.raises(ValidationError):
            await admin.change_subscription_tier("acct-1", "gold")

    def test_list_tiers_most_restrictive_first(self):
        tiers = LimitsAdministration.list_subscription_tiers()

        assert [t["tier"] for t in tiers] == ["free", "pro", "enterprise"]
        assert tiers[0]["daily_call_limit"] == 10
        assert tiers[2]["daily_call_limit"] == -1
