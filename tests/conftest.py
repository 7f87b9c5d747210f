"""
Shared test fixtures for metering_core tests.

This module provides:
- A throwaway SQLite database per test (aiosqlite)
- A controllable UTC clock
- Account/agent seeding helpers
- In-memory account and agent directories for malformed-data cases
"""

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import pytest
import pytest_asyncio

from metering_core.db import DatabaseManager
from metering_core.directory import SqlAccountDirectory, SqlAgentDirectory
from metering_core.models import AccountModel, AgentModel
from metering_core.services import LimitEvaluator, LimitsAdministration, UsageLedger

# =============================================================================
# Clock
# =============================================================================


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def database(tmp_path):
    """File-backed SQLite database with the metering schema."""
    manager = DatabaseManager(url=f"sqlite+aiosqlite:///{tmp_path / 'metering.db'}")
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def make_account(database):
    """Factory inserting an account and, optionally, some agents."""

    async def _make(
        account_id: str = "acct-1",
        tier: str = "free",
        max_agents: int = 2,
        monthly_token_quota: int = 1000,
        is_active: bool = True,
        active_agents: int = 0,
        inactive_agents: int = 0,
    ) -> str:
        async with database.session() as session:
            account = AccountModel(
                id=account_id,
                email=f"{account_id}@example.com",
                max_agents=max_agents,
                monthly_token_quota=monthly_token_quota,
                subscription_tier=tier,
                is_active=is_active,
            )
            for i in range(active_agents):
                account.agents.append(AgentModel(name=f"agent-{i}", is_active=True))
            for i in range(inactive_agents):
                account.agents.append(AgentModel(name=f"retired-{i}", is_active=False))
            session.add(account)
        return account_id

    return _make


@pytest.fixture
def ledger(database, clock) -> UsageLedger:
    return UsageLedger(database, clock=clock)


@pytest.fixture
def evaluator(database, ledger) -> LimitEvaluator:
    return LimitEvaluator(SqlAccountDirectory(database), SqlAgentDirectory(database), ledger)


@pytest.fixture
def admin(database) -> LimitsAdministration:
    return LimitsAdministration(SqlAccountDirectory(database))


# =============================================================================
# In-memory directories
# =============================================================================


class FakeAccountDirectory:
    """Account directory holding raw rows, so tests can store anything."""

    def __init__(self, rows: Optional[Dict[str, Dict[str, Any]]] = None):
        self.rows = rows or {}
        self.updates = []

    async def get_account(self, account_id: str) -> Optional[Mapping[str, Any]]:
        return self.rows.get(account_id)

    async def update_account(self, account_id: str, fields: Mapping[str, Any]) -> bool:
        if account_id not in self.rows:
            return False
        self.rows[account_id].update(fields)
        self.updates.append((account_id, dict(fields)))
        return True


class FakeAgentDirectory:
    def __init__(self, counts: Optional[Dict[str, Any]] = None):
        self.counts = counts or {}

    async def count_active_agents(self, account_id: str) -> Any:
        return self.counts.get(account_id, 0)


def account_row(**overrides: Any) -> Dict[str, Any]:
    row = {
        "max_agents": 2,
        "monthly_token_quota": 1000,
        "subscription_tier": "free",
        "is_active": True,
    }
    row.update(overrides)
    return row
