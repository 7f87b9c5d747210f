"""
Account and agent directories.

The limit evaluator and limits administration only see these protocols; the
SQL implementations below are the production wiring. Tests substitute
in-memory fakes.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from sqlalchemy import select, update, func

from metering_core.db import DatabaseManager, store_operation
from metering_core.models import AccountModel, AgentModel

logger = logging.getLogger(__name__)

# Fields an administrator may change through update_account
ENTITLEMENT_FIELDS = frozenset(
    {"max_agents", "monthly_token_quota", "subscription_tier", "is_active"}
)


class AccountDirectory(Protocol):
    async def get_account(self, account_id: str) -> Optional[Mapping[str, Any]]:
        """Raw entitlement row, or None when the account does not exist."""
        ...

    async def update_account(self, account_id: str, fields: Mapping[str, Any]) -> bool:
        """Persist a partial update; False when the account does not exist."""
        ...


class AgentDirectory(Protocol):
    async def count_active_agents(self, account_id: str) -> int:
        ...


class SqlAccountDirectory:
    """Account directory backed by the ``accounts`` table."""

    def __init__(self, database: DatabaseManager):
        self._db = database

    @store_operation
    async def get_account(self, account_id: str) -> Optional[Dict[str, Any]]:
        async with self._db.session() as session:
            stmt = select(AccountModel).where(AccountModel.id == account_id)
            result = await session.execute(stmt)
            account = result.scalar_one_or_none()
            return account.entitlement_row() if account else None

    @store_operation
    async def update_account(self, account_id: str, fields: Mapping[str, Any]) -> bool:
        unknown = set(fields) - ENTITLEMENT_FIELDS
        if unknown:
            raise ValueError(f"Not an entitlement field: {sorted(unknown)}")

        async with self._db.session() as session:
            stmt = (
                update(AccountModel)
                .where(AccountModel.id == account_id)
                .values(**dict(fields), updated_at=func.now())
            )
            result = await session.execute(stmt)
            updated = result.rowcount > 0

        if updated:
            logger.info(f"Updated entitlement for account {account_id}: {dict(fields)}")
        return updated


class SqlAgentDirectory:
    """Agent directory backed by the ``agents`` table."""

    def __init__(self, database: DatabaseManager):
        self._db = database

    @store_operation
    async def count_active_agents(self, account_id: str) -> int:
        async with self._db.session() as session:
            stmt = select(func.count(AgentModel.id)).where(
                AgentModel.account_id == account_id,
                AgentModel.is_active == True,  # noqa: E712
            )
            result = await session.execute(stmt)
            return result.scalar() or 0
