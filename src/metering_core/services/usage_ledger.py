"""
UsageLedger - per-account, per-day usage recording and aggregation.

Key Features:
- Lazy daily records: no row means zero usage, never an error
- Atomic increments via INSERT ... ON CONFLICT DO UPDATE, so concurrent
  writers for the same account/day never lose an update
- Best-effort metering: negative deltas are clamped to zero, not rejected
"""

import calendar
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from uuid import uuid4

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from metering_core.db import DatabaseManager, store_operation
from metering_core.errors import (
    NotFoundError,
    StoreError,
    ValidationError,
    require_account_id,
)
from metering_core.models.usage import DailyUsageRecordModel
from metering_core.services.cost_calculator import (
    CostRates,
    ProviderUsage,
    calculate_costs,
    non_negative_quantity,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
COST_PLACES = Decimal("0.000001")

DateLike = Union[date, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_date(value: Any, label: str = "Date") -> date:
    """Accept a date or a YYYY-MM-DD string."""
    if value is None or value == "":
        raise ValidationError(f"{label} is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"Invalid {label.lower()}: {value!r}")


@dataclass(frozen=True)
class UsageDelta:
    """Increment to apply to today's usage record."""

    tokens: int = 0
    calls: int = 0
    duration_seconds: int = 0
    cost: Decimal = ZERO

    _COUNTERS = ("tokens", "calls", "duration_seconds")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "UsageDelta":
        unknown = set(data) - {*cls._COUNTERS, "cost"}
        if unknown:
            raise ValidationError(
                f"Unknown usage fields: {sorted(unknown)}", {"fields": sorted(unknown)}
            )
        values: Dict[str, Any] = {}
        for name in cls._COUNTERS:
            raw = data.get(name)
            if raw is not None:
                values[name] = cls._as_int(name, raw)
        if data.get("cost") is not None:
            values["cost"] = cls._as_decimal(data["cost"])
        return cls(**values)

    @staticmethod
    def _as_int(name: str, raw: Any) -> int:
        if isinstance(raw, bool):
            raise ValidationError(f"Usage field '{name}' must be numeric")
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float) and not math.isfinite(raw):
            raise ValidationError(f"Usage field '{name}' must be finite, got {raw!r}")
        if isinstance(raw, Decimal) and not raw.is_finite():
            raise ValidationError(f"Usage field '{name}' must be finite, got {raw!r}")
        if isinstance(raw, (float, Decimal)) and raw == int(raw):
            return int(raw)
        raise ValidationError(f"Usage field '{name}' must be a whole number, got {raw!r}")

    @staticmethod
    def _as_decimal(raw: Any) -> Decimal:
        if isinstance(raw, bool):
            raise ValidationError("Usage field 'cost' must be numeric")
        try:
            value = _to_decimal(raw)
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Usage field 'cost' must be numeric, got {raw!r}")
        if not value.is_finite():
            raise ValidationError(f"Usage field 'cost' must be finite, got {raw!r}")
        return value

    def is_empty(self) -> bool:
        return (
            self.tokens == 0
            and self.calls == 0
            and self.duration_seconds == 0
            and self.cost == 0
        )

    def clamped(self) -> "UsageDelta":
        """Copy with every negative field forced to zero."""
        return UsageDelta(
            tokens=max(0, self.tokens),
            calls=max(0, self.calls),
            duration_seconds=max(0, self.duration_seconds),
            cost=max(ZERO, self.cost),
        )


@dataclass
class DailyUsage:
    """Usage totals for one account and day (zeros when nothing recorded)."""

    account_id: str
    date: date
    total_tokens: int = 0
    total_calls: int = 0
    total_duration_seconds: int = 0
    api_cost: Decimal = ZERO
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, record: DailyUsageRecordModel) -> "DailyUsage":
        return cls(
            account_id=record.account_id,
            date=record.usage_date,
            total_tokens=record.total_tokens or 0,
            total_calls=record.total_calls or 0,
            total_duration_seconds=record.total_duration_seconds or 0,
            api_cost=_to_decimal(record.api_cost),
            updated_at=record.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "date": self.date.isoformat(),
            "total_tokens": self.total_tokens,
            "total_calls": self.total_calls,
            "total_duration_seconds": self.total_duration_seconds,
            "api_cost": self.api_cost,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class MonthlyUsage:
    """Usage totals for one calendar month."""

    year: int
    month: int
    total_tokens: int = 0
    total_calls: int = 0
    total_cost: Decimal = ZERO
    total_duration_seconds: int = 0
    days_active: int = 0

    @property
    def average_cost_per_call(self) -> Decimal:
        if self.total_calls <= 0:
            return ZERO
        return (self.total_cost / self.total_calls).quantize(COST_PLACES)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "total_tokens": self.total_tokens,
            "total_calls": self.total_calls,
            "total_cost": self.total_cost,
            "total_duration_seconds": self.total_duration_seconds,
            "days_active": self.days_active,
            "average_cost_per_call": self.average_cost_per_call,
        }


@dataclass
class UsageStats:
    """Usage totals over an inclusive date range with a per-day breakdown."""

    total_tokens: int = 0
    total_calls: int = 0
    total_costs: Decimal = ZERO
    daily_breakdown: List[DailyUsage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tokens": self.total_tokens,
            "total_calls": self.total_calls,
            "total_costs": self.total_costs,
            "daily_breakdown": [day.to_dict() for day in self.daily_breakdown],
        }


class UsageLedger:
    """
    Durable record of consumption per account per day.

    Design decisions:
    1. The store is the only source of truth; nothing is cached between calls
    2. Increments are pushed into the database as one upsert-with-delta
       statement instead of read-merge-write
    3. The day boundary is the UTC calendar date
    """

    LEADERBOARD_SORT_FIELDS = (
        "total_tokens",
        "total_calls",
        "total_duration_seconds",
        "total_cost",
    )

    def __init__(
        self,
        database: DatabaseManager,
        clock: Optional[Callable[[], datetime]] = None,
        rates: Optional[CostRates] = None,
    ):
        self._db = database
        self._clock = clock or utc_now
        self._rates = rates

    def today(self) -> date:
        return self._clock().date()

    @store_operation
    async def record_usage(
        self,
        account_id: str,
        delta: Union[UsageDelta, Mapping[str, Any], None],
    ) -> bool:
        """
        Add usage to today's record for the account.

        Args:
            account_id: Account ID
            delta: UsageDelta or mapping with tokens, calls, duration_seconds, cost

        Returns:
            True once the increment is committed
        """
        account_id = require_account_id(account_id)
        if delta is None:
            raise ValidationError("Usage data is required")
        if not isinstance(delta, UsageDelta):
            if not isinstance(delta, Mapping):
                raise ValidationError("Usage data must be a mapping")
            delta = UsageDelta.from_mapping(delta)
        if delta.is_empty():
            raise ValidationError("Usage data is required")

        applied = delta.clamped()
        now = self._clock()

        async with self._db.session() as session:
            insert = self._dialect_insert()
            stmt = insert(DailyUsageRecordModel).values(
                id=str(uuid4()),
                account_id=account_id,
                usage_date=now.date(),
                total_tokens=applied.tokens,
                total_calls=applied.calls,
                total_duration_seconds=applied.duration_seconds,
                api_cost=applied.cost,
                created_at=now,
                updated_at=now,
            )
            table = DailyUsageRecordModel.__table__
            stmt = stmt.on_conflict_do_update(
                index_elements=["account_id", "usage_date"],
                set_={
                    "total_tokens": table.c.total_tokens + stmt.excluded.total_tokens,
                    "total_calls": table.c.total_calls + stmt.excluded.total_calls,
                    "total_duration_seconds": (
                        table.c.total_duration_seconds
                        + stmt.excluded.total_duration_seconds
                    ),
                    "api_cost": table.c.api_cost + stmt.excluded.api_cost,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            try:
                await session.execute(stmt)
            except IntegrityError as e:
                # Foreign key violation: the account row does not exist
                raise NotFoundError(
                    f"Account not found: {account_id}", {"account_id": account_id}
                ) from e

        logger.debug(
            f"Recorded usage for account {account_id}: tokens={applied.tokens}, "
            f"calls={applied.calls}, duration={applied.duration_seconds}s, cost={applied.cost}"
        )
        return True

    async def record_provider_usage(
        self,
        account_id: str,
        usage: Union[ProviderUsage, Mapping[str, Any]],
    ) -> Decimal:
        """
        Price a provider usage event and record it.

        Returns:
            The estimated cost that was recorded
        """
        if usage is None:
            raise ValidationError("Usage data is required")
        if not isinstance(usage, ProviderUsage):
            usage = ProviderUsage.from_mapping(usage)
        cost = calculate_costs(usage, self._rates)
        # Counters hold whole units, so partial quantities round up
        await self.record_usage(
            account_id,
            {
                "tokens": math.ceil(non_negative_quantity(usage.tokens)),
                "calls": math.ceil(non_negative_quantity(usage.calls)),
                "duration_seconds": math.ceil(non_negative_quantity(usage.duration)),
                "cost": cost,
            },
        )
        return cost

    @store_operation
    async def get_daily_usage(self, account_id: str, day: DateLike) -> DailyUsage:
        """Usage for one day; a zero-valued record when nothing was recorded."""
        account_id = require_account_id(account_id)
        day = parse_date(day)

        async with self._db.session() as session:
            stmt = select(DailyUsageRecordModel).where(
                DailyUsageRecordModel.account_id == account_id,
                DailyUsageRecordModel.usage_date == day,
            )
            result = await session.execute(stmt)
            record = result.scalar_one_or_none()

        if record is None:
            return DailyUsage(account_id=account_id, date=day)
        return DailyUsage.from_model(record)

    @store_operation
    async def get_monthly_usage(self, account_id: str, year: int, month: int) -> MonthlyUsage:
        """Sum of all daily records in a calendar month."""
        account_id = require_account_id(account_id)
        if isinstance(year, bool) or not isinstance(year, int) or not 1 <= year <= 9999:
            raise ValidationError(f"Invalid year: {year!r}")
        if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
            raise ValidationError(f"Invalid month: {month!r}")

        start = date(year, month, 1)
        end = date(year, month, calendar.monthrange(year, month)[1])

        async with self._db.session() as session:
            stmt = select(
                func.coalesce(func.sum(DailyUsageRecordModel.total_tokens), 0),
                func.coalesce(func.sum(DailyUsageRecordModel.total_calls), 0),
                func.coalesce(func.sum(DailyUsageRecordModel.api_cost), 0),
                func.coalesce(func.sum(DailyUsageRecordModel.total_duration_seconds), 0),
                func.count(DailyUsageRecordModel.id),
            ).where(
                DailyUsageRecordModel.account_id == account_id,
                DailyUsageRecordModel.usage_date >= start,
                DailyUsageRecordModel.usage_date <= end,
            )
            result = await session.execute(stmt)
            tokens, calls, cost, duration, days = result.one()

        return MonthlyUsage(
            year=year,
            month=month,
            total_tokens=int(tokens),
            total_calls=int(calls),
            total_cost=_to_decimal(cost),
            total_duration_seconds=int(duration),
            days_active=int(days),
        )

    async def get_current_month_usage(self, account_id: str) -> MonthlyUsage:
        today = self.today()
        return await self.get_monthly_usage(account_id, today.year, today.month)

    @store_operation
    async def get_user_usage_stats(
        self,
        account_id: str,
        start_date: DateLike,
        end_date: DateLike,
    ) -> UsageStats:
        """Totals and per-day breakdown over an inclusive date range."""
        account_id = require_account_id(account_id)
        start = parse_date(start_date, "Start date")
        end = parse_date(end_date, "End date")
        if start > end:
            return UsageStats()

        async with self._db.session() as session:
            stmt = (
                select(DailyUsageRecordModel)
                .where(
                    DailyUsageRecordModel.account_id == account_id,
                    DailyUsageRecordModel.usage_date >= start,
                    DailyUsageRecordModel.usage_date <= end,
                )
                .order_by(DailyUsageRecordModel.usage_date.asc())
            )
            result = await session.execute(stmt)
            breakdown = [DailyUsage.from_model(r) for r in result.scalars().all()]

        return UsageStats(
            total_tokens=sum(d.total_tokens for d in breakdown),
            total_calls=sum(d.total_calls for d in breakdown),
            total_costs=sum((d.api_cost for d in breakdown), ZERO),
            daily_breakdown=breakdown,
        )

    @store_operation
    async def get_usage_leaderboard(
        self,
        start_date: DateLike,
        end_date: DateLike,
        sort_by: str = "total_cost",
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Per-account totals over a date range, heaviest users first (admin)."""
        start = parse_date(start_date, "Start date")
        end = parse_date(end_date, "End date")
        if sort_by not in self.LEADERBOARD_SORT_FIELDS:
            raise ValidationError(
                f"Invalid sort field: {sort_by}",
                {"allowed": list(self.LEADERBOARD_SORT_FIELDS)},
            )
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"Invalid limit: {limit!r}")

        record = DailyUsageRecordModel
        columns = {
            "total_tokens": func.sum(record.total_tokens).label("total_tokens"),
            "total_calls": func.sum(record.total_calls).label("total_calls"),
            "total_duration_seconds": func.sum(record.total_duration_seconds).label(
                "total_duration_seconds"
            ),
            "total_cost": func.sum(record.api_cost).label("total_cost"),
        }
        async with self._db.session() as session:
            stmt = (
                select(
                    record.account_id,
                    *columns.values(),
                    func.count(record.id).label("days_active"),
                )
                .where(record.usage_date >= start, record.usage_date <= end)
                .group_by(record.account_id)
                .order_by(columns[sort_by].desc(), record.account_id)
                .limit(limit)
            )
            result = await session.execute(stmt)
            rows = result.all()

        return [
            {
                "account_id": row.account_id,
                "total_tokens": int(row.total_tokens or 0),
                "total_calls": int(row.total_calls or 0),
                "total_duration_seconds": int(row.total_duration_seconds or 0),
                "total_cost": _to_decimal(row.total_cost),
                "days_active": int(row.days_active),
            }
            for row in rows
        ]

    def _dialect_insert(self):
        """Dialect-specific INSERT construct supporting ON CONFLICT."""
        dialect = self._db.dialect_name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise StoreError(f"Atomic upsert is not supported for dialect '{dialect}'")
