"""Earnings and payout models."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from delivery_engine.models.money import Money
from delivery_engine.models.task import parse_timestamp


class EarningsPeriod(str, Enum):
    """Aggregation windows understood by the earnings endpoints."""

    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


class Payout(BaseModel):
    """A transfer from the platform to the delivery partner."""

    amount: Money = Field(ge=0)
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: object) -> object:
        """Accept ISO strings, assuming UTC when no offset is given."""
        parsed = parse_timestamp(v)
        return parsed if parsed is not None else v


class EarningsSnapshot(BaseModel):
    """Earnings derived from the completed-task set and the payout ledger."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    today: Money = Decimal("0")
    this_week: Money = Decimal("0")
    this_month: Money = Decimal("0")
    all_time: Money = Decimal("0")
    transferred: Money = Decimal("0")
    pending_balance: Money = Decimal("0")
    completed_count: int = 0


class EarningsSummary(BaseModel):
    """Aggregated earnings for one period, as reported by the backend."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    period: EarningsPeriod
    total: Money = Decimal("0")
    deliveries: int = 0
    source: str = "gateway"


class DailyEarnings(BaseModel):
    """Total earned on one local calendar day (``YYYY-MM-DD``)."""

    date: str
    total: Money = Decimal("0")


class WeeklyEarnings(BaseModel):
    """Total earned in one ISO week (``YYYY-Www``)."""

    week: str
    total: Money = Decimal("0")


class EarningsHistory(BaseModel):
    """Chart series of completed-delivery fees, oldest first."""

    daily: list[DailyEarnings] = Field(default_factory=list)
    weekly: list[WeeklyEarnings] = Field(default_factory=list)
