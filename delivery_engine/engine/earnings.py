"""Earnings aggregation over the completed-task set and payout ledger."""

from collections.abc import Iterable
from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from zoneinfo import ZoneInfo

from delivery_engine.config import get_settings
from delivery_engine.models.earnings import (
    DailyEarnings,
    EarningsHistory,
    EarningsPeriod,
    EarningsSnapshot,
    EarningsSummary,
    Payout,
    WeeklyEarnings,
)
from delivery_engine.models.task import Task

ZERO = Decimal("0")


def _local_date(moment: datetime, tz: tzinfo) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()


def _in_period(day: date, today: date, period: EarningsPeriod) -> bool:
    if period == EarningsPeriod.TODAY:
        return day == today
    if period == EarningsPeriod.WEEK:
        return day.isocalendar()[:2] == today.isocalendar()[:2]
    if period == EarningsPeriod.MONTH:
        return (day.year, day.month) == (today.year, today.month)
    return True


def snapshot(
    completed_tasks: Iterable[Task],
    payouts: Iterable[Payout],
    now: datetime,
    tz: tzinfo | None = None,
) -> EarningsSnapshot:
    """Compute today/week/month/all-time totals and the payout balance.

    Buckets follow the calendar of ``now`` in ``tz``: same day, same ISO
    week, same month. A task without a usable ``completed_at`` only counts
    toward the all-time total.
    """
    tz = tz or timezone.utc
    today = _local_date(now, tz)

    totals = {period: ZERO for period in EarningsPeriod}
    count = 0

    for task in completed_tasks:
        fee = task.delivery_fee
        count += 1
        totals[EarningsPeriod.ALL] += fee

        if task.completed_at is None:
            continue

        day = _local_date(task.completed_at, tz)
        for period in (EarningsPeriod.TODAY, EarningsPeriod.WEEK, EarningsPeriod.MONTH):
            if _in_period(day, today, period):
                totals[period] += fee

    transferred = sum((p.amount for p in payouts), ZERO)

    return EarningsSnapshot(
        today=totals[EarningsPeriod.TODAY],
        this_week=totals[EarningsPeriod.WEEK],
        this_month=totals[EarningsPeriod.MONTH],
        all_time=totals[EarningsPeriod.ALL],
        transferred=transferred,
        pending_balance=max(ZERO, totals[EarningsPeriod.ALL] - transferred),
        completed_count=count,
    )


def summarize(
    completed_tasks: Iterable[Task],
    period: EarningsPeriod,
    now: datetime,
    tz: tzinfo | None = None,
) -> EarningsSummary:
    """Locally derived equivalent of the backend's earnings summary."""
    tz = tz or timezone.utc
    today = _local_date(now, tz)

    total = ZERO
    deliveries = 0
    for task in completed_tasks:
        if period != EarningsPeriod.ALL:
            if task.completed_at is None:
                continue
            if not _in_period(_local_date(task.completed_at, tz), today, period):
                continue
        total += task.delivery_fee
        deliveries += 1

    return EarningsSummary(period=period, total=total, deliveries=deliveries, source="local")


def week_key(day: date) -> str:
    """ISO week label, e.g. ``2024-W20``."""
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def history(completed_tasks: Iterable[Task], tz: tzinfo | None = None) -> EarningsHistory:
    """Group delivery fees by local day and by ISO week.

    Tasks without a ``completed_at`` have no place on the timeline and are
    left out of both series.
    """
    tz = tz or timezone.utc
    daily: dict[str, Decimal] = {}
    weekly: dict[str, Decimal] = {}

    for task in completed_tasks:
        if task.completed_at is None:
            continue
        day = _local_date(task.completed_at, tz)
        day_key = day.isoformat()
        daily[day_key] = daily.get(day_key, ZERO) + task.delivery_fee
        week = week_key(day)
        weekly[week] = weekly.get(week, ZERO) + task.delivery_fee

    return EarningsHistory(
        daily=[DailyEarnings(date=k, total=daily[k]) for k in sorted(daily)],
        weekly=[WeeklyEarnings(week=k, total=weekly[k]) for k in sorted(weekly)],
    )


class EarningsAggregator:
    """Memoizes the earnings snapshot between changes to its inputs.

    Owners call :meth:`invalidate` whenever the completed set or the payout
    ledger changes. The memo is also keyed on the local date of ``now`` so
    buckets roll over at midnight without an explicit invalidation.
    """

    def __init__(self, tz: tzinfo | None = None):
        self.tz = tz or ZoneInfo(get_settings().earnings_timezone)
        self._version = 0
        self._cache_key: tuple[int, date] | None = None
        self._cached: EarningsSnapshot | None = None

    def invalidate(self) -> None:
        """Mark the memoized snapshot stale."""
        self._version += 1

    def current(
        self,
        completed_tasks: Iterable[Task],
        payouts: Iterable[Payout],
        now: datetime | None = None,
    ) -> EarningsSnapshot:
        """Return the snapshot, recomputing only when stale."""
        now = now or datetime.now(timezone.utc)
        key = (self._version, _local_date(now, self.tz))

        if self._cached is not None and self._cache_key == key:
            return self._cached

        self._cached = snapshot(completed_tasks, payouts, now, self.tz)
        self._cache_key = key
        return self._cached
