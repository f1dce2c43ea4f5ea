"""Data models for the delivery lifecycle."""

from delivery_engine.models.actor import Actor, ActorRole
from delivery_engine.models.earnings import (
    DailyEarnings,
    EarningsHistory,
    EarningsPeriod,
    EarningsSnapshot,
    EarningsSummary,
    Payout,
    WeeklyEarnings,
)
from delivery_engine.models.events import (
    EarningsUpdatedEvent,
    OngoingUpdatedEvent,
    TaskCompletedEvent,
)
from delivery_engine.models.money import Money, money_to_json
from delivery_engine.models.result import CompletionOutcome, OperationResult
from delivery_engine.models.task import ONGOING_STATUSES, Task, TaskStatus

__all__ = [
    # Actor
    "Actor",
    "ActorRole",
    # Earnings
    "DailyEarnings",
    "EarningsHistory",
    "EarningsPeriod",
    "EarningsSnapshot",
    "EarningsSummary",
    "Payout",
    "WeeklyEarnings",
    # Events
    "TaskCompletedEvent",
    "OngoingUpdatedEvent",
    "EarningsUpdatedEvent",
    # Money
    "Money",
    "money_to_json",
    # Results
    "OperationResult",
    "CompletionOutcome",
    # Task
    "Task",
    "TaskStatus",
    "ONGOING_STATUSES",
]
