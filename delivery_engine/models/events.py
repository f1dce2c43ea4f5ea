"""Payloads published on the event broadcaster."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from delivery_engine.models.earnings import EarningsSnapshot
from delivery_engine.models.money import Money


class TaskCompletedEvent(BaseModel):
    """A delivery was confirmed and its fee credited."""

    task_id: str
    delivery_fee: Money
    actor_id: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class OngoingUpdatedEvent(BaseModel):
    """The ongoing partition changed."""

    actor_id: str
    task_ids: list[str] = Field(default_factory=list)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EarningsUpdatedEvent(BaseModel):
    """Earnings were recomputed."""

    actor_id: str
    snapshot: EarningsSnapshot
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
