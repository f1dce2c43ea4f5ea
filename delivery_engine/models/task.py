"""Delivery task models."""

import hmac
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from delivery_engine.models.money import Money


class TaskStatus(str, Enum):
    """Delivery task lifecycle states."""

    AVAILABLE = "Available"
    ASSIGNED = "Assigned"
    PICKED_UP = "PickedUp"
    ON_THE_WAY = "OnTheWay"
    NEAR_DESTINATION = "NearDestination"
    DELIVERED = "Delivered"

    @classmethod
    def parse(cls, raw: Any) -> "TaskStatus":
        """Parse a status, accepting the labels older clients stored."""
        if isinstance(raw, cls):
            return raw
        if raw is None or raw == "":
            return cls.AVAILABLE
        key = str(raw).replace(" ", "").replace("_", "").replace("-", "").lower()
        try:
            return _STATUS_LOOKUP[key]
        except KeyError:
            raise ValueError(f"Unknown task status: {raw!r}") from None


_STATUS_LOOKUP: dict[str, TaskStatus] = {
    "available": TaskStatus.AVAILABLE,
    "assigned": TaskStatus.ASSIGNED,
    "accepted": TaskStatus.ASSIGNED,
    "ongoing": TaskStatus.ASSIGNED,
    "pickedup": TaskStatus.PICKED_UP,
    "ontheway": TaskStatus.ON_THE_WAY,
    "neardestination": TaskStatus.NEAR_DESTINATION,
    "delivered": TaskStatus.DELIVERED,
    "completed": TaskStatus.DELIVERED,
}

# Statuses a task may hold while sitting in the ongoing partition.
ONGOING_STATUSES = frozenset(
    {
        TaskStatus.ASSIGNED,
        TaskStatus.PICKED_UP,
        TaskStatus.ON_THE_WAY,
        TaskStatus.NEAR_DESTINATION,
    }
)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp; anything unreadable becomes None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Task(BaseModel):
    """A single delivery assignment.

    Field names are snake_case in Python and camelCase in storage, matching
    the key layout the browser client wrote (``deliveryFee``, ``completedAt``).
    Unknown keys such as ``vendor`` or ``orderValue`` are preserved.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    order_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("orderId", "order_id"),
        serialization_alias="orderId",
    )
    pickup_location: str | None = Field(
        default=None,
        validation_alias=AliasChoices("pickupLocation", "pickup_location", "pickup"),
        serialization_alias="pickupLocation",
    )
    drop_location: str | None = Field(
        default=None,
        validation_alias=AliasChoices("dropLocation", "drop_location", "drop"),
        serialization_alias="dropLocation",
    )
    delivery_fee: Money = Field(
        default=Decimal("0"),
        ge=0,
        validation_alias=AliasChoices("deliveryFee", "delivery_fee"),
        serialization_alias="deliveryFee",
    )
    distance: float | None = Field(default=None, ge=0)
    status: TaskStatus = TaskStatus.AVAILABLE
    confirmation_code: str | None = Field(
        default=None,
        validation_alias=AliasChoices("confirmationCode", "confirmation_code", "otp"),
        serialization_alias="confirmationCode",
    )
    assigned_to: str | None = Field(
        default=None,
        validation_alias=AliasChoices("assignedTo", "assigned_to"),
        serialization_alias="assignedTo",
    )
    accepted_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("acceptedAt", "accepted_at"),
        serialization_alias="acceptedAt",
    )
    completed_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("completedAt", "completed_at"),
        serialization_alias="completedAt",
    )

    @field_validator("id", "order_id", "assigned_to", "confirmation_code", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        """Identifiers and codes may arrive as JSON numbers."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("delivery_fee", mode="before")
    @classmethod
    def default_fee(cls, v: Any) -> Any:
        """A missing fee counts as zero."""
        return 0 if v is None or v == "" else v

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> TaskStatus:
        """Map legacy status labels onto the canonical set."""
        return TaskStatus.parse(v)

    @field_validator("accepted_at", "completed_at", mode="before")
    @classmethod
    def lenient_timestamp(cls, v: Any) -> datetime | None:
        """Unparsable timestamps are dropped rather than rejected."""
        return parse_timestamp(v)

    @property
    def is_available(self) -> bool:
        """Check if the task can still be accepted."""
        return self.status == TaskStatus.AVAILABLE and self.assigned_to is None

    @property
    def is_ongoing(self) -> bool:
        """Check if the task is between accept and delivery."""
        return self.status in ONGOING_STATUSES

    @property
    def is_delivered(self) -> bool:
        """Check if the task reached its terminal state."""
        return self.status == TaskStatus.DELIVERED

    def code_matches(self, submitted: str | None) -> bool:
        """Exact, case-sensitive comparison against the confirmation code."""
        if not submitted or not self.confirmation_code:
            return False
        return hmac.compare_digest(
            submitted.encode("utf-8"),
            self.confirmation_code.encode("utf-8"),
        )

    def to_storage(self) -> dict[str, Any]:
        """Serialize using the persisted camelCase layout."""
        return self.model_dump(mode="json", by_alias=True)
