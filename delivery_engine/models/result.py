"""Discriminated result returned by every lifecycle operation."""

from decimal import Decimal
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from delivery_engine.errors import DeliveryError, ErrorKind
from delivery_engine.models.money import Money
from delivery_engine.models.task import Task

T = TypeVar("T")


class OperationResult(BaseModel, Generic[T]):
    """Success payload or typed failure.

    ``warnings`` carries non-fatal problems, such as a mirror write that did
    not land after the in-memory transition already happened.
    """

    success: bool
    value: T | None = None
    error: ErrorKind | None = None
    message: str | None = None
    warnings: list[ErrorKind] = Field(default_factory=list)

    @classmethod
    def ok(
        cls,
        value: Any = None,
        warnings: list[ErrorKind] | None = None,
    ) -> "OperationResult[Any]":
        """Build a successful result."""
        return cls(success=True, value=value, warnings=warnings or [])

    @classmethod
    def fail(cls, error: DeliveryError) -> "OperationResult[Any]":
        """Build a failed result from a lifecycle error."""
        return cls(success=False, error=error.kind, message=error.message)


class CompletionOutcome(BaseModel):
    """Payload of a successful delivery completion."""

    task: Task
    fee_credited: Money = Decimal("0")
