"""Remote task gateway interface."""

from typing import Protocol

from delivery_engine.models.earnings import EarningsPeriod, EarningsSummary
from delivery_engine.models.task import Task, TaskStatus


class RemoteTaskGateway(Protocol):
    """Backend API for delivery tasks.

    Implementations raise :class:`~delivery_engine.errors.GatewayUnavailable`
    for transport problems and the other ``DeliveryError`` subclasses for
    rejections the backend made on purpose (duplicate accept, unknown task).
    """

    async def list_available(self) -> list[Task]: ...

    async def accept(self, task_id: str) -> Task: ...

    async def update_status(self, task_id: str, status: TaskStatus) -> None: ...

    async def list_completed(self) -> list[Task]: ...

    async def get_earnings(self, period: EarningsPeriod) -> EarningsSummary: ...

    async def set_availability(self, online: bool) -> None: ...
