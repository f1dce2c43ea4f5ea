"""API routes exposing the delivery lifecycle engine."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field

from delivery_engine.api.websocket import manager
from delivery_engine.engine.lifecycle import TaskLifecycleEngine
from delivery_engine.engine.session import SessionRegistry
from delivery_engine.errors import ErrorKind
from delivery_engine.models.actor import Actor, ActorRole
from delivery_engine.models.earnings import EarningsPeriod
from delivery_engine.models.money import money_to_json
from delivery_engine.models.result import OperationResult
from delivery_engine.models.task import Task
from delivery_engine.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.ALREADY_ASSIGNED: status.HTTP_409_CONFLICT,
    ErrorKind.TASK_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_TRANSITION: 422,
    ErrorKind.CODE_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorKind.GATEWAY_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.PERSISTENCE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# Request Models


class StatusUpdateRequest(BaseModel):
    """New in-progress status for an ongoing delivery."""

    status: str


class CompleteRequest(BaseModel):
    """Confirmation code read out by the recipient."""

    code: str | None = None


class AvailabilityRequest(BaseModel):
    """Online/offline toggle."""

    online: bool


class PayoutRequest(BaseModel):
    """A transfer to record in the payout ledger."""

    amount: Decimal = Field(ge=0)
    date: datetime | None = None


# Dependencies


def get_sessions(request: Request) -> SessionRegistry:
    """Session registry created in the application lifespan."""
    return request.app.state.sessions


async def get_current_actor(
    x_actor_id: str = Header(..., min_length=1),
    x_actor_role: ActorRole = Header(...),
) -> Actor:
    """Identity forwarded by the auth layer."""
    return Actor(id=x_actor_id, role=x_actor_role)


async def get_engine(
    actor: Actor = Depends(get_current_actor),
    sessions: SessionRegistry = Depends(get_sessions),
) -> TaskLifecycleEngine:
    """Engine of the calling partner's open session."""
    engine = sessions.get(actor.id)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No active delivery session",
        )
    return engine


def _unwrap(result: OperationResult[Any]) -> Any:
    if result.success:
        return result.value
    if result.error is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Operation failed without an error kind",
        )
    raise HTTPException(
        status_code=ERROR_STATUS[result.error],
        detail={"error": result.error.value, "message": result.message},
    )


def _tasks(tasks: list[Task]) -> list[dict[str, Any]]:
    return [task.to_storage() for task in tasks]


def _warnings(result: OperationResult[Any]) -> list[str]:
    return [w.value for w in result.warnings]


# Session endpoints


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def open_session(
    actor: Actor = Depends(get_current_actor),
    sessions: SessionRegistry = Depends(get_sessions),
) -> dict[str, Any]:
    """Open the calling partner's engine session (login)."""
    try:
        engine = await sessions.open(actor)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e

    logger.info("session_opened_via_api", actor_id=actor.id)

    return {
        "actorId": actor.id,
        "online": engine.online,
        "available": len(engine.available),
        "ongoing": len(engine.ongoing),
        "completed": len(engine.completed),
    }


@router.delete("/sessions", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(
    actor: Actor = Depends(get_current_actor),
    sessions: SessionRegistry = Depends(get_sessions),
) -> None:
    """Tear down the calling partner's session (logout)."""
    await manager.close_actor(actor.id)
    await sessions.close(actor.id)


# Task endpoints


@router.get("/delivery/tasks/available")
async def list_available(engine: TaskLifecycleEngine = Depends(get_engine)) -> dict[str, Any]:
    """Tasks open for acceptance."""
    result = await engine.list_available()
    return {"tasks": _tasks(_unwrap(result)), "warnings": _warnings(result)}


@router.get("/delivery/tasks/ongoing")
async def list_ongoing(engine: TaskLifecycleEngine = Depends(get_engine)) -> dict[str, Any]:
    """Accepted deliveries not yet confirmed."""
    return {"tasks": _tasks(engine.ongoing)}


@router.get("/delivery/tasks/completed")
async def list_completed(engine: TaskLifecycleEngine = Depends(get_engine)) -> dict[str, Any]:
    """Confirmed deliveries."""
    return {"tasks": _tasks(engine.completed)}


@router.put("/delivery/tasks/{task_id}/accept")
async def accept_task(
    task_id: str,
    engine: TaskLifecycleEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Accept a task; the response carries the confirmation code."""
    result = await engine.accept(task_id)
    task = _unwrap(result)
    return {"task": task.to_storage(), "warnings": _warnings(result)}


@router.put("/delivery/tasks/{task_id}/status")
async def update_task_status(
    task_id: str,
    request: StatusUpdateRequest,
    engine: TaskLifecycleEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Move an ongoing delivery to another in-progress status."""
    result = await engine.set_status(task_id, request.status)
    task = _unwrap(result)
    return {"task": task.to_storage(), "warnings": _warnings(result)}


@router.post("/delivery/tasks/{task_id}/complete")
async def complete_task(
    task_id: str,
    request: CompleteRequest,
    engine: TaskLifecycleEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Confirm delivery with the recipient's code."""
    result = await engine.complete(task_id, request.code)
    outcome = _unwrap(result)

    logger.info(
        "delivery_completed_via_api",
        actor_id=engine.actor.id,
        task_id=task_id,
    )

    return {
        "task": outcome.task.to_storage(),
        "feeCredited": money_to_json(outcome.fee_credited),
        "warnings": _warnings(result),
    }


# Partner status and earnings


@router.put("/delivery/status")
async def update_availability(
    request: AvailabilityRequest,
    engine: TaskLifecycleEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Go online or offline."""
    if request.online:
        result = await engine.go_online()
    else:
        result = await engine.go_offline()
    return {"online": _unwrap(result), "warnings": _warnings(result)}


@router.get("/delivery/earnings")
async def get_earnings(engine: TaskLifecycleEngine = Depends(get_engine)) -> dict[str, Any]:
    """Earnings snapshot derived from completed deliveries and payouts."""
    return engine.earnings().model_dump(mode="json", by_alias=True)


@router.get("/delivery/earnings/summary")
async def get_earnings_summary(
    period: EarningsPeriod = EarningsPeriod.MONTH,
    engine: TaskLifecycleEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Earnings for one period, from the backend when reachable."""
    summary = _unwrap(await engine.fetch_earnings(period))
    return summary.model_dump(mode="json", by_alias=True)


@router.get("/delivery/earnings/history")
async def get_earnings_history(engine: TaskLifecycleEngine = Depends(get_engine)) -> dict[str, Any]:
    """Per-day and per-week totals of completed deliveries."""
    return engine.earnings_history().model_dump(mode="json")


@router.post("/delivery/payouts", status_code=status.HTTP_201_CREATED)
async def record_payout(
    request: PayoutRequest,
    engine: TaskLifecycleEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Record a transfer to the partner."""
    result = await engine.record_payout(request.amount, request.date)
    payout = _unwrap(result)
    return {
        "payout": payout.model_dump(mode="json"),
        "earnings": engine.earnings().model_dump(mode="json", by_alias=True),
        "warnings": _warnings(result),
    }
