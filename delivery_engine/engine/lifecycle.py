"""Task lifecycle engine - moves delivery tasks from available to delivered."""

import asyncio
import secrets
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import ValidationError

from delivery_engine.config import get_settings
from delivery_engine.engine.earnings import EarningsAggregator, history, summarize
from delivery_engine.errors import (
    AlreadyAssigned,
    CodeMismatch,
    DeliveryError,
    ErrorKind,
    GatewayUnavailable,
    InvalidTransition,
    TaskNotFound,
)
from delivery_engine.gateway.base import RemoteTaskGateway
from delivery_engine.models.actor import Actor
from delivery_engine.models.earnings import (
    EarningsHistory,
    EarningsPeriod,
    EarningsSnapshot,
    EarningsSummary,
    Payout,
)
from delivery_engine.models.events import (
    EarningsUpdatedEvent,
    OngoingUpdatedEvent,
    TaskCompletedEvent,
)
from delivery_engine.models.money import money_to_json
from delivery_engine.models.result import CompletionOutcome, OperationResult
from delivery_engine.models.task import ONGOING_STATUSES, Task, TaskStatus
from delivery_engine.state.events import EventBroadcaster, Subscriber, Topic
from delivery_engine.state.manager import MirrorKey, MirrorStore
from delivery_engine.utils.logging import LifecycleLogger, get_logger

logger = get_logger(__name__)

R = TypeVar("R")

# Partition keys watched for writes made by other processes.
WATCHED_KEYS = (
    MirrorKey.AVAILABLE_TASKS,
    MirrorKey.ONGOING_DELIVERIES,
    MirrorKey.COMPLETED_TASKS,
    MirrorKey.PAYOUTS,
)


class TaskLifecycleEngine:
    """
    Lifecycle engine for one logged-in delivery partner.

    Responsibilities:
    - Keep the available / ongoing / completed partitions disjoint
    - Ask the gateway first while online, fall back to the mirror when it fails
    - Require the confirmation code before a task becomes Delivered
    - Recompute earnings and notify subscribers on every change

    Every public operation returns an :class:`OperationResult`; lifecycle
    errors never escape as exceptions. Operations are serialized by a
    single per-session lock.
    """

    def __init__(
        self,
        actor: Actor,
        store: MirrorStore,
        gateway: RemoteTaskGateway | None = None,
        broadcaster: EventBroadcaster | None = None,
        aggregator: EarningsAggregator | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        if not actor.is_delivery_partner:
            raise ValueError(f"Actor {actor.id} with role {actor.role.value} cannot deliver tasks")

        self.actor = actor
        self.store = store
        self.gateway = gateway
        self.settings = get_settings()
        self.events = broadcaster or EventBroadcaster()
        self.earnings_aggregator = aggregator or EarningsAggregator()
        self.logger = LifecycleLogger(actor.id)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._lock = asyncio.Lock()
        self._available: dict[str, Task] = {}
        self._ongoing: dict[str, Task] = {}
        self._completed: dict[str, Task] = {}
        self._payouts: list[Payout] = []
        self._online = self.settings.start_online
        self._unsubscribers: list[Callable[[], None]] = []

    # ---- read accessors ----

    @property
    def online(self) -> bool:
        """Whether operations try the gateway first."""
        return self._online

    @property
    def available(self) -> list[Task]:
        return list(self._available.values())

    @property
    def ongoing(self) -> list[Task]:
        return list(self._ongoing.values())

    @property
    def completed(self) -> list[Task]:
        return list(self._completed.values())

    @property
    def payouts(self) -> list[Payout]:
        return list(self._payouts)

    @property
    def _use_gateway(self) -> bool:
        return self._online and self.gateway is not None

    def earnings(self, now: datetime | None = None) -> EarningsSnapshot:
        """Current earnings snapshot."""
        return self.earnings_aggregator.current(
            self._completed.values(), self._payouts, now or self._clock()
        )

    def earnings_history(self) -> EarningsHistory:
        """Per-day and per-week totals of completed deliveries."""
        return history(self._completed.values(), self.earnings_aggregator.tz)

    # ---- subscriptions ----

    def on_task_completed(self, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to TaskCompleted events."""
        return self.events.subscribe(Topic.TASK_COMPLETED, callback)

    def on_earnings_updated(self, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to EarningsUpdated events."""
        return self.events.subscribe(Topic.EARNINGS_UPDATED, callback)

    def on_ongoing_updated(self, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to OngoingUpdated events."""
        return self.events.subscribe(Topic.ONGOING_UPDATED, callback)

    # ---- session lifecycle ----

    async def load(self) -> None:
        """Rebuild the session from the mirror, then refresh once if online."""
        async with self._lock:
            status = await self.store.get(MirrorKey.STATUS)
            if status in ("on", "off"):
                self._online = status == "on"
            await self._reload_from_store()

        logger.info(
            "session_loaded",
            actor_id=self.actor.id,
            online=self._online,
            available=len(self._available),
            ongoing=len(self._ongoing),
            completed=len(self._completed),
        )

        if self._online:
            await self.refresh()

    async def reload_from_store(self) -> None:
        """Re-read partitions written elsewhere and notify subscribers."""
        async with self._lock:
            await self._reload_from_store()
        self._publish_ongoing()
        self._publish_earnings()

    async def watch_store(self) -> None:
        """Follow writes other processes make to this partner's mirror."""
        if self._unsubscribers:
            return
        for key in WATCHED_KEYS:
            unsubscribe = await self.store.subscribe_external(key, self._on_external_change)
            self._unsubscribers.append(unsubscribe)

    async def close(self) -> None:
        """Tear down subscriptions held by this session."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        await self.events.drain()
        self.events.clear()

    async def _on_external_change(self, key: str) -> None:
        logger.debug("mirror_changed_externally", actor_id=self.actor.id, key=key)
        await self.reload_from_store()

    async def go_online(self) -> OperationResult[bool]:
        """Start trying the gateway first."""
        return await self._set_online(True)

    async def go_offline(self) -> OperationResult[bool]:
        """Operate against the mirror only. Nothing is queued for replay."""
        return await self._set_online(False)

    async def _set_online(self, online: bool) -> OperationResult[bool]:
        async with self._lock:
            self._online = online
            warnings = await self._persist("set_online", MirrorKey.STATUS)

        logger.info("online_status_changed", actor_id=self.actor.id, online=online)

        if self.gateway is not None:
            try:
                await self._call_gateway(
                    "set_availability", lambda: self.gateway.set_availability(online)
                )
            except DeliveryError as e:
                self.logger.log_gateway_fallback("set_availability", e.message)

        return OperationResult.ok(online, warnings)

    # ---- lifecycle operations ----

    async def list_available(self) -> OperationResult[list[Task]]:
        """Tasks open for acceptance; the cached set when the gateway fails."""
        async with self._lock:
            warnings = await self._refresh_available()
            return OperationResult.ok(self.available, warnings)

    async def accept(self, task_id: str, actor: Actor | None = None) -> OperationResult[Task]:
        """Claim an available task and attach its confirmation code."""
        actor = actor or self.actor
        async with self._lock:
            try:
                accepted, source, previous, warnings = await self._accept(task_id, actor)
            except DeliveryError as e:
                self.logger.log_rejected("accept", task_id, e.kind.value, message=e.message)
                return OperationResult.fail(e)

        self.logger.log_transition(task_id, previous.value, accepted.status.value, source)
        self._publish_ongoing()
        return OperationResult.ok(accepted, warnings)

    async def set_status(
        self,
        task_id: str,
        new_status: TaskStatus | str,
    ) -> OperationResult[Task]:
        """Move an ongoing task between the in-progress statuses."""
        async with self._lock:
            try:
                updated, source, previous, warnings = await self._set_status(task_id, new_status)
            except DeliveryError as e:
                self.logger.log_rejected("set_status", task_id, e.kind.value, message=e.message)
                return OperationResult.fail(e)

        self.logger.log_transition(task_id, previous.value, updated.status.value, source)
        self._publish_ongoing()
        return OperationResult.ok(updated, warnings)

    async def complete(
        self,
        task_id: str,
        code: str | None,
    ) -> OperationResult[CompletionOutcome]:
        """Mark an ongoing task Delivered once the confirmation code matches."""
        async with self._lock:
            try:
                delivered, source, previous, warnings = await self._complete(task_id, code)
            except DeliveryError as e:
                self.logger.log_rejected("complete", task_id, e.kind.value, message=e.message)
                return OperationResult.fail(e)

        self.logger.log_transition(
            task_id,
            previous.value,
            delivered.status.value,
            source,
            delivery_fee=str(delivered.delivery_fee),
        )
        self.events.publish(
            Topic.TASK_COMPLETED,
            TaskCompletedEvent(
                task_id=delivered.id,
                delivery_fee=delivered.delivery_fee,
                actor_id=self.actor.id,
            ),
        )
        self._publish_ongoing()
        self._publish_earnings()

        return OperationResult.ok(
            CompletionOutcome(task=delivered, fee_credited=delivered.delivery_fee),
            warnings,
        )

    async def refresh(self) -> OperationResult[None]:
        """One gateway round: available tasks plus completed deliveries."""
        async with self._lock:
            warnings = await self._refresh_available()
            changed, more = await self._sync_completed()
            warnings.extend(more)

        if changed:
            self._publish_ongoing()
            self._publish_earnings()
        return OperationResult.ok(None, warnings)

    async def sync_completed(self) -> OperationResult[list[Task]]:
        """Merge deliveries the backend knows about into the completed partition."""
        async with self._lock:
            changed, warnings = await self._sync_completed()

        if changed:
            self._publish_ongoing()
            self._publish_earnings()
        return OperationResult.ok(self.completed, warnings)

    async def seed_available(self, tasks: list[Task]) -> OperationResult[list[Task]]:
        """Populate an empty available partition, e.g. with demo tasks."""
        async with self._lock:
            if self._available:
                return OperationResult.ok(self.available)

            for task in tasks:
                if task.id in self._ongoing or task.id in self._completed:
                    continue
                self._available[task.id] = task.model_copy(
                    update={"status": TaskStatus.AVAILABLE, "assigned_to": None}
                )
            warnings = await self._persist("seed_available", MirrorKey.AVAILABLE_TASKS)
            return OperationResult.ok(self.available, warnings)

    async def record_payout(
        self,
        amount: Any,
        date: datetime | None = None,
    ) -> OperationResult[Payout]:
        """Append a transfer to the payout ledger.

        A negative or non-numeric amount fails with ``InvalidTransition``.
        """
        try:
            payout = Payout(amount=amount, date=date or self._clock())
        except (ValidationError, ValueError):
            logger.warning("payout_rejected", actor_id=self.actor.id, amount=str(amount))
            return OperationResult.fail(
                InvalidTransition(f"Invalid payout amount: {amount}")
            )

        async with self._lock:
            self._payouts.append(payout)
            self.earnings_aggregator.invalidate()
            warnings = await self._persist("record_payout", MirrorKey.PAYOUTS)

        logger.info("payout_recorded", actor_id=self.actor.id, amount=str(payout.amount))
        self._publish_earnings()
        return OperationResult.ok(payout, warnings)

    async def fetch_earnings(
        self,
        period: EarningsPeriod | str = EarningsPeriod.MONTH,
    ) -> OperationResult[EarningsSummary]:
        """Backend earnings for a period, or the local equivalent."""
        try:
            period = EarningsPeriod(period)
        except ValueError:
            return OperationResult.fail(
                InvalidTransition(f"Unknown earnings period: {period}")
            )

        if self._use_gateway:
            try:
                summary = await self._call_gateway(
                    "get_earnings", lambda: self.gateway.get_earnings(period)
                )
                return OperationResult.ok(summary)
            except DeliveryError as e:
                self.logger.log_gateway_fallback("get_earnings", e.message, period=period.value)

        return OperationResult.ok(
            summarize(
                self._completed.values(),
                period,
                self._clock(),
                self.earnings_aggregator.tz,
            )
        )

    # ---- internals (called with the lock held) ----

    async def _accept(
        self, task_id: str, actor: Actor
    ) -> tuple[Task, str, TaskStatus, list[ErrorKind]]:
        if actor.id != self.actor.id or not actor.is_delivery_partner:
            raise InvalidTransition(
                f"Actor {actor.id} cannot accept tasks in this session", task_id
            )
        if task_id in self._ongoing or task_id in self._completed:
            raise AlreadyAssigned(f"Task {task_id} is no longer available", task_id)

        local = self._available.get(task_id)
        remote: Task | None = None
        source = "local"

        if self._use_gateway:
            try:
                remote = await self._call_gateway("accept", lambda: self.gateway.accept(task_id))
                source = "gateway"
            except (AlreadyAssigned, TaskNotFound):
                # Someone else has it; stop offering it.
                if self._available.pop(task_id, None) is not None:
                    await self._persist("accept", MirrorKey.AVAILABLE_TASKS)
                raise
            except GatewayUnavailable as e:
                self.logger.log_gateway_fallback("accept", e.message, task_id=task_id)

        if remote is None and (local is None or not local.is_available):
            raise AlreadyAssigned(f"Task {task_id} is no longer available", task_id)

        base = self._merge(local, remote) if remote is not None else local
        accepted = base.model_copy(
            update={
                "status": TaskStatus.ASSIGNED,
                "assigned_to": actor.id,
                "accepted_at": base.accepted_at or self._clock(),
                "confirmation_code": base.confirmation_code or self._generate_code(),
                "completed_at": None,
            }
        )

        self._available.pop(task_id, None)
        self._ongoing[task_id] = accepted
        warnings = await self._persist(
            "accept", MirrorKey.AVAILABLE_TASKS, MirrorKey.ONGOING_DELIVERIES
        )
        previous = local.status if local is not None else TaskStatus.AVAILABLE
        return accepted, source, previous, warnings

    async def _set_status(
        self, task_id: str, new_status: TaskStatus | str
    ) -> tuple[Task, str, TaskStatus, list[ErrorKind]]:
        try:
            target = TaskStatus.parse(new_status)
        except ValueError as e:
            raise InvalidTransition(str(e), task_id) from e

        if target == TaskStatus.DELIVERED:
            raise InvalidTransition(
                "Delivered is only reachable by completing with the confirmation code",
                task_id,
            )
        if target not in ONGOING_STATUSES:
            raise InvalidTransition(f"Cannot move an accepted task to {target.value}", task_id)

        task = self._ongoing.get(task_id)
        if task is None:
            raise InvalidTransition(f"Task {task_id} is not an ongoing delivery", task_id)

        source = "local"
        if self._use_gateway:
            try:
                await self._call_gateway(
                    "update_status", lambda: self.gateway.update_status(task_id, target)
                )
                source = "gateway"
            except GatewayUnavailable as e:
                self.logger.log_gateway_fallback("update_status", e.message, task_id=task_id)

        updated = task.model_copy(update={"status": target})
        self._ongoing[task_id] = updated
        warnings = await self._persist("set_status", MirrorKey.ONGOING_DELIVERIES)
        return updated, source, task.status, warnings

    async def _complete(
        self, task_id: str, code: str | None
    ) -> tuple[Task, str, TaskStatus, list[ErrorKind]]:
        task = self._ongoing.get(task_id)
        if task is None:
            raise TaskNotFound(f"Task {task_id} is not an ongoing delivery", task_id)
        if not task.code_matches(code):
            raise CodeMismatch("Incorrect confirmation code", task_id)

        source = "local"
        if self._use_gateway:
            try:
                await self._call_gateway(
                    "complete",
                    lambda: self.gateway.update_status(task_id, TaskStatus.DELIVERED),
                )
                source = "gateway"
            except GatewayUnavailable as e:
                self.logger.log_gateway_fallback("complete", e.message, task_id=task_id)

        delivered = task.model_copy(
            update={"status": TaskStatus.DELIVERED, "completed_at": self._clock()}
        )
        del self._ongoing[task_id]
        self._completed[task_id] = delivered
        self.earnings_aggregator.invalidate()

        warnings = await self._persist(
            "complete",
            MirrorKey.ONGOING_DELIVERIES,
            MirrorKey.COMPLETED_TASKS,
            MirrorKey.EARNINGS_TOTAL,
        )
        return delivered, source, task.status, warnings

    async def _refresh_available(self) -> list[ErrorKind]:
        if not self._use_gateway:
            return []

        try:
            fresh = await self._call_gateway("list_available", self.gateway.list_available)
        except DeliveryError as e:
            self.logger.log_gateway_fallback("list_available", e.message)
            return []

        self._available = {
            task.id: task
            for task in fresh
            if task.is_available
            and task.id not in self._ongoing
            and task.id not in self._completed
        }
        return await self._persist("list_available", MirrorKey.AVAILABLE_TASKS)

    async def _sync_completed(self) -> tuple[bool, list[ErrorKind]]:
        if not self._use_gateway:
            return False, []

        try:
            remote = await self._call_gateway("list_completed", self.gateway.list_completed)
        except DeliveryError as e:
            self.logger.log_gateway_fallback("list_completed", e.message)
            return False, []

        changed = False
        for task in remote:
            if not task.is_delivered or task.id in self._completed:
                continue
            if task.completed_at is None:
                task = task.model_copy(update={"completed_at": self._clock()})
            self._available.pop(task.id, None)
            self._ongoing.pop(task.id, None)
            self._completed[task.id] = task
            changed = True

        if not changed:
            return False, []

        self.earnings_aggregator.invalidate()
        warnings = await self._persist(
            "sync_completed",
            MirrorKey.AVAILABLE_TASKS,
            MirrorKey.ONGOING_DELIVERIES,
            MirrorKey.COMPLETED_TASKS,
            MirrorKey.EARNINGS_TOTAL,
        )
        return True, warnings

    async def _reload_from_store(self) -> None:
        completed = await self._load_tasks(MirrorKey.COMPLETED_TASKS)
        ongoing = {
            task_id: task
            for task_id, task in (await self._load_tasks(MirrorKey.ONGOING_DELIVERIES)).items()
            if task_id not in completed
        }
        available = {
            task_id: task
            for task_id, task in (await self._load_tasks(MirrorKey.AVAILABLE_TASKS)).items()
            if task_id not in completed and task_id not in ongoing
        }

        # Deliveries accepted by older clients may lack a code; give them one
        # so they can still be completed.
        missing_code = [task_id for task_id, task in ongoing.items() if not task.confirmation_code]
        for task_id in missing_code:
            ongoing[task_id] = ongoing[task_id].model_copy(
                update={"confirmation_code": self._generate_code()}
            )

        self._completed = completed
        self._ongoing = ongoing
        self._available = available
        self._payouts = await self._load_payouts()
        self.earnings_aggregator.invalidate()

        if missing_code:
            await self._persist("reload", MirrorKey.ONGOING_DELIVERIES)

    async def _load_tasks(self, key: MirrorKey) -> dict[str, Task]:
        raw = await self.store.get(key, [])
        if not isinstance(raw, list):
            logger.warning("mirror_value_not_list", key=key.value)
            return {}

        tasks: dict[str, Task] = {}
        for item in raw:
            try:
                task = Task.model_validate(item)
            except ValidationError as e:
                logger.warning("mirror_task_skipped", key=key.value, error=str(e))
                continue
            tasks[task.id] = task
        return tasks

    async def _load_payouts(self) -> list[Payout]:
        raw = await self.store.get(MirrorKey.PAYOUTS, [])
        if not isinstance(raw, list):
            return []

        payouts: list[Payout] = []
        for item in raw:
            try:
                payouts.append(Payout.model_validate(item))
            except ValidationError as e:
                logger.warning("mirror_payout_skipped", error=str(e))
        return payouts

    async def _persist(self, operation: str, *keys: MirrorKey) -> list[ErrorKind]:
        """Write partitions in the given order; source before destination."""
        values = {key: self._serialize(key) for key in keys}
        if await self.store.set_many(values):
            return []

        self.logger.log_persistence_failure(operation, [key.value for key in keys])
        return [ErrorKind.PERSISTENCE_FAILURE]

    def _serialize(self, key: MirrorKey) -> Any:
        if key == MirrorKey.AVAILABLE_TASKS:
            return [task.to_storage() for task in self._available.values()]
        if key == MirrorKey.ONGOING_DELIVERIES:
            return [task.to_storage() for task in self._ongoing.values()]
        if key == MirrorKey.COMPLETED_TASKS:
            return [task.to_storage() for task in self._completed.values()]
        if key == MirrorKey.PAYOUTS:
            return [payout.model_dump(mode="json") for payout in self._payouts]
        if key == MirrorKey.EARNINGS_TOTAL:
            return money_to_json(self.earnings().all_time)
        if key == MirrorKey.STATUS:
            return "on" if self._online else "off"
        raise KeyError(key)

    async def _call_gateway(self, operation: str, call: Callable[[], Awaitable[R]]) -> R:
        """Run a gateway call under the configured timeout.

        Anything other than a lifecycle rejection is reported as
        ``GatewayUnavailable`` so callers can degrade to the mirror.
        """
        if self.gateway is None:
            raise GatewayUnavailable("No gateway configured")

        try:
            return await asyncio.wait_for(call(), timeout=self.settings.gateway_timeout_seconds)
        except DeliveryError:
            raise
        except asyncio.TimeoutError as e:
            raise GatewayUnavailable(f"{operation} timed out") from e
        except Exception as e:
            logger.error("gateway_call_failed", operation=operation, error=str(e))
            raise GatewayUnavailable(f"{operation} failed: {e}") from e

    @staticmethod
    def _merge(local: Task | None, remote: Task) -> Task:
        """Gateway fields win; local-only details (vendor, customer) survive."""
        if local is None:
            return remote
        data = local.to_storage()
        reported = remote.model_dump(mode="json", by_alias=True, exclude_unset=True)
        data.update({k: v for k, v in reported.items() if v is not None})
        return Task.model_validate(data)

    def _generate_code(self) -> str:
        digits = self.settings.confirmation_code_length
        low = 10 ** (digits - 1)
        return str(low + secrets.randbelow(9 * low))

    def _publish_ongoing(self) -> None:
        self.events.publish(
            Topic.ONGOING_UPDATED,
            OngoingUpdatedEvent(actor_id=self.actor.id, task_ids=list(self._ongoing)),
        )

    def _publish_earnings(self) -> None:
        self.events.publish(
            Topic.EARNINGS_UPDATED,
            EarningsUpdatedEvent(actor_id=self.actor.id, snapshot=self.earnings()),
        )
