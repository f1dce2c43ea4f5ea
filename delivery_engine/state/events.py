"""In-process publish/subscribe for lifecycle notifications."""

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable

from delivery_engine.utils.logging import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[Any], Any]


class Topic(str, Enum):
    """Closed set of topics published by the lifecycle engine."""

    TASK_COMPLETED = "TaskCompleted"
    ONGOING_UPDATED = "OngoingUpdated"
    EARNINGS_UPDATED = "EarningsUpdated"


class EventBroadcaster:
    """Topic-based broadcaster.

    Publishing is fire-and-forget. Plain callables run inline, coroutine
    functions are scheduled on the running loop. A subscriber that raises is
    logged and skipped; the remaining subscribers still run and the
    publisher never sees the error.
    """

    def __init__(self) -> None:
        self._subscribers: dict[Topic, list[Subscriber]] = {topic: [] for topic in Topic}
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, topic: Topic, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        self._subscribers[Topic(topic)].append(callback)

        def unsubscribe() -> None:
            subscribers = self._subscribers[Topic(topic)]
            if callback in subscribers:
                subscribers.remove(callback)

        return unsubscribe

    def subscriber_count(self, topic: Topic) -> int:
        """Number of callbacks registered on a topic."""
        return len(self._subscribers[Topic(topic)])

    def publish(self, topic: Topic, payload: Any) -> None:
        """Deliver ``payload`` to every subscriber of ``topic``."""
        topic = Topic(topic)
        for callback in list(self._subscribers[topic]):
            try:
                result = callback(payload)
            except Exception as e:
                logger.error("subscriber_failed", topic=topic.value, error=str(e))
                continue

            if inspect.isawaitable(result):
                self._schedule(topic, result)

        logger.debug("event_published", topic=topic.value)

    def _schedule(self, topic: Topic, awaitable: Any) -> None:
        async def run() -> None:
            try:
                await awaitable
            except Exception as e:
                logger.error("subscriber_failed", topic=topic.value, error=str(e))

        try:
            task = asyncio.get_running_loop().create_task(run())
        except RuntimeError:
            # No running loop: the coroutine can never run.
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.error("subscriber_not_scheduled", topic=topic.value)
            return

        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until scheduled coroutine subscribers have finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self) -> None:
        """Drop every subscription."""
        for subscribers in self._subscribers.values():
            subscribers.clear()
