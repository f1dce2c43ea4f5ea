"""Redis-backed local mirror of the delivery partner's task partitions."""

import asyncio
import inspect
import json
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError

from delivery_engine.config import get_settings
from delivery_engine.utils.logging import get_logger

logger = get_logger(__name__)

ExternalCallback = Callable[[str], Awaitable[None] | None]


class MirrorKey(str, Enum):
    """Keys of the persisted collections.

    The names match what the browser client kept in localStorage so an
    exported profile can be loaded as-is.
    """

    AVAILABLE_TASKS = "availableTasks"
    ONGOING_DELIVERIES = "ongoingDeliveries"
    COMPLETED_TASKS = "agora_completed_tasks"
    PAYOUTS = "agora_payouts"
    EARNINGS_TOTAL = "agora_earnings"
    STATUS = "agora_status"


class MirrorStore:
    """Durable JSON key-value cache, the fallback source of truth.

    Reads never raise: a missing key, corrupt JSON or a lost connection all
    yield the caller's default. Writes are best-effort and report success as
    a boolean instead of raising.

    Every write is announced on a pub/sub channel so that other store
    instances (other processes, other workers) can refresh their view.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        namespace: str = "",
        channel: str | None = None,
    ) -> None:
        settings = get_settings()
        self.redis_client = redis_client
        self.redis_url = settings.redis_url
        self.namespace = namespace
        self.channel = channel or settings.mirror_channel
        self.instance_id = uuid4().hex
        self._owns_client = redis_client is None
        self._callbacks: dict[str, list[ExternalCallback]] = {}
        self._pubsub: Any = None
        self._listener: asyncio.Task[None] | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            self._owns_client = True
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Stop the change listener and close an owned Redis connection."""
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except RedisError as e:
                logger.warning("mirror_pubsub_close_failed", error=str(e))
            self._pubsub = None

        if self.redis_client is not None and self._owns_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    def _key(self, key: str | MirrorKey) -> str:
        """Generate the namespaced Redis key."""
        name = key.value if isinstance(key, MirrorKey) else key
        return f"{self.namespace}{name}"

    async def get(self, key: str | MirrorKey, default: Any = None) -> Any:
        """Get a value, falling back to ``default`` on any failure."""
        try:
            if not self.redis_client:
                await self.connect()
            raw = await self.redis_client.get(self._key(key))
        except (RedisError, OSError) as e:
            logger.warning("mirror_read_failed", key=self._key(key), error=str(e))
            return default

        if raw is None:
            return default

        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
            logger.warning("mirror_parse_failed", key=self._key(key))
            return default

    async def set(self, key: str | MirrorKey, value: Any) -> bool:
        """Serialize and persist one value."""
        return await self.set_many({key: value})

    async def set_many(self, values: dict[str | MirrorKey, Any]) -> bool:
        """Persist several values in one transaction, in insertion order.

        Returns False when the write did not land; the failure is logged and
        never raised.
        """
        if not values:
            return True

        try:
            payloads = {self._key(k): json.dumps(v) for k, v in values.items()}
        except (TypeError, ValueError) as e:
            logger.error("persistence_failure", keys=[str(k) for k in values], error=str(e))
            return False

        try:
            if not self.redis_client:
                await self.connect()

            async with self.redis_client.pipeline(transaction=True) as pipe:
                for full_key, payload in payloads.items():
                    pipe.set(full_key, payload)
                for full_key in payloads:
                    pipe.publish(self.channel, self._change_message(full_key))
                await pipe.execute()
        except (RedisError, OSError) as e:
            logger.error("persistence_failure", keys=list(payloads), error=str(e))
            return False

        logger.debug("mirror_set", keys=list(payloads))
        return True

    async def delete(self, *keys: str | MirrorKey) -> bool:
        """Delete keys; returns False when Redis is unreachable."""
        if not keys:
            return True
        try:
            if not self.redis_client:
                await self.connect()
            await self.redis_client.delete(*(self._key(k) for k in keys))
        except (RedisError, OSError) as e:
            logger.error("mirror_delete_failed", keys=[str(k) for k in keys], error=str(e))
            return False
        logger.debug("mirror_deleted", keys=[self._key(k) for k in keys])
        return True

    def _change_message(self, full_key: str) -> str:
        return json.dumps({"key": full_key, "origin": self.instance_id})

    async def subscribe_external(
        self,
        key: str | MirrorKey,
        callback: ExternalCallback,
    ) -> Callable[[], None]:
        """Call ``callback(key)`` whenever another store instance writes ``key``.

        Writes made through this instance are not reported back to it.
        Returns an unsubscribe function.
        """
        full_key = self._key(key)
        self._callbacks.setdefault(full_key, []).append(callback)
        await self._ensure_listener()

        def unsubscribe() -> None:
            callbacks = self._callbacks.get(full_key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    async def _ensure_listener(self) -> None:
        if self._listener is not None:
            return
        if not self.redis_client:
            await self.connect()

        self._pubsub = self.redis_client.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._listener = asyncio.create_task(self._listen())
        logger.debug("mirror_listener_started", channel=self.channel)

    async def _listen(self) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
            except (RedisError, OSError) as e:
                logger.warning("mirror_listener_error", error=str(e))
                await asyncio.sleep(1.0)
                continue

            if message is None:
                await asyncio.sleep(0.05)
                continue

            await self._dispatch(message.get("data"))

    async def _dispatch(self, data: Any) -> None:
        try:
            change = json.loads(data)
            full_key = change["key"]
            origin = change.get("origin")
        except (json.JSONDecodeError, TypeError, KeyError):
            logger.warning("mirror_change_malformed", data=str(data)[:200])
            return

        if origin == self.instance_id:
            return

        for callback in list(self._callbacks.get(full_key, [])):
            name = full_key[len(self.namespace):]
            try:
                result = callback(name)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("mirror_callback_failed", key=full_key, error=str(e))


def actor_namespace(actor_id: str) -> str:
    """Key prefix isolating one delivery partner's mirror."""
    return f"delivery:{actor_id}:"
