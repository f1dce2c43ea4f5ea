"""Per-partner engine sessions: created on login, torn down on logout."""

import asyncio
from typing import Callable

import redis.asyncio as redis

from delivery_engine.config import get_settings
from delivery_engine.engine.lifecycle import TaskLifecycleEngine
from delivery_engine.engine.poller import GatewayPoller
from delivery_engine.gateway.base import RemoteTaskGateway
from delivery_engine.gateway.http import HttpTaskGateway
from delivery_engine.models.actor import Actor
from delivery_engine.state.manager import MirrorStore, actor_namespace
from delivery_engine.utils.logging import get_logger

logger = get_logger(__name__)

GatewayFactory = Callable[[Actor], RemoteTaskGateway | None]


def http_gateway_factory(actor: Actor) -> RemoteTaskGateway:
    """Default gateway: the backend REST API, identified as ``actor``."""
    return HttpTaskGateway(actor_id=actor.id)


class SessionRegistry:
    """Holds one lifecycle engine per logged-in delivery partner.

    All sessions share one Redis client; each gets its own key namespace,
    gateway, optional mirror watch and optional gateway poller.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        gateway_factory: GatewayFactory | None = None,
        watch_store: bool = True,
        poll: bool = True,
    ):
        settings = get_settings()
        self.redis_client = redis_client or redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._owns_client = redis_client is None
        self.gateway_factory = gateway_factory or http_gateway_factory
        self.watch_store = watch_store
        self.poll = poll
        self._engines: dict[str, TaskLifecycleEngine] = {}
        self._pollers: dict[str, GatewayPoller] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._engines)

    def get(self, actor_id: str) -> TaskLifecycleEngine | None:
        """Return the open session of a partner, if any."""
        return self._engines.get(actor_id)

    async def open(self, actor: Actor) -> TaskLifecycleEngine:
        """Create (or return) the session for ``actor``.

        Raises ``ValueError`` when the actor is not a delivery partner.
        """
        # Concurrent opens for one partner must share a single engine.
        async with self._lock_for(actor.id):
            existing = self._engines.get(actor.id)
            if existing is not None:
                return existing
            return await self._open(actor)

    async def _open(self, actor: Actor) -> TaskLifecycleEngine:
        store = MirrorStore(self.redis_client, namespace=actor_namespace(actor.id))
        engine = TaskLifecycleEngine(actor, store, self.gateway_factory(actor))
        await engine.load()

        if self.watch_store:
            await engine.watch_store()
        if self.poll:
            poller = GatewayPoller(engine)
            poller.start()
            self._pollers[actor.id] = poller

        self._engines[actor.id] = engine
        logger.info("session_opened", actor_id=actor.id, sessions=len(self._engines))
        return engine

    def _lock_for(self, actor_id: str) -> asyncio.Lock:
        return self._locks.setdefault(actor_id, asyncio.Lock())

    async def close(self, actor_id: str) -> bool:
        """Tear down a partner's session; False when none was open."""
        async with self._lock_for(actor_id):
            return await self._close(actor_id)

    async def _close(self, actor_id: str) -> bool:
        engine = self._engines.pop(actor_id, None)
        if engine is None:
            return False

        poller = self._pollers.pop(actor_id, None)
        if poller is not None:
            await poller.stop()

        await engine.close()
        await engine.store.disconnect()

        aclose = getattr(engine.gateway, "aclose", None)
        if aclose is not None:
            await aclose()

        logger.info("session_closed", actor_id=actor_id, sessions=len(self._engines))
        return True

    async def close_all(self) -> None:
        """Close every session and the shared Redis client."""
        for actor_id in list(self._engines):
            await self.close(actor_id)
        if self._owns_client:
            await self.redis_client.aclose()
