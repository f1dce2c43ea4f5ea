"""WebSocket handlers streaming lifecycle events to a partner's screens."""

import asyncio
import contextlib
import json
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from delivery_engine.engine.session import SessionRegistry
from delivery_engine.state.events import Topic
from delivery_engine.utils.logging import get_logger

logger = get_logger(__name__)


class WebSocketMessage(BaseModel):
    """Client-to-server message format."""

    type: str  # "ping", "refresh"
    metadata: dict[str, Any] = {}


def event_message(topic: Topic, payload: Any) -> dict[str, Any]:
    """Wire form of a broadcaster event."""
    body = payload
    if isinstance(payload, BaseModel):
        body = payload.model_dump(mode="json", by_alias=True)
    return {"type": "event", "topic": topic.value, "payload": body}


class ConnectionManager:
    """Tracks open sockets per delivery partner."""

    def __init__(self) -> None:
        self.active_connections: dict[str, set[WebSocket]] = {}

    async def connect(self, actor_id: str, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(actor_id, set()).add(websocket)
        logger.info("websocket_connected", actor_id=actor_id)

    def disconnect(self, actor_id: str, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        sockets = self.active_connections.get(actor_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.active_connections[actor_id]
        logger.info("websocket_disconnected", actor_id=actor_id)

    def connection_count(self, actor_id: str) -> int:
        return len(self.active_connections.get(actor_id, ()))

    async def close_actor(self, actor_id: str, code: int = 1001) -> int:
        """Close every socket of a partner whose session is ending."""
        sockets = self.active_connections.pop(actor_id, set())
        for websocket in sockets:
            # The peer may already be gone.
            with contextlib.suppress(Exception):
                await websocket.close(code=code, reason="Delivery session closed")
        if sockets:
            logger.info("websocket_sessions_closed", actor_id=actor_id, count=len(sockets))
        return len(sockets)

    async def close_all(self) -> None:
        for actor_id in list(self.active_connections):
            await self.close_actor(actor_id)


# Global connection manager
manager = ConnectionManager()


async def handle_delivery_socket(
    websocket: WebSocket,
    actor_id: str,
    sessions: SessionRegistry,
) -> None:
    """
    Stream TaskCompleted, OngoingUpdated and EarningsUpdated events.

    Args:
        websocket: WebSocket connection
        actor_id: Partner whose session is followed
        sessions: Registry holding the partner's engine
    """
    engine = sessions.get(actor_id)
    if engine is None:
        await websocket.close(code=1008, reason="No active delivery session")
        return

    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def forward(topic: Topic):
        def callback(payload: Any) -> None:
            queue.put_nowait(event_message(topic, payload))

        return callback

    unsubscribers = [
        engine.events.subscribe(topic, forward(topic)) for topic in Topic
    ]

    await manager.connect(actor_id, websocket)
    await websocket.send_json(
        {
            "type": "connected",
            "actorId": actor_id,
            "online": engine.online,
            "earnings": engine.earnings().model_dump(mode="json", by_alias=True),
        }
    )

    async def send_events() -> None:
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(send_events())

    try:
        while True:
            data = await websocket.receive_text()

            try:
                ws_message = WebSocketMessage(**json.loads(data))
            except (ValidationError, json.JSONDecodeError, TypeError) as e:
                await websocket.send_json(
                    {
                        "type": "error",
                        "message": "Invalid message format",
                        "details": str(e),
                    }
                )
                continue

            if ws_message.type == "ping":
                await websocket.send_json({"type": "pong"})
            elif ws_message.type == "refresh":
                result = await engine.refresh()
                await websocket.send_json(
                    {
                        "type": "refreshed",
                        "warnings": [w.value for w in result.warnings],
                    }
                )

    except WebSocketDisconnect:
        logger.info("websocket_client_disconnected", actor_id=actor_id)

    except Exception as e:
        logger.error("websocket_error", actor_id=actor_id, error=str(e))

    finally:
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await sender
        for unsubscribe in unsubscribers:
            unsubscribe()
        manager.disconnect(actor_id, websocket)
