"""Execution lifecycle events.

Workers publish events to Redis on ``{EVENT_CHANNEL_PREFIX}:{execution_id}``;
the API process pattern-subscribes and relays them to the WebSocket
rooms of the ConnectionManager.

Message format on the channel:
    {"event": "step_completed", "data": {"execution_id": "...", "timestamp": "...", ...}}
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis
import structlog

from core.constants import ExecutionEvent

logger = structlog.get_logger(__name__)


class EventSink(Protocol):
    """Anything the engine can emit lifecycle events into."""

    async def emit(self, execution_id: str, event: str, payload: dict[str, Any]) -> None:
        ...


def build_event_payload(execution_id: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """Event payload with the execution id and a server timestamp."""
    return {
        **(payload or {}),
        "execution_id": execution_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def channel_for(execution_id: str, prefix: str = "execution") -> str:
    return f"{prefix}:{execution_id}"


class RedisEventPublisher:
    """EventSink that publishes JSON messages on a per-execution channel."""

    def __init__(self, redis_url: str, prefix: str = "execution"):
        self._redis = aioredis.from_url(redis_url)
        self._prefix = prefix

    async def emit(self, execution_id: str, event: str, payload: dict[str, Any]) -> None:
        message = json.dumps(
            {"event": ExecutionEvent(event).value, "data": payload},
            default=str,
        )
        await self._redis.publish(channel_for(execution_id, self._prefix), message)

    async def close(self) -> None:
        await self._redis.aclose()


class RedisEventRelay:
    """Forwards published execution events to a local EventSink (the WebSocket manager)."""

    def __init__(self, redis_url: str, target: EventSink, prefix: str = "execution"):
        self._redis_url = redis_url
        self._target = target
        self._prefix = prefix
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def handle_message(self, channel: Any, data: Any) -> None:
        """Decode one pub/sub message and forward it."""
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        execution_id = str(channel).split(":", 1)[-1]
        try:
            message = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Dropping malformed execution event", channel=channel)
            return

        await self._target.emit(execution_id, message.get("event", ""), message.get("data") or {})

    async def _listen(self) -> None:
        client = aioredis.from_url(self._redis_url)
        pubsub = client.pubsub()
        try:
            await pubsub.psubscribe(f"{self._prefix}:*")
            logger.info("Relaying execution events", pattern=f"{self._prefix}:*")
            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                try:
                    await self.handle_message(message["channel"], message["data"])
                except Exception as exc:
                    logger.error("Failed to relay execution event", error=str(exc))
        except asyncio.CancelledError:
            logger.info("Execution event relay stopped")
            raise
        except Exception as exc:
            logger.error("Execution event relay crashed", error=str(exc))
        finally:
            await pubsub.aclose()
            await client.aclose()
