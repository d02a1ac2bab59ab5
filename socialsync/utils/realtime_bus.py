import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from bson import ObjectId
from redis.exceptions import RedisError

from socialsync.config import get_settings
from socialsync.errors import TransientNetworkError
from socialsync.utils.time import ensure_utc


logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]

# columns a subscriber may filter each table on
FILTER_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "messages": ("conversation_id",),
    "notifications": ("recipient_id",),
    "conversation_members": ("conversation_id", "user_id"),
    "conversations": ("_id",),
    "follows": ("follower_id", "following_id"),
}

_CLOSED = object()


def channel_for(table: str, column: str, value: str) -> str:
    return f"realtime:{table}:{column}={value}"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    raise TypeError(f"Cannot serialize {type(value).__name__}")


class InMemoryBus:
    """Single-process fanout used when no Redis is configured."""

    def __init__(self) -> None:
        self._queues: Dict[str, List[asyncio.Queue]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._queues.get(channel, [])):
            queue.put_nowait(message)

    async def subscribe(self, channel: str, on_message: OnMessage):
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(channel, []).append(queue)
        bus = self

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    data = await queue.get()
                    if data is _CLOSED:
                        break
                    await on_message(data)

            async def cancel(self_inner):
                self_inner._running = False
                bus._discard(channel, queue)
                queue.put_nowait(_CLOSED)

        return _Sub()

    def subscriber_count(self, channel: Optional[str] = None) -> int:
        if channel is not None:
            return len(self._queues.get(channel, []))
        return sum(len(queues) for queues in self._queues.values())

    def _discard(self, channel: str, queue: asyncio.Queue) -> None:
        queues = self._queues.get(channel)
        if not queues:
            return
        try:
            queues.remove(queue)
        except ValueError:
            pass
        if not queues:
            del self._queues[channel]


class RedisBus:

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage):
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as exc:
            raise TransientNetworkError(f"subscribe to {channel} failed: {exc}") from exc

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except RedisError as exc:
                        raise TransientNetworkError(f"lost subscription to {channel}: {exc}") from exc
                    if msg and msg.get("type") == "message":
                        data = msg.get("data")
                        if isinstance(data, bytes):
                            data = data.decode("utf-8")
                        await on_message(data)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except RedisError as exc:
                    logger.debug(f"unsubscribe from {channel} failed: {exc}")

        return _Sub()


class ChangeFeed:
    """Publishes row changes the way the hosted realtime feed does: one event per write."""

    def __init__(self, bus) -> None:
        self._bus = bus

    @property
    def bus(self):
        return self._bus

    async def publish_change(
        self,
        table: str,
        event_type: str,
        new: Optional[Dict[str, Any]] = None,
        old: Optional[Dict[str, Any]] = None,
    ) -> None:
        record = new if new is not None else (old or {})
        payload = json.dumps(
            {"eventType": event_type, "table": table, "new": new, "old": old},
            default=_json_default,
        )
        for column in FILTER_COLUMNS.get(table, ()):
            value = record.get(column)
            if value is None:
                continue
            try:
                await self._bus.publish(channel_for(table, column, str(value)), payload)
            except (RedisError, OSError) as exc:
                # the write already happened; subscribers catch up on resubscribe
                logger.warning(f"Could not publish {event_type} on {table}: {exc}")

    async def subscribe(self, table: str, column: str, value: str, on_message: OnMessage):
        return await self._bus.subscribe(channel_for(table, column, value), on_message)


_bus = None


def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().redis_url
    _bus = RedisBus(url) if url else InMemoryBus()
    return _bus


def set_bus(bus) -> None:
    global _bus
    _bus = bus


def get_feed() -> ChangeFeed:
    return ChangeFeed(get_bus())
