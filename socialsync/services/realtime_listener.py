import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from socialsync.config import get_settings
from socialsync.errors import SyncError, TransientNetworkError
from socialsync.schemas.events import ChangeEvent
from socialsync.utils.realtime_bus import ChangeFeed


logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[None]]
Hook = Callable[[], Awaitable[Any]]

RESUBSCRIBE_ERRORS = (TransientNetworkError, ConnectionError, OSError)


@dataclass
class _Scope:

    key: str
    table: str
    column: str
    value: str
    handler: EventHandler
    on_resubscribe: Optional[Hook] = None
    subscription: Any = None
    task: Optional[asyncio.Task] = None
    failed: bool = False
    resubscribes: int = 0


class RealtimeListener:
    """Owns one feed subscription per scope and routes its events to a handler.

    Subscribing a scope that is already open replaces the old subscription.
    Dropped subscriptions are reopened with exponential backoff; after a
    reopen the scope's ``on_resubscribe`` hook runs so the owner can fetch
    whatever it missed.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        on_error: Optional[Callable[[str, Exception], None]] = None,
    ) -> None:
        settings = get_settings()
        self._feed = feed
        self._max_retries = settings.realtime_max_retries if max_retries is None else max_retries
        self._backoff = settings.realtime_backoff_seconds if backoff_seconds is None else backoff_seconds
        self._on_error = on_error
        self._scopes: Dict[str, _Scope] = {}

    @property
    def active_scopes(self) -> List[str]:
        return list(self._scopes)

    def is_failed(self, key: str) -> bool:
        scope = self._scopes.get(key)
        return bool(scope and scope.failed)

    async def subscribe(
        self,
        key: str,
        table: str,
        column: str,
        value: str,
        handler: EventHandler,
        on_resubscribe: Optional[Hook] = None,
    ) -> None:
        await self.unsubscribe(key)
        scope = _Scope(key=key, table=table, column=column, value=value, handler=handler, on_resubscribe=on_resubscribe)
        try:
            scope.subscription = await self._feed.subscribe(table, column, value, self._callback(scope))
        except RESUBSCRIBE_ERRORS as exc:
            logger.warning(f"Initial subscribe for {key} failed, will retry: {exc}")
        self._scopes[key] = scope
        scope.task = asyncio.create_task(self._run(scope))

    async def unsubscribe(self, key: str) -> bool:
        scope = self._scopes.pop(key, None)
        if scope is None:
            return False
        if scope.subscription is not None:
            await scope.subscription.cancel()
            scope.subscription = None
        if scope.task is not None and not scope.task.done() and scope.task is not asyncio.current_task():
            scope.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scope.task
        logger.debug(f"Released subscription {key}")
        return True

    async def close(self) -> None:
        for key in list(self._scopes):
            await self.unsubscribe(key)

    async def _run(self, scope: _Scope) -> None:
        attempt = 0
        while True:
            try:
                if scope.subscription is None:
                    scope.subscription = await self._feed.subscribe(
                        scope.table, scope.column, scope.value, self._callback(scope)
                    )
                    scope.resubscribes += 1
                    logger.info(f"Resubscribed {scope.key}")
                    if scope.on_resubscribe is not None:
                        await scope.on_resubscribe()
                    attempt = 0
                await scope.subscription.run()
                return
            except RESUBSCRIBE_ERRORS as exc:
                if scope.subscription is not None:
                    await scope.subscription.cancel()
                    scope.subscription = None
                if attempt >= self._max_retries:
                    scope.failed = True
                    logger.error(f"Giving up on {scope.key} after {attempt + 1} attempts: {exc}")
                    if self._on_error is not None:
                        self._on_error(scope.key, exc)
                    return
                delay = self._backoff * (2 ** attempt)
                attempt += 1
                logger.warning(f"Subscription {scope.key} dropped (attempt {attempt}), retrying in {delay:.2f}s: {exc}")
                await asyncio.sleep(delay)

    def _callback(self, scope: _Scope):
        async def on_message(raw: str) -> None:
            try:
                event = ChangeEvent.model_validate_json(raw)
            except ValueError as exc:
                logger.warning(f"Dropping malformed event on {scope.key}: {exc}")
                return
            try:
                await scope.handler(event)
            except (ValueError, SyncError) as exc:
                # one bad row must not take the subscription down
                logger.warning(f"Handler for {scope.key} rejected {event.event_type} event: {exc}")

        return on_message
