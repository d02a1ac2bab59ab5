"""Bounded, newest-first window of a user's notifications plus its unread count.

The count is adjusted incrementally by every delta (fetch, realtime insert,
update, delete, local mark-read) and always equals the number of unread
entries currently held in the window.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from socialsync.config import NOTIFICATION_LIMIT
from socialsync.errors import TransientNetworkError
from socialsync.repositories.notification_repository import NotificationRepository
from socialsync.schemas.events import ChangeEvent
from socialsync.schemas.notification import Notification, parse_notification
from socialsync.services.realtime_listener import RealtimeListener
from socialsync.utils.retry import retry_transient


logger = logging.getLogger(__name__)


def notification_scope(user_id: str) -> str:
    return f"notifications:{user_id}"


def _sort_key(notification: Notification):
    return (notification.created_at, notification.id)


class NotificationAggregator:

    def __init__(
        self,
        user_id: str,
        notification_repo: NotificationRepository,
        limit: int = NOTIFICATION_LIMIT,
    ) -> None:
        self.user_id = user_id
        self._repo = notification_repo
        self._limit = limit
        self._items: Dict[str, Notification] = {}
        self._unread = 0
        self.loading = False
        self.error: Optional[Exception] = None
        self.on_change: Optional[Callable[[], Awaitable[None]]] = None
        # one per in-flight fetch: id -> latest live state, None once deleted
        self._journals: List[Dict[str, Optional[Notification]]] = []

    @property
    def notifications(self) -> List[Notification]:
        return sorted(self._items.values(), key=_sort_key, reverse=True)

    @property
    def unread_count(self) -> int:
        return self._unread

    @property
    def unread_ids(self) -> List[str]:
        return [n.id for n in self.notifications if n.is_unread]

    def get(self, notification_id: str) -> Optional[Notification]:
        return self._items.get(notification_id)

    async def fetch(self) -> List[Notification]:
        journal: Dict[str, Optional[Notification]] = {}
        self._journals.append(journal)
        self.loading = True
        try:
            docs = await retry_transient(
                lambda: self._repo.list_recent(self.user_id, limit=self._limit),
                f"Loading notifications for {self.user_id}",
            )
        except TransientNetworkError as exc:
            # keep showing what we had
            self.error = exc
            return self.notifications
        finally:
            self._journals.remove(journal)
            self.loading = bool(self._journals)
        self.error = None
        merged = {n.id: n for n in self._parse_rows(docs)}
        # deltas that landed while the fetch was in flight are newer than its rows
        for notification_id, live in journal.items():
            if live is None:
                merged.pop(notification_id, None)
            else:
                merged[notification_id] = live
        self._reset(merged.values())
        return self.notifications

    def apply_insert(self, notification: Notification) -> None:
        self._journal(notification.id, notification)
        if notification.id in self._items:
            self.apply_update(notification)
            return
        self._items[notification.id] = notification
        if notification.is_unread:
            self._unread += 1
        self._evict()

    def apply_update(self, notification: Notification) -> None:
        self._journal(notification.id, notification)
        held = self._items.get(notification.id)
        if held is None:
            # outside the window; nothing we count
            logger.debug(f"Update for unheld notification {notification.id} ignored")
            return
        self._items[notification.id] = notification
        if held.is_unread and not notification.is_unread:
            self._unread = max(self._unread - 1, 0)
        elif not held.is_unread and notification.is_unread:
            self._unread += 1

    def apply_delete(self, notification_id: str) -> None:
        self._journal(notification_id, None)
        held = self._items.pop(notification_id, None)
        if held is not None and held.is_unread:
            self._unread = max(self._unread - 1, 0)

    async def handle_event(self, event: ChangeEvent) -> None:
        record: Dict[str, Any] = event.record
        if record.get("recipient_id", self.user_id) != self.user_id:
            return
        if event.event_type == "insert":
            self.apply_insert(parse_notification(event.new))
        elif event.event_type == "update":
            self.apply_update(parse_notification(event.new))
        elif event.event_type == "delete":
            self.apply_delete(str(record.get("_id")))
        if self.on_change is not None:
            await self.on_change()

    async def subscribe(self, listener: RealtimeListener) -> None:
        await listener.subscribe(
            notification_scope(self.user_id),
            table="notifications",
            column="recipient_id",
            value=self.user_id,
            handler=self.handle_event,
            on_resubscribe=self.fetch,
        )

    async def mark_read(self, ids: Iterable[str]) -> int:
        """Mark ``ids`` read. Returns how many of them were unread in the window."""
        ids = list(dict.fromkeys(ids))
        if not ids:
            return 0
        updated = await self._repo.mark_read(self.user_id, ids)
        return self._apply_read(updated)

    async def mark_all_read(self) -> int:
        updated = await self._repo.mark_all_read(self.user_id)
        return self._apply_read(updated)

    def _apply_read(self, updated: List[Dict[str, Any]]) -> int:
        changed = 0
        for doc in updated:
            held = self._items.get(str(doc["_id"]))
            if held is None:
                continue
            was_unread = held.is_unread
            self.apply_update(parse_notification(doc))
            if was_unread:
                changed += 1
        return changed

    def _journal(self, notification_id: str, live: Optional[Notification]) -> None:
        for journal in self._journals:
            journal[notification_id] = live

    def _parse_rows(self, docs: Iterable[Dict[str, Any]]) -> List[Notification]:
        parsed: List[Notification] = []
        for doc in docs:
            try:
                parsed.append(parse_notification(doc))
            except ValidationError as exc:
                logger.warning(f"Skipping unreadable notification {doc.get('_id')}: {exc}")
        return parsed

    def _reset(self, items: Iterable[Notification]) -> None:
        self._items = {n.id: n for n in items}
        self._evict()
        self._unread = sum(1 for n in self._items.values() if n.is_unread)

    def _evict(self) -> None:
        while len(self._items) > self._limit:
            oldest = min(self._items.values(), key=_sort_key)
            del self._items[oldest.id]
            if oldest.is_unread:
                self._unread = max(self._unread - 1, 0)
