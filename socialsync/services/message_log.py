"""In-memory view of one conversation's messages.

The log is fed from three directions: page fetches (initial and older),
realtime events, and optimistic sends. Every entry point merges by message id
so the same row arriving through more than one of them is held once.
"""
import bisect
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from socialsync.schemas.message import Message


logger = logging.getLogger(__name__)


class LogState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    LOADED = "loaded"
    LOADING_MORE = "loading_more"
    RECEIVING_LIVE = "receiving_live"


@dataclass
class PageCursor:

    # oldest held message; None before the first page arrives
    created_at: Optional[datetime] = None
    message_id: Optional[str] = None
    has_more: bool = True

    @property
    def position(self) -> Optional[Tuple[datetime, str]]:
        if self.created_at is None or self.message_id is None:
            return None
        return self.created_at, self.message_id

    def encode(self) -> Optional[str]:
        if self.position is None:
            return None
        return f"{self.created_at.isoformat()}|{self.message_id}"

    @classmethod
    def decode(cls, raw: Optional[str]) -> "PageCursor":
        if not raw:
            return cls()
        ts, _, message_id = raw.partition("|")
        try:
            created_at = datetime.fromisoformat(ts)
        except ValueError as exc:
            raise ValueError(f"Malformed cursor: {raw}") from exc
        if not message_id:
            raise ValueError(f"Malformed cursor: {raw}")
        return cls(created_at=created_at, message_id=message_id)


class MessageLog:

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self.state = LogState.EMPTY
        self.cursor = PageCursor()
        self._messages: List[Message] = []
        # parallel to _messages, kept for bisect
        self._keys: List[datetime] = []
        self._ids: set = set()
        self._pending: Dict[str, Message] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    @property
    def messages(self) -> List[Message]:
        """Confirmed messages in display order, followed by pending sends."""
        return self._messages + list(self._pending.values())

    @property
    def confirmed(self) -> List[Message]:
        return list(self._messages)

    @property
    def pending(self) -> List[Message]:
        return list(self._pending.values())

    @property
    def newest(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    @property
    def has_more(self) -> bool:
        return self.cursor.has_more

    def unread_count(self, user_id: str) -> int:
        return sum(1 for m in self._messages if m.is_unread_for(user_id))

    # state transitions

    def begin_initial(self) -> None:
        self.state = LogState.LOADING

    def begin_older(self) -> bool:
        if self.state != LogState.LOADED or not self.cursor.has_more:
            return False
        self.state = LogState.LOADING_MORE
        return True

    def abort(self) -> None:
        """Leave a loading state without applying a page (failed or abandoned fetch)."""
        if self.state == LogState.LOADING and not self._messages:
            self.state = LogState.EMPTY
        elif self.state != LogState.EMPTY:
            self.state = LogState.LOADED

    def apply_initial(self, page: Iterable[Message], has_more: bool) -> int:
        """Merge the newest page. Live messages that beat the page here stay put."""
        added = self._merge(page)
        self.cursor.has_more = has_more
        self._refresh_cursor()
        self.state = LogState.LOADED
        return added

    def prepend_older(self, page: Iterable[Message], has_more: bool) -> int:
        added = self._merge(page, older=True)
        self.cursor.has_more = has_more
        self._refresh_cursor()
        self.state = LogState.LOADED
        return added

    def append_live(self, message: Message) -> bool:
        """Insert a pushed message in order. A repeated id is a no-op."""
        if message.client_message_id:
            self._pending.pop(message.client_message_id, None)
        if message.id in self._ids:
            logger.debug(f"Duplicate delivery of message {message.id} ignored")
            return False
        previous = self.state
        if previous == LogState.LOADED:
            self.state = LogState.RECEIVING_LIVE
        self._insert(message)
        if previous == LogState.LOADED:
            self.state = LogState.LOADED
        if self.cursor.position is None:
            self._refresh_cursor()
        return True

    def replace(self, message: Message) -> bool:
        """Swap the stored copy of a message, keeping its position."""
        for index, held in enumerate(self._messages):
            if held.id == message.id:
                self._messages[index] = message
                return True
        return False

    def remove(self, message_id: str) -> bool:
        for index, held in enumerate(self._messages):
            if held.id == message_id:
                del self._messages[index]
                del self._keys[index]
                self._ids.discard(message_id)
                self._refresh_cursor()
                return True
        return False

    def mark_read_locally(self, reader_id: str, at: datetime) -> int:
        changed = 0
        for index, held in enumerate(self._messages):
            if held.is_unread_for(reader_id):
                self._messages[index] = held.model_copy(update={"read_at": at})
                changed += 1
        return changed

    # optimistic sends

    def add_pending(self, message: Message) -> None:
        if not message.client_message_id:
            raise ValueError("Pending messages need a client_message_id")
        self._pending[message.client_message_id] = message.model_copy(update={"pending": True})

    def confirm_pending(self, client_message_id: str, message: Message) -> bool:
        self._pending.pop(client_message_id, None)
        return self.append_live(message)

    def rollback_pending(self, client_message_id: str) -> Optional[Message]:
        return self._pending.pop(client_message_id, None)

    # internals

    def _merge(self, page: Iterable[Message], older: bool = False) -> int:
        added = 0
        # an older page goes in front of held messages sharing its timestamps
        for message in (reversed(list(page)) if older else page):
            if message.client_message_id:
                self._pending.pop(message.client_message_id, None)
            if message.id in self._ids:
                continue
            self._insert(message, before_equal=older)
            added += 1
        return added

    def _insert(self, message: Message, before_equal: bool = False) -> None:
        # equal timestamps land after what is already held: arrival order wins ties
        bisector = bisect.bisect_left if before_equal else bisect.bisect_right
        index = bisector(self._keys, message.created_at)
        self._keys.insert(index, message.created_at)
        self._messages.insert(index, message)
        self._ids.add(message.id)

    def _refresh_cursor(self) -> None:
        if self._messages:
            oldest = self._messages[0]
            self.cursor.created_at = oldest.created_at
            self.cursor.message_id = oldest.id
        else:
            self.cursor.created_at = None
            self.cursor.message_id = None
