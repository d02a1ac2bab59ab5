import logging
import time
import uuid
from typing import Awaitable, Callable, List, Optional

from socialsync.config import MESSAGES_PER_PAGE
from socialsync.errors import NotFoundError, TransientNetworkError, WriteError
from socialsync.repositories.message_repository import MessageRepository
from socialsync.schemas.events import ChangeEvent
from socialsync.schemas.message import Message
from socialsync.services.conversation_store import ConversationStore
from socialsync.services.message_log import MessageLog
from socialsync.services.realtime_listener import RealtimeListener
from socialsync.utils.retry import retry_transient
from socialsync.utils.storage import MAX_IMAGE_BYTES, MESSAGE_IMAGES_BUCKET, LocalBlobStorage
from socialsync.utils.time import utcnow


logger = logging.getLogger(__name__)


def message_scope(conversation_id: str) -> str:
    return f"messages:{conversation_id}"


class ChatService:
    """One user's messaging session: the open conversation, its log and its live feed.

    Every fetch captures the log that was active when it started. Opening a
    different conversation swaps the log, so a response that lands afterwards
    no longer matches and is dropped instead of being applied to the new one.
    """

    def __init__(
        self,
        user_id: str,
        message_repo: MessageRepository,
        conversation_store: ConversationStore,
        listener: RealtimeListener,
        storage: Optional[LocalBlobStorage] = None,
        page_size: int = MESSAGES_PER_PAGE,
    ) -> None:
        self.user_id = user_id
        self._message_repo = message_repo
        self._store = conversation_store
        self._listener = listener
        self._storage = storage
        self._page_size = page_size
        self._log: Optional[MessageLog] = None
        self.last_error: Optional[Exception] = None
        # called after a realtime event changed the open log
        self.on_change: Optional[Callable[[], Awaitable[None]]] = None

    @property
    def log(self) -> Optional[MessageLog]:
        return self._log

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self._log.conversation_id if self._log else None

    async def open_conversation(self, conversation_id: str, load: bool = True, live: bool = True) -> MessageLog:
        if not await self._store.is_member(conversation_id, self.user_id):
            raise NotFoundError(f"Conversation {conversation_id} not found")
        await self.close_conversation()
        log = MessageLog(conversation_id)
        self._log = log
        if live:
            await self._listener.subscribe(
                message_scope(conversation_id),
                table="messages",
                column="conversation_id",
                value=conversation_id,
                handler=self.handle_event,
                on_resubscribe=self.fetch_newer,
            )
        if load:
            await self.load_initial()
        return log

    async def close_conversation(self) -> None:
        if self._log is None:
            return
        await self._listener.unsubscribe(message_scope(self._log.conversation_id))
        self._log = None

    async def close(self) -> None:
        await self.close_conversation()

    async def load_initial(self) -> Optional[MessageLog]:
        log = self._require_log()
        log.begin_initial()
        try:
            docs, has_more = await retry_transient(
                lambda: self._message_repo.get_page(log.conversation_id, limit=self._page_size),
                f"Loading conversation {log.conversation_id}",
            )
        except TransientNetworkError as exc:
            self.last_error = exc
            if self._log is log:
                log.abort()
            return log
        if self._log is not log:
            logger.debug(f"Discarding first page of abandoned conversation {log.conversation_id}")
            return None
        log.apply_initial([Message.model_validate(d) for d in docs], has_more)
        self.last_error = None
        await self._mark_read_quietly()
        return log

    async def load_older(self) -> int:
        log = self._require_log()
        if not log.begin_older():
            return 0
        before = log.cursor.position
        try:
            docs, has_more = await retry_transient(
                lambda: self._message_repo.get_page(log.conversation_id, limit=self._page_size, before=before),
                f"Loading older messages of {log.conversation_id}",
            )
        except TransientNetworkError as exc:
            self.last_error = exc
            if self._log is log:
                log.abort()
            return 0
        if self._log is not log:
            logger.debug(f"Discarding older page of abandoned conversation {log.conversation_id}")
            return 0
        return log.prepend_older([Message.model_validate(d) for d in docs], has_more)

    async def fetch_newer(self) -> int:
        """Pull messages newer than the newest held one. Runs after a resubscribe."""
        log = self._require_log()
        newest = log.newest
        if newest is None:
            await self.load_initial()
            return len(log)
        try:
            docs = await self._message_repo.get_after(log.conversation_id, newest.created_at, after_id=newest.id)
        except TransientNetworkError as exc:
            self.last_error = exc
            logger.warning(f"Catch-up fetch for {log.conversation_id} failed: {exc}")
            return 0
        if self._log is not log:
            return 0
        added = 0
        for doc in docs:
            message = Message.model_validate(doc)
            if log.append_live(message):
                self._store.note_message(message, self.user_id)
                added += 1
        if added:
            await self._mark_read_quietly()
        return added

    async def send_message(
        self,
        content: Optional[str] = None,
        image: Optional[bytes] = None,
        client_message_id: Optional[str] = None,
    ) -> Message:
        log = self._require_log()
        text = (content or "").strip() or None
        if text is None and not image:
            raise ValueError("Message content cannot be empty")
        if image and len(image) > MAX_IMAGE_BYTES:
            raise ValueError("Image is too large")

        client_message_id = client_message_id or uuid.uuid4().hex
        # placeholder body so the pending entry validates before the upload finishes
        log.add_pending(
            Message(
                id=f"pending:{client_message_id}",
                conversation_id=log.conversation_id,
                sender_id=self.user_id,
                content=text,
                image_url=None if text else "pending",
                created_at=utcnow(),
                client_message_id=client_message_id,
            )
        )
        try:
            image_url = await self._upload_image(image) if image else None
            doc = await self._message_repo.save_message(
                conversation_id=log.conversation_id,
                sender_id=self.user_id,
                content=text,
                image_url=image_url,
                client_message_id=client_message_id,
            )
        except WriteError:
            log.rollback_pending(client_message_id)
            raise
        message = Message.model_validate(doc)
        if self._log is log:
            log.confirm_pending(client_message_id, message)
        self._store.note_message(message, self.user_id)
        try:
            await self._store.touch(log.conversation_id)
        except WriteError as exc:
            # ordering falls back to the message timestamp
            logger.warning(f"Could not bump activity of {log.conversation_id}: {exc}")
        return message

    async def mark_read(self) -> int:
        log = self._require_log()
        now = utcnow()
        updated = await self._message_repo.mark_read(log.conversation_id, self.user_id, at=now)
        if self._log is log:
            for doc in updated:
                log.replace(Message.model_validate(doc))
        await self._store.recount_unread(log.conversation_id, self.user_id)
        return len(updated)

    async def _mark_read_quietly(self) -> None:
        try:
            await self.mark_read()
        except WriteError as exc:
            logger.warning(f"Could not mark {self.active_conversation_id} read: {exc}")

    async def handle_event(self, event: ChangeEvent) -> None:
        log = self._log
        record = event.record
        if log is None or record.get("conversation_id") != log.conversation_id:
            return
        changed = False
        if event.event_type == "insert":
            message = Message.model_validate(event.new)
            changed = log.append_live(message)
            if changed:
                self._store.note_message(message, self.user_id)
                if message.is_unread_for(self.user_id):
                    await self._mark_read_quietly()
        elif event.event_type == "update":
            changed = log.replace(Message.model_validate(event.new))
        elif event.event_type == "delete":
            changed = log.remove(str(record.get("_id")))
        if changed and self.on_change is not None:
            await self.on_change()

    async def _upload_image(self, image: bytes) -> str:
        if self._storage is None:
            raise WriteError("No blob storage configured for images")
        key = f"{self.user_id}-{int(time.time() * 1000)}.jpg"
        return await self._storage.upload(MESSAGE_IMAGES_BUCKET, key, image)

    def _require_log(self) -> MessageLog:
        if self._log is None:
            raise ValueError("No conversation is open")
        return self._log

    def messages(self) -> List[Message]:
        return self._log.messages if self._log else []
