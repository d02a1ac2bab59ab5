import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from socialsync.database.connection import get_database
from socialsync.errors import SyncError
from socialsync.repositories.conversation_repository import ConversationRepository, MemberRepository
from socialsync.repositories.message_repository import MessageRepository
from socialsync.repositories.notification_repository import NotificationRepository
from socialsync.repositories.profile_repository import ProfileRepository
from socialsync.schemas.notification import dump_notification
from socialsync.services.chat_service import ChatService
from socialsync.services.conversation_store import ConversationStore
from socialsync.services.notification_aggregator import NotificationAggregator
from socialsync.services.realtime_listener import RealtimeListener
from socialsync.utils.realtime_bus import get_feed
from socialsync.utils.storage import get_storage
from socialsync.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])
manager = ConnectionManager()


class SyncSession:
    """Everything one connected client keeps in sync: notifications and the open chat."""

    def __init__(self, user_id: str, websocket: WebSocket) -> None:
        db = get_database()
        feed = get_feed()
        self.user_id = user_id
        self.websocket = websocket
        self.listener = RealtimeListener(feed, on_error=self._on_listener_error)
        self.store = ConversationStore(
            ConversationRepository(db, feed),
            MemberRepository(db, feed),
            MessageRepository(db, feed),
            ProfileRepository(db, feed),
        )
        self.chat = ChatService(user_id, MessageRepository(db, feed), self.store, self.listener, storage=get_storage())
        self.notifications = NotificationAggregator(user_id, NotificationRepository(db, feed))
        self.chat.on_change = self.push_messages
        self.notifications.on_change = self.push_notifications

    async def start(self) -> None:
        await self.notifications.subscribe(self.listener)
        await self.notifications.fetch()
        await self.push_notifications()

    async def close(self) -> None:
        await self.chat.close()
        await self.listener.close()

    async def push_notifications(self) -> None:
        await manager.send_json(self.websocket, {
            "type": "notifications",
            "items": [dump_notification(n) for n in self.notifications.notifications],
            "unread_count": self.notifications.unread_count,
        })

    async def push_messages(self) -> None:
        log = self.chat.log
        if log is None:
            return
        await manager.send_json(self.websocket, {
            "type": "messages",
            "conversation_id": log.conversation_id,
            "items": [m.model_dump(mode="json") for m in log.messages],
            "has_more": log.has_more,
            "state": log.state.value,
        })

    async def handle(self, msg: Dict[str, Any]) -> None:
        kind = msg.get("type")
        if kind == "open":
            await self.chat.open_conversation(str(msg.get("conversation_id")))
            await self.push_messages()
        elif kind == "load_older":
            await self.chat.load_older()
            await self.push_messages()
        elif kind == "send":
            await self.chat.send_message(msg.get("content"), client_message_id=msg.get("client_message_id"))
            await self.push_messages()
        elif kind == "close":
            await self.chat.close_conversation()
        elif kind == "read_notifications":
            await self.notifications.mark_read(msg.get("ids") or [])
            await self.push_notifications()
        elif kind == "read_all_notifications":
            await self.notifications.mark_all_read()
            await self.push_notifications()
        else:
            await manager.send_json(self.websocket, {"type": "error", "detail": f"Unknown command {kind!r}"})

    def _on_listener_error(self, scope: str, exc: Exception) -> None:
        logger.error(f"Realtime scope {scope} for {self.user_id} is down: {exc}")


@router.websocket("/ws/{user_id}")
async def sync_socket(websocket: WebSocket, user_id: str):
    # identity is forwarded by the gateway, same as for HTTP calls
    caller = websocket.headers.get("x-user-id")
    if not caller:
        await websocket.close(code=4401)
        return
    if caller != user_id:
        await websocket.close(code=4403)
        return

    await manager.connect(user_id, websocket)
    session = SyncSession(user_id, websocket)
    try:
        await session.start()
        while True:
            msg = await websocket.receive_json()
            try:
                await session.handle(msg)
            except (SyncError, ValueError, ValidationError) as exc:
                retryable = getattr(exc, "retryable", False)
                await manager.send_json(websocket, {"type": "error", "detail": str(exc), "retryable": retryable})
    except WebSocketDisconnect:
        logger.debug(f"{user_id} disconnected")
    finally:
        manager.disconnect(user_id, websocket)
        await session.close()
