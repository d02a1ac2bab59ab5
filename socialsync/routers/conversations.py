from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from socialsync.config import MESSAGES_PER_PAGE
from socialsync.errors import NotFoundError
from socialsync.repositories.message_repository import MessageRepository
from socialsync.schemas.conversation import DirectConversationCreate, GroupConversationCreate, MemberAdd
from socialsync.schemas.message import Message, MessagePage
from socialsync.services.chat_service import ChatService
from socialsync.services.conversation_store import ConversationStore
from socialsync.services.message_log import PageCursor
from socialsync.services.realtime_listener import RealtimeListener
from socialsync.utils.dependencies import feed_dependency, get_conversation_store, get_current_user, get_message_repo
from socialsync.utils.realtime_bus import ChangeFeed
from socialsync.utils.storage import get_storage


router = APIRouter(prefix="/conversations", tags=["chat"])


async def _require_member(store: ConversationStore, conversation_id: str, user_id: str) -> None:
    if not await store.is_member(conversation_id, user_id):
        raise NotFoundError(f"Conversation {conversation_id} not found")


@router.get("")
async def list_conversations(current_user: dict = Depends(get_current_user), store: ConversationStore = Depends(get_conversation_store)):
    items = await store.list_conversations(current_user["_id"])
    return {"items": [s.model_dump(mode="json") for s in items]}


@router.post("/direct")
async def create_direct(body: DirectConversationCreate, current_user: dict = Depends(get_current_user), store: ConversationStore = Depends(get_conversation_store)):
    conversation_id = await store.create_direct_conversation(current_user["_id"], body.user_id)
    return {"id": conversation_id}


@router.post("/group")
async def create_group(body: GroupConversationCreate, current_user: dict = Depends(get_current_user), store: ConversationStore = Depends(get_conversation_store)):
    conversation_id = await store.create_group_conversation(current_user["_id"], body.name, body.member_ids)
    return {"id": conversation_id}


@router.get("/{conversation_id}/members")
async def list_members(conversation_id: str, current_user: dict = Depends(get_current_user), store: ConversationStore = Depends(get_conversation_store)):
    await _require_member(store, conversation_id, current_user["_id"])
    members = await store.get_members(conversation_id)
    return {"members": [m.model_dump() for m in members]}


@router.post("/{conversation_id}/members")
async def add_member(conversation_id: str, body: MemberAdd, current_user: dict = Depends(get_current_user), store: ConversationStore = Depends(get_conversation_store)):
    await _require_member(store, conversation_id, current_user["_id"])
    added = await store.add_member(conversation_id, body.user_id)
    return {"added": added}


@router.delete("/{conversation_id}/members/{user_id}")
async def remove_member(conversation_id: str, user_id: str, current_user: dict = Depends(get_current_user), store: ConversationStore = Depends(get_conversation_store)):
    await _require_member(store, conversation_id, current_user["_id"])
    removed = await store.remove_member(conversation_id, user_id)
    return {"removed": removed}


@router.post("/{conversation_id}/leave")
async def leave(conversation_id: str, current_user: dict = Depends(get_current_user), store: ConversationStore = Depends(get_conversation_store)):
    removed = await store.leave(conversation_id, current_user["_id"])
    return {"left": removed}


@router.get("/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    limit: int = Query(MESSAGES_PER_PAGE, ge=1, le=200),
    cursor: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
    message_repo: MessageRepository = Depends(get_message_repo),
):
    await _require_member(store, conversation_id, current_user["_id"])
    before = PageCursor.decode(cursor).position
    docs, has_more = await message_repo.get_page(conversation_id, limit=limit, before=before)
    items = [Message.model_validate(d) for d in docs]
    next_cursor = None
    if items and has_more:
        next_cursor = PageCursor(created_at=items[0].created_at, message_id=items[0].id).encode()
    return MessagePage(items=items, has_more=has_more, next_cursor=next_cursor)


@router.post("/{conversation_id}/messages")
async def send_message(
    conversation_id: str,
    content: Optional[str] = Form(None),
    client_message_id: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
    message_repo: MessageRepository = Depends(get_message_repo),
    feed: ChangeFeed = Depends(feed_dependency),
):
    chat = ChatService(current_user["_id"], message_repo, store, RealtimeListener(feed), storage=get_storage())
    await chat.open_conversation(conversation_id, load=False, live=False)
    data = await image.read() if image is not None else None
    message = await chat.send_message(content, image=data, client_message_id=client_message_id)
    return {"message": message.model_dump(mode="json")}


@router.post("/{conversation_id}/read")
async def mark_read(
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
    message_repo: MessageRepository = Depends(get_message_repo),
    feed: ChangeFeed = Depends(feed_dependency),
):
    chat = ChatService(current_user["_id"], message_repo, store, RealtimeListener(feed))
    await chat.open_conversation(conversation_id, load=False, live=False)
    updated = await chat.mark_read()
    return {"updated": updated}
