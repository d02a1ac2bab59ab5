from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from socialsync.database.connection import mongo_db_dependency
from socialsync.repositories.conversation_repository import ConversationRepository, MemberRepository
from socialsync.repositories.follow_repository import FollowRepository
from socialsync.repositories.message_repository import MessageRepository
from socialsync.repositories.notification_repository import NotificationRepository
from socialsync.repositories.profile_repository import ProfileRepository
from socialsync.services.conversation_store import ConversationStore
from socialsync.services.follow_service import FollowService
from socialsync.services.notification_service import NotificationService
from socialsync.utils.realtime_bus import ChangeFeed, get_feed


async def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> dict:
    # the identity gateway in front of us authenticates and forwards the user id
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return {"_id": x_user_id}


def feed_dependency() -> ChangeFeed:
    return get_feed()


def get_conversation_store(
    db: AsyncIOMotorDatabase = Depends(mongo_db_dependency),
    feed: ChangeFeed = Depends(feed_dependency),
) -> ConversationStore:
    return ConversationStore(
        ConversationRepository(db, feed),
        MemberRepository(db, feed),
        MessageRepository(db, feed),
        ProfileRepository(db, feed),
    )


def get_message_repo(
    db: AsyncIOMotorDatabase = Depends(mongo_db_dependency),
    feed: ChangeFeed = Depends(feed_dependency),
) -> MessageRepository:
    return MessageRepository(db, feed)


def get_notification_repo(
    db: AsyncIOMotorDatabase = Depends(mongo_db_dependency),
    feed: ChangeFeed = Depends(feed_dependency),
) -> NotificationRepository:
    return NotificationRepository(db, feed)


def get_follow_service(
    db: AsyncIOMotorDatabase = Depends(mongo_db_dependency),
    feed: ChangeFeed = Depends(feed_dependency),
) -> FollowService:
    return FollowService(
        FollowRepository(db, feed),
        ProfileRepository(db, feed),
        NotificationService(NotificationRepository(db, feed)),
    )
