import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from socialsync.repositories.conversation_repository import ConversationRepository, MemberRepository
from socialsync.repositories.follow_repository import FollowRepository
from socialsync.repositories.message_repository import MessageRepository
from socialsync.repositories.notification_repository import NotificationRepository
from socialsync.repositories.profile_repository import ProfileRepository
from socialsync.services.conversation_store import ConversationStore
from socialsync.services.realtime_listener import RealtimeListener
from socialsync.utils.realtime_bus import ChangeFeed, InMemoryBus
from socialsync.utils.time import to_storage


BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    return AsyncMongoMockClient()["socialsync_test"]


@pytest.fixture
def bus():
    return InMemoryBus()


@pytest.fixture
def feed(bus):
    return ChangeFeed(bus)


@pytest.fixture
def repos(db, feed):
    return SimpleNamespace(
        conversations=ConversationRepository(db, feed),
        members=MemberRepository(db, feed),
        messages=MessageRepository(db, feed),
        notifications=NotificationRepository(db, feed),
        profiles=ProfileRepository(db, feed),
        follows=FollowRepository(db, feed),
    )


@pytest.fixture
def store(repos):
    return ConversationStore(repos.conversations, repos.members, repos.messages, repos.profiles)


@pytest_asyncio.fixture
async def listener(feed):
    listener = RealtimeListener(feed, max_retries=2, backoff_seconds=0)
    yield listener
    await listener.close()


@pytest.fixture
def settle():
    """Wait until ``condition`` holds, giving subscription tasks a chance to run."""

    async def _settle(condition=lambda: True, timeout: float = 1.0) -> bool:
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            await asyncio.sleep(0.01)
            if condition():
                return True
            if asyncio.get_running_loop().time() > deadline:
                return False

    return _settle


@pytest.fixture
def seed_messages(db):
    """Insert messages with fixed timestamps straight into the store, bypassing the feed."""

    async def _seed(conversation_id, count, sender_id="bob", start=BASE_TIME, step=timedelta(seconds=1)):
        docs = []
        for i in range(count):
            doc = {
                "conversation_id": conversation_id,
                "sender_id": sender_id,
                "content": f"message {i + 1}",
                "image_url": None,
                "created_at": to_storage(start + step * i),
                "read_at": None,
                "client_message_id": None,
            }
            result = await db["messages"].insert_one(doc)
            doc["_id"] = str(result.inserted_id)
            docs.append(doc)
        return docs

    return _seed
