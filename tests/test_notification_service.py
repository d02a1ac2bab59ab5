import pytest

from socialsync.errors import WriteError
from socialsync.services.follow_service import FollowService
from socialsync.services.notification_service import NotificationService


@pytest.fixture
def notifications(repos):
    return NotificationService(repos.notifications)


@pytest.fixture
def follows(repos, notifications):
    return FollowService(repos.follows, repos.profiles, notifications)


@pytest.mark.asyncio
async def test_notify_other_user(repos, notifications):
    doc = await notifications.notify_user(
        "alice", "bob", "post_comment", {"actor_name": "Bob", "snippet": "nice", "junk": 1}, post_id="p1"
    )

    assert doc["recipient_id"] == "alice"
    assert doc["payload"] == {"actor_name": "Bob", "snippet": "nice"}
    assert doc["read_at"] is None
    assert len(await repos.notifications.list_recent("alice")) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("recipient,actor", [("alice", "alice"), (None, "bob"), ("alice", None), ("", "bob")])
async def test_no_notification_for_self_or_missing_ids(repos, notifications, recipient, actor):
    assert await notifications.notify_user(recipient, actor, "post_like") is None
    assert await repos.notifications.collection.count_documents({}) == 0


@pytest.mark.asyncio
async def test_unknown_type_and_bad_payload_are_rejected(notifications):
    with pytest.raises(ValueError):
        await notifications.notify_user("alice", "bob", "poke")
    with pytest.raises(ValueError):
        await notifications.notify_user("alice", "bob", "post_like", {"post_id": ["not", "a", "string"]})


@pytest.mark.asyncio
async def test_failed_write_is_logged_not_raised(repos, notifications, monkeypatch, caplog):
    async def rejected(**kwargs):
        raise WriteError("denied")

    monkeypatch.setattr(repos.notifications, "create", rejected)

    assert await notifications.notify_user("alice", "bob", "follow") is None
    assert "Error creating notification for alice" in caplog.text


@pytest.mark.asyncio
async def test_follow_notifies_once(repos, follows):
    await repos.profiles.upsert("bob", nickname="Bob")

    assert await follows.follow("bob", "alice") is True
    assert await follows.follow("bob", "alice") is False

    items = await repos.notifications.list_recent("alice")
    assert len(items) == 1
    assert items[0]["type"] == "follow"
    assert items[0]["actor_id"] == "bob"
    assert items[0]["payload"] == {"actor_name": "Bob"}


@pytest.mark.asyncio
async def test_follow_lists_and_unfollow(repos, follows):
    await repos.profiles.upsert("carol", nickname="Carol")
    await follows.follow("alice", "bob")
    await follows.follow("alice", "carol")
    await follows.follow("carol", "alice")

    assert [p.id for p in await follows.list_following("alice")] == ["bob", "carol"]
    assert [p.display_name for p in await follows.list_followers("alice")] == ["Carol"]
    assert await follows.is_following("alice", "bob") is True

    assert await follows.unfollow("alice", "bob") is True
    assert await follows.unfollow("alice", "bob") is False
    assert await follows.is_following("alice", "bob") is False
    assert await follows.is_following("alice", "alice") is False


@pytest.mark.asyncio
async def test_cannot_follow_yourself(follows):
    with pytest.raises(ValueError):
        await follows.follow("alice", "alice")
