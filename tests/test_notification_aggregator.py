import random
from datetime import datetime, timedelta, timezone

import pytest

from socialsync.errors import TransientNetworkError
from socialsync.schemas.events import ChangeEvent
from socialsync.schemas.notification import FollowNotification, PostLikeNotification, dump_notification, parse_notification
from socialsync.services.notification_aggregator import NotificationAggregator
from socialsync.services.notification_service import NotificationService


BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_notification(n, read=False, type="post_like", recipient="alice"):
    created = BASE_TIME + timedelta(seconds=n)
    return parse_notification(
        {
            "_id": f"n{n:04d}",
            "recipient_id": recipient,
            "actor_id": "bob",
            "type": type,
            "payload": {"actor_name": "Bob"},
            "created_at": created,
            "read_at": created if read else None,
        }
    )


@pytest.fixture
def aggregator(repos):
    return NotificationAggregator("alice", repos.notifications)


async def create_unread(repos, count, recipient="alice"):
    service = NotificationService(repos.notifications)
    docs = []
    for _ in range(count):
        docs.append(await service.notify_user(recipient, "bob", "post_like", {"actor_name": "Bob", "post_id": "p1"}))
    return docs


def test_discriminated_union_picks_variant():
    assert isinstance(make_notification(1), PostLikeNotification)
    follow = make_notification(2, type="follow")
    assert isinstance(follow, FollowNotification)
    assert follow.payload.actor_name == "Bob"


@pytest.mark.asyncio
async def test_mark_some_read_then_refetch(repos, aggregator):
    docs = await create_unread(repos, 5)

    await aggregator.fetch()
    assert aggregator.unread_count == 5

    changed = await aggregator.mark_read([docs[0]["_id"], docs[1]["_id"]])
    assert changed == 2
    assert aggregator.unread_count == 3

    await aggregator.fetch()
    assert aggregator.unread_count == 3


@pytest.mark.asyncio
async def test_mark_read_twice_is_idempotent(repos, aggregator):
    docs = await create_unread(repos, 2)
    await aggregator.fetch()

    await aggregator.mark_read([docs[0]["_id"]])
    assert await aggregator.mark_read([docs[0]["_id"]]) == 0
    assert aggregator.unread_count == 1


@pytest.mark.asyncio
async def test_mark_all_read(repos, aggregator):
    await create_unread(repos, 4)
    await create_unread(repos, 2, recipient="carol")
    await aggregator.fetch()

    assert await aggregator.mark_all_read() == 4
    assert aggregator.unread_count == 0
    assert aggregator.unread_ids == []


@pytest.mark.asyncio
async def test_fetch_is_capped_and_newest_first(repos):
    aggregator = NotificationAggregator("alice", repos.notifications, limit=30)
    await create_unread(repos, 35)

    notifications = await aggregator.fetch()

    assert len(notifications) == 30
    keys = [(n.created_at, n.id) for n in notifications]
    assert keys == sorted(keys, reverse=True)
    assert aggregator.unread_count == 30


def test_insert_beyond_window_evicts_oldest():
    aggregator = NotificationAggregator("alice", None, limit=3)
    for n in range(1, 4):
        aggregator.apply_insert(make_notification(n))

    aggregator.apply_insert(make_notification(10, read=True))

    assert [n.id for n in aggregator.notifications] == ["n0010", "n0003", "n0002"]
    assert aggregator.unread_count == 2


def test_insert_of_held_id_counts_as_update():
    aggregator = NotificationAggregator("alice", None)
    aggregator.apply_insert(make_notification(1))
    aggregator.apply_insert(make_notification(1))
    assert aggregator.unread_count == 1

    aggregator.apply_insert(make_notification(1, read=True))
    assert aggregator.unread_count == 0
    assert len(aggregator.notifications) == 1


def test_update_and_delete_of_unheld_rows_change_nothing():
    aggregator = NotificationAggregator("alice", None)
    aggregator.apply_insert(make_notification(1))

    aggregator.apply_update(make_notification(2, read=True))
    aggregator.apply_delete("n0002")

    assert aggregator.unread_count == 1


def test_unread_count_matches_window_under_random_deltas():
    rng = random.Random(7)
    aggregator = NotificationAggregator("alice", None, limit=10)
    for _ in range(500):
        n = rng.randrange(40)
        op = rng.choice(["insert", "update", "delete"])
        if op == "insert":
            aggregator.apply_insert(make_notification(n, read=rng.random() < 0.3))
        elif op == "update":
            aggregator.apply_update(make_notification(n, read=rng.random() < 0.5))
        else:
            aggregator.apply_delete(f"n{n:04d}")

        held = aggregator.notifications
        assert len(held) <= 10
        assert aggregator.unread_count == sum(1 for item in held if item.is_unread)


@pytest.mark.asyncio
async def test_handle_event_ignores_other_recipients():
    aggregator = NotificationAggregator("alice", None)
    event = ChangeEvent(
        event_type="insert",
        table="notifications",
        new=make_notification(1, recipient="carol").model_dump(by_alias=True, mode="json"),
    )

    await aggregator.handle_event(event)

    assert aggregator.notifications == []


@pytest.mark.asyncio
async def test_live_insert_and_delete(repos, listener, aggregator, settle):
    await aggregator.fetch()
    await aggregator.subscribe(listener)

    docs = await create_unread(repos, 2)
    assert await settle(lambda: aggregator.unread_count == 2)

    await repos.notifications.delete(docs[0]["_id"])
    assert await settle(lambda: aggregator.unread_count == 1)
    assert [n.id for n in aggregator.notifications] == [docs[1]["_id"]]


@pytest.mark.asyncio
async def test_fetch_failure_keeps_last_known_window(repos, aggregator, monkeypatch):
    await create_unread(repos, 2)
    await aggregator.fetch()

    async def unavailable(*args, **kwargs):
        raise TransientNetworkError("offline")

    monkeypatch.setattr(repos.notifications, "list_recent", unavailable)
    notifications = await aggregator.fetch()

    assert len(notifications) == 2
    assert aggregator.unread_count == 2
    assert isinstance(aggregator.error, TransientNetworkError)
    assert aggregator.loading is False


@pytest.mark.asyncio
async def test_live_insert_during_fetch_survives(repos, aggregator, monkeypatch):
    await create_unread(repos, 1)
    real_list_recent = repos.notifications.list_recent

    async def list_then_insert(*args, **kwargs):
        rows = await real_list_recent(*args, **kwargs)
        late = await NotificationService(repos.notifications).notify_user("alice", "carol", "follow")
        aggregator.apply_insert(parse_notification(late))
        return rows

    monkeypatch.setattr(repos.notifications, "list_recent", list_then_insert)

    notifications = await aggregator.fetch()

    assert [n.actor_id for n in notifications] == ["carol", "bob"]
    assert aggregator.unread_count == 2
    assert aggregator.loading is False


@pytest.mark.asyncio
async def test_read_update_during_fetch_is_not_reverted(repos, aggregator, monkeypatch):
    docs = await create_unread(repos, 1)
    await aggregator.fetch()
    real_list_recent = repos.notifications.list_recent

    async def list_then_mark(*args, **kwargs):
        # the read lands after the rows were read, so they are stale
        rows = await real_list_recent(*args, **kwargs)
        await aggregator.mark_read([docs[0]["_id"]])
        return rows

    monkeypatch.setattr(repos.notifications, "list_recent", list_then_mark)

    await aggregator.fetch()

    assert aggregator.unread_count == 0
    assert aggregator.get(docs[0]["_id"]).is_unread is False


@pytest.mark.asyncio
async def test_delete_during_fetch_stays_deleted(repos, aggregator, monkeypatch):
    docs = await create_unread(repos, 2)
    real_list_recent = repos.notifications.list_recent

    async def list_then_delete(*args, **kwargs):
        rows = await real_list_recent(*args, **kwargs)
        aggregator.apply_delete(docs[0]["_id"])
        return rows

    monkeypatch.setattr(repos.notifications, "list_recent", list_then_delete)

    notifications = await aggregator.fetch()

    assert [n.id for n in notifications] == [docs[1]["_id"]]
    assert aggregator.unread_count == 1


@pytest.mark.asyncio
async def test_unknown_notification_type_is_skipped(db, repos, aggregator, caplog):
    await create_unread(repos, 1)
    await db["notifications"].insert_one(
        {
            "recipient_id": "alice",
            "actor_id": "bob",
            "type": "mention",
            "payload": {},
            "created_at": BASE_TIME.replace(tzinfo=None),
            "read_at": None,
        }
    )

    notifications = await aggregator.fetch()

    assert [n.type for n in notifications] == ["post_like"]
    assert aggregator.unread_count == 1
    assert aggregator.error is None
    assert "Skipping unreadable notification" in caplog.text


def test_dumped_notification_carries_action_label():
    data = dump_notification(make_notification(1, type="comment_reply"))

    assert data["id"] == "n0001"
    assert data["action"] == "replied to your comment"
