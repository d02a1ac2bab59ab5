import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from socialsync.config import get_settings
from socialsync.database.connection import set_database
from socialsync.errors import TransientNetworkError
from socialsync.main import app
from socialsync.repositories.message_repository import MessageRepository
from socialsync.utils.realtime_bus import set_bus


ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}
CAROL = {"X-User-Id": "carol"}


@pytest.fixture
def client(db, bus, tmp_path, monkeypatch):
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path))
    monkeypatch.setenv("STORAGE_PUBLIC_URL", "http://files")
    get_settings.cache_clear()
    set_database(db)
    set_bus(bus)
    # not entered as a context manager: the lifespan would dial a real MongoDB
    yield TestClient(app)
    set_database(None)
    set_bus(None)
    get_settings.cache_clear()


def open_direct(client, headers=ALICE, other="bob"):
    response = client.post("/conversations/direct", json={"user_id": other}, headers=headers)
    assert response.status_code == 200
    return response.json()["id"]


def test_requires_identity(client):
    assert client.get("/conversations").status_code == 401


def test_direct_conversation_lifecycle(client):
    conversation_id = open_direct(client)
    assert open_direct(client, headers=BOB, other="alice") == conversation_id

    response = client.post(f"/conversations/{conversation_id}/messages", data={"content": "hi alice"}, headers=BOB)
    assert response.status_code == 200
    assert response.json()["message"]["content"] == "hi alice"

    items = client.get("/conversations", headers=ALICE).json()["items"]
    assert [(i["id"], i["name"], i["unread_count"]) for i in items] == [(conversation_id, "User", 1)]

    assert client.post(f"/conversations/{conversation_id}/read", headers=ALICE).json() == {"updated": 1}
    items = client.get("/conversations", headers=ALICE).json()["items"]
    assert items[0]["unread_count"] == 0


def test_self_chat_is_rejected(client):
    response = client.post("/conversations/direct", json={"user_id": "alice"}, headers=ALICE)
    assert response.status_code == 400


def test_message_pages_with_cursor(client):
    conversation_id = open_direct(client)
    for n in range(3):
        client.post(f"/conversations/{conversation_id}/messages", data={"content": f"m{n}"}, headers=ALICE)

    first = client.get(f"/conversations/{conversation_id}/messages", params={"limit": 2}, headers=ALICE).json()
    assert [m["content"] for m in first["items"]] == ["m1", "m2"]
    assert first["has_more"] is True

    second = client.get(
        f"/conversations/{conversation_id}/messages",
        params={"limit": 2, "cursor": first["next_cursor"]},
        headers=ALICE,
    ).json()
    assert [m["content"] for m in second["items"]] == ["m0"]
    assert second["has_more"] is False
    assert second["next_cursor"] is None


def test_malformed_cursor(client):
    conversation_id = open_direct(client)
    response = client.get(f"/conversations/{conversation_id}/messages", params={"cursor": "garbage"}, headers=ALICE)
    assert response.status_code == 400


def test_non_member_gets_not_found(client):
    conversation_id = open_direct(client)
    assert client.get(f"/conversations/{conversation_id}/messages", headers=CAROL).status_code == 404
    assert client.post(f"/conversations/{conversation_id}/messages", data={"content": "x"}, headers=CAROL).status_code == 404


def test_empty_message_is_rejected(client):
    conversation_id = open_direct(client)
    response = client.post(f"/conversations/{conversation_id}/messages", data={"content": "  "}, headers=ALICE)
    assert response.status_code == 400


def test_image_message(client, tmp_path):
    conversation_id = open_direct(client)

    response = client.post(
        f"/conversations/{conversation_id}/messages",
        files={"image": ("photo.jpg", b"\xff\xd8jpeg", "image/jpeg")},
        headers=ALICE,
    )

    assert response.status_code == 200
    url = response.json()["message"]["image_url"]
    assert url.startswith("http://files/message-images/alice-")
    assert (tmp_path / "message-images" / url.rsplit("/", 1)[1]).read_bytes() == b"\xff\xd8jpeg"


def test_transient_failure_is_retryable(client, monkeypatch):
    conversation_id = open_direct(client)

    async def unavailable(self, *args, **kwargs):
        raise TransientNetworkError("offline")

    monkeypatch.setattr(MessageRepository, "get_page", unavailable)

    response = client.get(f"/conversations/{conversation_id}/messages", headers=ALICE)
    assert response.status_code == 503
    assert response.json()["retryable"] is True


def test_group_membership_endpoints(client):
    response = client.post("/conversations/group", json={"name": "Trip", "member_ids": ["bob"]}, headers=ALICE)
    group_id = response.json()["id"]

    assert client.post(f"/conversations/{group_id}/members", json={"user_id": "carol"}, headers=ALICE).json() == {"added": True}
    members = client.get(f"/conversations/{group_id}/members", headers=CAROL).json()["members"]
    assert [m["id"] for m in members] == ["alice", "bob", "carol"]

    assert client.post(f"/conversations/{group_id}/leave", headers=CAROL).json() == {"left": True}
    assert client.delete(f"/conversations/{group_id}/members/bob", headers=ALICE).json() == {"removed": True}

    items = client.get("/conversations", headers=ALICE).json()["items"]
    assert [(i["name"], i["icon"]) for i in items] == [("Trip", "group")]


def test_group_requires_name(client):
    response = client.post("/conversations/group", json={"name": "", "member_ids": ["bob"]}, headers=ALICE)
    assert response.status_code == 422


def test_follow_creates_notification(client):
    assert client.post("/follows/alice", headers=BOB).json() == {"msg": "Followed"}
    assert client.post("/follows/alice", headers=BOB).json() == {"msg": "Already following"}
    assert client.get("/follows/alice", headers=BOB).json() == {"following": True}
    assert [p["id"] for p in client.get("/follows/followers", headers=ALICE).json()["followers"]] == ["bob"]

    state = client.get("/notifications", headers=ALICE).json()
    assert state["unread_count"] == 1
    assert state["items"][0]["type"] == "follow"

    state = client.post("/notifications/read", json={"ids": [state["items"][0]["id"]]}, headers=ALICE).json()
    assert state["updated"] == 1
    assert state["unread_count"] == 0


def test_follow_errors(client):
    assert client.post("/follows/alice", headers=ALICE).status_code == 400
    assert client.delete("/follows/bob", headers=ALICE).status_code == 404


def test_read_all_notifications(client):
    client.post("/follows/alice", headers=BOB)
    client.post("/follows/alice", headers=CAROL)

    state = client.post("/notifications/read-all", headers=ALICE).json()

    assert state["updated"] == 2
    assert state["unread_count"] == 0


@pytest.mark.parametrize("headers,code", [({}, 4401), (BOB, 4403)])
def test_socket_checks_identity(client, headers, code):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws/alice", headers=headers) as ws:
            ws.receive_json()
    assert excinfo.value.code == code


def test_socket_session(client):
    client.post("/follows/alice", headers=BOB)
    conversation_id = open_direct(client)
    stranger = open_direct(client, headers=BOB, other="carol")

    with client.websocket_connect("/ws/alice", headers=ALICE) as ws:
        hello = ws.receive_json()
        assert hello["type"] == "notifications"
        assert hello["unread_count"] == 1

        ws.send_json({"type": "open", "conversation_id": conversation_id})
        opened = ws.receive_json()
        assert opened == {"type": "messages", "conversation_id": conversation_id, "items": [], "has_more": False, "state": "loaded"}

        ws.send_json({"type": "send", "content": "hello", "client_message_id": "tmp-1"})
        sent = ws.receive_json()
        assert [(m["content"], m["pending"]) for m in sent["items"]] == [("hello", False)]

        ws.send_json({"type": "open", "conversation_id": stranger})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "dance"})
        assert ws.receive_json() == {"type": "error", "detail": "Unknown command 'dance'"}

        ws.send_json({"type": "read_all_notifications"})
        assert ws.receive_json()["unread_count"] == 0
