import time
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from linkup.core import dependencies
from linkup.core.dependencies import get_profile_service
from linkup.core.settings import get_settings
from linkup.main import app
from linkup.profiles.service import ProfileService


def make_token(user_id, expires_in=timedelta(hours=1)):
    settings = get_settings()
    claims = {
        "sub": user_id,
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm="HS256")


def auth(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture()
def client(db):
    dependencies.capabilities.reset()
    app.dependency_overrides[get_profile_service] = lambda: ProfileService(db, "users")
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    dependencies.capabilities.reset()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_requires_bearer_token(client):
    response = client.get("/profiles/me")

    assert response.status_code in (401, 403)


def test_rejects_expired_and_forged_tokens(client):
    expired = make_token("alice", expires_in=timedelta(hours=-2))
    forged = jwt.encode({"sub": "alice"}, "another-secret-that-is-long-enough-too", algorithm="HS256")

    for token in (expired, forged):
        response = client.get("/profiles/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_profile_routes(client):
    me = client.get("/profiles/me", headers=auth("alice"))
    bob = client.get("/profiles/bob", headers=auth("alice"))
    ghost = client.get("/profiles/ghost", headers=auth("alice"))

    assert me.status_code == 200
    assert me.json()["data"]["name"] == "Alice"
    assert bob.json()["data"]["phone_number"] == "555-0100"
    assert ghost.status_code == 404
    assert ghost.json()["code"] == "NotFound"
    assert ghost.json()["data"]["name"] == "Unknown User"


def test_conversation_flow(client):
    created = client.post("/chat/conversations/direct", json={"receiver_id": "bob"}, headers=auth("alice"))
    conversation_id = created.json()["data"]

    sent = client.post(
        f"/chat/conversations/{conversation_id}/messages",
        json={"content": "  hi bob  "},
        headers=auth("alice"),
    )
    inbox = client.get("/chat/conversations", headers=auth("bob"))
    history = client.get(f"/chat/conversations/{conversation_id}/messages", headers=auth("bob"))
    unread_before = client.get("/chat/unread", headers=auth("bob"))
    read = client.post(f"/chat/conversations/{conversation_id}/read", headers=auth("bob"))
    unread_after = client.get(f"/chat/conversations/{conversation_id}/unread", headers=auth("bob"))

    assert created.status_code == 200
    assert sent.status_code == 201
    assert sent.json()["data"]["content"] == "hi bob"
    assert sent.json()["data"]["sender_profile"]["name"] == "Alice"

    conversations = inbox.json()["data"]
    assert len(conversations) == 1
    assert conversations[0]["other_participant"]["name"] == "Alice"
    assert conversations[0]["last_message"] == "hi bob"

    assert [m["content"] for m in history.json()["data"]] == ["hi bob"]
    assert unread_before.json()["data"] == 1
    assert read.json()["data"] == 1
    assert unread_after.json()["data"] == 0


def test_conversation_with_yourself_is_rejected(client):
    response = client.post("/chat/conversations/direct", json={"receiver_id": "alice"}, headers=auth("alice"))

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_outsiders_cannot_read_or_write(client):
    conversation_id = client.post(
        "/chat/conversations/direct", json={"receiver_id": "bob"}, headers=auth("alice")
    ).json()["data"]

    read = client.get(f"/chat/conversations/{conversation_id}/messages", headers=auth("carol"))
    write = client.post(
        f"/chat/conversations/{conversation_id}/messages", json={"content": "hi"}, headers=auth("carol")
    )

    assert read.status_code == 404
    assert write.status_code == 404


def test_empty_message_is_rejected(client, db):
    conversation_id = client.post(
        "/chat/conversations/direct", json={"receiver_id": "bob"}, headers=auth("alice")
    ).json()["data"]

    response = client.post(
        f"/chat/conversations/{conversation_id}/messages", json={"content": "   "}, headers=auth("alice")
    )

    assert response.status_code == 400
    assert db.tables["messages"] == []


def test_missing_schema_maps_to_503(client, db):
    db.missing_tables.add("conversations")
    db.rpc_available = False

    response = client.post("/chat/conversations/direct", json={"receiver_id": "bob"}, headers=auth("alice"))

    assert response.status_code == 503
    assert response.json()["code"] == "SchemaNotProvisioned"


def test_follow_routes(client):
    first = client.post("/follows", json={"following_id": "bob"}, headers=auth("alice"))
    second = client.post("/follows", json={"following_id": "bob"}, headers=auth("alice"))
    status = client.get("/follows/bob/status", headers=auth("alice"))
    summary = client.get("/follows/bob/summary", headers=auth("alice"))
    removed = client.delete("/follows/bob", headers=auth("alice"))

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["data"]["unchanged"] is True
    assert status.json()["data"] is True
    assert summary.json()["data"]["counts"] == {"followers": 1, "following": 0}
    assert summary.json()["data"]["is_following"] is True
    assert removed.json()["data"]["following"] is False


def test_websocket_requires_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/realtime/inbox") as websocket:
            websocket.receive_json()


def test_websocket_rejects_outsiders(client):
    conversation_id = client.post(
        "/chat/conversations/direct", json={"receiver_id": "bob"}, headers=auth("alice")
    ).json()["data"]

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(
            f"/realtime/conversations/{conversation_id}?access_token={make_token('carol')}"
        ) as websocket:
            websocket.receive_json()


def wait_for_subscription(db, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if any(channel.states for channel in db.channels):
            return
        time.sleep(0.01)
    raise AssertionError("realtime channel was never subscribed")


def test_websocket_streams_new_messages(client, db):
    conversation_id = client.post(
        "/chat/conversations/direct", json={"receiver_id": "bob"}, headers=auth("alice")
    ).json()["data"]

    with client.websocket_connect(
        f"/realtime/conversations/{conversation_id}", headers=auth("bob")
    ) as websocket:
        wait_for_subscription(db)
        client.post(
            f"/chat/conversations/{conversation_id}/messages",
            json={"content": "live"},
            headers=auth("alice"),
        )
        event = websocket.receive_json()

    assert event["type"] == "message"
    assert event["data"]["content"] == "live"
    assert event["data"]["sender_profile"]["name"] == "Alice"


def test_follow_list_routes(client):
    client.post("/follows", json={"following_id": "bob"}, headers=auth("alice"))
    client.post("/follows", json={"following_id": "bob"}, headers=auth("carol"))

    followers = client.get("/follows/bob/followers", headers=auth("alice"))
    following = client.get("/follows/alice/following?limit=5", headers=auth("bob"))
    bad_limit = client.get("/follows/bob/followers?limit=0", headers=auth("alice"))

    assert followers.status_code == 200
    assert [u["id"] for u in followers.json()["data"]] == ["carol", "alice"]
    assert followers.json()["data"][0]["followed_at"] is not None
    assert [u["name"] for u in following.json()["data"]] == ["Bob"]
    assert bad_limit.status_code == 422
