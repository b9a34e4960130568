from __future__ import annotations

from fastapi.testclient import TestClient

from api_server import create_app
from exam.shuffle import generate_shuffle


def _client(harness) -> TestClient:
    return TestClient(create_app(harness.flow))


def _user_json(user):
    return user.model_dump()


def test_start_then_answer_over_http(harness, chat, user):
    client = _client(harness)

    started = client.post(
        "/api/exams/start",
        json={"group_chat_id": chat.id, "dm_chat_id": user.id, "user": _user_json(user), "chat_title": "Rust Learners"},
    )
    assert started.status_code == 200
    assert started.json()["success"] is True

    active = client.get(f"/api/exams/active/{user.id}")
    assert active.status_code == 200
    assert active.json() == {"group_chat_id": chat.id, "awaiting_open_ended": False}

    position = generate_shuffle(1, 0, 4).index(0)
    answered = client.post(
        "/api/exams/callback",
        json={"data": f"exam:1:0:{position}", "user": _user_json(user), "message_chat_id": user.id, "message_id": 100},
    )
    body = answered.json()
    assert answered.status_code == 200
    assert body["ignored"] is False
    assert body["result"]["complete"] is False
    harness.messaging.delete_message.assert_awaited_once_with(user.id, 100)


def test_malformed_callback_is_ignored(harness, user):
    client = _client(harness)

    response = client.post("/api/exams/callback", json={"data": "exam:1:x:0", "user": _user_json(user)})

    assert response.status_code == 200
    assert response.json() == {"ignored": True, "result": None}


def test_start_without_config_reports_failure(harness, user):
    client = _client(harness)

    response = client.post(
        "/api/exams/start",
        json={"group_chat_id": -999, "dm_chat_id": user.id, "user": _user_json(user)},
    )

    assert response.status_code == 200
    assert response.json()["success"] is False


def test_no_active_exam_returns_404(harness, user):
    client = _client(harness)

    assert client.get(f"/api/exams/active/{user.id}").status_code == 404
    missing = client.post("/api/exams/open-ended", json={"user": _user_json(user), "text": "hello"})
    assert missing.status_code == 404


def test_open_ended_before_mc_done_is_ignored(harness, chat, user):
    client = _client(harness)
    client.post(
        "/api/exams/start",
        json={"group_chat_id": chat.id, "dm_chat_id": user.id, "user": _user_json(user)},
    )

    response = client.post("/api/exams/open-ended", json={"user": _user_json(user), "text": "hello"})

    assert response.status_code == 200
    assert response.json()["ignored"] is True
