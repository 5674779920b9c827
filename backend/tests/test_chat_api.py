"""End-to-end tests for the chat API over the in-process session core."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from companion.core.config import AppSettings
from companion.main import create_app
from companion.services.chat import StaticResponder
from companion.services.runtime import build_runtime
from companion.services.summarizer import KeywordSummarizer


@pytest.fixture
def runtime(clock):
    settings = AppSettings(openai_api_key=None, summarize_after_exchanges=3)
    return build_runtime(settings, clock=clock, summarizer=KeywordSummarizer(), responder=StaticResponder())


@pytest.fixture
def client(runtime):
    app = create_app(runtime.settings, runtime=runtime)
    with TestClient(app) as test_client:
        yield test_client


def send(client: TestClient, message: str, *, user: str = "u1", **body) -> dict:
    response = client.post("/v1/chat/message", json={"message": message, **body}, headers={"X-User-Id": user})
    assert response.status_code == 200, response.text
    return response.json()


def test_message_creates_session_and_returns_reply(client) -> None:
    payload = send(client, "What food should I avoid?", context={"trimester": 2})

    assert payload["session_id"].startswith("session_")
    assert payload["user_message"] == "What food should I avoid?"
    assert payload["response_type"] == "nutrition"
    assert payload["conversation_length"] == 2
    assert payload["new_session"] is True
    assert payload["session_ended"] is False

    session = client.get(f"/v1/chat/sessions/{payload['session_id']}", headers={"X-User-Id": "u1"}).json()
    assert session["turn_count"] == 2
    assert session["exchange_count"] == 1
    assert session["context"]["trimester"] == 2


def test_missing_user_header_is_rejected(client) -> None:
    response = client.post("/v1/chat/message", json={"message": "hi"})

    assert response.status_code == 422


def test_blank_message_is_rejected(client) -> None:
    response = client.post("/v1/chat/message", json={"message": "   "}, headers={"X-User-Id": "u1"})

    assert response.status_code == 400


def test_recent_turns_endpoint(client) -> None:
    first = send(client, "hello")
    send(client, "how big is the baby?", session_id=first["session_id"])

    response = client.get(
        f"/v1/chat/sessions/{first['session_id']}/turns",
        params={"limit": 2},
        headers={"X-User-Id": "u1"},
    )
    turns = response.json()

    assert [turn["role"] for turn in turns] == ["user", "assistant"]
    assert turns[0]["text"] == "how big is the baby?"

    full = client.get(f"/v1/chat/sessions/{first['session_id']}/turns", headers={"X-User-Id": "u1"}).json()
    assert len(full) == 4


def test_threshold_ends_session_and_stores_context(client, runtime) -> None:
    first = send(client, "I have nausea")
    send(client, "still nausea", session_id=first["session_id"])
    last = send(client, "any gentle exercise?", session_id=first["session_id"])
    client.portal.call(runtime.driver.drain)

    assert last["session_ended"] is True
    missing = client.get(f"/v1/chat/sessions/{first['session_id']}", headers={"X-User-Id": "u1"})
    assert missing.status_code == 404

    context = client.get("/v1/chat/context", headers={"X-User-Id": "u1"})
    assert context.status_code == 200
    body = context.json()
    assert body["session_count"] == 1
    assert "nausea" in body["conversation_summary"]["common_concerns"]


def test_sessions_are_private_to_their_user(client) -> None:
    payload = send(client, "hello", user="u1")

    response = client.get(f"/v1/chat/sessions/{payload['session_id']}", headers={"X-User-Id": "u2"})
    assert response.status_code == 404

    other = send(client, "hello", user="u2", session_id=payload["session_id"])
    assert other["session_id"] != payload["session_id"]
    assert other["new_session"] is True


def test_end_session_endpoint(client) -> None:
    payload = send(client, "hello")

    response = client.delete(f"/v1/chat/sessions/{payload['session_id']}", headers={"X-User-Id": "u1"})
    assert response.status_code == 200
    assert response.json()["message_count"] == 2

    again = client.delete(f"/v1/chat/sessions/{payload['session_id']}", headers={"X-User-Id": "u1"})
    assert again.status_code == 404


def test_context_read_and_clear(client, runtime) -> None:
    assert client.get("/v1/chat/context", headers={"X-User-Id": "u1"}).status_code == 404

    runtime.user_contexts.merge_session_summary("u1", {"concerns": ["fatigue"], "messageCount": 2})

    cleared = client.delete("/v1/chat/context", headers={"X-User-Id": "u1"})
    assert cleared.json() == {"cleared": True}
    assert client.delete("/v1/chat/context", headers={"X-User-Id": "u1"}).json() == {"cleared": False}


def test_stats_endpoint(client) -> None:
    send(client, "hello", user="u1")
    send(client, "hello", user="u2")

    stats = client.get("/v1/health/stats").json()

    assert stats["active_sessions"] == 2
    assert stats["buffered_turns"] == 4
    assert stats["user_contexts"]["total_users"] == 0
