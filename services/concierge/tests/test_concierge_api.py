"""
HTTP-level tests for the concierge routers, through the full middleware
stack with the in-memory store and the scripted completion provider.
"""

import json
from unittest.mock import AsyncMock

import pytest

from services.concierge.errors import PersistenceError, UpstreamCompletionError
from services.concierge.tests.conftest import SAMPLE_ANCESTRY_TEXT

USER = {"X-User-Id": "user-1"}


def _sse_payloads(body: str) -> list:
    payloads = []
    for line in body.splitlines():
        if not line.startswith("data: "):
            continue
        raw = line[len("data: "):]
        payloads.append(raw if raw == "[DONE]" else json.loads(raw))
    return payloads


async def _fill_quota(store, clock, user_id="user-1", n=5):
    for _ in range(n):
        await store.try_increment_daily_usage(user_id, clock.current.date(), None)


# ---------------------------------------------------------------------------
# Envelope basics
# ---------------------------------------------------------------------------

class TestEnvelope:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert body["data"]["store"] == "memory"
        assert body["data"]["completionModel"] == "claude-sonnet-4-6"
        assert body["requestId"] == resp.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.json()["requestId"] == "req-123"

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        resp = await client.get("/nope")
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_missing_user_header(self, client):
        resp = await client.post("/chat", json={"message": "Oi", "sessionId": "session-1"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_malformed_body(self, client):
        resp = await client.post("/chat", json={"message": "Oi"}, headers=USER)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_orchestrator_missing(self, client, app):
        app.state.orchestrator = None
        resp = await client.post("/chat/sessions", headers=USER)
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "SERVICE_UNAVAILABLE"


# ---------------------------------------------------------------------------
# POST /chat
# ---------------------------------------------------------------------------

class TestChat:
    @pytest.mark.asyncio
    async def test_single_shot(self, client):
        resp = await client.post(
            "/chat",
            json={"message": "Quero planejar uma viagem", "sessionId": "session-1"},
            headers=USER,
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["content"] == "Resposta de teste."
        assert data["context"]["agent_mode"] == "TRADITIONAL_PLANNER"
        assert data["context"]["intent"] == "planning"
        assert data["usage"]["tokens_used"] == 150
        assert data["quota"]["remainingMessages"] == 4

    @pytest.mark.asyncio
    async def test_message_too_long(self, client):
        resp = await client.post(
            "/chat", json={"message": "a" * 5001, "sessionId": "session-1"}, headers=USER,
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Mensagem muito longa. Máximo 5000 caracteres."

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, client, store, clock):
        await _fill_quota(store, clock)
        resp = await client.post(
            "/chat", json={"message": "Oi", "sessionId": "session-1"}, headers=USER,
        )
        assert resp.status_code == 429
        error = resp.json()["error"]
        assert error["code"] == "QUOTA_EXCEEDED"
        assert error["usage"]["remainingMessages"] == 0
        assert error["usage"]["dailyLimit"] == 5

    @pytest.mark.asyncio
    async def test_upstream_timeout(self, client, provider):
        provider.error = UpstreamCompletionError("timeout", detail="read timed out")
        resp = await client.post(
            "/chat", json={"message": "Oi", "sessionId": "session-1"}, headers=USER,
        )
        assert resp.status_code == 504
        error = resp.json()["error"]
        assert error["code"] == "UPSTREAM_TIMEOUT"
        assert "read timed out" not in error["message"]

    @pytest.mark.asyncio
    async def test_upstream_auth(self, client, provider):
        provider.error = UpstreamCompletionError("auth")
        resp = await client.post(
            "/chat", json={"message": "Oi", "sessionId": "session-1"}, headers=USER,
        )
        assert resp.status_code == 502

    @pytest.mark.asyncio
    async def test_streaming(self, client):
        resp = await client.post(
            "/chat",
            json={"message": "Oi", "sessionId": "session-1", "useStreaming": True},
            headers=USER,
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = _sse_payloads(resp.text)
        assert events[0]["type"] == "context"
        assert events[0]["context"]["agent_mode"] == "TRADITIONAL_PLANNER"
        assert [e["content"] for e in events[1:-1]] == ["Olá", ", ", "viajante!"]
        assert events[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_streaming_mid_stream_error(self, client, provider):
        provider.stream_error = UpstreamCompletionError("transient")
        resp = await client.post(
            "/chat",
            json={"message": "Oi", "sessionId": "session-1", "useStreaming": True},
            headers=USER,
        )
        events = _sse_payloads(resp.text)
        assert events[-2]["type"] == "error"
        assert events[-2]["code"] == "UPSTREAM_TRANSIENT"
        assert events[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_streaming_connection_failure_is_json(self, client, provider):
        provider.error = UpstreamCompletionError("rate_limit")
        resp = await client.post(
            "/chat",
            json={"message": "Oi", "sessionId": "session-1", "useStreaming": True},
            headers=USER,
        )
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "UPSTREAM_RATE_LIMIT"


# ---------------------------------------------------------------------------
# History and sessions
# ---------------------------------------------------------------------------

class TestHistoryAndSessions:
    @pytest.mark.asyncio
    async def test_history_after_turn(self, client):
        await client.post("/chat", json={"message": "Olá!", "sessionId": "session-1"}, headers=USER)
        resp = await client.get("/chat/history", params={"sessionId": "session-1"}, headers=USER)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
        assert data["messages"][0]["content"] == "Olá!"
        assert data["agentMode"] == "TRADITIONAL_PLANNER"
        assert data["ancestry"] is None

    @pytest.mark.asyncio
    async def test_history_limit_bounds(self, client):
        resp = await client.get(
            "/chat/history", params={"sessionId": "session-1", "limit": 101}, headers=USER,
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_history_is_per_user(self, client):
        await client.post("/chat", json={"message": "Olá!", "sessionId": "session-1"}, headers=USER)
        resp = await client.get(
            "/chat/history", params={"sessionId": "session-1"}, headers={"X-User-Id": "user-2"},
        )
        assert resp.json()["data"]["messages"] == []

    @pytest.mark.asyncio
    async def test_new_session(self, client):
        resp = await client.post("/chat/sessions", headers=USER)
        assert resp.status_code == 200
        assert resp.json()["data"]["sessionId"].startswith("session_")

    @pytest.mark.asyncio
    async def test_list_sessions(self, client):
        await client.post("/chat", json={"message": "Roteiro na Itália", "sessionId": "session-1"}, headers=USER)
        resp = await client.get("/chat/sessions", headers=USER)
        assert resp.status_code == 200
        (session,) = resp.json()["data"]["sessions"]
        assert session["sessionId"] == "session-1"
        assert session["preview"] == "Roteiro na Itália"
        assert session["messageCount"] == 2
        assert session["hasDnaData"] is False

    @pytest.mark.asyncio
    async def test_delete_session(self, client):
        await client.post("/chat", json={"message": "Olá!", "sessionId": "session-1"}, headers=USER)
        resp = await client.delete("/chat", params={"sessionId": "session-1"}, headers=USER)
        assert resp.status_code == 200
        assert resp.json()["data"] == {"sessionId": "session-1", "deletedMessages": 2}

        history = await client.get("/chat/history", params={"sessionId": "session-1"}, headers=USER)
        assert history.json()["data"]["messages"] == []
        sessions = await client.get("/chat/sessions", headers=USER)
        assert sessions.json()["data"]["sessions"] == []

    @pytest.mark.asyncio
    async def test_delete_session_requires_session_id(self, client):
        resp = await client.delete("/chat", headers=USER)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_delete_session_requires_user(self, client):
        resp = await client.delete("/chat", params={"sessionId": "session-1"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_list_sessions_store_failure(self, client, store):
        store.list_sessions = AsyncMock(side_effect=PersistenceError())
        resp = await client.get("/chat/sessions", headers=USER)
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "PERSISTENCE_ERROR"


# ---------------------------------------------------------------------------
# POST /ancestry
# ---------------------------------------------------------------------------

class TestAncestryUpload:
    @pytest.mark.asyncio
    async def test_upload_and_history_summary(self, client):
        resp = await client.post(
            "/ancestry",
            files={"file": ("relatorio.txt", SAMPLE_ANCESTRY_TEXT.encode(), "text/plain")},
            data={"sessionId": "session-1"},
            headers=USER,
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["agentMode"] == "DNA_SPECIALIST"
        assert data["profile"]["testProvider"] == "genera"
        assert len(data["profile"]["ancestry"]) == 5
        assert "Ibérica: 45.2%" in data["summary"]

        history = await client.get("/chat/history", params={"sessionId": "session-1"}, headers=USER)
        hist = history.json()["data"]
        assert hist["agentMode"] == "DNA_SPECIALIST"
        assert hist["ancestry"]["topRegion"] == "Ibérica"

    @pytest.mark.asyncio
    async def test_unsupported_type(self, client):
        resp = await client.post(
            "/ancestry",
            files={"file": ("foto.png", b"\x89PNG....", "image/png")},
            data={"sessionId": "session-1"},
            headers=USER,
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unparseable_report(self, client):
        resp = await client.post(
            "/ancestry",
            files={"file": ("vazio.txt", b"nada aqui", "text/plain")},
            data={"sessionId": "session-1"},
            headers=USER,
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "ANCESTRY_TEXT_TOO_SHORT"

    @pytest.mark.asyncio
    async def test_file_too_large(self, client, orchestrator):
        orchestrator.max_file_bytes = 100
        resp = await client.post(
            "/ancestry",
            files={"file": ("grande.txt", b"x" * 500, "text/plain")},
            data={"sessionId": "session-1"},
            headers=USER,
        )
        assert resp.status_code == 413
        assert resp.json()["error"]["code"] == "FILE_TOO_LARGE"


async def _upload(client, session_id="session-1"):
    return await client.post(
        "/ancestry",
        files={"file": ("relatorio.txt", SAMPLE_ANCESTRY_TEXT.encode(), "text/plain")},
        data={"sessionId": session_id},
        headers=USER,
    )


class TestAncestryManagement:
    @pytest.mark.asyncio
    async def test_list_uploads(self, client):
        await _upload(client, "session-1")
        await _upload(client, "session-2")

        resp = await client.get("/ancestry", headers=USER)
        assert resp.status_code == 200
        uploads = resp.json()["data"]["uploads"]
        assert [u["sessionId"] for u in uploads] == ["session-2", "session-1"]
        assert uploads[0]["testProvider"] == "genera"
        assert uploads[0]["topRegion"] == "Ibérica"

        filtered = await client.get("/ancestry", params={"sessionId": "session-1"}, headers=USER)
        assert [u["sessionId"] for u in filtered.json()["data"]["uploads"]] == ["session-1"]

    @pytest.mark.asyncio
    async def test_delete_upload_returns_session_to_planner(self, client):
        await _upload(client)
        upload_id = (await client.get("/ancestry", headers=USER)).json()["data"]["uploads"][0]["id"]

        resp = await client.delete(f"/ancestry/{upload_id}", headers=USER)
        assert resp.status_code == 200
        assert resp.json()["data"] == {"id": upload_id, "deleted": True}

        history = await client.get("/chat/history", params={"sessionId": "session-1"}, headers=USER)
        assert history.json()["data"]["agentMode"] == "TRADITIONAL_PLANNER"

    @pytest.mark.asyncio
    async def test_delete_unknown_upload(self, client):
        resp = await client.delete("/ancestry/nao-existe", headers=USER)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_cannot_delete_other_users_upload(self, client):
        await _upload(client)
        upload_id = (await client.get("/ancestry", headers=USER)).json()["data"]["uploads"][0]["id"]

        resp = await client.delete(f"/ancestry/{upload_id}", headers={"X-User-Id": "user-2"})
        assert resp.status_code == 404
        assert len((await client.get("/ancestry", headers=USER)).json()["data"]["uploads"]) == 1

    @pytest.mark.asyncio
    async def test_list_requires_user(self, client):
        resp = await client.get("/ancestry")
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# GET /users/{id}/rate-limit
# ---------------------------------------------------------------------------

class TestRateLimitStatus:
    @pytest.mark.asyncio
    async def test_fresh_user(self, client):
        resp = await client.get("/users/user-1/rate-limit", headers=USER)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["canSendMessage"] is True
        assert data["usage"] == {
            "messagesSentToday": 0,
            "isFreeTier": True,
            "dailyLimit": 5,
            "remainingMessages": 5,
        }

    @pytest.mark.asyncio
    async def test_check_does_not_consume(self, client):
        await client.get("/users/user-1/rate-limit", headers=USER)
        resp = await client.get("/users/user-1/rate-limit", headers=USER)
        assert resp.json()["data"]["usage"]["messagesSentToday"] == 0

    @pytest.mark.asyncio
    async def test_exhausted(self, client, store, clock):
        await _fill_quota(store, clock)
        data = (await client.get("/users/user-1/rate-limit", headers=USER)).json()["data"]
        assert data["canSendMessage"] is False
        assert data["reason"]

    @pytest.mark.asyncio
    async def test_other_user_forbidden(self, client):
        resp = await client.get("/users/user-2/rate-limit", headers=USER)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"
