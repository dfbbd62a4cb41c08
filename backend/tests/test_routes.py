"""
AI Gateway — HTTP Route Tests
==============================

What:  Tests for /api/ai-generate, /api/usage and /health through the ASGI app.
How:   The module-level `gateway_service` in each route is patched with a
       GatewayService built over the in-memory collaborators from conftest,
       so requests run the real orchestration and the real exception
       handlers without a database or model API.

What we test:
    ✅ Chat and transcription success bodies
    ✅ 429 body shape (limit / remaining / resetAt) and Retry-After
    ✅ Error status and code per failure class
    ✅ Request ID propagation
    ✅ Usage meter field names
    ✅ Health status levels
"""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import EXEMPT_TOKEN, STANDARD_TOKEN
from gateway.exceptions import StorageAccessError, UpstreamTimeoutError

AUTH = {"Authorization": f"Bearer {STANDARD_TOKEN}"}
CHAT_BODY = {
    "type": "chat",
    "messages": [{"role": "user", "content": "Summarize chapter 3"}],
    "model": "gpt-4o-mini",
}


@pytest.fixture
def wired(make_service):
    """Routes wired to a GatewayService over fakes."""
    service = make_service()
    with patch("gateway.routes.generate.gateway_service", service), \
         patch("gateway.routes.usage.gateway_service", service):
        yield service


class TestGenerateRoute:

    @pytest.mark.asyncio
    async def test_chat_success(self, test_client, wired, fakes):
        response = await test_client.post("/api/ai-generate", json=CHAT_BODY, headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"content": "answer #1"}
        assert len(fakes.provider.chat_calls) == 1

    @pytest.mark.asyncio
    async def test_untyped_body_defaults_to_chat(self, test_client, wired):
        body = {"messages": CHAT_BODY["messages"]}

        response = await test_client.post("/api/ai-generate", json=body, headers=AUTH)

        assert response.status_code == 200
        assert "content" in response.json()

    @pytest.mark.asyncio
    async def test_inline_transcription_success(self, test_client, wired):
        body = {
            "type": "transcription",
            "audioBase64": base64.b64encode(b"audio-bytes").decode(),
            "mimeType": "audio/webm",
        }

        response = await test_client.post("/api/ai-generate", json=body, headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"text": "transcribed lecture"}

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, test_client, wired, fakes):
        response = await test_client.post("/api/ai-generate", json=CHAT_BODY)

        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"
        assert fakes.provider.chat_calls == []
        assert fakes.audit.types() == ["unauthorized_access_attempt"]

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self, test_client, wired):
        response = await test_client.post(
            "/api/ai-generate",
            content=b"{not json",
            headers={**AUTH, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unknown_type_is_400(self, test_client, wired):
        response = await test_client.post(
            "/api/ai-generate", json={"type": "embedding"}, headers=AUTH
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_quota_exceeded_body(self, test_client, wired, fakes):
        fakes.limits.default_limit = 1

        first = await test_client.post("/api/ai-generate", json=CHAT_BODY, headers=AUTH)
        second = await test_client.post("/api/ai-generate", json=CHAT_BODY, headers=AUTH)

        assert first.status_code == 200
        assert second.status_code == 429
        body = second.json()
        assert body["code"] == "DAILY_LIMIT_REACHED"
        assert "DAILY_LIMIT_REACHED" in body["error"]
        assert body["message"] == "Daily AI generation limit reached"
        assert body["limit"] == 1
        assert body["remaining"] == 0
        assert body["resetAt"] == "2026-03-11T00:00:00Z"
        assert "Retry-After" in second.headers
        assert len(fakes.provider.chat_calls) == 1

    @pytest.mark.asyncio
    async def test_exempt_caller_never_limited(self, test_client, wired, fakes):
        fakes.limits.default_limit = 1
        headers = {"Authorization": f"Bearer {EXEMPT_TOKEN}"}

        for _ in range(3):
            response = await test_client.post("/api/ai-generate", json=CHAT_BODY, headers=headers)
            assert response.status_code == 200

        assert fakes.usage.calls == []

    @pytest.mark.asyncio
    async def test_storage_not_found_is_404(self, test_client, wired, fakes):
        fakes.provider.transcribe_error = StorageAccessError(
            StorageAccessError.NOT_FOUND, path="u/missing.webm"
        )
        body = {"type": "transcription", "storagePath": "u/missing.webm"}

        response = await test_client.post("/api/ai-generate", json=body, headers=AUTH)

        assert response.status_code == 404
        assert response.json()["details"] == {"kind": "not_found"}
        assert "u/missing.webm" not in response.text

    @pytest.mark.asyncio
    async def test_upstream_timeout_is_504(self, test_client, wired, fakes):
        fakes.provider.chat_error = UpstreamTimeoutError(context={"attempts": 3})

        response = await test_client.post("/api/ai-generate", json=CHAT_BODY, headers=AUTH)

        assert response.status_code == 504
        assert response.json()["code"] == "upstream_timeout"
        assert "details" not in response.json()

    @pytest.mark.asyncio
    async def test_admission_database_failure_is_500(self, test_client, wired, fakes):
        fakes.usage.fail_reads = True

        response = await test_client.post("/api/ai-generate", json=CHAT_BODY, headers=AUTH)

        assert response.status_code == 500
        assert response.json()["code"] == "server_error"
        assert fakes.provider.chat_calls == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_generic_500(self, wired, fakes):
        from gateway.main import app

        fakes.provider.chat_error = RuntimeError("secret internals")
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/api/ai-generate", json=CHAT_BODY, headers=AUTH)

        assert response.status_code == 500
        assert "secret internals" not in response.text

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client, wired):
        response = await test_client.post(
            "/api/ai-generate",
            json=CHAT_BODY,
            headers={**AUTH, "X-Request-ID": "web-7f3a"},
        )

        assert response.headers["X-Request-ID"] == "web-7f3a"

    @pytest.mark.asyncio
    async def test_error_body_carries_request_id(self, test_client, wired):
        response = await test_client.post(
            "/api/ai-generate", json=CHAT_BODY, headers={"X-Request-ID": "mob-0001"}
        )

        assert response.json()["request_id"] == "mob-0001"

    @pytest.mark.asyncio
    async def test_forwarded_for_reaches_audit(self, test_client, wired, fakes):
        await test_client.post(
            "/api/ai-generate",
            json=CHAT_BODY,
            headers={**AUTH, "X-Forwarded-For": "198.51.100.4, 10.0.0.1"},
        )

        assert fakes.audit.find("ai_generation_requested")["ip_address"] == "198.51.100.4"


class TestUsageRoute:

    @pytest.mark.asyncio
    async def test_usage_summary_fields(self, test_client, wired):
        await test_client.post("/api/ai-generate", json=CHAT_BODY, headers=AUTH)

        response = await test_client.get("/api/usage", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["tokenCount"] == 42
        assert body["limit"] == 150
        assert body["remaining"] == 149
        assert body["resetAt"].startswith("2026-03-11T00:00:00")
        assert body["unlimited"] is False

    @pytest.mark.asyncio
    async def test_usage_requires_token(self, test_client, wired):
        response = await test_client.get("/api/usage")

        assert response.status_code == 401


class TestHealthRoute:

    @staticmethod
    def _engine(ok: bool):
        conn = AsyncMock()
        if not ok:
            conn.execute.side_effect = OSError("connection refused")
        engine = MagicMock()
        engine.connect.return_value.__aenter__ = AsyncMock(return_value=conn)
        engine.connect.return_value.__aexit__ = AsyncMock(return_value=False)
        return engine

    @pytest.mark.asyncio
    @pytest.mark.parametrize("db_ok,model_ok,status_code,overall", [
        (True, True, 200, "healthy"),
        (True, False, 200, "degraded"),
        (False, True, 503, "unhealthy"),
    ])
    async def test_health_levels(self, test_client, db_ok, model_ok, status_code, overall):
        provider = MagicMock()
        provider.health_check = AsyncMock(return_value=model_ok)

        with patch("gateway.routes.health.engine", self._engine(db_ok)), \
             patch("gateway.routes.health.openai_provider", provider):
            response = await test_client.get("/health")

        assert response.status_code == status_code
        body = response.json()
        assert body["status"] == overall
        assert body["database"] == ("connected" if db_ok else "disconnected")
        assert body["model_api"] == ("available" if model_ok else "unavailable")
