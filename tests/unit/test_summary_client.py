"""
Unit tests for the session summary HTTP client.
"""

import json

import httpx
import pytest

from practice_engine.errors import CollaboratorError
from practice_engine.integrations import SessionSummaryClient


def make_client(handler, retry_attempts=3):
    return SessionSummaryClient(
        api_url="https://functions.example.test/v1/",
        api_key="secret",
        retry_attempts=retry_attempts,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


class TestRequestSummary:
    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"summary": "Nice work on fractions."})

        client = make_client(handler)
        summary = await client.request_summary("sess-1")
        await client.close()

        assert summary == "Nice work on fractions."
        assert str(seen[0].url) == "https://functions.example.test/v1/generate-session-summary"
        assert seen[0].headers["Authorization"] == "Bearer secret"
        assert json.loads(seen[0].content) == {"sessionId": "sess-1"}

    @pytest.mark.asyncio
    async def test_missing_summary_is_none(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        assert await client.request_summary("sess-1") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"error": "Session not found"})

        client = make_client(handler)
        with pytest.raises(CollaboratorError, match="404"):
            await client.request_summary("sess-1")
        await client.close()

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        responses = [httpx.Response(503), httpx.Response(200, json={"summary": "ok"})]

        client = make_client(lambda request: responses.pop(0))
        assert await client.request_summary("sess-1") == "ok"
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler, retry_attempts=2)
        with pytest.raises(CollaboratorError, match="after 2 attempts"):
            await client.request_summary("sess-1")
        await client.close()

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        client = make_client(lambda request: httpx.Response(200, content=b"not json"))
        with pytest.raises(CollaboratorError, match="Malformed"):
            await client.request_summary("sess-1")
        await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [["not", "an", "object"], "just a string", {"summary": 42}, {"summary": ["a", "b"]}],
    )
    async def test_unexpected_json_shape(self, body):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=body)

        client = make_client(handler)
        with pytest.raises(CollaboratorError, match="Malformed"):
            await client.request_summary("sess-1")
        await client.close()

        assert len(calls) == 1


class TestFromSettings:
    def test_disabled_without_url(self, settings):
        assert SessionSummaryClient.from_settings(settings) is None

    @pytest.mark.asyncio
    async def test_configured(self, settings):
        settings.summary_api_url = "https://functions.example.test"
        client = SessionSummaryClient.from_settings(settings)

        assert client is not None
        assert client.api_url == "https://functions.example.test"
        await client.close()
