"""Integration tests for RequestExecutor against a mocked transport.

Backoff sleeps are patched out; every other part of httpx runs for real.
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from socket_sdk.errors import (
    ApiResponseError,
    MalformedResponseError,
    NetworkError,
    ServerError,
    ValidationError,
)
from socket_sdk.executor import RequestExecutor
from socket_sdk.models import Error, Hooks, RequestDescriptor, ResponseType, Success, is_success
from socket_sdk.retry import RetryPolicy
from socket_sdk.sink import StreamBody

from mock_api import BASE_URL, ScriptedHandler


@pytest.fixture
def sleep():
    with patch("socket_sdk.executor.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def run(make_client, sleep):
    """Execute one descriptor against a scripted transport."""

    async def _run(handler, descriptor=None, policy=None, **kwargs):
        client = make_client(handler)
        executor = RequestExecutor(client, policy or RetryPolicy(retries=2, retry_delay=100), **kwargs)
        try:
            return await executor.execute(descriptor or RequestDescriptor("GET", "organizations"))
        finally:
            await client.aclose()

    return _run


class BrokenStream(httpx.AsyncByteStream):
    """Body whose connection drops partway through."""

    async def __aiter__(self):
        yield b"partial"
        raise httpx.ReadError("connection reset")

    async def aclose(self):
        pass


class TestSuccess:
    @pytest.mark.asyncio
    async def test_json(self, run):
        handler = ScriptedHandler(httpx.Response(200, json={"organizations": {}}))
        result = await run(handler)
        assert result == Success(status=200, data={"organizations": {}})
        assert is_success(result)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_empty_json_body(self, run):
        result = await run(ScriptedHandler(httpx.Response(204)))
        assert result == Success(status=204, data={})

    @pytest.mark.asyncio
    async def test_text(self, run):
        descriptor = RequestDescriptor("GET", "openapi", response_type=ResponseType.TEXT)
        result = await run(ScriptedHandler(httpx.Response(200, text="plain body")), descriptor)
        assert result.data == "plain body"

    @pytest.mark.asyncio
    async def test_raw_response(self, run):
        descriptor = RequestDescriptor("GET", "openapi", response_type="response")
        result = await run(ScriptedHandler(httpx.Response(200, text="raw")), descriptor)
        assert isinstance(result.data, httpx.Response)
        assert result.data.text == "raw"

    @pytest.mark.asyncio
    async def test_ndjson(self, run):
        descriptor = RequestDescriptor("POST", "purl", body={"components": []}, response_type="ndjson")
        body = '{"name": "a"}\n{"name": "b"}\n'
        result = await run(ScriptedHandler(httpx.Response(200, text=body)), descriptor)
        assert result.data == [{"name": "a"}, {"name": "b"}]

    @pytest.mark.asyncio
    async def test_stream_returns_open_body(self, run):
        descriptor = RequestDescriptor("GET", "orgs/a/full-scans/s1", response_type=ResponseType.STREAM)
        result = await run(ScriptedHandler(httpx.Response(200, content=b"x" * 10_000)), descriptor)
        assert isinstance(result.data, StreamBody)
        chunks = [chunk async for chunk in result.data]
        await result.data.aclose()
        assert b"".join(chunks) == b"x" * 10_000

    @pytest.mark.asyncio
    async def test_sends_normalized_params_and_body(self, run):
        handler = ScriptedHandler(httpx.Response(201, json={"id": 1}))
        descriptor = RequestDescriptor(
            "post",
            "orgs/acme/repos",
            params={"perPage": 10, "page": 0, "sort": None, "q": ""},
            body={"name": "widget"},
        )
        await run(handler, descriptor)
        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v0/orgs/acme/repos"
        assert dict(request.url.params) == {"per_page": "10", "page": "0"}
        assert json.loads(request.content) == {"name": "widget"}


class TestRetries:
    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, run, sleep):
        handler = ScriptedHandler(httpx.Response(503), httpx.Response(503), httpx.Response(200, json={"ok": True}))
        result = await run(handler)
        assert result == Success(status=200, data={"ok": True})
        assert handler.calls == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_server_error_raises(self, run):
        handler = ScriptedHandler(httpx.Response(503, json={"error": {"message": "maintenance"}}))
        with pytest.raises(ServerError) as exc_info:
            await run(handler)
        assert handler.calls == 3
        assert exc_info.value.status == 503
        assert exc_info.value.message == "maintenance"

    @pytest.mark.asyncio
    async def test_plain_500_is_not_retried(self, run):
        handler = ScriptedHandler(httpx.Response(500))
        with pytest.raises(ServerError):
            await run(handler)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_descriptor_retries_override(self, run):
        handler = ScriptedHandler(httpx.Response(503))
        with pytest.raises(ServerError):
            await run(handler, RequestDescriptor("GET", "organizations", retries=0))
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_auth_failures_are_never_retried(self, run):
        policy = RetryPolicy(retries=3, retryable_statuses=frozenset({401, 503}))
        handler = ScriptedHandler(httpx.Response(401, json={"error": {"message": "bad token"}}))
        result = await run(handler, policy=policy)
        assert isinstance(result, Error)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_retry_after_sets_delay(self, run, sleep):
        handler = ScriptedHandler(httpx.Response(429, headers={"Retry-After": "2"}), httpx.Response(200, json={}))
        await run(handler)
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_backoff_is_within_jitter_bounds(self, run, sleep):
        handler = ScriptedHandler(httpx.Response(502))
        with pytest.raises(ServerError):
            await run(handler)
        delays = [call.args[0] for call in sleep.await_args_list]
        assert 0.05 <= delays[0] <= 0.1
        assert 0.1 <= delays[1] <= 0.2

    @pytest.mark.asyncio
    async def test_logs_retries(self, run, caplog):
        caplog.set_level(logging.WARNING, logger="socket_sdk.executor")
        handler = ScriptedHandler(httpx.Response(503), httpx.Response(200, json={}))
        await run(handler)
        assert "GET organizations: HTTP 503, retrying (1/2)" in caplog.text


class TestExpectedFailures:
    @pytest.mark.asyncio
    async def test_4xx_becomes_error_envelope(self, run):
        handler = ScriptedHandler(httpx.Response(404, json={"error": {"message": "Organization not found"}}))
        result = await run(handler)
        assert isinstance(result, Error)
        assert result.status == 404
        assert result.error == "Organization not found"
        assert "Resource not found." in result.cause
        assert result.success is False

    @pytest.mark.asyncio
    async def test_throws_raises_api_response_error(self, run):
        handler = ScriptedHandler(httpx.Response(403, json={"error": {"message": "Forbidden"}}))
        with pytest.raises(ApiResponseError) as exc_info:
            await run(handler, throws=True)
        assert exc_info.value.status == 403
        assert "Insufficient permissions" in exc_info.value.cause

    @pytest.mark.asyncio
    async def test_descriptor_throws_overrides_executor(self, run):
        handler = ScriptedHandler(httpx.Response(400, text="bad"))
        result = await run(handler, RequestDescriptor("GET", "organizations", throws=False), throws=True)
        assert result.status == 400

        with pytest.raises(ApiResponseError):
            await run(ScriptedHandler(httpx.Response(400)), RequestDescriptor("GET", "organizations", throws=True))

    @pytest.mark.asyncio
    async def test_unexpected_status_raises(self, run):
        with pytest.raises(ApiResponseError) as exc_info:
            await run(ScriptedHandler(httpx.Response(302, headers={"Location": "https://elsewhere.test/"})))
        assert exc_info.value.status == 302

    @pytest.mark.asyncio
    async def test_custom_expected_statuses(self, run):
        with pytest.raises(ApiResponseError):
            await run(ScriptedHandler(httpx.Response(409)), expected_statuses={404})


class TestNetworkFailures:
    @pytest.mark.asyncio
    async def test_connect_error_exhausts_retries(self, run):
        cause = httpx.ConnectError("connection refused")
        handler = ScriptedHandler(cause)
        with pytest.raises(NetworkError) as exc_info:
            await run(handler)
        assert handler.calls == 3
        assert exc_info.value.__cause__ is cause
        assert exc_info.value.status == 0

    @pytest.mark.asyncio
    async def test_recovers_from_connect_error(self, run):
        handler = ScriptedHandler(httpx.ConnectError("refused"), httpx.Response(200, json={"ok": 1}))
        result = await run(handler)
        assert result.data == {"ok": 1}

    @pytest.mark.asyncio
    async def test_malformed_json_is_retried_then_raised(self, run):
        handler = ScriptedHandler(httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(MalformedResponseError, match="Invalid JSON response: <html>oops</html>"):
            await run(handler)
        assert handler.calls == 3

    @pytest.mark.asyncio
    async def test_network_retry_can_be_disabled(self, run):
        handler = ScriptedHandler(httpx.ReadError("reset"))
        with pytest.raises(NetworkError):
            await run(handler, policy=RetryPolicy(retries=3, retry_on_network_error=False))
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_aborts_attempt(self, run):
        async def hang(request):
            await asyncio.Event().wait()

        handler = ScriptedHandler(hang)
        descriptor = RequestDescriptor("GET", "organizations", timeout=50, retries=0)
        with pytest.raises(NetworkError) as exc_info:
            await run(handler, descriptor)
        assert isinstance(exc_info.value.__cause__, httpx.TimeoutException)

    @pytest.mark.asyncio
    async def test_broken_error_body_is_a_network_failure(self, run):
        handler = ScriptedHandler(lambda request: httpx.Response(404, stream=BrokenStream()))
        descriptor = RequestDescriptor("GET", "orgs/a/full-scans/s1", response_type=ResponseType.STREAM)
        with pytest.raises(NetworkError) as exc_info:
            await run(handler, descriptor)
        assert isinstance(exc_info.value.__cause__, httpx.ReadError)
        assert handler.calls == 3


class TestHooks:
    @pytest.mark.asyncio
    async def test_called_once_per_attempt(self, run):
        requests, responses = [], []
        handler = ScriptedHandler(httpx.Response(503), httpx.Response(200, json={}))
        await run(handler, hooks=Hooks(on_request=requests.append, on_response=responses.append))
        assert [info.attempt for info in requests] == [0, 1]
        assert [(info.attempt, info.status) for info in responses] == [(0, 503), (1, 200)]

    @pytest.mark.asyncio
    async def test_headers_are_redacted(self, make_client):
        requests, responses = [], []
        handler = ScriptedHandler(httpx.Response(200, json={}, headers={"Set-Cookie": "session=abc"}))
        client = make_client(handler, headers={"Authorization": "Bearer s3cret"})
        executor = RequestExecutor(client, hooks=Hooks(on_request=requests.append, on_response=responses.append))
        await executor.execute(RequestDescriptor("GET", "organizations"))
        await client.aclose()

        assert requests[0].method == "GET"
        assert requests[0].url == f"{BASE_URL}organizations"
        assert requests[0].headers["authorization"] == "[REDACTED]"
        assert responses[0].status == 200
        assert responses[0].headers["set-cookie"] == "[REDACTED]"
        assert responses[0].duration >= 0
        assert responses[0].error is None

    @pytest.mark.asyncio
    async def test_network_error_reaches_on_response(self, run):
        responses = []
        cause = httpx.ConnectError("refused")
        descriptor = RequestDescriptor("GET", "organizations", retries=0)
        with pytest.raises(NetworkError):
            await run(ScriptedHandler(cause), descriptor, hooks=Hooks(on_response=responses.append))
        assert len(responses) == 1
        assert responses[0].error is cause
        assert responses[0].status is None
        assert responses[0].headers is None

    @pytest.mark.asyncio
    async def test_hook_errors_propagate(self, run):
        def explode(info):
            raise RuntimeError("hook failed")

        handler = ScriptedHandler(httpx.Response(200, json={}))
        with pytest.raises(RuntimeError, match="hook failed"):
            await run(handler, hooks=Hooks(on_request=explode))
        assert handler.calls == 0


class TestValidation:
    @pytest.mark.asyncio
    async def test_rejects_non_descriptor(self, run):
        handler = ScriptedHandler(httpx.Response(200))
        with pytest.raises(ValidationError):
            await run(handler, {"method": "GET", "path": "organizations"})
        assert handler.calls == 0


class TestLogging:
    @pytest.mark.asyncio
    async def test_redacts_authorization(self, make_client, sleep, caplog):
        caplog.set_level(logging.DEBUG, logger="socket_sdk.executor")
        client = make_client(ScriptedHandler(httpx.Response(200, json={})), headers={"Authorization": "Bearer s3cret"})
        await RequestExecutor(client).execute(RequestDescriptor("GET", "organizations"))
        await client.aclose()
        assert "s3cret" not in caplog.text
        assert "[REDACTED]" in caplog.text
