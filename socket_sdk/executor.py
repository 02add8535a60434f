"""Send one logical API call, with retries, and classify how it ended.

Outcomes:
  - 2xx                      -> Success envelope
  - expected status (4xx)    -> Error envelope, or ApiResponseError with throws
  - 5xx after retries        -> ServerError
  - transport failure        -> NetworkError
"""

import asyncio
import json
import logging
import time
from collections.abc import Container

import httpx

from .errors import ApiResponseError, MalformedResponseError, NetworkError, ServerError, ValidationError
from .models import (
    Hooks,
    RequestDescriptor,
    RequestInfo,
    ResponseInfo,
    ResponseType,
    ResultEnvelope,
    error,
    is_ok_status,
    success,
)
from .retry import RetryPolicy, RetryState
from .sink import StreamBody
from .utils import api_error_guidance, filter_redundant_cause, query_to_params, sanitize_headers

logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_STATUSES = range(400, 500)
_PREVIEW_LENGTH = 100


class RequestExecutor:
    """Runs RequestDescriptors against an ``httpx.AsyncClient``.

    The client carries base URL, credentials and user agent; this class only
    decides what to send and what the response means.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: RetryPolicy | None = None,
        *,
        throws: bool = False,
        expected_statuses: Container[int] = DEFAULT_EXPECTED_STATUSES,
        timeout: int | None = None,
        hooks: Hooks | None = None,
    ):
        self._client = client
        self.policy = policy or RetryPolicy()
        self.throws = throws
        self.expected_statuses = expected_statuses
        self.timeout = timeout  # ms, whole attempt
        self.hooks = hooks or Hooks()

    async def execute(self, descriptor: RequestDescriptor) -> ResultEnvelope:
        if not isinstance(descriptor, RequestDescriptor):
            raise ValidationError(f"Expected a RequestDescriptor, got {type(descriptor).__name__}")

        policy = self.policy.with_retries(descriptor.retries)
        throws = self.throws if descriptor.throws is None else descriptor.throws
        state = RetryState()

        while True:
            state.begin_attempt()
            try:
                response = await self._send(descriptor, state.attempt)
            except httpx.RequestError as exc:
                await self._network_failure(descriptor, policy, state, exc)
                continue

            status = response.status_code
            state.record(status)

            if is_ok_status(status):
                try:
                    data = await self._read_data(response, descriptor.response_type)
                except MalformedResponseError as exc:
                    await self._network_failure(descriptor, policy, state, exc)
                    continue
                state.succeeded()
                return success(status, data)

            if policy.should_retry(state.attempt, status):
                await response.aclose()
                await self._backoff(descriptor, policy, state, response)
                continue

            try:
                await _read_and_close(response)
            except httpx.RequestError as exc:
                await self._network_failure(descriptor, policy, state, exc)
                continue

            state.exhausted()
            return self._classify_failure(response, throws)

    async def _send(self, descriptor: RequestDescriptor, attempt: int = 0) -> httpx.Response:
        timeout_ms = descriptor.timeout or self.timeout
        request = self._client.build_request(
            descriptor.method,
            descriptor.path,
            params=query_to_params(descriptor.params),
            json=descriptor.body,
            timeout=timeout_ms / 1000 if timeout_ms else httpx.USE_CLIENT_DEFAULT,
        )
        headers = sanitize_headers(dict(request.headers))
        logger.debug("%s %s headers=%s", request.method, request.url, headers)
        if self.hooks.on_request is not None:
            self.hooks.on_request(RequestInfo(request.method, str(request.url), headers, attempt))

        stream = descriptor.response_type == ResponseType.STREAM
        started = time.monotonic()
        try:
            response = await self._send_within(request, stream, timeout_ms)
        except httpx.RequestError as exc:
            self._fire_response(request, started, attempt, exc=exc)
            raise
        self._fire_response(request, started, attempt, response=response)
        return response

    async def _send_within(self, request: httpx.Request, stream: bool, timeout_ms) -> httpx.Response:
        if not timeout_ms:
            return await self._client.send(request, stream=stream)
        try:
            async with asyncio.timeout(timeout_ms / 1000):
                return await self._client.send(request, stream=stream)
        except TimeoutError as exc:
            raise httpx.TimeoutException(
                f"Request timed out after {timeout_ms}ms", request=request
            ) from exc

    def _fire_response(self, request, started, attempt, response=None, exc=None) -> None:
        if self.hooks.on_response is None:
            return
        info = ResponseInfo(
            method=request.method,
            url=str(request.url),
            duration=(time.monotonic() - started) * 1000,
            status=response.status_code if response is not None else None,
            headers=sanitize_headers(dict(response.headers)) if response is not None else None,
            error=exc,
            attempt=attempt,
        )
        self.hooks.on_response(info)

    async def _network_failure(
        self,
        descriptor: RequestDescriptor,
        policy: RetryPolicy,
        state: RetryState,
        exc: Exception,
    ) -> None:
        """Back off if ``exc`` earns a retry, else raise it as a NetworkError."""
        state.record(exc)
        if policy.should_retry(state.attempt, exc):
            await self._backoff(descriptor, policy, state)
            return
        state.exhausted()
        if isinstance(exc, NetworkError):
            raise exc
        raise NetworkError(
            f"Socket API request failed after {state.attempt + 1} attempt(s): "
            f"{descriptor.method} {descriptor.path}: {exc}"
        ) from exc

    async def _backoff(
        self,
        descriptor: RequestDescriptor,
        policy: RetryPolicy,
        state: RetryState,
        response: httpx.Response | None = None,
    ) -> None:
        delay = policy.delay_for(state.attempt, response)
        reason = f"HTTP {state.last_status}" if state.last_error is None else repr(state.last_error)
        logger.warning(
            "%s %s: %s, retrying (%d/%d) in %.0fms",
            descriptor.method,
            descriptor.path,
            reason,
            state.attempt + 1,
            policy.retries,
            delay,
        )
        state.retrying()
        await asyncio.sleep(delay / 1000)

    async def _read_data(self, response: httpx.Response, response_type: ResponseType):
        if response_type == ResponseType.STREAM:
            return StreamBody(response)
        if response_type == ResponseType.RESPONSE:
            return response
        if response_type == ResponseType.TEXT:
            return response.text
        if response_type == ResponseType.NDJSON:
            return parse_ndjson(response.text)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            text = response.text
            preview = text[:_PREVIEW_LENGTH].strip()
            ellipsis = "…" if len(text) > _PREVIEW_LENGTH else ""
            raise MalformedResponseError(
                f"Socket API - Invalid JSON response: {preview}{ellipsis}", body=text
            ) from exc

    def _classify_failure(self, response: httpx.Response, throws: bool) -> ResultEnvelope:
        status = response.status_code
        message, cause = failure_details(response)
        logger.debug("HTTP %d: %s", status, message)

        if status >= 500:
            raise ServerError(status, message, cause)
        if status in self.expected_statuses and not throws:
            return error(status, message, cause)
        raise ApiResponseError(status, message, cause)


async def _read_and_close(response: httpx.Response) -> None:
    try:
        await response.aread()
    finally:
        await response.aclose()


def parse_ndjson(text: str) -> list[dict]:
    """Parse newline-delimited JSON, keeping only object lines."""
    items = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except ValueError:
            continue
        if isinstance(item, dict):
            items.append(item)
    return items


def failure_details(response: httpx.Response) -> tuple[str, str | None]:
    """Build (message, cause) for a failed response.

    The message comes from the ``error.message`` field of a JSON body when
    present, then the raw body text, then the reason phrase.
    """
    body = response.text.strip()
    detail = None
    try:
        parsed = json.loads(body) if body else None
    except ValueError:
        parsed = None
        detail = body

    if isinstance(parsed, dict):
        err = parsed.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            detail = err["message"]
            details = err.get("details")
            if details:
                details_str = details if isinstance(details, str) else json.dumps(details)
                detail = f"{detail} - Details: {details_str}"
        elif isinstance(err, str):
            detail = err
        elif isinstance(parsed.get("message"), str):
            detail = parsed["message"]

    message = (detail or "").strip() or response.reason_phrase or "Request failed"
    guidance = api_error_guidance(response.status_code, response.headers.get("retry-after"))
    return message, filter_redundant_cause(message, guidance)
