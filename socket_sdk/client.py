"""Socket API client: one method per endpoint, all routed through RequestExecutor."""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping

import httpx

from .batch import BatchStreamController
from .errors import ValidationError
from .executor import RequestExecutor
from .models import (
    ClientOptions,
    Hooks,
    RequestDescriptor,
    ResponseType,
    ResultEnvelope,
    success,
    validate_api_token,
)
from .retry import RetryPolicy
from .settings import get_settings
from .sink import StreamSink
from .utils import build_path

logger = logging.getLogger(__name__)

DEFAULT_PURL_CHUNK_SIZE = 100


class SocketSdk:
    """Async client for the Socket REST API.

    Usage::

        async with SocketSdk("sktsec_...") as sdk:
            result = await sdk.get_organizations()
            if result.success:
                print(result.data)

    Missing token and options are read from ``SOCKET_*`` environment
    variables (see ``settings.Settings``). The environment is not consulted
    when both are given. ``hooks`` observe every attempt, see ``models.Hooks``.
    """

    def __init__(
        self,
        api_token: str | None = None,
        options: ClientOptions | Mapping | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        policy: RetryPolicy | None = None,
        throws: bool = False,
        hooks: Hooks | None = None,
    ):
        settings = get_settings() if api_token is None or options is None else None
        if api_token is None:
            api_token = settings.api_token
            if not api_token:
                raise ValidationError("SOCKET_API_TOKEN is not set")
        token = validate_api_token(api_token)

        if options is None:
            options = ClientOptions.from_settings(settings)
        elif not isinstance(options, ClientOptions):
            options = ClientOptions.from_mapping(options)
        self.options = options

        self._client = httpx.AsyncClient(
            base_url=options.base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "User-Agent": options.user_agent,
                "Accept": "application/json",
            },
            timeout=options.timeout / 1000,
            transport=transport,
        )
        self.executor = RequestExecutor(
            self._client,
            policy or RetryPolicy(retries=options.retries, retry_delay=options.retry_delay),
            throws=throws,
            hooks=hooks,
        )
        self.sink = StreamSink()
        self.batch = BatchStreamController(self.executor)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "SocketSdk":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> ResultEnvelope:
        return await self.executor.execute(RequestDescriptor(method, path, **kwargs))

    # Generic

    async def get_api(
        self,
        path: str,
        params: Mapping | None = None,
        response_type: ResponseType | str = ResponseType.JSON,
        throws: bool | None = None,
    ) -> ResultEnvelope:
        """GET any endpoint relative to the base URL."""
        return await self._request("GET", path, params=params, response_type=response_type, throws=throws)

    async def send_api(
        self,
        path: str,
        body=None,
        method: str = "POST",
        params: Mapping | None = None,
        throws: bool | None = None,
    ) -> ResultEnvelope:
        """Send a JSON body to any endpoint relative to the base URL."""
        return await self._request(method, path, params=params, body=body, throws=throws)

    # Organizations

    async def get_organizations(self) -> ResultEnvelope:
        return await self._request("GET", "organizations")

    # Repositories

    async def list_repositories(self, org: str, **params) -> ResultEnvelope:
        return await self._request("GET", build_path("orgs", org, "repos"), params=params)

    async def get_repository(self, org: str, repo: str) -> ResultEnvelope:
        return await self._request("GET", build_path("orgs", org, "repos", repo))

    async def create_repository(self, org: str, body: Mapping) -> ResultEnvelope:
        return await self._request("POST", build_path("orgs", org, "repos"), body=dict(body))

    async def delete_repository(self, org: str, repo: str) -> ResultEnvelope:
        return await self._request("DELETE", build_path("orgs", org, "repos", repo))

    # Full scans

    async def list_full_scans(self, org: str, **params) -> ResultEnvelope:
        return await self._request("GET", build_path("orgs", org, "full-scans"), params=params)

    async def get_full_scan_metadata(self, org: str, scan_id: str) -> ResultEnvelope:
        return await self._request("GET", build_path("orgs", org, "full-scans", scan_id, "metadata"))

    async def delete_full_scan(self, org: str, scan_id: str) -> ResultEnvelope:
        return await self._request("DELETE", build_path("orgs", org, "full-scans", scan_id))

    async def stream_full_scan(self, org: str, scan_id: str, output=None) -> ResultEnvelope:
        """Stream a full scan without loading it into memory.

        With ``output`` (a path or a writable) the body is written there and
        the envelope carries no data. Without it, the envelope carries the open
        ``StreamBody`` and the caller must consume or close it.
        """
        result = await self._request(
            "GET", build_path("orgs", org, "full-scans", scan_id), response_type=ResponseType.STREAM
        )
        if not result.success:
            return result
        delivered = await self.sink.deliver(result.data, output)
        return success(result.status, delivered)

    # Policies

    async def get_security_policy(self, org: str) -> ResultEnvelope:
        return await self._request("GET", build_path("orgs", org, "settings", "security-policy"))

    async def get_license_policy(self, org: str) -> ResultEnvelope:
        return await self._request("GET", build_path("orgs", org, "settings", "license-policy"))

    # Tokens

    async def get_api_tokens(self, org: str) -> ResultEnvelope:
        return await self._request("GET", build_path("orgs", org, "tokens"))

    # Batch

    def batch_package_stream(
        self,
        purls: Iterable[str],
        chunk_size: int = DEFAULT_PURL_CHUNK_SIZE,
        concurrency: int | None = None,
        cancel: asyncio.Event | None = None,
        **params,
    ) -> AsyncIterator[ResultEnvelope]:
        """Look up packages by PURL in chunks, yielding one envelope per artifact.

        Chunks run concurrently, so artifacts arrive in completion order.
        A failed chunk yields its ``Error`` envelope and the rest continue.
        """
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
            raise ValidationError(f"chunk_size must be a positive integer, got {chunk_size!r}")
        purls = list(purls)
        descriptors = [
            RequestDescriptor(
                "POST",
                "purl",
                params=params,
                body={"components": [{"purl": purl} for purl in purls[i : i + chunk_size]]},
                response_type=ResponseType.NDJSON,
            )
            for i in range(0, len(purls), chunk_size)
        ]
        logger.debug("Batching %d purls into %d chunks", len(purls), len(descriptors))
        if concurrency is None:
            concurrency = self.options.concurrency
        results = self.batch.stream(descriptors, concurrency, cancel)
        return _flatten_artifacts(results)


async def _flatten_artifacts(results: AsyncIterator[ResultEnvelope]) -> AsyncIterator[ResultEnvelope]:
    try:
        async for result in results:
            if not result.success:
                yield result
                continue
            for artifact in result.data:
                yield success(result.status, artifact)
    finally:
        await results.aclose()
