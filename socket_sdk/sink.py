"""Deliver streamed response bodies to files, writables, or back to the caller."""

import inspect
import logging
import os
from collections.abc import AsyncIterable, AsyncIterator

import aiofiles
import httpx

from .errors import StreamSizeError, ValidationError
from .models import MAX_STREAM_SIZE

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class StreamBody:
    """Async iterable over the body of a response that is still open.

    Whoever holds it must iterate or close it; the connection stays checked
    out until then.
    """

    def __init__(self, response: httpx.Response, chunk_size: int = CHUNK_SIZE):
        self.response = response
        self._chunk_size = chunk_size

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.response.headers

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes(self._chunk_size)

    async def iter_lines(self) -> AsyncIterator[str]:
        async for line in self.response.aiter_lines():
            yield line

    async def aclose(self) -> None:
        await self.response.aclose()

    async def __aenter__(self) -> "StreamBody":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class StreamSink:
    """Pipe a body to its destination without buffering it in memory.

    Targets:
      - ``str`` / ``os.PathLike``: file opened and closed here.
      - object with ``write()``: sync or async; ``drain()`` is awaited when
        present. Never closed here.
      - ``None``: the body is handed back and the caller owns it.

    Anything else raises ValidationError (the body is still closed).
    """

    def __init__(self, max_size: int = MAX_STREAM_SIZE):
        self.max_size = max_size

    async def deliver(self, body: AsyncIterable[bytes], target=None):
        if target is None:
            return body
        try:
            if isinstance(target, (str, os.PathLike)):
                written = await self._to_file(body, target)
            elif callable(getattr(target, "write", None)):
                written = await self._to_writable(body, target)
            else:
                raise ValidationError(f"Unsupported stream target: {type(target).__name__}")
        finally:
            await _close_body(body)
        logger.debug("Delivered %d bytes to %r", written, target)
        return None

    async def _to_file(self, body: AsyncIterable[bytes], path) -> int:
        written = 0
        async with aiofiles.open(path, "wb") as f:
            async for chunk in self._limited(body):
                await f.write(chunk)
                written += len(chunk)
        return written

    async def _to_writable(self, body: AsyncIterable[bytes], writable) -> int:
        write = writable.write
        drain = getattr(writable, "drain", None)
        written = 0
        async for chunk in self._limited(body):
            result = write(chunk)
            if inspect.isawaitable(result):
                await result
            if drain is not None:
                result = drain()
                if inspect.isawaitable(result):
                    await result
            written += len(chunk)
        return written

    async def _limited(self, body: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        total = 0
        async for chunk in body:
            total += len(chunk)
            if total > self.max_size:
                raise StreamSizeError(f"Response exceeds maximum stream size of {self.max_size} bytes")
            yield chunk


async def _close_body(body) -> None:
    aclose = getattr(body, "aclose", None)
    if aclose is not None:
        await aclose()
