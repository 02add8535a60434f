"""Data models and constants for the Socket API client."""

import copy
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, Generic, Literal, TypeVar

from .errors import ValidationError

VERSION = "0.1.0"

DEFAULT_BASE_URL = "https://api.socket.dev/v0/"
DEFAULT_USER_AGENT = f"socket-sdk-python/{VERSION}"
DEFAULT_HTTP_TIMEOUT = 30_000  # ms
MIN_HTTP_TIMEOUT = 5_000
MAX_HTTP_TIMEOUT = 5 * 60 * 1000
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY = 1_000  # ms
DEFAULT_CONCURRENCY = 10
MAX_API_TOKEN_LENGTH = 1024
MAX_STREAM_SIZE = 100 * 1024 * 1024  # bytes

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")

T = TypeVar("T")


class ResponseType(str, Enum):
    """How a 2xx response body is interpreted."""

    JSON = "json"
    TEXT = "text"
    RESPONSE = "response"
    STREAM = "stream"
    NDJSON = "ndjson"


# Result envelopes


@dataclass(frozen=True)
class Success(Generic[T]):
    status: int
    data: T
    success: Literal[True] = field(default=True, init=False)


@dataclass(frozen=True)
class Error:
    status: int
    error: str
    cause: str | None = None
    success: Literal[False] = field(default=False, init=False)


ResultEnvelope = Success[T] | Error


def success(status: int, data: T) -> Success[T]:
    return Success(status=status, data=data)


def error(status: int, message: str, cause: str | None = None) -> Error:
    return Error(status=status, error=message, cause=cause)


def is_success(result: object) -> bool:
    return isinstance(result, Success)


def is_error(result: object) -> bool:
    return isinstance(result, Error)


def is_ok_status(status: int) -> bool:
    return 200 <= status < 300


# Requests


@dataclass(frozen=True)
class RequestDescriptor:
    """Immutable description of one HTTP call.

    Validated on construction, so a descriptor that exists can always be sent.
    ``throws`` and ``retries`` override the executor defaults when not None;
    ``timeout`` is in milliseconds. ``params`` is a read-only copy and
    ``body`` a deep copy, so later changes to the caller's objects don't leak in.
    """

    method: str
    path: str
    params: Mapping[str, Any] | None = None
    body: Any = None
    response_type: ResponseType = ResponseType.JSON
    throws: bool | None = None
    retries: int | None = None
    timeout: int | None = None

    def __post_init__(self):
        if not isinstance(self.method, str) or self.method.upper() not in HTTP_METHODS:
            raise ValidationError(f"Unsupported HTTP method: {self.method!r}")
        object.__setattr__(self, "method", self.method.upper())

        _validate_path(self.path)

        try:
            object.__setattr__(self, "response_type", ResponseType(self.response_type))
        except ValueError:
            raise ValidationError(f"Unknown response type: {self.response_type!r}") from None

        if self.body is not None:
            if self.method not in BODY_METHODS:
                raise ValidationError(f"{self.method} requests cannot carry a body")
            object.__setattr__(self, "body", copy.deepcopy(self.body))

        if self.params is not None:
            if not isinstance(self.params, Mapping):
                raise ValidationError("params must be a mapping")
            object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

        if self.retries is not None and (not isinstance(self.retries, int) or self.retries < 0):
            raise ValidationError(f"retries must be a non-negative integer, got {self.retries!r}")
        if self.timeout is not None and (not isinstance(self.timeout, (int, float)) or self.timeout <= 0):
            raise ValidationError(f"timeout must be positive, got {self.timeout!r}")

    def __hash__(self):
        # param values and body may be unhashable; equal descriptors still hash equal
        params = frozenset(self.params) if self.params else frozenset()
        return hash(
            (self.method, self.path, params, self.response_type, self.throws, self.retries, self.timeout)
        )


def _validate_path(path: object) -> None:
    if not isinstance(path, str) or not path:
        raise ValidationError("path must be a non-empty string")
    if _SCHEME_RE.match(path) or path.startswith("/"):
        raise ValidationError(f"path must be relative to the base URL: {path!r}")
    if any(ch.isspace() for ch in path) or "?" in path or "#" in path:
        raise ValidationError(f"path contains illegal characters: {path!r}")
    if ".." in path.split("/"):
        raise ValidationError(f"path must not traverse upwards: {path!r}")


# Hooks


@dataclass(frozen=True)
class RequestInfo:
    """An attempt about to be sent. Credentials in ``headers`` are redacted."""

    method: str
    url: str
    headers: dict[str, str]
    attempt: int = 0


@dataclass(frozen=True)
class ResponseInfo:
    """How an attempt ended: a status, or the transport error that replaced it.

    ``duration`` is in milliseconds, measured up to the response headers.
    """

    method: str
    url: str
    duration: float
    status: int | None = None
    headers: dict[str, str] | None = None
    error: BaseException | None = None
    attempt: int = 0


@dataclass(frozen=True)
class Hooks:
    """Observers called once per attempt, retries included.

    Exceptions raised by a hook propagate to the caller of the request.
    """

    on_request: Callable[[RequestInfo], None] | None = None
    on_response: Callable[[ResponseInfo], None] | None = None


# Configuration


@dataclass(frozen=True)
class ClientOptions:
    """Recognized client configuration. Unknown fields are rejected.

    ``timeout`` and ``retry_delay`` are in milliseconds.
    """

    base_url: str = DEFAULT_BASE_URL
    timeout: int = DEFAULT_HTTP_TIMEOUT
    retries: int = DEFAULT_RETRIES
    retry_delay: int = DEFAULT_RETRY_DELAY
    user_agent: str = DEFAULT_USER_AGENT
    concurrency: int = DEFAULT_CONCURRENCY

    def __post_init__(self):
        if not isinstance(self.base_url, str) or not self.base_url.startswith(("http://", "https://")):
            raise ValidationError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        if not self.base_url.endswith("/"):
            object.__setattr__(self, "base_url", f"{self.base_url}/")
        if not isinstance(self.timeout, int) or not MIN_HTTP_TIMEOUT <= self.timeout <= MAX_HTTP_TIMEOUT:
            raise ValidationError(
                f"timeout must be between {MIN_HTTP_TIMEOUT} and {MAX_HTTP_TIMEOUT} milliseconds"
            )
        if not isinstance(self.retries, int) or self.retries < 0:
            raise ValidationError("retries must be a non-negative integer")
        if not isinstance(self.retry_delay, int) or self.retry_delay < 0:
            raise ValidationError("retry_delay must be a non-negative integer")
        if not isinstance(self.concurrency, int) or self.concurrency < 1:
            raise ValidationError("concurrency must be at least 1")

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> "ClientOptions":
        options = dict(options or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValidationError(f"Unknown client options: {', '.join(unknown)}")
        # None means "use the default"
        return cls(**{k: v for k, v in options.items() if v is not None})

    @classmethod
    def from_settings(cls, settings) -> "ClientOptions":
        return cls.from_mapping(
            {
                "base_url": settings.base_url,
                "timeout": settings.timeout,
                "retries": settings.retries,
                "retry_delay": settings.retry_delay,
                "user_agent": settings.user_agent,
                "concurrency": settings.concurrency,
            }
        )


def validate_api_token(token: object) -> str:
    if not isinstance(token, str):
        raise ValidationError('"api_token" is required and must be a string')
    trimmed = token.strip()
    if not trimmed:
        raise ValidationError('"api_token" cannot be empty or whitespace-only')
    if len(trimmed) > MAX_API_TOKEN_LENGTH:
        raise ValidationError(f'"api_token" exceeds maximum length of {MAX_API_TOKEN_LENGTH} characters')
    return trimmed
