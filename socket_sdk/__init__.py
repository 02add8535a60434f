"""Async client for the Socket security API.

Every call returns a ``Success`` or ``Error`` envelope. Transient failures are
retried with backoff, batches run under a concurrency limit, and large bodies
stream to disk without being held in memory.
"""

from .batch import BatchStreamController, ConcurrencyWindow
from .cli import main
from .client import SocketSdk
from .errors import (
    ApiResponseError,
    MalformedResponseError,
    NetworkError,
    ServerError,
    SocketSdkError,
    StreamSizeError,
    ValidationError,
)
from .executor import RequestExecutor
from .models import (
    VERSION,
    ClientOptions,
    Error,
    Hooks,
    RequestDescriptor,
    RequestInfo,
    ResponseInfo,
    ResponseType,
    ResultEnvelope,
    Success,
    error,
    is_error,
    is_success,
    success,
)
from .retry import RetryPolicy, RetryState
from .sink import StreamBody, StreamSink

__version__ = VERSION

__all__ = [
    "main",
    "SocketSdk",
    "RequestExecutor",
    "BatchStreamController",
    "ConcurrencyWindow",
    "StreamSink",
    "StreamBody",
    "RetryPolicy",
    "RetryState",
    "RequestDescriptor",
    "ResponseType",
    "ClientOptions",
    "Hooks",
    "RequestInfo",
    "ResponseInfo",
    "ResultEnvelope",
    "Success",
    "Error",
    "success",
    "error",
    "is_success",
    "is_error",
    "SocketSdkError",
    "ValidationError",
    "ApiResponseError",
    "ServerError",
    "NetworkError",
    "MalformedResponseError",
    "StreamSizeError",
]
