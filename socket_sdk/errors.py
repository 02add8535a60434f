"""Exception types raised by the Socket API client.

Expected 4xx failures are returned as ``Error`` envelopes and never raised,
unless the caller asks for ``throws=True``. Everything here is the fatal path.
"""


class SocketSdkError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(SocketSdkError, ValueError):
    """A descriptor, option or argument is malformed. No I/O was attempted."""


class ApiResponseError(SocketSdkError):
    """An API response the caller asked to have raised rather than returned."""

    def __init__(self, status: int, message: str, cause: str | None = None):
        super().__init__(f"Socket API request failed ({status}): {message}")
        self.status = status
        self.message = message
        self.cause = cause


class ServerError(ApiResponseError):
    """5xx response after retries were exhausted."""

    def __init__(self, status: int, message: str, cause: str | None = None):
        super().__init__(status, message, cause)
        self.args = (f"Socket API server error ({status}): {message}",)


class NetworkError(SocketSdkError):
    """Connection, DNS, timeout or protocol failure after retries were exhausted."""

    status = 0


class MalformedResponseError(NetworkError):
    """A 2xx response whose body could not be decoded."""

    def __init__(self, message: str, body: str = ""):
        super().__init__(message)
        self.body = body


class StreamSizeError(SocketSdkError):
    """A streamed body grew past the configured maximum size."""
