"""Retry policy: which outcomes are retried, and how long to wait between attempts."""

import random
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum

import httpx

from .errors import MalformedResponseError
from .models import DEFAULT_RETRIES, DEFAULT_RETRY_DELAY

DEFAULT_MAX_DELAY = 30_000  # ms
DEFAULT_RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})

# Credentials won't start working on a second try
NEVER_RETRY_STATUSES = frozenset({401, 403})

HTTP_STATUS_TOO_MANY_REQUESTS = 429


def is_network_failure(exc: BaseException) -> bool:
    """True for failures below the HTTP layer: connect, DNS, timeout, protocol, bad body."""
    return isinstance(exc, (httpx.RequestError, MalformedResponseError))


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header into milliseconds.

    Accepts delta-seconds or an HTTP date. Dates in the past give None.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = int(value)
    except ValueError:
        pass
    else:
        return seconds * 1000.0 if seconds >= 0 else None

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    delay_ms = (when - (now or datetime.now(UTC))).total_seconds() * 1000.0
    return delay_ms if delay_ms > 0 else None


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter.

    ``retries`` is the number of attempts allowed after the first one, so a
    call makes at most ``retries + 1`` attempts. Delays are in milliseconds.
    """

    retries: int = DEFAULT_RETRIES
    retry_delay: int = DEFAULT_RETRY_DELAY
    max_delay: int = DEFAULT_MAX_DELAY
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES
    retry_on_network_error: bool = True
    random: Callable[[], float] = field(default=random.random, repr=False, compare=False)

    def with_retries(self, retries: int | None) -> "RetryPolicy":
        if retries is None or retries == self.retries:
            return self
        return replace(self, retries=retries)

    def should_retry(self, attempt: int, outcome: int | BaseException) -> bool:
        """Decide whether the outcome of ``attempt`` (0-based) earns another attempt.

        ``outcome`` is either an HTTP status code or the exception the
        attempt raised.
        """
        if attempt >= self.retries:
            return False
        if isinstance(outcome, BaseException):
            return self.retry_on_network_error and is_network_failure(outcome)
        if outcome in NEVER_RETRY_STATUSES:
            return False
        return outcome in self.retryable_statuses

    def compute_delay(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt``.

        Lies in [base * 2**attempt / 2, base * 2**attempt], capped at max_delay.
        """
        base = self.retry_delay * 2**attempt
        return min(float(self.max_delay), base * (0.5 + self.random() / 2))

    def delay_for(self, attempt: int, response: httpx.Response | None = None) -> float:
        """Backoff honoring Retry-After on 429 responses."""
        if response is not None and response.status_code == HTTP_STATUS_TOO_MANY_REQUESTS:
            retry_after = parse_retry_after(response.headers.get("retry-after"))
            if retry_after is not None:
                return min(float(self.max_delay), retry_after)
        return self.compute_delay(attempt)


class RetryPhase(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass
class RetryState:
    """Per-call retry bookkeeping. Never shared between calls."""

    attempt: int = 0
    phase: RetryPhase = RetryPhase.IDLE
    last_status: int | None = None
    last_error: BaseException | None = None

    def begin_attempt(self) -> None:
        if self.phase == RetryPhase.RETRYING:
            self.attempt += 1
        self.phase = RetryPhase.ATTEMPTING

    def record(self, outcome: int | BaseException) -> None:
        if isinstance(outcome, BaseException):
            self.last_error = outcome
            self.last_status = None
        else:
            self.last_status = outcome
            self.last_error = None

    def retrying(self) -> None:
        self.phase = RetryPhase.RETRYING

    def succeeded(self) -> None:
        self.phase = RetryPhase.SUCCEEDED

    def exhausted(self) -> None:
        self.phase = RetryPhase.EXHAUSTED
