"""Run many API calls under a concurrency limit and yield results as they finish."""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable, Iterable

from .errors import ValidationError
from .executor import RequestExecutor
from .models import RequestDescriptor, ResultEnvelope, Success
from .sink import StreamBody

logger = logging.getLogger(__name__)


class ConcurrencyWindow:
    """In-flight executions of one batch, plus the descriptors not yet started.

    Only the owning controller loop touches this, so no locking.
    """

    def __init__(self, descriptors: Iterable[RequestDescriptor], limit: int):
        self.limit = limit
        self._pending: deque[tuple[int, RequestDescriptor]] = deque(enumerate(descriptors))
        self._active: dict[asyncio.Task, int] = {}
        self.peak_active = 0

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def active(self) -> set[asyncio.Task]:
        return set(self._active)

    def fill(self, start: Callable[[RequestDescriptor], asyncio.Task]) -> None:
        while self._pending and len(self._active) < self.limit:
            index, descriptor = self._pending.popleft()
            self._active[start(descriptor)] = index
        self.peak_active = max(self.peak_active, len(self._active))

    def settle(self, done: set[asyncio.Task]) -> list[asyncio.Task]:
        """Remove finished tasks, returned in submission order."""
        finished = sorted((t for t in done if t in self._active), key=self._active.__getitem__)
        for task in finished:
            del self._active[task]
        return finished

    async def cancel_all(self) -> None:
        """Drop pending work, cancel active tasks and close any stream they produced anyway."""
        self._pending.clear()
        tasks = list(self._active)
        self._active.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
            for outcome in outcomes:
                await _close_stream(outcome)


class BatchStreamController:
    """Sliding-window batch runner.

    Results come out in completion order. Executions that finish in the same
    event-loop tick come out in submission order. Callers that need input
    order should carry an index and re-sort.
    """

    def __init__(self, executor: RequestExecutor):
        self._executor = executor

    def stream(
        self,
        descriptors: Iterable[RequestDescriptor],
        concurrency: int,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[ResultEnvelope]:
        """Return a single-pass async iterator of envelopes.

        Setting ``cancel`` aborts active executions, skips pending ones and
        ends the iteration quietly. Any exception raised by an execution
        aborts the rest and propagates.
        """
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency <= 0:
            raise ValidationError(f"concurrency must be a positive integer, got {concurrency!r}")
        descriptors = list(descriptors)
        for descriptor in descriptors:
            if not isinstance(descriptor, RequestDescriptor):
                raise ValidationError(f"Expected a RequestDescriptor, got {type(descriptor).__name__}")
        return self._run(ConcurrencyWindow(descriptors, concurrency), cancel)

    def _start(self, descriptor: RequestDescriptor) -> asyncio.Task:
        logger.debug("Starting %s %s", descriptor.method, descriptor.path)
        return asyncio.create_task(self._executor.execute(descriptor))

    async def _run(
        self, window: ConcurrencyWindow, cancel: asyncio.Event | None
    ) -> AsyncIterator[ResultEnvelope]:
        cancel_waiter = None
        settled: deque[asyncio.Task] = deque()
        try:
            if _is_set(cancel):
                return
            window.fill(self._start)
            if cancel is not None:
                cancel_waiter = asyncio.create_task(cancel.wait())

            while window.active_count:
                waiting = window.active
                if cancel_waiter is not None:
                    waiting.add(cancel_waiter)
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                if cancel_waiter in done:
                    logger.info("Batch cancelled with %d active, %d pending", window.active_count, window.pending_count)
                    return

                settled.extend(window.settle(done))
                while settled:
                    yield settled.popleft().result()
                    if _is_set(cancel):
                        logger.info("Batch cancelled with %d active, %d pending", window.active_count, window.pending_count)
                        return
                    window.fill(self._start)
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            for task in settled:
                await _discard(task)
            await window.cancel_all()


def _is_set(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


async def _discard(task: asyncio.Task) -> None:
    """Retrieve a finished execution nobody will see, releasing its stream."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Dropping failed execution: %r", exc)
        return
    await _close_stream(task.result())


async def _close_stream(outcome) -> None:
    if isinstance(outcome, Success) and isinstance(outcome.data, StreamBody):
        await outcome.data.aclose()
