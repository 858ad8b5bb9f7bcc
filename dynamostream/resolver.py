import threading
import time
from typing import Any, Callable, NamedTuple

from dynamostream.chunking import Chunk, DispatchResult, partition
from dynamostream.config import BackoffPolicy
from dynamostream.constants import LOGGER
from dynamostream.errors import TransientServiceError, UnprocessedItems
from dynamostream.types import TableItem

Dispatch = Callable[[list[TableItem]], DispatchResult]


class Pending(NamedTuple):
    items: list[TableItem]
    attempt: int


class Done(NamedTuple):
    attempts: int


class Exhausted(NamedTuple):
    remaining: list[TableItem]
    attempts: int


ResolverState = Pending | Done | Exhausted


def advance(state: Pending, unprocessed: list[TableItem], max_retries: int) -> ResolverState:
    """
    Move a pending resolution forward given what the latest dispatch left unprocessed.

    `attempt` counts retries, so the initial dispatch is attempt 0 and a set that
    never clears is dispatched `max_retries + 1` times before it is exhausted.
    """
    if not unprocessed:
        return Done(state.attempt)

    if state.attempt + 1 > max_retries:
        return Exhausted(unprocessed, state.attempt)

    return Pending(unprocessed, state.attempt + 1)


class Resolution(NamedTuple):
    final: Done | Exhausted
    responses: list[TableItem]
    last_error: TransientServiceError | None = None

    @property
    def done(self) -> bool:
        return isinstance(self.final, Done)

    @property
    def remaining(self) -> list[TableItem]:
        return self.final.remaining if isinstance(self.final, Exhausted) else []

    @property
    def attempts(self) -> int:
        return self.final.attempts

    def raise_for_remaining(self):
        if self.remaining:
            raise UnprocessedItems(self.remaining) from self.last_error


class ResolutionProgress:
    """Accumulates what the dispatches of one resolution returned."""

    def __init__(self):
        self.responses: list[TableItem] = []
        self.unprocessed: list[TableItem] = []
        self.last_error: TransientServiceError | None = None

    def start(self):
        self.unprocessed = []

    def absorb(self, result: DispatchResult):
        self.responses.extend(result.responses)
        self.unprocessed.extend(result.unprocessed)

    def absorb_transient(self, chunk: Chunk, error: TransientServiceError, label: str):
        LOGGER.info(f"{label}: transient failure {error.code}, {len(chunk.items)} items left pending")
        self.last_error = error
        self.unprocessed.extend(chunk.items)

    def skip(self, chunk: Chunk):
        self.unprocessed.extend(chunk.items)


class ResolverBase:
    """
    Everything a resolver needs apart from how it waits.

    `abort`, when given, is checked before every backoff and every dispatch;
    once it is set the pending items are given up on without another call.
    """

    limit: int
    backoff: BackoffPolicy
    max_payload_bytes: int | None
    abort: threading.Event | None

    def __init__(
        self,
        limit: int,
        backoff: BackoffPolicy | None = None,
        max_payload_bytes: int | None = None,
        abort: threading.Event | None = None,
    ):
        self.limit = limit
        self.backoff = backoff or BackoffPolicy()
        self.max_payload_bytes = max_payload_bytes
        self.abort = abort

    @property
    def aborted(self) -> bool:
        return self.abort is not None and self.abort.is_set()

    def retry_delay(self, state: Pending, label: str) -> float:
        delay = self.backoff.delay(state.attempt)
        LOGGER.info(
            f"{label}: retrying {len(state.items)} unprocessed items "
            f"(attempt {state.attempt}/{self.backoff.max_retries}) in {delay:.3f}s"
        )
        return delay

    def chunks(self, state: Pending) -> list[Chunk]:
        return partition(state.items, self.limit, self.max_payload_bytes)

    def settle(self, state: Pending, progress: ResolutionProgress, label: str) -> ResolverState:
        if self.aborted and progress.unprocessed:
            LOGGER.info(f"{label}: abandoning {len(progress.unprocessed)} items, the batch was aborted")
            return Exhausted(progress.unprocessed, state.attempt)
        return advance(state, progress.unprocessed, self.backoff.max_retries)

    def finish(self, state: Done | Exhausted, progress: ResolutionProgress, label: str) -> Resolution:
        if isinstance(state, Exhausted) and not self.aborted:
            LOGGER.warning(f"{label}: giving up on {len(state.remaining)} items after {state.attempts} retries")
        return Resolution(state, progress.responses, progress.last_error)


class UnprocessedItemResolver(ResolverBase):
    dispatch: Dispatch
    sleep: Callable[[float], Any]

    def __init__(
        self,
        dispatch: Dispatch,
        limit: int,
        backoff: BackoffPolicy | None = None,
        max_payload_bytes: int | None = None,
        sleep: Callable[[float], Any] = time.sleep,
        abort: threading.Event | None = None,
    ):
        super().__init__(limit, backoff, max_payload_bytes, abort)
        self.dispatch = dispatch
        self.sleep = sleep

    def resolve(self, items: list[TableItem], label: str = "batch") -> Resolution:
        state: ResolverState = Pending(items, 0)
        progress = ResolutionProgress()

        while isinstance(state, Pending):
            if state.attempt and not self.aborted:
                self.sleep(self.retry_delay(state, label))

            progress.start()
            for chunk in self.chunks(state):
                if self.aborted:
                    progress.skip(chunk)
                    continue
                try:
                    progress.absorb(self.dispatch(chunk.items))
                except TransientServiceError as e:
                    progress.absorb_transient(chunk, e, label)

            state = self.settle(state, progress, label)

        return self.finish(state, progress, label)
