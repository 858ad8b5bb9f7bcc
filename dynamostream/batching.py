import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Mapping, NamedTuple

import ulid

from dynamostream.chunking import Chunk, TableOptions, dispatch_items, flatten, group_by_table, partition
from dynamostream.config import BackoffPolicy, BatchSettings
from dynamostream.constants import LOGGER
from dynamostream.errors import PartialFailure, RequestError
from dynamostream.executor import RequestExecutor
from dynamostream.resolver import Resolution, UnprocessedItemResolver
from dynamostream.types import BatchKind, DeleteOp, Key, PutOp, Record, TableItem, WriteOp, write_op_from_request


class BatchOutcome(NamedTuple):
    responses: dict[str, list[Any]]
    unprocessed: dict[str, list[Any]]
    chunk_count: int

    @property
    def complete(self) -> bool:
        return not self.unprocessed


def merge_resolutions(tables: Iterable[str], resolutions: Iterable[Resolution], chunk_count: int) -> BatchOutcome:
    responses: dict[str, list[Any]] = {table: [] for table in tables}
    remaining: list[TableItem] = []
    for resolution in resolutions:
        for table, item in resolution.responses:
            responses.setdefault(table, []).append(item)
        remaining.extend(resolution.remaining)
    return BatchOutcome(responses, group_by_table(remaining), chunk_count)


def normalize_write_ops(requests: Mapping[str, Iterable[WriteOp | dict[str, Any]]]) -> dict[str, list[WriteOp]]:
    return {
        table: [op if isinstance(op, (PutOp, DeleteOp)) else write_op_from_request(op) for op in ops]
        for table, ops in requests.items()
    }


class BatchPartitioner:
    """
    Presents a bulk get or write as if the service had no per-call item limit.

    The flattened (table, item) sequence is cut into chunks, each chunk is
    resolved (dispatched and its unprocessed items retried) on a bounded thread
    pool, and the per-chunk results are merged by table once every chunk is in.

    A terminal error on one chunk sets `aborted`; chunks that are already
    running stop before their next backoff or dispatch. Without an explicit
    `sleep`, backoff waits on `aborted` so an abort also cuts a wait short.
    """

    executor: RequestExecutor
    kind: BatchKind
    settings: BatchSettings
    backoff: BackoffPolicy
    options: TableOptions | None
    aborted: threading.Event

    def __init__(
        self,
        executor: RequestExecutor,
        kind: BatchKind,
        settings: BatchSettings | None = None,
        backoff: BackoffPolicy | None = None,
        options: TableOptions | None = None,
        sleep: Callable[[float], Any] | None = None,
    ):
        self.executor = executor
        self.kind = kind
        self.settings = settings or BatchSettings()
        self.backoff = backoff or BackoffPolicy()
        self.options = options
        self.aborted = threading.Event()
        self.resolver = UnprocessedItemResolver(
            self._dispatch,
            limit=self.limit,
            backoff=self.backoff,
            max_payload_bytes=self.settings.max_payload_bytes,
            sleep=sleep or self.aborted.wait,
            abort=self.aborted,
        )

    @property
    def limit(self) -> int:
        return self.settings.limit_for(self.kind)

    def chunks(self, requests: Mapping[str, Iterable[Any]]) -> list[Chunk]:
        return partition(flatten(requests), self.limit, self.settings.max_payload_bytes)

    def run(self, requests: Mapping[str, Iterable[Any]]) -> BatchOutcome:
        batch_id = ulid.new().str
        chunks = self.chunks(requests)
        LOGGER.debug(f"Batch {batch_id}: {self.kind} split into {len(chunks)} chunks of at most {self.limit} items")
        if not chunks:
            return BatchOutcome({table: [] for table in requests}, {}, 0)

        self.aborted.clear()
        resolutions: list[Resolution | None] = [None] * len(chunks)
        workers = min(self.settings.max_concurrency, len(chunks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"dynamostream-{self.kind}") as pool:
            futures = {pool.submit(self._resolve_chunk, chunk, batch_id): chunk for chunk in chunks}
            for future in as_completed(futures):
                chunk = futures[future]
                try:
                    resolutions[chunk.index] = future.result()
                except RequestError as e:
                    self.aborted.set()
                    pool.shutdown(wait=False, cancel_futures=True)
                    e.chunk_index = chunk.index
                    e.add_note(f"Raised by chunk {chunk.index} of {len(chunks)} in batch {batch_id}")
                    LOGGER.error(f"Batch {batch_id}: chunk {chunk.index} failed with {e.code}, aborting batch")
                    raise

        return merge_resolutions(requests.keys(), [r for r in resolutions if r is not None], len(chunks))

    def _resolve_chunk(self, chunk: Chunk, batch_id: str) -> Resolution:
        LOGGER.debug(f"Batch {batch_id}: dispatching chunk {chunk.index} with {len(chunk.items)} items")
        return self.resolver.resolve(chunk.items, label=f"Batch {batch_id} chunk {chunk.index}")

    def _dispatch(self, items: list[TableItem]):
        return dispatch_items(self.executor, self.kind, items, self.options)


def batch_get(
    executor: RequestExecutor,
    requests: Mapping[str, Iterable[Key]],
    options: TableOptions | None = None,
    settings: BatchSettings | None = None,
    backoff: BackoffPolicy | None = None,
    sleep: Callable[[float], Any] | None = None,
) -> dict[str, list[Record]]:
    """
    Fetch any number of keys across tables. Returns table name to records found.

    Raises `PartialFailure` when keys are still unprocessed once the backoff
    budget is spent; its `completed` attribute holds the records that did arrive.
    """
    partitioner = BatchPartitioner(executor, BatchKind.get, settings, backoff, options, sleep)
    outcome = partitioner.run(requests)
    if not outcome.complete:
        raise PartialFailure(outcome.unprocessed, outcome.responses)
    return outcome.responses


def batch_write(
    executor: RequestExecutor,
    requests: Mapping[str, Iterable[WriteOp | dict[str, Any]]],
    settings: BatchSettings | None = None,
    backoff: BackoffPolicy | None = None,
    sleep: Callable[[float], Any] | None = None,
) -> dict[str, int]:
    """Apply put and delete ops across tables. Returns table name to acknowledged op count."""
    partitioner = BatchPartitioner(executor, BatchKind.write, settings, backoff, sleep=sleep)
    outcome = partitioner.run(normalize_write_ops(requests))
    acknowledged = {table: len(ops) for table, ops in outcome.responses.items()}
    if not outcome.complete:
        raise PartialFailure(outcome.unprocessed, acknowledged)
    return acknowledged
