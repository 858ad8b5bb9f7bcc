"""
asyncio counterparts of the walker, the resolver and the partitioner.

They share chunking, state transitions and merging with the synchronous
versions and differ only in how they wait: `await` on the executor,
`asyncio.sleep` for backoff and a semaphore to bound in-flight chunks.
"""

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping, Self

import ulid

from dynamostream.batching import BatchOutcome, merge_resolutions, normalize_write_ops
from dynamostream.chunking import Chunk, DispatchResult, TableOptions, build_request, flatten, parse_response, partition
from dynamostream.config import BackoffPolicy, BatchSettings
from dynamostream.constants import LOGGER
from dynamostream.errors import PartialFailure, RequestError, TransientServiceError
from dynamostream.executor import AsyncRequestExecutor, RequestExecutor
from dynamostream.pagination import WalkerBase, stream_params
from dynamostream.resolver import Pending, Resolution, ResolutionProgress, ResolverBase, ResolverState
from dynamostream.types import (
    Action,
    BatchKind,
    Cursor,
    Key,
    Page,
    Record,
    RequestParams,
    Response,
    TableItem,
    WriteOp,
)

AsyncDispatch = Callable[[list[TableItem]], Awaitable[DispatchResult]]


class ThreadedExecutor:
    """Runs a blocking executor (such as the boto3 provider) in worker threads."""

    def __init__(self, executor: RequestExecutor):
        self.executor = executor

    async def execute(self, action: Action, params: RequestParams, table: str | None = None) -> Response:
        return await asyncio.to_thread(self.executor.execute, action, params, table)


class AsyncCursorWalker(WalkerBase):
    def __init__(
        self,
        executor: AsyncRequestExecutor,
        action: Action,
        table: str,
        params: RequestParams | None = None,
        page_size: int | None = None,
        start_cursor: Cursor | None = None,
        max_records: int | None = None,
    ):
        super().__init__(action, table, params, page_size, start_cursor, max_records)
        self.executor = executor
        self._pages = self._fetch_pages(self.last_cursor)
        self._records = self._iterate_records()

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> Record:
        return await anext(self._records)

    def pages(self) -> AsyncIterator[Page]:
        return self._pages

    async def aclose(self):
        await self._records.aclose()
        await self._pages.aclose()

    async def _fetch_pages(self, cursor: Cursor | None) -> AsyncIterator[Page]:
        while True:
            request = self._request(cursor)
            try:
                response = await self.executor.execute(self.action, request, table=self.table)
            except RequestError as e:
                raise self._terminated(e) from e

            page = self._accept(response)
            yield page

            if page.cursor is None:
                return

            cursor = page.cursor

    async def _iterate_records(self) -> AsyncIterator[Record]:
        if self.reached_max_records:
            return

        async for page in self._pages:
            for record in page.records:
                self.records_delivered += 1
                yield record
                if self.reached_max_records:
                    return


def scan_stream(
    executor: AsyncRequestExecutor,
    table: str,
    filter_opts: dict[str, Any] | None = None,
    max_records: int | None = None,
) -> AsyncCursorWalker:
    params, page_size, start_cursor = stream_params(filter_opts)
    return AsyncCursorWalker(executor, Action.scan, table, params, page_size, start_cursor, max_records)


def query_stream(
    executor: AsyncRequestExecutor,
    table: str,
    key_conditions: Any,
    opts: dict[str, Any] | None = None,
    max_records: int | None = None,
) -> AsyncCursorWalker:
    params, page_size, start_cursor = stream_params(opts)
    params["KeyConditionExpression"] = key_conditions
    return AsyncCursorWalker(executor, Action.query, table, params, page_size, start_cursor, max_records)


class AsyncUnprocessedItemResolver(ResolverBase):
    def __init__(
        self,
        dispatch: AsyncDispatch,
        limit: int,
        backoff: BackoffPolicy | None = None,
        max_payload_bytes: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__(limit, backoff, max_payload_bytes)
        self.dispatch = dispatch
        self.sleep = sleep

    async def resolve(self, items: list[TableItem], label: str = "batch") -> Resolution:
        state: ResolverState = Pending(items, 0)
        progress = ResolutionProgress()

        while isinstance(state, Pending):
            if state.attempt:
                await self.sleep(self.retry_delay(state, label))

            progress.start()
            for chunk in self.chunks(state):
                try:
                    progress.absorb(await self.dispatch(chunk.items))
                except TransientServiceError as e:
                    progress.absorb_transient(chunk, e, label)

            state = self.settle(state, progress, label)

        return self.finish(state, progress, label)


class AsyncBatchPartitioner:
    def __init__(
        self,
        executor: AsyncRequestExecutor,
        kind: BatchKind,
        settings: BatchSettings | None = None,
        backoff: BackoffPolicy | None = None,
        options: TableOptions | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.executor = executor
        self.kind = kind
        self.settings = settings or BatchSettings()
        self.backoff = backoff or BackoffPolicy()
        self.options = options
        self.resolver = AsyncUnprocessedItemResolver(
            self._dispatch,
            limit=self.limit,
            backoff=self.backoff,
            max_payload_bytes=self.settings.max_payload_bytes,
            sleep=sleep,
        )

    @property
    def limit(self) -> int:
        return self.settings.limit_for(self.kind)

    async def run(self, requests: Mapping[str, Iterable[Any]]) -> BatchOutcome:
        batch_id = ulid.new().str
        chunks = partition(flatten(requests), self.limit, self.settings.max_payload_bytes)
        LOGGER.debug(f"Batch {batch_id}: {self.kind} split into {len(chunks)} chunks of at most {self.limit} items")
        if not chunks:
            return BatchOutcome({table: [] for table in requests}, {}, 0)

        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        tasks = {
            asyncio.create_task(self._resolve_chunk(chunk, batch_id, semaphore)): chunk for chunk in chunks
        }
        resolutions: list[Resolution | None] = [None] * len(chunks)
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    chunk = tasks[task]
                    try:
                        resolutions[chunk.index] = task.result()
                    except RequestError as e:
                        e.chunk_index = chunk.index
                        e.add_note(f"Raised by chunk {chunk.index} of {len(chunks)} in batch {batch_id}")
                        LOGGER.error(f"Batch {batch_id}: chunk {chunk.index} failed with {e.code}, aborting batch")
                        raise
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return merge_resolutions(requests.keys(), [r for r in resolutions if r is not None], len(chunks))

    async def _resolve_chunk(self, chunk: Chunk, batch_id: str, semaphore: asyncio.Semaphore) -> Resolution:
        async with semaphore:
            LOGGER.debug(f"Batch {batch_id}: dispatching chunk {chunk.index} with {len(chunk.items)} items")
            return await self.resolver.resolve(chunk.items, label=f"Batch {batch_id} chunk {chunk.index}")

    async def _dispatch(self, items: list[TableItem]) -> DispatchResult:
        action = Action.batch_get if self.kind == BatchKind.get else Action.batch_write
        response = await self.executor.execute(action, build_request(self.kind, items, self.options))
        return parse_response(self.kind, items, response)


async def batch_get(
    executor: AsyncRequestExecutor,
    requests: Mapping[str, Iterable[Key]],
    options: TableOptions | None = None,
    settings: BatchSettings | None = None,
    backoff: BackoffPolicy | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> dict[str, list[Record]]:
    outcome = await AsyncBatchPartitioner(executor, BatchKind.get, settings, backoff, options, sleep).run(requests)
    if not outcome.complete:
        raise PartialFailure(outcome.unprocessed, outcome.responses)
    return outcome.responses


async def batch_write(
    executor: AsyncRequestExecutor,
    requests: Mapping[str, Iterable[WriteOp | dict[str, Any]]],
    settings: BatchSettings | None = None,
    backoff: BackoffPolicy | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> dict[str, int]:
    partitioner = AsyncBatchPartitioner(executor, BatchKind.write, settings, backoff, sleep=sleep)
    outcome = await partitioner.run(normalize_write_ops(requests))
    acknowledged = {table: len(ops) for table, ops in outcome.responses.items()}
    if not outcome.complete:
        raise PartialFailure(outcome.unprocessed, acknowledged)
    return acknowledged
