import asyncio

import pytest

from dynamostream import aio
from dynamostream.config import BackoffPolicy, BatchSettings
from dynamostream.errors import PartialFailure, SequenceTerminated, TerminalRequestError, TransientServiceError
from dynamostream.types import Action, PutOp
from tests.fakes import AsyncBatchStoreExecutor, AsyncScriptedExecutor, ScriptedExecutor, scan_page

pytestmark = pytest.mark.asyncio


async def no_sleep(_: float):
    pass


async def test_async_walk_follows_cursors():
    executor = AsyncScriptedExecutor(
        [
            scan_page([{"pk": "a"}, {"pk": "b"}, {"pk": "c"}], cursor={"pk": "c"}),
            scan_page([], cursor={"pk": "c2"}),
            scan_page([{"pk": "d"}, {"pk": "e"}]),
        ]
    )

    result = [record["pk"] async for record in aio.scan_stream(executor, "things")]

    assert result == ["a", "b", "c", "d", "e"]
    assert len(executor.calls) == 3


async def test_async_walk_stops_when_abandoned():
    executor = AsyncScriptedExecutor([scan_page([{"pk": "a"}, {"pk": "b"}, {"pk": "c"}], cursor={"pk": "c"})])
    walker = aio.scan_stream(executor, "things")

    assert await anext(walker) == {"pk": "a"}
    assert await anext(walker) == {"pk": "b"}
    await walker.aclose()

    assert len(executor.calls) == 1


async def test_async_walk_failure_surfaces_after_delivered_records():
    error = TerminalRequestError("AccessDeniedException", "no")
    executor = AsyncScriptedExecutor([scan_page([{"pk": "a"}], cursor={"pk": "a"}), error])
    walker = aio.query_stream(executor, "things", "pk = :pk")

    assert await anext(walker) == {"pk": "a"}
    with pytest.raises(SequenceTerminated) as raised:
        await anext(walker)
    assert raised.value.cause is error


async def test_async_batch_write_partitions_and_bounds_concurrency():
    in_flight = 0
    peak = 0

    class SlowStore(AsyncBatchStoreExecutor):
        async def execute(self, action, params, table=None):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return await super().execute(action, params, table)

    executor = SlowStore()
    ops = [PutOp({"pk": f"id{i}"}) for i in range(26 * 5)]

    result = await aio.batch_write(executor, {"things": ops}, settings=BatchSettings(max_concurrency=2), sleep=no_sleep)

    assert result == {"things": 130}
    assert len(executor.requests) == 6
    assert peak <= 2
    assert len(executor.tables["things"]) == 130


async def test_async_batch_get_retries_unprocessed_then_gives_up():
    delays: list[float] = []

    async def record_sleep(delay: float):
        delays.append(delay)

    executor = AsyncBatchStoreExecutor(decline=lambda call, table, key: key["pk"] == "stuck")
    executor.seed("users", [{"pk": "ok"}])

    with pytest.raises(PartialFailure) as raised:
        await aio.batch_get(
            executor,
            {"users": [{"pk": "ok"}, {"pk": "stuck"}]},
            backoff=BackoffPolicy(base=0.1, cap=0.3, max_retries=3),
            sleep=record_sleep,
        )

    assert raised.value.unprocessed == {"users": [{"pk": "stuck"}]}
    assert raised.value.completed == {"users": [{"pk": "ok"}]}
    assert delays == pytest.approx([0.1, 0.2, 0.3])


async def test_async_batch_retries_transient_errors():
    def throttle_first(call, request_items):
        if call == 0:
            raise TransientServiceError("ThrottlingException", "slow down")

    executor = AsyncBatchStoreExecutor(fail=throttle_first)
    result = await aio.batch_write(executor, {"things": [PutOp({"pk": "a"})]}, sleep=no_sleep)

    assert result == {"things": 1}
    assert len(executor.requests) == 2


async def test_async_terminal_error_names_chunk():
    def reject(call, request_items):
        raise TerminalRequestError("ValidationException", "bad")

    executor = AsyncBatchStoreExecutor(fail=reject)

    with pytest.raises(TerminalRequestError) as raised:
        await aio.batch_write(executor, {"things": [PutOp({"pk": "a"})]}, sleep=no_sleep)

    assert raised.value.chunk_index == 0


async def test_threaded_executor_wraps_blocking_executor():
    blocking = ScriptedExecutor([scan_page([{"pk": "a"}])])

    result = [record async for record in aio.scan_stream(aio.ThreadedExecutor(blocking), "things")]

    assert result == [{"pk": "a"}]
    assert blocking.calls[0][2] == "things"


async def test_async_walk_resumes_from_start_key_in_params():
    executor = AsyncScriptedExecutor([scan_page([{"pk": "c"}])])
    walker = aio.AsyncCursorWalker(executor, Action.scan, "things", params={"ExclusiveStartKey": {"pk": "b"}})

    assert [record async for record in walker] == [{"pk": "c"}]
    assert executor.calls[0][1] == {"ExclusiveStartKey": {"pk": "b"}}
