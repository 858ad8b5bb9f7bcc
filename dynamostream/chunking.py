from typing import Any, Iterable, Mapping, NamedTuple

from dynamostream.executor import RequestExecutor
from dynamostream.helpers import estimate_table_item_size
from dynamostream.types import Action, BatchKind, RequestParams, Response, TableItem, write_op_from_request

TableOptions = Mapping[str, Mapping[str, Any]]


class Chunk(NamedTuple):
    index: int
    items: list[TableItem]

    def grouped(self) -> dict[str, list[Any]]:
        return group_by_table(self.items)


class DispatchResult(NamedTuple):
    # get: retrieved records, write: acknowledged ops, each tagged with its table
    responses: list[TableItem]
    unprocessed: list[TableItem]


def flatten(requests: Mapping[str, Iterable[Any]]) -> list[TableItem]:
    return [TableItem(table, item) for table, items in requests.items() for item in items]


def group_by_table(items: Iterable[TableItem]) -> dict[str, list[Any]]:
    grouped: dict[str, list[Any]] = {}
    for table, item in items:
        grouped.setdefault(table, []).append(item)
    return grouped


def partition(items: list[TableItem], limit: int, max_payload_bytes: int | None = None) -> list[Chunk]:
    """
    Split `items` into consecutive chunks of at most `limit` items without reordering.

    With `max_payload_bytes` a chunk is also closed before its estimated size
    would pass the bound. An item that alone exceeds the bound still gets a chunk
    of its own; the service rejects it and that surfaces as a terminal error.
    """
    if limit <= 0:
        raise ValueError("Chunk limit must be positive")

    chunks: list[Chunk] = []
    current: list[TableItem] = []
    current_size = 0
    for table_item in items:
        size = estimate_table_item_size(table_item) if max_payload_bytes else 0
        if current and (
            len(current) >= limit or (max_payload_bytes is not None and current_size + size > max_payload_bytes)
        ):
            chunks.append(Chunk(len(chunks), current))
            current, current_size = [], 0
        current.append(table_item)
        current_size += size

    if current:
        chunks.append(Chunk(len(chunks), current))

    return chunks


def build_request(kind: BatchKind, items: list[TableItem], options: TableOptions | None = None) -> RequestParams:
    options = options or {}
    grouped = group_by_table(items)
    if kind == BatchKind.get:
        return {
            "RequestItems": {table: {**options.get(table, {}), "Keys": keys} for table, keys in grouped.items()}
        }
    return {"RequestItems": {table: [op.to_request() for op in ops] for table, ops in grouped.items()}}


def parse_response(kind: BatchKind, items: list[TableItem], response: Response) -> DispatchResult:
    if kind == BatchKind.get:
        records = [
            TableItem(table, record) for table, records in response.get("Responses", {}).items() for record in records
        ]
        unprocessed = [
            TableItem(table, key)
            for table, request in (response.get("UnprocessedKeys") or {}).items()
            for key in request.get("Keys", [])
        ]
        return DispatchResult(records, unprocessed)

    unprocessed = [
        TableItem(table, write_op_from_request(request))
        for table, requests in (response.get("UnprocessedItems") or {}).items()
        for request in requests
    ]
    return DispatchResult(_acknowledged(items, unprocessed), unprocessed)


def _acknowledged(submitted: list[TableItem], unprocessed: list[TableItem]) -> list[TableItem]:
    leftover = list(unprocessed)
    acknowledged: list[TableItem] = []
    for table_item in submitted:
        if table_item in leftover:
            leftover.remove(table_item)
        else:
            acknowledged.append(table_item)
    return acknowledged


def dispatch_items(
    executor: RequestExecutor, kind: BatchKind, items: list[TableItem], options: TableOptions | None = None
) -> DispatchResult:
    action = Action.batch_get if kind == BatchKind.get else Action.batch_write
    response = executor.execute(action, build_request(kind, items, options))
    return parse_response(kind, items, response)

