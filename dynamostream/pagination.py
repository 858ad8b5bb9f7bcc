from typing import Any, Iterator, Self

import ulid

from dynamostream.constants import LOGGER
from dynamostream.errors import RequestError, SequenceTerminated
from dynamostream.executor import RequestExecutor
from dynamostream.helpers import camelize_keys
from dynamostream.types import PAGED_ACTIONS, Action, Cursor, Page, Record, RequestParams, Response


class WalkerBase:
    """
    State shared by the synchronous and asyncio walkers: the fixed request
    parameters, the cursor of the latest page and the delivery counters.

    An `ExclusiveStartKey` in `params` is taken as the start cursor unless
    `start_cursor` is given explicitly.
    """

    action: Action
    table: str
    params: RequestParams
    last_cursor: Cursor | None
    pages_fetched: int
    records_delivered: int

    def __init__(
        self,
        action: Action,
        table: str,
        params: RequestParams | None = None,
        page_size: int | None = None,
        start_cursor: Cursor | None = None,
        max_records: int | None = None,
    ):
        if action not in PAGED_ACTIONS:
            raise ValueError(f"{action} is not a paged action")

        self.action = action
        self.table = table
        self.params = dict(params or {})
        if page_size is not None:
            self.params["Limit"] = page_size
        embedded_cursor = self.params.pop("ExclusiveStartKey", None)

        self.last_cursor = start_cursor if start_cursor is not None else embedded_cursor
        self.pages_fetched = 0
        self.records_delivered = 0
        self._max_records = max_records
        self._walk_id = ulid.new().str

    @property
    def reached_max_records(self) -> bool:
        return self._max_records is not None and self.records_delivered >= self._max_records

    def _request(self, cursor: Cursor | None) -> RequestParams:
        LOGGER.debug(f"Walk {self._walk_id}: fetching page {self.pages_fetched + 1} of {self.action} on {self.table}")
        request = dict(self.params)
        if cursor is not None:
            request["ExclusiveStartKey"] = cursor
        return request

    def _terminated(self, error: RequestError) -> SequenceTerminated:
        LOGGER.warning(f"Walk {self._walk_id}: page fetch failed with {error.code}, terminating")
        return SequenceTerminated(error, self.records_delivered)

    def _accept(self, response: Response) -> Page:
        page = Page.from_response(response)
        self.pages_fetched += 1
        self.last_cursor = page.cursor
        if page.cursor is None:
            LOGGER.debug(f"Walk {self._walk_id}: complete after {self.pages_fetched} pages")
        return page


class CursorWalker(WalkerBase):
    """
    One forward-only walk over a paged scan or query.

    Nothing is fetched until the first record (or page) is requested. Each
    page is fetched only when the consumer asks past the end of the previous
    one, so abandoning the iterator stops the walk. A walk cannot be restarted;
    build a new walker, optionally from `last_cursor`, to read again.
    """

    def __init__(
        self,
        executor: RequestExecutor,
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

    def __iter__(self) -> Self:
        return self

    def __next__(self) -> Record:
        return next(self._records)

    def pages(self) -> Iterator[Page]:
        """Pages of the same walk; records and pages share one cursor."""
        return self._pages

    def _fetch_pages(self, cursor: Cursor | None) -> Iterator[Page]:
        while True:
            request = self._request(cursor)
            try:
                response = self.executor.execute(self.action, request, table=self.table)
            except RequestError as e:
                raise self._terminated(e) from e

            page = self._accept(response)
            yield page

            if page.cursor is None:
                return

            cursor = page.cursor

    def _iterate_records(self) -> Iterator[Record]:
        if self.reached_max_records:
            return

        for page in self._pages:
            for record in page.records:
                self.records_delivered += 1
                yield record
                if self.reached_max_records:
                    return


def stream_params(opts: dict[str, Any] | None) -> tuple[RequestParams, int | None, Cursor | None]:
    params = camelize_keys(opts)
    page_size = params.pop("Limit", None)
    start_cursor = params.pop("ExclusiveStartKey", None)
    return params, page_size, start_cursor


def scan_stream(
    executor: RequestExecutor, table: str, filter_opts: dict[str, Any] | None = None, max_records: int | None = None
) -> CursorWalker:
    """
    Lazily scan `table`, following continuation cursors as records are consumed.

    `filter_opts` takes scan parameters in either snake_case or the service's
    own names; `limit` sets the page size and `exclusive_start_key` resumes
    from a saved cursor.
    """
    params, page_size, start_cursor = stream_params(filter_opts)
    return CursorWalker(executor, Action.scan, table, params, page_size, start_cursor, max_records)


def query_stream(
    executor: RequestExecutor,
    table: str,
    key_conditions: Any,
    opts: dict[str, Any] | None = None,
    max_records: int | None = None,
) -> CursorWalker:
    params, page_size, start_cursor = stream_params(opts)
    params["KeyConditionExpression"] = key_conditions
    return CursorWalker(executor, Action.query, table, params, page_size, start_cursor, max_records)
