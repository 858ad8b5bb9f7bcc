from contextlib import contextmanager
from typing import Any

import botocore.exceptions

from dynamostream.constants import TRANSIENT_ERROR_CODES
from dynamostream.types import Action, TableItem

TRANSIENT_BOTOCORE_ERRORS = (
    botocore.exceptions.ConnectionError,
    botocore.exceptions.HTTPClientError,
)


class DynamoStreamError(Exception):
    pass


class RequestError(DynamoStreamError):
    code: str
    action: Action | None
    chunk_index: int | None

    def __init__(self, code: str, message: str = "", action: Action | None = None):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message
        self.action = action
        self.chunk_index = None


class TransientServiceError(RequestError):
    """Throttling or capacity failure; the request may be retried."""


class TerminalRequestError(RequestError):
    """Malformed request, missing table, authorization failure. Never retried."""


class UnprocessedItems(DynamoStreamError):
    items: list[TableItem]

    def __init__(self, items: list[TableItem]):
        super().__init__(f"{len(items)} items were not processed")
        self.items = items


class PartialFailure(DynamoStreamError):
    """
    A batch call finished with items the service never completed.

    `unprocessed` maps table name to the exact keys or write ops left over,
    `completed` holds whatever the call did manage to return.
    """

    unprocessed: dict[str, list[Any]]
    completed: dict[str, Any]

    def __init__(self, unprocessed: dict[str, list[Any]], completed: dict[str, Any]):
        count = sum(len(items) for items in unprocessed.values())
        super().__init__(f"{count} items remained unprocessed after exhausting retries")
        self.unprocessed = unprocessed
        self.completed = completed


class SequenceTerminated(DynamoStreamError):
    cause: BaseException
    records_delivered: int

    def __init__(self, cause: BaseException, records_delivered: int):
        super().__init__(f"Walk terminated after {records_delivered} records: {cause}")
        self.cause = cause
        self.records_delivered = records_delivered


def classify_client_error(error: botocore.exceptions.ClientError, action: Action | None = None) -> RequestError:
    code = error.response.get("Error", {}).get("Code", "Unknown")
    message = error.response.get("Error", {}).get("Message", "")
    if code in TRANSIENT_ERROR_CODES:
        return TransientServiceError(code, message, action)
    return TerminalRequestError(code, message, action)


def classify_botocore_error(error: botocore.exceptions.BotoCoreError, action: Action | None = None) -> RequestError:
    """Connection drops and timeouts can be retried; any other local botocore failure cannot."""
    if isinstance(error, botocore.exceptions.ParamValidationError):
        return TerminalRequestError("ValidationException", str(error), action)
    if isinstance(error, TRANSIENT_BOTOCORE_ERRORS):
        return TransientServiceError(type(error).__name__, str(error), action)
    return TerminalRequestError(type(error).__name__, str(error), action)


@contextmanager
def client_error_boundary(action: Action | None = None):
    try:
        yield
    except botocore.exceptions.ClientError as e:
        raise classify_client_error(e, action) from e
    except botocore.exceptions.BotoCoreError as e:
        raise classify_botocore_error(e, action) from e
