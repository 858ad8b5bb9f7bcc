from typing import Protocol

from dynamostream.types import Action, RequestParams, Response


class RequestExecutor(Protocol):
    """
    Performs exactly one remote call per invocation.

    Implementations return the service's response payload and raise
    `TransientServiceError` or `TerminalRequestError` on failure. They must be
    safe to call from several threads at once.
    """

    def execute(self, action: Action, params: RequestParams, table: str | None = None) -> Response: ...


class AsyncRequestExecutor(Protocol):
    async def execute(self, action: Action, params: RequestParams, table: str | None = None) -> Response: ...
