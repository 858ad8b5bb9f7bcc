from enum import StrEnum, auto
from typing import Any, NamedTuple, Self

Record = dict[str, Any]
Key = dict[str, Any]
Cursor = dict[str, Any]
RequestParams = dict[str, Any]
Response = dict[str, Any]


class Action(StrEnum):
    get = auto()
    put = auto()
    update = auto()
    delete = auto()
    scan = auto()
    query = auto()
    batch_get = auto()
    batch_write = auto()
    list_tables = auto()
    create_table = auto()
    describe_table = auto()
    update_table = auto()
    delete_table = auto()


PAGED_ACTIONS = frozenset({Action.scan, Action.query})


class BatchKind(StrEnum):
    get = auto()
    write = auto()


class PutOp(NamedTuple):
    item: Record

    def to_request(self) -> dict[str, Any]:
        return {"PutRequest": {"Item": self.item}}


class DeleteOp(NamedTuple):
    key: Key

    def to_request(self) -> dict[str, Any]:
        return {"DeleteRequest": {"Key": self.key}}


WriteOp = PutOp | DeleteOp


def write_op_from_request(request: dict[str, Any]) -> WriteOp:
    if "PutRequest" in request:
        return PutOp(request["PutRequest"]["Item"])
    if "DeleteRequest" in request:
        return DeleteOp(request["DeleteRequest"]["Key"])
    raise ValueError(f"Unrecognised write request {request}")


class TableItem(NamedTuple):
    table: str
    item: Any


class Page(NamedTuple):
    records: list[Record]
    cursor: Cursor | None

    @property
    def has_more(self) -> bool:
        return self.cursor is not None

    @classmethod
    def from_response(cls, response: Response) -> Self:
        return cls(list(response.get("Items", [])), response.get("LastEvaluatedKey"))
