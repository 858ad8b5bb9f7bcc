from typing import Any, Mapping

from dynamostream.batching import batch_get, batch_write
from dynamostream.chunking import TableOptions
from dynamostream.config import DynamoConfig
from dynamostream.dynamo_provider import DynamodbConnectionProvider
from dynamostream.executor import RequestExecutor
from dynamostream.helpers import camelize_keys
from dynamostream.pagination import CursorWalker, query_stream, scan_stream
from dynamostream.types import Action, Key, Page, Record, WriteOp

_ATTRIBUTE_TYPES = {"string": "S", "number": "N", "binary": "B", "S": "S", "N": "N", "B": "B"}

PrimaryKeySpec = str | tuple[str, str]


def build_key_schema(primary_key: PrimaryKeySpec) -> list[dict[str, str]]:
    if isinstance(primary_key, str):
        return [{"AttributeName": primary_key, "KeyType": "HASH"}]
    hash_key, range_key = primary_key
    return [{"AttributeName": hash_key, "KeyType": "HASH"}, {"AttributeName": range_key, "KeyType": "RANGE"}]


def build_attribute_definitions(key_definitions: Mapping[str, str]) -> list[dict[str, str]]:
    definitions = []
    for name, attribute_type in key_definitions.items():
        if attribute_type not in _ATTRIBUTE_TYPES:
            raise ValueError(f"Unknown attribute type {attribute_type} for {name}")
        definitions.append({"AttributeName": name, "AttributeType": _ATTRIBUTE_TYPES[attribute_type]})
    return definitions


class DynamoAdapter:
    """
    The DynamoDB API with a single configuration bound to every call.

    Pass a `DynamoConfig` (or set `config` on a subclass) and every operation,
    including the streaming and batch helpers, runs against that configuration:

        class AnalyticsDynamo(DynamoAdapter):
            config = DynamoConfig(region="eu-west-1")

    Several adapters with different configurations can live side by side;
    nothing is read from global state.
    """

    config: DynamoConfig = DynamoConfig()

    executor: RequestExecutor

    def __init__(self, config: DynamoConfig | None = None, executor: RequestExecutor | None = None):
        if config is not None:
            self.config = config
        self.executor = executor or DynamodbConnectionProvider(self.config)

    def list_tables(self) -> list[str]:
        names: list[str] = []
        params: dict[str, Any] = {}
        while True:
            response = self.executor.execute(Action.list_tables, params)
            names.extend(response.get("TableNames", []))
            if "LastEvaluatedTableName" not in response:
                return names
            params = {"ExclusiveStartTableName": response["LastEvaluatedTableName"]}

    def create_table(
        self,
        name: str,
        primary_key: PrimaryKeySpec,
        key_definitions: Mapping[str, str],
        read_capacity: int,
        write_capacity: int,
        global_indexes: list[dict[str, Any]] | None = None,
        local_indexes: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "TableName": name,
            "KeySchema": build_key_schema(primary_key),
            "AttributeDefinitions": build_attribute_definitions(key_definitions),
            "ProvisionedThroughput": {"ReadCapacityUnits": read_capacity, "WriteCapacityUnits": write_capacity},
        }
        if global_indexes:
            params["GlobalSecondaryIndexes"] = global_indexes
        if local_indexes:
            params["LocalSecondaryIndexes"] = local_indexes
        return self.executor.execute(Action.create_table, params, table=name)["TableDescription"]

    def describe_table(self, name: str) -> dict[str, Any]:
        return self.executor.execute(Action.describe_table, {}, table=name)["Table"]

    def update_table(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return self.executor.execute(Action.update_table, camelize_keys(attributes), table=name)["TableDescription"]

    def delete_table(self, name: str) -> dict[str, Any]:
        return self.executor.execute(Action.delete_table, {}, table=name)["TableDescription"]

    def scan(self, name: str, opts: dict[str, Any] | None = None) -> Page:
        """A single page of a scan; see `stream_scan` to follow the cursor."""
        return Page.from_response(self.executor.execute(Action.scan, camelize_keys(opts), table=name))

    def stream_scan(
        self, name: str, opts: dict[str, Any] | None = None, max_records: int | None = None
    ) -> CursorWalker:
        return scan_stream(self.executor, name, opts, max_records=max_records)

    def query(self, name: str, key_conditions: Any, opts: dict[str, Any] | None = None) -> Page:
        params = {**camelize_keys(opts), "KeyConditionExpression": key_conditions}
        return Page.from_response(self.executor.execute(Action.query, params, table=name))

    def stream_query(
        self, name: str, key_conditions: Any, opts: dict[str, Any] | None = None, max_records: int | None = None
    ) -> CursorWalker:
        return query_stream(self.executor, name, key_conditions, opts, max_records=max_records)

    def batch_get_item(
        self, data: Mapping[str, list[Key]], options: TableOptions | None = None
    ) -> dict[str, list[Record]]:
        """
        Get any number of keys across tables, 100 keys per underlying call.

        `options` maps a table name to extra per-table request parameters such
        as `ProjectionExpression` or `ConsistentRead`.
        """
        options = {table: camelize_keys(dict(table_options)) for table, table_options in (options or {}).items()}
        return batch_get(self.executor, data, options, self.config.batch, self.config.backoff)

    def batch_write_item(self, data: Mapping[str, list[WriteOp | dict[str, Any]]]) -> dict[str, int]:
        """Put or delete any number of items across tables, 25 ops per underlying call."""
        return batch_write(self.executor, data, self.config.batch, self.config.backoff)

    def put_item(self, name: str, record: Record, opts: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.executor.execute(Action.put, {**camelize_keys(opts), "Item": record}, table=name)

    def get_item(self, name: str, primary_key: Key, opts: dict[str, Any] | None = None) -> Record | None:
        response = self.executor.execute(Action.get, {**camelize_keys(opts), "Key": primary_key}, table=name)
        return response.get("Item")

    def update_item(self, name: str, primary_key: Key, update_args: dict[str, Any]) -> dict[str, Any]:
        return self.executor.execute(Action.update, {**camelize_keys(update_args), "Key": primary_key}, table=name)

    def delete_item(self, name: str, primary_key: Key, opts: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.executor.execute(Action.delete, {**camelize_keys(opts), "Key": primary_key}, table=name)
