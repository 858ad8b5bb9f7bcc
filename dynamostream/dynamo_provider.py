from functools import cached_property

import boto3
from mypy_boto3_dynamodb import DynamoDBServiceResource
from mypy_boto3_dynamodb.client import DynamoDBClient
from mypy_boto3_dynamodb.service_resource import Table

from dynamostream.config import DynamoConfig
from dynamostream.constants import LOGGER
from dynamostream.errors import TerminalRequestError, client_error_boundary
from dynamostream.types import Action, RequestParams, Response

# item level calls go through the resource layer so records come back as plain python values
_TABLE_METHODS = {
    Action.get: "get_item",
    Action.put: "put_item",
    Action.update: "update_item",
    Action.delete: "delete_item",
    Action.scan: "scan",
    Action.query: "query",
}

_CLIENT_METHODS = {
    Action.list_tables: "list_tables",
    Action.create_table: "create_table",
    Action.describe_table: "describe_table",
    Action.update_table: "update_table",
    Action.delete_table: "delete_table",
}


class DynamodbConnectionProvider:
    """boto3 backed request executor bound to one `DynamoConfig`."""

    config: DynamoConfig

    def __init__(self, config: DynamoConfig | None = None):
        self.config = config or DynamoConfig()

    @cached_property
    def client(self) -> DynamoDBClient:
        return boto3.client("dynamodb", region_name=self.config.region, endpoint_url=self.config.endpoint_url)

    @cached_property
    def resource(self) -> DynamoDBServiceResource:
        return boto3.resource("dynamodb", region_name=self.config.region, endpoint_url=self.config.endpoint_url)

    def table(self, table_name: str) -> Table:
        return self.resource.Table(table_name)

    def reset(self):
        for attribute in ("client", "resource"):
            try:
                delattr(self, attribute)
            except AttributeError:
                pass

    def execute(self, action: Action, params: RequestParams, table: str | None = None) -> Response:
        LOGGER.debug(f"Executing {action} on {table or 'service'}")
        with client_error_boundary(action):
            if action in _TABLE_METHODS:
                if not table:
                    raise TerminalRequestError("ValidationException", f"{action} requires a table name", action)
                return getattr(self.table(table), _TABLE_METHODS[action])(**params)

            if action == Action.batch_get:
                return self.resource.batch_get_item(**params)

            if action == Action.batch_write:
                return self.resource.batch_write_item(**params)

            if action in _CLIENT_METHODS:
                if table and "TableName" not in params:
                    params = {"TableName": table, **params}
                return getattr(self.client, _CLIENT_METHODS[action])(**params)

        raise TerminalRequestError("UnknownOperationException", f"Unsupported action {action}", action)

    def create_table(self, table_name: str, partition_key: str = "pk", sort_key: str | None = "sk"):
        key_schema = [{"AttributeName": partition_key, "KeyType": "HASH"}]
        attribute_definitions = [{"AttributeName": partition_key, "AttributeType": "S"}]
        if sort_key:
            key_schema.append({"AttributeName": sort_key, "KeyType": "RANGE"})
            attribute_definitions.append({"AttributeName": sort_key, "AttributeType": "S"})

        table = self.resource.create_table(
            TableName=table_name,
            KeySchema=key_schema,
            AttributeDefinitions=attribute_definitions,
            BillingMode="PAY_PER_REQUEST",
        )
        table.meta.client.get_waiter("table_exists").wait(TableName=table_name)
        LOGGER.info(f"Table {table_name} created")
