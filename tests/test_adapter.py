from decimal import Decimal

import pytest
from boto3.dynamodb.conditions import Attr, Key

from dynamostream.adapter import DynamoAdapter, build_attribute_definitions, build_key_schema
from dynamostream.config import DynamoConfig
from dynamostream.dynamo_provider import DynamodbConnectionProvider
from dynamostream.errors import SequenceTerminated, TerminalRequestError
from dynamostream.testing import mock_dynamostream
from dynamostream.types import DeleteOp, PutOp

CONFIG = DynamoConfig(region="us-east-1")


@pytest.fixture
def adapter():
    provider = DynamodbConnectionProvider(CONFIG)
    with mock_dynamostream(provider, tables=["things"]):
        yield DynamoAdapter(CONFIG, executor=provider)


def test_item_round_trip(adapter: DynamoAdapter):
    key = {"pk": "user#1", "sk": "profile"}
    adapter.put_item("things", {**key, "name": "Ann", "visits": 1})
    assert adapter.get_item("things", key) == {**key, "name": "Ann", "visits": Decimal("1")}

    adapter.update_item(
        "things",
        key,
        {"update_expression": "ADD visits :one", "expression_attribute_values": {":one": 1}},
    )
    assert adapter.get_item("things", key, {"consistent_read": True})["visits"] == Decimal("2")

    adapter.delete_item("things", key)
    assert adapter.get_item("things", key) is None


def test_stream_scan_walks_every_page(adapter: DynamoAdapter):
    for i in range(30):
        adapter.put_item("things", {"pk": f"id{i:02}", "sk": "row", "n": i})

    walker = adapter.stream_scan("things", {"limit": 7})
    pks = [record["pk"] for record in walker]

    assert sorted(pks) == [f"id{i:02}" for i in range(30)]
    assert walker.pages_fetched >= 5


def test_stream_scan_with_filter(adapter: DynamoAdapter):
    for i in range(12):
        adapter.put_item("things", {"pk": f"id{i:02}", "sk": "row", "n": i})

    result = list(adapter.stream_scan("things", {"filter_expression": Attr("n").gte(9), "limit": 4}))

    assert sorted(record["n"] for record in result) == [9, 10, 11]


def test_single_scan_page_exposes_cursor(adapter: DynamoAdapter):
    for i in range(5):
        adapter.put_item("things", {"pk": f"id{i}", "sk": "row"})

    page = adapter.scan("things", {"limit": 2})

    assert len(page.records) == 2
    assert page.has_more

    rest = list(adapter.stream_scan("things", {"exclusive_start_key": page.cursor}))
    assert len(rest) == 3


def test_stream_query_by_partition(adapter: DynamoAdapter):
    for i in range(9):
        adapter.put_item("things", {"pk": "orders", "sk": f"{i:03}"})
    adapter.put_item("things", {"pk": "other", "sk": "000"})

    walker = adapter.stream_query("things", Key("pk").eq("orders"), {"limit": 2})

    assert [record["sk"] for record in walker] == [f"{i:03}" for i in range(9)]
    single = adapter.query("things", Key("pk").eq("orders") & Key("sk").begins_with("00"))
    assert len(single.records) == 9


def test_batch_write_and_get_past_service_limits(adapter: DynamoAdapter):
    ops = [PutOp({"pk": f"id{i:03}", "sk": "row", "n": i}) for i in range(140)]
    assert adapter.batch_write_item({"things": ops}) == {"things": 140}

    keys = [{"pk": f"id{i:03}", "sk": "row"} for i in range(140)]
    result = adapter.batch_get_item({"things": keys}, options={"things": {"consistent_read": True}})

    assert sorted(record["pk"] for record in result["things"]) == [f"id{i:03}" for i in range(140)]

    assert adapter.batch_write_item({"things": [DeleteOp(key) for key in keys[:30]]}) == {"things": 30}
    assert len(list(adapter.stream_scan("things"))) == 110


def test_table_lifecycle(adapter: DynamoAdapter):
    description = adapter.create_table("events", ("stream", "seq"), {"stream": "string", "seq": "number"}, 1, 1)
    assert description["TableName"] == "events"

    assert sorted(adapter.list_tables()) == ["events", "things"]
    assert adapter.describe_table("events")["KeySchema"] == build_key_schema(("stream", "seq"))

    adapter.update_table("events", {"provisioned_throughput": {"ReadCapacityUnits": 2, "WriteCapacityUnits": 2}})
    assert adapter.describe_table("events")["ProvisionedThroughput"]["ReadCapacityUnits"] == 2

    adapter.delete_table("events")
    assert adapter.list_tables() == ["things"]


def test_missing_table_is_terminal(adapter: DynamoAdapter):
    with pytest.raises(TerminalRequestError) as raised:
        adapter.describe_table("nope")
    assert raised.value.code == "ResourceNotFoundException"

    with pytest.raises(SequenceTerminated) as walk_error:
        list(adapter.stream_scan("nope"))
    assert isinstance(walk_error.value.cause, TerminalRequestError)


def test_key_schema_helpers():
    assert build_key_schema("id") == [{"AttributeName": "id", "KeyType": "HASH"}]
    assert build_attribute_definitions({"id": "S", "n": "number"}) == [
        {"AttributeName": "id", "AttributeType": "S"},
        {"AttributeName": "n", "AttributeType": "N"},
    ]
    with pytest.raises(ValueError):
        build_attribute_definitions({"id": "uuid"})


def test_subclass_binds_its_own_config():
    class EuropeDynamo(DynamoAdapter):
        config = DynamoConfig(region="eu-west-1")

    adapter = EuropeDynamo()
    assert adapter.executor.config.region == "eu-west-1"
    assert DynamoAdapter().config.region == "us-east-1"
