from contextlib import contextmanager
from typing import Iterable

from moto import mock_aws

from dynamostream.dynamo_provider import DynamodbConnectionProvider


@contextmanager
def mock_dynamostream(provider: DynamodbConnectionProvider, tables: Iterable[str] = ()):
    """Run `provider` against moto, creating a pk/sk keyed table for each name in `tables`."""
    with mock_aws():
        provider.reset()
        for table_name in tables:
            provider.create_table(table_name)
        yield provider
    provider.reset()
