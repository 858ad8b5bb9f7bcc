from .adapter import DynamoAdapter
from .batching import BatchPartitioner, batch_get, batch_write
from .config import BackoffPolicy, BatchSettings, DynamoConfig
from .constants import LOGGER as DYNAMOSTREAM_LOGGER
from .dynamo_provider import DynamodbConnectionProvider
from .errors import *
from .pagination import CursorWalker, query_stream, scan_stream
from .resolver import UnprocessedItemResolver
from .types import Action, Cursor, DeleteOp, Page, PutOp, Record, TableItem
