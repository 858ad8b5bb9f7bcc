import re
from decimal import Decimal
from typing import Any

from dynamostream.types import DeleteOp, PutOp, TableItem

_CAMEL_BOUNDARY = re.compile(r"_([a-z0-9])")

# per-element overhead the service charges for lists and maps
_CONTAINER_OVERHEAD = 3
_ELEMENT_OVERHEAD = 1


def camelize_key(key: str) -> str:
    if not key or key[0].isupper():
        return key
    camel = _CAMEL_BOUNDARY.sub(lambda match: match.group(1).upper(), key)
    return camel[0].upper() + camel[1:]


def camelize_keys(options: dict[str, Any] | None) -> dict[str, Any]:
    """
    Turn snake_case option names into the service's PascalCase parameter names.
    Names that are already capitalised pass through untouched.
    """
    return {camelize_key(key): value for key, value in (options or {}).items()}


def estimate_value_size(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 1
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    if isinstance(value, (int, float, Decimal)):
        return len(str(value)) // 2 + 2
    if isinstance(value, dict):
        return _CONTAINER_OVERHEAD + sum(
            estimate_value_size(k) + estimate_value_size(v) + _ELEMENT_OVERHEAD for k, v in value.items()
        )
    if isinstance(value, (set, frozenset)):
        return sum(estimate_value_size(member) for member in value)
    if isinstance(value, (list, tuple)):
        return _CONTAINER_OVERHEAD + sum(estimate_value_size(member) + _ELEMENT_OVERHEAD for member in value)
    return len(str(value).encode("utf-8"))


def estimate_record_size(record: dict[str, Any]) -> int:
    return sum(len(name.encode("utf-8")) + estimate_value_size(value) for name, value in record.items())


def estimate_table_item_size(table_item: TableItem) -> int:
    item = table_item.item
    if isinstance(item, PutOp):
        body = estimate_record_size(item.item)
    elif isinstance(item, DeleteOp):
        body = estimate_record_size(item.key)
    else:
        body = estimate_record_size(item)
    return len(table_item.table.encode("utf-8")) + body
