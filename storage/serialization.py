"""Conversion between record dataclasses and DynamoDB items."""
import dataclasses
import typing
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Type, TypeVar

T = TypeVar('T')

# Fixed width so that string comparison in filter expressions is chronological
TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


def format_timestamp(value: datetime) -> str:
    """
    Render a datetime as a fixed-width UTC string.

    Naive datetimes are taken as local time.
    """
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def to_dynamo(value: Any) -> Any:
    """Convert a Python value into something boto3 can store."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def _unwrap_optional(hint):
    if typing.get_origin(hint) is typing.Union:
        args = [arg for arg in typing.get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def _from_dynamo(value: Any, hint) -> Any:
    if value is None:
        return None
    hint = _unwrap_optional(hint)
    if hint is datetime:
        return parse_timestamp(value)
    if hint is bool:
        return bool(value)
    if hint is int:
        return int(value)
    if hint is float:
        return float(value)
    return value


def record_to_item(record: Any) -> Dict[str, Any]:
    """
    Convert a record dataclass to a DynamoDB item.

    None values are omitted, DynamoDB has no use for them.
    """
    item = {}
    for f in dataclasses.fields(record):
        value = getattr(record, f.name)
        if value is None:
            continue
        item[f.name] = to_dynamo(value)
    return item


def item_to_record(model: Type[T], item: Dict[str, Any]) -> T:
    """
    Convert a DynamoDB item back into a record dataclass.

    Args:
        model: Dataclass type to build
        item: Item as returned by boto3

    Returns:
        Instance of model

    Raises:
        KeyError: If a required attribute is missing from the item
    """
    hints = typing.get_type_hints(model)
    kwargs = {}
    for f in dataclasses.fields(model):
        if f.name in item:
            kwargs[f.name] = _from_dynamo(item[f.name], hints[f.name])
        elif (f.default is dataclasses.MISSING
              and f.default_factory is dataclasses.MISSING):
            raise KeyError(f.name)
    return model(**kwargs)
