"""Dataclass <-> DynamoDB item conversion.

DynamoDB rejects Python floats, so numbers go out as ``Decimal`` and come
back as ``Decimal``; ``from_item`` narrows them using the dataclass type
hints. Datetimes and dates are stored as ISO strings, enums as their value.
"""

from __future__ import annotations

import dataclasses
import typing
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union


def to_item(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_item(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, (list, tuple)):
        return [to_item(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_item(v) for k, v in value.items()}
    return value


def from_item(cls: type, data: dict) -> Any:
    hints = typing.get_type_hints(cls)
    kwargs = {}
    for f in dataclasses.fields(cls):
        if not f.init or f.name not in data:
            continue
        kwargs[f.name] = _decode(hints[f.name], data[f.name])
    return cls(**kwargs)


def _decode(tp: Any, value: Any) -> Any:
    if value is None:
        return None

    origin = typing.get_origin(tp)
    args = typing.get_args(tp)

    if origin is Union:
        inner = [a for a in args if a is not type(None)]
        return _decode(inner[0], value) if inner else value
    if origin in (list, tuple):
        return [_decode(args[0] if args else Any, v) for v in value]
    if origin is dict:
        value_type = args[1] if len(args) == 2 else Any
        return {k: _decode(value_type, v) for k, v in value.items()}
    if isinstance(tp, type):
        if dataclasses.is_dataclass(tp):
            return from_item(tp, value)
        if issubclass(tp, Enum):
            return tp(value)
        if issubclass(tp, datetime):
            return datetime.fromisoformat(value)
        if issubclass(tp, date):
            return date.fromisoformat(value)
        if tp is bool:
            return bool(value)
        if tp is int:
            return int(value)
        if tp is float:
            return float(value)
    if isinstance(value, Decimal):
        return _plain_number(value)
    if isinstance(value, dict):
        return {k: _decode(Any, v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(Any, v) for v in value]
    return value


def _plain_number(value: Decimal) -> Union[int, float]:
    return int(value) if value == value.to_integral_value() else float(value)
