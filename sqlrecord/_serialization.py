"""JSON encoding used by the structured log formatter."""

import datetime
import enum
import json
from decimal import Decimal
from typing import Any
from uuid import UUID

__all__ = ("decode_json", "encode_json")


def _default(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def encode_json(data: Any) -> str:
    return json.dumps(data, default=_default, separators=(",", ":"))


def decode_json(data: "str | bytes") -> Any:
    return json.loads(data)
