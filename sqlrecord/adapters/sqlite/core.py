"""SQLite adapter helpers: parameter coercion and native error description."""

import re
import sqlite3
from collections.abc import Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Final, Optional
from uuid import UUID

from sqlrecord._serialization import encode_json
from sqlrecord.core.classifier import CHECK_VIOLATION, QUERY_CANCELED, UNDEFINED_TABLE, UNIQUE_VIOLATION
from sqlrecord.protocols import NativeErrorInfo
from sqlrecord.utils.type_guards import has_sqlite_error

__all__ = ("build_connection_config", "coerce_parameters", "error_info")

SQLITE_INTERRUPT_CODE: Final = 9
SQLITE_CANTOPEN_CODE: Final = 14
SQLITE_NOTADB_CODE: Final = 26
SQLITE_CONSTRAINT_CHECK_CODE: Final = 275
SQLITE_CONSTRAINT_FOREIGNKEY_CODE: Final = 787
SQLITE_CONSTRAINT_NOTNULL_CODE: Final = 1299
SQLITE_CONSTRAINT_PRIMARYKEY_CODE: Final = 1555
SQLITE_CONSTRAINT_UNIQUE_CODE: Final = 2067

NOT_NULL_VIOLATION: Final = "23502"
FOREIGN_KEY_VIOLATION: Final = "23503"
UNDEFINED_COLUMN: Final = "42703"
SYNTAX_ERROR: Final = "42601"
CONNECTION_FAILURE: Final = "08006"

_BY_EXTENDED_CODE: "Final[dict[int, str]]" = {
    SQLITE_CONSTRAINT_UNIQUE_CODE: UNIQUE_VIOLATION,
    SQLITE_CONSTRAINT_PRIMARYKEY_CODE: UNIQUE_VIOLATION,
    SQLITE_CONSTRAINT_CHECK_CODE: CHECK_VIOLATION,
    SQLITE_CONSTRAINT_NOTNULL_CODE: NOT_NULL_VIOLATION,
    SQLITE_CONSTRAINT_FOREIGNKEY_CODE: FOREIGN_KEY_VIOLATION,
    SQLITE_INTERRUPT_CODE: QUERY_CANCELED,
    SQLITE_CANTOPEN_CODE: CONNECTION_FAILURE,
    SQLITE_NOTADB_CODE: CONNECTION_FAILURE,
}

# older interpreters expose no extended code, only the message
_BY_MESSAGE: "Final[tuple[tuple[str, str], ...]]" = (
    ("unique constraint failed", UNIQUE_VIOLATION),
    ("check constraint failed", CHECK_VIOLATION),
    ("not null constraint failed", NOT_NULL_VIOLATION),
    ("foreign key constraint failed", FOREIGN_KEY_VIOLATION),
    ("interrupted", QUERY_CANCELED),
    ("no such table", UNDEFINED_TABLE),
    ("no such column", UNDEFINED_COLUMN),
    ("syntax error", SYNTAX_ERROR),
    ("unable to open database", CONNECTION_FAILURE),
)

_CONSTRAINT_RE = re.compile(r"constraint failed: (?P<target>.+)$", re.IGNORECASE)
_CLOSED_MESSAGES: Final = ("cannot operate on a closed database", "closed database")


def _coerce(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bytes)) and not isinstance(value, bool):
        return value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return _coerce(value.value)
    if isinstance(value, (dict, list, tuple)):
        return encode_json(value)
    return value


def coerce_parameters(parameters: "Sequence[Any]") -> "tuple[Any, ...]":
    """Convert values sqlite3 cannot bind natively."""
    return tuple(_coerce(value) for value in parameters)


def build_connection_config(connection_config: "Mapping[str, Any]") -> "dict[str, Any]":
    """Connection keyword arguments for :func:`sqlite3.connect`.

    Statements run in autocommit mode; transactions are opened explicitly.
    """
    config = {key: value for key, value in connection_config.items() if value is not None}
    config.setdefault("database", ":memory:")
    database = str(config["database"])
    if database.startswith("file:"):
        config["uri"] = True
    config["isolation_level"] = None
    config["check_same_thread"] = False
    return config


def _constraint_target(message: str) -> "tuple[Optional[str], Optional[str]]":
    match = _CONSTRAINT_RE.search(message)
    if match is None:
        return None, None
    target = match.group("target").split(",")[0].strip()
    if "." in target:
        return None, target.rsplit(".", 1)[1]
    return target, None


def error_info(error: BaseException) -> Optional[NativeErrorInfo]:
    """Describe a :mod:`sqlite3` error with a SQLSTATE equivalent.

    Mapping priority: extended result code, then message patterns, then the
    sqlite error name as the code.
    """
    if not isinstance(error, sqlite3.Error):
        return None
    message = str(error)
    lowered = message.lower()
    code: Optional[str] = None
    if has_sqlite_error(error):
        code = _BY_EXTENDED_CODE.get(error.sqlite_errorcode)  # type: ignore[attr-defined]
    if code is None:
        code = next((sqlstate for pattern, sqlstate in _BY_MESSAGE if pattern in lowered), None)
    if code is None and has_sqlite_error(error):
        code = error.sqlite_errorname  # type: ignore[attr-defined]
    constraint, column = _constraint_target(message)
    return NativeErrorInfo(
        code=code,
        message=message,
        constraint=constraint,
        column=column,
        connection_lost=code == CONNECTION_FAILURE or any(text in lowered for text in _CLOSED_MESSAGES),
    )
