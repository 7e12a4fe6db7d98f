"""Map driver failures onto :class:`~sqlrecord.exceptions.ErrorKind`.

Classification has two layers. The core itself turns an empty single-row
fetch into :class:`NotFoundError`; everything the driver raises is described
by the adapter as a :class:`NativeErrorInfo` and mapped here by SQLSTATE.
"""

from collections.abc import Sequence
from typing import Any, Final, Optional

from sqlrecord.exceptions import (
    CheckViolationError,
    ConnectionLostError,
    DatabaseError,
    ExecutionError,
    NotFoundError,
    QueryCancelledError,
    StatementPreparationError,
    UniqueViolationError,
)
from sqlrecord.protocols import NativeErrorInfo

__all__ = (
    "CHECK_VIOLATION",
    "QUERY_CANCELED",
    "UNDEFINED_TABLE",
    "UNIQUE_VIOLATION",
    "classify",
    "classify_preparation",
    "not_found",
)

UNIQUE_VIOLATION: Final = "23505"
CHECK_VIOLATION: Final = "23514"
QUERY_CANCELED: Final = "57014"
UNDEFINED_TABLE: Final = "42P01"

_CONNECTION_CLASS: Final = "08"
_SHUTDOWN_CODES: Final = frozenset({"57P01", "57P02", "57P03"})

_BY_CODE: "Final[dict[str, type[DatabaseError]]]" = {
    UNIQUE_VIOLATION: UniqueViolationError,
    CHECK_VIOLATION: CheckViolationError,
    QUERY_CANCELED: QueryCancelledError,
}


def _error_type(info: NativeErrorInfo) -> "type[DatabaseError]":
    code = info.code or ""
    if info.connection_lost or code.startswith(_CONNECTION_CLASS) or code in _SHUTDOWN_CODES:
        return ConnectionLostError
    return _BY_CODE.get(code, ExecutionError)


def classify(
    info: NativeErrorInfo,
    *,
    table: Optional[str] = None,
    sql: Optional[str] = None,
    parameters: "Optional[Sequence[Any]]" = None,
) -> DatabaseError:
    """Build the classified error for a native failure described by ``info``."""
    error_type = _error_type(info)
    return error_type(
        info.message or None,
        table=table,
        sql=sql,
        parameters=parameters,
        code=info.code,
        constraint=info.constraint,
        column=info.column,
    )


def classify_preparation(info: NativeErrorInfo, *, sql: str) -> DatabaseError:
    """Classify a failure of the prepare step.

    A lost connection stays :class:`ConnectionLostError`; anything else the
    server refused is a :class:`StatementPreparationError`.
    """
    if _error_type(info) is ConnectionLostError:
        return classify(info, sql=sql)
    return StatementPreparationError(
        info.message or None, sql=sql, code=info.code, constraint=info.constraint, column=info.column
    )


def not_found(
    *, table: Optional[str] = None, sql: Optional[str] = None, parameters: "Optional[Sequence[Any]]" = None
) -> NotFoundError:
    return NotFoundError("no rows in result set", table=table, sql=sql, parameters=parameters)
