"""PostgreSQL adapter helpers: parameter adaptation and native error description."""

from collections.abc import Mapping, Sequence
from typing import Any, Final, Optional

import psycopg
from psycopg.types.json import Jsonb

from sqlrecord._serialization import encode_json
from sqlrecord.protocols import NativeErrorInfo
from sqlrecord.utils.type_guards import has_sqlstate

__all__ = ("adapt_parameters", "build_pool_kwargs", "error_info")

_CONNECTION_CLASS: Final = "08"


def _adapt(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return Jsonb(value, dumps=encode_json)
    return value


def adapt_parameters(parameters: "Sequence[Any]") -> "list[Any]":
    """Wrap values psycopg does not adapt on its own."""
    return [_adapt(value) for value in parameters]


def build_pool_kwargs(connection_config: "Mapping[str, Any]", pool_config: "Mapping[str, Any]") -> "dict[str, Any]":
    """Arguments for :class:`psycopg_pool.ConnectionPool`.

    Pooled connections run in autocommit mode; transactions are opened
    with explicit ``BEGIN``.
    """
    connection = {key: value for key, value in connection_config.items() if value is not None}
    conninfo = connection.pop("conninfo", "")
    connection["autocommit"] = True
    pool = {key: value for key, value in pool_config.items() if value is not None}
    pool.setdefault("open", True)
    return {"conninfo": conninfo, "kwargs": connection, **pool}


def error_info(error: BaseException) -> Optional[NativeErrorInfo]:
    """Describe a psycopg error by SQLSTATE and diagnostics."""
    if not isinstance(error, psycopg.Error):
        return None
    sqlstate = error.sqlstate if has_sqlstate(error) else None
    diag = error.diag
    message = diag.message_primary or str(error)
    connection_lost = isinstance(error, (psycopg.OperationalError, psycopg.InterfaceError)) and (
        sqlstate is None or sqlstate.startswith(_CONNECTION_CLASS)
    )
    return NativeErrorInfo(
        code=sqlstate,
        message=message,
        constraint=diag.constraint_name,
        column=diag.column_name,
        connection_lost=connection_lost,
    )
