"""PostgreSQL driver on psycopg 3 and psycopg_pool.

Statements use native ``$n`` placeholders through :class:`psycopg.RawCursor`
and are executed with ``prepare=True``, so every pooled connection keeps its
own server-side prepared statement for each cached SQL text.
"""

import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Optional

from psycopg import Connection, RawCursor
from psycopg_pool import ConnectionPool

from sqlrecord.adapters.psycopg.core import adapt_parameters, error_info
from sqlrecord.builder import PlaceholderStyle
from sqlrecord.protocols import NativeErrorInfo
from sqlrecord.utils.logging import get_logger

__all__ = ("PsycopgDriver", "PsycopgPreparedStatement", "PsycopgSession")

logger = get_logger("adapters.psycopg")


class PsycopgPreparedStatement:
    """Statement text the server accepted at ``PREPARE`` time."""

    __slots__ = ("_closed", "sql")

    def __init__(self, sql: str) -> None:
        self.sql = sql
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


class PsycopgSession:
    __slots__ = ("_connection",)

    def __init__(self, connection: "Connection[Any]") -> None:
        self._connection = connection

    def execute(self, handle: PsycopgPreparedStatement, parameters: "Sequence[Any]") -> "RawCursor[Any]":
        cursor = RawCursor(self._connection)
        try:
            cursor.execute(handle.sql, adapt_parameters(parameters), prepare=True)
        except BaseException:
            cursor.close()
            raise
        return cursor

    def begin(self) -> None:
        self._connection.execute("BEGIN")

    def commit(self) -> None:
        self._connection.execute("COMMIT")

    def rollback(self) -> None:
        self._connection.execute("ROLLBACK")

    def cancel(self) -> None:
        self._connection.cancel_safe()


class PsycopgDriver:
    """Driver backed by a :class:`psycopg_pool.ConnectionPool`."""

    __slots__ = ("_pool",)

    placeholder_style = PlaceholderStyle.NUMERIC

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    def prepare(self, sql: str) -> PsycopgPreparedStatement:
        """Validate ``sql`` with ``PREPARE`` and drop the probe again."""
        name = f"sqlrecord_{uuid.uuid4().hex}"
        with self._pool.connection() as connection:
            connection.execute(f'PREPARE "{name}" AS {sql}')
            connection.execute(f'DEALLOCATE "{name}"')
        return PsycopgPreparedStatement(sql)

    @contextmanager
    def session(self) -> "Iterator[PsycopgSession]":
        with self._pool.connection() as connection:
            yield PsycopgSession(connection)

    def error_info(self, error: BaseException) -> Optional[NativeErrorInfo]:
        return error_info(error)

    def ping(self) -> None:
        with self._pool.connection() as connection:
            connection.execute("SELECT 1")

    def close(self) -> None:
        self._pool.close()
        logger.debug("closed psycopg pool %s", self._pool.name)
