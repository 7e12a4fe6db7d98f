"""SQLite driver on the standard library :mod:`sqlite3` module.

One connection is shared by all sessions and guarded by a re-entrant lock,
which matches SQLite's single-writer model: a transaction holds the lock
until it commits or rolls back.
"""

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Optional

from sqlrecord.adapters.sqlite.core import coerce_parameters, error_info
from sqlrecord.builder import PlaceholderStyle
from sqlrecord.protocols import NativeErrorInfo
from sqlrecord.utils.logging import get_logger

__all__ = ("SqliteDriver", "SqlitePreparedStatement", "SqliteSession")

logger = get_logger("adapters.sqlite")


class SqlitePreparedStatement:
    """Statement text validated by SQLite; sqlite3 keeps the compiled form in its own cache."""

    __slots__ = ("_closed", "sql")

    def __init__(self, sql: str) -> None:
        self.sql = sql
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


class SqliteSession:
    __slots__ = ("_connection",)

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

    def execute(self, handle: SqlitePreparedStatement, parameters: "Sequence[Any]") -> sqlite3.Cursor:
        cursor = self._connection.cursor()
        try:
            cursor.execute(handle.sql, coerce_parameters(parameters))
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
        self._connection.interrupt()


class SqliteDriver:
    """Driver for one SQLite database file (or in-memory database).

    Args:
        connection_params: Keyword arguments for :func:`sqlite3.connect`.
        enable_foreign_keys: Turn on ``PRAGMA foreign_keys``.
    """

    __slots__ = ("_connection", "_lock")

    placeholder_style = PlaceholderStyle.QMARK

    def __init__(self, connection_params: "dict[str, Any]", *, enable_foreign_keys: bool = True) -> None:
        self._connection = sqlite3.connect(**connection_params)
        self._lock = threading.RLock()
        if enable_foreign_keys:
            self._connection.execute("PRAGMA foreign_keys = ON")
        logger.debug("opened sqlite database %s", connection_params.get("database"))

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def prepare(self, sql: str) -> SqlitePreparedStatement:
        """Compile ``sql`` through ``EXPLAIN`` without running it.

        sqlite3 compiles a statement before checking the number of bindings,
        so a binding-count complaint means the statement itself is valid.
        """
        with self._lock:
            try:
                self._connection.execute(f"EXPLAIN {sql}").close()
            except sqlite3.ProgrammingError as exc:
                if "bindings" not in str(exc):
                    raise
        return SqlitePreparedStatement(sql)

    @contextmanager
    def session(self) -> "Iterator[SqliteSession]":
        with self._lock:
            yield SqliteSession(self._connection)

    def error_info(self, error: BaseException) -> Optional[NativeErrorInfo]:
        return error_info(error)

    def ping(self) -> None:
        with self._lock:
            self._connection.execute("SELECT 1").close()

    def close(self) -> None:
        with self._lock:
            self._connection.close()
