"""One execution of a cached statement.

An :class:`ExecutionInstance` is created per call, used once and never
shared between threads. It moves through ``CREATED -> EXECUTING`` and ends in
``SUCCEEDED`` or ``FAILED``; an instance streaming rows through
:meth:`ExecutionInstance.rows` ends in ``CLOSED`` once iteration finishes.
"""

import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import AbstractContextManager, ExitStack
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from sqlrecord.core.classifier import classify, not_found
from sqlrecord.exceptions import ConfigurationError, DatabaseError, SQLRecordError
from sqlrecord.utils.logging import correlation

if TYPE_CHECKING:
    from sqlrecord.base import Database
    from sqlrecord.core.cache import CachedStatement
    from sqlrecord.core.context import ExecutionContext
    from sqlrecord.core.transaction import Transaction
    from sqlrecord.protocols import CursorProtocol, SessionProtocol

__all__ = ("ExecutionInstance", "InstanceState")

RowCallback = Callable[["Sequence[Any]"], Any]


class InstanceState(Enum):
    CREATED = "created"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CLOSED = "closed"


class ExecutionInstance:
    """Run a cached statement once and record how it went.

    Attributes:
        number: Statement sequence number from the owning database.
        started_at: Wall-clock start, seconds since the epoch.
        response_time: Seconds until the driver returned the cursor.
        fetch_time: Seconds spent fetching rows.
        rows_fetched: Rows read from the cursor.
        rows_affected: Driver row count for statements without rows.
        columns: Result column names reported by the driver.
    """

    __slots__ = (
        "_db",
        "_error",
        "columns",
        "context",
        "fetch_time",
        "number",
        "parameters",
        "response_time",
        "rows_affected",
        "rows_fetched",
        "started_at",
        "state",
        "statement",
        "table",
        "tx",
    )

    def __init__(
        self,
        db: "Database",
        statement: "CachedStatement",
        *,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
        table: Optional[str] = None,
    ) -> None:
        self._db = db
        self.statement = statement
        self.tx = tx
        self.context = context
        self.table = table
        self.number = db.next_stmt_num()
        self.state = InstanceState.CREATED
        self.parameters: tuple[Any, ...] = ()
        self.started_at = 0.0
        self.response_time = 0.0
        self.fetch_time = 0.0
        self.rows_fetched = 0
        self.rows_affected = 0
        self.columns: tuple[str, ...] = ()
        self._error: Optional[BaseException] = None

    def __repr__(self) -> str:
        return f"ExecutionInstance(#{self.number}, key={self.statement.key!r}, state={self.state.value})"

    @property
    def sql(self) -> str:
        return self.statement.sql

    @property
    def err(self) -> Optional[BaseException]:
        """Terminal error; the same object on every call."""
        return self._error

    def in_tx(self, tx: "Transaction") -> "ExecutionInstance":
        """Return a fresh instance of the same statement scoped to ``tx``."""
        if self.state is not InstanceState.CREATED:
            msg = "only an unused execution instance can be bound to a transaction"
            raise ConfigurationError(msg)
        return ExecutionInstance(self._db, self.statement, tx=tx, context=self.context, table=self.table)

    # -- public calls -----------------------------------------------------

    def exec(self, *parameters: Any) -> int:
        """Execute a statement returning no rows; returns the affected row count."""
        with self._run(parameters) as cursor:
            self.rows_affected = max(cursor.rowcount, 0)
        return self.rows_affected

    def query_row(self, *parameters: Any) -> "Sequence[Any]":
        """Fetch exactly one row.

        Raises:
            NotFoundError: The statement produced no row.
        """
        with self._run(parameters) as cursor:
            started = time.perf_counter()
            row = cursor.fetchone()
            self.fetch_time = time.perf_counter() - started
            if row is None:
                raise not_found(table=self.table, sql=self.sql, parameters=self.parameters)
            self.rows_fetched = 1
        return row

    def query(self, *parameters: Any, callback: "RowCallback") -> int:
        """Call ``callback`` for every row; returns the number of rows delivered.

        Rows delivered before a failure stay delivered; the error reflects
        the row that failed.
        """
        with self._run(parameters) as cursor:
            started = time.perf_counter()
            try:
                for row in iter(cursor.fetchone, None):
                    self.rows_fetched += 1
                    callback(row)
            finally:
                self.fetch_time = time.perf_counter() - started
        return self.rows_fetched

    def rows(self, *parameters: Any) -> "Iterator[Sequence[Any]]":
        """Stream rows; the session is held until iteration ends or the generator closes."""
        with self._run(parameters) as cursor:
            started = time.perf_counter()
            try:
                for row in iter(cursor.fetchone, None):
                    self.rows_fetched += 1
                    yield row
            finally:
                self.fetch_time = time.perf_counter() - started
        self.state = InstanceState.CLOSED

    # -- internals --------------------------------------------------------

    def _session(self) -> "AbstractContextManager[SessionProtocol]":
        if self.tx is not None:
            return self.tx.session()
        return self._db.driver.session()

    def _run(self, parameters: "Sequence[Any]") -> "_Execution":
        if self.state is not InstanceState.CREATED:
            msg = f"execution instance #{self.number} has already been used"
            raise SQLRecordError(msg)
        self.parameters = tuple(parameters)
        return _Execution(self)

    def _fail(self, error: BaseException) -> BaseException:
        if isinstance(error, DatabaseError):
            error.with_context(table=self.table, sql=self.sql, parameters=self.parameters)
        elif not isinstance(error, SQLRecordError):
            info = self._db.driver.error_info(error)
            if info is not None:
                classified = classify(info, table=self.table, sql=self.sql, parameters=self.parameters)
                classified.__cause__ = error
                error = classified
        self._error = error
        self.state = InstanceState.FAILED
        return error


class _Execution:
    """Context manager wrapping one driver round trip of an instance."""

    __slots__ = ("_instance", "_scope", "_stack")

    def __init__(self, instance: ExecutionInstance) -> None:
        self._instance = instance
        self._stack = ExitStack()
        self._scope = correlation(
            tx_num=instance.tx.number if instance.tx is not None else None, stmt_num=instance.number
        )

    def __enter__(self) -> "CursorProtocol":
        instance = self._instance
        instance.state = InstanceState.EXECUTING
        instance.started_at = time.time()
        self._scope.__enter__()
        try:
            instance._db.notify_before(instance)
            if instance.context is not None:
                instance.context.check()
            handle = instance.statement.acquire()
            self._stack.callback(instance.statement.release)
            session = self._stack.enter_context(instance._session())
            started = time.perf_counter()
            cursor = self._execute(session, handle)
            instance.response_time = time.perf_counter() - started
            if cursor.description:
                instance.columns = tuple(str(column[0]) for column in cursor.description)
            self._stack.callback(cursor.close)
        except BaseException as exc:
            self.__exit__(type(exc), exc, exc.__traceback__)
            raise
        return cursor

    def _execute(self, session: "SessionProtocol", handle: Any) -> "CursorProtocol":
        instance = self._instance
        if instance.context is None:
            return session.execute(handle, instance.parameters)
        with instance.context.watch(session.cancel):
            try:
                return session.execute(handle, instance.parameters)
            except Exception as exc:
                instance.context.raise_if_cancelled(exc)
                raise

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        instance = self._instance
        try:
            self._stack.__exit__(exc_type, exc_val, exc_tb)
        finally:
            if exc_val is None:
                instance.state = InstanceState.SUCCEEDED
            elif isinstance(exc_val, GeneratorExit):
                instance.state = InstanceState.CLOSED
            else:
                failed = instance._fail(exc_val)
            try:
                instance._db.notify_after(instance)
            finally:
                self._scope.__exit__(None, None, None)
        if exc_val is not None and not isinstance(exc_val, GeneratorExit) and failed is not exc_val:
            raise failed from exc_val
