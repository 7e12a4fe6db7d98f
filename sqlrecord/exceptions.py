from collections.abc import Sequence
from enum import Enum, auto
from typing import Any, Optional

__all__ = (
    "CheckViolationError",
    "ConfigurationError",
    "ConnectionLostError",
    "DatabaseError",
    "ErrorKind",
    "ExecutionError",
    "MissingDependencyError",
    "NotFoundError",
    "QueryCancelledError",
    "RowVersionConflictError",
    "SQLRecordError",
    "StatementClosedError",
    "StatementPreparationError",
    "UniqueViolationError",
)


class SQLRecordError(Exception):
    """Base exception class from which all sqlrecord exceptions inherit."""

    detail: str

    def __init__(self, *args: Any, detail: str = "") -> None:
        """Initialize ``SQLRecordError``.

        Args:
            *args: args are converted to :class:`str` before passing to :class:`Exception`
            detail: detail of the exception.
        """
        str_args = [str(arg) for arg in args if arg]
        if not detail:
            if str_args:
                detail, *str_args = str_args
            elif hasattr(self, "detail"):
                detail = self.detail
        self.detail = detail
        super().__init__(*str_args)

    def __repr__(self) -> str:
        if self.detail:
            return f"{self.__class__.__name__} - {self.detail}"
        return self.__class__.__name__

    def __str__(self) -> str:
        return " ".join((*self.args, self.detail)).strip()


class MissingDependencyError(SQLRecordError, ImportError):
    """Missing optional dependency.

    This exception is raised only when a module depends on a dependency that has not been installed.
    """

    def __init__(self, package: str, install_package: Optional[str] = None) -> None:
        super().__init__(
            f"Package {package!r} is not installed but required. You can install it by running "
            f"'pip install sqlrecord[{install_package or package}]' to install sqlrecord with the required extra "
            f"or 'pip install {install_package or package}' to install the package separately",
        )


class ConfigurationError(SQLRecordError):
    """The record type does not match the table it is mapped to.

    Raised for malformed tags, unknown labels, uninitialised embedded records,
    cyclic embedding and operations a table cannot support. These are
    programmer errors and are never classified as database errors.
    """


class ErrorKind(Enum):
    """Closed taxonomy of classified database failures."""

    NOT_FOUND = auto()
    UNIQUE_VIOLATION = auto()
    CHECK_VIOLATION = auto()
    CONNECTION_LOST = auto()
    EXECUTION_FAILED = auto()
    PREPARATION_FAILED = auto()

    def __str__(self) -> str:
        return self.name.lower()


class DatabaseError(SQLRecordError):
    """A driver failure mapped onto :class:`ErrorKind`.

    Carries the table, SQL text, bound parameters and whatever the driver
    reported about the offending constraint or column. Parameter values are
    kept for diagnostics but never rendered by ``__str__``.
    """

    kind: ErrorKind = ErrorKind.EXECUTION_FAILED
    retryable: bool = False
    critical: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        table: Optional[str] = None,
        sql: Optional[str] = None,
        parameters: "Optional[Sequence[Any]]" = None,
        code: Optional[str] = None,
        constraint: Optional[str] = None,
        column: Optional[str] = None,
    ) -> None:
        super().__init__(detail=message or str(self.kind).replace("_", " "))
        self.table = table
        self.sql = sql
        self.parameters = tuple(parameters) if parameters is not None else None
        self.code = code
        self.constraint = constraint
        self.column = column

    def with_context(
        self,
        *,
        table: Optional[str] = None,
        sql: Optional[str] = None,
        parameters: "Optional[Sequence[Any]]" = None,
    ) -> "DatabaseError":
        """Fill in context the error does not carry yet and return it."""
        if table is not None and self.table is None:
            self.table = table
        if sql is not None and self.sql is None:
            self.sql = sql
        if parameters is not None and self.parameters is None:
            self.parameters = tuple(parameters)
        return self

    def __str__(self) -> str:
        parts = [self.detail]
        if self.table:
            parts.append(f"(table: {self.table})")
        if self.code:
            parts.append(f"[code: {self.code}]")
        if self.constraint:
            parts.append(f"[constraint: {self.constraint}]")
        if self.column:
            parts.append(f"[column: {self.column}]")
        if self.sql:
            parts.append(f"sql: {self.sql}")
        return " ".join(parts)


class NotFoundError(DatabaseError):
    """An identity does not exist."""

    kind = ErrorKind.NOT_FOUND


class RowVersionConflictError(NotFoundError):
    """No row matched both the id and the expected row version."""


class UniqueViolationError(DatabaseError):
    """A unique constraint rejected the statement."""

    kind = ErrorKind.UNIQUE_VIOLATION


class CheckViolationError(DatabaseError):
    """A check constraint rejected the statement."""

    kind = ErrorKind.CHECK_VIOLATION


class ConnectionLostError(DatabaseError):
    """The connection to the database is gone."""

    kind = ErrorKind.CONNECTION_LOST
    critical = True


class ExecutionError(DatabaseError):
    """Generic statement execution failure."""

    kind = ErrorKind.EXECUTION_FAILED


class QueryCancelledError(ExecutionError):
    """The execution context was cancelled or its deadline passed."""

    retryable = True


class StatementClosedError(ExecutionError):
    """The cached statement was evicted and closed while being handed out."""

    retryable = True


class StatementPreparationError(DatabaseError):
    """The driver refused to prepare the statement."""

    kind = ErrorKind.PREPARATION_FAILED
