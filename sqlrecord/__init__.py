"""sqlrecord: dataclass-to-table mapping over cached prepared statements."""

from sqlrecord import adapters, builder, core, exceptions, mapping, utils
from sqlrecord.__metadata__ import __version__
from sqlrecord.base import Database
from sqlrecord.builder import ConflictTarget, PlaceholderStyle, Returning, ReturningSpec
from sqlrecord.config import AdapterConfig, DatabaseConfig, TableConfig
from sqlrecord.core import (
    CachedStatement,
    ExecutionContext,
    ExecutionInstance,
    InstanceState,
    LoggingStatementObserver,
    Transaction,
    TransactionState,
)
from sqlrecord.exceptions import (
    CheckViolationError,
    ConfigurationError,
    ConnectionLostError,
    DatabaseError,
    ErrorKind,
    ExecutionError,
    MissingDependencyError,
    NotFoundError,
    QueryCancelledError,
    RowVersionConflictError,
    SQLRecordError,
    StatementClosedError,
    StatementPreparationError,
    UniqueViolationError,
)
from sqlrecord.mapping import RecordDescriptor, Tag, TagRule, column, embedded, resolve_descriptor
from sqlrecord.protocols import DriverProtocol, NativeErrorInfo, StatementObserver
from sqlrecord.table import BindResult, Table, bind_tables

__all__ = (
    "AdapterConfig",
    "BindResult",
    "CachedStatement",
    "CheckViolationError",
    "ConfigurationError",
    "ConflictTarget",
    "ConnectionLostError",
    "Database",
    "DatabaseConfig",
    "DatabaseError",
    "DriverProtocol",
    "ErrorKind",
    "ExecutionContext",
    "ExecutionError",
    "ExecutionInstance",
    "InstanceState",
    "LoggingStatementObserver",
    "MissingDependencyError",
    "NativeErrorInfo",
    "NotFoundError",
    "PlaceholderStyle",
    "QueryCancelledError",
    "RecordDescriptor",
    "Returning",
    "ReturningSpec",
    "RowVersionConflictError",
    "SQLRecordError",
    "StatementClosedError",
    "StatementObserver",
    "StatementPreparationError",
    "Table",
    "TableConfig",
    "Tag",
    "TagRule",
    "Transaction",
    "TransactionState",
    "UniqueViolationError",
    "__version__",
    "adapters",
    "builder",
    "bind_tables",
    "column",
    "core",
    "embedded",
    "exceptions",
    "mapping",
    "resolve_descriptor",
    "utils",
)
