"""Statement cache, execution and transaction runtime."""

from sqlrecord.core.cache import CachedStatement, StatementCache, statement_key
from sqlrecord.core.classifier import classify
from sqlrecord.core.context import ExecutionContext
from sqlrecord.core.instance import ExecutionInstance, InstanceState
from sqlrecord.core.observers import LoggingStatementObserver
from sqlrecord.core.transaction import Transaction, TransactionState

__all__ = (
    "CachedStatement",
    "ExecutionContext",
    "ExecutionInstance",
    "InstanceState",
    "LoggingStatementObserver",
    "StatementCache",
    "Transaction",
    "TransactionState",
    "classify",
    "statement_key",
)
