"""Statement observers shipped with sqlrecord."""

import logging
from typing import TYPE_CHECKING, Optional

from sqlrecord.utils.logging import get_logger, log_with_context

if TYPE_CHECKING:
    from sqlrecord.core.instance import ExecutionInstance

__all__ = ("LoggingStatementObserver",)


class LoggingStatementObserver:
    """Log preparation and execution of every statement.

    Execution records carry the statement and transaction numbers bound by
    the running instance. Parameter values are never logged, only how many
    there were.

    Args:
        logger: Target logger, ``sqlrecord.statements`` by default.
        level: Level for successful calls; failures log at WARNING.
    """

    __slots__ = ("level", "logger")

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.DEBUG) -> None:
        self.logger = logger or get_logger("statements")
        self.level = level

    def on_prepare(self, key: str, sql: str, elapsed: float, error: Optional[BaseException]) -> None:
        log_with_context(
            self.logger,
            logging.WARNING if error is not None else self.level,
            "statement prepared" if error is None else "statement preparation failed",
            key=key,
            sql=sql,
            elapsed_ms=round(elapsed * 1000, 3),
            error=str(error) if error is not None else None,
        )

    def before_execute(self, instance: "ExecutionInstance") -> None:
        if not self.logger.isEnabledFor(self.level):
            return
        log_with_context(
            self.logger,
            self.level,
            "statement started",
            key=instance.statement.key,
            table=instance.table,
            param_count=len(instance.parameters),
        )

    def after_execute(self, instance: "ExecutionInstance") -> None:
        error = instance.err
        level = logging.WARNING if error is not None else self.level
        if not self.logger.isEnabledFor(level):
            return
        log_with_context(
            self.logger,
            level,
            "statement finished",
            key=instance.statement.key,
            table=instance.table,
            state=instance.state.value,
            response_ms=round(instance.response_time * 1000, 3),
            fetch_ms=round(instance.fetch_time * 1000, 3),
            rows_fetched=instance.rows_fetched,
            rows_affected=instance.rows_affected,
            error=type(error).__name__ if error is not None else None,
        )
