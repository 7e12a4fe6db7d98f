# ruff: noqa: PLR6301
"""Logging helpers for sqlrecord.

Every logger from :func:`get_logger` stamps records with the transaction and
statement numbers of the call in progress, so the lines logged by the cache,
a driver and an observer during one round trip can be correlated. The
numbers come from :meth:`Database.next_tx_num` and
:meth:`Database.next_stmt_num` and are bound with :func:`correlation`.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, NamedTuple

from sqlrecord._serialization import encode_json

if TYPE_CHECKING:
    from collections.abc import Iterator
    from logging import LogRecord

__all__ = (
    "Correlation",
    "CorrelationFilter",
    "StructuredFormatter",
    "configure_logging",
    "correlation",
    "current_correlation",
    "get_logger",
    "log_with_context",
)

ROOT_LOGGER_NAME = "sqlrecord"
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [tx=%(tx_num)s stmt=%(stmt_num)s] %(message)s"


class Correlation(NamedTuple):
    """Transaction and statement numbers of the call being logged."""

    tx_num: int | None = None
    stmt_num: int | None = None


_correlation_var: ContextVar[Correlation] = ContextVar("sqlrecord_correlation", default=Correlation())


def current_correlation() -> Correlation:
    return _correlation_var.get()


@contextmanager
def correlation(*, tx_num: int | None = None, stmt_num: int | None = None) -> Iterator[Correlation]:
    """Bind transaction and statement numbers for the duration of the block.

    A number left as ``None`` keeps the value bound by an enclosing block, so
    a statement run inside a transaction logs both.
    """
    outer = _correlation_var.get()
    bound = Correlation(
        tx_num if tx_num is not None else outer.tx_num,
        stmt_num if stmt_num is not None else outer.stmt_num,
    )
    token = _correlation_var.set(bound)
    try:
        yield bound
    finally:
        _correlation_var.reset(token)


class CorrelationFilter(logging.Filter):
    """Copy the bound transaction and statement numbers onto each record."""

    def filter(self, record: LogRecord) -> bool:
        bound = _correlation_var.get()
        record.tx_num = bound.tx_num  # type: ignore[attr-defined]
        record.stmt_num = bound.stmt_num  # type: ignore[attr-defined]
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, carrying correlation numbers and extra fields."""

    def format(self, record: LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr in Correlation._fields:
            value = getattr(record, attr, None)
            if value is not None:
                entry[attr] = value
        if hasattr(record, "extra_fields"):
            entry.update(record.extra_fields)  # pyright: ignore
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return encode_json(entry)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger under the ``sqlrecord`` namespace.

    Args:
        name: Dotted suffix such as ``"core.cache"``; the root library logger
            when omitted.
    """
    if name is None:
        name = ROOT_LOGGER_NAME
    elif not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationFilter) for f in logger.filters):
        logger.addFilter(CorrelationFilter())
    return logger


def configure_logging(
    level: int | str = logging.INFO,
    *,
    structured: bool = True,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """Send sqlrecord's logs to one handler, replacing earlier configuration.

    Host applications that configure logging themselves do not need this.

    Args:
        level: Level of the ``sqlrecord`` logger.
        structured: JSON lines through :class:`StructuredFormatter`, or the
            plain text format with correlation numbers.
        handler: Destination; a stdout stream handler by default.

    Returns:
        The installed handler.
    """
    root = get_logger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.handlers.clear()

    handler = handler or logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationFilter())
    handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    return handler


def log_with_context(logger: logging.Logger, level: int, message: str, **extra_fields: Any) -> None:
    """Log ``message`` with ``extra_fields`` kept apart for structured output."""
    if not logger.isEnabledFor(level):
        return
    logger.log(level, message, extra={"extra_fields": extra_fields})
