from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator

import pytest
from fakes import FakeDriver

from sqlrecord import Database, DatabaseConfig, LoggingStatementObserver
from sqlrecord.utils.logging import (
    Correlation,
    CorrelationFilter,
    StructuredFormatter,
    configure_logging,
    correlation,
    current_correlation,
    get_logger,
    log_with_context,
)


@pytest.fixture
def restore_root_logger() -> Iterator[logging.Logger]:
    root = get_logger()
    handlers, level, propagate = list(root.handlers), root.level, root.propagate
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    root.propagate = propagate


def _statement_records(caplog: pytest.LogCaptureFixture) -> list[logging.LogRecord]:
    return [record for record in caplog.records if record.name == "sqlrecord.statements"]


def test_get_logger_is_namespaced() -> None:
    assert get_logger().name == "sqlrecord"
    assert get_logger("table").name == "sqlrecord.table"
    assert get_logger("sqlrecord.base").name == "sqlrecord.base"
    assert sum(isinstance(f, CorrelationFilter) for f in get_logger("table").filters) == 1


def test_correlation_nests_and_resets() -> None:
    assert current_correlation() == Correlation()
    with correlation(tx_num=3):
        with correlation(stmt_num=7) as bound:
            assert bound == Correlation(3, 7)
            assert current_correlation() == Correlation(3, 7)
        assert current_correlation() == Correlation(3, None)
    assert current_correlation() == Correlation()


def test_structured_formatter_includes_correlation_and_extra_fields() -> None:
    record = logging.LogRecord("sqlrecord.test", logging.INFO, __file__, 1, "hello", None, None)
    record.extra_fields = {"table": "users"}  # type: ignore[attr-defined]
    with correlation(tx_num=4):
        CorrelationFilter().filter(record)
    payload = json.loads(StructuredFormatter().format(record))
    assert payload["message"] == "hello"
    assert payload["table"] == "users"
    assert payload["tx_num"] == 4
    assert "stmt_num" not in payload


def test_log_with_context_respects_level(caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("test.context")
    with caplog.at_level(logging.INFO, logger="sqlrecord.test.context"):
        log_with_context(logger, logging.DEBUG, "hidden")
        log_with_context(logger, logging.INFO, "shown", rows=2)
    assert [record.getMessage() for record in caplog.records] == ["shown"]
    assert caplog.records[0].extra_fields == {"rows": 2}  # type: ignore[attr-defined]


def test_statement_observer_never_logs_parameter_values(caplog: pytest.LogCaptureFixture) -> None:
    db = Database(FakeDriver(), DatabaseConfig(observers=[LoggingStatementObserver()]))
    with caplog.at_level(logging.DEBUG, logger="sqlrecord.statements"):
        db.exec("UPDATE users SET password = $1", "hunter2")
    records = _statement_records(caplog)
    assert [record.getMessage() for record in records] == ["statement prepared", "statement started", "statement finished"]
    assert records[1].extra_fields["param_count"] == 1  # type: ignore[attr-defined]
    assert records[2].extra_fields["state"] == "succeeded"  # type: ignore[attr-defined]
    assert all("hunter2" not in json.dumps(record.extra_fields) for record in records)  # type: ignore[attr-defined]


def test_execution_records_carry_statement_and_transaction_numbers(caplog: pytest.LogCaptureFixture) -> None:
    db = Database(FakeDriver(), DatabaseConfig(observers=[LoggingStatementObserver()]))
    with caplog.at_level(logging.DEBUG, logger="sqlrecord"):
        db.exec("DELETE FROM sessions")
        with db.begin() as tx:
            db.exec("DELETE FROM users", tx=tx)

    started = [record for record in _statement_records(caplog) if record.getMessage() == "statement started"]
    assert len(started) == 2
    assert started[0].tx_num is None  # type: ignore[attr-defined]
    assert started[1].tx_num == tx.number  # type: ignore[attr-defined]
    assert started[1].stmt_num > started[0].stmt_num  # type: ignore[attr-defined]

    tx_records = [record for record in caplog.records if record.name == "sqlrecord.core.transaction"]
    assert [record.getMessage() for record in tx_records] == [
        f"transaction {tx.number} started",
        f"transaction {tx.number} committed",
    ]
    assert all(record.tx_num == tx.number for record in tx_records)  # type: ignore[attr-defined]
    assert current_correlation() == Correlation()


def test_configure_logging_text_format(restore_root_logger: logging.Logger) -> None:
    stream = io.StringIO()
    handler = configure_logging("debug", structured=False, handler=logging.StreamHandler(stream))
    assert restore_root_logger.handlers == [handler]
    assert restore_root_logger.level == logging.DEBUG
    with correlation(tx_num=2, stmt_num=5):
        get_logger("table").debug("bound users")
    assert "[tx=2 stmt=5] bound users" in stream.getvalue()


def test_configure_logging_structured(restore_root_logger: logging.Logger) -> None:
    stream = io.StringIO()
    configure_logging(logging.INFO, handler=logging.StreamHandler(stream))
    log_with_context(get_logger("table"), logging.INFO, "bound", tables=3)
    payload = json.loads(stream.getvalue().strip())
    assert payload["message"] == "bound"
    assert payload["tables"] == 3
    assert payload["logger"] == "sqlrecord.table"
