"""Tests for the Database handle."""

from __future__ import annotations

import pytest
from fakes import FakeDriver, FakeDriverError, RecordingObserver

from sqlrecord import Database, DatabaseConfig, ExecutionInstance, PlaceholderStyle
from sqlrecord.adapters.sqlite import SqliteConfig, SqliteDriver
from sqlrecord.core import statement_key
from sqlrecord.exceptions import (
    ConfigurationError,
    ConnectionLostError,
    StatementClosedError,
    StatementPreparationError,
)


def test_prepare_is_cached(fake_db: Database, fake_driver: FakeDriver) -> None:
    first = fake_db.prepare("SELECT 1")
    assert fake_db.prepare("SELECT 1") is first
    assert fake_driver.prepare_calls["SELECT 1"] == 1
    assert fake_db.prepared_statement_count == 1


def test_named_statement_lookup(fake_db: Database) -> None:
    statement = fake_db.prepare("SELECT 1", name="probe")
    assert fake_db.statement("probe") is statement
    with pytest.raises(ConfigurationError, match="no prepared statement named 'missing'"):
        fake_db.statement("missing")


def test_preparation_error_is_classified_and_cached(
    fake_db: Database, fake_driver: FakeDriver, observer: RecordingObserver
) -> None:
    fake_driver.prepare_errors["SELEC 1"] = FakeDriverError('syntax error at or near "SELEC"', "42601")
    with pytest.raises(StatementPreparationError) as exc_info:
        fake_db.prepare("SELEC 1")
    assert exc_info.value.code == "42601"
    assert isinstance(exc_info.value.__cause__, FakeDriverError)
    with pytest.raises(StatementPreparationError):
        fake_db.exec("SELEC 1")
    assert fake_driver.prepare_calls["SELEC 1"] == 1
    assert isinstance(observer.prepared[0][1], StatementPreparationError)


def test_lost_connection_during_prepare_is_not_cached(fake_db: Database, fake_driver: FakeDriver) -> None:
    fake_driver.prepare_errors["SELECT 1"] = FakeDriverError("connection reset", connection_lost=True)
    with pytest.raises(ConnectionLostError):
        fake_db.prepare("SELECT 1")
    del fake_driver.prepare_errors["SELECT 1"]
    fake_driver.respond("SELECT 1", rows=[(1,)])
    assert fake_db.query_row("SELECT 1") == (1,)
    assert fake_driver.prepare_calls["SELECT 1"] == 2


def test_evict_by_sql_or_name(fake_db: Database, fake_driver: FakeDriver) -> None:
    fake_db.prepare("SELECT 1")
    fake_db.prepare("SELECT 2", name="two")
    assert fake_db.evict("SELECT 1")
    assert fake_db.evict("two")
    assert not fake_db.evict("SELECT 3")
    assert fake_db.prepared_statement_count == 0
    fake_db.prepare("SELECT 1")
    assert fake_driver.prepare_calls["SELECT 1"] == 2


def test_run_retries_statement_closed_by_eviction(fake_db: Database, fake_driver: FakeDriver) -> None:
    evicted: list[str] = []

    def action(instance: ExecutionInstance) -> int:
        if not evicted:
            evicted.append(instance.statement.key)
            fake_db.evict(instance.statement.key)
        return instance.exec()

    assert fake_db.run("DELETE FROM users", action) == 1
    assert fake_driver.prepare_calls["DELETE FROM users"] == 2
    assert evicted == [statement_key("DELETE FROM users")]


def test_run_gives_up_after_retry_attempts(fake_driver: FakeDriver) -> None:
    db = Database(fake_driver, DatabaseConfig(statement_retry_attempts=1))

    def action(instance: ExecutionInstance) -> int:
        db.evict(instance.statement.key)
        return instance.exec()

    with pytest.raises(StatementClosedError):
        db.run("DELETE FROM users", action)
    assert fake_driver.prepare_calls["DELETE FROM users"] == 2


def test_query_helpers(fake_db: Database, fake_driver: FakeDriver) -> None:
    fake_driver.respond("SELECT id FROM users", rows=[(1,), (2,)])
    assert fake_db.query("SELECT id FROM users") == [(1,), (2,)]
    fake_driver.respond("SELECT id FROM users WHERE id = $1", rows=[(2,)])
    assert fake_db.query_row("SELECT id FROM users WHERE id = $1", 2) == (2,)
    assert fake_driver.executed[-1] == ("SELECT id FROM users WHERE id = $1", (2,))


def test_placeholder_style_follows_driver_unless_configured(fake_driver: FakeDriver) -> None:
    assert Database(fake_driver).placeholder_style is PlaceholderStyle.NUMERIC
    forced = Database(fake_driver, DatabaseConfig(placeholder_style="qmark"))
    assert forced.placeholder_style is PlaceholderStyle.QMARK
    forced.placeholder_style = "numeric"  # type: ignore[assignment]
    assert forced.placeholder_style is PlaceholderStyle.NUMERIC


def test_ping_classifies_driver_errors(fake_db: Database, fake_driver: FakeDriver) -> None:
    fake_db.ping()
    fake_driver.closed = True
    with pytest.raises(ConnectionLostError):
        fake_db.ping()


def test_close_retires_statements(fake_db: Database, fake_driver: FakeDriver) -> None:
    statement = fake_db.prepare("SELECT 1")
    fake_db.close()
    assert fake_db.closed
    assert fake_driver.closed
    assert statement.closed
    with pytest.raises(ConfigurationError, match="database is closed"):
        fake_db.exec("SELECT 1")
    fake_db.close()


def test_connect_builds_driver_from_adapter_config() -> None:
    config = SqliteConfig(database_config=DatabaseConfig(custom_tags=["audit"]))
    with Database.connect(config) as db:
        assert isinstance(db.driver, SqliteDriver)
        assert db.placeholder_style is PlaceholderStyle.QMARK
        assert db.config.custom_tags == ("audit",)
        assert db.query_row("SELECT 1 + 1") == (2,)
    assert db.closed


@pytest.mark.parametrize("sql", ["SELECT 1", "  SELECT 1  ", "SELECT 1\n"])
def test_whitespace_variants_share_a_statement(fake_db: Database, sql: str) -> None:
    assert fake_db.prepare(sql) is fake_db.prepare("SELECT 1")
