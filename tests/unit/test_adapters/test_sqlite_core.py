"""Tests for SQLite parameter coercion and error description."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID

import pytest

from sqlrecord.adapters.sqlite.core import coerce_parameters, error_info
from sqlrecord.core import classify
from sqlrecord.exceptions import CheckViolationError, UniqueViolationError


class Color(Enum):
    RED = "red"


@pytest.fixture
def connection() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(":memory:", isolation_level=None)
    conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT UNIQUE NOT NULL, qty INTEGER CHECK (qty >= 0))")
    yield conn
    conn.close()


def test_coerce_parameters() -> None:
    uid = UUID("12345678-1234-5678-1234-567812345678")
    stamp = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert coerce_parameters([True, stamp, date(2024, 5, 1), Decimal("1.5"), uid, Color.RED, {"a": 1}, None, 3]) == (
        1,
        "2024-05-01T12:00:00+00:00",
        "2024-05-01",
        "1.5",
        str(uid),
        "red",
        '{"a":1}',
        None,
        3,
    )


def test_unique_violation(connection: sqlite3.Connection) -> None:
    connection.execute("INSERT INTO t (name, qty) VALUES ('a', 1)")
    with pytest.raises(sqlite3.IntegrityError) as exc_info:
        connection.execute("INSERT INTO t (name, qty) VALUES ('a', 1)")
    info = error_info(exc_info.value)
    assert info is not None
    assert info.code == "23505"
    assert info.column == "name"
    assert isinstance(classify(info), UniqueViolationError)


def test_check_violation(connection: sqlite3.Connection) -> None:
    with pytest.raises(sqlite3.IntegrityError) as exc_info:
        connection.execute("INSERT INTO t (name, qty) VALUES ('a', -1)")
    info = error_info(exc_info.value)
    assert info is not None
    assert info.code == "23514"
    assert isinstance(classify(info), CheckViolationError)


def test_not_null_violation(connection: sqlite3.Connection) -> None:
    with pytest.raises(sqlite3.IntegrityError) as exc_info:
        connection.execute("INSERT INTO t (qty) VALUES (1)")
    info = error_info(exc_info.value)
    assert info is not None
    assert info.code == "23502"
    assert info.column == "name"


def test_missing_table(connection: sqlite3.Connection) -> None:
    with pytest.raises(sqlite3.OperationalError) as exc_info:
        connection.execute("SELECT * FROM missing")
    info = error_info(exc_info.value)
    assert info is not None
    assert info.code == "42P01"
    assert not info.connection_lost


def test_closed_connection_is_lost(connection: sqlite3.Connection) -> None:
    connection.close()
    with pytest.raises(sqlite3.ProgrammingError) as exc_info:
        connection.execute("SELECT 1")
    info = error_info(exc_info.value)
    assert info is not None
    assert info.connection_lost


def test_foreign_errors_are_not_described() -> None:
    assert error_info(ValueError("nope")) is None
