from __future__ import annotations

from collections.abc import Iterator

import pytest

from sqlrecord import Database
from sqlrecord.adapters.sqlite import SqliteConfig, SqliteDriver

CREATE_USERS = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE CHECK (length(name) > 0),
    email TEXT,
    row_version INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT,
    deleted_at TEXT
)
"""


@pytest.fixture
def sqlite_db() -> Iterator[Database]:
    db = Database.connect(SqliteConfig(connection_config={"database": ":memory:"}))
    driver = db.driver
    assert isinstance(driver, SqliteDriver)
    driver.connection.execute(CREATE_USERS)
    yield db
    db.close()
