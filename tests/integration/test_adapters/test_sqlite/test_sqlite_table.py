"""Table operations against a real SQLite database."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pytest

from sqlrecord import Database, ExecutionContext, Returning, Table, TableConfig, bind_tables, column
from sqlrecord.exceptions import (
    CheckViolationError,
    ConfigurationError,
    NotFoundError,
    QueryCancelledError,
    RowVersionConflictError,
    StatementPreparationError,
    UniqueViolationError,
)


@dataclass
class User:
    id: int = column(tags="noins", default=0)
    name: str = ""
    email: Optional[str] = column(tags="nocache", default=None)
    row_version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


@dataclass
class WideUser:
    id: int = column(tags="noins", default=0)
    name: str = ""
    nickname: str = ""


@pytest.fixture
def users(sqlite_db: Database) -> Table[User]:
    return Table(sqlite_db, "users", User)


def test_insert_generates_insert_with_returning(users: Table[User]) -> None:
    assert users.sql.insert.sql == (
        "INSERT INTO users (name, email, row_version, created_at, updated_at, deleted_at) "
        "VALUES (?, ?, ?, ?, ?, ?) RETURNING id"
    )


def test_user_lifecycle(users: Table[User]) -> None:
    user = User(name="ann", email="ann@example.com")
    assert users.insert(user) == 1
    assert user.id == 1
    assert user.row_version == 1
    assert user.created_at is not None

    user.name = "anna"
    assert users.update(user) == 1
    assert user.row_version == 2
    assert user.updated_at is not None
    assert user.updated_at > user.created_at

    stored = users.select_by_id(1)
    assert stored.name == "anna"
    assert stored.row_version == 2
    assert stored.created_at == user.created_at
    assert stored.updated_at == user.updated_at

    assert users.delete(user) == 1
    assert user.row_version == 3
    assert user.deleted_at is not None

    live: list[str] = []
    assert users.select_cache(lambda row: live.append(row.name)) == 0
    everything: list[Optional[str]] = []
    assert users.select_cache(lambda row: everything.append(row.email), include_deleted=True) == 1
    assert everything == [None]

    deleted = users.select_by_id(1)
    assert deleted.deleted_at is not None
    assert deleted.row_version == 3


def test_unique_violation_reports_column_and_restores_row(users: Table[User]) -> None:
    users.insert(User(name="ann"))
    duplicate = User(name="ann")
    with pytest.raises(UniqueViolationError) as exc_info:
        users.insert(duplicate)
    assert exc_info.value.column == "name"
    assert exc_info.value.table == "users"
    assert duplicate == User(name="ann")


def test_check_violation(users: Table[User]) -> None:
    with pytest.raises(CheckViolationError):
        users.insert(User(name=""))


def test_ignore_conflict_skips_duplicate(users: Table[User]) -> None:
    users.insert(User(name="ann"))
    assert users.insert(User(name="ann"), ignore_conflict=True) == 0
    assert users.count() == 1


def test_not_found(users: Table[User]) -> None:
    with pytest.raises(NotFoundError):
        users.select_by_id(99)
    ghost = User(id=99, name="ghost", row_version=4)
    with pytest.raises(NotFoundError):
        users.update(ghost)
    assert ghost.row_version == 4
    assert ghost.updated_at is None
    with pytest.raises(NotFoundError):
        users.hard_delete(99)


def test_optimistic_locking(users: Table[User]) -> None:
    user = User(name="ann")
    users.insert(user)
    stale = users.select_by_id(user.id)
    user.name = "anna"
    users.update(user, check_version=True)
    stale.name = "annie"
    with pytest.raises(RowVersionConflictError):
        users.update(stale, check_version=True)
    assert users.select_by_id(user.id).name == "anna"


def test_update_with_condition(users: Table[User]) -> None:
    user = User(name="ann")
    users.insert(user)
    user.email = "new@example.com"
    with pytest.raises(NotFoundError):
        users.update(user, where="name = ?", params=["bob"])
    assert users.update(user, where="name = ?", params=["ann"]) == 1
    assert users.select_by_id(user.id).email == "new@example.com"


def test_touch(users: Table[User]) -> None:
    user = User(name="ann")
    users.insert(user)
    users.touch(user)
    assert user.row_version == 2
    assert users.select_by_id(user.id).row_version == 2


def test_select_variants(users: Table[User]) -> None:
    for name in ("carl", "ann", "bob", "alice"):
        users.insert(User(name=name))
    names = [user.name for user in users.select_all(order="name", limit=2, offset=1)]
    assert names == ["ann", "bob"]
    a_names = users.select_all("name LIKE ?", "name DESC", params=["a%"])
    assert [user.name for user in a_names] == ["ann", "alice"]
    assert users.count("name LIKE ?", ["a%"]) == 2
    assert users.exists(1)
    assert not users.exists(99)

    row = User()
    assert users.select("name = ?", params=["bob"], row=row) == 1
    assert row.name == "bob"

    seen: list[str] = []
    assert users.select(order="id", callback=lambda user: seen.append(user.name)) == 4
    assert seen == ["carl", "ann", "bob", "alice"]


def test_returning_all_into_other_record(users: Table[User]) -> None:
    user = User(name="ann")
    copy = User()
    users.insert(user, returning=Returning.ALL, into=copy)
    assert copy.id == 1
    assert copy.name == "ann"
    assert user.id == 0


def test_hard_deletes(users: Table[User]) -> None:
    for name in ("ann", "bob", "carl"):
        users.insert(User(name=name))
    assert users.hard_delete(1) == 1
    assert users.hard_delete_where("name IN (?, ?)", ["bob", "zed"]) == 1
    assert users.hard_delete_where("name = ?", ["nobody"]) == 0
    assert users.count() == 1


def test_soft_delete_by_condition(users: Table[User]) -> None:
    for name in ("ann", "bob"):
        users.insert(User(name=name))
    assert users.delete(where="name = ?", params=["bob"]) == 1
    assert users.delete(where="name = ?", params=["nobody"]) == 0
    live: list[str] = []
    users.select_cache(lambda user: live.append(user.name))
    assert live == ["ann"]


def test_transaction_rollback_and_commit(sqlite_db: Database, users: Table[User]) -> None:
    with pytest.raises(RuntimeError), sqlite_db.begin() as tx:
        users.insert(User(name="ann"), tx=tx)
        raise RuntimeError("abort")
    assert users.count() == 0

    with sqlite_db.begin() as tx:
        users.insert(User(name="ann"), tx=tx)
        users.insert(User(name="bob"), tx=tx)
        assert users.count(tx=tx) == 2
    assert users.count() == 2


def test_check_existence(sqlite_db: Database) -> None:
    users = Table(sqlite_db, "users", User, TableConfig(check_existence=True))
    assert users.check_existence()

    missing = Table(sqlite_db, "missing", User)
    assert not missing.check_existence()
    with pytest.raises(ConfigurationError, match="does not exist"):
        Table(sqlite_db, "missing", User, TableConfig(check_existence=True))

    with pytest.raises(ConfigurationError, match="lacks mapped columns: nickname"):
        Table(sqlite_db, "users", WideUser, TableConfig(check_existence=True))


def test_bind_tables_reports_each_failure(sqlite_db: Database) -> None:
    result = bind_tables(
        sqlite_db,
        {
            "users": (User, TableConfig(check_existence=True)),
            "missing": (User, TableConfig(check_existence=True)),
            "wide": (WideUser, TableConfig(check_existence=True)),
        },
    )
    assert list(result.tables) == ["users"]
    assert sorted(result.errors) == ["missing", "wide"]


def test_preparation_error_is_cached_until_evicted(sqlite_db: Database) -> None:
    with pytest.raises(StatementPreparationError) as exc_info:
        sqlite_db.prepare("SELECT nope FROM users")
    assert exc_info.value.code == "42703"
    assert sqlite_db.prepared_statement_count == 1
    assert sqlite_db.evict("SELECT nope FROM users")
    assert sqlite_db.prepared_statement_count == 0


def test_statements_are_prepared_once(sqlite_db: Database, users: Table[User]) -> None:
    for name in ("ann", "bob", "carl"):
        users.insert(User(name=name))
    count = sqlite_db.prepared_statement_count
    users.insert(User(name="dan"))
    assert sqlite_db.prepared_statement_count == count
    assert sqlite_db.evict_idle(3600) == 0


def test_concurrent_inserts(users: Table[User]) -> None:
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda n: users.insert(User(name=f"user{n}")), range(40)))
    assert users.count() == 40


def test_deadline_interrupts_long_query(sqlite_db: Database) -> None:
    endless = "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) SELECT count(*) FROM c"
    with pytest.raises(QueryCancelledError, match="deadline exceeded"):
        sqlite_db.query_row(endless, context=ExecutionContext(timeout=0.2))
    assert sqlite_db.query_row("SELECT 1") == (1,)


def test_cancel_from_another_thread(sqlite_db: Database) -> None:
    endless = "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) SELECT max(x) FROM c"
    context = ExecutionContext()
    threading.Timer(0.2, context.cancel).start()
    with pytest.raises(QueryCancelledError, match="context cancelled"):
        sqlite_db.query_row(endless, context=context)
