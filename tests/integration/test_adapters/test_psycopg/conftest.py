from __future__ import annotations

from collections.abc import Iterator

import pytest
from pytest_databases.docker.postgres import PostgresService

from sqlrecord import Database
from sqlrecord.adapters.psycopg import PsycopgConfig, PsycopgDriver

SCHEMA = (
    "DROP TABLE IF EXISTS users",
    "DROP SEQUENCE IF EXISTS users_seq",
    "CREATE SEQUENCE users_seq",
    """
    CREATE TABLE users (
        id BIGINT PRIMARY KEY,
        name TEXT NOT NULL CONSTRAINT users_name_key UNIQUE CONSTRAINT users_name_check CHECK (length(name) > 0),
        profile JSONB,
        row_version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ,
        deleted_at TIMESTAMPTZ
    )
    """,
)


@pytest.fixture
def psycopg_config(postgres_service: PostgresService) -> PsycopgConfig:
    return PsycopgConfig(
        connection_config={
            "conninfo": (
                f"host={postgres_service.host} port={postgres_service.port} user={postgres_service.user} "
                f"password={postgres_service.password} dbname={postgres_service.database}"
            )
        },
        pool_config={"min_size": 1, "max_size": 4},
    )


@pytest.fixture
def postgres_db(psycopg_config: PsycopgConfig) -> Iterator[Database]:
    db = Database.connect(psycopg_config)
    driver = db.driver
    assert isinstance(driver, PsycopgDriver)
    with driver.pool.connection() as connection:
        for statement in SCHEMA:
            connection.execute(statement)
    yield db
    db.close()
