from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fakes import FakeDriver, RecordingObserver

from sqlrecord import Database, DatabaseConfig

here = Path(__file__).parent
root_path = here.parent
pytest_plugins = ["pytest_databases.docker.postgres"]


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def fake_db(fake_driver: FakeDriver, observer: RecordingObserver) -> Iterator[Database]:
    db = Database(fake_driver, DatabaseConfig(observers=[observer]))
    yield db
    db.close()
