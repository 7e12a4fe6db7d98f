"""Fake driver recording what the sqlrecord core asks of it."""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from sqlrecord import NativeErrorInfo, PlaceholderStyle


class FakeDriverError(Exception):
    """Native error raised by :class:`FakeDriver`."""

    def __init__(self, message: str, code: str | None = None, *, connection_lost: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.connection_lost = connection_lost


class FakeHandle:
    def __init__(self, sql: str) -> None:
        self.sql = sql
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


class FakeCursor:
    def __init__(self, rows: Sequence[Sequence[Any]] = (), columns: Sequence[str] = (), rowcount: int = -1) -> None:
        self._rows = list(rows)
        self.description = [(name, None, None, None, None, None, None) for name in columns] or None
        self.rowcount = rowcount
        self.closed = False

    def fetchone(self) -> Sequence[Any] | None:
        if not self._rows:
            return None
        return self._rows.pop(0)

    def close(self) -> None:
        self.closed = True


Responder = Callable[[str, Sequence[Any]], FakeCursor]


class FakeSession:
    def __init__(self, driver: FakeDriver) -> None:
        self._driver = driver
        self._cancelled = threading.Event()

    def execute(self, handle: FakeHandle, parameters: Sequence[Any]) -> FakeCursor:
        driver = self._driver
        driver.executed.append((handle.sql, tuple(parameters)))
        if handle.sql in driver.blocking:
            if self._cancelled.wait(5):
                raise FakeDriverError("canceling statement due to user request", "57014")
        error = driver.execute_errors.get(handle.sql)
        if error is not None:
            raise error
        responder = driver.responses.get(handle.sql)
        if responder is None:
            return FakeCursor(rowcount=1)
        return responder(handle.sql, parameters)

    def begin(self) -> None:
        self._driver.log.append("BEGIN")

    def commit(self) -> None:
        if self._driver.fail_commit is not None:
            raise self._driver.fail_commit
        self._driver.log.append("COMMIT")

    def rollback(self) -> None:
        self._driver.log.append("ROLLBACK")

    def cancel(self) -> None:
        self._driver.log.append("CANCEL")
        self._cancelled.set()


class FakeDriver:
    """In-memory driver recording what the core asks of it."""

    def __init__(self, placeholder_style: PlaceholderStyle = PlaceholderStyle.NUMERIC) -> None:
        self.placeholder_style = placeholder_style
        self.prepare_calls: dict[str, int] = defaultdict(int)
        self.prepare_delay = 0.0
        self.prepare_errors: dict[str, Exception] = {}
        self.execute_errors: dict[str, Exception] = {}
        self.responses: dict[str, Responder] = {}
        self.blocking: set[str] = set()
        self.executed: list[tuple[str, tuple[Any, ...]]] = []
        self.log: list[str] = []
        self.fail_commit: Exception | None = None
        self.closed = False
        self._lock = threading.Lock()

    def respond(self, sql: str, rows: Sequence[Sequence[Any]] = (), columns: Sequence[str] = (), rowcount: int = -1) -> None:
        self.responses[sql] = lambda _sql, _params: FakeCursor(rows, columns, rowcount)

    def prepare(self, sql: str) -> FakeHandle:
        with self._lock:
            self.prepare_calls[sql] += 1
        if self.prepare_delay:
            time.sleep(self.prepare_delay)
        error = self.prepare_errors.get(sql)
        if error is not None:
            raise error
        return FakeHandle(sql)

    @contextmanager
    def session(self) -> Iterator[FakeSession]:
        yield FakeSession(self)

    def error_info(self, error: BaseException) -> NativeErrorInfo | None:
        if not isinstance(error, FakeDriverError):
            return None
        return NativeErrorInfo(code=error.code, message=str(error), connection_lost=error.connection_lost)

    def ping(self) -> None:
        if self.closed:
            raise FakeDriverError("connection closed", "08003")

    def close(self) -> None:
        self.closed = True


class RecordingObserver:
    def __init__(self) -> None:
        self.prepared: list[tuple[str, BaseException | None]] = []
        self.before: list[Any] = []
        self.after: list[Any] = []

    def on_prepare(self, key: str, sql: str, elapsed: float, error: BaseException | None) -> None:
        self.prepared.append((sql, error))

    def before_execute(self, instance: Any) -> None:
        self.before.append(instance)

    def after_execute(self, instance: Any) -> None:
        self.after.append(instance)


