"""Tests for the prepared statement cache."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from fakes import FakeHandle

from sqlrecord.core import CachedStatement, StatementCache, statement_key
from sqlrecord.exceptions import ConfigurationError, StatementClosedError, StatementPreparationError


class CountingPrepare:
    def __init__(self, delay: float = 0.0) -> None:
        self.calls: list[str] = []
        self.delay = delay
        self.handles: list[FakeHandle] = []
        self._lock = threading.Lock()

    def __call__(self, key: str, sql: str) -> FakeHandle:
        with self._lock:
            self.calls.append(sql)
        if self.delay:
            time.sleep(self.delay)
        handle = FakeHandle(sql)
        self.handles.append(handle)
        return handle


def test_statement_key_ignores_surrounding_whitespace() -> None:
    assert statement_key("  SELECT 1 \n") == statement_key("SELECT 1")
    assert statement_key("SELECT 1").startswith("sha1:")
    assert statement_key("SELECT 1", "one") == "one"


def test_resolve_prepares_once() -> None:
    prepare = CountingPrepare()
    cache = StatementCache(prepare)
    first = cache.resolve("SELECT 1")
    assert cache.resolve(" SELECT 1 ") is first
    assert prepare.calls == ["SELECT 1"]
    assert len(cache) == 1
    assert first.key in cache


def test_concurrent_misses_prepare_once() -> None:
    prepare = CountingPrepare(delay=0.05)
    cache = StatementCache(prepare)
    with ThreadPoolExecutor(max_workers=16) as pool:
        entries = list(pool.map(lambda _: cache.resolve("SELECT * FROM users"), range(32)))
    assert len(prepare.calls) == 1
    assert all(entry is entries[0] for entry in entries)


def test_named_statement_bound_to_other_sql() -> None:
    cache = StatementCache(CountingPrepare())
    cache.resolve("SELECT 1", "probe")
    assert cache.resolve("SELECT 1", "probe") is cache.get("probe")
    with pytest.raises(ConfigurationError, match="already bound to different SQL"):
        cache.resolve("SELECT 2", "probe")


def test_preparation_error_is_cached() -> None:
    calls: list[str] = []

    def prepare(key: str, sql: str) -> FakeHandle:
        calls.append(sql)
        raise StatementPreparationError("syntax error", code="42601")

    cache = StatementCache(prepare)
    entry = cache.resolve("SELEC 1")
    assert cache.resolve("SELEC 1") is entry
    assert calls == ["SELEC 1"]
    with pytest.raises(StatementPreparationError) as first:
        entry.acquire()
    with pytest.raises(StatementPreparationError) as second:
        entry.check()
    assert first.value is not second.value
    assert first.value.sql == "SELEC 1"
    assert first.value.code == "42601"
    assert cache.stats()["failed"] == 1


def test_preparation_error_clears_on_evict() -> None:
    failing = {"SELEC 1"}

    def prepare(key: str, sql: str) -> FakeHandle:
        if sql in failing:
            raise StatementPreparationError("syntax error")
        return FakeHandle(sql)

    cache = StatementCache(prepare)
    entry = cache.resolve("SELEC 1")
    failing.clear()
    assert cache.evict(entry.key)
    assert cache.resolve("SELEC 1").acquire().sql == "SELEC 1"


def test_other_errors_are_not_cached() -> None:
    attempts: list[str] = []

    def prepare(key: str, sql: str) -> FakeHandle:
        attempts.append(sql)
        if len(attempts) == 1:
            raise RuntimeError("network hiccup")
        return FakeHandle(sql)

    cache = StatementCache(prepare)
    with pytest.raises(RuntimeError):
        cache.resolve("SELECT 1")
    assert len(cache) == 0
    assert cache.resolve("SELECT 1").error is None
    assert len(attempts) == 2


def test_evicted_statement_closes_after_last_release() -> None:
    prepare = CountingPrepare()
    cache = StatementCache(prepare)
    entry = cache.resolve("SELECT 1")
    handle = entry.acquire()
    assert entry.in_use == 1

    assert cache.evict(entry.key)
    assert not handle.closed
    with pytest.raises(StatementClosedError):
        entry.acquire()

    entry.release()
    assert handle.closed
    assert entry.closed
    assert not cache.evict(entry.key)


def test_evict_idle() -> None:
    prepare = CountingPrepare()
    cache = StatementCache(prepare)
    stale = cache.resolve("SELECT 1")
    fresh = cache.resolve("SELECT 2")
    stale.last_used -= 120

    assert cache.evict_idle(60) == 1
    assert stale.key not in cache
    assert fresh.key in cache
    assert prepare.handles[0].closed

    fresh.last_used -= 120
    assert cache.evict_idle(timedelta(minutes=1)) == 1
    assert len(cache) == 0


def test_acquire_refreshes_last_used() -> None:
    entry = CachedStatement("k", "SELECT 1", handle=FakeHandle("SELECT 1"))
    entry.last_used -= 120
    entry.acquire()
    entry.release()
    assert time.monotonic() - entry.last_used < 60


def test_clear_retires_everything() -> None:
    prepare = CountingPrepare()
    cache = StatementCache(prepare)
    cache.resolve("SELECT 1")
    cache.resolve("SELECT 2")
    cache.clear()
    assert len(cache) == 0
    assert all(handle.closed for handle in prepare.handles)
