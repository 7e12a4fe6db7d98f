"""Prepared statement cache.

Entries are keyed by a caller-supplied name or by a hash of the trimmed SQL
text. The cache lock is held only for dictionary lookups and updates; the
prepare round trip runs outside it. Concurrent misses on one key are
collapsed: the first caller prepares, later callers wait on its pending
slot and receive the same :class:`CachedStatement`.

Evicted entries are closed once the last in-flight execution releases them.
An entry evicted between lookup and :meth:`CachedStatement.acquire` raises
:class:`~sqlrecord.exceptions.StatementClosedError`, which is retryable.
"""

import copy
import hashlib
import threading
import time
from collections.abc import Callable, Iterator
from datetime import timedelta
from typing import Any, Final, Optional, Union

from mypy_extensions import mypyc_attr

from sqlrecord.exceptions import ConfigurationError, DatabaseError, StatementClosedError, StatementPreparationError
from sqlrecord.protocols import PreparedHandleProtocol
from sqlrecord.utils.logging import get_logger

__all__ = ("HASH_KEY_PREFIX", "CachedStatement", "StatementCache", "statement_key")

logger = get_logger("core.cache")

HASH_KEY_PREFIX: Final = "sha1:"


def statement_key(sql: str, name: Optional[str] = None) -> str:
    """Cache key of a statement: its name, or a hash of the trimmed text."""
    if name:
        return name
    return HASH_KEY_PREFIX + hashlib.sha1(sql.strip().encode("utf-8")).hexdigest()  # noqa: S324


@mypyc_attr(allow_interpreted_subclasses=False)
class CachedStatement:
    """A prepared statement kept alive across executions.

    A statement whose preparation failed is cached too: :meth:`acquire`
    raises the stored error until the key is evicted.
    """

    __slots__ = (
        "_evicted",
        "_lock",
        "_refs",
        "created_at",
        "error",
        "handle",
        "key",
        "last_used",
        "name",
        "sql",
    )

    def __init__(
        self,
        key: str,
        sql: str,
        handle: Optional[PreparedHandleProtocol] = None,
        error: Optional[DatabaseError] = None,
        name: Optional[str] = None,
    ) -> None:
        self.key = key
        self.sql = sql
        self.name = name
        self.handle = handle
        self.error = error
        self.created_at = time.monotonic()
        self.last_used = self.created_at
        self._refs = 0
        self._evicted = False
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        state = "failed" if self.error is not None else "closed" if self.closed else "ready"
        return f"CachedStatement(key={self.key!r}, state={state}, in_use={self._refs})"

    @property
    def closed(self) -> bool:
        return self._evicted and self._refs == 0

    @property
    def in_use(self) -> int:
        return self._refs

    def check(self) -> None:
        """Raise a copy of the stored preparation error, if any."""
        if self.error is not None:
            error = copy.copy(self.error)
            raise error from self.error.__cause__

    def acquire(self) -> PreparedHandleProtocol:
        """Take a reference for one execution and return the prepared handle.

        Raises:
            DatabaseError: The stored preparation error.
            StatementClosedError: The entry has been evicted.
        """
        self.check()
        with self._lock:
            if self._evicted or self.handle is None:
                msg = f"statement {self.key!r} was evicted"
                raise StatementClosedError(msg, sql=self.sql)
            self._refs += 1
            self.last_used = time.monotonic()
            return self.handle

    def release(self) -> None:
        with self._lock:
            self._refs -= 1
            close_now = self._evicted and self._refs == 0
        if close_now:
            self._close_handle()

    def retire(self) -> None:
        """Mark the entry evicted; the handle closes when no execution holds it."""
        with self._lock:
            if self._evicted:
                return
            self._evicted = True
            close_now = self._refs == 0
        if close_now:
            self._close_handle()

    def _close_handle(self) -> None:
        if self.handle is not None and not self.handle.closed:
            self.handle.close()
            logger.debug("closed statement %s", self.key)


class _Pending:
    __slots__ = ("done",)

    def __init__(self) -> None:
        self.done = threading.Event()


@mypyc_attr(allow_interpreted_subclasses=False)
class StatementCache:
    """Thread-safe map of statement key to :class:`CachedStatement`.

    Args:
        prepare: Prepares SQL text on the server. A
            :class:`~sqlrecord.exceptions.StatementPreparationError` it raises
            is cached with the entry; any other exception propagates and
            leaves nothing cached.
    """

    __slots__ = ("_entries", "_lock", "_pending", "_prepare")

    def __init__(self, prepare: "Callable[[str, str], PreparedHandleProtocol]") -> None:
        self._prepare = prepare
        self._entries: dict[str, CachedStatement] = {}
        self._pending: dict[str, _Pending] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __iter__(self) -> "Iterator[CachedStatement]":
        with self._lock:
            entries = list(self._entries.values())
        return iter(entries)

    def get(self, key: str) -> Optional[CachedStatement]:
        with self._lock:
            return self._entries.get(key)

    def resolve(self, sql: str, name: Optional[str] = None) -> CachedStatement:
        """Return the cached statement for ``sql``, preparing it on a miss.

        Raises:
            ConfigurationError: ``name`` is already bound to different SQL.
        """
        sql = sql.strip()
        key = statement_key(sql, name)
        while True:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    pending = self._pending.get(key)
                    owner = pending is None
                    if owner:
                        pending = self._pending[key] = _Pending()
            if entry is not None:
                if name and entry.sql != sql:
                    msg = f"statement name {name!r} is already bound to different SQL"
                    raise ConfigurationError(msg)
                return entry
            if owner:
                return self._fill(key, sql, name, pending)  # type: ignore[arg-type]
            pending.done.wait()  # type: ignore[union-attr]

    def _fill(self, key: str, sql: str, name: Optional[str], pending: _Pending) -> CachedStatement:
        try:
            try:
                handle = self._prepare(key, sql)
            except StatementPreparationError as exc:
                entry = CachedStatement(key, sql, error=exc.with_context(sql=sql), name=name)
            else:
                entry = CachedStatement(key, sql, handle=handle, name=name)
            with self._lock:
                self._entries[key] = entry
            logger.debug("cached statement %s (%d entries)", key, len(self._entries))
            return entry
        finally:
            with self._lock:
                self._pending.pop(key, None)
            pending.done.set()

    def evict(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.retire()
        logger.debug("evicted statement %s", key)
        return True

    def evict_idle(self, max_idle: "Union[float, timedelta]") -> int:
        """Evict every entry not instantiated for longer than ``max_idle``.

        Args:
            max_idle: Idle limit in seconds or as a :class:`~datetime.timedelta`.

        Returns:
            The number of evicted entries.
        """
        limit = max_idle.total_seconds() if isinstance(max_idle, timedelta) else float(max_idle)
        cutoff = time.monotonic() - limit
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.last_used < cutoff]
            retired = [self._entries.pop(key) for key in stale]
        for entry in retired:
            entry.retire()
        if retired:
            logger.debug("evicted %d idle statements", len(retired))
        return len(retired)

    def clear(self) -> None:
        with self._lock:
            retired = list(self._entries.values())
            self._entries.clear()
        for entry in retired:
            entry.retire()

    def stats(self) -> "dict[str, Any]":
        with self._lock:
            entries = list(self._entries.values())
        return {
            "size": len(entries),
            "failed": sum(1 for entry in entries if entry.error is not None),
            "in_use": sum(entry.in_use for entry in entries),
        }
