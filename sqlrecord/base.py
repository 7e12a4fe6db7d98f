import threading
import time
from collections.abc import Callable, Sequence
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Optional, TypeVar, Union

from sqlrecord.builder import PlaceholderStyle
from sqlrecord.config import DatabaseConfig
from sqlrecord.core.cache import CachedStatement, StatementCache, statement_key
from sqlrecord.core.classifier import classify, classify_preparation
from sqlrecord.core.instance import ExecutionInstance
from sqlrecord.core.transaction import Transaction
from sqlrecord.exceptions import ConfigurationError, SQLRecordError, StatementClosedError
from sqlrecord.utils.logging import get_logger

if TYPE_CHECKING:
    from sqlrecord.config import AdapterConfig
    from sqlrecord.core.context import ExecutionContext
    from sqlrecord.protocols import DriverProtocol, PreparedHandleProtocol

__all__ = ("AtomicCounter", "Database")

T = TypeVar("T")

logger = get_logger("base")


class AtomicCounter:
    """Monotonic counter safe to bump from several threads."""

    __slots__ = ("_lock", "_value")

    def __init__(self, start: int = 0) -> None:
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        return self._value


class Database:
    """Connection handle shared by every table built against it.

    Owns the driver, the prepared statement cache and the counters used to
    number transactions and statements in logs.

    Example::

        db = Database.connect(SqliteConfig(connection_config={"database": "app.db"}))
        users = Table(db, "users", User)
    """

    __slots__ = ("_cache", "_closed", "_config", "_placeholder_style", "_stmt_counter", "_tx_counter", "driver")

    def __init__(self, driver: "DriverProtocol", config: Optional[DatabaseConfig] = None) -> None:
        self.driver = driver
        self._config = config or DatabaseConfig()
        self._placeholder_style = self._config.placeholder_style or driver.placeholder_style
        self._cache = StatementCache(self._prepare)
        self._tx_counter = AtomicCounter()
        self._stmt_counter = AtomicCounter()
        self._closed = False

    @classmethod
    def connect(cls, adapter_config: "AdapterConfig") -> "Database":
        """Create the adapter's driver and wrap it."""
        driver = adapter_config.create_driver()
        logger.debug("connected through %s", adapter_config.driver_name)
        return cls(driver, adapter_config.database_config)

    def __repr__(self) -> str:
        return f"Database(driver={type(self.driver).__name__}, statements={len(self._cache)})"

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def cache(self) -> StatementCache:
        return self._cache

    @property
    def placeholder_style(self) -> PlaceholderStyle:
        return self._placeholder_style

    @placeholder_style.setter
    def placeholder_style(self, style: "Union[PlaceholderStyle, str]") -> None:
        """Tables built afterwards use the new style; existing tables keep theirs."""
        self._placeholder_style = PlaceholderStyle(style)

    @property
    def prepared_statement_count(self) -> int:
        return len(self._cache)

    @property
    def closed(self) -> bool:
        return self._closed

    def next_tx_num(self) -> int:
        return self._tx_counter.next()

    def next_stmt_num(self) -> int:
        return self._stmt_counter.next()

    # -- statement cache --------------------------------------------------

    def _prepare(self, key: str, sql: str) -> "PreparedHandleProtocol":
        started = time.perf_counter()
        error: Optional[BaseException] = None
        try:
            return self.driver.prepare(sql)
        except Exception as exc:
            info = self.driver.error_info(exc)
            if info is None:
                error = exc
                raise
            error = classify_preparation(info, sql=sql)
            raise error from exc
        finally:
            elapsed = time.perf_counter() - started
            for observer in self._config.observers:
                observer.on_prepare(key, sql, elapsed, error)

    def prepare(self, sql: str, name: Optional[str] = None) -> CachedStatement:
        """Return the cached statement for ``sql``, preparing it on first use.

        Raises:
            StatementPreparationError: The server refused the statement; the
                failure stays cached until the key is evicted.
        """
        self._check_open()
        statement = self._cache.resolve(sql, name)
        statement.check()
        return statement

    def statement(self, name: str) -> CachedStatement:
        """Look up a named statement prepared earlier."""
        statement = self._cache.get(name)
        if statement is None:
            msg = f"no prepared statement named {name!r}"
            raise ConfigurationError(msg)
        return statement

    def evict(self, key_or_sql: str) -> bool:
        """Evict by statement name, cache key or SQL text."""
        if self._cache.evict(key_or_sql):
            return True
        return self._cache.evict(statement_key(key_or_sql))

    def evict_idle(self, max_idle: "Union[float, timedelta]") -> int:
        return self._cache.evict_idle(max_idle)

    def instance(
        self,
        statement: "Union[CachedStatement, str]",
        *,
        tx: Optional[Transaction] = None,
        context: "Optional[ExecutionContext]" = None,
        table: Optional[str] = None,
    ) -> ExecutionInstance:
        if isinstance(statement, str):
            statement = self.prepare(statement)
        return ExecutionInstance(self, statement, tx=tx, context=context, table=table)

    def run(
        self,
        sql: str,
        action: "Callable[[ExecutionInstance], T]",
        *,
        name: Optional[str] = None,
        tx: Optional[Transaction] = None,
        context: "Optional[ExecutionContext]" = None,
        table: Optional[str] = None,
    ) -> T:
        """Resolve ``sql`` through the cache and apply ``action`` to a fresh instance.

        A statement closed by eviction between lookup and use is resolved
        again, up to ``statement_retry_attempts`` times.
        """
        self._check_open()
        attempts = self._config.statement_retry_attempts
        attempt = 0
        while True:
            statement = self._cache.resolve(sql, name)
            instance = ExecutionInstance(self, statement, tx=tx, context=context, table=table)
            try:
                return action(instance)
            except StatementClosedError:
                if attempt >= attempts:
                    raise
                attempt += 1
                logger.debug("statement %s closed while handed out, retrying (%d/%d)", statement.key, attempt, attempts)

    # -- convenience calls ------------------------------------------------

    def query(
        self,
        sql: str,
        *parameters: Any,
        name: Optional[str] = None,
        tx: Optional[Transaction] = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> "list[Sequence[Any]]":
        rows: list[Sequence[Any]] = []
        self.run(
            sql, lambda instance: instance.query(*parameters, callback=rows.append), name=name, tx=tx, context=context
        )
        return rows

    def query_row(
        self,
        sql: str,
        *parameters: Any,
        name: Optional[str] = None,
        tx: Optional[Transaction] = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> "Sequence[Any]":
        return self.run(sql, lambda instance: instance.query_row(*parameters), name=name, tx=tx, context=context)

    def exec(
        self,
        sql: str,
        *parameters: Any,
        name: Optional[str] = None,
        tx: Optional[Transaction] = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> int:
        return self.run(sql, lambda instance: instance.exec(*parameters), name=name, tx=tx, context=context)

    # -- transactions -----------------------------------------------------

    def begin(self, context: "Optional[ExecutionContext]" = None) -> Transaction:
        self._check_open()
        if context is not None:
            context.check()
        return Transaction(self).begin()

    def in_tx(self, fn: "Callable[[Transaction], T]", *, context: "Optional[ExecutionContext]" = None) -> T:
        """Run ``fn`` in a transaction; commit when it returns, roll back when it raises."""
        with self.begin(context) as tx:
            return fn(tx)

    # -- lifecycle --------------------------------------------------------

    def ping(self) -> None:
        self._check_open()
        try:
            self.driver.ping()
        except SQLRecordError:
            raise
        except Exception as exc:
            info = self.driver.error_info(exc)
            if info is None:
                raise
            raise classify(info) from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cache.clear()
        self.driver.close()
        logger.debug("database closed")

    def _check_open(self) -> None:
        if self._closed:
            msg = "database is closed"
            raise ConfigurationError(msg)

    # -- observers --------------------------------------------------------

    def notify_before(self, instance: ExecutionInstance) -> None:
        for observer in self._config.observers:
            observer.before_execute(instance)

    def notify_after(self, instance: ExecutionInstance) -> None:
        for observer in self._config.observers:
            observer.after_execute(instance)
