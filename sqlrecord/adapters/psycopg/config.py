"""Psycopg adapter configuration using TypedDict parameter bags."""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar, Optional, TypedDict, Union

from psycopg import Connection
from psycopg_pool import ConnectionPool
from typing_extensions import NotRequired

from sqlrecord.adapters.psycopg.core import build_pool_kwargs
from sqlrecord.adapters.psycopg.driver import PsycopgDriver
from sqlrecord.config import AdapterConfig
from sqlrecord.utils.logging import get_logger

if TYPE_CHECKING:
    from sqlrecord.config import DatabaseConfig

__all__ = ("PsycopgConfig", "PsycopgConnectionParams", "PsycopgPoolParams")

logger = get_logger("adapters.psycopg")


class PsycopgConnectionParams(TypedDict, total=False):
    """Connection parameters for psycopg.connect()."""

    conninfo: NotRequired[str]
    """Connection string in libpq format."""

    host: NotRequired[str]
    port: NotRequired[int]
    user: NotRequired[str]
    password: NotRequired[str]
    dbname: NotRequired[str]

    connect_timeout: NotRequired[float]
    """Connection timeout in seconds."""

    options: NotRequired[str]
    application_name: NotRequired[str]
    sslmode: NotRequired[str]

    prepare_threshold: NotRequired[Optional[int]]
    """Executions before psycopg prepares implicitly; sqlrecord always prepares explicitly."""


class PsycopgPoolParams(TypedDict, total=False):
    """Parameters for psycopg_pool.ConnectionPool()."""

    min_size: NotRequired[int]
    max_size: NotRequired[Optional[int]]
    name: NotRequired[str]
    timeout: NotRequired[float]
    max_waiting: NotRequired[int]
    max_lifetime: NotRequired[float]
    max_idle: NotRequired[float]
    reconnect_timeout: NotRequired[float]
    num_workers: NotRequired[int]
    configure: NotRequired["Callable[[Connection[Any]], None]"]
    """Callback to configure new connections."""


class PsycopgConfig(AdapterConfig):
    """Configuration for :class:`PsycopgDriver`."""

    __slots__ = ("connection_config", "pool_config", "pool_instance")

    driver_name: ClassVar[str] = "psycopg"

    def __init__(
        self,
        *,
        connection_config: "Optional[Union[PsycopgConnectionParams, dict[str, Any]]]" = None,
        pool_config: "Optional[Union[PsycopgPoolParams, dict[str, Any]]]" = None,
        pool_instance: Optional[ConnectionPool] = None,
        database_config: "Optional[DatabaseConfig]" = None,
        driver_features: "Optional[dict[str, Any]]" = None,
    ) -> None:
        super().__init__(database_config=database_config, driver_features=driver_features)
        self.connection_config: dict[str, Any] = dict(connection_config or {})
        self.pool_config: dict[str, Any] = dict(pool_config or {})
        self.pool_instance = pool_instance

    def __repr__(self) -> str:
        return f"PsycopgConfig(pool_config={self.pool_config!r})"

    def create_pool(self) -> ConnectionPool:
        logger.debug("creating psycopg connection pool")
        return ConnectionPool(**build_pool_kwargs(self.connection_config, self.pool_config))

    def create_driver(self) -> PsycopgDriver:
        if self.pool_instance is None:
            self.pool_instance = self.create_pool()
        return PsycopgDriver(self.pool_instance)
