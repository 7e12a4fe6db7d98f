"""SQLite adapter configuration."""

from typing import TYPE_CHECKING, Any, ClassVar, Optional, TypedDict, Union

from typing_extensions import NotRequired

from sqlrecord.adapters.sqlite.core import build_connection_config
from sqlrecord.adapters.sqlite.driver import SqliteDriver
from sqlrecord.config import AdapterConfig

if TYPE_CHECKING:
    from sqlrecord.config import DatabaseConfig

__all__ = ("SqliteConfig", "SqliteConnectionParams")


class SqliteConnectionParams(TypedDict, total=False):
    """SQLite connection parameters."""

    database: NotRequired[str]
    timeout: NotRequired[float]
    detect_types: NotRequired[int]
    cached_statements: NotRequired[int]
    uri: NotRequired[bool]


class SqliteConfig(AdapterConfig):
    """Configuration for :class:`SqliteDriver`.

    Supported ``driver_features``:

    - ``enable_foreign_keys`` (default ``True``): run ``PRAGMA foreign_keys = ON``.
    """

    __slots__ = ("connection_config",)

    driver_name: ClassVar[str] = "sqlite"

    def __init__(
        self,
        *,
        connection_config: "Optional[Union[SqliteConnectionParams, dict[str, Any]]]" = None,
        database_config: "Optional[DatabaseConfig]" = None,
        driver_features: "Optional[dict[str, Any]]" = None,
    ) -> None:
        super().__init__(database_config=database_config, driver_features=driver_features)
        self.connection_config: dict[str, Any] = dict(connection_config or {})

    def __repr__(self) -> str:
        return f"SqliteConfig(database={self.connection_config.get('database', ':memory:')!r})"

    def create_driver(self) -> SqliteDriver:
        return SqliteDriver(
            build_connection_config(self.connection_config),
            enable_foreign_keys=bool(self.driver_features.get("enable_foreign_keys", True)),
        )
