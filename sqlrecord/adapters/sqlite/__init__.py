from sqlrecord.adapters.sqlite.config import SqliteConfig, SqliteConnectionParams
from sqlrecord.adapters.sqlite.driver import SqliteDriver, SqlitePreparedStatement, SqliteSession

__all__ = ("SqliteConfig", "SqliteConnectionParams", "SqliteDriver", "SqlitePreparedStatement", "SqliteSession")
