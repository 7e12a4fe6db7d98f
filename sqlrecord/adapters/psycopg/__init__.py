from importlib.util import find_spec

from sqlrecord.exceptions import MissingDependencyError

if find_spec("psycopg") is None or find_spec("psycopg_pool") is None:
    raise MissingDependencyError("psycopg", install_package="psycopg")

from sqlrecord.adapters.psycopg.config import PsycopgConfig, PsycopgConnectionParams, PsycopgPoolParams  # noqa: E402
from sqlrecord.adapters.psycopg.driver import PsycopgDriver, PsycopgPreparedStatement, PsycopgSession  # noqa: E402

__all__ = (
    "PsycopgConfig",
    "PsycopgConnectionParams",
    "PsycopgDriver",
    "PsycopgPoolParams",
    "PsycopgPreparedStatement",
    "PsycopgSession",
)
