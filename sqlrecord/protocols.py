"""Runtime-checkable protocols describing the driver boundary.

sqlrecord never talks to a database client directly. Adapters implement
these protocols; the core only prepares statements, executes them on a
session and asks the driver what a native error means.
"""

import dataclasses
from collections.abc import Sequence
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sqlrecord.builder import PlaceholderStyle

__all__ = (
    "CursorProtocol",
    "DriverProtocol",
    "NativeErrorInfo",
    "PreparedHandleProtocol",
    "SessionProtocol",
    "StatementObserver",
)


@dataclasses.dataclass(frozen=True)
class NativeErrorInfo:
    """What a driver could tell about one of its own exceptions.

    Attributes:
        code: SQLSTATE, or the adapter's SQLSTATE equivalent.
        message: Driver message, used as the error detail.
        constraint: Name of the violated constraint, when reported.
        column: Name of the offending column, when reported.
        connection_lost: The connection is unusable after this error.
    """

    code: Optional[str] = None
    message: str = ""
    constraint: Optional[str] = None
    column: Optional[str] = None
    connection_lost: bool = False


@runtime_checkable
class CursorProtocol(Protocol):
    """DB-API style cursor returned by :meth:`SessionProtocol.execute`."""

    @property
    def description(self) -> Any: ...

    @property
    def rowcount(self) -> int: ...

    def fetchone(self) -> "Optional[Sequence[Any]]": ...

    def close(self) -> None: ...


@runtime_checkable
class PreparedHandleProtocol(Protocol):
    """A statement the driver accepted."""

    sql: str

    @property
    def closed(self) -> bool: ...

    def close(self) -> None: ...


@runtime_checkable
class SessionProtocol(Protocol):
    """One connection checked out of the driver."""

    def execute(self, handle: PreparedHandleProtocol, parameters: "Sequence[Any]") -> CursorProtocol: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def cancel(self) -> None:
        """Abort the call currently running on this session, from another thread."""
        ...


@runtime_checkable
class DriverProtocol(Protocol):
    """Entry point of an adapter."""

    @property
    def placeholder_style(self) -> "PlaceholderStyle": ...

    def prepare(self, sql: str) -> PreparedHandleProtocol:
        """Validate ``sql`` against the server and return a reusable handle."""
        ...

    def session(self) -> "AbstractContextManager[SessionProtocol]": ...

    def error_info(self, error: BaseException) -> Optional[NativeErrorInfo]:
        """Describe a native driver error; ``None`` for anything else."""
        ...

    def ping(self) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class StatementObserver(Protocol):
    """Hooks called around statement preparation and execution.

    Observers run on the calling thread and must not raise.
    """

    def on_prepare(self, key: str, sql: str, elapsed: float, error: Optional[BaseException]) -> None: ...

    def before_execute(self, instance: Any) -> None: ...

    def after_execute(self, instance: Any) -> None: ...
