"""Explicit transactions.

A :class:`Transaction` checks one session out of the driver, issues BEGIN
and keeps the session until commit or rollback. Statements run in the
transaction through ``tx=``; cached statements are shared with
non-transactional callers and never modified by the binding.
"""

import time
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from sqlrecord.core.classifier import classify
from sqlrecord.exceptions import ExecutionError, SQLRecordError
from sqlrecord.utils.logging import correlation, get_logger

if TYPE_CHECKING:
    from sqlrecord.base import Database
    from sqlrecord.protocols import SessionProtocol

__all__ = ("Transaction", "TransactionState")

logger = get_logger("core.transaction")


class TransactionState(Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Transaction:
    """A database transaction bound to a single session.

    Not safe for concurrent use. Use it as a context manager to commit on
    success and roll back on error::

        with db.begin() as tx:
            users.insert(user, tx=tx)
    """

    __slots__ = ("_db", "_session", "_stack", "finished_at", "number", "started_at", "state")

    def __init__(self, db: "Database") -> None:
        self._db = db
        self.number = db.next_tx_num()
        self.state = TransactionState.OPEN
        self.started_at = time.time()
        self.finished_at: Optional[float] = None
        self._stack = ExitStack()
        self._session: Optional[SessionProtocol] = None

    def __repr__(self) -> str:
        return f"Transaction(#{self.number}, state={self.state.value})"

    @property
    def is_open(self) -> bool:
        return self.state is TransactionState.OPEN

    def begin(self) -> "Transaction":
        with correlation(tx_num=self.number):
            session = self._stack.enter_context(self._db.driver.session())
            self._control(session.begin)
            self._session = session
            logger.debug("transaction %d started", self.number)
        return self

    @contextmanager
    def session(self) -> "Iterator[SessionProtocol]":
        """Yield the transaction's session for one statement."""
        if self._session is None or not self.is_open:
            msg = f"transaction #{self.number} is {self.state.value}"
            raise ExecutionError(msg)
        yield self._session

    def commit(self) -> None:
        if not self.is_open:
            msg = f"cannot commit transaction #{self.number}: already {self.state.value}"
            raise ExecutionError(msg)
        self._control(self._session.commit, TransactionState.COMMITTED)  # type: ignore[union-attr]

    def rollback(self) -> None:
        """Roll back; a no-op once the transaction has finished."""
        if not self.is_open:
            return
        self._control(self._session.rollback, TransactionState.ROLLED_BACK)  # type: ignore[union-attr]

    def _control(self, step: "Callable[[], None]", done: Optional[TransactionState] = None) -> None:
        """Run BEGIN, COMMIT or ROLLBACK; a failed step ends the transaction."""
        with correlation(tx_num=self.number):
            try:
                step()
            except Exception as exc:
                self._finish(TransactionState.ROLLED_BACK)
                classified = self._classify(exc)
                if classified is exc:
                    raise
                raise classified from exc
            if done is not None:
                self._finish(done)

    def _finish(self, state: TransactionState) -> None:
        self.state = state
        self.finished_at = time.time()
        self._session = None
        self._stack.close()
        logger.debug("transaction %d %s", self.number, state.value)

    def _classify(self, error: Exception) -> Exception:
        if isinstance(error, SQLRecordError):
            return error
        info = self._db.driver.error_info(error)
        if info is None:
            return error
        return classify(info)

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_val is None and self.is_open:
            self.commit()
        else:
            self.rollback()
