"""Cancellation for in-flight statements.

An :class:`ExecutionContext` is handed to an operation with ``context=``.
Cancelling it (explicitly or by passing its deadline) aborts the driver call
running under :meth:`ExecutionContext.watch` through the session's own cancel
primitive; the operation then fails with
:class:`~sqlrecord.exceptions.QueryCancelledError`.
"""

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Optional

from mypy_extensions import mypyc_attr

from sqlrecord.exceptions import QueryCancelledError
from sqlrecord.utils.logging import get_logger

__all__ = ("ExecutionContext",)

logger = get_logger("core.context")


@mypyc_attr(allow_interpreted_subclasses=False)
class ExecutionContext:
    """Cancellation token with an optional deadline.

    Args:
        timeout: Seconds from now after which the context counts as cancelled.
    """

    __slots__ = ("_callbacks", "_cancelled", "_expired", "_lock", "deadline")

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.deadline: Optional[float] = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()
        self._expired = False
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ExecutionContext(cancelled={self.cancelled}, remaining={self.remaining()})"

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, ``None`` without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def cancel(self) -> None:
        """Cancel the context and abort whatever is running under it."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()

    def _expire(self) -> None:
        self._expired = True
        self.cancel()

    def check(self) -> None:
        """Raise :class:`QueryCancelledError` if the context is already done."""
        if self.cancelled:
            raise QueryCancelledError(self._reason())

    def _reason(self) -> str:
        if self._expired or (self.deadline is not None and time.monotonic() >= self.deadline):
            return "deadline exceeded"
        return "context cancelled"

    @contextmanager
    def watch(self, on_cancel: "Callable[[], None]") -> "Iterator[None]":
        """Run ``on_cancel`` if the context is cancelled while the block runs."""
        timer: Optional[threading.Timer] = None
        # a concurrent cancel either runs on_cancel or fails check()
        with self._lock:
            self._callbacks.append(on_cancel)
        try:
            self.check()
            remaining = self.remaining()
            if remaining is not None:
                timer = threading.Timer(remaining, self._expire)
                timer.daemon = True
                timer.start()
            yield
        finally:
            if timer is not None:
                timer.cancel()
            with self._lock:
                self._callbacks.remove(on_cancel)

    def raise_if_cancelled(self, error: BaseException) -> None:
        """Re-raise ``error`` as :class:`QueryCancelledError` when the context caused it."""
        if self.cancelled:
            logger.debug("statement aborted: %s", self._reason())
            raise QueryCancelledError(self._reason()) from error
