"""
core/context.py -- Injectable clock and per-call deadline/cancellation.

Clock: any zero-argument callable returning an aware UTC datetime. The
session core never calls datetime.now() itself; tests pass a controllable
clock to move time forward past token expiry.

CallContext: carries a monotonic deadline and a cancel flag through every
store call. The store checks it before each statement and (on SQLite)
interrupts a statement already running once the context is done.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from core.errors import DeadlineExceeded

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CallContext:
    """Deadline and cancellation for one logical operation.

    Usage:
        ctx = CallContext.with_timeout(timedelta(seconds=2))
        service.refresh(token_id, ctx=ctx)
        ctx.cancel()   # from another thread, aborts the in-flight store call
    """

    def __init__(self, deadline: float | None = None) -> None:
        self._deadline = deadline  # time.monotonic() value, None = unbounded
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(cls, timeout: timedelta) -> CallContext:
        return cls(deadline=time.monotonic() + timeout.total_seconds())

    @classmethod
    def background(cls) -> CallContext:
        """A context with no deadline. Only for startup and housekeeping."""
        return cls()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        """Seconds until the deadline, None when unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def done(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_done(self) -> None:
        if self._cancelled.is_set():
            raise DeadlineExceeded("operation cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise DeadlineExceeded("deadline exceeded")
