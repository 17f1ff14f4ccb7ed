"""
Call context — deadline and cancellation carried into every network call.

A CallContext is created by the caller (or derived from a parent with a
tighter deadline) and passed down to the adapters. Adapters never block
longer than `clip(timeout)` and poll `cancelled` between I/O chunks, so a
cancel() from another thread aborts in-flight work promptly.

    ctx = CallContext.with_timeout(30.0)
    engine.resolve(raw, context=ctx)       # every fetch clipped to the 30 s budget
    ctx.cancel()                           # from another thread: abort promptly
"""

from __future__ import annotations

import threading
import time

from railway import ErrorCode, Result


class CallContext:
    """Deadline (monotonic clock) plus a shared cancel event."""

    __slots__ = ("_deadline", "_cancel_event")

    def __init__(
        self,
        deadline: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._deadline = deadline
        self._cancel_event = cancel_event or threading.Event()

    @classmethod
    def background(cls) -> CallContext:
        """A context with no deadline that is only cancelled explicitly."""
        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> CallContext:
        return cls(deadline=time.monotonic() + seconds)

    def child(self, timeout: float | None = None) -> CallContext:
        """
        Derive a context sharing this one's cancel event.

        The child's deadline is the earlier of the parent's and `timeout`
        seconds from now.
        """
        deadline = self._deadline
        if timeout is not None:
            candidate = time.monotonic() + timeout
            deadline = candidate if deadline is None else min(deadline, candidate)
        return CallContext(deadline=deadline, cancel_event=self._cancel_event)

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    def remaining(self) -> float | None:
        """Seconds left before the deadline, None when unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def clip(self, timeout: float) -> float:
        """The effective timeout for one network call: min(timeout, remaining)."""
        remaining = self.remaining()
        return timeout if remaining is None else min(timeout, remaining)

    def check(self) -> Result[CallContext]:
        """Success(self) while the call may proceed, otherwise CANCELLED / TIMEOUT_ERROR."""
        if self.cancelled:
            return Result.failure(ErrorCode.CANCELLED, "Operation cancelled by caller")
        if self.expired:
            return Result.failure(ErrorCode.TIMEOUT_ERROR, "Call deadline exceeded")
        return Result.success(self)
