"""
Execution contexts: run a Result-returning computation under a policy.

A computation describes WHAT to do and returns Result[T]; the context
decides HOW it runs (logging, timing, exception isolation).

The batch orchestrator runs every item inside a LoggingExecutionContext.
That context is the isolation boundary for one item: an exception escaping
the computation becomes a TECHNICAL_ERROR failure for that item alone.

    outcome = LoggingExecutionContext(operation="batch[3]").execute(
        lambda: engine.resolve(raw, context=item_ctx)
    )
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol, TypeVar, runtime_checkable

import structlog

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result

T = TypeVar("T")
log = structlog.get_logger("railway.execution")


@runtime_checkable
class ExecutionContext(Protocol):
    """Anything with execute(computation) -> Result."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]: ...


class LoggingExecutionContext:
    """
    Logs start and completion (with elapsed seconds and track) of one
    computation, and converts a raised exception into TECHNICAL_ERROR.
    """

    def __init__(self, operation: str = "unknown", log_level: int = logging.DEBUG) -> None:
        self._operation = operation
        self._log_level = log_level

    @property
    def operation(self) -> str:
        return self._operation

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        log.log(self._log_level, "execution.started", operation=self._operation)
        started = time.monotonic()
        try:
            result = computation()
        except Exception as e:
            log.error("execution.raised", operation=self._operation, elapsed_s=self._since(started), error=str(e))
            return Failure(FailureDescription(ErrorCode.TECHNICAL_ERROR, f"Execution failed: {e}", e))

        log.log(
            self._log_level,
            "execution.completed",
            operation=self._operation,
            elapsed_s=self._since(started),
            state="SUCCESS" if result.is_success() else "FAILURE",
        )
        return result

    @staticmethod
    def _since(started: float) -> float:
        return round(time.monotonic() - started, 3)
