"""
Batch orchestrator — runs one per-item operation over many inputs under a concurrency cap.

The orchestrator is the only pool manager in the engine:

  items ──► ThreadPoolExecutor(max_workers=concurrency)
              │  each worker: LoggingExecutionContext(operation(item, ctx))
              ▼
  results[index] = BatchResult(index, item, outcome)     (pre-sized, index-addressed)

Isolation: an operation that raises becomes that item's TECHNICAL_ERROR;
a failed item never cancels its siblings. Items that have not started when
the caller cancels get a CANCELLED result. The call itself fails only for
invalid input, or when cancellation arrives before any item starts.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from railway import ErrorCode, LoggingExecutionContext, Result

from certchain.domain.context import CallContext
from certchain.domain.models import BatchResult

log = structlog.get_logger()

ItemT = TypeVar("ItemT")
T = TypeVar("T")

DEFAULT_CONCURRENCY = 8
_ITEM_LABEL_LENGTH = 64


def describe_item(item: object) -> str:
    """Short, printable reference to a batch input (raw bytes are summarized)."""
    if isinstance(item, (bytes, bytearray)):
        return f"<{len(item)} bytes>"
    text = str(item)
    return text if len(text) <= _ITEM_LABEL_LENGTH else text[: _ITEM_LABEL_LENGTH - 3] + "..."


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Counts over one batch run: successes, failures and failures by error code."""

    total: int
    succeeded: int
    failed: int
    failures_by_code: dict[str, int]

    @classmethod
    def of(cls, results: Sequence[BatchResult[Any]]) -> BatchSummary:
        codes = Counter(r.outcome.error().code.value for r in results if not r.ok)
        failed = sum(codes.values())
        return cls(
            total=len(results),
            succeeded=len(results) - failed,
            failed=failed,
            failures_by_code=dict(codes),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures_by_code": dict(self.failures_by_code),
        }


class BatchOrchestrator:
    """Bounded-concurrency fan-out with order-preserving, per-item results."""

    def __init__(self, default_concurrency: int = DEFAULT_CONCURRENCY) -> None:
        if default_concurrency < 1:
            raise ValueError("default_concurrency must be at least 1")
        self._default_concurrency = default_concurrency

    def run(
        self,
        items: Sequence[ItemT],
        operation: Callable[[ItemT, CallContext], Result[T]],
        concurrency: int | None = None,
        context: CallContext | None = None,
    ) -> Result[list[BatchResult[T]]]:
        """
        Apply `operation` to every item; results[i] always belongs to items[i].

        Fails only with INPUT_ERROR (None/empty items, concurrency < 1) or
        CANCELLED (cancelled before the first item starts).
        """
        ctx = context or CallContext.background()
        workers = self._default_concurrency if concurrency is None else concurrency

        if items is None or len(items) == 0:
            return Result.failure(ErrorCode.INPUT_ERROR, "Batch must contain at least one item")
        if workers < 1:
            return Result.failure(ErrorCode.INPUT_ERROR, f"Concurrency must be at least 1, got {workers}")
        if ctx.cancelled:
            return Result.failure(ErrorCode.CANCELLED, "Batch cancelled before any item started")

        items = list(items)
        results: list[BatchResult[T] | None] = [None] * len(items)

        def _work(index: int) -> None:
            item = items[index]
            if ctx.cancelled:
                outcome: Result[T] = Result.failure(ErrorCode.CANCELLED, "Cancelled before the item started")
            else:
                outcome = LoggingExecutionContext(operation=f"batch[{index}]").execute(
                    lambda: operation(item, ctx)
                )
            results[index] = BatchResult(index=index, item=describe_item(item), outcome=outcome)

        log.info("batch.started", items=len(items), concurrency=min(workers, len(items)))
        with ThreadPoolExecutor(max_workers=min(workers, len(items)), thread_name_prefix="certchain-batch") as pool:
            # _work never raises: the execution context converts exceptions to failures
            for future in [pool.submit(_work, i) for i in range(len(items))]:
                future.result()

        collected = [r for r in results if r is not None]
        summary = BatchSummary.of(collected)
        log.info("batch.completed", **summary.to_dict())
        return Result.success(collected)
