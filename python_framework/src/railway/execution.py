"""
Execution contexts — separate WHAT (pure logic) from HOW (side effects).

A pipeline function describes WHAT happens and returns Result[T]; an
ExecutionContext decides HOW it runs (timing, logging). Contexts wrap each
other, so observability can be layered on without touching the pipeline:

    ctx = LoggingExecutionContext(operation="TrustListSync")
    result = ctx.execute(lambda: run_pipeline(fetcher, parser, publisher))
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
    """Anything with execute(computation) -> Result satisfies this protocol."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        ...


class NoOpExecutionContext:
    """Passthrough context — runs the computation as is. Useful in tests."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        return computation()


class LoggingExecutionContext:
    """
    Execution context that logs entry, exit, duration, and result state.

    Wraps another context (decorator pattern). An exception escaping the
    computation is logged and converted into a TECHNICAL_ERROR failure.

        ctx = LoggingExecutionContext(operation="TrustListSync")
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
        log_level: int = logging.INFO,
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation
        self._log_level = log_level

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        log.log(self._log_level, "execution.started", operation=self._operation)
        start = time.monotonic()

        try:
            result = self._inner.execute(computation)
        except Exception as e:
            log.error(
                "execution.raised",
                operation=self._operation,
                elapsed_seconds=round(time.monotonic() - start, 3),
                error=str(e),
            )
            return Failure(
                FailureDescription(
                    ErrorCode.TECHNICAL_ERROR,
                    f"Execution failed: {e}",
                    e,
                )
            )

        log.log(
            self._log_level,
            "execution.completed",
            operation=self._operation,
            elapsed_seconds=round(time.monotonic() - start, 3),
            state="SUCCESS" if result.is_success() else "FAILURE",
        )
        return result
