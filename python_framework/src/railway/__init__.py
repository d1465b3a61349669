"""
Railway-Oriented Programming (ROP) primitives.

Explicit, composable error handling — adapters turn exceptions into Failures
at their boundary, business logic only chains Results.

    from railway import Result, ErrorCode

    def require_ok(status: int, body: bytes) -> Result[bytes]:
        if status != 200:
            return Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, f"HTTP {status}")
        return Result.success(body)
"""

from railway.result import Result, Success, Failure
from railway.failure import ErrorCode, FailureDescription
from railway.execution import (
    ExecutionContext,
    NoOpExecutionContext,
    LoggingExecutionContext,
)
from railway.assertions import ResultAssertions

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultAssertions",
]

__version__ = "1.0.0"
