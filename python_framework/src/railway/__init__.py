"""
railway: Result-based error handling for certchain.

Stages return Result[T] instead of raising; flat_map joins them and the
first failure short-circuits the rest.

    from railway import ErrorCode, Result

    def require_port(port: int) -> Result[int]:
        if not 0 < port < 65536:
            return Result.failure(ErrorCode.INPUT_ERROR, f"Port out of range: {port}")
        return Result.success(port)

    chain = require_port(443).flat_map(lambda p: harvester.fetch("example.com", p))
"""

from railway.assertions import ResultAssertions
from railway.execution import ExecutionContext, LoggingExecutionContext
from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "LoggingExecutionContext",
    "ResultAssertions",
]

__version__ = "2.0.0"
