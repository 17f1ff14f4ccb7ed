"""
pytest helpers for Result values.

Each helper fails with a message naming the track actually taken, so a
failing test shows the error code and message (or the unexpected value)
rather than a bare AssertionError.

    outcome = ResultAssertions.assert_success(resolver.resolve(root))
    ResultAssertions.assert_failure(decode_certificate(b"junk"), ErrorCode.INPUT_ERROR)
"""

from __future__ import annotations

from typing import Any, TypeVar

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")


def _track(result: Result[Any]) -> str:
    if result.is_success():
        return f"Success({result.value()!r})"
    err = result.error()
    return f"Failure({err.code.value}: {err.message!r})"


def _suffix(note: str) -> str:
    return f" [{note}]" if note else ""


class ResultAssertions:
    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        """Return the value, or fail showing the failure that came back instead."""
        assert result.is_success(), f"expected Success, got {_track(result)}{_suffix(message)}"
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Return the FailureDescription; with `expected_code`, also check its code."""
        assert result.is_failure(), f"expected Failure, got {_track(result)}{_suffix(message)}"
        err = result.error()
        if expected_code is not None:
            assert err.code is expected_code, (
                f"expected {expected_code.value}, got {_track(result)}{_suffix(message)}"
            )
        return err

    @staticmethod
    def assert_failure_message_contains(result: Result[T], substring: str) -> None:
        """Case-insensitive substring check on the failure message."""
        err = ResultAssertions.assert_failure(result)
        assert substring.lower() in err.message.lower(), f"{substring!r} not in {err.message!r}"

    @staticmethod
    def assert_success_value(result: Result[T], expected_value: Any) -> None:
        value = ResultAssertions.assert_success(result)
        assert value == expected_value, f"expected value {expected_value!r}, got {value!r}"
