"""
Result type for railway-oriented composition.

A Result[T] is exactly one of two tracks:

    Success(value)      carries the value of a completed stage
    Failure(error)      carries a FailureDescription (code, message, cause)

Each certchain operation is a chain of stages joined by flat_map; the first
Failure rides the lower track to the end and later stages never run.

    decode ──ok──► resolve ──ok──► validate ──ok──► Success(ValidationOutcome)
       │              │                │
       └─err──────────┴────────err─────┴──────────► Failure(INPUT_ERROR | ...)

Success and Failure each implement the track-specific half of every
operator, so there is no isinstance dispatch in the combinators. Both
support structural pattern matching:

    match fetcher.get(url, timeout):
        case Success(body): ...
        case Failure(err): ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

from railway.failure import ErrorCode, FailureDescription

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


class Result(Generic[T]):
    """
    Base of the two tracks. Never instantiated directly; use the factories.

        >>> Result.success(3).map(lambda n: n + 1).value()
        4
        >>> Result.failure(ErrorCode.INPUT_ERROR, "empty").map(lambda n: n + 1).is_failure()
        True
    """

    # ──────────────────────── Track-specific operators ────────────────────────

    def is_success(self) -> bool:
        raise NotImplementedError

    def value(self) -> T:
        """The carried value. Raises ValueError on the failure track."""
        raise NotImplementedError

    def error(self) -> FailureDescription:
        """The carried failure. Raises ValueError on the success track."""
        raise NotImplementedError

    def either(self, on_success: Callable[[T], R], on_failure: Callable[[FailureDescription], R]) -> R:
        """Collapse both tracks into one value."""
        raise NotImplementedError

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        """Continue with a Result-returning stage; failures skip it."""
        raise NotImplementedError

    def map_failure(self, mapper: Callable[[FailureDescription], FailureDescription]) -> Result[T]:
        """Rewrite the failure (e.g. re-code a fetch error as PROTOCOL_ERROR)."""
        raise NotImplementedError

    # ──────────────────────── Derived operators ────────────────────────

    def is_failure(self) -> bool:
        return not self.is_success()

    def map(self, mapper: Callable[[T], U]) -> Result[U]:
        """Transform the value with a plain function."""
        return self.flat_map(lambda v: Success(mapper(v)))

    def ensure(
        self,
        predicate: Callable[[T], bool],
        error: FailureDescription | ErrorCode,
        message: str = "",
    ) -> Result[T]:
        """
        Keep the value only if `predicate` holds, else fail with `error`.

            Result.success(opts).ensure(lambda o: o.max_depth >= 1, ErrorCode.INPUT_ERROR, "max_depth must be at least 1")
        """
        failure = error if isinstance(error, FailureDescription) else FailureDescription(code=error, message=message)
        return self.flat_map(lambda v: Success(v) if predicate(v) else Failure(failure))

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        """Run `action` on the value for its side effect; the Result is unchanged."""

        def _tap(v: T) -> Result[T]:
            action(v)
            return self

        return self.flat_map(_tap)

    # ──────────────────────── Factories ────────────────────────

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure(code: ErrorCode, message: str, exception: Optional[BaseException] = None) -> Result[T]:
        return Failure(FailureDescription(code=code, message=message, exception=exception))

    @staticmethod
    def failure_from(error: FailureDescription) -> Result[T]:
        return Failure(error)

    @staticmethod
    def from_computation(computation: Callable[[], T], error_code: ErrorCode, error_message: str) -> Result[T]:
        """
        Run a computation that may raise and put its outcome on a track.

        This is where library exceptions (cryptography, asn1crypto, OS I/O)
        become failures; the message is "<error_message>: <exception>".
        """
        try:
            return Success(computation())
        except Exception as e:
            return Failure(FailureDescription(error_code, f"{error_message}: {e}", e))

    @staticmethod
    def from_optional(
        value: Optional[T],
        error_message: str,
        error_code: ErrorCode = ErrorCode.INPUT_ERROR,
    ) -> Result[T]:
        if value is None:
            return Failure(FailureDescription(error_code, error_message))
        return Success(value)

    @staticmethod
    def first_success(
        attempts: Iterable[Callable[[], Result[T]]],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """
        Evaluate attempts lazily, in order, stopping at the first Success.

        Used for PEM → DER → PKCS7 decoding and for trying AIA / CRL URLs in
        turn. If all fail, the message is "<error_message> (<r1>; <r2>; ...)".
        """
        reasons: list[str] = []
        for attempt in attempts:
            match attempt():
                case Success(_) as hit:
                    return hit
                case Failure(err):
                    reasons.append(err.message)
        return Failure(FailureDescription(error_code, f"{error_message} ({'; '.join(reasons) or 'no attempts'})"))

    @staticmethod
    def all_of(results: Iterable[Result[T]]) -> Result[list[T]]:
        """Gather values in order; the first Failure wins."""
        values: list[T] = []
        for result in results:
            match result:
                case Success(v):
                    values.append(v)
                case Failure(err):
                    return Failure(err)
        return Success(values)


@dataclass(frozen=True, slots=True, eq=True, repr=False)
class Success(Result[T]):
    """Upper track: a non-None value."""

    _value: T

    def __post_init__(self) -> None:
        if self._value is None:
            raise TypeError("Success value must not be None")

    def is_success(self) -> bool:
        return True

    def value(self) -> T:
        return self._value

    def error(self) -> FailureDescription:
        raise ValueError(f"Cannot get error from a Success: {self._value!r}")

    def either(self, on_success: Callable[[T], R], on_failure: Callable[[FailureDescription], R]) -> R:
        return on_success(self._value)

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        return mapper(self._value)

    def map_failure(self, mapper: Callable[[FailureDescription], FailureDescription]) -> Result[T]:
        return self

    def __repr__(self) -> str:
        return f"Success({self._value!r})"


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class Failure(Result[T]):
    """Lower track: a FailureDescription. Equality ignores the timestamp and cause."""

    _error: FailureDescription

    def __post_init__(self) -> None:
        if self._error is None:
            raise TypeError("Failure error must not be None")

    def is_success(self) -> bool:
        return False

    def value(self) -> T:
        raise ValueError(f"Cannot get value from a Failure: {self._error.message}")

    def error(self) -> FailureDescription:
        return self._error

    def either(self, on_success: Callable[[T], R], on_failure: Callable[[FailureDescription], R]) -> R:
        return on_failure(self._error)

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        return Failure(self._error)

    def map_failure(self, mapper: Callable[[FailureDescription], FailureDescription]) -> Result[T]:
        return Failure(mapper(self._error))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Failure):
            return NotImplemented
        return (self._error.code, self._error.message) == (other._error.code, other._error.message)

    def __hash__(self) -> int:
        return hash((self._error.code, self._error.message))

    def __repr__(self) -> str:
        return f"Failure({self._error.code.value}: {self._error.message!r})"


Success.__match_args__ = ("_value",)
Failure.__match_args__ = ("_error",)
