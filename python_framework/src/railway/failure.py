"""
Failure description — structured error information for the failure track.

ErrorCode enumerates the failure kinds a certificate operation can end in.
Trust findings (expired, untrusted, revoked) are NOT failures: they travel on
the success track as data. Only the conditions below leave the happy path.

Enum + frozen dataclass gives __eq__, __hash__, __repr__ for free, and
Enum members are singleton-comparable with `is`.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any, Optional


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    Grouped by who is at fault:
    - Caller: INPUT_ERROR, CANCELLED
    - Remote side: NETWORK, TIMEOUT, PROTOCOL, UNREACHABLE, HANDSHAKE
    - Us: TECHNICAL_ERROR
    """

    # --- Caller-side ---
    INPUT_ERROR = "INPUT_ERROR"
    """Malformed certificate bytes, empty batch, invalid hostname. Never retried."""

    CANCELLED = "CANCELLED"
    """The caller cancelled the operation before or while it ran."""

    # --- Remote-side ---
    NETWORK_ERROR = "NETWORK_ERROR"
    """DNS/connect failure or HTTP error status during AIA/OCSP/CRL fetch."""

    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    """A network deadline elapsed."""

    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    """Fetched resource is not a valid certificate, CRL or OCSP response."""

    UNREACHABLE_ERROR = "UNREACHABLE_ERROR"
    """TLS endpoint could not be resolved or connected to."""

    HANDSHAKE_ERROR = "HANDSHAKE_ERROR"
    """TLS endpoint accepted the connection but the handshake failed."""

    # --- Internal ---
    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Unexpected exception captured at an adapter or batch boundary."""

    @property
    def is_fallback_eligible(self) -> bool:
        """True for failures that let revocation checking move to the next source."""
        return self in _FALLBACK_CODES


_FALLBACK_CODES = frozenset(
    {
        ErrorCode.NETWORK_ERROR,
        ErrorCode.TIMEOUT_ERROR,
        ErrorCode.PROTOCOL_ERROR,
    }
)


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception, and timestamp.

    >>> desc = FailureDescription(ErrorCode.INPUT_ERROR, "not a certificate")
    >>> desc.code
    <ErrorCode.INPUT_ERROR: 'INPUT_ERROR'>
    >>> desc.message
    'not a certificate'
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def create(
        code: ErrorCode,
        message: str,
        exception: Optional[BaseException] = None,
    ) -> FailureDescription:
        return FailureDescription(code=code, message=message, exception=exception)

    def full_stack_trace(self) -> str:
        """Full stack trace string including the message and exception chain."""
        if self.exception is None:
            return self.message
        tb = "".join(traceback.format_exception(type(self.exception), self.exception, self.exception.__traceback__))
        return f"{self.message}\n{tb}"

    def to_dict(self) -> dict[str, Any]:
        """Plain-data view for JSON consumers (the exception is reduced to its type name)."""
        return {
            "code": self.code.value,
            "message": self.message,
            "exception": type(self.exception).__name__ if self.exception else None,
            "timestamp": self.timestamp.isoformat(),
        }
