"""
Domain models — immutable data structures for certificates, chains and outcomes.

These are pure value objects with no behavior beyond self-description.
Every outcome type exposes to_dict(), producing plain JSON-serializable data
for a consuming front-end without further transformation.

All models are frozen dataclasses (immutable) following functional principles.
Trust findings live here as data: an expired, untrusted or revoked certificate
is a successful outcome that says so, never a failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, unique
from typing import Any, Generic, Iterator, TypeVar

from cryptography import x509
from railway import Result

T = TypeVar("T")


def _iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment is not None else None


# ─────────────────────── Certificate & Chain ───────────────────────


@dataclass(frozen=True, slots=True)
class Certificate:
    """
    An X.509 certificate as the engine sees it.

    Created by the codec or the remote harvester, never mutated.
    `subject_der` / `issuer_der` hold the encoded names used for exact
    issuer/subject linkage; the RFC 4514 strings are for display.
    The parsed `cryptography` object (`parsed`) is kept for signature checks and excluded
    from equality, hashing and repr.
    """

    raw: bytes = field(repr=False)
    subject: str
    issuer: str
    subject_der: bytes = field(repr=False)
    issuer_der: bytes = field(repr=False)
    serial_number: int
    not_before: datetime
    not_after: datetime
    signature_algorithm: str
    signature_hash: str | None
    public_key_algorithm: str
    public_key_size: int | None
    fingerprint_sha256: str
    aia_issuer_urls: tuple[str, ...] = ()
    ocsp_urls: tuple[str, ...] = ()
    crl_urls: tuple[str, ...] = ()
    subject_key_identifier: str | None = None
    authority_key_identifier: str | None = None
    is_ca: bool = False
    path_length: int | None = None
    key_cert_sign: bool | None = None
    parsed: x509.Certificate | None = field(default=None, repr=False, compare=False)

    @property
    def serial_hex(self) -> str:
        return format(self.serial_number, "x")

    @property
    def is_self_issued(self) -> bool:
        """Subject and issuer names are identical (signature not checked)."""
        return self.subject_der == self.issuer_der

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "issuer": self.issuer,
            "serial_number": self.serial_hex,
            "not_before": _iso(self.not_before),
            "not_after": _iso(self.not_after),
            "signature_algorithm": self.signature_algorithm,
            "signature_hash": self.signature_hash,
            "public_key_algorithm": self.public_key_algorithm,
            "public_key_size": self.public_key_size,
            "fingerprint_sha256": self.fingerprint_sha256,
            "aia_issuer_urls": list(self.aia_issuer_urls),
            "ocsp_urls": list(self.ocsp_urls),
            "crl_urls": list(self.crl_urls),
            "subject_key_identifier": self.subject_key_identifier,
            "authority_key_identifier": self.authority_key_identifier,
            "is_ca": self.is_ca,
            "path_length": self.path_length,
            "key_cert_sign": self.key_cert_sign,
        }


@dataclass(frozen=True, slots=True)
class Chain:
    """
    Ordered sequence of certificates, leaf first.

    Linkage invariant: certificates[i].issuer == certificates[i + 1].subject.
    A chain harvested from a server may violate it; broken_links() reports
    the indices where it does instead of rejecting the chain.
    """

    certificates: tuple[Certificate, ...]

    def __len__(self) -> int:
        return len(self.certificates)

    def __iter__(self) -> Iterator[Certificate]:
        return iter(self.certificates)

    def __getitem__(self, index: int) -> Certificate:
        return self.certificates[index]

    @property
    def leaf(self) -> Certificate:
        return self.certificates[0]

    @property
    def terminal(self) -> Certificate:
        return self.certificates[-1]

    def broken_links(self) -> tuple[int, ...]:
        """Indices i where certificate i is not named as issued by certificate i + 1."""
        return tuple(
            i
            for i in range(len(self.certificates) - 1)
            if self.certificates[i].issuer_der != self.certificates[i + 1].subject_der
        )

    def intermediates(self) -> tuple[Certificate, ...]:
        """Everything except the leaf and a trailing self-issued root."""
        body = self.certificates[1:]
        if body and body[-1].is_self_issued:
            body = body[:-1]
        return body

    def to_dict(self) -> dict[str, Any]:
        return {
            "length": len(self.certificates),
            "broken_links": list(self.broken_links()),
            "certificates": [c.to_dict() for c in self.certificates],
        }


# ─────────────────────── Resolution ───────────────────────


@dataclass(frozen=True, slots=True)
class ResolutionStep:
    """One attempt to fetch an issuer: which URL, at which depth, and what happened."""

    depth: int
    url: str
    succeeded: bool
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"depth": self.depth, "url": self.url, "succeeded": self.succeeded, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class ResolutionOutcome:
    """
    Result of walking AIA links upward from a starting certificate.

    An incomplete chain is a normal outcome: `incomplete_reason` explains
    where and why resolution stopped.
    """

    chain: Chain
    complete: bool
    steps: tuple[ResolutionStep, ...] = ()
    incomplete_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "complete": self.complete,
            "incomplete_reason": self.incomplete_reason,
            "chain": self.chain.to_dict(),
            "steps": [s.to_dict() for s in self.steps],
        }


# ─────────────────────── Validation ───────────────────────


@dataclass(frozen=True, slots=True)
class CertificateVerdict:
    """
    Per-certificate validation findings.

    `signature_valid` is None when the signer is not in the chain
    (a terminal certificate that is not self-signed).
    """

    index: int
    subject: str
    signature_valid: bool | None
    issuer_linked: bool
    within_validity: bool
    expired: bool
    not_yet_valid: bool
    ca_bit_present: bool
    key_usage_permits_signing: bool
    weak_algorithm: bool
    findings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.findings

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "subject": self.subject,
            "ok": self.ok,
            "signature_valid": self.signature_valid,
            "issuer_linked": self.issuer_linked,
            "within_validity": self.within_validity,
            "expired": self.expired,
            "not_yet_valid": self.not_yet_valid,
            "ca_bit_present": self.ca_bit_present,
            "key_usage_permits_signing": self.key_usage_permits_signing,
            "weak_algorithm": self.weak_algorithm,
            "findings": list(self.findings),
        }


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    """Per-certificate verdicts plus the overall verdict for one chain."""

    verdicts: tuple[CertificateVerdict, ...]
    trusted_root_reached: bool
    checked_at: datetime

    @property
    def valid(self) -> bool:
        return self.trusted_root_reached and all(v.ok for v in self.verdicts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "trusted_root_reached": self.trusted_root_reached,
            "checked_at": _iso(self.checked_at),
            "verdicts": [v.to_dict() for v in self.verdicts],
        }


# ─────────────────────── Revocation ───────────────────────


@unique
class RevocationStatus(Enum):
    GOOD = "good"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


@unique
class RevocationSource(Enum):
    OCSP = "ocsp"
    CRL = "crl"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class RevocationRecord:
    """
    Revocation status of one certificate, identified by issuer + serial.

    UNKNOWN means no source answered; `attempts` records every source tried.
    Callers must never read UNKNOWN as GOOD or REVOKED.
    """

    subject: str
    issuer: str
    serial_number: int
    status: RevocationStatus
    source: RevocationSource
    checked_at: datetime
    revocation_reason: str | None = None
    revocation_time: datetime | None = None
    attempts: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "issuer": self.issuer,
            "serial_number": format(self.serial_number, "x"),
            "status": self.status.value,
            "source": self.source.value,
            "checked_at": _iso(self.checked_at),
            "revocation_reason": self.revocation_reason,
            "revocation_time": _iso(self.revocation_time),
            "attempts": list(self.attempts),
        }


@dataclass(frozen=True, slots=True)
class CacheMetrics:
    """Point-in-time snapshot of CRL cache usage for the monitoring collaborator."""

    size: int
    max_entries: int | None
    total_bytes: int
    max_bytes: int | None
    hits: int
    misses: int
    evictions: int
    cleanups: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "max_entries": self.max_entries,
            "total_bytes": self.total_bytes,
            "max_bytes": self.max_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "cleanups": self.cleanups,
            "hit_rate": self.hit_rate,
        }


# ─────────────────────── Expiry ───────────────────────


@unique
class ExpiryStatus(Enum):
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"
    VALID = "valid"


@dataclass(frozen=True, slots=True)
class ExpiryNotice:
    index: int
    subject: str
    not_after: datetime
    days_until_expiry: int
    status: ExpiryStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "subject": self.subject,
            "not_after": _iso(self.not_after),
            "days_until_expiry": self.days_until_expiry,
            "status": self.status.value,
        }


@dataclass(frozen=True, slots=True)
class ExpiryReport:
    """Expiry classification of a certificate bundle against a warning window."""

    notices: tuple[ExpiryNotice, ...]
    warn_days: int

    def count(self, status: ExpiryStatus) -> int:
        return sum(1 for n in self.notices if n.status is status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "warn_days": self.warn_days,
            "expired": self.count(ExpiryStatus.EXPIRED),
            "expiring_soon": self.count(ExpiryStatus.EXPIRING_SOON),
            "valid": self.count(ExpiryStatus.VALID),
            "notices": [n.to_dict() for n in self.notices],
        }


# ─────────────────────── Batch ───────────────────────


@dataclass(frozen=True, slots=True)
class BatchResult(Generic[T]):
    """
    One batch slot: the input's position, a short reference to it, and its outcome.

    The outcome is the operation's own Result — a failure here belongs to
    this item alone.
    """

    index: int
    item: str
    outcome: Result[T]

    @property
    def ok(self) -> bool:
        return self.outcome.is_success()

    def to_dict(self) -> dict[str, Any]:
        return self.outcome.either(
            lambda value: {
                "index": self.index,
                "item": self.item,
                "ok": True,
                "value": value.to_dict() if hasattr(value, "to_dict") else value,
                "error": None,
            },
            lambda err: {
                "index": self.index,
                "item": self.item,
                "ok": False,
                "value": None,
                "error": err.to_dict(),
            },
        )
