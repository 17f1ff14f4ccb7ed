"""
Trust anchors — the immutable set of root certificates a chain must end in.

A RootPool is built by the caller and handed to the validator (and,
optionally, to the resolver for completing a chain whose last AIA hop is
missing). It is never a module global.

    pool = RootPool.system().value()                 # certifi's Mozilla bundle
    pool = RootPool.from_pem_bundle(pem_bytes).value()
    pool = RootPool.of([my_root])
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from pathlib import Path

import certifi
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from railway import ErrorCode, Result

from certchain.adapters.codec import decode_certificates
from certchain.domain.models import Certificate
from certchain.signatures import verify_issued_by


def _public_key_der(cert: Certificate) -> bytes | None:
    if cert.parsed is None:
        return None
    return cert.parsed.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)


class RootPool:
    """Anchor certificates indexed by fingerprint and by subject name."""

    __slots__ = ("_anchors", "_fingerprints", "_by_subject")

    def __init__(self, anchors: Iterable[Certificate] = ()) -> None:
        unique: dict[str, Certificate] = {}
        for cert in anchors:
            unique.setdefault(cert.fingerprint_sha256, cert)
        self._anchors = tuple(unique.values())
        self._fingerprints = frozenset(unique)
        by_subject: dict[bytes, list[Certificate]] = {}
        for cert in self._anchors:
            by_subject.setdefault(cert.subject_der, []).append(cert)
        self._by_subject = {k: tuple(v) for k, v in by_subject.items()}

    # ─────────────────────── Constructors ───────────────────────

    @classmethod
    def of(cls, anchors: Iterable[Certificate]) -> RootPool:
        return cls(anchors)

    @classmethod
    def from_pem_bundle(cls, data: bytes | str) -> Result[RootPool]:
        """Build a pool from a PEM (or DER / PKCS7) bundle of anchors."""
        return decode_certificates(data).map(cls)

    @classmethod
    def system(cls) -> Result[RootPool]:
        """The Mozilla CA bundle shipped by certifi."""
        return Result.from_computation(
            lambda: Path(certifi.where()).read_bytes(),
            ErrorCode.TECHNICAL_ERROR,
            "Cannot read the certifi CA bundle",
        ).flat_map(cls.from_pem_bundle)

    # ─────────────────────── Lookups ───────────────────────

    def __len__(self) -> int:
        return len(self._anchors)

    def __iter__(self) -> Iterator[Certificate]:
        return iter(self._anchors)

    def contains(self, cert: Certificate) -> bool:
        """Same SHA-256 fingerprint, or same subject name and public key as an anchor."""
        if cert.fingerprint_sha256 in self._fingerprints:
            return True
        candidates = self._by_subject.get(cert.subject_der, ())
        if not candidates:
            return False
        key = _public_key_der(cert)
        return key is not None and any(_public_key_der(a) == key for a in candidates)

    def find_issuer(self, cert: Certificate) -> Certificate | None:
        """The anchor named as `cert`'s issuer whose key verifies its signature."""
        for anchor in self._by_subject.get(cert.issuer_der, ()):
            if verify_issued_by(cert, anchor).is_success():
                return anchor
        return None
