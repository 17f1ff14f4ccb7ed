"""
Signature checks — pure, non-blocking cryptographic verification helpers.

Uses cryptography (PyCA):
  - Certificate.verify_directly_issued_by() for certificate linkage
    (issuer name match + signature over the TBS bytes)
  - the public key's own verify() for detached signatures (OCSP responses),
    dispatched on key type

Everything returns Result; no exception leaves this module.
"""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPublicKeyTypes
from railway import ErrorCode, Result

from certchain.domain.models import Certificate

WEAK_HASHES = frozenset({"md2", "md4", "md5", "sha1"})
MIN_RSA_BITS = 2048


def verify_issued_by(subject: Certificate, issuer: Certificate) -> Result[Certificate]:
    """
    Verify that `issuer`'s key signed `subject` and that the names link.

    Returns Success(subject) or PROTOCOL_ERROR describing why not.
    """
    if subject.parsed is None or issuer.parsed is None:
        return Result.failure(ErrorCode.INPUT_ERROR, "Certificate carries no parsed form")

    def _verify() -> Certificate:
        subject.parsed.verify_directly_issued_by(issuer.parsed)  # type: ignore[union-attr]
        return subject

    return Result.from_computation(
        _verify,
        ErrorCode.PROTOCOL_ERROR,
        f"Signature of '{subject.subject}' does not verify against '{issuer.subject}'",
    )


def is_self_signed(cert: Certificate) -> bool:
    """Self-issued AND the signature verifies with the certificate's own key."""
    return cert.is_self_issued and verify_issued_by(cert, cert).is_success()


def verify_signature(
    public_key: CertificateIssuerPublicKeyTypes,
    signature: bytes,
    data: bytes,
    hash_algorithm: hashes.HashAlgorithm | None,
) -> Result[bytes]:
    """Verify a detached signature over `data`. Returns Success(data) when valid."""

    def _verify() -> bytes:
        match public_key:
            case rsa.RSAPublicKey():
                public_key.verify(signature, data, padding.PKCS1v15(), hash_algorithm)
            case ec.EllipticCurvePublicKey():
                public_key.verify(signature, data, ec.ECDSA(hash_algorithm))
            case ed25519.Ed25519PublicKey() | ed448.Ed448PublicKey():
                public_key.verify(signature, data)
            case dsa.DSAPublicKey():
                public_key.verify(signature, data, hash_algorithm)
            case _:
                raise TypeError(f"Unsupported key type {type(public_key).__name__}")
        return data

    return Result.from_computation(_verify, ErrorCode.PROTOCOL_ERROR, "Signature verification failed")


def is_weak_algorithm(cert: Certificate) -> bool:
    """MD5/SHA-1 era signatures, or RSA/DSA keys below 2048 bits."""
    if cert.signature_hash in WEAK_HASHES:
        return True
    if cert.public_key_algorithm in ("RSA", "DSA") and cert.public_key_size is not None:
        return cert.public_key_size < MIN_RSA_BITS
    return False
