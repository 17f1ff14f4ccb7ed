"""
Certificate codec adapter — PEM / DER / PKCS#7 decoding and encoding.

Adapter layer — turns raw bytes into Certificate values using:
  - cryptography (PyCA): X.509 parsing and metadata extraction (AIA, CDP, SKI, AKI)
  - asn1crypto: PKCS#7 / CMS SignedData unwrapping, DER splitting, PEM armor

Decoding is an ordered list of strategies, each returning a definitive
Result; the first Success wins:

  raw bytes
    → PEM   (one or more "CERTIFICATE" blocks)
    → DER   (one or more concatenated certificates)
    → PKCS7 (SignedData certificates, DER or PEM-armored)
    → Certificate value(s)

Key design decision: asn1crypto handles the CMS envelope (it exposes the
SignedData certificate set directly); cryptography handles X.509 metadata
extraction (best-in-class typed API).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

import structlog
from asn1crypto import cms, parser, pem
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.extensions import ExtensionNotFound
from cryptography.x509.oid import AuthorityInformationAccessOID
from railway import ErrorCode
from railway.result import Result

from certchain.domain.models import Certificate, Chain

log = structlog.get_logger()

_PEM_CERT_MARKER = b"-----BEGIN CERTIFICATE-----"

# ─────────────────────── X.509 Metadata Extraction ───────────────────────


def _extract_ski(cert: x509.Certificate) -> str | None:
    """Extract Subject Key Identifier extension as hex string, or None if absent."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        return ext.value.digest.hex()
    except (ExtensionNotFound, ValueError):
        return None


def _extract_aki(cert: x509.Certificate) -> str | None:
    """Extract Authority Key Identifier extension as hex string, or None if absent."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier)
        if ext.value.key_identifier is not None:
            return ext.value.key_identifier.hex()
        return None
    except (ExtensionNotFound, ValueError):
        return None


def _extract_aia(cert: x509.Certificate) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Return (CA-issuer URLs, OCSP URLs) from Authority Information Access, in extension order."""
    try:
        aia = cert.extensions.get_extension_for_class(x509.AuthorityInformationAccess).value
    except (ExtensionNotFound, ValueError):
        return (), ()

    issuers: list[str] = []
    responders: list[str] = []
    for description in aia:
        location = description.access_location
        if not isinstance(location, x509.UniformResourceIdentifier):
            continue
        if description.access_method == AuthorityInformationAccessOID.CA_ISSUERS:
            issuers.append(location.value)
        elif description.access_method == AuthorityInformationAccessOID.OCSP:
            responders.append(location.value)
    return tuple(issuers), tuple(responders)


def _extract_crl_urls(cert: x509.Certificate) -> tuple[str, ...]:
    """URIs from the full names of every CRL distribution point."""
    try:
        points = cert.extensions.get_extension_for_class(x509.CRLDistributionPoints).value
    except (ExtensionNotFound, ValueError):
        return ()
    return tuple(
        name.value
        for point in points
        for name in (point.full_name or ())
        if isinstance(name, x509.UniformResourceIdentifier)
    )


def _extract_basic_constraints(cert: x509.Certificate) -> tuple[bool, int | None]:
    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except (ExtensionNotFound, ValueError):
        return False, None
    return constraints.ca, constraints.path_length


def _extract_key_cert_sign(cert: x509.Certificate) -> bool | None:
    """keyCertSign bit of KeyUsage, or None when the extension is absent."""
    try:
        return cert.extensions.get_extension_for_class(x509.KeyUsage).value.key_cert_sign
    except (ExtensionNotFound, ValueError):
        return None


def _describe_public_key(cert: x509.Certificate) -> tuple[str, int | None]:
    key = cert.public_key()
    match key:
        case rsa.RSAPublicKey():
            return "RSA", key.key_size
        case ec.EllipticCurvePublicKey():
            return "EC", key.curve.key_size
        case dsa.DSAPublicKey():
            return "DSA", key.key_size
        case ed25519.Ed25519PublicKey():
            return "Ed25519", 256
        case ed448.Ed448PublicKey():
            return "Ed448", 456
        case _:
            return type(key).__name__, None


def _signature_hash_name(cert: x509.Certificate) -> str | None:
    try:
        algorithm = cert.signature_hash_algorithm
    except UnsupportedAlgorithm:
        return None
    return algorithm.name if algorithm is not None else None


def certificate_from_x509(cert: x509.Certificate) -> Certificate:
    """
    Convert a parsed cryptography certificate into a Certificate value.

    Missing extensions (AIA, CDP, SKI, AKI, KeyUsage) result in empty
    tuples or None fields — they do NOT cause failures.
    """
    issuer_urls, ocsp_urls = _extract_aia(cert)
    is_ca, path_length = _extract_basic_constraints(cert)
    key_algorithm, key_size = _describe_public_key(cert)
    oid = cert.signature_algorithm_oid

    return Certificate(
        raw=cert.public_bytes(Encoding.DER),
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        subject_der=cert.subject.public_bytes(),
        issuer_der=cert.issuer.public_bytes(),
        serial_number=cert.serial_number,
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        signature_algorithm=getattr(oid, "_name", oid.dotted_string),
        signature_hash=_signature_hash_name(cert),
        public_key_algorithm=key_algorithm,
        public_key_size=key_size,
        fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(),
        aia_issuer_urls=issuer_urls,
        ocsp_urls=ocsp_urls,
        crl_urls=_extract_crl_urls(cert),
        subject_key_identifier=_extract_ski(cert),
        authority_key_identifier=_extract_aki(cert),
        is_ca=is_ca,
        path_length=path_length,
        key_cert_sign=_extract_key_cert_sign(cert),
        parsed=cert,
    )


def _certificates_from_der_blobs(blobs: Iterable[bytes]) -> tuple[Certificate, ...]:
    return tuple(certificate_from_x509(x509.load_der_x509_certificate(blob)) for blob in blobs)


# ─────────────────────── Decoding Strategies ───────────────────────


def _split_der(data: bytes) -> list[bytes]:
    """Split concatenated DER TLVs (no trailing garbage allowed)."""
    pieces: list[bytes] = []
    offset = 0
    while offset < len(data):
        _, _, _, header, contents, trailer = parser.parse(data[offset:], strict=False)
        length = len(header) + len(contents) + len(trailer)
        pieces.append(data[offset : offset + length])
        offset += length
    return pieces


def _from_pem(data: bytes) -> Result[tuple[Certificate, ...]]:
    if _PEM_CERT_MARKER not in data:
        return Result.failure(ErrorCode.INPUT_ERROR, "PEM: no CERTIFICATE block")
    return Result.from_computation(
        lambda: tuple(certificate_from_x509(c) for c in x509.load_pem_x509_certificates(data)),
        ErrorCode.INPUT_ERROR,
        "PEM: invalid certificate block",
    )


def _from_der(data: bytes) -> Result[tuple[Certificate, ...]]:
    return Result.from_computation(
        lambda: _certificates_from_der_blobs(_split_der(data)),
        ErrorCode.INPUT_ERROR,
        "DER: not an X.509 certificate",
    )


def _unwrap_pkcs7(data: bytes) -> tuple[Certificate, ...]:
    if pem.detect(data):
        _, _, data = pem.unarmor(data)
    content_info = cms.ContentInfo.load(data)
    if content_info["content_type"].native != "signed_data":
        raise ValueError(f"content type is {content_info['content_type'].native}, not signed_data")
    cert_set = content_info["content"]["certificates"]
    blobs = [choice.chosen.dump() for choice in cert_set] if cert_set else []
    if not blobs:
        raise ValueError("SignedData holds no certificates")
    return _certificates_from_der_blobs(blobs)


def _from_pkcs7(data: bytes) -> Result[tuple[Certificate, ...]]:
    return Result.from_computation(
        lambda: _unwrap_pkcs7(data),
        ErrorCode.INPUT_ERROR,
        "PKCS7: not a SignedData bundle",
    )


_STRATEGIES: tuple[Callable[[bytes], Result[tuple[Certificate, ...]]], ...] = (
    _from_pem,
    _from_der,
    _from_pkcs7,
)


# ─────────────────────── Public API ───────────────────────


def decode_certificates(data: bytes | str) -> Result[tuple[Certificate, ...]]:
    """
    Decode every certificate in `data`, trying PEM, then DER, then PKCS7.

    Returns Result.failure(INPUT_ERROR, ...) when no strategy succeeds,
    listing why each one rejected the input.
    """
    raw = data.encode("ascii", errors="replace") if isinstance(data, str) else data
    if not raw or not raw.strip():
        return Result.failure(ErrorCode.INPUT_ERROR, "Certificate data is empty")

    return Result.first_success(
        [lambda strategy=strategy: strategy(raw) for strategy in _STRATEGIES],
        ErrorCode.INPUT_ERROR,
        "Unrecognised certificate encoding",
    ).ensure(lambda certs: len(certs) > 0, ErrorCode.INPUT_ERROR, "No certificates found")


def decode_certificate(data: bytes | str) -> Result[Certificate]:
    """Decode the first certificate in `data` (PEM → DER → PKCS7)."""
    return decode_certificates(data).map(lambda certs: certs[0])


def decode_chain(data: bytes | str) -> Result[Chain]:
    """Decode a bundle, keeping its order, as a Chain."""
    return decode_certificates(data).map(Chain)


def encode_der(cert: Certificate) -> bytes:
    return cert.raw


def encode_pem(cert: Certificate) -> bytes:
    return pem.armor("CERTIFICATE", cert.raw)


def encode_pem_bundle(certs: Iterable[Certificate]) -> bytes:
    return b"".join(encode_pem(c) for c in certs)
