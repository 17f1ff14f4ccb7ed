"""
Revocation checker — OCSP first, CRL as fallback, backed by the shared CRL cache.

Business logic — network I/O goes through the injected HttpFetcher port and
the injected CrlCache; nothing here owns global state.

  check(cert, issuer)
    → OCSP:  build SHA-1 CertID request → POST → parse → verify signature
             (issuer key or a delegated responder the issuer signed)
             → match CertID (serial, issuer name hash, issuer key hash) → status
    → CRL:   cache.get_or_load(url) → GET → parse (DER → PEM) → verify
             signature against issuer → issuer identity check → serial lookup

A cached CRL carries the identity (name + key) of the issuer that verified
it, so two CAs publishing at one URL never answer for each other.
    → neither answered: UNKNOWN / NONE, with every attempt recorded

OCSP failures (absent, network, timeout, malformed, unsigned) move on to
the CRL. An OCSP "unknown" answer is a definitive answer and is returned
as-is. UNKNOWN is never read as GOOD or REVOKED.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime

import structlog
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from cryptography.x509 import ocsp
from cryptography.x509.extensions import ExtensionNotFound
from cryptography.x509.oid import ExtendedKeyUsageOID
from railway import ErrorCode, Result
from railway.result import Failure, Success

from certchain.crl_cache import CrlCache, CrlCacheEntry, RevokedEntry
from certchain.domain.context import CallContext
from certchain.domain.models import (
    Certificate,
    Chain,
    RevocationRecord,
    RevocationSource,
    RevocationStatus,
)
from certchain.domain.ports import HttpFetcher
from certchain.signatures import is_self_signed, verify_signature

log = structlog.get_logger()

OCSP_REQUEST_CONTENT_TYPE = "application/ocsp-request"

_OCSP_STATUS = {
    ocsp.OCSPCertStatus.GOOD: RevocationStatus.GOOD,
    ocsp.OCSPCertStatus.REVOKED: RevocationStatus.REVOKED,
    ocsp.OCSPCertStatus.UNKNOWN: RevocationStatus.UNKNOWN,
}


@dataclass(frozen=True, slots=True)
class RevocationOptions:
    """
    prefer_ocsp=True queries OCSP first and falls back to CRL;
    False consults the CRL first and uses OCSP only as the fallback.
    """

    prefer_ocsp: bool = True
    timeout: float = 10.0


def _require(cert: Certificate | None, role: str) -> Result[Certificate]:
    return (
        Result.from_optional(cert, f"{role} certificate must not be None")
        .ensure(lambda c: isinstance(c, Certificate), ErrorCode.INPUT_ERROR, f"{role} must be a Certificate")
        .ensure(lambda c: c.parsed is not None, ErrorCode.INPUT_ERROR, f"{role} certificate carries no parsed form")
    )


# ─────────────────────── OCSP ───────────────────────


def build_ocsp_request(cert: Certificate, issuer: Certificate) -> Result[bytes]:
    """DER OCSP request with a SHA-1 CertID (issuer name hash, issuer key hash, serial)."""
    return Result.from_computation(
        lambda: ocsp.OCSPRequestBuilder()
        .add_certificate(cert.parsed, issuer.parsed, hashes.SHA1())
        .build()
        .public_bytes(Encoding.DER),
        ErrorCode.TECHNICAL_ERROR,
        "Cannot build OCSP request",
    )


def _is_delegated_responder(candidate: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        usages = candidate.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except (ExtensionNotFound, ValueError):
        return False
    if ExtendedKeyUsageOID.OCSP_SIGNING not in usages:
        return False
    try:
        candidate.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def _verify_ocsp_signature(response: ocsp.OCSPResponse, issuer: Certificate) -> Result[ocsp.OCSPResponse]:
    signers = [issuer.parsed] + [
        c for c in response.certificates if _is_delegated_responder(c, issuer.parsed)  # type: ignore[arg-type]
    ]
    for signer in signers:
        verified = verify_signature(
            signer.public_key(),  # type: ignore[union-attr]
            response.signature,
            response.tbs_response_bytes,
            response.signature_hash_algorithm,
        )
        if verified.is_success():
            return Result.success(response)
    return Result.failure(ErrorCode.PROTOCOL_ERROR, "OCSP response signature does not verify")


def _parse_ocsp(body: bytes) -> Result[ocsp.OCSPResponse]:
    return Result.from_computation(
        lambda: ocsp.load_der_ocsp_response(body),
        ErrorCode.PROTOCOL_ERROR,
        "Malformed OCSP response",
    ).ensure(
        lambda r: r.response_status == ocsp.OCSPResponseStatus.SUCCESSFUL,
        ErrorCode.PROTOCOL_ERROR,
        "OCSP responder did not return a successful response",
    )


def _cert_id(cert: Certificate, issuer: Certificate, algorithm: hashes.HashAlgorithm) -> tuple[bytes, bytes]:
    request = ocsp.OCSPRequestBuilder().add_certificate(cert.parsed, issuer.parsed, algorithm).build()
    return request.issuer_name_hash, request.issuer_key_hash


def _covers(single: ocsp.OCSPSingleResponse, cert: Certificate, issuer: Certificate) -> bool:
    """Serial, issuer name hash and issuer key hash must all name this certificate."""
    if single.serial_number != cert.serial_number:
        return False
    return Result.from_computation(
        lambda: _cert_id(cert, issuer, single.hash_algorithm),
        ErrorCode.PROTOCOL_ERROR,
        "Unsupported CertID hash",
    ).either(
        lambda expected: expected == (single.issuer_name_hash, single.issuer_key_hash),
        lambda _: False,
    )


def _single_response(
    response: ocsp.OCSPResponse, cert: Certificate, issuer: Certificate, now: datetime
) -> Result[ocsp.OCSPSingleResponse]:
    single = next((r for r in response.responses if _covers(r, cert, issuer)), None)
    if single is None:
        return Result.failure(ErrorCode.PROTOCOL_ERROR, "OCSP response does not cover the certificate")
    if single.next_update_utc is not None and single.next_update_utc < now:
        return Result.failure(ErrorCode.PROTOCOL_ERROR, "OCSP response is past its nextUpdate")
    return Result.success(single)


# ─────────────────────── CRL ───────────────────────


def _parse_crl(body: bytes) -> Result[x509.CertificateRevocationList]:
    return Result.first_success(
        [
            lambda: Result.from_computation(
                lambda: x509.load_der_x509_crl(body), ErrorCode.PROTOCOL_ERROR, "DER CRL"
            ),
            lambda: Result.from_computation(
                lambda: x509.load_pem_x509_crl(body), ErrorCode.PROTOCOL_ERROR, "PEM CRL"
            ),
        ],
        ErrorCode.PROTOCOL_ERROR,
        "Response is not a CRL",
    )


def _revocation_reason(revoked: x509.RevokedCertificate) -> str | None:
    try:
        return revoked.extensions.get_extension_for_class(x509.CRLReason).value.reason.value
    except (ExtensionNotFound, ValueError):
        return None


def _issuer_identity(issuer: Certificate) -> bytes:
    """SHA-256 over the issuer's encoded name and public key; a cached CRL is bound to it."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(issuer.subject_der)
    digest.update(issuer.parsed.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo))  # type: ignore[union-attr]
    return digest.finalize()


def _crl_entry(
    url: str,
    crl: x509.CertificateRevocationList,
    issuer: Certificate,
    size_bytes: int,
    fetched_at: datetime,
) -> CrlCacheEntry:
    return CrlCacheEntry(
        url=url,
        issuer=crl.issuer.rfc4514_string(),
        revoked={
            rc.serial_number: RevokedEntry(_revocation_reason(rc), rc.revocation_date_utc) for rc in crl
        },
        this_update=crl.last_update_utc,
        next_update=crl.next_update_utc,
        fetched_at=fetched_at,
        size_bytes=size_bytes,
        issuer_identity=_issuer_identity(issuer),
    )


def _verify_crl(crl: x509.CertificateRevocationList, issuer: Certificate) -> Result[x509.CertificateRevocationList]:
    if crl.issuer != issuer.parsed.subject:  # type: ignore[union-attr]
        return Result.failure(ErrorCode.PROTOCOL_ERROR, "CRL issuer does not match the certificate issuer")
    return Result.from_computation(
        lambda: crl.is_signature_valid(issuer.parsed.public_key()),  # type: ignore[union-attr, arg-type]
        ErrorCode.PROTOCOL_ERROR,
        "Cannot verify CRL signature",
    ).flat_map(
        lambda valid: Result.success(crl)
        if valid
        else Result.failure(ErrorCode.PROTOCOL_ERROR, "CRL signature does not verify against the issuer")
    )


# ─────────────────────── Checker ───────────────────────


class RevocationChecker:
    """Determines revocation status via OCSP with CRL fallback."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        crl_cache: CrlCache,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._crl_cache = crl_cache
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def crl_cache(self) -> CrlCache:
        return self._crl_cache

    def check(
        self,
        cert: Certificate,
        issuer: Certificate,
        options: RevocationOptions | None = None,
        context: CallContext | None = None,
    ) -> Result[RevocationRecord]:
        """
        Revocation status of `cert` as issued by `issuer`.

        Fails only with INPUT_ERROR (missing certificate or issuer) or
        CANCELLED. Network trouble ends in an UNKNOWN record instead.
        """
        ctx = context or CallContext.background()
        opts = options or RevocationOptions()
        return (
            _require(cert, "Subject")
            .flat_map(lambda _: _require(issuer, "Issuer"))
            .flat_map(lambda _: self._cancel_check(ctx))
            .flat_map(lambda _: self._check_sources(cert, issuer, opts, ctx))
        )

    def check_chain(
        self,
        chain: Chain,
        options: RevocationOptions | None = None,
        context: CallContext | None = None,
    ) -> Result[tuple[RevocationRecord, ...]]:
        """
        Check every certificate except a trailing self-signed root.

        The issuer of each certificate is looked up in the chain by name;
        a certificate whose issuer is absent gets an UNKNOWN record.
        """
        if chain is None or not isinstance(chain, Chain) or len(chain) == 0:
            return Result.failure(ErrorCode.INPUT_ERROR, "Chain must contain at least one certificate")

        certs = chain.certificates
        targets = certs[:-1] if len(certs) > 1 and is_self_signed(certs[-1]) else certs
        records: list[RevocationRecord] = []
        for index, cert in enumerate(targets):
            issuer = next(
                (c for j, c in enumerate(certs) if j != index and c.subject_der == cert.issuer_der),
                None,
            )
            if issuer is None:
                records.append(self._unknown(cert, ("issuer certificate not present in chain",)))
                continue
            result = self.check(cert, issuer, options, context)
            match result:
                case Success(record):
                    records.append(record)
                case Failure(err):
                    return Result.failure_from(err)
        return Result.success(tuple(records))

    def _cancel_check(self, ctx: CallContext) -> Result[CallContext]:
        if ctx.cancelled:
            return Result.failure(ErrorCode.CANCELLED, "Revocation check cancelled by caller")
        return Result.success(ctx)

    def _check_sources(
        self,
        cert: Certificate,
        issuer: Certificate,
        opts: RevocationOptions,
        ctx: CallContext,
    ) -> Result[RevocationRecord]:
        attempts: list[str] = []
        sources = (
            (RevocationSource.OCSP, cert.ocsp_urls, self._query_ocsp),
            (RevocationSource.CRL, cert.crl_urls, self._query_crl),
        )
        if not opts.prefer_ocsp:
            sources = sources[::-1]

        for source, urls, query in sources:
            if not urls:
                attempts.append(f"{source.value}: no URL in certificate")
                continue
            for url in urls:
                result = query(url, cert, issuer, opts, ctx)
                match result:
                    case Success(record):
                        attempts.append(f"{source.value} {url}: {record.status.value}")
                        log.info(
                            "revocation.checked",
                            subject=cert.subject,
                            serial=cert.serial_hex,
                            status=record.status.value,
                            source=source.value,
                        )
                        return Result.success(replace(record, attempts=tuple(attempts)))
                    case Failure(err):
                        if err.code is ErrorCode.CANCELLED or ctx.cancelled:
                            return Result.failure(ErrorCode.CANCELLED, "Revocation check cancelled by caller")
                        attempts.append(f"{source.value} {url}: {err.code.value} {err.message}")
                        log.debug("revocation.source_failed", source=source.value, url=url, error=err.message)

        log.info("revocation.unknown", subject=cert.subject, serial=cert.serial_hex, attempts=len(attempts))
        return Result.success(self._unknown(cert, tuple(attempts)))

    def _query_ocsp(
        self,
        url: str,
        cert: Certificate,
        issuer: Certificate,
        opts: RevocationOptions,
        ctx: CallContext,
    ) -> Result[RevocationRecord]:
        now = self._clock()
        return (
            build_ocsp_request(cert, issuer)
            .flat_map(lambda body: self._fetcher.post(url, body, OCSP_REQUEST_CONTENT_TYPE, opts.timeout, ctx))
            .flat_map(_parse_ocsp)
            .flat_map(lambda response: _verify_ocsp_signature(response, issuer))
            .flat_map(lambda response: _single_response(response, cert, issuer, now))
            .map(
                lambda single: RevocationRecord(
                    subject=cert.subject,
                    issuer=cert.issuer,
                    serial_number=cert.serial_number,
                    status=_OCSP_STATUS[single.certificate_status],
                    source=RevocationSource.OCSP,
                    checked_at=now,
                    revocation_reason=single.revocation_reason.value if single.revocation_reason else None,
                    revocation_time=single.revocation_time_utc,
                )
            )
        )

    def _query_crl(
        self,
        url: str,
        cert: Certificate,
        issuer: Certificate,
        opts: RevocationOptions,
        ctx: CallContext,
    ) -> Result[RevocationRecord]:
        # a hit may come from another CA publishing at the same URL
        identity = _issuer_identity(issuer)
        return (
            self._crl_cache.get_or_load(url, lambda: self._load_crl(url, issuer, opts, ctx))
            .ensure(
                lambda entry: entry.issued_by(identity),
                ErrorCode.PROTOCOL_ERROR,
                "CRL issuer does not match the certificate issuer",
            )
            .map(lambda entry: self._crl_record(cert, entry))
        )

    def _load_crl(
        self,
        url: str,
        issuer: Certificate,
        opts: RevocationOptions,
        ctx: CallContext,
    ) -> Result[CrlCacheEntry]:
        return self._fetcher.get(url, opts.timeout, ctx).flat_map(
            lambda body: _parse_crl(body)
            .flat_map(lambda crl: _verify_crl(crl, issuer))
            .map(lambda crl: _crl_entry(url, crl, issuer, len(body), self._clock()))
        )

    def _crl_record(self, cert: Certificate, entry: CrlCacheEntry) -> RevocationRecord:
        revoked = entry.lookup(cert.serial_number)
        return RevocationRecord(
            subject=cert.subject,
            issuer=cert.issuer,
            serial_number=cert.serial_number,
            status=RevocationStatus.REVOKED if revoked else RevocationStatus.GOOD,
            source=RevocationSource.CRL,
            checked_at=self._clock(),
            revocation_reason=revoked.reason if revoked else None,
            revocation_time=revoked.revoked_at if revoked else None,
        )

    def _unknown(self, cert: Certificate, attempts: tuple[str, ...]) -> RevocationRecord:
        return RevocationRecord(
            subject=cert.subject,
            issuer=cert.issuer,
            serial_number=cert.serial_number,
            status=RevocationStatus.UNKNOWN,
            source=RevocationSource.NONE,
            checked_at=self._clock(),
            attempts=attempts,
        )

