"""
Trust validator — signature linkage, validity windows, CA constraints, trust anchoring.

Business logic — pure and non-blocking. Revocation is not consulted here.

For every certificate in the chain (leaf first):

  - issuer linkage:  issuer name == next certificate's subject
  - signature:       next certificate's key verifies this one
                     (a self-signed terminal verifies against itself)
  - validity:        not_before <= at <= not_after
  - CA constraints:  non-leaf certificates carry the CA bit and, when a
                     KeyUsage extension is present, keyCertSign
  - algorithm:       MD5/SHA-1 signatures and RSA/DSA keys < 2048 bits flagged

The chain is trusted when its terminal certificate is in the RootPool.
Every finding is data on the success track; only malformed input fails.
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog
from railway import ErrorCode, Result

from certchain.domain.models import Certificate, CertificateVerdict, Chain, ValidationOutcome
from certchain.domain.trust import RootPool
from certchain.signatures import is_weak_algorithm, verify_issued_by

log = structlog.get_logger()

# Finding codes
EXPIRED = "expired"
NOT_YET_VALID = "not_yet_valid"
WEAK_ALGORITHM = "weak_algorithm"
MISSING_CA_BIT = "missing_ca_bit"
KEY_USAGE_FORBIDS_SIGNING = "key_usage_forbids_signing"
SIGNATURE_INVALID = "signature_invalid"
ISSUER_MISMATCH = "issuer_mismatch"


def _check_input(chain: Chain | None, root_pool: RootPool | None) -> Result[Chain]:
    if chain is None or not isinstance(chain, Chain):
        return Result.failure(ErrorCode.INPUT_ERROR, "Chain must be a Chain instance")
    if len(chain) == 0:
        return Result.failure(ErrorCode.INPUT_ERROR, "Chain must contain at least one certificate")
    for i, cert in enumerate(chain):
        if not isinstance(cert, Certificate):
            return Result.failure(
                ErrorCode.INPUT_ERROR,
                f"Chain element {i} is {type(cert).__name__}, not a Certificate",
            )
    if root_pool is None:
        return Result.failure(ErrorCode.INPUT_ERROR, "Root pool must not be None")
    return Result.success(chain)


class TrustValidator:
    """Validates a Chain against a RootPool at a point in time."""

    def validate(
        self,
        chain: Chain,
        root_pool: RootPool,
        at: datetime | None = None,
    ) -> Result[ValidationOutcome]:
        moment = at or datetime.now(UTC)
        return _check_input(chain, root_pool).map(lambda c: self._evaluate(c, root_pool, moment))

    def _evaluate(self, chain: Chain, root_pool: RootPool, at: datetime) -> ValidationOutcome:
        last = len(chain) - 1
        verdicts = tuple(
            _verdict(i, cert, chain[i + 1] if i < last else None, at)
            for i, cert in enumerate(chain)
        )
        trusted = root_pool.contains(chain.terminal)
        outcome = ValidationOutcome(verdicts=verdicts, trusted_root_reached=trusted, checked_at=at)
        log.info(
            "validator.validated",
            length=len(chain),
            trusted_root_reached=trusted,
            valid=outcome.valid,
            findings=sum(len(v.findings) for v in verdicts),
        )
        return outcome


def _verdict(index: int, cert: Certificate, issuer: Certificate | None, at: datetime) -> CertificateVerdict:
    findings: list[str] = []

    expired = at > cert.not_after
    not_yet_valid = at < cert.not_before
    if expired:
        findings.append(EXPIRED)
    if not_yet_valid:
        findings.append(NOT_YET_VALID)

    signature_valid, issuer_linked = _linkage(cert, issuer)
    if not issuer_linked:
        findings.append(ISSUER_MISMATCH)
    if signature_valid is False:
        findings.append(SIGNATURE_INVALID)

    key_usage_permits_signing = cert.key_cert_sign is not False
    if index > 0:
        if not cert.is_ca:
            findings.append(MISSING_CA_BIT)
        if not key_usage_permits_signing:
            findings.append(KEY_USAGE_FORBIDS_SIGNING)

    weak = is_weak_algorithm(cert)
    if weak:
        findings.append(WEAK_ALGORITHM)

    return CertificateVerdict(
        index=index,
        subject=cert.subject,
        signature_valid=signature_valid,
        issuer_linked=issuer_linked,
        within_validity=not (expired or not_yet_valid),
        expired=expired,
        not_yet_valid=not_yet_valid,
        ca_bit_present=cert.is_ca,
        key_usage_permits_signing=key_usage_permits_signing,
        weak_algorithm=weak,
        findings=tuple(findings),
    )


def _linkage(cert: Certificate, issuer: Certificate | None) -> tuple[bool | None, bool]:
    """
    (signature_valid, issuer_linked) for one certificate.

    signature_valid is None when there is no signer to check against:
    a terminal certificate that is not self-issued, or a name mismatch.
    """
    if issuer is None:
        if cert.is_self_issued:
            return verify_issued_by(cert, cert).is_success(), True
        return None, True
    if cert.issuer_der != issuer.subject_der:
        return None, False
    return verify_issued_by(cert, issuer).is_success(), True
