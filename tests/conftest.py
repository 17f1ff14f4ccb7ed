"""
Shared test fixtures and helpers for the certchain test suite.

Every certificate, CRL and OCSP response used by the tests is generated on
the fly with cryptography — no binary fixture files, no network.

  pki        → Pki factory (issue certificates, build CRLs / OCSP responses)
  hierarchy  → root → intermediate → leaf, wired with AIA / OCSP / CRL URLs
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509 import ocsp
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtendedKeyUsageOID, NameOID

from certchain.adapters.codec import certificate_from_x509
from certchain.domain.models import Certificate, Chain

INTERMEDIATE_URL = "http://pki.example.test/intermediate.der"
ROOT_URL = "http://pki.example.test/root.der"
OCSP_URL = "http://ocsp.example.test/"
CRL_URL = "http://crl.example.test/intermediate.crl"
ROOT_CRL_URL = "http://crl.example.test/root.crl"


@dataclass(frozen=True)
class Issued:
    """A generated certificate with its private key and domain value."""

    x509: x509.Certificate
    key: Any
    cert: Certificate = field(repr=False)

    @property
    def der(self) -> bytes:
        return self.x509.public_bytes(Encoding.DER)

    @property
    def pem(self) -> bytes:
        return self.x509.public_bytes(Encoding.PEM)

    @property
    def key_pem(self) -> bytes:
        return self.key.private_bytes(
            Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )


def _name(common_name: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "certchain tests"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


class Pki:
    """Certificate factory over a fixed `now` (UTC, whole seconds)."""

    def __init__(self) -> None:
        self.now = datetime.now(UTC).replace(microsecond=0)

    @staticmethod
    def ec_key() -> ec.EllipticCurvePrivateKey:
        return ec.generate_private_key(ec.SECP256R1())

    def issue(
        self,
        common_name: str,
        issuer: Issued | None = None,
        *,
        ca: bool = False,
        path_length: int | None = None,
        key: Any = None,
        issuer_name: x509.Name | None = None,
        signing_key: Any = None,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
        aia_issuers: tuple[str, ...] = (),
        ocsp_urls: tuple[str, ...] = (),
        crl_urls: tuple[str, ...] = (),
        key_cert_sign: bool | None = None,
        ocsp_signing: bool = False,
        serial_number: int | None = None,
    ) -> Issued:
        """
        Issue a certificate. Without `issuer` (and without issuer_name /
        signing_key overrides) the certificate is self-signed.
        """
        key = key or self.ec_key()
        subject = _name(common_name)
        if issuer is not None:
            issuer_name = issuer_name or issuer.x509.subject
            signing_key = signing_key or issuer.key
        issuer_name = issuer_name or subject
        signing_key = signing_key or key

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer_name)
            .public_key(key.public_key())
            .serial_number(serial_number or x509.random_serial_number())
            .not_valid_before(not_before or self.now - timedelta(days=1))
            .not_valid_after(not_after or self.now + timedelta(days=365))
            .add_extension(x509.BasicConstraints(ca=ca, path_length=path_length), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=ca if key_cert_sign is None else key_cert_sign,
                    crl_sign=ca,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
        )
        if signing_key is not key:
            builder = builder.add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(signing_key.public_key()),
                critical=False,
            )
        access = [
            x509.AccessDescription(AuthorityInformationAccessOID.CA_ISSUERS, x509.UniformResourceIdentifier(u))
            for u in aia_issuers
        ] + [
            x509.AccessDescription(AuthorityInformationAccessOID.OCSP, x509.UniformResourceIdentifier(u))
            for u in ocsp_urls
        ]
        if access:
            builder = builder.add_extension(x509.AuthorityInformationAccess(access), critical=False)
        if crl_urls:
            builder = builder.add_extension(
                x509.CRLDistributionPoints(
                    [
                        x509.DistributionPoint(
                            full_name=[x509.UniformResourceIdentifier(u)],
                            relative_name=None,
                            reasons=None,
                            crl_issuer=None,
                        )
                        for u in crl_urls
                    ]
                ),
                critical=False,
            )
        if ocsp_signing:
            builder = builder.add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.OCSP_SIGNING]), critical=False
            )

        cert = builder.sign(signing_key, hashes.SHA256())
        return Issued(x509=cert, key=key, cert=certificate_from_x509(cert))

    def root(self, common_name: str = "Test Root CA", **kwargs: Any) -> Issued:
        return self.issue(common_name, ca=True, **kwargs)

    def intermediate(self, issuer: Issued, common_name: str = "Test Intermediate CA", **kwargs: Any) -> Issued:
        return self.issue(common_name, issuer, ca=True, **kwargs)

    def leaf(self, issuer: Issued, common_name: str = "leaf.example.test", **kwargs: Any) -> Issued:
        return self.issue(common_name, issuer, **kwargs)

    @staticmethod
    def rsa_key(bits: int = 2048) -> rsa.RSAPrivateKey:
        return rsa.generate_private_key(public_exponent=65537, key_size=bits)

    # ─────────────────────── Revocation artifacts ───────────────────────

    def crl(
        self,
        issuer: Issued,
        revoked_serials: tuple[int, ...] = (),
        *,
        next_update: datetime | None = None,
        signing_key: Any = None,
        encoding: Encoding = Encoding.DER,
    ) -> bytes:
        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(issuer.x509.subject)
            .last_update(self.now - timedelta(hours=1))
            .next_update(next_update or self.now + timedelta(days=7))
        )
        for serial in revoked_serials:
            builder = builder.add_revoked_certificate(
                x509.RevokedCertificateBuilder()
                .serial_number(serial)
                .revocation_date(self.now - timedelta(days=1))
                .add_extension(x509.CRLReason(x509.ReasonFlags.key_compromise), critical=False)
                .build()
            )
        return builder.sign(signing_key or issuer.key, hashes.SHA256()).public_bytes(encoding)

    def ocsp_response(
        self,
        subject: Issued,
        issuer: Issued,
        status: ocsp.OCSPCertStatus = ocsp.OCSPCertStatus.GOOD,
        *,
        responder: Issued | None = None,
        next_update: datetime | None = None,
    ) -> bytes:
        revoked = status is ocsp.OCSPCertStatus.REVOKED
        signer = responder or issuer
        builder = (
            ocsp.OCSPResponseBuilder()
            .add_response(
                cert=subject.x509,
                issuer=issuer.x509,
                algorithm=hashes.SHA1(),
                cert_status=status,
                this_update=self.now - timedelta(minutes=5),
                next_update=next_update or self.now + timedelta(days=1),
                revocation_time=self.now - timedelta(days=2) if revoked else None,
                revocation_reason=x509.ReasonFlags.key_compromise if revoked else None,
            )
            .responder_id(ocsp.OCSPResponderEncoding.HASH, signer.x509)
        )
        if responder is not None:
            builder = builder.certificates([responder.x509])
        return builder.sign(signer.key, hashes.SHA256()).public_bytes(Encoding.DER)

    @staticmethod
    def ocsp_unsuccessful() -> bytes:
        return ocsp.OCSPResponseBuilder.build_unsuccessful(
            ocsp.OCSPResponseStatus.TRY_LATER
        ).public_bytes(Encoding.DER)


@dataclass(frozen=True)
class Hierarchy:
    root: Issued
    intermediate: Issued
    leaf: Issued

    @property
    def chain(self) -> Chain:
        return Chain((self.leaf.cert, self.intermediate.cert, self.root.cert))


@pytest.fixture()
def pki() -> Pki:
    return Pki()


@pytest.fixture()
def hierarchy(pki: Pki) -> Hierarchy:
    """
    root (self-signed)
      └─ intermediate   AIA → ROOT_URL, CRL → ROOT_CRL_URL
           └─ leaf      AIA → INTERMEDIATE_URL, OCSP → OCSP_URL, CRL → CRL_URL
    """
    root = pki.root()
    intermediate = pki.intermediate(root, aia_issuers=(ROOT_URL,), crl_urls=(ROOT_CRL_URL,))
    leaf = pki.leaf(
        intermediate,
        aia_issuers=(INTERMEDIATE_URL,),
        ocsp_urls=(OCSP_URL,),
        crl_urls=(CRL_URL,),
    )
    return Hierarchy(root=root, intermediate=intermediate, leaf=leaf)
