"""
Chain visualization — human-readable renderings of a resolved chain.

Pure functions over a Chain and, optionally, the revocation records of a
previous check. Nothing here fetches or validates.

  tree:   ├── [✓] leaf.example.com (End-Entity Certificate)
          ├── [✓] Example Intermediate CA (Intermediate CA Certificate)
          └── [✓] Example Root CA (Root CA Certificate)

  table:  markdown table, one row per certificate
  json:   dict with per-certificate details and signed_by relationships

Status icons: ✓ good, ✗ revoked, ⚠ unknown. A trailing self-issued root
without a record is shown as good, since it is the trust anchor and is
never checked. Without any records the icon is left out of the tree and
the status reads "not checked".

Records are matched to certificates by issuer name and serial number.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any

import structlog
from asn1crypto import x509 as asn1_x509
from railway import ErrorCode, Result

from certchain.domain.models import Certificate, Chain, RevocationRecord, RevocationStatus

log = structlog.get_logger()

END_ENTITY = "End-Entity Certificate"
INTERMEDIATE = "Intermediate CA Certificate"
ROOT = "Root CA Certificate"

NOT_CHECKED = "not checked"

_ICONS = {
    RevocationStatus.GOOD: "✓",
    RevocationStatus.REVOKED: "✗",
    RevocationStatus.UNKNOWN: "⚠",
}


@unique
class VisualFormat(Enum):
    TREE = "tree"
    TABLE = "table"
    JSON = "json"


# ─────────────────────── Helpers ───────────────────────


def certificate_role(chain: Chain, index: int) -> str:
    """A lone self-issued certificate is a root; otherwise position decides."""
    cert = chain[index]
    if index == len(chain) - 1 and cert.is_self_issued:
        return ROOT
    if index == 0:
        return END_ENTITY
    return INTERMEDIATE


def common_name(name_der: bytes, fallback: str) -> str:
    value = asn1_x509.Name.load(name_der).native.get("common_name")
    if isinstance(value, list):
        value = value[0] if value else None
    return value or fallback


def key_description(cert: Certificate) -> str:
    if cert.public_key_size is None:
        return cert.public_key_algorithm
    return f"{cert.public_key_size}-bit {cert.public_key_algorithm}"


def _status_of(
    chain: Chain,
    index: int,
    records: Sequence[RevocationRecord] | None,
) -> RevocationStatus | None:
    if records is None:
        return None
    cert = chain[index]
    for record in records:
        if record.serial_number == cert.serial_number and record.issuer == cert.issuer:
            return record.status
    if certificate_role(chain, index) == ROOT:
        return RevocationStatus.GOOD
    return RevocationStatus.UNKNOWN


def _status_text(status: RevocationStatus | None) -> str:
    if status is None:
        return NOT_CHECKED
    return f"{_ICONS[status]} {status.value}"


# ─────────────────────── Renderers ───────────────────────


def render_tree(chain: Chain, records: Sequence[RevocationRecord] | None = None) -> str:
    if len(chain) == 0:
        return "No certificates in chain"

    lines = []
    for index, cert in enumerate(chain):
        connector = "└── " if index == len(chain) - 1 else "├── "
        status = _status_of(chain, index, records)
        icon = f"[{_ICONS[status]}] " if status is not None else ""
        name = common_name(cert.subject_der, cert.subject)
        lines.append(f"{connector}{icon}{name} ({certificate_role(chain, index)})")
    return "\n".join(lines) + "\n"


def render_table(chain: Chain, records: Sequence[RevocationRecord] | None = None) -> str:
    if len(chain) == 0:
        return "No certificates to display"

    header = ("#", "Role", "Subject", "Issuer", "Valid Until", "Key Size", "Status")
    rows = [
        (
            str(index + 1),
            certificate_role(chain, index),
            common_name(cert.subject_der, cert.subject),
            common_name(cert.issuer_der, cert.issuer),
            cert.not_after.strftime("%Y-%m-%d"),
            key_description(cert),
            _status_text(_status_of(chain, index, records)),
        )
        for index, cert in enumerate(chain)
    ]
    # cells must not break the markdown row
    rows = [tuple(cell.replace("|", "\\|") for cell in row) for row in rows]
    widths = [max(len(row[col]) for row in (header, *rows)) for col in range(len(header))]

    def _line(cells: Sequence[str]) -> str:
        return "| " + " | ".join(cell.ljust(width) for cell, width in zip(cells, widths)) + " |"

    separator = "|" + "|".join("-" * (width + 2) for width in widths) + "|"
    return "\n".join([_line(header), separator, *(_line(row) for row in rows)]) + "\n"


def to_visualization_dict(
    chain: Chain,
    records: Sequence[RevocationRecord] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Machine-readable rendering for graphing front-ends.

    `relationships` holds one signed_by edge per adjacent pair;
    `linked` is False where the issuer name does not match the next subject.
    """
    moment = now or datetime.now(UTC)
    broken = set(chain.broken_links())
    certificates = []
    for index, cert in enumerate(chain):
        status = _status_of(chain, index, records)
        certificates.append(
            {
                "index": index,
                "role": certificate_role(chain, index),
                "subject": cert.subject,
                "issuer": cert.issuer,
                "serial_number": cert.serial_hex,
                "signature_algorithm": cert.signature_algorithm,
                "public_key_algorithm": cert.public_key_algorithm,
                "key_size": cert.public_key_size,
                "not_before": cert.not_before.isoformat(),
                "not_after": cert.not_after.isoformat(),
                "expired": moment > cert.not_after,
                "is_ca": cert.is_ca,
                "revocation_status": status.value if status is not None else NOT_CHECKED,
            }
        )
    relationships = [
        {"from": index, "to": index + 1, "type": "signed_by", "linked": index not in broken}
        for index in range(len(chain) - 1)
    ]
    return {
        "timestamp": moment.isoformat(),
        "chain_length": len(chain),
        "certificates": certificates,
        "relationships": relationships,
    }


def render_chain(
    chain: Chain,
    fmt: VisualFormat | str = VisualFormat.TREE,
    records: Sequence[RevocationRecord] | None = None,
) -> Result[bytes]:
    """Render `chain` in the requested format as UTF-8 bytes."""
    try:
        visual_format = fmt if isinstance(fmt, VisualFormat) else VisualFormat(str(fmt).lower())
    except ValueError:
        return Result.failure(ErrorCode.INPUT_ERROR, f"Unknown visualization format {fmt!r}")

    log.debug("visualize.render", format=visual_format.value, length=len(chain), with_status=records is not None)
    match visual_format:
        case VisualFormat.TREE:
            return Result.success(render_tree(chain, records).encode("utf-8"))
        case VisualFormat.TABLE:
            return Result.success(render_table(chain, records).encode("utf-8"))
        case VisualFormat.JSON:
            document = to_visualization_dict(chain, records)
            return Result.success(json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8"))
    raise TypeError("unreachable")  # pragma: no cover
