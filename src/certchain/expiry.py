"""
Expiry report — classifies certificates as expired, expiring soon, or valid.

Pure function over a bundle; `at` defaults to now (UTC). A certificate is
"expiring soon" when it expires within `warn_days` days (inclusive).
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from certchain.domain.models import Certificate, ExpiryNotice, ExpiryReport, ExpiryStatus

DEFAULT_WARN_DAYS = 30


def _classify(days_left: int, expired: bool, warn_days: int) -> ExpiryStatus:
    if expired:
        return ExpiryStatus.EXPIRED
    if days_left <= warn_days:
        return ExpiryStatus.EXPIRING_SOON
    return ExpiryStatus.VALID


def check_expiry(
    certs: Iterable[Certificate],
    warn_days: int = DEFAULT_WARN_DAYS,
    at: datetime | None = None,
) -> ExpiryReport:
    moment = at or datetime.now(UTC)
    notices = []
    for index, cert in enumerate(certs):
        remaining = cert.not_after - moment
        notices.append(
            ExpiryNotice(
                index=index,
                subject=cert.subject,
                not_after=cert.not_after,
                days_until_expiry=remaining.days,
                status=_classify(remaining.days, moment > cert.not_after, warn_days),
            )
        )
    return ExpiryReport(notices=tuple(notices), warn_days=warn_days)
