"""
Chain resolver — walks AIA "CA Issuers" links upward from a starting certificate.

Business logic — all I/O goes through the injected HttpFetcher port.

  start certificate
    → self-signed?            stop, complete
    → depth limit reached?    stop, incomplete
    → for each AIA URL:       GET → decode (PEM → DER → PKCS7) → subject matches issuer?
    → nothing usable?         root pool lookup, else stop, incomplete
    → append issuer, repeat

An incomplete chain is a normal outcome (ResolutionOutcome.complete=False
with a reason), not a failure. The call only fails when the caller cancels,
or when the deadline is already exhausted before the first fetch.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from railway import ErrorCode, FailureDescription, Result
from railway.result import Failure, Success

from certchain.adapters.codec import decode_certificates
from certchain.domain.context import CallContext
from certchain.domain.models import Certificate, Chain, ResolutionOutcome, ResolutionStep
from certchain.domain.ports import HttpFetcher
from certchain.domain.trust import RootPool
from certchain.signatures import is_self_signed

log = structlog.get_logger()

ROOT_POOL_STEP = "root-pool"


@dataclass(frozen=True, slots=True)
class ResolveOptions:
    max_depth: int = 10
    per_fetch_timeout: float = 10.0
    include_root: bool = True
    root_pool: RootPool | None = None


def _validate_options(options: ResolveOptions) -> Result[ResolveOptions]:
    return (
        Result.success(options)
        .ensure(lambda o: o.max_depth >= 1, ErrorCode.INPUT_ERROR, "max_depth must be at least 1")
        .ensure(lambda o: o.per_fetch_timeout > 0, ErrorCode.INPUT_ERROR, "per_fetch_timeout must be positive")
    )


def _cancelled() -> Result[ResolutionOutcome]:
    return Result.failure(ErrorCode.CANCELLED, "Chain resolution cancelled by caller")


class ChainResolver:
    """Completes a certificate's chain by following AIA issuer URLs."""

    def __init__(self, fetcher: HttpFetcher) -> None:
        self._fetcher = fetcher

    def resolve(
        self,
        start: Certificate,
        options: ResolveOptions | None = None,
        context: CallContext | None = None,
    ) -> Result[ResolutionOutcome]:
        ctx = context or CallContext.background()
        return (
            Result.from_optional(start, "Start certificate must not be None")
            .flat_map(lambda _: _validate_options(options or ResolveOptions()))
            .flat_map(lambda opts: ctx.check().flat_map(lambda _: self._walk(start, opts, ctx)))
        )

    def _walk(self, start: Certificate, opts: ResolveOptions, ctx: CallContext) -> Result[ResolutionOutcome]:
        chain: list[Certificate] = [start]
        seen = {start.fingerprint_sha256}
        steps: list[ResolutionStep] = []
        current = start

        while True:
            if is_self_signed(current):
                return Result.success(self._finish(chain, steps, opts, None))

            depth = len(chain)
            if depth > opts.max_depth:
                return Result.success(self._finish(chain, steps, opts, f"maximum depth {opts.max_depth} reached"))

            issuer = self._fetch_issuer(current, depth, opts, ctx, seen, steps)
            if ctx.cancelled:
                return _cancelled()

            if issuer is None:
                issuer = self._from_root_pool(current, depth, opts, seen, steps)
            if issuer is None:
                reason = (
                    "no AIA issuer URLs"
                    if not current.aia_issuer_urls
                    else "no AIA URL yielded the issuer certificate"
                )
                log.info("resolver.incomplete", subject=current.subject, depth=depth, reason=reason)
                return Result.success(self._finish(chain, steps, opts, reason))

            chain.append(issuer)
            seen.add(issuer.fingerprint_sha256)
            current = issuer

    def _fetch_issuer(
        self,
        current: Certificate,
        depth: int,
        opts: ResolveOptions,
        ctx: CallContext,
        seen: set[str],
        steps: list[ResolutionStep],
    ) -> Certificate | None:
        for url in current.aia_issuer_urls:
            if ctx.cancelled:
                return None
            result = (
                self._fetcher.get(url, opts.per_fetch_timeout, ctx)
                .flat_map(_decode_fetched)
                .flat_map(lambda certs: _pick_issuer(current, certs, seen))
            )
            match result:
                case Success(issuer):
                    steps.append(ResolutionStep(depth, url, True, f"fetched '{issuer.subject}'"))
                    log.debug("resolver.step_succeeded", depth=depth, url=url, issuer=issuer.subject)
                    return issuer
                case Failure(err):
                    steps.append(ResolutionStep(depth, url, False, f"{err.code.value}: {err.message}"))
                    log.debug("resolver.step_failed", depth=depth, url=url, code=err.code.value, error=err.message)
        return None

    @staticmethod
    def _from_root_pool(
        current: Certificate,
        depth: int,
        opts: ResolveOptions,
        seen: set[str],
        steps: list[ResolutionStep],
    ) -> Certificate | None:
        if opts.root_pool is None:
            return None
        anchor = opts.root_pool.find_issuer(current)
        if anchor is None or anchor.fingerprint_sha256 in seen:
            return None
        steps.append(ResolutionStep(depth, ROOT_POOL_STEP, True, f"issuer '{anchor.subject}' found in root pool"))
        return anchor

    @staticmethod
    def _finish(
        chain: list[Certificate],
        steps: list[ResolutionStep],
        opts: ResolveOptions,
        incomplete_reason: str | None,
    ) -> ResolutionOutcome:
        certs = tuple(chain)
        complete = incomplete_reason is None
        if complete and not opts.include_root and len(certs) > 1:
            certs = certs[:-1]
        return ResolutionOutcome(
            chain=Chain(certs),
            complete=complete,
            steps=tuple(steps),
            incomplete_reason=incomplete_reason,
        )


def _decode_fetched(body: bytes) -> Result[tuple[Certificate, ...]]:
    return decode_certificates(body).map_failure(
        lambda err: FailureDescription(ErrorCode.PROTOCOL_ERROR, f"fetched resource is not a certificate: {err.message}")
    )


def _pick_issuer(
    current: Certificate,
    candidates: tuple[Certificate, ...],
    seen: set[str],
) -> Result[Certificate]:
    """First candidate whose subject is `current`'s issuer, unless already in the chain."""
    candidate = next((c for c in candidates if c.subject_der == current.issuer_der), None)
    if candidate is None:
        return Result.failure(
            ErrorCode.PROTOCOL_ERROR,
            f"fetched certificate subject does not match issuer '{current.issuer}'",
        )
    if candidate.fingerprint_sha256 in seen:
        return Result.failure(ErrorCode.PROTOCOL_ERROR, f"'{candidate.subject}' is already in the chain")
    return Result.success(candidate)
