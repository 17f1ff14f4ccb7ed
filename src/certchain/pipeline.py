"""
Pipeline — railway-composed certificate operations behind one facade.

Domain layer — no I/O of its own. Every network call goes through the
components injected by the composition root (certchain.main).

Each operation connects stages via flat_map, forming a railway:

  resolve:           decode → resolve
  validate:          decode → resolve → validate
  check_revocation:  decode → resolve → check_chain
  fetch_remote:      harvest (→ resolve missing intermediates)
  check_expiry:      decode bundle → expiry report
  visualize:         decode → resolve (→ check_chain) → tree / table / json
  batch_resolve:     batch of resolve, one Result per input

Each stage returns Result[T]. Failures short-circuit automatically
through the ROP railway — no try/except needed.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from enum import Enum, unique

from railway import ErrorCode, Result

from certchain.adapters.codec import decode_certificate, decode_certificates, encode_der, encode_pem_bundle
from certchain.batch import BatchOrchestrator
from certchain.config import EngineSettings
from certchain.domain.context import CallContext
from certchain.domain.models import (
    BatchResult,
    CacheMetrics,
    Certificate,
    Chain,
    ExpiryReport,
    ResolutionOutcome,
    RevocationRecord,
    ValidationOutcome,
)
from certchain.domain.ports import ChainHarvester
from certchain.domain.trust import RootPool
from certchain.expiry import check_expiry
from certchain.resolver import ChainResolver, ResolveOptions
from certchain.revocation import RevocationChecker, RevocationOptions
from certchain.validator import TrustValidator
from certchain.visualize import VisualFormat, render_chain


@unique
class ExportFormat(Enum):
    PEM = "pem"
    DER = "der"
    JSON = "json"


def export_chain(chain: Chain, fmt: ExportFormat | str = ExportFormat.PEM, intermediates_only: bool = False) -> Result[bytes]:
    """
    Serialize a chain as a PEM bundle, concatenated DER, or JSON.

    intermediates_only drops the leaf and a trailing self-signed root.
    """
    try:
        export_format = fmt if isinstance(fmt, ExportFormat) else ExportFormat(str(fmt).lower())
    except ValueError:
        return Result.failure(ErrorCode.INPUT_ERROR, f"Unknown export format {fmt!r}")

    certs = chain.intermediates() if intermediates_only else chain.certificates
    match export_format:
        case ExportFormat.PEM:
            return Result.success(encode_pem_bundle(certs))
        case ExportFormat.DER:
            return Result.success(b"".join(encode_der(c) for c in certs))
        case ExportFormat.JSON:
            return Result.success(json.dumps(Chain(tuple(certs)).to_dict(), indent=2).encode("utf-8"))
    raise TypeError("unreachable")  # pragma: no cover


class CertChainEngine:
    """Facade wiring resolver, validator, revocation checker, harvester and batch orchestrator."""

    def __init__(
        self,
        resolver: ChainResolver,
        validator: TrustValidator,
        revocation: RevocationChecker,
        harvester: ChainHarvester,
        orchestrator: BatchOrchestrator,
        root_pool: RootPool,
        settings: EngineSettings | None = None,
    ) -> None:
        self._resolver = resolver
        self._validator = validator
        self._revocation = revocation
        self._harvester = harvester
        self._orchestrator = orchestrator
        self._root_pool = root_pool
        self._settings = settings or EngineSettings()

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def root_pool(self) -> RootPool:
        return self._root_pool

    def resolve_options(self, **overrides: object) -> ResolveOptions:
        """Resolver options from settings, with the engine's root pool for completion."""
        options = ResolveOptions(
            max_depth=self._settings.max_depth,
            per_fetch_timeout=self._settings.timeout_seconds,
            include_root=self._settings.include_root,
            root_pool=self._root_pool,
        )
        return replace(options, **overrides)  # type: ignore[arg-type]

    def revocation_options(self) -> RevocationOptions:
        return RevocationOptions(prefer_ocsp=self._settings.prefer_ocsp, timeout=self._settings.timeout_seconds)

    # ─────────────────────── Single-certificate operations ───────────────────────

    def resolve(
        self,
        raw: bytes | str | Certificate,
        options: ResolveOptions | None = None,
        context: CallContext | None = None,
    ) -> Result[ResolutionOutcome]:
        return _as_certificate(raw).flat_map(
            lambda cert: self._resolver.resolve(cert, options or self.resolve_options(), context)
        )

    def validate(
        self,
        raw_or_chain: bytes | str | Certificate | Chain,
        at: datetime | None = None,
        context: CallContext | None = None,
    ) -> Result[ValidationOutcome]:
        return self._full_chain(raw_or_chain, context).flat_map(
            lambda chain: self._validator.validate(chain, self._root_pool, at)
        )

    def check_revocation(
        self,
        raw_or_chain: bytes | str | Certificate | Chain,
        options: RevocationOptions | None = None,
        context: CallContext | None = None,
    ) -> Result[tuple[RevocationRecord, ...]]:
        return self._full_chain(raw_or_chain, context).flat_map(
            lambda chain: self._revocation.check_chain(chain, options or self.revocation_options(), context)
        )

    def fetch_remote(
        self,
        hostname: str,
        port: int = 443,
        resolve_missing: bool = False,
        context: CallContext | None = None,
    ) -> Result[Chain]:
        """
        Harvest the chain a TLS endpoint presents.

        With resolve_missing=True, intermediates the server failed to send
        are fetched via AIA from the presented terminal certificate.
        """
        harvested = self._harvester.fetch(hostname, port, self._settings.timeout_seconds, context)
        if not resolve_missing:
            return harvested
        return harvested.flat_map(
            lambda chain: self._resolver.resolve(chain.terminal, self.resolve_options(), context).map(
                lambda outcome: Chain(chain.certificates + outcome.chain.certificates[1:])
            )
        )

    def check_expiry(
        self,
        raw: bytes | str,
        warn_days: int | None = None,
        at: datetime | None = None,
    ) -> Result[ExpiryReport]:
        window = self._settings.warn_days if warn_days is None else warn_days
        if window < 0:
            return Result.failure(ErrorCode.INPUT_ERROR, "warn_days must not be negative")
        return decode_certificates(raw).map(lambda certs: check_expiry(certs, window, at))

    def visualize(
        self,
        raw_or_chain: bytes | str | Certificate | Chain,
        fmt: VisualFormat | str = VisualFormat.TREE,
        with_revocation: bool = False,
        context: CallContext | None = None,
    ) -> Result[bytes]:
        """Render the full chain; with_revocation adds a status per certificate."""
        chain_result = self._full_chain(raw_or_chain, context)
        if not with_revocation:
            return chain_result.flat_map(lambda chain: render_chain(chain, fmt))
        return chain_result.flat_map(
            lambda chain: self._revocation.check_chain(chain, self.revocation_options(), context).flat_map(
                lambda records: render_chain(chain, fmt, records)
            )
        )

    # ─────────────────────── Batch ───────────────────────

    def batch_resolve(
        self,
        inputs: Sequence[bytes | str],
        concurrency: int | None = None,
        context: CallContext | None = None,
    ) -> Result[list[BatchResult[ResolutionOutcome]]]:
        """Resolve many certificates concurrently; each item gets its own deadline."""
        item_timeout = self._settings.timeout_seconds
        return self._orchestrator.run(
            inputs,
            lambda raw, ctx: self.resolve(raw, context=ctx.child(item_timeout)),
            concurrency if concurrency is not None else self._settings.batch_concurrency,
            context,
        )

    # ─────────────────────── Monitoring ───────────────────────

    def crl_cache_metrics(self) -> CacheMetrics:
        return self._revocation.crl_cache.metrics()

    def _full_chain(
        self,
        raw_or_chain: bytes | str | Certificate | Chain,
        context: CallContext | None,
    ) -> Result[Chain]:
        if isinstance(raw_or_chain, Chain):
            return Result.success(raw_or_chain)
        return self.resolve(raw_or_chain, self.resolve_options(include_root=True), context).map(
            lambda outcome: outcome.chain
        )


def _as_certificate(raw: bytes | str | Certificate | None) -> Result[Certificate]:
    if isinstance(raw, Certificate):
        return Result.success(raw)
    if raw is None:
        return Result.failure(ErrorCode.INPUT_ERROR, "Certificate data must not be None")
    return decode_certificate(raw)
