"""
Ports — Protocol-based interfaces for infrastructure adapters.

These define WHAT the engine needs (contracts) without specifying
HOW it's done (implementation). Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy
the contract simply by implementing the methods — no inheritance.

There are deliberately two network ports:
  1. HttpFetcher    → AIA, OCSP and CRL traffic, always certificate-verifying
  2. ChainHarvester → TLS dial that captures what a server presents, with
                      verification disabled; used for nothing else
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from railway.result import Result

from certchain.domain.context import CallContext
from certchain.domain.models import Chain


@runtime_checkable
class HttpFetcher(Protocol):
    """
    Port: fetch bytes over HTTP(S) with a verifying transport.

    Failures map to NETWORK_ERROR (connect/DNS/HTTP status),
    TIMEOUT_ERROR, PROTOCOL_ERROR (empty/oversized body) or CANCELLED.
    """

    def get(self, url: str, timeout: float, context: CallContext | None = None) -> Result[bytes]: ...

    def post(
        self,
        url: str,
        body: bytes,
        content_type: str,
        timeout: float,
        context: CallContext | None = None,
    ) -> Result[bytes]: ...


@runtime_checkable
class ChainHarvester(Protocol):
    """
    Port: capture the certificate list a TLS endpoint presents.

    The returned Chain is in handshake order with no reordering or
    deduplication. Trust is NOT evaluated here.
    """

    def fetch(
        self,
        hostname: str,
        port: int = 443,
        timeout: float = 10.0,
        context: CallContext | None = None,
    ) -> Result[Chain]: ...
