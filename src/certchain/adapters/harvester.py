"""
TLS chain harvester — captures the certificate list a server presents.

Adapter layer — implements the ChainHarvester port using pyOpenSSL.

This is the ONLY place in the engine where certificate verification is
disabled (SSL.VERIFY_NONE): the point is to see what the server sends,
including broken, expired or self-signed chains. The harvested chain is
never trusted as such; callers hand it to the validator.

  hostname, port
    → TCP connect (timeout)            → UNREACHABLE_ERROR / TIMEOUT_ERROR
    → non-blocking TLS handshake, SNI  → HANDSHAKE_ERROR / TIMEOUT_ERROR / CANCELLED
    → peer chain, handshake order      → Chain (no reordering, no dedup)

The handshake loop polls the socket in short slices so both the deadline
and the caller's cancel event are honoured mid-handshake.
"""

from __future__ import annotations

import contextlib
import ipaddress
import select
import socket
import time

import structlog
from OpenSSL import SSL
from railway import ErrorCode, Result

from certchain.adapters.codec import certificate_from_x509
from certchain.domain.context import CallContext
from certchain.domain.models import Chain

log = structlog.get_logger()

_POLL_INTERVAL_SECONDS = 0.05
_MAX_HOSTNAME_LENGTH = 253


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def _validate_target(hostname: str, port: int, timeout: float) -> Result[str]:
    if not isinstance(hostname, str) or not hostname.strip():
        return Result.failure(ErrorCode.INPUT_ERROR, "Hostname must not be empty")
    host = hostname.strip()
    if len(host) > _MAX_HOSTNAME_LENGTH or any(ch.isspace() or ch in "/?#@" for ch in host):
        return Result.failure(ErrorCode.INPUT_ERROR, f"Invalid hostname {hostname!r}")
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        return Result.failure(ErrorCode.INPUT_ERROR, f"Port {port!r} is out of range 1-65535")
    if timeout <= 0:
        return Result.failure(ErrorCode.INPUT_ERROR, "Timeout must be positive")
    return Result.success(host)


class UnverifiedChainHarvester:
    """
    Dial a TLS endpoint with verification disabled and return its presented chain.

    Implements the ChainHarvester port. Used for harvesting only; AIA, OCSP
    and CRL traffic goes through the verifying HTTP transport.
    """

    def fetch(
        self,
        hostname: str,
        port: int = 443,
        timeout: float = 10.0,
        context: CallContext | None = None,
    ) -> Result[Chain]:
        ctx = context or CallContext.background()
        return _validate_target(hostname, port, timeout).flat_map(
            lambda host: ctx.check().flat_map(lambda _: self._harvest(host, port, ctx.clip(timeout), ctx))
        )

    def _harvest(self, host: str, port: int, timeout: float, ctx: CallContext) -> Result[Chain]:
        deadline = time.monotonic() + timeout
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except socket.gaierror as e:
            return Result.failure(ErrorCode.UNREACHABLE_ERROR, f"Cannot resolve {host}: {e}", e)
        except TimeoutError as e:
            return Result.failure(ErrorCode.TIMEOUT_ERROR, f"Connect to {host}:{port} timed out", e)
        except OSError as e:
            return Result.failure(ErrorCode.UNREACHABLE_ERROR, f"Cannot connect to {host}:{port}: {e}", e)

        log.debug("harvester.connected", host=host, port=port)
        with contextlib.closing(sock):
            sock.setblocking(False)
            conn = SSL.Connection(self._ssl_context(), sock)
            if not _is_ip_literal(host):
                conn.set_tlsext_host_name(host.encode("idna"))
            conn.set_connect_state()
            return self._handshake(conn, sock, host, port, deadline, ctx).flat_map(
                lambda _: self._collect(conn, host, port)
            )

    @staticmethod
    def _ssl_context() -> SSL.Context:
        ssl_context = SSL.Context(SSL.TLS_CLIENT_METHOD)
        ssl_context.set_verify(SSL.VERIFY_NONE)
        return ssl_context

    @staticmethod
    def _handshake(
        conn: SSL.Connection,
        sock: socket.socket,
        host: str,
        port: int,
        deadline: float,
        ctx: CallContext,
    ) -> Result[SSL.Connection]:
        while True:
            if ctx.cancelled:
                return Result.failure(ErrorCode.CANCELLED, f"Handshake with {host}:{port} cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return Result.failure(ErrorCode.TIMEOUT_ERROR, f"Handshake with {host}:{port} timed out")
            slice_ = min(remaining, _POLL_INTERVAL_SECONDS)
            try:
                conn.do_handshake()
                return Result.success(conn)
            except SSL.WantReadError:
                select.select([sock], [], [], slice_)
            except SSL.WantWriteError:
                select.select([], [sock], [], slice_)
            except SSL.Error as e:
                log.debug("harvester.handshake_failed", host=host, port=port, error=str(e))
                return Result.failure(ErrorCode.HANDSHAKE_ERROR, f"TLS handshake with {host}:{port} failed: {e}", e)

    @staticmethod
    def _collect(conn: SSL.Connection, host: str, port: int) -> Result[Chain]:
        presented = conn.get_peer_cert_chain() or []
        with contextlib.suppress(SSL.Error):
            conn.shutdown()
        if not presented:
            return Result.failure(ErrorCode.HANDSHAKE_ERROR, f"{host}:{port} presented no certificates")
        return Result.from_computation(
            lambda: Chain(tuple(certificate_from_x509(c.to_cryptography()) for c in presented)),
            ErrorCode.HANDSHAKE_ERROR,
            f"{host}:{port} presented an unparseable certificate",
        ).peek(lambda chain: log.info("harvester.harvested", host=host, port=port, length=len(chain)))
