"""
HTTP adapter — certificate-verifying transport for AIA, OCSP and CRL traffic.

Adapter layer — implements the HttpFetcher port using httpx for sync HTTP calls.

  GET  {aia ca-issuers url}   → issuer certificate (PEM / DER / PKCS7)
  GET  {crl distribution pt}  → CRL (DER / PEM)
  POST {ocsp responder}       → OCSP response (application/ocsp-response)

TLS verification is always on (verify=True). The verification-disabled
transport used to harvest server chains lives in adapters.harvester and is
never used here.

No generic retry/backoff: the only fallback in the engine is OCSP → CRL.

Deadline and cancellation:
  - every request timeout is clipped to the caller's remaining deadline
  - the exchange runs on a worker thread; the caller returns as soon as the
    deadline passes or the cancel event fires, even mid-connect
  - bodies are streamed and the deadline is checked per chunk, so a server
    dripping bytes cannot stretch a request past it

All HTTP errors are captured into Result failures — no exceptions leak to
the business logic layer.
"""

from __future__ import annotations

import threading
import time

import httpx
import structlog
from railway import ErrorCode, LoggingExecutionContext
from railway.result import Result

from certchain import __version__
from certchain.domain.context import CallContext

log = structlog.get_logger()

DEFAULT_USER_AGENT = f"certchain/{__version__}"
DEFAULT_MAX_RESPONSE_BYTES = 16 * 1024 * 1024
_POLL_INTERVAL_SECONDS = 0.05


class VerifyingHttpTransport:
    """
    Fetch AIA certificates, CRLs and OCSP responses over verified HTTP(S).

    Implements the HttpFetcher port.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
    ) -> None:
        self._user_agent = user_agent
        self._max_response_bytes = max_response_bytes

    def get(self, url: str, timeout: float, context: CallContext | None = None) -> Result[bytes]:
        """GET `url`; Success(body) on HTTP 200 with a non-empty body."""
        return self._send("GET", url, timeout, context)

    def post(
        self,
        url: str,
        body: bytes,
        content_type: str,
        timeout: float,
        context: CallContext | None = None,
    ) -> Result[bytes]:
        """POST `body` to `url`; used for OCSP requests."""
        return self._send(
            "POST",
            url,
            timeout,
            context,
            content=body,
            headers={"Content-Type": content_type},
        )

    def _send(
        self,
        method: str,
        url: str,
        timeout: float,
        context: CallContext | None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> Result[bytes]:
        ctx = context or CallContext.background()
        return ctx.check().flat_map(
            lambda _: self._supervise(method, url, ctx.clip(timeout), ctx, content, headers)
        )

    def _supervise(
        self,
        method: str,
        url: str,
        timeout: float,
        ctx: CallContext,
        content: bytes | None,
        headers: dict[str, str] | None,
    ) -> Result[bytes]:
        """
        Run the exchange on a worker thread and return on whichever comes
        first: its result, the deadline, or the caller's cancel event.

        httpx cannot be interrupted while it connects or waits for headers;
        an abandoned worker stops by itself within `timeout` and its result
        is dropped.
        """
        deadline = time.monotonic() + timeout
        outcome: list[Result[bytes]] = []

        def _work() -> None:
            outcome.append(
                LoggingExecutionContext(operation=f"http {method}").execute(
                    lambda: self._exchange(method, url, timeout, deadline, ctx, content, headers)
                )
            )

        worker = threading.Thread(target=_work, name="certchain-http", daemon=True)
        worker.start()
        while worker.is_alive():
            if ctx.cancelled:
                log.debug("http.cancelled", url=url)
                return Result.failure(ErrorCode.CANCELLED, f"Fetch of {url} cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                log.debug("http.timeout", url=url, timeout=timeout)
                return Result.failure(ErrorCode.TIMEOUT_ERROR, f"{method} {url} timed out after {timeout:.1f}s")
            worker.join(min(remaining, _POLL_INTERVAL_SECONDS))
        return outcome[0]

    def _exchange(
        self,
        method: str,
        url: str,
        timeout: float,
        deadline: float,
        ctx: CallContext,
        content: bytes | None,
        headers: dict[str, str] | None,
    ) -> Result[bytes]:
        request_headers = {"User-Agent": self._user_agent, **(headers or {})}
        try:
            with httpx.Client(timeout=timeout, verify=True, follow_redirects=True) as client:
                with client.stream(method, url, content=content, headers=request_headers) as response:
                    if response.status_code != httpx.codes.OK:
                        log.debug("http.bad_status", url=url, status=response.status_code)
                        return Result.failure(
                            ErrorCode.NETWORK_ERROR,
                            f"{method} {url} returned HTTP {response.status_code}",
                        )
                    return self._read_body(response, method, url, timeout, deadline, ctx)
        except httpx.TimeoutException as e:
            log.debug("http.timeout", url=url, timeout=timeout)
            return Result.failure(ErrorCode.TIMEOUT_ERROR, f"{method} {url} timed out after {timeout:.1f}s", e)
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            return Result.failure(ErrorCode.NETWORK_ERROR, f"Unsupported URL {url!r}: {e}", e)
        except httpx.HTTPError as e:
            log.debug("http.error", url=url, error=str(e))
            return Result.failure(ErrorCode.NETWORK_ERROR, f"{method} {url} failed: {e}", e)

    def _read_body(
        self,
        response: httpx.Response,
        method: str,
        url: str,
        timeout: float,
        deadline: float,
        ctx: CallContext,
    ) -> Result[bytes]:
        # httpx times each read separately; the whole body must arrive before the deadline
        chunks: list[bytes] = []
        size = 0
        for chunk in response.iter_bytes():
            if ctx.cancelled:
                return Result.failure(ErrorCode.CANCELLED, f"Fetch of {url} cancelled")
            if ctx.expired or time.monotonic() >= deadline:
                log.debug("http.body_timeout", url=url, received_bytes=size)
                return Result.failure(ErrorCode.TIMEOUT_ERROR, f"{method} {url} timed out after {timeout:.1f}s")
            size += len(chunk)
            if size > self._max_response_bytes:
                return Result.failure(
                    ErrorCode.PROTOCOL_ERROR,
                    f"Response from {url} exceeds {self._max_response_bytes} bytes",
                )
            chunks.append(chunk)

        if size == 0:
            return Result.failure(ErrorCode.PROTOCOL_ERROR, f"Empty response from {url}")
        log.debug("http.fetched", url=url, size_bytes=size)
        return Result.success(b"".join(chunks))
