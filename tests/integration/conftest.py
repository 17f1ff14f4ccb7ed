"""
Integration test fixtures — loopback servers on 127.0.0.1.

Provides a real listening socket per test, driven by a small handler:
  - tls_server:      stdlib ssl server presenting a configurable certificate list
  - garbage_server:  answers a ClientHello with plain-text HTTP
  - silent_server:   accepts and never speaks (timeouts, cancellation)
  - drip_server:     plain HTTP 200 whose 8-byte body arrives one byte per 0.5 s
  - closed_port:     a port nothing listens on

No external network access is needed.
"""

from __future__ import annotations

import contextlib
import socket
import ssl
import threading
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import pytest

from tests.conftest import Issued

Handler = Callable[[socket.socket, threading.Event], None]


class LoopbackServer:
    """Accepts connections on 127.0.0.1 in a background thread and hands each to `handler`."""

    def __init__(self, handler: Handler) -> None:
        self._handler = handler
        self._stop = threading.Event()
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(8)
        self._listener.settimeout(0.1)
        self.port: int = self._listener.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._listener.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            with conn, contextlib.suppress(OSError):
                self._handler(conn, self._stop)

    def close(self) -> None:
        self._stop.set()
        self._thread.join(timeout=5)
        self._listener.close()


def _tls_handler(ssl_context: ssl.SSLContext) -> Handler:
    def _handle(conn: socket.socket, stop: threading.Event) -> None:
        conn.settimeout(5)
        with ssl_context.wrap_socket(conn, server_side=True) as tls:
            # wait for the client to hang up (close_notify or FIN)
            tls.recv(1)

    return _handle


def _garbage_handler(conn: socket.socket, stop: threading.Event) -> None:
    conn.settimeout(5)
    conn.recv(4096)
    conn.sendall(b"HTTP/1.1 400 Bad Request\r\nContent-Length: 0\r\n\r\n")


def _silent_handler(conn: socket.socket, stop: threading.Event) -> None:
    stop.wait(10)


def _drip_handler(conn: socket.socket, stop: threading.Event) -> None:
    conn.settimeout(5)
    conn.recv(4096)
    conn.sendall(b"HTTP/1.1 200 OK\r\nContent-Type: application/pkix-crl\r\nContent-Length: 8\r\n\r\n")
    for _ in range(8):
        if stop.wait(0.5):
            return
        conn.sendall(b"x")


@pytest.fixture()
def tls_server(tmp_path: Path) -> Iterator[Callable[[Sequence[Issued]], LoopbackServer]]:
    """Factory: start a TLS server presenting `presented` (first entry's key is the server key)."""
    servers: list[LoopbackServer] = []

    def _start(presented: Sequence[Issued]) -> LoopbackServer:
        certfile = tmp_path / f"chain-{len(servers)}.pem"
        keyfile = tmp_path / f"key-{len(servers)}.pem"
        certfile.write_bytes(b"".join(item.pem for item in presented))
        keyfile.write_bytes(presented[0].key_pem)
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(certfile, keyfile)
        server = LoopbackServer(_tls_handler(ssl_context))
        servers.append(server)
        return server

    yield _start
    for server in servers:
        server.close()


@pytest.fixture()
def garbage_server() -> Iterator[LoopbackServer]:
    server = LoopbackServer(_garbage_handler)
    yield server
    server.close()


@pytest.fixture()
def silent_server() -> Iterator[LoopbackServer]:
    server = LoopbackServer(_silent_handler)
    yield server
    server.close()


@pytest.fixture()
def closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture()
def drip_server() -> Iterator[LoopbackServer]:
    server = LoopbackServer(_drip_handler)
    yield server
    server.close()


@pytest.fixture()
def no_proxy(monkeypatch: pytest.MonkeyPatch) -> None:
    """Loopback HTTP must not be routed through a proxy from the environment."""
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)
