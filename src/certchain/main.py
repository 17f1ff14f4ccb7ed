"""
Application entry point — wires dependencies and runs one CLI command.

Composition root: creates concrete adapters, injects them into the engine
components, and hands the engine to the command-line front.

This is the ONLY place where concrete adapter classes are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog for structured logging
  2. Load and validate configuration from environment
  3. Create concrete adapters (verifying HTTP transport + TLS harvester)
  4. Wire the engine (resolver, validator, revocation checker + CRL cache, batch)
  5. Run the requested command and print its output (JSON, bytes or text) to stdout

    certchain resolve leaf.pem
    certchain validate leaf.pem
    certchain revocation leaf.pem
    certchain remote example.com:443 --resolve-missing
    certchain expiry bundle.pem --warn-days 14
    certchain batch a.pem b.pem c.pem --concurrency 4
    certchain export leaf.pem --format pem --intermediates-only
    certchain visualize leaf.pem --format table --with-revocation
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog
from railway import ErrorCode, Result

from certchain import __version__
from certchain.adapters.harvester import UnverifiedChainHarvester
from certchain.adapters.http_client import VerifyingHttpTransport
from certchain.batch import BatchOrchestrator, BatchSummary
from certchain.config import EngineSettings
from certchain.crl_cache import CrlCache
from certchain.domain.trust import RootPool
from certchain.pipeline import CertChainEngine, ExportFormat, export_chain
from certchain.resolver import ChainResolver
from certchain.revocation import RevocationChecker
from certchain.validator import TrustValidator
from certchain.visualize import VisualFormat


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Log lines go to stderr so that stdout carries only the command's output.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def create_engine(settings: EngineSettings, root_pool: RootPool | None = None) -> Result[CertChainEngine]:
    """
    Instantiate all concrete components from settings.

    The root pool defaults to certifi's Mozilla bundle.
    """
    pool_result = Result.success(root_pool) if root_pool is not None else RootPool.system()
    transport = VerifyingHttpTransport(user_agent=settings.user_agent)
    crl_cache = CrlCache(
        max_entries=settings.crl_cache.max_entries,
        max_bytes=settings.crl_cache.max_bytes,
        stale_grace=settings.crl_cache.stale_grace,
    )
    return pool_result.map(
        lambda pool: CertChainEngine(
            resolver=ChainResolver(transport),
            validator=TrustValidator(),
            revocation=RevocationChecker(transport, crl_cache),
            harvester=UnverifiedChainHarvester(),
            orchestrator=BatchOrchestrator(settings.batch_concurrency),
            root_pool=pool,
            settings=settings,
        )
    )


# ─────────────────────── Command-line front ───────────────────────


def _read_input(path: str) -> Result[bytes]:
    return Result.from_computation(
        lambda: Path(path).read_bytes(),
        ErrorCode.INPUT_ERROR,
        f"Cannot read {path}",
    )


def _split_target(target: str) -> Result[tuple[str, int]]:
    host, sep, port = target.rpartition(":")
    if not sep:
        return Result.success((target, 443))
    if not port.isdigit():
        return Result.failure(ErrorCode.INPUT_ERROR, f"Invalid port in {target!r}")
    return Result.success((host.strip("[]"), int(port)))


def _to_json(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    return value


def _run_command(engine: CertChainEngine, args: argparse.Namespace) -> Result[Any]:
    match args.command:
        case "resolve":
            return _read_input(args.input).flat_map(engine.resolve)
        case "validate":
            return _read_input(args.input).flat_map(engine.validate)
        case "revocation":
            return _read_input(args.input).flat_map(engine.check_revocation)
        case "remote":
            return _split_target(args.target).flat_map(
                lambda hp: engine.fetch_remote(hp[0], hp[1], resolve_missing=args.resolve_missing)
            )
        case "expiry":
            return _read_input(args.input).flat_map(lambda raw: engine.check_expiry(raw, args.warn_days))
        case "batch":
            return Result.all_of(_read_input(p) for p in args.inputs).flat_map(
                lambda raws: engine.batch_resolve(raws, args.concurrency)
            ).map(
                lambda results: {
                    "summary": BatchSummary.of(results).to_dict(),
                    "results": [
                        {**r.to_dict(), "item": args.inputs[r.index]} for r in results
                    ],
                }
            )
        case "export":
            return (
                _read_input(args.input)
                .flat_map(engine.resolve)
                .flat_map(lambda outcome: export_chain(outcome.chain, args.format, args.intermediates_only))
            )
        case "visualize":
            return _read_input(args.input).flat_map(
                lambda raw: engine.visualize(raw, args.format, with_revocation=args.with_revocation)
            )
    return Result.failure(ErrorCode.INPUT_ERROR, f"Unknown command {args.command!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="certchain", description="X.509 chain resolver and validator")
    parser.add_argument("--version", action="version", version=f"certchain {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("resolve", "complete a certificate's chain via AIA"),
        ("validate", "resolve and validate against the system root pool"),
        ("revocation", "resolve and check revocation of every certificate"),
    ):
        sub.add_parser(name, help=help_text).add_argument("input", help="PEM/DER/PKCS7 file")

    remote = sub.add_parser("remote", help="harvest the chain a TLS server presents")
    remote.add_argument("target", help="host or host:port")
    remote.add_argument("--resolve-missing", action="store_true", help="fetch missing intermediates via AIA")

    expiry = sub.add_parser("expiry", help="report expired and expiring certificates in a bundle")
    expiry.add_argument("input")
    expiry.add_argument("--warn-days", type=int, default=None)

    batch = sub.add_parser("batch", help="resolve many certificates concurrently")
    batch.add_argument("inputs", nargs="+")
    batch.add_argument("--concurrency", type=int, default=None)

    export = sub.add_parser("export", help="resolve and write the chain in another format")
    export.add_argument("input")
    export.add_argument("--format", choices=[f.value for f in ExportFormat], default=ExportFormat.PEM.value)
    export.add_argument("--intermediates-only", action="store_true")

    visualize = sub.add_parser("visualize", help="resolve and draw the chain as a tree, table or JSON")
    visualize.add_argument("input")
    visualize.add_argument("--format", choices=[f.value for f in VisualFormat], default=VisualFormat.TREE.value)
    visualize.add_argument("--with-revocation", action="store_true", help="show each certificate's revocation status")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, wire dependencies, run one command. Returns the exit status."""
    args = build_parser().parse_args(argv)

    try:
        settings = EngineSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        return 2

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.debug("app.starting", version=__version__, command=args.command)

    result = create_engine(settings).flat_map(lambda engine: _run_command(engine, args))
    if result.is_failure():
        err = result.error()
        log.error("app.command_failed", command=args.command, code=err.code.value, error=err.message)
        print(json.dumps({"error": err.to_dict()}, indent=2), file=sys.stderr)  # noqa: T201
        return 1

    value = result.value()
    if isinstance(value, bytes):
        sys.stdout.buffer.write(value)
        sys.stdout.flush()
    else:
        print(json.dumps(_to_json(value), indent=2))  # noqa: T201
    return 0


if __name__ == "__main__":
    sys.exit(main())
