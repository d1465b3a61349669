"""
Application entry point — wires dependencies and starts the chosen mode.

Composition root: creates concrete adapters and hands them to the
synchronizer. This is the ONLY place where the synchronizer's adapters are built;
everything else depends on Protocol interfaces.

Commands (`tsl-truststore <command>`):
  run    — scheduler loop: first sync after the initial delay, then every period (default)
  sync   — one synchronization, exit code 0 on success, 1 on failure
  serve  — HTTPS server (FastAPI/Uvicorn) with the scheduler in the background;
           the published bundle is the client-certificate trust anchor set
"""

from __future__ import annotations

import logging
import ssl
from collections.abc import Sequence
from typing import TypeAlias

import click
import structlog

from tsl_truststore import __version__
from tsl_truststore.adapters.http_client import HttpTrustListFetcher
from tsl_truststore.adapters.trust_store import FilesystemTrustStoreWriter
from tsl_truststore.adapters.tsl_parser import XmlTrustListParser
from tsl_truststore.config import AppSettings, ClientAuth
from tsl_truststore.domain.models import SyncSuccess
from tsl_truststore.scheduler import create_scheduler, register_shutdown_signals
from tsl_truststore.synchronizer import TrustListSynchronizer

_CERT_REQS = {
    ClientAuth.NONE: ssl.CERT_NONE,
    ClientAuth.OPTIONAL: ssl.CERT_OPTIONAL,
    ClientAuth.REQUIRED: ssl.CERT_REQUIRED,
}


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Key/value events with ISO timestamps, rendered for the console.
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
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_Adapters: TypeAlias = tuple[HttpTrustListFetcher, XmlTrustListParser, FilesystemTrustStoreWriter]


def _create_adapters(settings: AppSettings) -> _Adapters:
    """Instantiate the fetcher, parser and trust-store writer from settings."""
    fetcher = HttpTrustListFetcher(
        url=settings.tsl.url,
        timeout=settings.http_timeout_seconds,
    )
    parser = XmlTrustListParser()
    writer = FilesystemTrustStoreWriter(
        target_dir=settings.store.certs_dir,
        bundle_path=settings.store.bundle_path,
        retain_generations=settings.store.retain_generations,
    )
    return fetcher, parser, writer


def build_synchronizer(settings: AppSettings) -> TrustListSynchronizer:
    fetcher, parser, writer = _create_adapters(settings)
    return TrustListSynchronizer(fetcher, parser, writer)


# ─────────────────────── Commands ───────────────────────


def run_scheduled(settings: AppSettings) -> int:
    log = structlog.get_logger()
    synchronizer = build_synchronizer(settings)
    scheduler = create_scheduler(
        sync_fn=synchronizer.run,
        initial_delay=settings.scheduler.initial_delay,
        period=settings.scheduler.period,
    )
    register_shutdown_signals(scheduler)
    log.info(
        "app.scheduler_starting",
        initial_delay_seconds=settings.scheduler.initial_delay.total_seconds(),
        period_seconds=settings.scheduler.period.total_seconds(),
    )
    try:
        scheduler.start()
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
    return 0


def sync_once(settings: AppSettings) -> int:
    outcome = build_synchronizer(settings).run()
    return 0 if isinstance(outcome, SyncSuccess) else 1


def serve(settings: AppSettings) -> int:
    """
    Start Uvicorn on the ASGI app.

    With a server certificate configured the listener speaks TLS and asks
    for client certificates, validated against the published bundle. The
    bundle is read once at startup; restart the server to pick up a newer one.
    """
    import uvicorn

    log = structlog.get_logger()
    server = settings.server
    tls_options: dict[str, object] = {}
    if server.certfile is not None:
        tls_options = {
            "ssl_certfile": str(server.certfile),
            "ssl_keyfile": str(server.keyfile),
            "ssl_cert_reqs": _CERT_REQS[server.client_auth],
        }
        if server.client_auth is not ClientAuth.NONE:
            if settings.store.bundle_path.is_file():
                tls_options["ssl_ca_certs"] = str(settings.store.bundle_path)
            elif server.client_auth is ClientAuth.REQUIRED:
                log.error("app.bundle_missing", bundle_path=str(settings.store.bundle_path))
                return 1
            else:
                log.warning("app.bundle_missing", bundle_path=str(settings.store.bundle_path))
                tls_options["ssl_cert_reqs"] = ssl.CERT_NONE

    log.info(
        "app.server_starting",
        host=server.host,
        port=server.port,
        tls=bool(tls_options),
        client_auth=server.client_auth.value,
    )
    uvicorn.run(
        "tsl_truststore.asgi:app",
        host=server.host,
        port=server.port,
        log_level=settings.log_level.lower(),
        **tls_options,
    )
    return 0


# ─────────────────────── CLI ───────────────────────


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="tsl-truststore")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Keep a local trust store in sync with an ETSI trust list.

    Without a command, runs the scheduler loop.
    """
    try:
        settings = AppSettings()
    except Exception as e:
        click.echo(f"FATAL: Configuration error — {e}", err=True)
        ctx.exit(1)

    configure_structlog(settings.log_level)
    ctx.obj = settings
    command = ctx.invoked_subcommand or "run"
    structlog.get_logger().info(
        "app.starting",
        version=__version__,
        command=command,
        tsl_url=settings.tsl.url,
        certs_dir=str(settings.store.certs_dir),
        bundle_path=str(settings.store.bundle_path),
    )
    if ctx.invoked_subcommand is None:
        ctx.exit(run_scheduled(settings))


@cli.command("run")
@click.pass_context
def run_command(ctx: click.Context) -> None:
    """Scheduler loop: first sync after the initial delay, then every period."""
    ctx.exit(run_scheduled(ctx.obj))


@cli.command("sync")
@click.pass_context
def sync_command(ctx: click.Context) -> None:
    """One synchronization; exit code 0 on success, 1 otherwise."""
    ctx.exit(sync_once(ctx.obj))


@cli.command("serve")
@click.pass_context
def serve_command(ctx: click.Context) -> None:
    """HTTPS server with the scheduler in the background."""
    ctx.exit(serve(ctx.obj))


def main(argv: Sequence[str] | None = None) -> None:
    cli.main(args=list(argv) if argv is not None else None, prog_name="tsl-truststore")


if __name__ == "__main__":
    main()
