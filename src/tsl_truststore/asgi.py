"""
FastAPI + Uvicorn ASGI application.

Runs the trust-list synchronizer as a web service: the scheduler runs in a
background thread while Uvicorn serves probes, the manual trigger, the active
trust-store summary and the connection-info diagnostic endpoint.

Architecture:
  - FastAPI: lightweight web framework
  - Uvicorn: ASGI server; `tsl-truststore serve` starts it with TLS and the
    published bundle as the client-certificate trust anchors
  - APScheduler: runs in a background thread
  - K8s Probes: liveness (scheduler thread alive) + readiness

Entry point: tsl-truststore serve   (or: uvicorn tsl_truststore.asgi:app)
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Annotated, Any

import structlog
from apscheduler.schedulers.base import BaseScheduler
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from tsl_truststore import __version__
from tsl_truststore.adapters.tls_session import AsgiTlsSession
from tsl_truststore.adapters.trust_store import read_active_store
from tsl_truststore.config import AppSettings
from tsl_truststore.domain.models import (
    ConnectionMetadata,
    SyncFailure,
    SyncOutcome,
    SyncSkipped,
    SyncSuccess,
)
from tsl_truststore.domain.ports import TlsSessionHandle
from tsl_truststore.inspector import SessionCertificateInspector, snapshot_to_dict
from tsl_truststore.main import build_synchronizer, configure_structlog
from tsl_truststore.scheduler import create_scheduler
from tsl_truststore.synchronizer import TrustListSynchronizer

# ─────────────────────── Global State ───────────────────────
# Set during app startup; read by the endpoints below.

_scheduler_thread: threading.Thread | None = None
_scheduler_started = False
_scheduler_ready = False
_error_message: str | None = None
_settings: AppSettings | None = None
_synchronizer: TrustListSynchronizer | None = None
_inspector = SessionCertificateInspector()
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Startup: load settings, wire the synchronizer, start the scheduler thread.
    Shutdown: stop the scheduler and join its thread.
    """
    global _scheduler_thread, _scheduler_started, _scheduler_ready
    global _error_message, _settings, _synchronizer

    try:
        settings = AppSettings()
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)
    log.info(
        "asgi.startup",
        version=__version__,
        tsl_url=settings.tsl.url,
        certs_dir=str(settings.store.certs_dir),
        period_seconds=settings.scheduler.period.total_seconds(),
    )

    synchronizer = build_synchronizer(settings)
    scheduler = create_scheduler(
        sync_fn=synchronizer.run,
        initial_delay=settings.scheduler.initial_delay,
        period=settings.scheduler.period,
    )
    _settings = settings
    _synchronizer = synchronizer

    def run_scheduler(scheduler: BaseScheduler) -> None:
        global _scheduler_started, _error_message
        try:
            _scheduler_started = True
            log.info("asgi.scheduler_thread_started")
            scheduler.start()
        except Exception as e:
            _error_message = f"Scheduler error: {e}"
            log.error("asgi.scheduler_error", error=_error_message)

    _scheduler_thread = threading.Thread(target=run_scheduler, args=(scheduler,), daemon=True)
    _scheduler_thread.start()

    await asyncio.sleep(0.1)
    _scheduler_ready = True
    log.info("asgi.startup_complete")

    yield

    log.info("asgi.shutdown", reason="server stop")
    try:
        scheduler.shutdown(wait=True)
    except Exception as e:
        log.warning("asgi.scheduler_shutdown_error", error=str(e))

    if _scheduler_thread and _scheduler_thread.is_alive():
        _scheduler_thread.join(timeout=5.0)
        if _scheduler_thread.is_alive():
            log.warning("asgi.scheduler_thread_timeout", timeout_seconds=5.0)

    log.info("asgi.shutdown_complete")


# ─────────────────────── FastAPI Application ───────────────────────

app = FastAPI(
    title="tsl-truststore",
    description="ETSI trust-list synchronizer with TLS connection diagnostics",
    version=__version__,
    lifespan=lifespan,
)


def _scheduler_running() -> bool:
    return _scheduler_thread is not None and _scheduler_thread.is_alive()


def _outcome_to_dict(outcome: SyncOutcome | None) -> dict[str, Any] | None:
    match outcome:
        case None:
            return None
        case SyncSuccess():
            return {"status": "success", **asdict(outcome)}
        case SyncSkipped():
            return {"status": "skipped", "reason": outcome.reason}
        case SyncFailure():
            return {
                "status": "failed",
                "stage": outcome.stage.value,
                "error_code": outcome.error_code.value,
                "message": outcome.reason,
            }


@app.get("/health")
async def health() -> JSONResponse:
    """
    Kubernetes liveness probe.

    Returns 200 while the scheduler thread is alive and startup succeeded,
    503 otherwise.
    """
    if _error_message:
        log.warning("health.check_failed", error=_error_message)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "error": _error_message})

    if not _scheduler_running():
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "reason": "scheduler thread not running"},
        )

    return JSONResponse(status_code=200, content={"status": "healthy", "scheduler_running": True})


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Kubernetes readiness probe.

    202 while starting, 503 after a fatal error, 200 once the scheduler runs.
    Readiness does not wait for the first synchronization: the TLS listener
    serves with whatever bundle is already on disk.
    """
    if not _scheduler_ready or not _scheduler_started:
        return JSONResponse(
            status_code=202,
            content={"status": "starting", "scheduler_started": _scheduler_started},
        )

    if _error_message:
        return JSONResponse(status_code=503, content={"status": "error", "error": _error_message})

    return JSONResponse(
        status_code=200,
        content={"status": "ready", "scheduler_running": _scheduler_running()},
    )


@app.get("/info")
async def info() -> dict[str, Any]:
    """Application metadata plus the synchronizer state and last outcome."""
    return {
        "name": "tsl-truststore",
        "version": __version__,
        "scheduler_running": _scheduler_running(),
        "scheduler_started": _scheduler_started,
        "scheduler_ready": _scheduler_ready,
        "has_error": _error_message is not None,
        "sync_state": _synchronizer.state.value if _synchronizer else None,
        "last_outcome": _outcome_to_dict(_synchronizer.last_outcome if _synchronizer else None),
    }


@app.post("/trigger")
async def trigger() -> JSONResponse:
    """
    Run one synchronization now, without waiting for the timer.

    Runs in a worker thread to keep the event loop free. If a run is already
    executing the request waits for it and then runs; if another request is
    already waiting the trigger is dropped.

    Returns 200 on success, 409 when dropped, 500 on failure,
    503 when the synchronizer is not initialized yet.
    """
    if _synchronizer is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "reason": "Synchronizer not initialized"},
        )

    log.info("trigger.manual_start", source="REST")

    try:
        outcome = await asyncio.to_thread(_synchronizer.run)
    except Exception as e:
        log.error("trigger.exception", error=str(e))
        return JSONResponse(status_code=500, content={"status": "error", "error": str(e)})

    payload = _outcome_to_dict(outcome)
    match outcome:
        case SyncSuccess():
            log.info("trigger.completed", certificates_written=outcome.certificates_written)
            return JSONResponse(status_code=200, content=payload)
        case SyncSkipped():
            return JSONResponse(status_code=409, content=payload)
        case _:
            log.error("trigger.sync_failed", outcome=payload)
            return JSONResponse(status_code=500, content=payload)


@app.get("/v1/trust-store")
async def trust_store() -> JSONResponse:
    """Summary of the trust-store generation readers currently see."""
    if _settings is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "reason": "Settings not loaded"},
        )

    view = await asyncio.to_thread(
        read_active_store, _settings.store.certs_dir, _settings.store.bundle_path
    )
    return JSONResponse(
        status_code=200,
        content={
            "generation": view.generation,
            "certificateCount": len(view.certificate_files),
            "certificateFiles": list(view.certificate_files),
            "bundlePath": str(_settings.store.bundle_path),
            "bundleSha256": view.bundle_sha256,
            "bundleCertificates": view.bundle_certificates,
            "lastOutcome": _outcome_to_dict(_synchronizer.last_outcome if _synchronizer else None),
        },
    )


# ─────────────────────── Connection Info ───────────────────────


def tls_session(request: Request) -> TlsSessionHandle | None:
    """TLS session of the current connection, from the ASGI TLS extension if the server provides it."""
    extension = request.scope.get("extensions", {}).get("tls")
    if not extension:
        return None
    return AsgiTlsSession(extension)


def connection_metadata(request: Request) -> ConnectionMetadata:
    client = request.client
    http_version = request.scope.get("http_version")
    return ConnectionMetadata(
        is_secure=request.url.scheme in ("https", "wss"),
        http_version=f"HTTP/{http_version}" if http_version else None,
        remote_address=client.host if client else None,
        remote_port=client.port if client else None,
        headers=dict(request.headers),
    )


@app.get("/v1/connection-info/info")
async def connection_info(
    session: Annotated[TlsSessionHandle | None, Depends(tls_session)],
    metadata: Annotated[ConnectionMetadata, Depends(connection_metadata)],
) -> dict[str, Any]:
    """Describe this connection: protocol, cipher suite, server and client certificates."""
    snapshot = _inspector.inspect(session, metadata)
    log.debug("connection_info.inspected", secure=snapshot.is_secure, peer=snapshot.remote_address)
    return snapshot_to_dict(snapshot)
