"""
Scheduler — periodic execution of the trust-list synchronization.

Infrastructure layer — uses APScheduler (3.x) for lightweight in-process
scheduling: the first run fires after `initial_delay`, then every `period`.

A run that is still busy when the next tick fires is not started twice
(max_instances=1); ticks missed while busy collapse into one (coalesce).
The synchronizer's own single-flight guard additionally covers manual
triggers racing the timer.

Graceful shutdown: handles SIGINT/SIGTERM to stop the scheduler cleanly.
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from railway import LoggingExecutionContext
from railway.result import Result

from tsl_truststore.domain.models import SyncFailure, SyncOutcome, SyncSkipped, SyncSuccess

log = structlog.get_logger()

JOB_ID = "tsl_truststore_sync"


def _as_result(outcome: SyncOutcome) -> Result[SyncOutcome]:
    match outcome:
        case SyncFailure():
            return Result.failure(outcome.error_code, outcome.reason)
        case _:
            return Result.success(outcome)


def make_job(sync_fn: Callable[[], SyncOutcome]) -> Callable[[], None]:
    """
    Wrap a synchronization callable as a scheduler job.

    The job runs inside a LoggingExecutionContext (timing, success/failure)
    and never raises into the scheduler thread.
    """
    ctx = LoggingExecutionContext(operation="TrustListSync")

    def _job() -> None:
        result = ctx.execute(lambda: _as_result(sync_fn()))
        if result.is_failure():
            log.error("scheduler.job_failed", error_code=result.error().code.value, reason=result.error().message)
            return
        match result.value():
            case SyncSuccess() as success:
                log.info(
                    "scheduler.job_completed",
                    certificates_written=success.certificates_written,
                    certificates_failed=success.certificates_failed,
                )
            case SyncSkipped() as skipped:
                log.info("scheduler.job_skipped", reason=skipped.reason)

    return _job


def create_scheduler(
    sync_fn: Callable[[], SyncOutcome],
    initial_delay: timedelta = timedelta(seconds=60),
    period: timedelta = timedelta(hours=1),
    scheduler: BaseScheduler | None = None,
) -> BaseScheduler:
    """
    Create a scheduler that runs `sync_fn` after `initial_delay`, then every `period`.

    Args:
        sync_fn: Zero-argument callable returning a SyncOutcome (the wired synchronizer).
        initial_delay: Wait before the first run.
        period: Fixed interval between run starts.
        scheduler: Scheduler to register the job on; defaults to a BlockingScheduler.
                   The HTTP server keeps the default and starts it in its own thread.

    Returns:
        The configured scheduler (call .start() to begin).
    """
    if scheduler is None:
        scheduler = BlockingScheduler()
    first_run = datetime.now(UTC) + initial_delay
    scheduler.add_job(
        make_job(sync_fn),
        trigger=IntervalTrigger(seconds=period.total_seconds(), start_date=first_run, timezone=UTC),
        id=JOB_ID,
        name="Trust list synchronization",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    log.info(
        "scheduler.configured",
        first_run=first_run.isoformat(),
        period_seconds=period.total_seconds(),
    )
    return scheduler


def register_shutdown_signals(scheduler: BaseScheduler) -> None:
    """Register SIGINT and SIGTERM handlers for graceful shutdown."""

    def _shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        log.info("scheduler.shutdown_requested", signal=sig_name)
        scheduler.shutdown(wait=False)
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
