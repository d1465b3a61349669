"""
Synchronizer — run control around the trust-list pipeline.

Owns what the pure pipeline cannot:
  - the state machine  IDLE → FETCHING → PARSING → PUBLISHING → IDLE
                       (or … → FAILED → IDLE)
  - single-flight per store path: one run executes, at most one trigger waits,
    any further trigger is dropped (SyncSkipped)
  - conversion of the Result into a SyncOutcome, so that no failure — expected
    or not — ever escapes to the scheduler thread or the HTTP handler

A failed run never touches the active store; it stays in place until the next
successful publish.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from railway import ErrorCode, FailureDescription
from railway.result import Result

from tsl_truststore.domain.models import (
    PublishResult,
    SyncFailure,
    SyncOutcome,
    SyncSkipped,
    SyncState,
    SyncSuccess,
)
from tsl_truststore.domain.ports import TrustListFetcher, TrustListParser, TrustStorePublisher
from tsl_truststore.pipeline import run_pipeline

log = structlog.get_logger()


# ─────────────────────── Per-store Guard ───────────────────────


@dataclass(slots=True)
class StoreGuard:
    """Mutex plus single-pending-trigger admission for one store path."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    admission: threading.Lock = field(default_factory=threading.Lock)
    waiting: bool = False


_guards: dict[Path, StoreGuard] = {}
_guards_lock = threading.Lock()


def store_guard(target_dir: Path) -> StoreGuard:
    """Return the process-wide guard for a store directory (created on first use)."""
    key = Path(os.path.normpath(Path(target_dir).absolute()))
    with _guards_lock:
        return _guards.setdefault(key, StoreGuard())


# ─────────────────────── Outcome Mapping ───────────────────────


def _describe_failure(error: FailureDescription) -> str:
    if error.exception is not None and str(error.exception) not in error.message:
        return f"{error.message}: {error.exception}"
    return error.message


def _to_outcome(result: Result[PublishResult], stage: SyncState) -> SyncOutcome:
    if result.is_success():
        published = result.value()
        return SyncSuccess(
            certificates_written=published.certificates_written,
            certificates_failed=published.certificates_failed,
            generation=published.generation,
        )
    error = result.error()
    return SyncFailure(stage=stage, reason=_describe_failure(error), error_code=error.code)


# ─────────────────────── Synchronizer ───────────────────────


class TrustListSynchronizer:
    """
    Run the trust-list pipeline under the store's single-flight guard.

    One instance is held by the scheduler (timer) and the HTTP trigger; both
    call run(). Instances sharing a store directory share one guard.
    """

    def __init__(
        self,
        fetcher: TrustListFetcher,
        parser: TrustListParser,
        publisher: TrustStorePublisher,
    ) -> None:
        self._fetcher = fetcher
        self._parser = parser
        self._publisher = publisher
        self._guard = store_guard(publisher.target_dir)
        self._state = SyncState.IDLE
        self._last_outcome: SyncOutcome | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_outcome(self) -> SyncOutcome | None:
        return self._last_outcome

    def run(self) -> SyncOutcome:
        """
        Execute one synchronization, or queue behind the running one.

        Returns SyncSuccess / SyncFailure for an executed run, SyncSkipped when
        a run is executing and another trigger is already waiting.
        """
        guard = self._guard
        with guard.admission:
            acquired = guard.lock.acquire(blocking=False)
            if not acquired:
                if guard.waiting:
                    log.info("sync.trigger_dropped", reason="run in progress, one already queued")
                    return SyncSkipped(reason="Synchronization already running with one run queued")
                guard.waiting = True

        if not acquired:
            log.info("sync.trigger_queued")
            guard.lock.acquire()
            with guard.admission:
                guard.waiting = False

        try:
            outcome = self._run_locked()
        finally:
            guard.lock.release()

        self._last_outcome = outcome
        return outcome

    def _run_locked(self) -> SyncOutcome:
        log.info("sync.started", target_dir=str(self._publisher.target_dir))
        try:
            result = run_pipeline(
                self._fetcher,
                self._parser,
                self._publisher,
                on_stage=self._enter,
            )
        except Exception as e:
            # Ports are expected to return Results; this keeps the timer thread alive regardless.
            result = Result.failure(ErrorCode.UNKNOWN_ERROR, f"Unexpected error: {e}", e)

        stage = self._state
        outcome = _to_outcome(result, stage)
        match outcome:
            case SyncSuccess():
                log.info(
                    "sync.completed",
                    certificates_written=outcome.certificates_written,
                    certificates_failed=outcome.certificates_failed,
                    generation=outcome.generation,
                )
            case SyncFailure():
                self._enter(SyncState.FAILED)
                log.error(
                    "sync.failed",
                    stage=outcome.stage.value,
                    error_code=outcome.error_code.value,
                    reason=outcome.reason,
                )
        self._enter(SyncState.IDLE)
        return outcome

    def _enter(self, state: SyncState) -> None:
        if state is not self._state:
            log.debug("sync.state", previous=self._state.value, current=state.value)
        self._state = state
