"""
Pipeline — the ROP chain of one trust-list synchronization run.

Domain layer — this is PURE BUSINESS LOGIC. No side effects, no I/O.
All I/O is injected via ports (Protocol interfaces).

The pipeline connects stages via flat_map, forming a railway:

  fetch()
    → require HTTP 200
      → extract_certificates(body)
        → publish(entries)

Each stage returns Result[T]. Failures short-circuit automatically
through the ROP railway — no try/except needed. Stage transitions are
reported through `on_stage` so a caller can track where a run failed.
"""

from __future__ import annotations

from collections.abc import Callable

from railway import ErrorCode
from railway.result import Result

from tsl_truststore.domain.errors import FetchFailure
from tsl_truststore.domain.models import FetchResponse, PublishResult, SyncState
from tsl_truststore.domain.ports import TrustListFetcher, TrustListParser, TrustStorePublisher

HTTP_OK = 200


def _noop(_: SyncState) -> None:
    return None


def require_ok(response: FetchResponse) -> Result[bytes]:
    """Only a 200 answer proceeds to parsing; anything else is a FetchFailure."""
    if response.status_code == HTTP_OK:
        return Result.success(response.body)
    error = FetchFailure(
        f"Unexpected HTTP status {response.status_code} from {response.url or 'trust-list endpoint'}",
        status_code=response.status_code,
    )
    return Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, str(error), error)


def run_pipeline(
    fetcher: TrustListFetcher,
    parser: TrustListParser,
    publisher: TrustStorePublisher,
    on_stage: Callable[[SyncState], None] = _noop,
) -> Result[PublishResult]:
    """
    Execute one trust-list synchronization.

    Flow:
      1. Download the trust list (FETCHING)
      2. Reject any status other than 200
      3. Extract certificate entries (PARSING)
      4. Publish a new trust-store generation (PUBLISHING)

    Returns Result[PublishResult] on success,
    or Result.failure with the error from the first failing stage.
    """
    on_stage(SyncState.FETCHING)
    return (
        fetcher.fetch()
        .flat_map(require_ok)
        .peek(lambda _: on_stage(SyncState.PARSING))
        .flat_map(parser.extract_certificates)
        .peek(lambda _: on_stage(SyncState.PUBLISHING))
        .flat_map(publisher.publish)
    )
