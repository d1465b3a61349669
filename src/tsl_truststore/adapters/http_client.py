"""
HTTP adapter — trust-list download via httpx.

Adapter layer — implements the TrustListFetcher port using httpx for a sync
GET of the configured trust-list URL.

The status code is passed through untouched: deciding that only 200 proceeds
belongs to the pipeline, not to the transport.

Retry/backoff via tenacity on transient errors (network, timeout).
All transport errors are captured into Result failures — no exceptions
leak to the business logic layer.
"""

from __future__ import annotations

import httpx
import structlog
from railway import ErrorCode
from railway.result import Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tsl_truststore.domain.models import FetchResponse

log = structlog.get_logger()

_ACCEPT = "application/vnd.etsi.tsl+xml, application/xml;q=0.9, text/xml;q=0.8"


class HttpTrustListFetcher:
    """
    Download the trust-list XML document with a plain HTTP GET.

    Implements the TrustListFetcher port.
    Uses tenacity retry on transient network errors only.
    """

    def __init__(self, url: str, timeout: int = 60) -> None:
        self._url = url
        self._timeout = timeout

    @property
    def url(self) -> str:
        return self._url

    def fetch(self) -> Result[FetchResponse]:
        """
        GET the trust list.

        Returns Result[FetchResponse] for any HTTP answer (status code included),
        or Result.failure(EXTERNAL_SERVICE_ERROR, ...) on transport failure.
        """
        return Result.from_computation(
            lambda: self._do_fetch(),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            f"Trust-list download from {self._url} failed",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=0.1, max=30),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    def _do_fetch(self) -> FetchResponse:
        """HTTP GET with retry — exceptions caught by from_computation."""
        with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
            response = client.get(self._url, headers={"Accept": _ACCEPT})
            log.info(
                "download.complete",
                url=self._url,
                status_code=response.status_code,
                size_bytes=len(response.content),
            )
            return FetchResponse(
                status_code=response.status_code,
                body=response.content,
                url=str(response.url),
            )
