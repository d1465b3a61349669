"""
Ports — Protocol-based interfaces for infrastructure adapters.

These define WHAT the synchronizer and the inspector need (contracts) without
specifying HOW it's done (implementation). Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy
the contract simply by implementing the methods — no inheritance.

Synchronization flow:
  1. TrustListFetcher     → raw trust-list document (status code + body)
  2. TrustListParser      → CertificateEntry per embedded certificate
  3. TrustStorePublisher  → new active trust-store generation
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from railway.result import Result

from tsl_truststore.domain.models import CertificateEntry, FetchResponse, PublishResult


@runtime_checkable
class TrustListFetcher(Protocol):
    """
    Port: download the trust-list document.

    Transport errors are failures; any HTTP status (including non-200) is a
    success carrying the status code, so the caller decides what proceeds.
    """

    def fetch(self) -> Result[FetchResponse]: ...


@runtime_checkable
class TrustListParser(Protocol):
    """
    Port: extract every certificate element of a trust-list document.

    Fails only when the document itself is unusable. Broken entries are
    returned as entries carrying a ParseFailure.
    """

    def extract_certificates(self, xml: str | bytes) -> Result[list[CertificateEntry]]: ...


@runtime_checkable
class TrustStorePublisher(Protocol):
    """
    Port: atomically replace the active trust-store generation.

    Either the new generation becomes fully visible, or the previous one
    stays active untouched. Never publishes an empty store.
    """

    @property
    def target_dir(self) -> Path: ...

    def publish(
        self,
        entries: Sequence[CertificateEntry],
        target_dir: Path | None = None,
        bundle_path: Path | None = None,
    ) -> Result[PublishResult]: ...


@runtime_checkable
class TlsSessionHandle(Protocol):
    """
    Port: the already-negotiated state of one TLS connection.

    Certificate chains are DER-encoded, leaf first. An empty chain means the
    handshake did not present a certificate. Implementations may raise when
    the peer is unverified; the inspector turns that into an error string.
    Implementations must not perform I/O.
    """

    def negotiated_protocol(self) -> str | None: ...

    def cipher_suite(self) -> str | None: ...

    def local_certificate_chain(self) -> Sequence[bytes]: ...

    def peer_certificate_chain(self) -> Sequence[bytes]: ...
