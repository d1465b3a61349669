"""
Domain models — immutable data structures for trust-list entries and snapshots.

These are pure value objects with no behavior beyond derived properties.
They carry certificates from the trust-list XML through decoding and
publication, and describe TLS sessions for the diagnostic endpoint.

All models are frozen dataclasses (immutable) following functional principles.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, unique
from typing import TypeAlias

from railway import ErrorCode


@dataclass(frozen=True, slots=True)
class FetchResponse:
    """Raw answer of the trust-list endpoint: status code and undecoded body."""

    status_code: int
    body: bytes = field(repr=False)
    url: str = ""


@dataclass(frozen=True, slots=True)
class ParsedCertificate:
    """
    A decoded X.509 certificate.

    `key_size_bits` is None when the key algorithm is neither RSA nor EC.
    The SHA-256 fingerprint of `der_bytes` is the stable identity used for
    file naming and deduplication in the trust store.
    """

    subject: str
    issuer: str
    serial_number: int
    not_before: datetime
    not_after: datetime
    key_algorithm: str
    key_size_bits: int | None
    subject_alt_names: tuple[str, ...] = ()
    der_bytes: bytes = field(default=b"", repr=False)

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.der_bytes).hexdigest()


@dataclass(frozen=True, slots=True)
class ParseFailure:
    """Why a single trust-list entry could not be turned into a certificate."""

    reason: str


@dataclass(frozen=True, slots=True)
class CertificateEntry:
    """
    One certificate element found in the trust list.

    Tagged with its enclosing provider and service for traceability.
    `parsed` holds either the decoded certificate or the reason it failed.
    """

    provider_name: str
    service_id: str
    der_bytes: bytes = field(repr=False)
    parsed: ParsedCertificate | ParseFailure
    service_type: str | None = None

    @property
    def is_valid(self) -> bool:
        return isinstance(self.parsed, ParsedCertificate)

    @property
    def source(self) -> str:
        return f"{self.provider_name} / {self.service_id}"


@dataclass(frozen=True, slots=True)
class PublishFailure:
    """A rejected or degraded entry, reported in PublishResult."""

    source: str
    reason: str


@dataclass(frozen=True, slots=True)
class PublishResult:
    """
    Outcome of one successful publication of a trust-store generation.

    `failures` lists entries that were skipped; `warnings` lists entries that
    were published but could not be fully described (e.g. unsupported key
    algorithm for key-size reporting).
    """

    certificates_written: int
    certificates_failed: int
    failures: tuple[PublishFailure, ...] = ()
    warnings: tuple[PublishFailure, ...] = ()
    generation: str = ""


@unique
class SyncState(Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    PARSING = "PARSING"
    PUBLISHING = "PUBLISHING"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class SyncSuccess:
    certificates_written: int
    certificates_failed: int
    generation: str = ""


@dataclass(frozen=True, slots=True)
class SyncFailure:
    """A failed run. `stage` is the state the synchronizer was in when it failed."""

    stage: SyncState
    reason: str
    error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR


@dataclass(frozen=True, slots=True)
class SyncSkipped:
    """A trigger dropped because a run is executing and another is already queued."""

    reason: str


SyncOutcome: TypeAlias = SyncSuccess | SyncFailure | SyncSkipped


@dataclass(frozen=True, slots=True)
class ConnectionMetadata:
    """Request-level facts about the connection, supplied by the HTTP layer."""

    is_secure: bool
    http_version: str | None = None
    remote_address: str | None = None
    remote_port: int | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def user_agent(self) -> str | None:
        for name, value in self.headers.items():
            if name.lower() == "user-agent":
                return value
        return None


@dataclass(frozen=True, slots=True)
class TlsSessionSnapshot:
    """
    Read-only, request-scoped view of a connection and its TLS session.

    Built fresh for every inspection and never persisted. A certificate field
    is None when the handshake did not present one; the matching `*_cert_error`
    carries the reason when retrieval failed.
    """

    is_secure: bool
    http_protocol: str | None
    user_agent: str | None
    request_headers: Mapping[str, str]
    remote_address: str | None
    remote_port: int | None
    has_session: bool = False
    negotiated_protocol: str | None = None
    cipher_suite: str | None = None
    local_certificate: ParsedCertificate | None = None
    peer_certificate: ParsedCertificate | None = None
    local_cert_error: str | None = None
    peer_cert_error: str | None = None
