"""
Domain errors — the failure taxonomy of a trust-list synchronization run.

Adapters raise these from their internal helpers; the public adapter methods
convert them into Result failures via Result.from_computation(), so the
exception object travels on the failure track as FailureDescription.exception.

Per-entry errors (MalformedCertificate, UnsupportedKeyAlgorithm) are collected
and reported. Per-run errors (everything else) end the run without touching
the active trust store.
"""

from __future__ import annotations


class TrustStoreError(Exception):
    """Base class for all trust-list synchronization errors."""


class MalformedDocument(TrustStoreError):
    """The trust-list body is not well-formed XML or lacks provider entries."""


class MalformedCertificate(TrustStoreError):
    """The bytes of one entry are not a valid X.509 DER structure."""


class UnsupportedKeyAlgorithm(TrustStoreError):
    """Key size requested for an algorithm other than RSA or EC."""

    def __init__(self, algorithm: str) -> None:
        super().__init__(f"Unsupported key algorithm: {algorithm}")
        self.algorithm = algorithm


class FetchFailure(TrustStoreError):
    """Transport error or non-200 answer from the trust-list endpoint."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreIOFailure(TrustStoreError):
    """Staging or swapping a trust-store generation failed."""


class EmptyResultGuard(TrustStoreError):
    """A batch without a single valid certificate must never be published."""


class PeerCertificateUnavailable(TrustStoreError):
    """The TLS layer refused to hand out the peer certificates (e.g. unverified peer)."""
