"""
Session certificate inspector — describes a live TLS connection.

Domain layer — reads only already-negotiated session state through the
TlsSessionHandle port: no network I/O, no blocking, no shared state.
Every call builds a fresh TlsSessionSnapshot.

Partial results are normal: a missing server certificate leaves `server`
empty, a missing or unverified client certificate turns into a `client.error`
string. Nothing here raises for a broken or absent certificate.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import structlog

from tsl_truststore.adapters import x509_codec
from tsl_truststore.domain.errors import MalformedCertificate, TrustStoreError
from tsl_truststore.domain.models import ConnectionMetadata, ParsedCertificate, TlsSessionSnapshot
from tsl_truststore.domain.ports import TlsSessionHandle

log = structlog.get_logger()

PEER_NOT_AUTHENTICATED = "peer not authenticated"

# Errors a TLS stack raises for unfinished handshakes or unverified peers.
_RETRIEVAL_ERRORS = (TrustStoreError, ValueError, OSError)


def _read_chain(
    read: Callable[[], Sequence[bytes]],
    retrieval_error: str,
    role: str,
    absent_error: str | None,
) -> tuple[ParsedCertificate | None, str | None]:
    """Fetch a certificate chain and decode its leaf; errors become strings."""
    try:
        chain = read()
    except _RETRIEVAL_ERRORS as e:
        log.debug("inspector.chain_unavailable", role=role, error=str(e))
        return None, f"{retrieval_error}: {e}"
    if not chain:
        return None, f"{retrieval_error}: {absent_error}" if absent_error else None
    try:
        return x509_codec.decode(bytes(chain[0])), None
    except MalformedCertificate as e:
        return None, f"Unable to parse {role} certificate: {e}"


def _session_attribute(read: Callable[[], str | None]) -> str | None:
    try:
        return read()
    except _RETRIEVAL_ERRORS as e:
        log.debug("inspector.attribute_unavailable", error=str(e))
        return None


class SessionCertificateInspector:
    """Build TlsSessionSnapshot objects from a session handle and request metadata."""

    def inspect(
        self,
        session: TlsSessionHandle | None,
        request: ConnectionMetadata,
    ) -> TlsSessionSnapshot:
        """
        Describe the connection.

        `session` is None for plain-HTTP requests; the snapshot then carries
        only request-level fields.
        """
        common: dict[str, Any] = {
            "is_secure": request.is_secure or session is not None,
            "http_protocol": request.http_version,
            "user_agent": request.user_agent,
            "request_headers": dict(request.headers),
            "remote_address": request.remote_address,
            "remote_port": request.remote_port,
        }
        if session is None:
            return TlsSessionSnapshot(**common)

        local_cert, local_error = _read_chain(
            session.local_certificate_chain,
            "Unable to retrieve SSL local certificates",
            role="server",
            absent_error=None,
        )
        peer_cert, peer_error = _read_chain(
            session.peer_certificate_chain,
            "Unable to retrieve SSL peer certificates",
            role="client",
            absent_error=PEER_NOT_AUTHENTICATED,
        )
        return TlsSessionSnapshot(
            **common,
            has_session=True,
            negotiated_protocol=_session_attribute(session.negotiated_protocol),
            cipher_suite=_session_attribute(session.cipher_suite),
            local_certificate=local_cert,
            peer_certificate=peer_cert,
            local_cert_error=local_error,
            peer_cert_error=peer_error,
        )


def _certificate_view(cert: ParsedCertificate | None, error: str | None) -> dict[str, Any]:
    if error is not None:
        return {"error": error}
    if cert is None:
        return {}
    return x509_codec.describe(cert)


def snapshot_to_dict(snapshot: TlsSessionSnapshot) -> dict[str, Any]:
    """
    JSON payload of the connection-info endpoint.

    `protocol`, `cipherSuite`, `server` and `client` appear only for TLS sessions.
    """
    payload: dict[str, Any] = {
        "isSecure": snapshot.is_secure,
        "httpProtocol": snapshot.http_protocol,
        "userAgent": snapshot.user_agent,
        "httpRequestHeaders": dict(snapshot.request_headers),
    }
    if snapshot.has_session:
        payload["protocol"] = snapshot.negotiated_protocol
        payload["cipherSuite"] = snapshot.cipher_suite
        payload["server"] = _certificate_view(snapshot.local_certificate, snapshot.local_cert_error)
        payload["client"] = _certificate_view(snapshot.peer_certificate, snapshot.peer_cert_error)
    payload["clientAddress"] = snapshot.remote_address
    payload["clientPort"] = snapshot.remote_port
    return payload
