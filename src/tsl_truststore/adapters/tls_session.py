"""
TLS session adapters — TlsSessionHandle implementations.

Two ways the transport layer hands a negotiated session to the inspector:

  - SslObjectSession: wraps a stdlib ssl.SSLObject / ssl.SSLSocket. The stdlib
    cannot report the local certificate, so the server injects its own DER.
  - AsgiTlsSession: wraps the ASGI TLS extension dict that an ASGI server
    places in scope["extensions"]["tls"] (PEM certificates, numeric TLS
    version and IANA cipher-suite code).

Both only read state that the handshake already produced.
"""

from __future__ import annotations

import ssl
from collections.abc import Mapping, Sequence
from typing import Any

from tsl_truststore.adapters import x509_codec
from tsl_truststore.domain.errors import PeerCertificateUnavailable

TLS_VERSION_NAMES: dict[int, str] = {
    0x0300: "SSLv3",
    0x0301: "TLSv1",
    0x0302: "TLSv1.1",
    0x0303: "TLSv1.2",
    0x0304: "TLSv1.3",
}

# IANA names of the suites a modern server negotiates; others render as hex.
CIPHER_SUITE_NAMES: dict[int, str] = {
    0x1301: "TLS_AES_128_GCM_SHA256",
    0x1302: "TLS_AES_256_GCM_SHA384",
    0x1303: "TLS_CHACHA20_POLY1305_SHA256",
    0xC02B: "TLS_ECDHE_ECDSA_WITH_AES_128_GCM_SHA256",
    0xC02C: "TLS_ECDHE_ECDSA_WITH_AES_256_GCM_SHA384",
    0xC02F: "TLS_ECDHE_RSA_WITH_AES_128_GCM_SHA256",
    0xC030: "TLS_ECDHE_RSA_WITH_AES_256_GCM_SHA384",
    0xCCA8: "TLS_ECDHE_RSA_WITH_CHACHA20_POLY1305_SHA256",
    0xCCA9: "TLS_ECDHE_ECDSA_WITH_CHACHA20_POLY1305_SHA256",
    0x009C: "TLS_RSA_WITH_AES_128_GCM_SHA256",
    0x009D: "TLS_RSA_WITH_AES_256_GCM_SHA384",
}


def _pem_to_der(pem: str) -> bytes:
    return x509_codec.decode_pem(pem).der_bytes


class SslObjectSession:
    """TlsSessionHandle over a stdlib SSL object whose handshake has completed."""

    def __init__(
        self,
        ssl_object: ssl.SSLObject | ssl.SSLSocket,
        local_certificate_der: bytes | None = None,
    ) -> None:
        self._ssl_object = ssl_object
        self._local_certificate_der = local_certificate_der

    def negotiated_protocol(self) -> str | None:
        return self._ssl_object.version()

    def cipher_suite(self) -> str | None:
        cipher = self._ssl_object.cipher()
        return cipher[0] if cipher else None

    def local_certificate_chain(self) -> Sequence[bytes]:
        return [self._local_certificate_der] if self._local_certificate_der else []

    def peer_certificate_chain(self) -> Sequence[bytes]:
        """
        Verified chain when available (Python 3.13+), else the bare leaf.

        getpeercert() raises ValueError before the handshake completes;
        the inspector reports that as a retrieval error.
        """
        get_verified_chain = getattr(self._ssl_object, "get_verified_chain", None)
        if get_verified_chain is not None:
            chain = [bytes(cert) for cert in get_verified_chain() or []]
            if chain:
                return chain
        leaf = self._ssl_object.getpeercert(binary_form=True)
        return [leaf] if leaf else []


def _code_name(value: Any, names: Mapping[int, str]) -> str | None:
    """Name a numeric TLS code; servers that already send names pass through."""
    if value is None:
        return None
    if not isinstance(value, int):
        return str(value)
    return names.get(value, f"0x{value:04X}")


class AsgiTlsSession:
    """TlsSessionHandle over the ASGI TLS extension (scope['extensions']['tls'])."""

    def __init__(self, extension: Mapping[str, Any]) -> None:
        self._extension = extension

    def negotiated_protocol(self) -> str | None:
        return _code_name(self._extension.get("tls_version"), TLS_VERSION_NAMES)

    def cipher_suite(self) -> str | None:
        return _code_name(self._extension.get("cipher_suite"), CIPHER_SUITE_NAMES)

    def local_certificate_chain(self) -> Sequence[bytes]:
        server_cert = self._extension.get("server_cert")
        return [_pem_to_der(server_cert)] if server_cert else []

    def peer_certificate_chain(self) -> Sequence[bytes]:
        error = self._extension.get("client_cert_error")
        if error:
            raise PeerCertificateUnavailable(error)
        return [_pem_to_der(pem) for pem in self._extension.get("client_cert_chain") or ()]
