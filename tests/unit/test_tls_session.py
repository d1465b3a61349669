"""Unit tests for the TlsSessionHandle adapters (ASGI extension, stdlib SSL object)."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from tsl_truststore.adapters.tls_session import AsgiTlsSession, SslObjectSession
from tsl_truststore.domain.errors import MalformedCertificate, PeerCertificateUnavailable


class TestAsgiTlsSession:
    def test_maps_version_and_cipher_suite_codes(self) -> None:
        session = AsgiTlsSession({"tls_version": 0x0304, "cipher_suite": 0x1302})

        assert session.negotiated_protocol() == "TLSv1.3"
        assert session.cipher_suite() == "TLS_AES_256_GCM_SHA384"

    def test_unknown_codes_render_as_hex(self) -> None:
        session = AsgiTlsSession({"tls_version": 0x7F1C, "cipher_suite": 0x00FF})

        assert session.negotiated_protocol() == "0x7F1C"
        assert session.cipher_suite() == "0x00FF"

    def test_named_values_pass_through(self) -> None:
        """
        GIVEN a server that reports the version and cipher suite as names
        WHEN the session is read
        THEN the names come back unchanged.
        """
        session = AsgiTlsSession({"tls_version": "TLSv1.3", "cipher_suite": "TLS_AES_128_GCM_SHA256"})

        assert session.negotiated_protocol() == "TLSv1.3"
        assert session.cipher_suite() == "TLS_AES_128_GCM_SHA256"

    def test_missing_fields(self) -> None:
        session = AsgiTlsSession({})

        assert session.negotiated_protocol() is None
        assert session.cipher_suite() is None
        assert session.local_certificate_chain() == []
        assert session.peer_certificate_chain() == []

    def test_pem_certificates_become_der(self, ec_cert, rsa_cert) -> None:
        session = AsgiTlsSession(
            {
                "server_cert": ec_cert.pem.decode(),
                "client_cert_chain": [rsa_cert.pem.decode(), ec_cert.pem.decode()],
            }
        )

        assert session.local_certificate_chain() == [ec_cert.der]
        assert session.peer_certificate_chain() == [rsa_cert.der, ec_cert.der]

    def test_client_cert_error_is_raised(self) -> None:
        session = AsgiTlsSession({"client_cert_error": "certificate has expired"})

        with pytest.raises(PeerCertificateUnavailable, match="expired"):
            session.peer_certificate_chain()

    def test_broken_pem_is_malformed(self) -> None:
        with pytest.raises(MalformedCertificate):
            AsgiTlsSession({"server_cert": "not pem"}).local_certificate_chain()


class TestSslObjectSession:
    def test_reads_stdlib_session_state(self, ec_cert, rsa_cert) -> None:
        ssl_object = MagicMock(spec=["version", "cipher", "getpeercert"])
        ssl_object.version.return_value = "TLSv1.3"
        ssl_object.cipher.return_value = ("TLS_AES_128_GCM_SHA256", "TLSv1.3", 128)
        ssl_object.getpeercert.return_value = rsa_cert.der

        session = SslObjectSession(ssl_object, local_certificate_der=ec_cert.der)

        assert session.negotiated_protocol() == "TLSv1.3"
        assert session.cipher_suite() == "TLS_AES_128_GCM_SHA256"
        assert session.local_certificate_chain() == [ec_cert.der]
        assert session.peer_certificate_chain() == [rsa_cert.der]
        ssl_object.getpeercert.assert_called_once_with(binary_form=True)

    def test_prefers_verified_chain(self, ec_cert, rsa_cert) -> None:
        ssl_object = MagicMock(spec=["version", "cipher", "getpeercert", "get_verified_chain"])
        ssl_object.get_verified_chain.return_value = [rsa_cert.der, ec_cert.der]

        assert SslObjectSession(ssl_object).peer_certificate_chain() == [rsa_cert.der, ec_cert.der]
        ssl_object.getpeercert.assert_not_called()

    def test_no_peer_and_no_local_certificate(self) -> None:
        ssl_object = MagicMock(spec=["version", "cipher", "getpeercert"])
        ssl_object.getpeercert.return_value = None
        ssl_object.cipher.return_value = None

        session = SslObjectSession(ssl_object)

        assert session.peer_certificate_chain() == []
        assert session.local_certificate_chain() == []
        assert session.cipher_suite() is None
