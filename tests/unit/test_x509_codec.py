"""
Unit tests for the X.509 codec — decode, PEM encoding, key sizes, description.

Certificates come from the session fixtures in conftest (EC P-256, RSA-2048,
Ed25519), generated with cryptography.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509

from tsl_truststore.adapters import x509_codec
from tsl_truststore.domain.errors import MalformedCertificate, UnsupportedKeyAlgorithm


class TestDecode:
    def test_decodes_subject_issuer_and_serial(self, ec_cert) -> None:
        """
        GIVEN a self-signed EC certificate
        WHEN it is decoded
        THEN subject, issuer and serial match the certificate.
        """
        parsed = x509_codec.decode(ec_cert.der)

        assert parsed.subject == ec_cert.certificate.subject.rfc4514_string()
        assert parsed.issuer == parsed.subject
        assert "CN=EC Qualified CA" in parsed.subject
        assert parsed.serial_number == ec_cert.certificate.serial_number
        assert parsed.der_bytes == ec_cert.der

    def test_validity_window_is_timezone_aware(self, ec_cert) -> None:
        parsed = x509_codec.decode(ec_cert.der)

        assert parsed.not_before.tzinfo is not None
        assert parsed.not_before < parsed.not_after

    def test_key_algorithm_and_size(self, ec_cert, rsa_cert) -> None:
        ec_parsed = x509_codec.decode(ec_cert.der)
        rsa_parsed = x509_codec.decode(rsa_cert.der)

        assert (ec_parsed.key_algorithm, ec_parsed.key_size_bits) == ("EC", 256)
        assert (rsa_parsed.key_algorithm, rsa_parsed.key_size_bits) == ("RSA", 2048)

    def test_unsupported_key_algorithm_still_decodes(self, ed25519_cert) -> None:
        """
        GIVEN an Ed25519 certificate
        WHEN it is decoded
        THEN decoding succeeds with key_size_bits None.
        """
        parsed = x509_codec.decode(ed25519_cert.der)

        assert parsed.key_algorithm == "Ed25519"
        assert parsed.key_size_bits is None

    def test_subject_alternative_names(self, ec_cert, rsa_cert) -> None:
        assert x509_codec.decode(ec_cert.der).subject_alt_names == (
            "DNS:ca.example.it",
            "IP:192.0.2.10",
            "email:pki@example.it",
        )
        assert x509_codec.decode(rsa_cert.der).subject_alt_names == ()

    def test_expired_certificate_decodes(self, make_certificate) -> None:
        """
        GIVEN a certificate that expired a year ago
        WHEN it is decoded
        THEN decoding succeeds: validity is reported, not enforced.
        """
        expired = make_certificate(
            "Expired CA",
            not_before=datetime.now(UTC) - timedelta(days=800),
            lifetime=timedelta(days=365),
        )

        parsed = x509_codec.decode(expired.der)

        assert parsed.not_after < datetime.now(UTC)

    @pytest.mark.parametrize(
        "payload",
        [b"", b"not a certificate", b"\x30\x03\x02\x01\x01"],
        ids=["empty", "garbage", "truncated-der"],
    )
    def test_malformed_bytes_raise(self, payload: bytes) -> None:
        with pytest.raises(MalformedCertificate):
            x509_codec.decode(payload)

    def test_unreadable_names_raise_malformed(self, corrupted_name_der: bytes) -> None:
        """
        GIVEN DER that loads but whose issuer and subject hold invalid UTF-8
        WHEN it is decoded
        THEN MalformedCertificate is raised instead of a bare ValueError.
        """
        with pytest.raises(MalformedCertificate, match="Unable to read certificate fields"):
            x509_codec.decode(corrupted_name_der)

    def test_malformed_san_extension_raises(self, malformed_san_der: bytes) -> None:
        """
        GIVEN a certificate whose subjectAltName extension is not valid DER
        WHEN it is decoded
        THEN the broken extension is reported, not read as "no SANs".
        """
        with pytest.raises(MalformedCertificate, match="Unable to retrieve subjectAlternativeNames"):
            x509_codec.decode(malformed_san_der)

    def test_fingerprint_is_sha256_of_der(self, ec_cert) -> None:
        parsed = x509_codec.decode(ec_cert.der)

        assert parsed.fingerprint == hashlib.sha256(ec_cert.der).hexdigest()


class TestPem:
    def test_round_trip_preserves_der(self, rsa_cert) -> None:
        """
        GIVEN a decoded certificate
        WHEN it is PEM-encoded and decoded again
        THEN the DER bytes are identical.
        """
        parsed = x509_codec.decode(rsa_cert.der)

        again = x509_codec.decode_pem(x509_codec.to_pem(parsed))

        assert again.der_bytes == parsed.der_bytes
        assert again == parsed

    def test_pem_armor_and_line_width(self, rsa_cert) -> None:
        pem = x509_codec.to_pem(x509_codec.decode(rsa_cert.der))
        lines = pem.splitlines()

        assert lines[0] == "-----BEGIN CERTIFICATE-----"
        assert lines[-1] == "-----END CERTIFICATE-----"
        assert pem.endswith("\n")
        assert all(len(line) <= 64 for line in lines[1:-1])

    def test_pem_is_deterministic(self, ec_cert) -> None:
        parsed = x509_codec.decode(ec_cert.der)

        assert x509_codec.to_pem(parsed) == x509_codec.to_pem(parsed)
        assert x509_codec.to_pem(parsed).encode("ascii") == ec_cert.pem

    def test_invalid_pem_raises(self) -> None:
        with pytest.raises(MalformedCertificate, match="Invalid PEM"):
            x509_codec.decode_pem("-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n")


class TestKeySize:
    def test_rsa_and_ec(self, rsa_cert, ec_cert) -> None:
        assert x509_codec.key_size_bits(x509_codec.decode(rsa_cert.der)) == 2048
        assert x509_codec.key_size_bits(x509_codec.decode(ec_cert.der)) == 256

    def test_other_algorithm_raises(self, ed25519_cert) -> None:
        with pytest.raises(UnsupportedKeyAlgorithm) as excinfo:
            x509_codec.key_size_bits(x509_codec.decode(ed25519_cert.der))

        assert excinfo.value.algorithm == "Ed25519"


class TestDescribe:
    def test_camel_case_view(self, ec_cert) -> None:
        parsed = x509_codec.decode(ec_cert.der)

        view = x509_codec.describe(parsed)

        assert view["certSubject"] == parsed.subject
        assert view["certIssuer"] == parsed.issuer
        assert view["certSerialNumber"] == str(parsed.serial_number)
        assert datetime.fromisoformat(view["notBefore"]) == parsed.not_before
        assert datetime.fromisoformat(view["notAfter"]) == parsed.not_after
        assert view["keyAlgorithm"] == "EC"
        assert view["keySize"] == 256
        assert view["subjectAlternativeNames"][0] == "DNS:ca.example.it"
        assert x509.load_pem_x509_certificate(view["certPEM"].encode()) == ec_cert.certificate
