"""
Shared test fixtures for the tsl-truststore test suite.

Certificates are generated on the fly with cryptography (no binary fixtures
on disk); trust-list documents are assembled from those certificates by the
`tsl_document` builder.
"""

from __future__ import annotations

import base64
import ipaddress
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, TypeAlias

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import ExtensionOID, NameOID

TSL_NS = "http://uri.etsi.org/02231/v2#"
CA_QC_SERVICE = "http://uri.etsi.org/TrstSvc/Svctype/CA/QC"


@dataclass(frozen=True)
class Issued:
    """A generated certificate with its private key."""

    certificate: x509.Certificate
    key: Any

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)

    @property
    def pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    @property
    def key_pem(self) -> bytes:
        return self.key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )

    @property
    def b64(self) -> str:
        return base64.b64encode(self.der).decode("ascii")


def _new_key(key_type: str) -> Any:
    match key_type:
        case "ec":
            return ec.generate_private_key(ec.SECP256R1())
        case "rsa":
            return rsa.generate_private_key(public_exponent=65537, key_size=2048)
        case "ed25519":
            return ed25519.Ed25519PrivateKey.generate()
    raise ValueError(f"unknown key type {key_type}")


def issue_certificate(
    common_name: str,
    key_type: str = "ec",
    issuer: Issued | None = None,
    sans: Sequence[x509.GeneralName] = (),
    is_ca: bool = False,
    not_before: datetime | None = None,
    lifetime: timedelta = timedelta(days=365),
    serial_number: int | None = None,
    extensions: Sequence[x509.ExtensionType] = (),
) -> Issued:
    """Create a certificate; self-signed unless an issuer is given."""
    key = _new_key(key_type)
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "IT"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Trust Services"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    start = not_before or datetime.now(UTC) - timedelta(days=1)
    signing_key = issuer.key if issuer else key
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.certificate.subject if issuer else subject)
        .public_key(key.public_key())
        .serial_number(serial_number or x509.random_serial_number())
        .not_valid_before(start)
        .not_valid_after(start + lifetime)
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
    )
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(list(sans)), critical=False)
    for extension in extensions:
        builder = builder.add_extension(extension, critical=False)
    if is_ca:
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
    algorithm = None if isinstance(signing_key, ed25519.Ed25519PrivateKey) else hashes.SHA256()
    return Issued(builder.sign(signing_key, algorithm), key)


@pytest.fixture(scope="session")
def make_certificate() -> Callable[..., Issued]:
    """Factory fixture: make_certificate("CN", key_type="rsa", sans=[...])."""
    return issue_certificate


@pytest.fixture(scope="session")
def ec_cert() -> Issued:
    return issue_certificate(
        "EC Qualified CA",
        sans=[
            x509.DNSName("ca.example.it"),
            x509.IPAddress(ipaddress.ip_address("192.0.2.10")),
            x509.RFC822Name("pki@example.it"),
        ],
        is_ca=True,
    )


@pytest.fixture(scope="session")
def rsa_cert() -> Issued:
    return issue_certificate("RSA Qualified CA", key_type="rsa", is_ca=True)


@pytest.fixture(scope="session")
def ed25519_cert() -> Issued:
    return issue_certificate("Ed25519 Timestamping Unit", key_type="ed25519")


# ─────────────────────── Trust-list documents ───────────────────────

# A provider is (name, [service, ...]); a service is (name, [X509Certificate text, ...]).
Service: TypeAlias = tuple[str, Sequence[str]]
Provider: TypeAlias = tuple[str, Sequence[Service]]


def _service_xml(name: str, certificates: Sequence[str], history: bool = False) -> str:
    holder = "ServiceHistoryInstance" if history else "ServiceInformation"
    digital_ids = "".join(
        f"<tsl:DigitalId><tsl:X509Certificate>{text}</tsl:X509Certificate></tsl:DigitalId>"
        for text in certificates
    )
    return (
        f"<tsl:{holder}>"
        f"<tsl:ServiceTypeIdentifier>{CA_QC_SERVICE}</tsl:ServiceTypeIdentifier>"
        f'<tsl:ServiceName><tsl:Name xml:lang="it">{name} (it)</tsl:Name>'
        f'<tsl:Name xml:lang="en">{name}</tsl:Name></tsl:ServiceName>'
        f"<tsl:ServiceDigitalIdentity>{digital_ids}</tsl:ServiceDigitalIdentity>"
        f"</tsl:{holder}>"
    )


def build_tsl(providers: Sequence[Provider], history: Sequence[Service] = ()) -> bytes:
    """
    Assemble a minimal ETSI TS 119 612 trust list.

    `history` services are attached, as ServiceHistoryInstance elements, to
    the first service of the first provider.
    """
    tsp_xml = []
    for index, (provider_name, services) in enumerate(providers):
        service_xml = []
        for position, (service_name, certificates) in enumerate(services):
            history_xml = ""
            if index == 0 and position == 0 and history:
                history_xml = (
                    "<tsl:ServiceHistory>"
                    + "".join(_service_xml(n, c, history=True) for n, c in history)
                    + "</tsl:ServiceHistory>"
                )
            service_xml.append(
                f"<tsl:TSPService>{_service_xml(service_name, certificates)}{history_xml}</tsl:TSPService>"
            )
        tsp_xml.append(
            "<tsl:TrustServiceProvider>"
            f'<tsl:TSPInformation><tsl:TSPName><tsl:Name xml:lang="en">{provider_name}</tsl:Name>'
            "</tsl:TSPName></tsl:TSPInformation>"
            f"<tsl:TSPServices>{''.join(service_xml)}</tsl:TSPServices>"
            "</tsl:TrustServiceProvider>"
        )
    document = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<tsl:TrustServiceStatusList xmlns:tsl="{TSL_NS}" TSLTag="http://uri.etsi.org/19612/TSLTag">'
        "<tsl:SchemeInformation><tsl:TSLVersionIdentifier>5</tsl:TSLVersionIdentifier>"
        "<tsl:SchemeTerritory>IT</tsl:SchemeTerritory></tsl:SchemeInformation>"
        f"<tsl:TrustServiceProviderList>{''.join(tsp_xml)}</tsl:TrustServiceProviderList>"
        "</tsl:TrustServiceStatusList>"
    )
    return document.encode("utf-8")


@pytest.fixture(scope="session")
def tsl_document() -> Callable[..., bytes]:
    """Factory fixture: tsl_document([("Provider", [("Service", [b64, ...])])])."""
    return build_tsl


# ─────────────────────── Broken certificates ───────────────────────


@pytest.fixture(scope="session")
def corrupted_name_der() -> bytes:
    """
    DER that loads but fails once its names are read: the CN bytes are
    replaced, after signing, with invalid UTF-8 of the same length.
    """
    der = issue_certificate("Broken Name QQQQ").der
    return der.replace(b"QQQQ", b"\xff\xfe\xff\xfe")


@pytest.fixture(scope="session")
def malformed_san_der() -> bytes:
    """A certificate whose subjectAltName extension is not a valid GeneralNames."""
    garbage = x509.UnrecognizedExtension(ExtensionOID.SUBJECT_ALTERNATIVE_NAME, b"\x30\x03\xff\xff\xff")
    return issue_certificate("Broken SAN CA", extensions=[garbage]).der
