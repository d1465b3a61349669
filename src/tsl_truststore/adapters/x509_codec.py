"""
X.509 codec — DER/PEM decoding and encoding of trust-list certificates.

Pure, stateless functions on top of cryptography (PyCA):
  - decode():        DER bytes → ParsedCertificate
  - decode_pem():    PEM text → ParsedCertificate
  - to_pem():        ParsedCertificate → deterministic PEM armor
  - key_size_bits(): RSA modulus / EC curve size
  - describe():      ParsedCertificate → diagnostic mapping (camelCase keys)

Validity windows are reported, never enforced: expired and not-yet-valid
certificates decode normally.
"""

from __future__ import annotations

from typing import Any

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.x509.extensions import ExtensionNotFound

from tsl_truststore.domain.errors import MalformedCertificate, UnsupportedKeyAlgorithm
from tsl_truststore.domain.models import ParsedCertificate


def _load(der_bytes: bytes) -> x509.Certificate:
    if not der_bytes:
        raise MalformedCertificate("Empty certificate payload")
    try:
        return x509.load_der_x509_certificate(der_bytes)
    except ValueError as e:
        raise MalformedCertificate(f"Invalid X.509 DER structure: {e}") from e


def _key_algorithm(public_key: Any) -> str:
    match public_key:
        case rsa.RSAPublicKey():
            return "RSA"
        case ec.EllipticCurvePublicKey():
            return "EC"
        case dsa.DSAPublicKey():
            return "DSA"
        case ed25519.Ed25519PublicKey():
            return "Ed25519"
        case ed448.Ed448PublicKey():
            return "Ed448"
        case _:
            return type(public_key).__name__


def _key_size(public_key: Any) -> int:
    match public_key:
        case rsa.RSAPublicKey():
            return int(public_key.key_size)
        case ec.EllipticCurvePublicKey():
            return int(public_key.curve.key_size)
        case _:
            raise UnsupportedKeyAlgorithm(_key_algorithm(public_key))


def _format_general_name(name: x509.GeneralName) -> str:
    match name:
        case x509.DNSName():
            return f"DNS:{name.value}"
        case x509.IPAddress():
            return f"IP:{name.value}"
        case x509.RFC822Name():
            return f"email:{name.value}"
        case x509.UniformResourceIdentifier():
            return f"URI:{name.value}"
        case x509.DirectoryName():
            return f"DirName:{name.value.rfc4514_string()}"
        case x509.RegisteredID():
            return f"RID:{name.value.dotted_string}"
        case x509.OtherName():
            return f"othername:{name.type_id.dotted_string}"
        case _:
            return str(name)


def _extract_sans(cert: x509.Certificate) -> tuple[str, ...]:
    """Subject Alternative Names as 'TYPE:value' strings, or () if absent."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except ExtensionNotFound:
        return ()
    except ValueError as e:
        raise MalformedCertificate(f"Unable to retrieve subjectAlternativeNames: {e}") from e
    return tuple(_format_general_name(name) for name in ext.value)


def decode(der_bytes: bytes) -> ParsedCertificate:
    """
    Decode DER-encoded X.509 bytes into a ParsedCertificate.

    Raises MalformedCertificate when the bytes are not a certificate, including
    certificates whose names, dates or extensions only fail once read.
    An unsupported key algorithm does NOT fail decoding — key_size_bits is None.
    """
    cert = _load(der_bytes)
    sans = _extract_sans(cert)
    # PyCA parses these fields lazily; a broken one surfaces here, not in _load.
    try:
        subject = cert.subject.rfc4514_string()
        issuer = cert.issuer.rfc4514_string()
        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc
    except ValueError as e:
        raise MalformedCertificate(f"Unable to read certificate fields: {e}") from e
    size: int | None = None
    try:
        public_key = cert.public_key()
    except (UnsupportedAlgorithm, ValueError):
        # Key types PyCA cannot load (e.g. GOST) are still valid trust anchors.
        algorithm = cert.public_key_algorithm_oid.dotted_string
    else:
        algorithm = _key_algorithm(public_key)
        try:
            size = _key_size(public_key)
        except UnsupportedKeyAlgorithm:
            size = None

    return ParsedCertificate(
        subject=subject,
        issuer=issuer,
        serial_number=cert.serial_number,
        not_before=not_before,
        not_after=not_after,
        key_algorithm=algorithm,
        key_size_bits=size,
        subject_alt_names=sans,
        der_bytes=der_bytes,
    )


def decode_pem(pem: str | bytes) -> ParsedCertificate:
    """Decode the first certificate of a PEM text."""
    data = pem.encode("ascii") if isinstance(pem, str) else pem
    try:
        cert = x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise MalformedCertificate(f"Invalid PEM certificate: {e}") from e
    return decode(cert.public_bytes(serialization.Encoding.DER))


def to_pem(cert: ParsedCertificate) -> str:
    """
    Encode a certificate as PEM text.

    Base64 body wrapped at 64 columns, trailing newline included, so the
    output is byte-for-byte stable for the same DER input.
    """
    loaded = _load(cert.der_bytes)
    return loaded.public_bytes(serialization.Encoding.PEM).decode("ascii")


def key_size_bits(cert: ParsedCertificate) -> int:
    """
    Modulus length (RSA) or curve size (EC) in bits.

    Raises UnsupportedKeyAlgorithm for any other key type — callers report
    it and carry on with the rest of the batch.
    """
    loaded = _load(cert.der_bytes)
    try:
        public_key = loaded.public_key()
    except (UnsupportedAlgorithm, ValueError) as e:
        raise UnsupportedKeyAlgorithm(loaded.public_key_algorithm_oid.dotted_string) from e
    return _key_size(public_key)


def describe(cert: ParsedCertificate) -> dict[str, Any]:
    """Diagnostic view of a certificate, keyed like the connection-info payload."""
    return {
        "certSubject": cert.subject,
        "certIssuer": cert.issuer,
        "certSerialNumber": str(cert.serial_number),
        "notBefore": cert.not_before.isoformat(),
        "notAfter": cert.not_after.isoformat(),
        "keyAlgorithm": cert.key_algorithm,
        "keySize": cert.key_size_bits,
        "subjectAlternativeNames": list(cert.subject_alt_names),
        "certPEM": to_pem(cert),
    }
