"""
Trust-list parser adapter — ETSI TS 119 612 XML → CertificateEntry list.

Adapter layer — implements the TrustListParser port using:
  - lxml: hardened XML parsing (no entity resolution, no network access)
  - x509_codec: DER → ParsedCertificate for every embedded certificate

Pipeline:
  trust-list XML
    → lxml: TrustServiceStatusList
    → every tsl:TrustServiceProvider
      → every tsl:X509Certificate below it (current + historical service info)
        → base64 → DER → ParsedCertificate | ParseFailure
    → list[CertificateEntry] in document order

Only structural presence is checked, there is no schema validation.
One broken certificate never blocks the rest of the list: it comes back as
an entry carrying a ParseFailure. The ds:Signature block of the document is
ignored (signature verification is handled upstream).
"""

from __future__ import annotations

import base64
import binascii

import structlog
from lxml import etree
from railway import ErrorCode
from railway.result import Result

from tsl_truststore.adapters import x509_codec
from tsl_truststore.domain.errors import MalformedCertificate, MalformedDocument
from tsl_truststore.domain.models import CertificateEntry, ParsedCertificate, ParseFailure

log = structlog.get_logger()

TSL_NAMESPACE = "http://uri.etsi.org/02231/v2#"
NAMESPACES = {"tsl": TSL_NAMESPACE}
PREFERRED_LANGUAGE = "en"
UNKNOWN = "unknown"

_XML_LANG = "{http://www.w3.org/XML/1998/namespace}lang"
_SERVICE_HOLDERS = frozenset(
    {
        f"{{{TSL_NAMESPACE}}}ServiceInformation",
        f"{{{TSL_NAMESPACE}}}ServiceHistoryInstance",
    }
)


# ─────────────────────── XML Helpers ───────────────────────


def _secure_parser() -> etree.XMLParser:
    """XML parser that never expands entities nor reaches the network."""
    return etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)


def _load_document(xml: str | bytes) -> etree._Element:
    data = xml.encode("utf-8") if isinstance(xml, str) else xml
    if not data.strip():
        raise MalformedDocument("Trust-list document is empty")
    try:
        return etree.fromstring(data, parser=_secure_parser())
    except etree.XMLSyntaxError as e:
        raise MalformedDocument(f"Trust list is not well-formed XML: {e}") from e


def _preferred_name(names_element: etree._Element | None) -> str:
    """Pick the English <Name> of a multilingual name list, else the first one."""
    if names_element is None:
        return UNKNOWN
    names = names_element.findall("tsl:Name", NAMESPACES)
    for name in names:
        if name.get(_XML_LANG) == PREFERRED_LANGUAGE and name.text:
            return name.text.strip()
    for name in names:
        if name.text:
            return name.text.strip()
    return UNKNOWN


def _service_of(cert_element: etree._Element) -> tuple[str, str | None]:
    """Name and type identifier of the service (or history instance) holding a certificate."""
    for ancestor in cert_element.iterancestors():
        if ancestor.tag in _SERVICE_HOLDERS:
            name = _preferred_name(ancestor.find("tsl:ServiceName", NAMESPACES))
            service_type = ancestor.findtext("tsl:ServiceTypeIdentifier", namespaces=NAMESPACES)
            return name, service_type.strip() if service_type else None
    return UNKNOWN, None


# ─────────────────────── Entry Decoding ───────────────────────


def _decode_payload(text: str | None) -> tuple[bytes, ParsedCertificate | ParseFailure]:
    """
    Turn the base64 text of an X509Certificate element into a certificate.

    Never raises: empty, non-base64 or non-X.509 payloads yield a ParseFailure.
    """
    payload = "".join((text or "").split())
    if not payload:
        return b"", ParseFailure("Empty certificate payload")
    try:
        der_bytes = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        return b"", ParseFailure(f"Invalid base64 certificate payload: {e}")
    try:
        return der_bytes, x509_codec.decode(der_bytes)
    except MalformedCertificate as e:
        return der_bytes, ParseFailure(str(e))


def _entries_for_provider(provider: etree._Element) -> list[CertificateEntry]:
    provider_name = _preferred_name(provider.find("tsl:TSPInformation/tsl:TSPName", NAMESPACES))
    entries: list[CertificateEntry] = []
    for cert_element in provider.iterfind(".//tsl:X509Certificate", NAMESPACES):
        service_name, service_type = _service_of(cert_element)
        der_bytes, parsed = _decode_payload(cert_element.text)
        entry = CertificateEntry(
            provider_name=provider_name,
            service_id=service_name,
            service_type=service_type,
            der_bytes=der_bytes,
            parsed=parsed,
        )
        if isinstance(parsed, ParseFailure):
            log.warning("parser.invalid_entry", source=entry.source, reason=parsed.reason)
        entries.append(entry)
    return entries


def parse_trust_list(xml: str | bytes) -> list[CertificateEntry]:
    """
    Extract every certificate element of a trust list, in document order.

    Raises MalformedDocument when the input is not XML or holds no
    TrustServiceProvider element. Per-entry problems never raise.
    """
    root = _load_document(xml)
    providers = root.findall(".//tsl:TrustServiceProvider", NAMESPACES)
    if not providers:
        raise MalformedDocument("Trust list contains no TrustServiceProvider element")

    entries = [entry for provider in providers for entry in _entries_for_provider(provider)]
    valid = sum(1 for entry in entries if entry.is_valid)

    log.info(
        "parser.complete",
        providers=len(providers),
        entries=len(entries),
        valid=valid,
        invalid=len(entries) - valid,
    )
    return entries


# ─────────────────────── Public Parser Class ───────────────────────


class XmlTrustListParser:
    """
    Parse an ETSI trust-list document into CertificateEntry objects.

    Implements the TrustListParser port.
    Document-level exceptions are caught at this adapter boundary via
    Result.from_computation().
    """

    def extract_certificates(self, xml: str | bytes) -> Result[list[CertificateEntry]]:
        """
        Returns Result[list[CertificateEntry]] on success (possibly with failed entries).
        Returns Result.failure(VALIDATION_ERROR, ...) when the document is unusable.
        """
        return Result.from_computation(
            lambda: parse_trust_list(xml),
            ErrorCode.VALIDATION_ERROR,
            "Failed to parse trust-list document",
        )
