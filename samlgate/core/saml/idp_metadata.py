"""Identity Provider metadata import.

Reads an IdP ``EntityDescriptor`` from a file or URL and extracts what
the gateway needs: entity id, Redirect-binding SSO/SLO locations and the
signing certificates, which are written into the credentials layout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx
from lxml import etree

from samlgate.core.crypto.certs import pem_from_body
from samlgate.core.logging import create_http_client
from samlgate.core.saml.sp import safe_parser

logger = logging.getLogger(__name__)

METADATA_NS = {
    "md": "urn:oasis:names:tc:SAML:2.0:metadata",
    "ds": "http://www.w3.org/2000/09/xmldsig#",
}

BINDING_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"


@dataclass
class SAMLMetadataResult:
    """Result of IdP metadata parsing."""

    success: bool
    entity_id: str | None = None
    sso_url: str | None = None
    slo_url: str | None = None
    certificates: list[str] = field(default_factory=list)
    error: str | None = None


def _redirect_location(descriptor: etree._Element, service: str) -> str | None:
    """Location of a service, preferring the Redirect binding."""
    fallback = None
    for element in descriptor.findall(f"md:{service}", METADATA_NS):
        location = element.get("Location")
        if element.get("Binding") == BINDING_REDIRECT:
            return location
        if fallback is None:
            fallback = location
    return fallback


def parse_idp_metadata(metadata_xml: str | bytes) -> SAMLMetadataResult:
    """Parse SAML IdP metadata XML.

    Args:
        metadata_xml: Raw XML metadata.

    Returns:
        SAMLMetadataResult with parsed values or an error.
    """
    if isinstance(metadata_xml, str):
        metadata_xml = metadata_xml.encode("utf-8")
    try:
        root = etree.fromstring(metadata_xml, safe_parser())
    except etree.XMLSyntaxError as e:
        return SAMLMetadataResult(success=False, error=f"Invalid XML in metadata: {e}")

    if root.tag == f"{{{METADATA_NS['md']}}}EntityDescriptor":
        entity = root
    else:
        entity = root.find(".//md:EntityDescriptor", METADATA_NS)
    if entity is None:
        return SAMLMetadataResult(success=False, error="No EntityDescriptor found in metadata")

    descriptor = entity.find("md:IDPSSODescriptor", METADATA_NS)
    if descriptor is None:
        return SAMLMetadataResult(
            success=False,
            error="No IDPSSODescriptor found - this may be SP metadata",
        )

    certificates = []
    for key in descriptor.findall("md:KeyDescriptor", METADATA_NS):
        # KeyDescriptor without "use" is valid for both signing and encryption
        if key.get("use", "signing") != "signing":
            continue
        for cert in key.findall("ds:KeyInfo/ds:X509Data/ds:X509Certificate", METADATA_NS):
            if cert.text and cert.text.strip():
                certificates.append(pem_from_body(cert.text))

    sso_url = _redirect_location(descriptor, "SingleSignOnService")
    if not sso_url:
        return SAMLMetadataResult(success=False, error="No SingleSignOnService in metadata")

    return SAMLMetadataResult(
        success=True,
        entity_id=entity.get("entityID"),
        sso_url=sso_url,
        slo_url=_redirect_location(descriptor, "SingleLogoutService"),
        certificates=certificates,
    )


def fetch_idp_metadata(metadata_url: str, timeout: float = 10.0) -> SAMLMetadataResult:
    """Fetch and parse SAML IdP metadata from a URL.

    Args:
        metadata_url: URL to fetch metadata from.
        timeout: Request timeout in seconds.
    """
    logger.debug(f"Fetching SAML metadata from {metadata_url}")
    try:
        with create_http_client(timeout=timeout) as client:
            response = client.get(metadata_url)
            response.raise_for_status()
            content = response.content
    except httpx.TimeoutException:
        return SAMLMetadataResult(
            success=False,
            error=f"Timeout fetching metadata from {metadata_url}",
        )
    except httpx.HTTPStatusError as e:
        return SAMLMetadataResult(
            success=False,
            error=f"HTTP {e.response.status_code} fetching metadata from {metadata_url}",
        )
    except httpx.RequestError as e:
        return SAMLMetadataResult(
            success=False,
            error=f"Request error fetching metadata: {e}",
        )

    return parse_idp_metadata(content)


def write_idp_certificates(
    result: SAMLMetadataResult,
    credentials_dir: Path,
    idp_name: str,
) -> list[Path]:
    """Store imported signing certificates for an IdP.

    The first certificate goes to ``idps/<name>/cert.cer``; further ones
    (key rotation) to ``cert-<n>.cer``.

    Returns:
        Paths of the written files.
    """
    target = credentials_dir / "idps" / idp_name
    target.mkdir(parents=True, exist_ok=True)

    written = []
    for index, pem in enumerate(result.certificates):
        name = "cert.cer" if index == 0 else f"cert-{index}.cer"
        path = target / name
        path.write_text(pem, encoding="utf-8")
        written.append(path)
    return written
