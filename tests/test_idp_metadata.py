"""Tests for IdP metadata import."""

from pathlib import Path

import httpx

from samlgate.core.crypto.certs import certificate_body
from samlgate.core.saml import idp_metadata
from samlgate.core.saml.idp_metadata import (
    SAMLMetadataResult,
    fetch_idp_metadata,
    parse_idp_metadata,
    write_idp_certificates,
)

METADATA = """\
<md:EntitiesDescriptor xmlns:md="urn:oasis:names:tc:SAML:2.0:metadata"
    xmlns:ds="http://www.w3.org/2000/09/xmldsig#">
  <md:EntityDescriptor entityID="https://idp.okta.test">
    <md:IDPSSODescriptor protocolSupportEnumeration="urn:oasis:names:tc:SAML:2.0:protocol">
      <md:KeyDescriptor use="encryption">
        <ds:KeyInfo><ds:X509Data><ds:X509Certificate>ENCRYPTIONONLY</ds:X509Certificate></ds:X509Data></ds:KeyInfo>
      </md:KeyDescriptor>
      <md:KeyDescriptor use="signing">
        <ds:KeyInfo><ds:X509Data><ds:X509Certificate>{first}</ds:X509Certificate></ds:X509Data></ds:KeyInfo>
      </md:KeyDescriptor>
      <md:KeyDescriptor>
        <ds:KeyInfo><ds:X509Data><ds:X509Certificate>{second}</ds:X509Certificate></ds:X509Data></ds:KeyInfo>
      </md:KeyDescriptor>
      <md:SingleSignOnService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
          Location="https://idp.okta.test/sso/post"/>
    </md:IDPSSODescriptor>
  </md:EntityDescriptor>
</md:EntitiesDescriptor>
"""


def _metadata(idp_keys, rogue_keys) -> str:
    return METADATA.format(
        first=certificate_body(idp_keys.cert_pem),
        second=certificate_body(rogue_keys.cert_pem),
    )


def test_parse_idp_metadata(idp_keys, rogue_keys) -> None:
    """Signing and unspecified-use certificates are collected."""
    result = parse_idp_metadata(_metadata(idp_keys, rogue_keys))

    assert result.success
    assert result.entity_id == "https://idp.okta.test"
    assert result.sso_url == "https://idp.okta.test/sso/post"
    assert result.slo_url is None
    assert [certificate_body(c) for c in result.certificates] == [
        certificate_body(idp_keys.cert_pem),
        certificate_body(rogue_keys.cert_pem),
    ]


def test_parse_invalid_xml() -> None:
    """Broken XML yields an error result."""
    result = parse_idp_metadata("<md:EntityDescriptor")
    assert not result.success
    assert "Invalid XML" in result.error


def test_parse_without_sso_service() -> None:
    """IdP metadata must name a login endpoint."""
    result = parse_idp_metadata(
        '<md:EntityDescriptor xmlns:md="urn:oasis:names:tc:SAML:2.0:metadata" entityID="x">'
        "<md:IDPSSODescriptor/></md:EntityDescriptor>"
    )
    assert not result.success
    assert "SingleSignOnService" in result.error


def test_write_idp_certificates(tmp_path: Path) -> None:
    """Additional certificates get numbered file names."""
    result = SAMLMetadataResult(success=True, certificates=["one\n", "two\n", "three\n"])
    written = write_idp_certificates(result, tmp_path, "okta")

    base = tmp_path / "idps" / "okta"
    assert written == [base / "cert.cer", base / "cert-1.cer", base / "cert-2.cer"]
    assert (base / "cert-1.cer").read_text() == "two\n"


def test_fetch_idp_metadata(monkeypatch, idp_keys, rogue_keys) -> None:
    """Metadata is fetched over HTTP through the logging client."""
    body = _metadata(idp_keys, rogue_keys)

    def client(timeout: float = 10.0) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, text=body)))

    monkeypatch.setattr(idp_metadata, "create_http_client", client)
    result = fetch_idp_metadata("https://idp.okta.test/metadata")
    assert result.success
    assert len(result.certificates) == 2


def test_fetch_idp_metadata_http_error(monkeypatch) -> None:
    """HTTP errors become error results."""

    def client(timeout: float = 10.0) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(404)))

    monkeypatch.setattr(idp_metadata, "create_http_client", client)
    result = fetch_idp_metadata("https://idp.okta.test/metadata")
    assert not result.success
    assert "HTTP 404" in result.error
