"""SAML Protocol Engine for the Service Provider.

Three operations, all pure with respect to the gateway's state:

- :func:`render_metadata` describes this SP to Identity Providers.
- :func:`build_login_redirect` builds a signed HTTP-Redirect binding URL
  carrying an AuthnRequest and the opaque RelayState.
- :func:`validate_assertion` checks an HTTP-POST binding response against
  the IdP's trusted certificates and extracts the identity claims.

There is no server-side state between the redirect and the assertion;
RelayState is the only continuity token. The engine never hashes the
subject identifier: callers decide how to store it.
"""

from __future__ import annotations

import base64
import binascii
import logging
import uuid
import zlib
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode, urlsplit

from lxml import etree

from samlgate.core.crypto.certs import certificate_body
from samlgate.core.errors import InvalidAssertion, MissingSessionIndex, ProtocolConfigError
from samlgate.core.saml.descriptors import (
    IdentityClaims,
    IdentityProviderDescriptor,
    ServiceProviderDescriptor,
)
from samlgate.core.saml.encryption import decrypt_assertion
from samlgate.core.saml.signature import (
    DSIG_NS,
    SignatureAlgorithm,
    has_signature,
    sign_redirect_query,
    verify_with_trusted,
)

logger = logging.getLogger(__name__)

# SAML namespaces
SAML_NS = {
    "samlp": "urn:oasis:names:tc:SAML:2.0:protocol",
    "saml": "urn:oasis:names:tc:SAML:2.0:assertion",
    "md": "urn:oasis:names:tc:SAML:2.0:metadata",
    "ds": DSIG_NS,
}

SAMLP = "{%s}" % SAML_NS["samlp"]
SAML = "{%s}" % SAML_NS["saml"]
MD = "{%s}" % SAML_NS["md"]
DS = "{%s}" % DSIG_NS

STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
BINDING_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
NAMEID_UNSPECIFIED = "urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified"


def safe_parser() -> etree.XMLParser:
    """XML parser that never resolves entities or touches the network."""
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=False,
    )


def _instant(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class SAMLRequest:
    """Represents a SAML AuthnRequest."""

    id: str
    issue_instant: str
    issuer: str
    destination: str
    acs_url: str
    name_id_policy_format: str = NAMEID_UNSPECIFIED

    def to_xml(self) -> bytes:
        """Generate the AuthnRequest XML."""
        request = etree.Element(
            f"{SAMLP}AuthnRequest",
            nsmap={"samlp": SAML_NS["samlp"], "saml": SAML_NS["saml"]},
        )
        request.set("ID", self.id)
        request.set("Version", "2.0")
        request.set("IssueInstant", self.issue_instant)
        request.set("Destination", self.destination)
        if self.acs_url:
            request.set("AssertionConsumerServiceURL", self.acs_url)
        request.set("ProtocolBinding", BINDING_POST)

        issuer = etree.SubElement(request, f"{SAML}Issuer")
        issuer.text = self.issuer

        policy = etree.SubElement(request, f"{SAMLP}NameIDPolicy")
        policy.set("Format", self.name_id_policy_format)
        policy.set("AllowCreate", "true")

        return etree.tostring(request, encoding="UTF-8")

    def encode_redirect(self) -> str:
        """Encode request for HTTP-Redirect binding (deflate + base64)."""
        # Raw deflate, no zlib header or checksum
        compressed = zlib.compress(self.to_xml())[2:-4]
        return base64.b64encode(compressed).decode("ascii")


def render_metadata(sp: ServiceProviderDescriptor) -> str:
    """Render the SP metadata document.

    Raises:
        ProtocolConfigError: If the descriptor has no certificate.
    """
    if not sp.certificate:
        raise ProtocolConfigError("Service Provider certificate is not configured")
    cert_body = certificate_body(sp.certificate)

    root = etree.Element(
        f"{MD}EntityDescriptor",
        nsmap={"md": SAML_NS["md"], "ds": DSIG_NS},
    )
    root.set("entityID", sp.entity_id)

    descriptor = etree.SubElement(root, f"{MD}SPSSODescriptor")
    descriptor.set("protocolSupportEnumeration", SAML_NS["samlp"])
    descriptor.set("AuthnRequestsSigned", "true")
    descriptor.set("WantAssertionsSigned", "true")

    for use in ("signing", "encryption"):
        key_descriptor = etree.SubElement(descriptor, f"{MD}KeyDescriptor")
        key_descriptor.set("use", use)
        key_info = etree.SubElement(key_descriptor, f"{DS}KeyInfo")
        x509_data = etree.SubElement(key_info, f"{DS}X509Data")
        etree.SubElement(x509_data, f"{DS}X509Certificate").text = cert_body

    etree.SubElement(descriptor, f"{MD}NameIDFormat").text = NAMEID_UNSPECIFIED

    acs = etree.SubElement(descriptor, f"{MD}AssertionConsumerService")
    acs.set("Binding", BINDING_POST)
    acs.set("Location", sp.assert_endpoint)
    acs.set("index", "0")

    return etree.tostring(
        root, pretty_print=True, xml_declaration=True, encoding="UTF-8"
    ).decode("utf-8")


def build_login_redirect(
    sp: ServiceProviderDescriptor,
    idp: IdentityProviderDescriptor,
    relay_state: str,
    now: datetime | None = None,
) -> tuple[str, str]:
    """Build the signed login redirect URL for an IdP.

    ``relay_state`` is passed through unchanged. The URL is built locally;
    the IdP is never contacted.

    Returns:
        Tuple of (url, request_id).

    Raises:
        ProtocolConfigError: If the IdP has no login URL or signing material is absent.
    """
    if not idp.login_url:
        raise ProtocolConfigError(f"Identity provider {idp.name!r} has no login URL")
    if not sp.private_key:
        raise ProtocolConfigError("Service Provider private key is not configured")

    request_id = f"_{uuid.uuid4().hex}"
    authn_request = SAMLRequest(
        id=request_id,
        issue_instant=_instant(now or datetime.now(UTC)),
        issuer=sp.entity_id,
        destination=idp.login_url,
        acs_url=sp.assert_endpoint,
    )

    params = [("SAMLRequest", authn_request.encode_redirect())]
    if relay_state:
        params.append(("RelayState", relay_state))
    params.append(("SigAlg", SignatureAlgorithm.RSA_SHA256.value))

    query = urlencode(params)
    signature = sign_redirect_query(query, sp.private_key)
    query = f"{query}&{urlencode({'Signature': signature})}"

    separator = "&" if urlsplit(idp.login_url).query else "?"
    logger.debug(f"Built AuthnRequest {request_id} for identity provider {idp.name}")
    return f"{idp.login_url}{separator}{query}", request_id


@dataclass
class _ValidationContext:
    sp: ServiceProviderDescriptor
    now: datetime
    skew: timedelta


def _parse_instant(value: str) -> datetime:
    """Parse an xs:dateTime, tolerating more than six fractional digits."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidAssertion(f"Invalid timestamp in assertion: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _decode_response(body: Mapping[str, str]) -> etree._Element:
    raw = body.get("SAMLResponse")
    if not raw:
        raise InvalidAssertion("Request does not contain a SAMLResponse")
    try:
        xml = base64.b64decode("".join(raw.split()), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidAssertion("SAMLResponse is not valid base64") from None
    try:
        root = etree.fromstring(xml, safe_parser())
    except etree.XMLSyntaxError as e:
        raise InvalidAssertion(f"SAMLResponse is not valid XML: {e}") from None
    if root.tag != f"{SAMLP}Response":
        raise InvalidAssertion(f"Unexpected SAML message: {root.tag}")
    return root


def _check_status(response: etree._Element) -> None:
    status = response.find("samlp:Status/samlp:StatusCode", SAML_NS)
    value = status.get("Value") if status is not None else None
    if value != STATUS_SUCCESS:
        message = response.findtext("samlp:Status/samlp:StatusMessage", namespaces=SAML_NS)
        detail = f": {message}" if message else ""
        raise InvalidAssertion(f"Identity provider returned status {value}{detail}")


def _single_assertion(parent: etree._Element) -> tuple[etree._Element, bool]:
    """Return the only (possibly encrypted) assertion below a Response."""
    plain = parent.findall("saml:Assertion", SAML_NS)
    encrypted = parent.findall("saml:EncryptedAssertion", SAML_NS)
    if len(plain) + len(encrypted) != 1:
        raise InvalidAssertion("Response must contain exactly one assertion")
    if encrypted:
        return encrypted[0], True
    return plain[0], False


def _verified_assertion(
    sp: ServiceProviderDescriptor,
    idp: IdentityProviderDescriptor,
    response: etree._Element,
) -> etree._Element:
    if not idp.certificates:
        raise ProtocolConfigError(f"Identity provider {idp.name!r} has no trusted certificates")

    if has_signature(response):
        signed_response = verify_with_trusted(etree.tostring(response), idp.certificates)
        assertion, encrypted = _single_assertion(signed_response)
        if encrypted:
            assertion = decrypt_assertion(assertion, sp.private_key, safe_parser())
    else:
        assertion, encrypted = _single_assertion(response)
        if encrypted:
            assertion = decrypt_assertion(assertion, sp.private_key, safe_parser())
        if not has_signature(assertion):
            raise InvalidAssertion("Neither the response nor the assertion is signed")
        assertion = verify_with_trusted(etree.tostring(assertion), idp.certificates)

    if assertion.tag != f"{SAML}Assertion":
        raise InvalidAssertion("Signed element is not a SAML assertion")
    if not encrypted and not sp.allow_unencrypted_assertion:
        raise InvalidAssertion("Unencrypted assertions are not allowed")
    return assertion


def _check_window(ctx: _ValidationContext, element: etree._Element, label: str) -> None:
    not_before = element.get("NotBefore")
    if not_before and ctx.now + ctx.skew < _parse_instant(not_before):
        raise InvalidAssertion(f"{label} is not yet valid (NotBefore {not_before})")
    not_on_or_after = element.get("NotOnOrAfter")
    if not_on_or_after and ctx.now - ctx.skew >= _parse_instant(not_on_or_after):
        raise InvalidAssertion(f"{label} has expired (NotOnOrAfter {not_on_or_after})")


def _check_conditions(ctx: _ValidationContext, assertion: etree._Element) -> None:
    conditions = assertion.find("saml:Conditions", SAML_NS)
    if conditions is not None:
        _check_window(ctx, conditions, "Assertion")
        for restriction in conditions.findall("saml:AudienceRestriction", SAML_NS):
            audiences = [
                (a.text or "").strip()
                for a in restriction.findall("saml:Audience", SAML_NS)
            ]
            if ctx.sp.entity_id not in audiences:
                raise InvalidAssertion(
                    f"Assertion audience {audiences} does not include {ctx.sp.entity_id}"
                )

    for data in assertion.findall(
        "saml:Subject/saml:SubjectConfirmation/saml:SubjectConfirmationData", SAML_NS
    ):
        _check_window(ctx, data, "Subject confirmation")
        recipient = data.get("Recipient")
        if recipient and ctx.sp.assert_endpoint and recipient != ctx.sp.assert_endpoint:
            raise InvalidAssertion(f"Subject confirmation recipient mismatch: {recipient}")


def _attributes(assertion: etree._Element) -> dict[str, list[str]]:
    attributes: dict[str, list[str]] = {}
    for attr in assertion.findall("saml:AttributeStatement/saml:Attribute", SAML_NS):
        name = attr.get("Name", "")
        if not name:
            continue
        attributes[name] = [
            "".join(value.itertext()).strip()
            for value in attr.findall("saml:AttributeValue", SAML_NS)
        ]
    return attributes


def validate_assertion(
    sp: ServiceProviderDescriptor,
    idp: IdentityProviderDescriptor,
    body: Mapping[str, str],
    require_session_index: bool = True,
    now: datetime | None = None,
    clock_skew: int = 0,
) -> IdentityClaims:
    """Validate an HTTP-POST binding response and extract the identity.

    The signature must verify against one of the IdP's trusted
    certificates. Claims are read only from the verified element.

    Args:
        sp: This Service Provider.
        idp: The Identity Provider named by the RelayState.
        body: Form fields of the ACS request.
        require_session_index: Fail when the assertion has no SessionIndex.
        now: Current time, for tests.
        clock_skew: Tolerance in seconds for time conditions.

    Returns:
        The raw identity claims.

    Raises:
        InvalidAssertion: On signature, schema, status or time failures.
        MissingSessionIndex: If the session index is required but absent.
        ProtocolConfigError: If the IdP has no trusted certificates.
    """
    response = _decode_response(body)
    _check_status(response)
    assertion = _verified_assertion(sp, idp, response)

    ctx = _ValidationContext(
        sp=sp,
        now=now or datetime.now(UTC),
        skew=timedelta(seconds=clock_skew),
    )
    _check_conditions(ctx, assertion)

    name_id_elem = assertion.find("saml:Subject/saml:NameID", SAML_NS)
    # itertext() so a comment inside NameID cannot truncate the value
    name_id = "".join(name_id_elem.itertext()).strip() if name_id_elem is not None else ""
    if not name_id:
        raise InvalidAssertion("Assertion does not contain a NameID")

    session_index = None
    authn = assertion.find("saml:AuthnStatement", SAML_NS)
    if authn is not None:
        session_index = authn.get("SessionIndex") or None
    if require_session_index and not session_index:
        raise MissingSessionIndex("Assertion does not contain a SessionIndex")

    issuer = assertion.findtext("saml:Issuer", namespaces=SAML_NS)
    logger.info(f"Validated assertion from identity provider {idp.name}")
    return IdentityClaims(
        name_id=name_id,
        session_index=session_index,
        name_id_format=name_id_elem.get("Format"),
        issuer=issuer.strip() if issuer else None,
        attributes=_attributes(assertion),
    )
