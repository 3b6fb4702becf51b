"""Pytest configuration and fixtures."""

import base64
import uuid
from collections.abc import Generator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from flask import Flask
from flask.testing import FlaskClient
from lxml import etree
from signxml import XMLSigner, methods
from signxml.algorithms import CanonicalizationMethod, DigestAlgorithm, SignatureMethod

from samlgate.app import create_app
from samlgate.core.config import (
    ApplicationSettings,
    DatabaseSettings,
    GatewayConfig,
    IdentityProviderSettings,
    SAMLSettings,
)
from samlgate.core.crypto.certs import (
    generate_private_key,
    generate_signing_certificate,
    get_certificate_pem,
)
from samlgate.core.saml.descriptors import IdentityProviderDescriptor, ServiceProviderDescriptor
from samlgate.core.saml.sp import SAML, SAML_NS, SAMLP, STATUS_SUCCESS
from samlgate.storage import SessionStore

ENTITY_ID = "https://sp.acme.test/saml/metadata"
ASSERT_ENDPOINT = "https://sp.acme.test/saml/acs"
IDP_ISSUER = "https://idp.okta.test"
IDP_LOGIN = "https://idp.okta.test/sso/saml"
EMAIL_FORMAT = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"


@dataclass(frozen=True)
class KeyPair:
    """PEM private key and self-signed certificate."""

    key_pem: str
    cert_pem: str


def _keypair(common_name: str) -> KeyPair:
    key = generate_private_key()
    cert = generate_signing_certificate(key, common_name)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    return KeyPair(key_pem=key_pem, cert_pem=get_certificate_pem(cert))


def _instant(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class ResponseBuilder:
    """Builds IdP responses the way an Identity Provider would post them."""

    def __init__(self, keys: KeyPair) -> None:
        self.keys = keys

    def assertion(
        self,
        name_id: str | None = "alice@example.com",
        session_index: str | None = "_session-42",
        audience: str = ENTITY_ID,
        recipient: str = ASSERT_ENDPOINT,
        issued: datetime | None = None,
        lifetime: timedelta = timedelta(minutes=5),
    ) -> etree._Element:
        issued = issued or datetime.now(UTC)
        assertion = etree.Element(f"{SAML}Assertion", nsmap={"saml": SAML_NS["saml"]})
        assertion.set("ID", f"_{uuid.uuid4().hex}")
        assertion.set("Version", "2.0")
        assertion.set("IssueInstant", _instant(issued))
        etree.SubElement(assertion, f"{SAML}Issuer").text = IDP_ISSUER

        subject = etree.SubElement(assertion, f"{SAML}Subject")
        if name_id is not None:
            name = etree.SubElement(subject, f"{SAML}NameID")
            name.set("Format", EMAIL_FORMAT)
            name.text = name_id
        confirmation = etree.SubElement(subject, f"{SAML}SubjectConfirmation")
        confirmation.set("Method", "urn:oasis:names:tc:SAML:2.0:cm:bearer")
        data = etree.SubElement(confirmation, f"{SAML}SubjectConfirmationData")
        data.set("NotOnOrAfter", _instant(issued + lifetime))
        data.set("Recipient", recipient)

        conditions = etree.SubElement(assertion, f"{SAML}Conditions")
        conditions.set("NotBefore", _instant(issued - timedelta(minutes=1)))
        conditions.set("NotOnOrAfter", _instant(issued + lifetime))
        restriction = etree.SubElement(conditions, f"{SAML}AudienceRestriction")
        etree.SubElement(restriction, f"{SAML}Audience").text = audience

        authn = etree.SubElement(assertion, f"{SAML}AuthnStatement")
        authn.set("AuthnInstant", _instant(issued))
        if session_index is not None:
            authn.set("SessionIndex", session_index)
        context = etree.SubElement(authn, f"{SAML}AuthnContext")
        etree.SubElement(context, f"{SAML}AuthnContextClassRef").text = (
            "urn:oasis:names:tc:SAML:2.0:ac:classes:PasswordProtectedTransport"
        )

        statement = etree.SubElement(assertion, f"{SAML}AttributeStatement")
        attribute = etree.SubElement(statement, f"{SAML}Attribute")
        attribute.set("Name", "email")
        etree.SubElement(attribute, f"{SAML}AttributeValue").text = name_id or ""
        return assertion

    def sign(self, element: etree._Element, keys: KeyPair | None = None) -> etree._Element:
        keys = keys or self.keys
        signer = XMLSigner(
            method=methods.enveloped,
            signature_algorithm=SignatureMethod.RSA_SHA256,
            digest_algorithm=DigestAlgorithm.SHA256,
            c14n_algorithm=CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0,
        )
        return signer.sign(
            element,
            key=keys.key_pem,
            cert=keys.cert_pem,
            reference_uri=f"#{element.get('ID')}",
        )

    def response(
        self,
        assertion: etree._Element | None = None,
        status: str = STATUS_SUCCESS,
        signed: bool = False,
        keys: KeyPair | None = None,
    ) -> etree._Element:
        response = etree.Element(
            f"{SAMLP}Response",
            nsmap={"samlp": SAML_NS["samlp"], "saml": SAML_NS["saml"]},
        )
        response.set("ID", f"_{uuid.uuid4().hex}")
        response.set("Version", "2.0")
        response.set("IssueInstant", _instant(datetime.now(UTC)))
        response.set("Destination", ASSERT_ENDPOINT)
        etree.SubElement(response, f"{SAML}Issuer").text = IDP_ISSUER
        status_elem = etree.SubElement(response, f"{SAMLP}Status")
        etree.SubElement(status_elem, f"{SAMLP}StatusCode").set("Value", status)
        if assertion is not None:
            response.append(assertion)
        if signed:
            response = self.sign(response, keys)
        return response

    @staticmethod
    def encode(response: etree._Element | bytes) -> str:
        xml = response if isinstance(response, bytes) else etree.tostring(response)
        return base64.b64encode(xml).decode("ascii")

    def signed_response(self, keys: KeyPair | None = None, **assertion_args) -> str:
        """Base64 Response carrying one assertion signed with ``keys``."""
        assertion = self.sign(self.assertion(**assertion_args), keys)
        return self.encode(self.response(assertion))


@pytest.fixture(scope="session")
def sp_keys() -> KeyPair:
    """Service Provider key pair."""
    return _keypair("sp.acme.test")


@pytest.fixture(scope="session")
def idp_keys() -> KeyPair:
    """Key pair of the trusted Identity Provider."""
    return _keypair("idp.okta.test")


@pytest.fixture(scope="session")
def rogue_keys() -> KeyPair:
    """Key pair nobody trusts."""
    return _keypair("idp.rogue.test")


@pytest.fixture
def builder(idp_keys: KeyPair) -> ResponseBuilder:
    """Response builder signing with the trusted IdP key."""
    return ResponseBuilder(idp_keys)


@pytest.fixture
def sp(sp_keys: KeyPair) -> ServiceProviderDescriptor:
    return ServiceProviderDescriptor(
        entity_id=ENTITY_ID,
        assert_endpoint=ASSERT_ENDPOINT,
        certificate=sp_keys.cert_pem,
        private_key=sp_keys.key_pem,
    )


@pytest.fixture
def idp(idp_keys: KeyPair) -> IdentityProviderDescriptor:
    return IdentityProviderDescriptor(
        name="okta",
        login_url=IDP_LOGIN,
        certificates=(idp_keys.cert_pem,),
    )


@pytest.fixture
def credentials_dir(tmp_path: Path, sp_keys: KeyPair, idp_keys: KeyPair) -> Path:
    """Credentials layout with the SP key pair and the okta certificate."""
    root = tmp_path / "credentials"
    (root / "sp").mkdir(parents=True)
    (root / "sp" / "cert.cer").write_text(sp_keys.cert_pem)
    (root / "sp" / "key.pem").write_text(sp_keys.key_pem)
    (root / "idps" / "okta").mkdir(parents=True)
    (root / "idps" / "okta" / "cert.cer").write_text(idp_keys.cert_pem)
    return root


@pytest.fixture
def gateway_config(tmp_path: Path, credentials_dir: Path) -> GatewayConfig:
    """Gateway configuration with one application and one IdP."""
    return GatewayConfig(
        saml=SAMLSettings(
            entity_id=ENTITY_ID,
            assert_endpoint=ASSERT_ENDPOINT,
            cookie_timeout=5,
            credentials_dir=credentials_dir,
            database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'sessions.db'}"),
        ),
        applications={
            "acme": ApplicationSettings(
                cookie_domain=".acme.test",
                cookie_path="/",
                local_client_url="https://acme.test/app",
            ),
        },
        identity_providers={
            "okta": IdentityProviderSettings(login_endpoint=IDP_LOGIN),
        },
    )


@pytest.fixture
def session_store(gateway_config: GatewayConfig) -> Generator[SessionStore, None, None]:
    """Session store with the table created."""
    store = SessionStore(gateway_config.saml.database)
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def app(gateway_config: GatewayConfig, session_store: SessionStore) -> Flask:
    """Create the gateway application for testing."""
    app = create_app(gateway_config)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()
