"""End-to-end tests for the SAML service routes.

Every request runs its endpoint in a separate execution unit process.
"""

import json
import re
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlsplit

import pytest
from flask.testing import FlaskClient

from samlgate.app import create_app
from samlgate.core.config import GatewayConfig
from samlgate.core.saml.descriptors import RelayState, hash_name_id
from samlgate.storage import SessionStore
from samlgate.web.routes.saml import LOGIN_COOKIE_NAME, TEST_COOKIE_NAME

from conftest import IDP_LOGIN

TITLE = "SAML Service Provider Middleware"
RELAY_STATE = '{"origin":"https://acme.test/login","appName":"acme","idpName":"okta"}'


def _cookie(response, name: str) -> str:
    for header in response.headers.getlist("Set-Cookie"):
        if header.startswith(f"{name}="):
            return header
    raise AssertionError(f"cookie {name} not set")


def _cookie_record(header: str) -> dict:
    value = header.split(";", 1)[0].split("=", 1)[1]
    return json.loads(unquote(value))


def test_service_health(client: FlaskClient) -> None:
    """The service root answers without dispatching."""
    response = client.get("/saml/")
    assert response.status_code == 200
    assert response.data.decode() == f"{TITLE}: the service is active."


def test_cookie_endpoint(client: FlaskClient, session_store: SessionStore) -> None:
    """The test cookie follows the application's cookie policy."""
    response = client.get("/saml/cookie?appName=acme")

    assert response.status_code == 200
    assert response.mimetype == "text/plain"
    assert response.data.decode() == (
        f"{TITLE}: cookie has been successfully sent and is available at application URL."
    )

    header = _cookie(response, TEST_COOKIE_NAME)
    assert "Max-Age=300" in header
    assert re.search(r"Domain=\.?acme\.test", header)
    assert "Path=/" in header
    assert "Secure" in header
    assert "SameSite=Strict" in header

    record = _cookie_record(header)
    assert record["name_id"] == hash_name_id("john.doe@test.xyz")
    assert record["session_index"] == "42 is the answer"
    assert record["cookie_options"]["maxAge"] == 300000

    row = session_store.fetch(hash_name_id("john.doe@test.xyz"))
    assert row is not None


def test_cookie_unknown_application(client: FlaskClient) -> None:
    """Unknown applications are refused with the generic message."""
    response = client.get("/saml/cookie?appName=payroll")
    assert response.status_code == 500
    assert response.data.decode() == (
        f"{TITLE}: Service Provider or Identity Provider is misconfigured."
    )


def test_metadata_endpoint(client: FlaskClient) -> None:
    """Metadata is served as XML."""
    response = client.get("/saml/metadata")
    assert response.status_code == 200
    assert response.mimetype == "text/xml"
    assert b"https://sp.acme.test/saml/metadata" in response.data


def test_metadata_corrupted_certificate(client: FlaskClient, credentials_dir: Path) -> None:
    """Unreadable credentials yield the generic message outside debug mode."""
    (credentials_dir / "sp" / "cert.cer").write_text("garbage")
    response = client.get("/saml/metadata")
    assert response.status_code == 500
    assert response.data.decode() == (
        f"{TITLE}: Cannot read Service Provider or Identity Provider settings. "
        "Check file paths and permissions."
    )


def test_metadata_missing_certificate_debug(
    gateway_config: GatewayConfig, credentials_dir: Path
) -> None:
    """Debug mode exposes the underlying filesystem error."""
    (credentials_dir / "sp" / "cert.cer").unlink()
    gateway_config.server.debug = True
    client = create_app(gateway_config).test_client()

    response = client.get("/saml/metadata")
    assert response.status_code == 500
    assert response.mimetype == "text/plain"
    body = response.data.decode()
    assert body.startswith(f"{TITLE}: ")
    assert "No such file or directory" in body
    assert "Check file paths and permissions" not in body


def _refuse_start(self) -> None:
    raise OSError(11, "Resource temporarily unavailable")


def test_unit_start_failure(
    app, client: FlaskClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A unit that cannot be started still yields a plain-text error."""
    bridge = app.extensions["samlgate.services"]["SAML"].bridge
    monkeypatch.setattr(bridge._context.Process, "start", _refuse_start)

    response = client.get("/saml/metadata")
    assert response.status_code == 500
    assert response.mimetype == "text/plain"
    assert response.data.decode() == f"{TITLE}: The request could not be processed."


def test_unit_start_failure_debug(
    gateway_config: GatewayConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Debug mode names the start failure."""
    gateway_config.server.debug = True
    app = create_app(gateway_config)
    bridge = app.extensions["samlgate.services"]["SAML"].bridge
    monkeypatch.setattr(bridge._context.Process, "start", _refuse_start)

    response = app.test_client().get("/saml/metadata")
    assert response.status_code == 500
    assert response.mimetype == "text/plain"
    assert response.data.decode().startswith(f"{TITLE}: OSError: ")


def test_sso_redirect(client: FlaskClient) -> None:
    """The browser is sent to the IdP with the RelayState unchanged."""
    response = client.get("/saml/sso-redirect", query_string={"RelayState": RELAY_STATE})

    assert response.status_code == 302
    location = response.headers["Location"]
    assert location.startswith(f"{IDP_LOGIN}?SAMLRequest=")
    params = parse_qs(urlsplit(location).query)
    assert params["RelayState"] == [RELAY_STATE]
    assert "Signature" in params


def test_sso_redirect_invalid_relay_state(client: FlaskClient) -> None:
    """Malformed RelayState is a client error."""
    response = client.get("/saml/sso-redirect", query_string={"RelayState": "{not json"})
    assert response.status_code == 400
    assert response.data.decode() == f"{TITLE}: Invalid RelayState."


def test_sso_redirect_unknown_idp(client: FlaskClient) -> None:
    """RelayState may only name configured IdPs."""
    relay_state = '{"origin":"x","appName":"acme","idpName":"google"}'
    response = client.get("/saml/sso-redirect", query_string={"RelayState": relay_state})
    assert response.status_code == 500


def test_acs_login(client: FlaskClient, builder, session_store: SessionStore) -> None:
    """A valid assertion records the session and redirects to the application."""
    response = client.post(
        "/saml/acs",
        data={
            "SAMLResponse": builder.signed_response(name_id="alice@example.com"),
            "RelayState": RELAY_STATE,
        },
    )

    assert response.status_code == 302
    assert response.headers["Location"] == "https://acme.test/app"

    header = _cookie(response, LOGIN_COOKIE_NAME)
    assert "Max-Age=300" in header
    record = _cookie_record(header)
    assert record["name_id"] == hash_name_id("alice@example.com")
    assert record["relay_state"] == json.loads(RELAY_STATE)

    row = session_store.fetch(hash_name_id("alice@example.com"))
    assert row is not None
    assert row.session_index == "_session-42"


def test_acs_without_application(client: FlaskClient, builder) -> None:
    """Without an application the browser returns to the site root."""
    response = client.post(
        "/saml/acs",
        data={
            "SAMLResponse": builder.signed_response(),
            "RelayState": '{"origin":"","appName":"","idpName":"okta"}',
        },
    )
    assert response.status_code == 302
    assert urlsplit(response.headers["Location"]).path == "/"
    header = _cookie(response, LOGIN_COOKIE_NAME)
    assert "Domain=" not in header


def test_acs_untrusted_signature(
    client: FlaskClient, builder, rogue_keys, session_store: SessionStore
) -> None:
    """Forged assertions store nothing."""
    response = client.post(
        "/saml/acs",
        data={
            "SAMLResponse": builder.signed_response(keys=rogue_keys),
            "RelayState": RELAY_STATE,
        },
    )
    assert response.status_code == 500
    assert response.data.decode() == f"{TITLE}: The SAML assertion could not be validated."
    assert "Set-Cookie" not in response.headers
    assert session_store.list_sessions() == []


def test_acs_store_unavailable(
    gateway_config: GatewayConfig, builder, tmp_path: Path
) -> None:
    """Database failures are reported with the generic store message."""
    gateway_config.saml.database.url = f"sqlite:///{tmp_path / 'missing-dir' / 'db.sqlite'}"
    client = create_app(gateway_config).test_client()

    response = client.post(
        "/saml/acs",
        data={"SAMLResponse": builder.signed_response(), "RelayState": RELAY_STATE},
    )
    assert response.status_code == 500
    assert response.data.decode() == (
        f"{TITLE}: Cannot connect to database for SAML session storage."
    )


def test_acs_get_not_allowed(client: FlaskClient) -> None:
    """The ACS only accepts the POST binding."""
    assert client.get("/saml/acs").status_code == 405


class TestSealedRelayState:
    """Routes with a RelayState secret configured."""

    @pytest.fixture
    def client(self, gateway_config: GatewayConfig, session_store: SessionStore) -> FlaskClient:
        gateway_config.saml.relay_state_secret = "s3cret"
        return create_app(gateway_config).test_client()

    def test_redirect_seals_relay_state(self, client: FlaskClient) -> None:
        """Outgoing RelayState carries a seal that verifies."""
        response = client.get("/saml/sso-redirect", query_string={"RelayState": RELAY_STATE})
        sealed = parse_qs(urlsplit(response.headers["Location"]).query)["RelayState"][0]
        assert RelayState.parse(sealed, secret="s3cret") == RelayState.parse(RELAY_STATE)

    def test_acs_rejects_unsealed(self, client: FlaskClient, builder) -> None:
        """The ACS refuses RelayState that was not issued by the gateway."""
        response = client.post(
            "/saml/acs",
            data={"SAMLResponse": builder.signed_response(), "RelayState": RELAY_STATE},
        )
        assert response.status_code == 400

    def test_acs_accepts_sealed(self, client: FlaskClient, builder) -> None:
        """A sealed RelayState completes the login."""
        sealed = RelayState.parse(RELAY_STATE).seal("s3cret")
        response = client.post(
            "/saml/acs",
            data={"SAMLResponse": builder.signed_response(), "RelayState": sealed},
        )
        assert response.status_code == 302
        assert response.headers["Location"] == "https://acme.test/app"


def test_base_path(gateway_config: GatewayConfig) -> None:
    """Services are mounted below the configured base path."""
    gateway_config.server.path = "middleware"
    client = create_app(gateway_config).test_client()
    assert client.get("/middleware/saml/").status_code == 200
    assert client.get("/saml/").status_code == 404
