"""SAML Service Provider routes.

- ``GET /cookie``: issues a test session cookie for ``?appName=``.
- ``GET /metadata``: SP metadata XML.
- ``GET /sso-redirect``: redirects the browser to the IdP named in ``RelayState``.
- ``POST /acs``: validates the IdP assertion, records the session, sets the
  login cookie and redirects to the application.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from flask import Response, redirect
from werkzeug.wrappers import Response as WerkzeugResponse

from samlgate.core.config import GatewayConfig
from samlgate.core.saml.descriptors import AuthenticationRecord
from samlgate.dispatch.bridge import DispatchBridge
from samlgate.dispatch.units import Endpoint, SAMLUnit
from samlgate.web.service import Service

logger = logging.getLogger(__name__)

SERVICE_NAME = "SAML"

TEST_COOKIE_NAME = "SAML_Test_Session"
LOGIN_COOKIE_NAME = "SAML_Login_Session"


def set_session_cookie(response: WerkzeugResponse, name: str, record: AuthenticationRecord) -> None:
    """Attach the serialized record as a cookie using its cookie policy.

    The value is the URL-encoded JSON of the record. ``maxAge`` in the
    policy is in milliseconds; the cookie attribute is in seconds.
    """
    options = record.cookie_options
    value = quote(record.to_json(), safe="")
    if options is None:
        response.set_cookie(name, value, samesite="Strict")
        return
    response.set_cookie(
        name,
        value,
        max_age=options.max_age // 1000,
        path=options.path,
        domain=options.domain,
        secure=options.secure,
        samesite=options.same_site,
    )


def create_saml_service(config: GatewayConfig, bridge: DispatchBridge | None = None) -> Service:
    """Build the SAML service and its routes."""
    if bridge is None:
        bridge = DispatchBridge(
            SAMLUnit,
            timeout=config.saml.dispatch_timeout,
            start_method=config.saml.start_method,
        )
    service = Service(SERVICE_NAME, config.saml.title, bridge, config, auth=False)
    title = service.title

    def cookie_callback(record: AuthenticationRecord) -> WerkzeugResponse:
        logger.debug(f"Sending test cookie: {record.to_json()}")
        response = Response(
            f"{title}: cookie has been successfully sent and is available at application URL.",
            mimetype="text/plain",
        )
        set_session_cookie(response, TEST_COOKIE_NAME, record)
        return response

    def metadata_callback(metadata: str) -> WerkzeugResponse:
        return Response(metadata, mimetype="text/xml")

    def sso_redirect_callback(login_url: str) -> WerkzeugResponse:
        return redirect(login_url)

    def acs_callback(record: AuthenticationRecord) -> WerkzeugResponse:
        logger.debug(f"Sending login cookie: {record.to_json()}")
        target = "/"
        if record.relay_state is not None:
            app = config.applications.get(record.relay_state.app_name)
            if app is not None and app.local_client_url:
                target = app.local_client_url
        response = redirect(target)
        set_session_cookie(response, LOGIN_COOKIE_NAME, record)
        return response

    service.route("/cookie", Endpoint.COOKIE, cookie_callback)
    service.route("/metadata", Endpoint.METADATA, metadata_callback)
    service.route("/sso-redirect", Endpoint.SSO_REDIRECT, sso_redirect_callback)
    service.route("/acs", Endpoint.ACS, acs_callback, methods=("POST",))
    return service
