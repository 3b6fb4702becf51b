"""Execution unit of the SAML Service Provider service.

A :class:`SAMLUnit` lives for exactly one request inside its own process.
It loads credentials fresh, runs one SAML operation and, for the login
endpoints, persists the resulting authentication record.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from samlgate.core.crypto.credentials import CredentialLoader
from samlgate.core.errors import UnknownEndpoint
from samlgate.core.saml.descriptors import (
    AuthenticationRecord,
    CookiePolicy,
    IdentityProviderDescriptor,
    RelayState,
    ServiceProviderDescriptor,
    hash_name_id,
)
from samlgate.core.saml.sp import build_login_redirect, render_metadata, validate_assertion
from samlgate.dispatch.bridge import RequestDescriptor
from samlgate.storage.sessions import SessionStore

logger = logging.getLogger(__name__)

# Subject used by the cookie test endpoint
TEST_NAME_ID = "john.doe@test.xyz"
TEST_SESSION_INDEX = "42 is the answer"

SAME_SITE = "Strict"


class Endpoint(StrEnum):
    """Endpoints of the SAML service."""

    COOKIE = "cookie"
    METADATA = "metadata"
    SSO_REDIRECT = "sso-redirect"
    ACS = "acs"


class SAMLUnit:
    """Serve one SAML endpoint invocation."""

    endpoints = Endpoint

    def __init__(self, request: RequestDescriptor) -> None:
        self.request = request
        self.config = request.settings
        self.settings = request.settings.saml
        self.loader = CredentialLoader(debug=request.debug)
        self._handlers = {
            Endpoint.COOKIE: self.cookie,
            Endpoint.METADATA: self.metadata,
            Endpoint.SSO_REDIRECT: self.sso_redirect,
            Endpoint.ACS: self.acs,
        }

    def run(self, endpoint: Endpoint) -> Any:
        try:
            handler = self._handlers[Endpoint(endpoint)]
        except (KeyError, ValueError):
            raise UnknownEndpoint(f'Unknown endpoint: "{endpoint}"') from None
        logger.debug(f"Running {handler.__name__} for {self.request.service_name}")
        return handler()

    # Endpoints

    def cookie(self) -> AuthenticationRecord:
        """Issue a session for a synthetic subject, to test cookie delivery."""
        record = AuthenticationRecord(
            name_id=hash_name_id(TEST_NAME_ID),
            session_index=TEST_SESSION_INDEX,
            auth_time=datetime.now(UTC),
            cookie_options=self._cookie_policy(self.request.query.get("appName")),
        )
        self._store(record)
        return record

    def metadata(self) -> str:
        """SP metadata XML."""
        return render_metadata(self._service_provider())

    def sso_redirect(self) -> str:
        """Login URL of the IdP named by the RelayState query parameter."""
        raw = self.request.query.get("RelayState")
        relay_state = RelayState.parse(raw)
        if relay_state.app_name:
            self.config.application(relay_state.app_name)

        secret = self.settings.relay_state_secret
        outgoing = relay_state.seal(secret) if secret else raw

        idp = self._identity_provider(relay_state.idp_name)
        url, request_id = build_login_redirect(self._service_provider(), idp, outgoing)
        logger.info(f"Redirecting to identity provider {idp.name} (request {request_id})")
        return url

    def acs(self) -> AuthenticationRecord:
        """Validate the posted assertion and record the session."""
        body = self.request.body
        relay_state = RelayState.parse(
            body.get("RelayState"), secret=self.settings.relay_state_secret
        )
        idp = self._identity_provider(relay_state.idp_name)
        claims = validate_assertion(
            self._service_provider(),
            idp,
            body,
            require_session_index=True,
            clock_skew=self.settings.clock_skew,
        )

        record = AuthenticationRecord(
            name_id=hash_name_id(claims.name_id),
            session_index=claims.session_index,
            auth_time=datetime.now(UTC),
            relay_state=relay_state,
            cookie_options=self._cookie_policy(relay_state.app_name),
        )
        self._store(record)
        return record

    # Shared steps

    def _service_provider(self) -> ServiceProviderDescriptor:
        fields: dict[str, Any] = {"certificate": "", "private_key": ""}
        self.loader.attach(fields, "certificate", self.settings.sp_certificate_path)
        self.loader.attach(fields, "private_key", self.settings.sp_private_key_path)
        return ServiceProviderDescriptor(
            entity_id=self.settings.entity_id,
            assert_endpoint=self.settings.assert_endpoint,
            certificate=fields["certificate"],
            private_key=fields["private_key"],
            allow_unencrypted_assertion=self.settings.allow_unencrypted_assertion,
        )

    def _identity_provider(self, name: str) -> IdentityProviderDescriptor:
        idp = self.config.identity_provider(name)
        fields: dict[str, Any] = {"certificates": []}
        for path in self.config.idp_certificate_paths(name):
            self.loader.attach(fields, "certificates", path)
        return IdentityProviderDescriptor(
            name=name,
            login_url=idp.login_endpoint,
            logout_url=idp.logout_endpoint,
            certificates=tuple(fields["certificates"]),
        )

    def _cookie_policy(self, app_name: str | None) -> CookiePolicy:
        domain = None
        path = "/"
        if app_name:
            app = self.config.application(app_name)
            domain = app.cookie_domain
            path = app.cookie_path
        return CookiePolicy(
            secure=self.settings.cookie_secure,
            domain=domain,
            path=path,
            same_site=SAME_SITE,
            max_age=(self.settings.cookie_timeout or 1) * 60 * 1000,
        )

    def _store(self, record: AuthenticationRecord) -> None:
        store = SessionStore(self.settings.database, debug=self.request.debug)
        try:
            store.store(record)
        finally:
            store.close()
