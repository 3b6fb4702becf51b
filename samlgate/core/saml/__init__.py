"""SAML Service Provider protocol support."""

from samlgate.core.saml.descriptors import (
    AuthenticationRecord,
    CookiePolicy,
    IdentityClaims,
    IdentityProviderDescriptor,
    RelayState,
    ServiceProviderDescriptor,
    hash_name_id,
)
from samlgate.core.saml.sp import (
    SAML_NS,
    build_login_redirect,
    render_metadata,
    validate_assertion,
)

__all__ = [
    "SAML_NS",
    "AuthenticationRecord",
    "CookiePolicy",
    "IdentityClaims",
    "IdentityProviderDescriptor",
    "RelayState",
    "ServiceProviderDescriptor",
    "build_login_redirect",
    "hash_name_id",
    "render_metadata",
    "validate_assertion",
]
